"""
Read/write routing across cluster members.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, replace
from threading import Lock, RLock
from typing import Any, Callable, Dict, Iterable, Mapping, Sequence, Tuple

from ..config import AccessMode
from ..errors import PoolTimeoutError, ServiceUnavailable, SessionExpired
from ..transports.base import Address, ConnectionConfig
from ..utils import get_logger
from .pool import ConnectionPool

_ROLES = {"ROUTE": "routers", "READ": "readers", "WRITE": "writers"}


@dataclass(frozen=True)
class RoutingTable:
    database: str | None
    routers: Tuple[Address, ...] = ()
    readers: Tuple[Address, ...] = ()
    writers: Tuple[Address, ...] = ()
    ttl: float = 300.0
    last_updated: float = 0.0

    @classmethod
    def parse(cls, database: str | None, response: Mapping[str, Any], *, now: float) -> "RoutingTable":
        roles: Dict[str, list[Address]] = {name: [] for name in _ROLES.values()}
        for server in response.get("servers") or ():
            role = _ROLES.get(str(server.get("role", "")).upper())
            if role is None:
                continue
            for raw in server.get("addresses") or ():
                address = Address.parse(raw)
                if address not in roles[role]:
                    roles[role].append(address)
        return cls(
            database=response.get("db", database),
            routers=tuple(roles["routers"]),
            readers=tuple(roles["readers"]),
            writers=tuple(roles["writers"]),
            ttl=float(response.get("ttl", 300)),
            last_updated=now,
        )

    def servers_for(self, mode: AccessMode) -> Tuple[Address, ...]:
        return self.readers if mode is AccessMode.READ else self.writers

    def is_fresh(self, mode: AccessMode, now: float) -> bool:
        if now - self.last_updated >= self.ttl:
            return False
        return bool(self.routers) and bool(self.servers_for(mode))

    def without(self, address: Address) -> "RoutingTable":
        return replace(
            self,
            routers=tuple(a for a in self.routers if a != address),
            readers=tuple(a for a in self.readers if a != address),
            writers=tuple(a for a in self.writers if a != address),
        )

    def without_writer(self, address: Address) -> "RoutingTable":
        return replace(self, writers=tuple(a for a in self.writers if a != address))


class Router:
    """
    Chooses the server for each transaction.

    Direct configurations always use the configured address. Routing
    configurations keep one table per database, refreshed on expiry.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        config: ConnectionConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pool = pool
        self.initial_address = config.address
        self.routing = config.routing
        self._clock = clock
        self._tables: Dict[str | None, RoutingTable] = {}
        self._counter = itertools.count()
        self._lock = RLock()
        self._refresh_locks: Dict[str | None, Lock] = {}
        self.logger = get_logger("pool.routing")

    def endpoint_for(
        self, mode: AccessMode, database: str | None, bookmarks: Iterable[str] = ()
    ) -> Address:
        if not self.routing:
            return self.initial_address
        table = self._fresh_table(mode, database, list(bookmarks))
        with self._lock:
            servers = table.servers_for(mode)
            if not servers:
                raise SessionExpired(
                    f"No {'read' if mode is AccessMode.READ else 'write'} servers available "
                    f"for database {database or '<default>'}"
                )
            return servers[next(self._counter) % len(servers)]

    def routing_table(self, database: str | None) -> RoutingTable | None:
        with self._lock:
            return self._tables.get(database)

    def deactivate(self, address: Address) -> None:
        with self._lock:
            for key, table in list(self._tables.items()):
                self._tables[key] = table.without(address)
        self.logger.info("Deactivated server %s", address)
        self.pool.purge(address)

    def deactivate_writer(self, address: Address, database: str | None) -> None:
        with self._lock:
            table = self._tables.get(database)
            if table is not None:
                self._tables[database] = table.without_writer(address)
        self.logger.info("Server %s is no longer a writer for %s", address, database or "<default>")

    # ------------------------------------------------------------------ #
    def _fresh_table(self, mode: AccessMode, database: str | None, bookmarks: Sequence[str]) -> RoutingTable:
        # Refreshes run outside the table lock; one refresh per database at a time.
        with self._lock:
            table = self._tables.get(database)
            if table is not None and table.is_fresh(mode, self._clock()):
                return table
            refresh_lock = self._refresh_locks.setdefault(database, Lock())
        with refresh_lock:
            with self._lock:
                table = self._tables.get(database)
                if table is not None and table.is_fresh(mode, self._clock()):
                    return table
            return self._refresh(database, bookmarks, table)

    def _refresh(
        self, database: str | None, bookmarks: Sequence[str], existing: RoutingTable | None
    ) -> RoutingTable:
        candidates = list(existing.routers) if existing else []
        if self.initial_address not in candidates:
            candidates.append(self.initial_address)

        last_error: Exception | None = None
        for router in candidates:
            try:
                connection = self.pool.acquire(router)
            except (ServiceUnavailable, PoolTimeoutError) as exc:
                last_error = exc
                self.logger.warning("Routing server %s unavailable: %s", router, exc)
                continue
            try:
                response = connection.route(database, bookmarks)
            except (ServiceUnavailable, SessionExpired) as exc:
                last_error = exc
                self.logger.warning("Routing request to %s failed: %s", router, exc)
                continue
            finally:
                self.pool.release(connection)

            table = RoutingTable.parse(database, response, now=self._clock())
            if not table.routers:
                self.logger.warning("Routing server %s returned no routers", router)
                continue
            with self._lock:
                self._tables[database] = table
            self.logger.debug(
                "Routing table for %s: routers=%s readers=%s writers=%s ttl=%s",
                database or "<default>",
                [str(a) for a in table.routers],
                [str(a) for a in table.readers],
                [str(a) for a in table.writers],
                table.ttl,
            )
            return table

        raise ServiceUnavailable(
            f"Unable to retrieve routing information for database {database or '<default>'}"
        ) from last_error
