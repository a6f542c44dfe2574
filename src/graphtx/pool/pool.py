"""
Bounded, thread-safe connection pool keyed by server address.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Condition
from typing import Callable, Deque, Dict, List, Set

from ..errors import DriverClosedError, GraphTxError, PoolTimeoutError, ServiceUnavailable
from ..transports.base import Address, Connection, ConnectionConfig, Transport
from ..utils import get_logger, time_call


@dataclass
class _EndpointState:
    idle: Deque[Connection] = field(default_factory=deque)
    in_use: Dict[int, Connection] = field(default_factory=dict)
    purged: Set[int] = field(default_factory=set)
    opening: int = 0

    @property
    def size(self) -> int:
        return len(self.idle) + len(self.in_use) + self.opening


class ConnectionPool:
    """
    Lends connections to transactions and takes them back.

    At most ``max_connection_pool_size`` connections exist per address.
    ``acquire`` blocks while an address is at capacity.
    """

    def __init__(
        self,
        transport: Transport,
        config: ConnectionConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.config = config
        self.max_size = config.max_connection_pool_size
        self._clock = clock
        self._states: Dict[Address, _EndpointState] = {}
        self._condition = Condition()
        self._closed = False
        self.logger = get_logger("pool")

    # ------------------------------------------------------------------ #
    def acquire(self, address: Address, timeout: float | None = None) -> Connection:
        if timeout is None:
            timeout = self.config.connection_acquisition_timeout
        deadline = self._clock() + timeout
        stale: List[Connection] = []
        connection: Connection | None = None

        with self._condition:
            while True:
                if self._closed:
                    raise DriverClosedError("Connection pool is closed.")
                state = self._states.setdefault(address, _EndpointState())
                connection = self._take_idle(state, stale)
                if connection is not None:
                    break
                if state.size < self.max_size:
                    state.opening += 1
                    break
                remaining = deadline - self._clock()
                if remaining <= 0:
                    self.logger.warning(
                        "Connection pool for %s exhausted (%d in use)", address, len(state.in_use)
                    )
                    raise PoolTimeoutError(
                        f"Failed to acquire a connection to {address} within {timeout:.2f}s"
                    )
                self._condition.wait(remaining)

        self._close_quietly(stale)
        if connection is not None:
            return connection
        return self._open(address, state)

    def release(self, connection: Connection, *, discard: bool = False) -> None:
        with self._condition:
            state = self._states.get(connection.address)
            if state is None or state.in_use.pop(id(connection), None) is None:
                self.logger.warning("Ignoring release of unknown connection to %s", connection.address)
                return
            purged = id(connection) in state.purged
            state.purged.discard(id(connection))
            reusable = not (discard or purged or self._closed) and self._is_reusable(connection)
            if reusable:
                state.idle.append(connection)
            self._condition.notify()
        if not reusable:
            self.logger.debug("Discarding connection to %s", connection.address)
            self._close_quietly([connection])

    def purge(self, address: Address) -> None:
        """
        Close idle connections to ``address``; in-use ones close on release.
        """

        with self._condition:
            state = self._states.get(address)
            if state is None:
                return
            idle = list(state.idle)
            state.idle.clear()
            state.purged.update(state.in_use)
            self._condition.notify_all()
        self.logger.info("Purged %d idle connection(s) to %s", len(idle), address)
        self._close_quietly(idle)

    def close(self) -> None:
        with self._condition:
            if self._closed:
                return
            self._closed = True
            idle: List[Connection] = []
            for state in self._states.values():
                idle.extend(state.idle)
                state.idle.clear()
            self._condition.notify_all()
        self._close_quietly(idle)

    # ------------------------------------------------------------------ #
    @property
    def closed(self) -> bool:
        return self._closed

    def in_use_count(self, address: Address) -> int:
        with self._condition:
            state = self._states.get(address)
            return len(state.in_use) if state else 0

    def idle_count(self, address: Address) -> int:
        with self._condition:
            state = self._states.get(address)
            return len(state.idle) if state else 0

    # ------------------------------------------------------------------ #
    def _open(self, address: Address, state: _EndpointState) -> Connection:
        try:
            with time_call("pool.open", self.logger, threshold_ms=1000):
                connection = self.transport.open(address, self.config)
        except GraphTxError:
            self._abandon_slot(state)
            raise
        except Exception as exc:
            self._abandon_slot(state)
            raise ServiceUnavailable(f"Failed to connect to {address}: {exc}") from exc

        with self._condition:
            state.opening -= 1
            closed = self._closed
            if not closed:
                state.in_use[id(connection)] = connection
            self._condition.notify()
        if closed:
            self._close_quietly([connection])
            raise DriverClosedError("Connection pool is closed.")
        self.logger.debug("Opened connection to %s", address)
        return connection

    def _abandon_slot(self, state: _EndpointState) -> None:
        with self._condition:
            state.opening -= 1
            self._condition.notify()

    def _take_idle(self, state: _EndpointState, stale: List[Connection]) -> Connection | None:
        while state.idle:
            connection = state.idle.popleft()
            if self._is_reusable(connection):
                state.in_use[id(connection)] = connection
                return connection
            stale.append(connection)
        return None

    def _is_reusable(self, connection: Connection) -> bool:
        if connection.closed or connection.defunct:
            return False
        lifetime = self.config.max_connection_lifetime
        if lifetime >= 0 and self._clock() - connection.created_at >= lifetime:
            return False
        return True

    def _close_quietly(self, connections: List[Connection]) -> None:
        for connection in connections:
            try:
                connection.close()
            except Exception as exc:  # pragma: no cover - best effort cleanup
                self.logger.warning("Error closing connection to %s: %s", connection.address, exc)
