"""
Bolt transport backed by the official ``neo4j`` Python package.

Each graphtx connection wraps a ``neo4j`` driver limited to a single socket
against one server address, so pooling and routing decisions stay with
graphtx. Every server transaction runs in a short-lived ``neo4j`` session.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Sequence

from ..config import AccessMode
from ..errors import (
    ConfigurationError,
    DatabaseError,
    DriverError,
    IncompleteCommitError,
    InvalidTransactionStateError,
    ResultConsumedError,
    ServiceUnavailable,
    SessionExpired,
)
from ..security.redaction import redact_parameters
from ..utils import get_logger, time_call
from .base import Address, ConnectionConfig

ROUTING_TABLE_QUERY = "CALL dbms.routing.getRoutingTable($context, $database)"

_COUNTER_NAMES = (
    "nodes_created",
    "nodes_deleted",
    "relationships_created",
    "relationships_deleted",
    "properties_set",
    "labels_added",
    "labels_removed",
    "indexes_added",
    "indexes_removed",
    "constraints_added",
    "constraints_removed",
    "system_updates",
)


def _load_driver():
    try:
        import neo4j

        return neo4j
    except ImportError:
        return None


def _summary_metadata(summary: Any) -> dict[str, Any]:
    counters = getattr(summary, "counters", None)
    return {
        "db": getattr(summary, "database", None),
        "type": getattr(summary, "query_type", None),
        "stats": {
            name: getattr(counters, name)
            for name in _COUNTER_NAMES
            if counters is not None and getattr(counters, name, 0)
        },
        "t_first": getattr(summary, "result_available_after", None),
        "t_last": getattr(summary, "result_consumed_after", None),
    }


class BoltStreamHandle:
    def __init__(self, connection: "BoltConnection", result: Any) -> None:
        self._connection = connection
        self._result = result
        self.keys = tuple(result.keys())
        self._exhausted = False
        self._cancelled = False
        self._summary: dict[str, Any] | None = None

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def fetch(self, n: int) -> list[Sequence[Any]]:
        if self._cancelled:
            raise ResultConsumedError("Stream was cancelled because its transaction ended.")
        if self._exhausted:
            return []
        with self._connection.translated():
            if n < 0:
                records = list(self._result)
            else:
                records = self._result.fetch(n)
        if n < 0 or len(records) < n:
            self._exhausted = True
        return [tuple(record.values()) for record in records]

    def discard(self) -> dict[str, Any]:
        if self._summary is None:
            with self._connection.translated():
                summary = self._result.consume()
            self._summary = _summary_metadata(summary)
            self._exhausted = True
        return self._summary

    def cancel(self) -> None:
        self._cancelled = True
        self._exhausted = True


@dataclass
class _ServerTransaction:
    session: Any
    transaction: Any


class BoltConnection:
    """
    Connection to a single server through a one-socket ``neo4j`` driver.
    """

    def __init__(self, address: Address, driver_module: Any, driver: Any, config: ConnectionConfig) -> None:
        self.address = address
        self.created_at = time.monotonic()
        self._module = driver_module
        self._driver = driver
        self._config = config
        self._current: _ServerTransaction | None = None
        self._closed = False
        self._defunct = False
        self.logger = get_logger("transports.bolt")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def defunct(self) -> bool:
        return self._defunct

    @contextmanager
    def translated(self) -> Iterator[None]:
        """
        Convert ``neo4j`` exceptions into graphtx errors.
        """

        errors = self._module.exceptions
        try:
            yield
        except errors.IncompleteCommit as exc:
            self._defunct = True
            raise IncompleteCommitError(str(exc)) from exc
        except errors.SessionExpired as exc:
            self._defunct = True
            raise SessionExpired(str(exc)) from exc
        except errors.ServiceUnavailable as exc:
            self._defunct = True
            raise ServiceUnavailable(str(exc)) from exc
        except errors.Neo4jError as exc:
            raise DatabaseError.from_code(exc.code, exc.message or str(exc)) from exc
        except errors.DriverError as exc:
            raise DriverError(str(exc)) from exc

    def _require_transaction(self) -> _ServerTransaction:
        if self._current is None:
            raise InvalidTransactionStateError(f"No open transaction on connection to {self.address}")
        return self._current

    def begin(
        self,
        *,
        database: str | None,
        mode: AccessMode,
        bookmarks: Sequence[str],
        metadata: Mapping[str, Any] | None,
        timeout: float | None,
        impersonated_user: str | None,
    ) -> None:
        if self._current is not None:
            raise InvalidTransactionStateError(f"Connection to {self.address} already has an open transaction")
        access_mode = self._module.READ_ACCESS if mode is AccessMode.READ else self._module.WRITE_ACCESS
        with self.translated():
            session = self._driver.session(
                database=database,
                default_access_mode=access_mode,
                bookmarks=self._module.Bookmarks.from_raw_values(bookmarks),
                impersonated_user=impersonated_user,
                fetch_size=self._config.fetch_size,
            )
            try:
                transaction = session.begin_transaction(metadata=dict(metadata) if metadata else None, timeout=timeout)
            except Exception:
                session.close()
                raise
        self._current = _ServerTransaction(session, transaction)

    def run(self, query: str, parameters: Mapping[str, Any]) -> BoltStreamHandle:
        current = self._require_transaction()
        with time_call(
            "bolt.run",
            self.logger,
            query=query,
            parameters=redact_parameters(parameters),
        ):
            with self.translated():
                result = current.transaction.run(query, dict(parameters))
        return BoltStreamHandle(self, result)

    def commit(self) -> str | None:
        current = self._require_transaction()
        try:
            with self.translated():
                current.transaction.commit()
                raw_values = current.session.last_bookmarks().raw_values
        finally:
            self._finish()
        return next(iter(sorted(raw_values)), None)

    def rollback(self) -> None:
        current = self._require_transaction()
        try:
            with self.translated():
                current.transaction.rollback()
        finally:
            self._finish()

    def reset(self) -> None:
        if self._current is not None:
            self.logger.debug("Resetting connection to %s with an open transaction", self.address)
            try:
                self.rollback()
            except DriverError:
                self._defunct = True

    def route(self, database: str | None, bookmarks: Sequence[str]) -> Mapping[str, Any]:
        with self.translated():
            with self._driver.session(
                database="system",
                default_access_mode=self._module.READ_ACCESS,
                bookmarks=self._module.Bookmarks.from_raw_values(bookmarks),
            ) as session:
                record = session.run(
                    ROUTING_TABLE_QUERY,
                    context=dict(self._config.routing_context),
                    database=database,
                ).single(strict=True)
        return {"ttl": record["ttl"], "servers": record["servers"], "db": database}

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._current is not None:
                self._current.session.close()
        finally:
            self._current = None
            self._driver.close()

    def _finish(self) -> None:
        current, self._current = self._current, None
        if current is not None:
            with self.translated():
                current.session.close()


class BoltTransport:
    """
    Transport wrapping the ``neo4j`` driver package.
    """

    def __init__(self) -> None:
        self.logger = get_logger("transports.bolt")

    def open(self, address: Address, config: ConnectionConfig) -> BoltConnection:
        module = _load_driver()
        if module is None:
            raise ConfigurationError("The neo4j package is required to use BoltTransport.")

        scheme = "bolt"
        if config.encrypted:
            scheme = "bolt+ssc" if config.trust_all_certificates else "bolt+s"
        uri = f"{scheme}://{address}"

        auth = None
        if config.auth is not None:
            auth = module.Auth(
                config.auth.scheme,
                config.auth.principal,
                config.auth.credentials,
                config.auth.realm,
            )

        self.logger.info("Connecting to %s via %s", address, config.descriptive_label())

        driver = module.GraphDatabase.driver(
            uri,
            auth=auth,
            max_connection_pool_size=1,
            connection_timeout=config.connection_timeout,
            user_agent=config.user_agent,
        )
        connection = BoltConnection(address, module, driver, config)
        try:
            with connection.translated():
                driver.verify_connectivity()
        except Exception:
            connection.close()
            raise
        return connection
