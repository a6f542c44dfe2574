"""
Driver: the explicit handle owning the pool, router and retry policy.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Mapping, Optional

from .bookmarks import BookmarkManager
from .config import AccessMode, SessionConfig, parse_access_mode
from .errors import DriverClosedError
from .hooks import HookDispatcher
from .hooks import hooks as default_hooks
from .pool import ConnectionPool, Router
from .transports.base import AuthToken, ConnectionConfig, Transport
from .transports.bolt import BoltTransport
from .utils import get_logger
from .work import EagerResult, ManagedTransaction, ManagedTransactionExecutor, RetryPolicy, Session

_DEFAULT = object()


def _eager_work(tx: ManagedTransaction, query: str, parameters: Mapping[str, Any]) -> EagerResult:
    result = tx.run(query, parameters)
    records = list(result)
    summary = result.consume()
    return EagerResult(records, summary, result.keys())


class Driver:
    """
    Entry point for applications. Create one per database deployment and
    close it on shutdown; sessions borrow its pooled connections.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        transport: Optional[Transport] = None,
        *,
        hooks: Optional[HookDispatcher] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.transport = transport or BoltTransport()
        self.hooks = hooks or default_hooks
        self.pool = ConnectionPool(self.transport, config, clock=clock)
        self.router = Router(self.pool, config, clock=clock)
        self.retry_policy = RetryPolicy(config.retry)
        self.executor = ManagedTransactionExecutor(self.retry_policy, self.hooks, sleep=sleep, clock=clock)
        self.query_bookmark_manager = BookmarkManager()
        self._closed = False
        self.logger = get_logger("driver")
        self.logger.info("Driver created for %s", config.descriptive_label())

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "Driver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    @property
    def closed(self) -> bool:
        return self._closed

    def session(self, **options: Any) -> Session:
        """
        Open a session. Accepts the :class:`SessionConfig` fields as keywords.
        """

        self._check_open()
        options.setdefault("database", self.config.database)
        return Session(
            self.pool,
            self.router,
            SessionConfig(**options),
            executor=self.executor,
            hooks=self.hooks,
            fetch_size=self.config.fetch_size,
        )

    def execute_query(
        self,
        query: str,
        parameters: Optional[Mapping[str, Any]] = None,
        *,
        database: Optional[str] = None,
        routing: AccessMode | str = AccessMode.WRITE,
        impersonated_user: Optional[str] = None,
        bookmark_manager: Any = _DEFAULT,
        **kwparameters: Any,
    ) -> EagerResult:
        """
        Run one query in a managed transaction and collect every record.

        Calls share :attr:`query_bookmark_manager` by default, so each call
        observes the writes of the previous ones. Pass
        ``bookmark_manager=None`` to opt out.
        """

        params = dict(parameters or {})
        params.update(kwparameters)
        if bookmark_manager is _DEFAULT:
            bookmark_manager = self.query_bookmark_manager
        mode = parse_access_mode(routing)
        with self.session(
            database=database or self.config.database,
            impersonated_user=impersonated_user,
            bookmark_manager=bookmark_manager,
        ) as session:
            if mode is AccessMode.READ:
                return session.execute_read(_eager_work, query, params)
            return session.execute_write(_eager_work, query, params)

    def verify_connectivity(self) -> None:
        """
        Acquire and release one connection, refreshing routing on the way.
        """

        self._check_open()
        address = self.router.endpoint_for(AccessMode.READ, self.config.database)
        connection = self.pool.acquire(address)
        self.pool.release(connection)
        self.logger.debug("Connectivity to %s verified", address)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.pool.close()
        self.logger.info("Driver for %s closed", self.config.descriptive_label())

    def _check_open(self) -> None:
        if self._closed:
            raise DriverClosedError("Driver is closed.")

    def __repr__(self) -> str:
        return f"<Driver {self.config.redacted_dsn()}>"


def driver(
    uri: str,
    *,
    auth: AuthToken | tuple[str, str] | None = None,
    transport: Optional[Transport] = None,
    hooks: Optional[HookDispatcher] = None,
    **config: Any,
) -> Driver:
    """
    Create a :class:`Driver` from a ``neo4j://`` or ``bolt://`` URI.

    Extra keyword arguments override :class:`ConnectionConfig` fields.
    """

    return Driver(ConnectionConfig.from_dsn(uri, auth=auth, **config), transport, hooks=hooks)
