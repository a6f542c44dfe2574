"""
Sessions: causally chained sequences of transactions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from ..bookmarks import Bookmarks
from ..config import AccessMode, SessionConfig, TransactionConfig
from ..errors import (
    GraphTxError,
    NotALeaderError,
    ServiceUnavailable,
    SessionBusyError,
    SessionClosedError,
    SessionExpired,
    is_connection_failure,
)
from ..hooks import HookDispatcher
from ..pool import ConnectionPool, Router
from ..utils import get_logger
from .executor import ManagedTransactionExecutor
from .transaction import Transaction, TransactionState

if TYPE_CHECKING:
    from ..transports.base import Connection


class Session:
    """
    Holds a bookmark set and runs at most one transaction at a time.

    Sessions are cheap and not thread-safe; use one per thread. Bookmarks
    from every committed transaction are merged into the session so the
    next transaction observes its predecessors' writes.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        router: Router,
        config: SessionConfig,
        *,
        executor: ManagedTransactionExecutor,
        hooks: HookDispatcher,
        fetch_size: int = 1000,
    ) -> None:
        self.pool = pool
        self.router = router
        self.config = config
        self.executor = executor
        self.hooks = hooks
        self.database = config.database
        self.default_access_mode = config.default_access_mode
        self.fetch_size = config.fetch_size or fetch_size
        self._bookmarks = config.bookmarks or Bookmarks()
        self._bookmark_manager = config.bookmark_manager
        self._transaction: Optional[Transaction] = None
        self._closed = False
        self.logger = get_logger("work.session")

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    @property
    def closed(self) -> bool:
        return self._closed

    def last_bookmarks(self) -> Bookmarks:
        return self._bookmarks

    def begin_transaction(
        self, metadata: Optional[Mapping[str, Any]] = None, timeout: Optional[float] = None
    ) -> Transaction:
        return self._open_transaction(
            self.default_access_mode, TransactionConfig(timeout=timeout, metadata=metadata)
        )

    def execute_read(self, work: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return self._execute(AccessMode.READ, work, *args, **kwargs)

    def execute_write(self, work: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return self._execute(AccessMode.WRITE, work, *args, **kwargs)

    def close(self) -> None:
        if self._closed:
            return
        try:
            if self._transaction is not None:
                self.logger.debug("Closing session with open transaction %s", self._transaction.transaction_id)
                self._transaction.close()
        finally:
            self._transaction = None
            self._closed = True

    # ------------------------------------------------------------------ #
    # Internal
    # ------------------------------------------------------------------ #
    def _execute(self, mode: AccessMode, work: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        self._check_usable()
        tx_config = getattr(work, "transaction_config", None) or TransactionConfig()
        return self.executor.run(self, work, mode, tx_config, *args, **kwargs)

    def _check_usable(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is closed.")
        if self._transaction is not None and not self._transaction.closed():
            raise SessionBusyError(
                f"Session already has an open transaction ({self._transaction.transaction_id}); "
                "commit or roll it back first."
            )

    def _open_transaction(self, mode: AccessMode, tx_config: TransactionConfig) -> Transaction:
        self._check_usable()
        bookmarks = self._bookmarks
        if self._bookmark_manager is not None:
            bookmarks = bookmarks + self._bookmark_manager.get_bookmarks()

        address = self.router.endpoint_for(mode, self.database, bookmarks)
        connection = self.pool.acquire(address)
        transaction = Transaction(
            connection,
            database=self.database,
            mode=mode,
            on_closed=self._transaction_closed,
            on_error=self._transaction_error,
            hooks=self.hooks,
            fetch_size=self.fetch_size,
        )
        try:
            transaction._begin(list(bookmarks), tx_config, self.config.impersonated_user)
        except BaseException as exc:
            self._abandon(transaction, connection, exc)
            raise
        self._transaction = transaction
        return transaction

    def _abandon(self, transaction: Transaction, connection: "Connection", error: BaseException) -> None:
        failed = is_connection_failure(error)
        if isinstance(error, GraphTxError):
            self._transaction_error(transaction, error)
        if not failed:
            try:
                connection.reset()
            except GraphTxError as exc:
                self.logger.warning("Reset of connection to %s failed: %s", connection.address, exc)
                failed = True
        self.pool.release(connection, discard=failed)

    def _transaction_closed(self, transaction: Transaction, bookmark: Optional[str]) -> Bookmarks:
        self.pool.release(transaction.connection, discard=transaction.state is TransactionState.FAILED)
        if self._transaction is transaction:
            self._transaction = None
        if bookmark:
            new_bookmarks = Bookmarks.from_raw_values([bookmark])
            self._bookmarks = self._bookmarks + new_bookmarks
            if self._bookmark_manager is not None:
                self._bookmark_manager.update_bookmarks(new_bookmarks)
        return self._bookmarks

    def _transaction_error(self, transaction: Transaction, error: BaseException) -> None:
        address = transaction.connection.address
        if isinstance(error, NotALeaderError):
            self.router.deactivate_writer(address, self.database)
        elif isinstance(error, (ServiceUnavailable, SessionExpired)):
            self.router.deactivate(address)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Session database={self.database or '<default>'} {state}>"
