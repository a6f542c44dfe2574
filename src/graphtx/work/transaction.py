"""
Explicit and managed transactions.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, List, Mapping, Optional, Sequence
from uuid import uuid4

from ..bookmarks import Bookmarks
from ..config import AccessMode, TransactionConfig
from ..errors import (
    DatabaseError,
    GraphTxError,
    InvalidTransactionStateError,
    is_connection_failure,
)
from ..hooks import TRANSACTION_BEGUN, TRANSACTION_COMMITTED, TRANSACTION_ROLLED_BACK, HookDispatcher
from ..security.redaction import redact_parameters, redact_value
from ..transports.base import Connection
from ..utils import get_logger
from .result import Result

if TYPE_CHECKING:
    ClosedCallback = Callable[["Transaction", Optional[str]], Bookmarks]
    ErrorCallback = Callable[["Transaction", BaseException], None]


class TransactionState(Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled back"
    FAILED = "failed"


class Transaction:
    """
    Atomic unit of work bound to one borrowed connection.

    ``OPEN`` moves to ``COMMITTED`` or ``ROLLED_BACK`` on request, or to
    ``FAILED`` when the connection breaks. Every state but ``OPEN`` is
    terminal. Leaving the ``with`` block commits on success and rolls back
    when an exception propagates.
    """

    def __init__(
        self,
        connection: Connection,
        *,
        database: str | None,
        mode: AccessMode,
        on_closed: "ClosedCallback",
        on_error: "ErrorCallback",
        hooks: HookDispatcher,
        fetch_size: int = 1000,
    ) -> None:
        self.transaction_id = f"txn_{uuid4().hex[:8]}"
        self.connection = connection
        self.database = database
        self.mode = mode
        self.fetch_size = fetch_size
        self._on_closed = on_closed
        self._on_error = on_error
        self.hooks = hooks
        self._state = TransactionState.OPEN
        self._results: List[Result] = []
        self._error: BaseException | None = None
        self._finished = False
        self.logger = get_logger("work.transaction")

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self._state is TransactionState.OPEN:
                if exc_type is None:
                    self.commit()
                else:
                    self._rollback_and_finish(quiet=True)
        finally:
            self.close()

    # ------------------------------------------------------------------ #
    @property
    def state(self) -> TransactionState:
        return self._state

    def closed(self) -> bool:
        return self._state is not TransactionState.OPEN

    def run(self, query: str, parameters: Mapping[str, Any] | None = None, **kwparameters: Any) -> Result:
        self._check_open()
        params = dict(parameters or {})
        params.update(kwparameters)
        self.logger.debug(
            "Transaction %s running query",
            self.transaction_id,
            extra={"query": query, "parameters": redact_parameters(params)},
        )
        try:
            handle = self.connection.run(query, params)
        except BaseException as exc:
            self._handle_error(exc)
            raise
        result = Result(handle, query, params, fetch_size=self.fetch_size, on_error=self._handle_error)
        self._results.append(result)
        return result

    def commit(self) -> Bookmarks:
        """
        Commit and return the owning session's bookmarks.
        """

        self._check_open()
        try:
            for result in self._results:
                result._discard_remaining()
        except BaseException as exc:
            self._handle_error(exc)
            # The server transaction is still open unless the connection broke.
            if self._state is TransactionState.OPEN:
                self._rollback_and_finish(quiet=True)
            raise
        try:
            bookmark = self.connection.commit()
        except BaseException as exc:
            self._handle_error(exc)
            if self._state is TransactionState.OPEN:
                self._state = TransactionState.ROLLED_BACK
            self._finish(None)
            raise
        self._state = TransactionState.COMMITTED
        self.logger.debug("Transaction %s committed", self.transaction_id)
        return self._finish(bookmark)

    def rollback(self) -> None:
        if self._state is not TransactionState.OPEN:
            raise InvalidTransactionStateError(
                f"Cannot roll back transaction {self.transaction_id}: it is {self._state.value}"
            )
        self._rollback_and_finish(quiet=False)

    def close(self) -> None:
        """
        Roll back unless already committed or rolled back. Rollback failures
        are logged, never raised.
        """

        if self._state is TransactionState.OPEN:
            self._rollback_and_finish(quiet=True)

    # ------------------------------------------------------------------ #
    # Internal lifecycle
    # ------------------------------------------------------------------ #
    def _begin(self, bookmarks: Sequence[str], config: TransactionConfig, impersonated_user: str | None) -> None:
        self.connection.begin(
            database=self.database,
            mode=self.mode,
            bookmarks=list(bookmarks),
            metadata=config.metadata,
            timeout=config.timeout,
            impersonated_user=impersonated_user,
        )
        self.logger.debug(
            "Transaction %s begun on %s (mode=%s, bookmarks=%d, metadata=%s)",
            self.transaction_id,
            self.connection.address,
            self.mode.name,
            len(bookmarks),
            redact_value(dict(config.metadata or {})),
        )
        self.hooks.fire(TRANSACTION_BEGUN, self.database, transaction=self)

    def _check_open(self) -> None:
        if self._state is not TransactionState.OPEN:
            raise InvalidTransactionStateError(
                f"Transaction {self.transaction_id} is {self._state.value}; no further queries may be issued"
            )
        if self._error is not None:
            raise InvalidTransactionStateError(
                f"Transaction {self.transaction_id} failed due to an earlier error and must be rolled back"
            ) from self._error

    def _handle_error(self, error: BaseException) -> None:
        if not isinstance(error, GraphTxError) or self._finished or error is self._error:
            return
        if is_connection_failure(error):
            if self._state is TransactionState.OPEN:
                self._state = TransactionState.FAILED
            self._on_error(self, error)
            self.logger.warning(
                "Transaction %s failed: connection to %s broke (%s)",
                self.transaction_id,
                self.connection.address,
                error,
            )
            self._finish(None)
        elif isinstance(error, DatabaseError):
            self._error = error
            self._on_error(self, error)

    def _rollback_and_finish(self, *, quiet: bool) -> None:
        for result in self._results:
            result._invalidate(f"Transaction {self.transaction_id} rolled back")
        try:
            if not self.connection.defunct:
                self.connection.rollback()
        except GraphTxError as exc:
            if is_connection_failure(exc):
                self._state = TransactionState.FAILED
                self._on_error(self, exc)
            if not quiet:
                raise
            self.logger.warning("Rollback of transaction %s failed: %s", self.transaction_id, exc)
        finally:
            if self._state is TransactionState.OPEN:
                self._state = TransactionState.ROLLED_BACK
            self.logger.debug("Transaction %s %s", self.transaction_id, self._state.value)
            self._finish(None)

    def _finish(self, bookmark: Optional[str]) -> Bookmarks:
        if self._finished:
            return Bookmarks()
        self._finished = True
        for result in self._results:
            result._invalidate(f"Transaction {self.transaction_id} is {self._state.value}")
        self._results.clear()
        bookmarks = self._on_closed(self, bookmark)
        if self._state is TransactionState.COMMITTED:
            self.hooks.fire(TRANSACTION_COMMITTED, self.database, transaction=self, bookmark=bookmark)
        else:
            self.hooks.fire(TRANSACTION_ROLLED_BACK, self.database, transaction=self, state=self._state)
        return bookmarks

    def __repr__(self) -> str:
        return f"<Transaction {self.transaction_id} {self._state.value}>"


class ManagedTransaction:
    """
    Transaction handle given to work functions; commit and rollback belong
    to the executor.
    """

    def __init__(self, transaction: Transaction) -> None:
        self._transaction = transaction

    @property
    def transaction_id(self) -> str:
        return self._transaction.transaction_id

    @property
    def database(self) -> str | None:
        return self._transaction.database

    def run(self, query: str, parameters: Mapping[str, Any] | None = None, **kwparameters: Any) -> Result:
        return self._transaction.run(query, parameters, **kwparameters)
