"""
graphtx public package initialization.

Managed transactions with retry, explicit transactions, bookmark-based
causal chaining, routing and connection pooling for graph databases.
"""

from .bookmarks import BookmarkManager, Bookmarks  # noqa: F401
from .config import AccessMode, RetryConfig, SessionConfig, TransactionConfig  # noqa: F401
from .driver import Driver, driver  # noqa: F401
from .hooks import hooks  # noqa: F401
from .transports import Address, AuthToken, BoltTransport, ConnectionConfig, basic_auth  # noqa: F401
from .work import (  # noqa: F401
    EagerResult,
    ManagedTransaction,
    Record,
    Result,
    ResultSummary,
    Session,
    Transaction,
    TransactionState,
    unit_of_work,
)

READ_ACCESS = AccessMode.READ
WRITE_ACCESS = AccessMode.WRITE

__all__ = [
    "driver",
    "Driver",
    "Session",
    "Transaction",
    "TransactionState",
    "ManagedTransaction",
    "unit_of_work",
    "Result",
    "Record",
    "ResultSummary",
    "EagerResult",
    "Bookmarks",
    "BookmarkManager",
    "AccessMode",
    "READ_ACCESS",
    "WRITE_ACCESS",
    "RetryConfig",
    "SessionConfig",
    "TransactionConfig",
    "ConnectionConfig",
    "Address",
    "AuthToken",
    "basic_auth",
    "BoltTransport",
    "hooks",
]
