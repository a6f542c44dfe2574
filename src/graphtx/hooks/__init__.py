"""
Lifecycle hooks registry for graphtx transactions.
"""

from .dispatcher import (
    TRANSACTION_BEGUN,
    TRANSACTION_COMMITTED,
    TRANSACTION_RETRY,
    TRANSACTION_ROLLED_BACK,
    HookDispatcher,
    HookEvent,
    hooks,
)

__all__ = [
    "HookDispatcher",
    "HookEvent",
    "hooks",
    "TRANSACTION_BEGUN",
    "TRANSACTION_COMMITTED",
    "TRANSACTION_ROLLED_BACK",
    "TRANSACTION_RETRY",
]
