"""
Units of work: sessions, transactions, managed retries and result streams.
"""

from .executor import ManagedTransactionExecutor, RetryPolicy, unit_of_work
from .result import EagerResult, Record, Result, ResultSummary
from .session import Session
from .transaction import ManagedTransaction, Transaction, TransactionState

__all__ = [
    "Session",
    "Transaction",
    "TransactionState",
    "ManagedTransaction",
    "ManagedTransactionExecutor",
    "RetryPolicy",
    "unit_of_work",
    "Result",
    "Record",
    "ResultSummary",
    "EagerResult",
]
