"""
Error hierarchy for graphtx.

Errors fall into four groups: client usage mistakes, failures reported by the
database server, connectivity failures and resource exhaustion. Only the
managed-transaction executor looks at :meth:`GraphTxError.is_retryable`;
every other component propagates errors unchanged.
"""

from __future__ import annotations

from typing import Sequence


class GraphTxError(RuntimeError):
    """Base error for every failure raised by graphtx."""

    def is_retryable(self) -> bool:
        return False


# ---------------------------------------------------------------------- #
# Client usage
# ---------------------------------------------------------------------- #
class ClientUsageError(GraphTxError):
    """Raised for programming errors; never retried."""


class ConfigurationError(ClientUsageError):
    """Raised when configuration values or required dependencies are invalid."""


class SessionBusyError(ClientUsageError):
    """Raised when a session already holds an open transaction."""


class SessionClosedError(ClientUsageError):
    """Raised when a closed session is used."""


class DriverClosedError(ClientUsageError):
    """Raised when a closed driver or pool is used."""


class InvalidTransactionStateError(ClientUsageError):
    """Raised when a transaction is used outside of the OPEN state."""


class ResultConsumedError(ClientUsageError):
    """Raised when a result is read after it was invalidated."""


class ResultNotSingleError(ClientUsageError):
    """Raised by ``Result.single(strict=True)`` when not exactly one record remains."""


class ResultEscapedTransactionError(ClientUsageError):
    """Raised when a work function returns a live result."""


# ---------------------------------------------------------------------- #
# Server reported
# ---------------------------------------------------------------------- #
_NOT_A_LEADER_CODES = frozenset(
    {
        "Neo.ClientError.Cluster.NotALeader",
        "Neo.ClientError.General.ForbiddenOnReadOnlyDatabase",
    }
)

# Transient by classification but caused by the client terminating work.
_CLIENT_TERMINATED_CODES = frozenset(
    {
        "Neo.TransientError.Transaction.Terminated",
        "Neo.TransientError.Transaction.LockClientStopped",
    }
)


class DatabaseError(GraphTxError):
    """
    Failure reported by the server, identified by a status code of the form
    ``Neo.<Classification>.<Category>.<Title>``.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{{code: {code}}} {message}" if code else message)

    def _part(self, index: int) -> str | None:
        if not self.code:
            return None
        parts = self.code.split(".")
        if len(parts) != 4:
            return None
        return parts[index]

    @property
    def classification(self) -> str | None:
        return self._part(1)

    @property
    def category(self) -> str | None:
        return self._part(2)

    @property
    def title(self) -> str | None:
        return self._part(3)

    @classmethod
    def from_code(cls, code: str | None, message: str) -> "DatabaseError":
        """
        Build the most specific error class for a server status code.
        """

        if not code:
            return DatabaseError(message, code)
        if code in _CLIENT_TERMINATED_CODES:
            return ClientError(message, code)
        if code in _NOT_A_LEADER_CODES:
            return NotALeaderError(message, code)
        if code == "Neo.ClientError.Statement.SyntaxError":
            return CypherSyntaxError(message, code)
        if code == "Neo.ClientError.Schema.ConstraintValidationFailed":
            return ConstraintError(message, code)
        if code.startswith("Neo.ClientError.Security."):
            return AuthError(message, code)
        if code.startswith("Neo.ClientError."):
            return ClientError(message, code)
        if code.startswith("Neo.TransientError."):
            return TransientError(message, code)
        return DatabaseError(message, code)


class ClientError(DatabaseError):
    """The server rejected the request because of something the client sent."""


class CypherSyntaxError(ClientError):
    pass


class ConstraintError(ClientError):
    pass


class AuthError(ClientError):
    pass


class NotALeaderError(ClientError):
    """A write reached a server that is no longer the leader."""

    def is_retryable(self) -> bool:
        return True


class TransientError(DatabaseError):
    """Temporary server condition such as a deadlock or leader election."""

    def is_retryable(self) -> bool:
        return True


# ---------------------------------------------------------------------- #
# Connectivity and resources
# ---------------------------------------------------------------------- #
class DriverError(GraphTxError):
    """Failure raised on the client side of the transport."""


class ServiceUnavailable(DriverError):
    """No server could be reached, or a connection broke mid-flight."""

    def is_retryable(self) -> bool:
        return True


class SessionExpired(DriverError):
    """The server serving the transaction is no longer usable for its mode."""

    def is_retryable(self) -> bool:
        return True


class IncompleteCommitError(DriverError):
    """The connection broke during commit; the outcome is unknown."""


class PoolTimeoutError(DriverError):
    """No connection became available before the acquisition timeout."""


class TransactionRetryTimeoutError(ServiceUnavailable):
    """
    The retry budget of a managed transaction was spent.

    ``errors`` holds every retryable error seen, oldest first.
    """

    def __init__(self, message: str, errors: Sequence[GraphTxError], attempts: int) -> None:
        super().__init__(message)
        self.errors = list(errors)
        self.attempts = attempts

    def is_retryable(self) -> bool:
        return False


def is_connection_failure(error: BaseException) -> bool:
    """Errors after which the connection that raised them must not be reused."""

    return isinstance(error, (ServiceUnavailable, SessionExpired, IncompleteCommitError))
