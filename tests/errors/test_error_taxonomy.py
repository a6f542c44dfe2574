import pytest

from graphtx.errors import (
    AuthError,
    ClientError,
    ClientUsageError,
    ConstraintError,
    CypherSyntaxError,
    DatabaseError,
    GraphTxError,
    IncompleteCommitError,
    NotALeaderError,
    PoolTimeoutError,
    ServiceUnavailable,
    SessionBusyError,
    SessionExpired,
    TransactionRetryTimeoutError,
    TransientError,
    is_connection_failure,
)


@pytest.mark.parametrize(
    "code, expected, retryable",
    [
        ("Neo.TransientError.Transaction.DeadlockDetected", TransientError, True),
        ("Neo.TransientError.Transaction.Terminated", ClientError, False),
        ("Neo.TransientError.Transaction.LockClientStopped", ClientError, False),
        ("Neo.ClientError.Cluster.NotALeader", NotALeaderError, True),
        ("Neo.ClientError.General.ForbiddenOnReadOnlyDatabase", NotALeaderError, True),
        ("Neo.ClientError.Statement.SyntaxError", CypherSyntaxError, False),
        ("Neo.ClientError.Schema.ConstraintValidationFailed", ConstraintError, False),
        ("Neo.ClientError.Security.Unauthorized", AuthError, False),
        ("Neo.ClientError.Statement.TypeError", ClientError, False),
        ("Neo.DatabaseError.General.UnknownError", DatabaseError, False),
        (None, DatabaseError, False),
    ],
)
def test_from_code_classification(code, expected, retryable):
    error = DatabaseError.from_code(code, "message")
    assert type(error) is expected
    assert error.is_retryable() is retryable
    assert error.message == "message"


def test_code_parts():
    error = DatabaseError.from_code("Neo.ClientError.Statement.SyntaxError", "bad")
    assert error.classification == "ClientError"
    assert error.category == "Statement"
    assert error.title == "SyntaxError"
    assert "Neo.ClientError.Statement.SyntaxError" in str(error)
    assert DatabaseError("plain").classification is None


def test_connectivity_errors():
    assert ServiceUnavailable("x").is_retryable()
    assert SessionExpired("x").is_retryable()
    assert not IncompleteCommitError("x").is_retryable()
    assert not PoolTimeoutError("x").is_retryable()
    assert is_connection_failure(IncompleteCommitError("x"))
    assert not is_connection_failure(PoolTimeoutError("x"))


def test_client_usage_errors_are_terminal():
    error = SessionBusyError("busy")
    assert isinstance(error, ClientUsageError)
    assert isinstance(error, GraphTxError)
    assert isinstance(error, RuntimeError)
    assert not error.is_retryable()


def test_retry_timeout_error_carries_history():
    errors = [TransientError("one"), ServiceUnavailable("two")]
    error = TransactionRetryTimeoutError("gave up", errors, 2)
    assert error.errors == errors
    assert error.attempts == 2
    assert not error.is_retryable()
