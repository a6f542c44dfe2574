"""
Managed transactions: run a unit of work, commit it, and retry transient
failures with exponential backoff.
"""

from __future__ import annotations

import functools
import random
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from ..config import AccessMode, RetryConfig, TransactionConfig
from ..errors import GraphTxError, ResultEscapedTransactionError, TransactionRetryTimeoutError
from ..hooks import TRANSACTION_RETRY, HookDispatcher
from ..utils import get_logger
from .result import Result
from .transaction import ManagedTransaction

if TYPE_CHECKING:
    from .session import Session

Work = Callable[..., Any]


class RetryPolicy:
    """
    Exponential backoff with symmetric jitter.
    """

    def __init__(self, config: Optional[RetryConfig] = None, *, random: Callable[[], float] = random.random) -> None:
        self.config = config or RetryConfig()
        self._random = random

    @property
    def max_retry_time(self) -> float:
        return self.config.max_transaction_retry_time

    def delays(self) -> Iterator[float]:
        delay = self.config.initial_retry_delay
        factor = self.config.retry_delay_jitter_factor
        while True:
            jitter = delay * factor
            yield delay - jitter + 2 * jitter * self._random()
            delay *= self.config.retry_delay_multiplier


def _escaped_result(value: Any) -> bool:
    if isinstance(value, Result):
        return True
    if isinstance(value, Mapping):
        members = value.values()
    elif isinstance(value, (list, tuple, set, frozenset)):
        members = value
    else:
        return False
    return any(isinstance(member, Result) for member in members)


class ManagedTransactionExecutor:
    """
    Runs work functions inside fresh transactions until one commits.

    Only errors reporting ``is_retryable()`` are retried; everything else,
    including exceptions raised by the work function itself, propagates
    after the attempt has been rolled back.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        hooks: HookDispatcher,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy
        self.hooks = hooks
        self._sleep = sleep
        self._clock = clock
        self.logger = get_logger("work.executor")

    def run(
        self,
        session: "Session",
        work: Work,
        access_mode: AccessMode,
        tx_config: TransactionConfig,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        errors: List[GraphTxError] = []
        delays = self.policy.delays()
        started = self._clock()
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._attempt(session, work, access_mode, tx_config, args, kwargs)
            except GraphTxError as exc:
                if not exc.is_retryable():
                    raise
                errors.append(exc)
                delay = next(delays)
                elapsed = self._clock() - started
                if elapsed + delay >= self.policy.max_retry_time:
                    raise TransactionRetryTimeoutError(
                        f"Transaction failed after {attempt} attempt(s) in {elapsed:.2f}s: {exc}",
                        errors,
                        attempt,
                    ) from exc
                self.logger.warning(
                    "Transaction attempt %d failed, retrying in %.2fs: %s",
                    attempt,
                    delay,
                    exc,
                )
                self.hooks.fire(
                    TRANSACTION_RETRY,
                    session.database,
                    session=session,
                    attempt=attempt,
                    delay=delay,
                    error=exc,
                )
                self._sleep(delay)

    def _attempt(
        self,
        session: "Session",
        work: Work,
        access_mode: AccessMode,
        tx_config: TransactionConfig,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
    ) -> Any:
        transaction = session._open_transaction(access_mode, tx_config)
        try:
            value = work(ManagedTransaction(transaction), *args, **kwargs)
            if _escaped_result(value):
                raise ResultEscapedTransactionError(
                    "A Result was returned from a managed transaction. Consume it inside the work "
                    "function, for example with list(result) or result.data()."
                )
            transaction.commit()
            return value
        finally:
            transaction.close()


def unit_of_work(metadata: Optional[Mapping[str, Any]] = None, timeout: Optional[float] = None) -> Callable[[Work], Work]:
    """
    Attach transaction metadata and a server-side timeout to a work function.

        @unit_of_work(timeout=5, metadata={"app": "billing"})
        def charge(tx, account_id):
            ...
    """

    config = TransactionConfig(timeout=timeout, metadata=metadata)

    def decorator(func: Work) -> Work:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return func(*args, **kwargs)

        wrapper.transaction_config = config  # type: ignore[attr-defined]
        return wrapper

    return decorator
