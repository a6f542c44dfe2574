"""
Session, transaction and retry configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .bookmarks import Bookmarks
from .errors import ConfigurationError

if TYPE_CHECKING:
    from .bookmarks import BookmarkManager


class AccessMode(str, Enum):
    """Routing hint for a transaction. Not an authorization boundary."""

    READ = "r"
    WRITE = "w"


def parse_float(value: str, *, key: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid float value for '{key}': {value!r}") from exc


def parse_int(value: str, *, key: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid integer value for '{key}': {value!r}") from exc


def parse_access_mode(value: AccessMode | str) -> AccessMode:
    if isinstance(value, AccessMode):
        return value
    normalized = str(value).strip().lower()
    if normalized in ("r", "read"):
        return AccessMode.READ
    if normalized in ("w", "write"):
        return AccessMode.WRITE
    raise ConfigurationError(f"Invalid access mode: {value!r}")


@dataclass(frozen=True)
class RetryConfig:
    """
    Backoff settings for managed transactions.

    Defaults match the official neo4j drivers: 30 seconds of total retry time,
    starting at one second and doubling with 20% jitter.
    """

    max_transaction_retry_time: float = 30.0
    initial_retry_delay: float = 1.0
    retry_delay_multiplier: float = 2.0
    retry_delay_jitter_factor: float = 0.2

    ENV_PREFIX = "GRAPHTX_"

    def __post_init__(self) -> None:
        if self.max_transaction_retry_time < 0:
            raise ConfigurationError("max_transaction_retry_time must be >= 0")
        if self.initial_retry_delay < 0:
            raise ConfigurationError("initial_retry_delay must be >= 0")
        if self.retry_delay_multiplier < 1:
            raise ConfigurationError("retry_delay_multiplier must be >= 1")
        if not 0 <= self.retry_delay_jitter_factor < 1:
            raise ConfigurationError("retry_delay_jitter_factor must be in [0, 1)")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "RetryConfig":
        """
        Build a config from ``GRAPHTX_*`` environment variables; keyword
        arguments take precedence.
        """

        env = os.environ if environ is None else environ
        values: dict[str, float] = {}
        for name in (
            "max_transaction_retry_time",
            "initial_retry_delay",
            "retry_delay_multiplier",
            "retry_delay_jitter_factor",
        ):
            key = f"{cls.ENV_PREFIX}{name.upper()}"
            if key in env:
                values[name] = parse_float(env[key], key=key)
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class TransactionConfig:
    """
    Per-transaction options sent to the server.

    ``timeout`` is the server-side deadline in seconds; ``metadata`` is
    attached to the transaction for auditing.
    """

    timeout: float | None = None
    metadata: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout < 0:
            raise ConfigurationError("Transaction timeout must be >= 0")
        if self.metadata is not None:
            if not isinstance(self.metadata, Mapping):
                raise ConfigurationError("Transaction metadata must be a mapping")
            for key in self.metadata:
                if not isinstance(key, str):
                    raise ConfigurationError("Transaction metadata keys must be strings")


@dataclass(frozen=True)
class SessionConfig:
    database: str | None = None
    default_access_mode: AccessMode = AccessMode.WRITE
    bookmarks: Bookmarks | None = None
    impersonated_user: str | None = None
    fetch_size: int | None = None
    bookmark_manager: "BookmarkManager | None" = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "default_access_mode", parse_access_mode(self.default_access_mode))
        if self.bookmarks is not None and not isinstance(self.bookmarks, Bookmarks):
            object.__setattr__(self, "bookmarks", Bookmarks.from_raw_values(self.bookmarks))
        if self.fetch_size is not None and (self.fetch_size == 0 or self.fetch_size < -1):
            raise ConfigurationError("fetch_size must be positive or -1 for all records")
