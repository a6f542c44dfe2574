"""
Transport protocol definitions for graphtx.

A transport opens connections to database endpoints. Everything above this
module talks to the server only through :class:`Connection` and
:class:`StreamHandle`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from ..config import AccessMode, RetryConfig, parse_float, parse_int
from ..errors import ConfigurationError
from ..security.dsns import DEFAULT_PORT, DSNConfig, parse_dsn


@dataclass(frozen=True, order=True)
class Address:
    host: str
    port: int = DEFAULT_PORT

    @classmethod
    def parse(cls, value: str, default_port: int = DEFAULT_PORT) -> "Address":
        text = value.strip()
        if text.startswith("["):
            host, _, rest = text[1:].partition("]")
            port_text = rest.lstrip(":")
        elif text.count(":") == 1:
            host, _, port_text = text.partition(":")
        else:
            host, port_text = text, ""
        if not host:
            raise ConfigurationError(f"Invalid address: {value!r}")
        port = parse_int(port_text, key="port") if port_text else default_port
        return cls(host, port)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class AuthToken:
    scheme: str
    principal: str | None = None
    credentials: str | None = field(default=None, repr=False)
    realm: str | None = None


def basic_auth(user: str, password: str, realm: str | None = None) -> AuthToken:
    return AuthToken("basic", user, password, realm)


_INT_OPTIONS = ("max_connection_pool_size", "fetch_size")
_FLOAT_OPTIONS = ("connection_acquisition_timeout", "max_connection_lifetime", "connection_timeout")
_RETRY_OPTIONS = (
    "max_transaction_retry_time",
    "initial_retry_delay",
    "retry_delay_multiplier",
    "retry_delay_jitter_factor",
)


@dataclass
class ConnectionConfig:
    """
    Normalized driver configuration shared by the pool, router and transport.
    """

    url: str
    address: Address
    routing: bool = False
    auth: AuthToken | None = None
    database: str | None = None
    encrypted: bool = False
    trust_all_certificates: bool = False
    max_connection_pool_size: int = 100
    connection_acquisition_timeout: float = 60.0
    max_connection_lifetime: float = 3600.0
    connection_timeout: float = 30.0
    fetch_size: int = 1000
    user_agent: str = "graphtx"
    routing_context: dict[str, str] = field(default_factory=dict)
    retry: RetryConfig = field(default_factory=RetryConfig)
    dsn: DSNConfig | None = None
    source: str | None = None

    def __post_init__(self) -> None:
        if self.max_connection_pool_size < 1:
            raise ConfigurationError("max_connection_pool_size must be >= 1")
        if self.connection_acquisition_timeout < 0:
            raise ConfigurationError("connection_acquisition_timeout must be >= 0")
        if self.fetch_size == 0 or self.fetch_size < -1:
            raise ConfigurationError("fetch_size must be positive or -1 for all records")

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a connection config by parsing the URI string.

        Recognised query options are converted to their typed fields; any
        other option becomes part of the routing context.
        """

        parsed = parse_dsn(dsn)
        query = dict(parsed.query)

        typed: dict[str, Any] = {}
        for key in _INT_OPTIONS:
            if key in query:
                typed[key] = parse_int(query.pop(key), key=key)
        for key in _FLOAT_OPTIONS:
            if key in query:
                typed[key] = parse_float(query.pop(key), key=key)
        if "user_agent" in query:
            typed["user_agent"] = query.pop("user_agent")

        retry_values = {
            key: parse_float(query.pop(key), key=key) for key in _RETRY_OPTIONS if key in query
        }
        retry = kwargs.pop("retry", None) or RetryConfig(**retry_values)

        auth = kwargs.pop("auth", None)
        if auth is None and parsed.username:
            auth = basic_auth(parsed.username, parsed.password or "")
        elif isinstance(auth, tuple):
            auth = basic_auth(*auth)

        routing_context = dict(query)
        routing_context.update(kwargs.pop("routing_context", None) or {})

        typed.update(kwargs)
        database = typed.pop("database", parsed.database)

        return cls(
            url=dsn,
            address=Address(parsed.host, parsed.port),
            routing=parsed.routing,
            auth=auth,
            database=database,
            encrypted=parsed.encrypted,
            trust_all_certificates=parsed.trust_all_certificates,
            routing_context=routing_context,
            retry=retry,
            dsn=parsed,
            **typed,
        )

    @classmethod
    def from_env(cls, env_var: str, **kwargs: Any) -> "ConnectionConfig":
        """
        Build a config from an environment variable containing a URI.
        """

        value = os.getenv(env_var)
        if not value:
            raise ConfigurationError(f"Environment variable {env_var} is not set")
        return cls.from_dsn(value, source=env_var, **kwargs)

    def redacted_dsn(self) -> str:
        """
        Return a URI safe for logging (credentials removed).
        """

        if self.dsn:
            return self.dsn.redacted()
        return self.url

    def descriptive_label(self) -> str:
        redacted = self.redacted_dsn()
        if self.source:
            return f"{self.source} ({redacted})"
        return redacted


class StreamHandle(Protocol):
    """
    Server-side cursor for one query.
    """

    keys: Sequence[str]

    @property
    def exhausted(self) -> bool:
        """
        True once every record has been fetched or discarded.
        """

    def fetch(self, n: int) -> list[Sequence[Any]]:
        """
        Return up to ``n`` rows (``-1`` for all). Blocks while the server
        produces the next batch.
        """

    def discard(self) -> dict[str, Any]:
        """
        Drop remaining rows and return the summary metadata.
        """

    def cancel(self) -> None:
        """
        Abort the stream; a pending or later ``fetch`` must raise.
        """


class Connection(Protocol):
    """
    A single transport connection. Never shared by two transactions at once.
    """

    address: Address
    created_at: float

    @property
    def closed(self) -> bool: ...

    @property
    def defunct(self) -> bool: ...

    def begin(
        self,
        *,
        database: str | None,
        mode: AccessMode,
        bookmarks: Sequence[str],
        metadata: Mapping[str, Any] | None,
        timeout: float | None,
        impersonated_user: str | None,
    ) -> None:
        """
        Open a server transaction.
        """

    def run(self, query: str, parameters: Mapping[str, Any]) -> StreamHandle:
        """
        Send one query inside the open transaction.
        """

    def commit(self) -> str | None:
        """
        Commit and return the bookmark produced by the server.
        """

    def rollback(self) -> None:
        """
        Roll back the open transaction.
        """

    def reset(self) -> None:
        """
        Return the connection to a clean state before reuse.
        """

    def route(self, database: str | None, bookmarks: Sequence[str]) -> Mapping[str, Any]:
        """
        Fetch routing information: ``{"ttl": seconds, "servers": [{"role":
        "ROUTE"|"READ"|"WRITE", "addresses": ["host:port", ...]}], "db": name}``.
        """

    def close(self) -> None:
        """
        Close the connection. Implementations should be idempotent.
        """


class Transport(Protocol):
    def open(self, address: Address, config: ConnectionConfig) -> Connection:
        """
        Establish a connection to ``address``.
        """
