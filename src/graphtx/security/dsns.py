"""Connection URI parsing and redaction utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

from ..errors import ConfigurationError

DEFAULT_PORT = 7687

ROUTING_SCHEMES = frozenset({"neo4j", "neo4j+s", "neo4j+ssc"})
DIRECT_SCHEMES = frozenset({"bolt", "bolt+s", "bolt+ssc"})


@dataclass
class DSNConfig:
    scheme: str
    username: Optional[str]
    password: Optional[str]
    host: str
    port: int
    database: Optional[str]
    path: str
    query: dict[str, str]

    @property
    def routing(self) -> bool:
        return self.scheme in ROUTING_SCHEMES

    @property
    def encrypted(self) -> bool:
        return self.scheme.endswith("+s") or self.scheme.endswith("+ssc")

    @property
    def trust_all_certificates(self) -> bool:
        return self.scheme.endswith("+ssc")

    def redacted(self) -> str:
        """
        Return the URI with credentials redacted but structure preserved.
        """

        netloc = ""
        if self.username:
            netloc += self.username
            if self.password:
                netloc += ":***"
            netloc += "@"
        netloc += f"{self.host}:{self.port}"

        query_string = urlencode(self.query) if self.query else ""

        result = f"{self.scheme}://{netloc}{self.path or ''}"
        if query_string:
            result += f"?{query_string}"
        return result


def parse_dsn(dsn: str) -> DSNConfig:
    parsed = urlparse(dsn)
    scheme = parsed.scheme.lower()
    if scheme not in ROUTING_SCHEMES | DIRECT_SCHEMES:
        raise ConfigurationError(f"Unsupported URI scheme {parsed.scheme!r} in {dsn!r}")
    if not parsed.hostname:
        raise ConfigurationError(f"URI {dsn!r} has no host")
    try:
        port = parsed.port or DEFAULT_PORT
    except ValueError as exc:
        raise ConfigurationError(f"Invalid port in URI {dsn!r}") from exc
    query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
    return DSNConfig(
        scheme=scheme,
        username=parsed.username,
        password=parsed.password,
        host=parsed.hostname,
        port=port,
        database=parsed.path.lstrip("/") or None,
        path=parsed.path or "",
        query=query,
    )

