"""Security helpers for graphtx."""

from .dsns import DSNConfig, parse_dsn
from .redaction import redact_parameters, redact_value

__all__ = ["DSNConfig", "parse_dsn", "redact_parameters", "redact_value"]
