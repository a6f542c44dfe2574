"""
Transport interfaces and implementations.
"""

from .base import (
    Address,
    AuthToken,
    Connection,
    ConnectionConfig,
    StreamHandle,
    Transport,
    basic_auth,
)
from .bolt import BoltTransport

__all__ = [
    "Address",
    "AuthToken",
    "Connection",
    "ConnectionConfig",
    "StreamHandle",
    "Transport",
    "basic_auth",
    "BoltTransport",
]
