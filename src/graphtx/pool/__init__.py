"""
Connection pooling and routing.
"""

from .pool import ConnectionPool
from .routing import Router, RoutingTable

__all__ = ["ConnectionPool", "Router", "RoutingTable"]
