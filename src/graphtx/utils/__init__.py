"""
Utility helpers shared across graphtx packages.
"""

from .logging import configure_logging, get_logger, set_correlation_id, time_call

__all__ = ["configure_logging", "get_logger", "set_correlation_id", "time_call"]
