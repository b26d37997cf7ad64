"""Common utilities for QuorumGate."""

from .logger import setup_logger, get_logger, configure_from_settings

__all__ = ["configure_from_settings", "get_logger", "setup_logger"]
