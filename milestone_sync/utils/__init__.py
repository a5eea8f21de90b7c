# milestone-sync Utilities
"""Logging helpers for milestone-sync."""

from .logging_config import setup_logging, log_with_fields

__all__ = ["setup_logging", "log_with_fields"]
