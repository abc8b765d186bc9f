"""Shared utilities and infrastructure.

This module contains common utilities used throughout the application.
"""

from __future__ import annotations

from utmeta.utils.exceptions import (
    BencodeError,
    ConfigurationError,
    NetworkError,
    UTMetaError,
    ValidationError,
)
from utmeta.utils.logging_config import get_logger, setup_logging

__all__ = [
    "BencodeError",
    "ConfigurationError",
    "NetworkError",
    "UTMetaError",
    "ValidationError",
    "get_logger",
    "setup_logging",
]
