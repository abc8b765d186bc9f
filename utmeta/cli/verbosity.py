"""Verbosity management for the utmeta CLI.

Maps -v / -vv / -vvv to log levels.
"""

from __future__ import annotations

import logging
from enum import IntEnum

from utmeta.models import LogLevel


class VerbosityLevel(IntEnum):
    """Verbosity levels for CLI commands."""

    NORMAL = 1  # Default: errors, warnings, info
    VERBOSE = 2  # -v
    DEBUG = 3  # -vv
    TRACE = 4  # -vvv: debug plus stack traces on failure


class VerbosityManager:
    """Manages verbosity levels and maps them to logging levels."""

    COUNT_TO_LEVEL: dict[int, VerbosityLevel] = {
        0: VerbosityLevel.NORMAL,
        1: VerbosityLevel.VERBOSE,
        2: VerbosityLevel.DEBUG,
        3: VerbosityLevel.TRACE,
    }

    LEVEL_TO_LOGGING: dict[VerbosityLevel, int] = {
        VerbosityLevel.NORMAL: logging.WARNING,
        VerbosityLevel.VERBOSE: logging.INFO,
        VerbosityLevel.DEBUG: logging.DEBUG,
        VerbosityLevel.TRACE: logging.DEBUG,
    }

    def __init__(self, verbosity_count: int = 0):
        """Initialize verbosity manager.

        Args:
            verbosity_count: Number of -v flags (clamped to 0-3)

        """
        self.verbosity_count = max(0, min(3, verbosity_count))
        self.level = self.COUNT_TO_LEVEL[self.verbosity_count]
        self.logging_level = self.LEVEL_TO_LOGGING[self.level]

    @classmethod
    def from_count(cls, count: int) -> VerbosityManager:
        """Create VerbosityManager from count."""
        return cls(count)

    @property
    def log_level(self) -> LogLevel:
        """Config log level for this verbosity."""
        return LogLevel(logging.getLevelName(self.logging_level))

    def is_verbose(self) -> bool:
        return self.level >= VerbosityLevel.VERBOSE

    def should_show_stack_trace(self) -> bool:
        return self.level == VerbosityLevel.TRACE
