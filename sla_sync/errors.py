"""Exception types raised across the pipeline."""

from __future__ import annotations


class SlaSyncError(RuntimeError):
    """Base class for pipeline errors."""


class ConfigError(SlaSyncError):
    """Raised when configuration cannot be loaded."""


class DatabaseUnavailableError(SlaSyncError):
    """Raised when the master or analytics database cannot be reached."""

    def __init__(self, label: str, reason: str) -> None:
        super().__init__(f"{label} database unavailable: {reason}")
        self.label = label
        self.reason = reason


class InvalidIdentifierError(SlaSyncError):
    """Raised when a table name does not follow the naming conventions."""


class InvalidTatConfigError(SlaSyncError):
    """Raised when TAT values cannot be used for SLA arithmetic."""


class JobError(SlaSyncError):
    """Raised when a single brand/country job cannot continue."""
