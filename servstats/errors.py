"""Exception types raised by servstats.

Recording calls never raise; these are only surfaced at boot time (configuration
loading) or for programmer errors caught at construction time.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ServstatsError(Exception):
    """Base class for all servstats errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        return f"{self.message} (details: {self.details})"


class ConfigError(ServstatsError):
    """Configuration could not be loaded or is inconsistent."""


class ValidationError(ServstatsError):
    """A configuration section failed validation."""


class UnknownCategoryError(ServstatsError):
    """A latency category or histogram name outside the predefined set was used."""
