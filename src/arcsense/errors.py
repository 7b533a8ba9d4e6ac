"""Custom exception classes for arcsense."""

from __future__ import annotations

from typing import Optional


class ArcSenseError(Exception):
    """Base exception for all arcsense errors."""

    pass


class ConfigurationError(ArcSenseError, ValueError):
    """Raised when a filter, technique or component is configured with invalid values.

    Always raised while constructing an object, never while processing samples.
    """

    pass


class SessionStateError(ArcSenseError, RuntimeError):
    """Raised when a session lifecycle call is not valid in the current state."""

    def __init__(self, message: str, state: Optional[object] = None):
        self.state = state
        super().__init__(message)
