"""
Exception hierarchy.

Problems with the *submitted spreadsheet* are never raised; they become
``Issue`` records on the Canonical Order. These exceptions cover
configuration mistakes and boundary failures between components.
"""

from typing import Optional


class IntakeError(Exception):
    """Base class for all intake exceptions."""


class ConfigError(IntakeError):
    """Invalid or missing configuration (reviewer pool, settings)."""


class WeightTableError(IntakeError):
    """A weight table could not be loaded or is not approved for runtime use."""


class ReviewerError(IntakeError):
    """A reviewer backend failed."""


class ReviewerOutputError(ReviewerError):
    """A reviewer response violated the response schema or the candidate set."""

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail or reason
        super().__init__(f"{reason}: {self.detail}")


class SelectionError(IntakeError):
    """The reviewer subset could not be drawn from the configured pool."""


class CalibrationError(IntakeError):
    """Calibration corpus or candidate weight table is invalid."""
