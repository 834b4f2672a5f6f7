"""DayLog error taxonomy.

Store-level failures roll back optimistic state before surfacing.
Ledger-level failures are logged by the sync worker and never surface.
"""

from __future__ import annotations


class DayLogError(Exception):
    """Base class for all DayLog errors."""


class ValidationError(DayLogError):
    """Rejected before any mutation (missing task, bad time range, ...)."""


class NameRequiredError(ValidationError):
    """A timer cannot start until the user has set a display name."""


class NotFoundError(DayLogError):
    """An entry is missing from the store."""


class ConflictError(DayLogError):
    """A concurrent actor changed shared state under us."""


class TransientBackendError(DayLogError):
    """The durable store or the spreadsheet API could not be reached."""
