"""Error taxonomy for queue, waitlist and ticket operations.

Every rejection leaves state untouched. Persistence failures are the
exception: they are logged by the stores and never surface to callers.
"""

from __future__ import annotations

import enum
from datetime import datetime


class RejectReason(str, enum.Enum):
    QUEUE_NOT_OPEN = "queue_not_open"
    QUEUE_FULL = "queue_full"
    ALREADY_QUEUED = "already_queued"
    REVIEWER_CONFLICT = "reviewer_conflict"
    NOT_A_MEMBER = "not_a_member"
    ALREADY_MEMBER = "already_member"
    NOT_IN_CONFIRMATION = "not_in_confirmation"
    NOT_PREVIOUS_MEMBER = "not_previous_member"
    ALREADY_CONFIRMED = "already_confirmed"
    TICKET_OPEN = "ticket_open"
    NOTHING_TO_CONFIRM = "nothing_to_confirm"


class QueueError(Exception):
    """Base class for all errors raised by this package."""


class QueueValidationError(QueueError):
    """Unknown region or malformed input."""


class ConflictError(QueueError):
    """The operation conflicts with current state and was not applied."""

    def __init__(self, reason: RejectReason, message: str | None = None):
        super().__init__(message or reason.value)
        self.reason = reason


class CooldownActive(QueueError):
    """Raised when a requester tries to rejoin the waitlist during a cooldown."""

    def __init__(self, days_remaining: int, expires_at: datetime):
        super().__init__(f"On cooldown for {days_remaining} more day(s)")
        self.days_remaining = days_remaining
        self.expires_at = expires_at


class NotFoundError(QueueError):
    """Unknown ticket or requester."""


class PermissionDenied(QueueError):
    """The acting user may not perform this ticket action."""


class PersistenceError(QueueError):
    """A snapshot could not be written or read."""


class FatalStartupError(QueueError):
    """Mandatory configuration is missing or invalid."""
