"""Queue models.

A queue is always in exactly one phase. Confirmation bookkeeping only exists
on the ``ConfirmationPhase`` variant, and the snapshot of a closed queue only
on ``ClosedPhase``, so a queue cannot carry stale substate fields.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from testerqueue.clock import from_epoch_millis, to_epoch_millis

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueueState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    CONFIRMATION_PERIOD = "confirmation_period"


class QueueEntry(BaseModel):
    model_config = _CAMEL

    requester_id: str
    position: int = Field(ge=1)


class OpenPhase(BaseModel):
    state: Literal[QueueState.OPEN] = QueueState.OPEN


class ClosedPhase(BaseModel):
    state: Literal[QueueState.CLOSED] = QueueState.CLOSED
    snapshot: list[QueueEntry] = Field(default_factory=list)


class ConfirmationPhase(BaseModel):
    state: Literal[QueueState.CONFIRMATION_PERIOD] = QueueState.CONFIRMATION_PERIOD
    snapshot: list[QueueEntry]
    confirmed: list[str] = Field(default_factory=list)
    deadline: datetime


QueuePhase = Annotated[
    Union[OpenPhase, ClosedPhase, ConfirmationPhase],
    Field(discriminator="state"),
]


class QueueDocument(BaseModel):
    """Flat persisted shape of a single region's queue."""

    model_config = _CAMEL

    entries: list[QueueEntry] = Field(default_factory=list)
    active_reviewers: list[str] = Field(default_factory=list)
    state: QueueState = QueueState.CLOSED
    snapshot: list[QueueEntry] = Field(default_factory=list)
    confirmed: list[str] = Field(default_factory=list)
    confirmation_deadline: int | None = None
    message_id: str | None = None
    confirmation_message_id: str | None = None
    ping_message_id: str | None = None


def renumber(entries: list[QueueEntry]) -> list[QueueEntry]:
    """Return entries with positions reassigned 1..n, preserving order."""
    return [
        QueueEntry(requester_id=entry.requester_id, position=index + 1)
        for index, entry in enumerate(entries)
    ]


class Queue(BaseModel):
    region: str
    phase: QueuePhase = Field(default_factory=ClosedPhase)
    entries: list[QueueEntry] = Field(default_factory=list)
    active_reviewers: list[str] = Field(default_factory=list)

    # Opaque presentation references owned by the transport layer
    message_id: str | None = None
    confirmation_message_id: str | None = None
    ping_message_id: str | None = None

    @property
    def state(self) -> QueueState:
        return self.phase.state

    @property
    def snapshot(self) -> list[QueueEntry]:
        if isinstance(self.phase, (ClosedPhase, ConfirmationPhase)):
            return self.phase.snapshot
        return []

    @property
    def confirmed(self) -> list[str]:
        if isinstance(self.phase, ConfirmationPhase):
            return self.phase.confirmed
        return []

    @property
    def confirmation_deadline(self) -> datetime | None:
        if isinstance(self.phase, ConfirmationPhase):
            return self.phase.deadline
        return None

    def find(self, requester_id: str) -> QueueEntry | None:
        for entry in self.entries:
            if entry.requester_id == requester_id:
                return entry
        return None

    def to_document(self) -> dict[str, Any]:
        deadline = self.confirmation_deadline
        document = QueueDocument(
            entries=self.entries,
            active_reviewers=self.active_reviewers,
            state=self.state,
            snapshot=self.snapshot,
            confirmed=self.confirmed,
            confirmation_deadline=to_epoch_millis(deadline) if deadline else None,
            message_id=self.message_id,
            confirmation_message_id=self.confirmation_message_id,
            ping_message_id=self.ping_message_id,
        )
        return document.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, region: str, data: dict[str, Any]) -> "Queue":
        document = QueueDocument.model_validate(data)
        snapshot = sorted(document.snapshot, key=lambda entry: entry.position)

        phase: OpenPhase | ClosedPhase | ConfirmationPhase
        if document.state == QueueState.CONFIRMATION_PERIOD:
            # A window without a deadline can never expire; reconcile it on the next check
            if document.confirmation_deadline is None:
                deadline = datetime.fromtimestamp(0, tz=timezone.utc)
            else:
                deadline = from_epoch_millis(document.confirmation_deadline)
            phase = ConfirmationPhase(
                snapshot=snapshot,
                confirmed=list(dict.fromkeys(document.confirmed)),
                deadline=deadline,
            )
        elif document.state == QueueState.OPEN:
            phase = OpenPhase()
        else:
            phase = ClosedPhase(snapshot=snapshot)

        ordered = sorted(document.entries, key=lambda entry: entry.position)
        return cls(
            region=region,
            phase=phase,
            entries=renumber(ordered),
            active_reviewers=list(dict.fromkeys(document.active_reviewers)),
            message_id=document.message_id,
            confirmation_message_id=document.confirmation_message_id,
            ping_message_id=document.ping_message_id,
        )
