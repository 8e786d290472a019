from testerqueue.models.queue import (
    ClosedPhase,
    ConfirmationPhase,
    OpenPhase,
    Queue,
    QueueDocument,
    QueueEntry,
    QueueState,
)
from testerqueue.models.ticket import PromotionHandoff, Ticket
from testerqueue.models.waitlist import WaitlistDocument, WaitlistMembership

__all__ = [
    "Queue",
    "QueueState",
    "QueueEntry",
    "QueueDocument",
    "OpenPhase",
    "ClosedPhase",
    "ConfirmationPhase",
    "Ticket",
    "PromotionHandoff",
    "WaitlistMembership",
    "WaitlistDocument",
]
