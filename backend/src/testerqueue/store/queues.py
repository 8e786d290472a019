"""Per-region queue state.

Owns the region -> Queue mapping, enforces dense positions and the
requester/reviewer invariants, and drives the closed / open /
confirmation-period lifecycle.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Iterable

from testerqueue.api.events import EventBus, EventType
from testerqueue.clock import Clock, utc_now
from testerqueue.errors import ConflictError, QueueValidationError, RejectReason
from testerqueue.infra.persistence import PersistentStore, SnapshotFile
from testerqueue.models.queue import (
    ClosedPhase,
    ConfirmationPhase,
    OpenPhase,
    Queue,
    QueueEntry,
    QueuePhase,
    QueueState,
    renumber,
)
from testerqueue.store.confirmation import ConfirmationCoordinator

logger = logging.getLogger(__name__)

REFERENCE_FIELDS = ("message_id", "confirmation_message_id", "ping_message_id")


class QueueStore(PersistentStore):
    """All regional queues, persisted as one snapshot document."""

    FILENAME = "queue-data.json"

    def __init__(
        self,
        regions: Iterable[str],
        snapshot: SnapshotFile,
        max_queue_size: int = 20,
        grace_period: timedelta = timedelta(minutes=5),
        clock: Clock = utc_now,
        events: EventBus | None = None,
        debounce_seconds: float = 2.0,
    ):
        super().__init__(snapshot, clock=clock, debounce_seconds=debounce_seconds)
        self.regions = list(regions)
        self.max_queue_size = max_queue_size
        self.events = events or EventBus()
        self._queues: dict[str, Queue] = {}
        self.confirmations = ConfirmationCoordinator(self, grace_period, clock)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def get_queue(self, region: str) -> Queue:
        """Return the queue for a region, creating a closed one on first use."""
        if region not in self.regions:
            raise QueueValidationError(f"Unknown region: {region!r}")
        queue = self._queues.get(region)
        if queue is None:
            queue = Queue(region=region)
            self._queues[region] = queue
        return queue

    def region_of(self, requester_id: str) -> str | None:
        """Region whose active queue holds this requester, if any."""
        for region, queue in self._queues.items():
            if queue.find(requester_id) is not None:
                return region
        return None

    # ------------------------------------------------------------------ #
    # Requester operations
    # ------------------------------------------------------------------ #

    def join(self, region: str, requester_id: str) -> QueueEntry:
        """Append a requester to an open queue."""
        queue = self.get_queue(region)
        if queue.state != QueueState.OPEN:
            raise ConflictError(RejectReason.QUEUE_NOT_OPEN, f"The {region} queue is not open")
        if self.region_of(requester_id) is not None:
            raise ConflictError(RejectReason.ALREADY_QUEUED, f"{requester_id} is already queued")
        if requester_id in queue.active_reviewers:
            raise ConflictError(
                RejectReason.REVIEWER_CONFLICT,
                f"{requester_id} is an active reviewer in {region}",
            )
        if len(queue.entries) >= self.max_queue_size:
            raise ConflictError(RejectReason.QUEUE_FULL, f"The {region} queue is full")

        entry = QueueEntry(requester_id=requester_id, position=len(queue.entries) + 1)
        queue.entries.append(entry)
        logger.info(f"{requester_id} joined {region} at position {entry.position}")
        self.touch()
        return entry

    def leave(self, region: str, requester_id: str) -> bool:
        """Remove a requester from any position. Returns True if removed."""
        queue = self.get_queue(region)
        remaining = [entry for entry in queue.entries if entry.requester_id != requester_id]
        if len(remaining) == len(queue.entries):
            return False
        queue.entries = renumber(remaining)
        self.touch()
        return True

    def peek_head(self, region: str) -> QueueEntry | None:
        queue = self.get_queue(region)
        return queue.entries[0] if queue.entries else None

    def pop_head(self, region: str) -> QueueEntry | None:
        queue = self.get_queue(region)
        if not queue.entries:
            return None
        head = queue.entries[0]
        queue.entries = renumber(queue.entries[1:])
        self.touch()
        return head

    def withdraw(self, requester_id: str) -> list[str]:
        """Remove a requester from every region's entries and pending snapshots."""
        touched = []
        for region, queue in self._queues.items():
            changed = False
            if queue.find(requester_id) is not None:
                queue.entries = renumber(
                    [entry for entry in queue.entries if entry.requester_id != requester_id]
                )
                changed = True
            if isinstance(queue.phase, (ClosedPhase, ConfirmationPhase)):
                kept = [entry for entry in queue.phase.snapshot if entry.requester_id != requester_id]
                if len(kept) != len(queue.phase.snapshot):
                    queue.phase.snapshot = kept
                    changed = True
            if isinstance(queue.phase, ConfirmationPhase) and requester_id in queue.phase.confirmed:
                queue.phase.confirmed.remove(requester_id)
                changed = True
            if changed:
                touched.append(region)
        if touched:
            self.mark_dirty()
        return touched

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def transition(self, queue: Queue, phase: QueuePhase) -> None:
        """Swap the queue's phase and announce a state change."""
        previous = queue.state
        queue.phase = phase
        if previous != phase.state:
            logger.info(f"{queue.region} queue: {previous.value} -> {phase.state.value}")
            self.events.publish(
                queue.region,
                EventType.QUEUE_STATE_CHANGED,
                {"state": phase.state.value, "previous": previous.value},
            )

    def close(self, region: str) -> None:
        """Close a queue, moving its entries into the reopen snapshot."""
        queue = self.get_queue(region)
        if queue.state == QueueState.OPEN:
            snapshot = [entry.model_copy() for entry in queue.entries]
        else:
            # Entries are empty outside Open; keep the claims still waiting on a reopen
            snapshot = list(queue.snapshot)
        if isinstance(queue.phase, ConfirmationPhase):
            logger.warning(
                f"{region} lost all reviewers during its confirmation period; "
                f"{len(snapshot)} pending member(s) carried to the next reopen"
            )
            queue.confirmation_message_id = None

        queue.entries = []
        self.transition(queue, ClosedPhase(snapshot=snapshot))
        self.mark_dirty()
        self.flush(force=True)

    def activate_reviewer(self, region: str, reviewer_id: str) -> QueueState:
        """Mark a reviewer active, reopening the queue if it was closed."""
        queue = self.get_queue(region)
        self.withdraw(reviewer_id)
        if reviewer_id not in queue.active_reviewers:
            queue.active_reviewers.append(reviewer_id)
            logger.info(f"Reviewer {reviewer_id} active in {region}")

        if queue.state == QueueState.CLOSED:
            if queue.snapshot:
                self.confirmations.start(region)
            else:
                self.transition(queue, OpenPhase())
        self.touch()
        return queue.state

    def deactivate_reviewer(self, region: str, reviewer_id: str) -> bool:
        """Mark a reviewer inactive. Closes the queue when none remain."""
        queue = self.get_queue(region)
        if reviewer_id not in queue.active_reviewers:
            return False
        queue.active_reviewers.remove(reviewer_id)
        logger.info(f"Reviewer {reviewer_id} inactive in {region}")
        if not queue.active_reviewers:
            self.close(region)
        else:
            self.touch()
        return True

    # ------------------------------------------------------------------ #
    # Presentation references and admin
    # ------------------------------------------------------------------ #

    def set_reference(self, region: str, name: str, value: str | None) -> None:
        """Record an opaque transport reference (message ids) for a queue."""
        if name not in REFERENCE_FIELDS:
            raise QueueValidationError(f"Unknown reference field: {name!r}")
        setattr(self.get_queue(region), name, value)
        self.touch()

    def clear(self, region: str | None = None) -> None:
        """Reset one region, or every region, to a fresh closed queue."""
        regions = self.regions if region is None else [region]
        for name in regions:
            self.get_queue(name)
            self._queues[name] = Queue(region=name)
        logger.info(f"Cleared queue data for {', '.join(regions)}")
        self.mark_dirty()
        self.flush(force=True)

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def to_document(self) -> dict[str, Any]:
        return {"queues": {region: queue.to_document() for region, queue in self._queues.items()}}

    def restore(self, document: dict[str, Any]) -> None:
        self._queues = {}
        seen: set[str] = set()
        queues = document.get("queues", {})
        if not isinstance(queues, dict):
            raise ValueError("'queues' must be an object")
        for region, data in queues.items():
            if region not in self.regions:
                logger.warning(f"Skipping persisted queue for unknown region {region!r}")
                continue
            try:
                queue = Queue.from_document(region, data)
            except ValueError as e:
                logger.warning(f"Skipping invalid persisted queue for {region}: {e}")
                continue
            self._repair(queue, seen)
            self._queues[region] = queue
        logger.info(f"Loaded {len(self._queues)} queue(s) from persistence.")

    def _repair(self, queue: Queue, seen: set[str]) -> None:
        """Restore cross-region invariants on a freshly loaded queue.

        A requester already queued in an earlier region is dropped, and an
        open queue without reviewers is loaded closed with its entries as the
        reopen snapshot.
        """
        if queue.state != QueueState.OPEN and queue.entries:
            logger.warning(f"Ignoring {len(queue.entries)} stray entries in non-open {queue.region} queue")
            queue.entries = []
        elif queue.state == QueueState.OPEN and not queue.active_reviewers:
            logger.warning(f"{queue.region} was persisted open without reviewers; loading it closed")
            queue.phase = ClosedPhase(snapshot=queue.entries)
            queue.entries = []

        kept = []
        for entry in queue.entries:
            if entry.requester_id in seen:
                logger.warning(f"Dropping {entry.requester_id} from {queue.region}: already queued elsewhere")
                continue
            seen.add(entry.requester_id)
            kept.append(entry)
        queue.entries = renumber(kept)
