"""Reopen protocol for queues that closed with people still waiting.

When a closed queue with a snapshot gets a reviewer again it enters a
confirmation period. Previous members have until the deadline to confirm they
are still around. At expiry the confirmers are rebuilt into a dense queue in
their original relative order; everyone else is dropped.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from testerqueue.api.events import EventType
from testerqueue.clock import Clock, to_epoch_millis
from testerqueue.errors import ConflictError, RejectReason
from testerqueue.models.queue import ConfirmationPhase, OpenPhase, QueueEntry, QueueState, renumber

if TYPE_CHECKING:
    from testerqueue.store.queues import QueueStore

logger = logging.getLogger(__name__)


class ConfirmationCoordinator:
    def __init__(self, store: QueueStore, grace_period: timedelta, clock: Clock):
        self._store = store
        self.grace_period = grace_period
        self._clock = clock

    def start(self, region: str, grace_period: timedelta | None = None) -> datetime:
        """Enter the confirmation period. Returns the deadline."""
        queue = self._store.get_queue(region)
        if queue.state != QueueState.CLOSED or not queue.snapshot:
            raise ConflictError(
                RejectReason.NOTHING_TO_CONFIRM,
                f"{region} has no closed snapshot to confirm",
            )

        deadline = self._clock() + (grace_period or self.grace_period)
        snapshot = list(queue.snapshot)
        self._store.transition(queue, ConfirmationPhase(snapshot=snapshot, deadline=deadline))
        self._store.mark_dirty()
        self._store.flush(force=True)

        logger.info(
            f"{region} confirmation period started for {len(snapshot)} member(s), "
            f"ends {deadline.isoformat()}"
        )
        self._store.events.publish(
            region,
            EventType.CONFIRMATION_STARTED,
            {
                "deadline": to_epoch_millis(deadline),
                "members": [entry.requester_id for entry in snapshot],
            },
        )
        return deadline

    def confirm(self, region: str, requester_id: str) -> bool:
        """Record that a previous member is still active.

        Accepted only during the confirmation period, for members of the
        snapshot, and only once per member.
        """
        if self.check(region, requester_id) is not None:
            return False
        self._store.get_queue(region).phase.confirmed.append(requester_id)
        logger.info(f"{requester_id} confirmed for {region}")
        self._store.touch()
        return True

    def check(self, region: str, requester_id: str) -> RejectReason | None:
        """Why a confirmation would be refused, or None if it would be accepted."""
        phase = self._store.get_queue(region).phase
        if not isinstance(phase, ConfirmationPhase):
            return RejectReason.NOT_IN_CONFIRMATION
        if not any(entry.requester_id == requester_id for entry in phase.snapshot):
            return RejectReason.NOT_PREVIOUS_MEMBER
        if requester_id in phase.confirmed:
            return RejectReason.ALREADY_CONFIRMED
        return None

    def has_expired(self, region: str, now: datetime | None = None) -> bool:
        phase = self._store.get_queue(region).phase
        if not isinstance(phase, ConfirmationPhase):
            return False
        return (now or self._clock()) >= phase.deadline

    def seconds_remaining(self, region: str, now: datetime | None = None) -> int | None:
        phase = self._store.get_queue(region).phase
        if not isinstance(phase, ConfirmationPhase):
            return None
        remaining = (phase.deadline - (now or self._clock())).total_seconds()
        return max(0, math.ceil(remaining))

    def reconcile(self, region: str) -> list[QueueEntry] | None:
        """Rebuild the queue from confirmed members and reopen it.

        Returns the new entries, or None if the region is not in a
        confirmation period.
        """
        queue = self._store.get_queue(region)
        phase = queue.phase
        if not isinstance(phase, ConfirmationPhase):
            return None

        confirmed = set(phase.confirmed)
        survivors = []
        for entry in sorted(phase.snapshot, key=lambda e: e.position):
            if entry.requester_id not in confirmed:
                continue
            elsewhere = self._store.region_of(entry.requester_id)
            if elsewhere is not None:
                logger.warning(
                    f"{entry.requester_id} confirmed for {region} but is queued in {elsewhere}; dropping"
                )
                continue
            survivors.append(entry)

        queue.entries = renumber(survivors)
        queue.confirmation_message_id = None
        self._store.transition(queue, OpenPhase())
        self._store.mark_dirty()
        self._store.flush(force=True)

        dropped = len(phase.snapshot) - len(survivors)
        logger.info(f"{region} confirmation period ended: {len(survivors)} kept, {dropped} dropped")
        self._store.events.publish(
            region,
            EventType.CONFIRMATION_ENDED,
            {"survivor_count": len(survivors)},
        )
        return queue.entries

    def expire_due(self, now: datetime | None = None) -> list[str]:
        """Reconcile every region whose confirmation deadline has passed."""
        now = now or self._clock()
        reconciled = []
        for region in self._store.regions:
            if self.has_expired(region, now):
                self.reconcile(region)
                reconciled.append(region)
        return reconciled
