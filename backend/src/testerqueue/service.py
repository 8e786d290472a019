"""Collaborator-facing API.

The transport layer (chat bot, HTTP router) talks to ``QueueService`` only.
It wires the stores together, applies the cross-store rules (waitlist gating,
ticket cooldowns, reviewer/requester conflicts) and owns shutdown.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from testerqueue.api.events import EventBus
from testerqueue.clock import Clock, to_epoch_millis, utc_now
from testerqueue.config import Settings
from testerqueue.errors import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    QueueValidationError,
    RejectReason,
)
from testerqueue.infra.persistence import SnapshotFile
from testerqueue.models.queue import QueueEntry, QueueState
from testerqueue.models.ticket import Ticket
from testerqueue.models.waitlist import WaitlistMembership
from testerqueue.promotion import PromotionLoop, QueueChannelProvisioner, TicketProvisioner
from testerqueue.scheduler import Scheduler
from testerqueue.store.queues import QueueStore
from testerqueue.store.testers import TesterPool
from testerqueue.store.tickets import TicketRegistry
from testerqueue.store.waitlist import WaitlistRegistry

logger = logging.getLogger(__name__)

CLEAR_SCOPES = ("all", "queues", "waitlist", "tickets")


class QueueService:
    def __init__(
        self,
        settings: Settings,
        clock: Clock = utc_now,
        provisioner: TicketProvisioner | None = None,
        events: EventBus | None = None,
    ):
        self.settings = settings
        self.clock = clock
        self.events = events or EventBus()
        data_dir = Path(settings.data_dir)

        self.queues = QueueStore(
            settings.regions,
            SnapshotFile(data_dir / QueueStore.FILENAME),
            max_queue_size=settings.max_queue_size,
            grace_period=settings.grace_period,
            clock=clock,
            events=self.events,
            debounce_seconds=settings.save_debounce_seconds,
        )
        self.tickets = TicketRegistry(
            SnapshotFile(data_dir / TicketRegistry.FILENAME),
            clock=clock,
            events=self.events,
            debounce_seconds=settings.save_debounce_seconds,
        )
        self.waitlist = WaitlistRegistry(
            SnapshotFile(data_dir / WaitlistRegistry.FILENAME),
            clock=clock,
            debounce_seconds=settings.save_debounce_seconds,
        )
        self.testers = TesterPool(self.queues)
        self.promotion = PromotionLoop(
            self.queues,
            self.waitlist,
            self.testers,
            self.tickets,
            provisioner or QueueChannelProvisioner(settings.queue_channels),
        )
        self.scheduler = Scheduler(
            self.queues.confirmations,
            self.promotion,
            stores=[self.queues, self.waitlist, self.tickets],
            clock=clock,
            tick_seconds=settings.tick_seconds,
            confirmation_check_seconds=settings.confirmation_check_interval_seconds,
            promotion_seconds=settings.promotion_interval_seconds,
        )
        self._shutting_down = False

    def load(self) -> None:
        """Load all stores from disk. Never fatal."""
        self.queues.load()
        self.waitlist.load()
        self.tickets.load()

    def region(self, value: str) -> str:
        """Normalize and validate a region name."""
        region = value.strip().upper() if isinstance(value, str) else ""
        if region not in self.settings.regions:
            raise QueueValidationError(
                f"Invalid region {value!r}. Expected one of: {', '.join(self.settings.regions)}"
            )
        return region

    # ------------------------------------------------------------------ #
    # Reviewers
    # ------------------------------------------------------------------ #

    def activate_reviewer(self, region: str, reviewer_id: str) -> QueueState:
        region = self.region(region)
        # Access granted while on the waitlist stays in place for reviewers
        self.waitlist.remove_membership(reviewer_id, preserve_unlocks=True)
        return self.queues.activate_reviewer(region, reviewer_id)

    def deactivate_reviewer(self, region: str, reviewer_id: str) -> bool:
        region = self.region(region)
        removed = self.queues.deactivate_reviewer(region, reviewer_id)
        if removed and self.queues.get_queue(region).state == QueueState.CLOSED:
            self.testers.reset(region)
        return removed

    # ------------------------------------------------------------------ #
    # Requesters
    # ------------------------------------------------------------------ #

    def join_waitlist(
        self, requester_id: str, region: str, preferred_target: str = ""
    ) -> WaitlistMembership:
        region = self.region(region)
        preferred_target = preferred_target.strip()
        membership = self.waitlist.add_membership(requester_id, region, preferred_target)
        self.waitlist.unlock_resource(requester_id, self.settings.queue_channels[region])
        return membership

    def request_join(self, region: str, requester_id: str) -> QueueEntry:
        region = self.region(region)
        if not self.waitlist.has_unlocked_region(requester_id, region):
            raise ConflictError(
                RejectReason.NOT_A_MEMBER,
                f"{requester_id} is not on the waitlist for {region}",
            )
        if self.tickets.get_by_requester(requester_id) is not None:
            raise ConflictError(RejectReason.TICKET_OPEN, f"{requester_id} already has an open ticket")
        return self.queues.join(region, requester_id)

    def leave_queue(self, region: str, requester_id: str) -> bool:
        return self.queues.leave(self.region(region), requester_id)

    def confirm_still_active(self, region: str, requester_id: str) -> None:
        region = self.region(region)
        reason = self.queues.confirmations.check(region, requester_id)
        if reason is not None:
            raise ConflictError(reason)
        self.queues.confirmations.confirm(region, requester_id)

    # ------------------------------------------------------------------ #
    # Tickets
    # ------------------------------------------------------------------ #

    def _ticket(self, ticket_id: str) -> Ticket:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    def cancel_ticket(self, ticket_id: str, actor_id: str) -> Ticket:
        """Close a ticket without consequences. Reviewer or requester only."""
        ticket = self._ticket(ticket_id)
        if actor_id not in (ticket.reviewer_id, ticket.requester_id):
            raise PermissionDenied("Only the reviewer or the requester can cancel this ticket")
        self.tickets.close(ticket_id)
        return ticket

    def submit_ticket(self, ticket_id: str, actor_id: str) -> list[str]:
        """Finish a session: drop the requester from the waitlist and start a cooldown.

        Returns the resources the caller should revoke from the requester.
        """
        ticket = self._ticket(ticket_id)
        if actor_id != ticket.reviewer_id:
            raise PermissionDenied("Only the reviewer can submit this ticket")

        removed = self.waitlist.remove_membership(ticket.requester_id, preserve_unlocks=False)
        self.waitlist.set_cooldown(ticket.requester_id, self.settings.waitlist_cooldown_days)
        self.tickets.close(ticket_id)
        return removed.unlocked_resources if removed else []

    # ------------------------------------------------------------------ #
    # Views, ticks and admin
    # ------------------------------------------------------------------ #

    def view_model(self, region: str, now: datetime | None = None) -> dict[str, Any]:
        region = self.region(region)
        queue = self.queues.get_queue(region)
        view: dict[str, Any] = {
            "region": region,
            "state": queue.state.value,
            "orderedEntries": [entry.model_dump(by_alias=True) for entry in queue.entries],
            "activeReviewers": list(queue.active_reviewers),
            "capacity": self.settings.max_queue_size,
        }
        if queue.state == QueueState.CONFIRMATION_PERIOD:
            confirmed = set(queue.confirmed)
            view["secondsRemaining"] = self.queues.confirmations.seconds_remaining(region, now)
            view["confirmationDeadline"] = to_epoch_millis(queue.confirmation_deadline)
            view["previousMembers"] = [
                {**entry.model_dump(by_alias=True), "confirmed": entry.requester_id in confirmed}
                for entry in queue.snapshot
            ]
        return view

    async def tick(self, now: datetime | None = None) -> list[str]:
        return await self.scheduler.tick(now)

    def clear(self, scope: str = "all") -> None:
        if scope not in CLEAR_SCOPES:
            raise QueueValidationError(f"Unknown clear scope {scope!r}")
        if scope in ("all", "queues"):
            self.queues.clear()
            self.testers.reset()
        if scope in ("all", "waitlist"):
            self.waitlist.clear()
        if scope in ("all", "tickets"):
            self.tickets.clear()

    def flush_all(self, force: bool = False) -> None:
        for store in (self.queues, self.waitlist, self.tickets):
            store.flush(force=force)

    def shutdown(self) -> bool:
        """Final forced flush. Safe to call from several overlapping signals."""
        if self._shutting_down:
            return False
        self._shutting_down = True
        logger.info("Shutting down, saving all data...")
        self.scheduler.stop()
        self.flush_all(force=True)
        return True
