"""Promotion of queue heads into tickets.

The head is popped before the provisioner is awaited. A provisioner failure
therefore loses the promotion instead of repeating it: the requester is not
requeued.
"""

from __future__ import annotations

import logging
from typing import Protocol

from testerqueue.models.queue import QueueState
from testerqueue.models.ticket import PromotionHandoff, Ticket
from testerqueue.store.queues import QueueStore
from testerqueue.store.testers import TesterPool
from testerqueue.store.tickets import TicketRegistry
from testerqueue.store.waitlist import WaitlistRegistry

logger = logging.getLogger(__name__)


class TicketProvisioner(Protocol):
    """Sets up the external side of a session and returns its channel reference."""

    async def provision(self, handoff: PromotionHandoff) -> str | None: ...


class QueueChannelProvisioner:
    """Derives ticket channel references from the configured queue channels.

    Used when no chat platform is attached; a transport layer replaces it
    with one that actually creates the private channel.
    """

    def __init__(self, queue_channels: dict[str, str]):
        self.queue_channels = queue_channels

    async def provision(self, handoff: PromotionHandoff) -> str | None:
        parent = self.queue_channels.get(handoff.region)
        if parent is None:
            raise LookupError(f"No queue channel configured for {handoff.region}")
        return f"{parent}/ticket-{handoff.requester_id}"


class PromotionLoop:
    def __init__(
        self,
        queues: QueueStore,
        waitlist: WaitlistRegistry,
        testers: TesterPool,
        tickets: TicketRegistry,
        provisioner: TicketProvisioner,
    ):
        self.queues = queues
        self.waitlist = waitlist
        self.testers = testers
        self.tickets = tickets
        self.provisioner = provisioner

    def select(self, region: str) -> PromotionHandoff | None:
        """Pop the head of an open queue if it can be paired right now."""
        queue = self.queues.get_queue(region)
        if queue.state != QueueState.OPEN or not queue.entries:
            return None

        head = self.queues.peek_head(region)
        if self.tickets.get_by_requester(head.requester_id) is not None:
            # Previous promotion for this requester is still being set up
            return None

        membership = self.waitlist.get_membership(head.requester_id)
        if membership is None:
            logger.warning(f"{head.requester_id} is at the head of {region} but not on the waitlist")
            return None

        reviewer_id = self.testers.next_reviewer(region)
        if reviewer_id is None:
            return None

        self.queues.pop_head(region)
        return PromotionHandoff(
            requester_id=head.requester_id,
            reviewer_id=reviewer_id,
            region=region,
            preferred_target=membership.preferred_target,
        )

    async def dispatch(self, handoff: PromotionHandoff) -> Ticket | None:
        """Provision the session and register the ticket."""
        try:
            channel_ref = await self.provisioner.provision(handoff)
        except Exception as e:
            logger.error(
                f"Error creating ticket for {handoff.requester_id} in {handoff.region}, "
                f"promotion dropped: {e}"
            )
            return None
        return self.tickets.create(
            requester_id=handoff.requester_id,
            reviewer_id=handoff.reviewer_id,
            region=handoff.region,
            preferred_target=handoff.preferred_target,
            channel_ref=channel_ref,
        )

    async def run_once(self) -> list[Ticket]:
        """One pass over every region. Returns the tickets created."""
        created = []
        for region in self.queues.regions:
            handoff = self.select(region)
            if handoff is None:
                continue
            ticket = await self.dispatch(handoff)
            if ticket is not None:
                created.append(ticket)
        return created
