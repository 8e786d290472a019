"""Registry of live pairing sessions."""

from __future__ import annotations

import logging
from typing import Any

from testerqueue.api.events import EventBus, EventType
from testerqueue.clock import Clock, to_epoch_millis, utc_now
from testerqueue.infra.persistence import PersistentStore, SnapshotFile
from testerqueue.models.ticket import Ticket

logger = logging.getLogger(__name__)


class TicketRegistry(PersistentStore):
    """Live tickets keyed by id. Callers ensure one ticket per requester."""

    FILENAME = "tickets-data.json"

    def __init__(
        self,
        snapshot: SnapshotFile,
        clock: Clock = utc_now,
        events: EventBus | None = None,
        debounce_seconds: float = 2.0,
    ):
        super().__init__(snapshot, clock=clock, debounce_seconds=debounce_seconds)
        self.events = events or EventBus()
        self._tickets: dict[str, Ticket] = {}

    def _new_id(self, requester_id: str) -> str:
        stamp = to_epoch_millis(self._clock())
        ticket_id = f"ticket-{requester_id}-{stamp}"
        while ticket_id in self._tickets:
            stamp += 1
            ticket_id = f"ticket-{requester_id}-{stamp}"
        return ticket_id

    def create(
        self,
        requester_id: str,
        reviewer_id: str,
        region: str,
        preferred_target: str = "",
        channel_ref: str | None = None,
    ) -> Ticket:
        ticket = Ticket(
            ticket_id=self._new_id(requester_id),
            requester_id=requester_id,
            reviewer_id=reviewer_id,
            region=region,
            preferred_target=preferred_target,
            channel_ref=channel_ref,
            created_at=self._clock(),
        )
        self._tickets[ticket.ticket_id] = ticket
        logger.info(f"Created {ticket.ticket_id}: {requester_id} with reviewer {reviewer_id} in {region}")
        self.touch()
        self.events.publish(region, EventType.TICKET_CREATED, ticket.model_dump(mode="json", by_alias=True))
        return ticket

    def close(self, ticket_id: str) -> bool:
        ticket = self._tickets.pop(ticket_id, None)
        if ticket is None:
            return False
        logger.info(f"Closed {ticket_id}")
        self.touch()
        self.events.publish(ticket.region, EventType.TICKET_CLOSED, {"ticketId": ticket_id})
        return True

    def get(self, ticket_id: str) -> Ticket | None:
        return self._tickets.get(ticket_id)

    def get_by_requester(self, requester_id: str) -> Ticket | None:
        for ticket in self._tickets.values():
            if ticket.requester_id == requester_id:
                return ticket
        return None

    def get_by_channel(self, channel_ref: str) -> Ticket | None:
        for ticket in self._tickets.values():
            if ticket.channel_ref == channel_ref:
                return ticket
        return None

    def all(self) -> list[Ticket]:
        return list(self._tickets.values())

    def clear(self) -> None:
        self._tickets = {}
        logger.info("Cleared all ticket data")
        self.mark_dirty()
        self.flush(force=True)

    def to_document(self) -> dict[str, Any]:
        return {
            "tickets": {
                ticket_id: ticket.model_dump(mode="json", by_alias=True)
                for ticket_id, ticket in self._tickets.items()
            }
        }

    def restore(self, document: dict[str, Any]) -> None:
        self._tickets = {}
        tickets = document.get("tickets", {})
        if not isinstance(tickets, dict):
            raise ValueError("'tickets' must be an object")
        for ticket_id, data in tickets.items():
            try:
                self._tickets[ticket_id] = Ticket.model_validate(data)
            except ValueError as e:
                logger.warning(f"Skipping invalid persisted ticket {ticket_id}: {e}")
        logger.info(f"Loaded {len(self._tickets)} ticket(s) from persistence.")
