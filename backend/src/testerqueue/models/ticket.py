"""Models for active pairing sessions."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from testerqueue.clock import utc_now


class Ticket(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ticket_id: str
    requester_id: str
    reviewer_id: str
    region: str
    preferred_target: str = ""
    channel_ref: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class PromotionHandoff(BaseModel):
    """A popped queue head on its way to becoming a ticket."""

    requester_id: str
    reviewer_id: str
    region: str
    preferred_target: str = ""
