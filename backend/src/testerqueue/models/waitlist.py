"""Models for waitlist membership."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WaitlistMembership(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    requester_id: str
    region: str
    preferred_target: str = ""
    unlocked_resources: list[str] = Field(default_factory=list)


class WaitlistDocument(BaseModel):
    members: dict[str, WaitlistMembership] = Field(default_factory=dict)
    cooldowns: dict[str, int] = Field(default_factory=dict)
