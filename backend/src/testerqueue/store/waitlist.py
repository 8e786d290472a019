"""Cross-region waitlist membership and post-session cooldowns."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any

from testerqueue.clock import Clock, from_epoch_millis, to_epoch_millis, utc_now
from testerqueue.errors import ConflictError, CooldownActive, RejectReason
from testerqueue.infra.persistence import PersistentStore, SnapshotFile
from testerqueue.models.waitlist import WaitlistDocument, WaitlistMembership

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class WaitlistRegistry(PersistentStore):
    """Waitlist members and cooldowns, persisted as one document.

    A cooldown may exist without a membership. Expired cooldowns are only
    purged when someone tries to rejoin.
    """

    FILENAME = "waitlist-data.json"

    def __init__(
        self,
        snapshot: SnapshotFile,
        clock: Clock = utc_now,
        debounce_seconds: float = 2.0,
    ):
        super().__init__(snapshot, clock=clock, debounce_seconds=debounce_seconds)
        self._members: dict[str, WaitlistMembership] = {}
        self._cooldowns: dict[str, datetime] = {}

    def add_membership(
        self, requester_id: str, region: str, preferred_target: str = ""
    ) -> WaitlistMembership:
        """Add a requester to the waitlist.

        Raises:
            ConflictError: the requester is already a member
            CooldownActive: the requester finished a session recently
        """
        if requester_id in self._members:
            raise ConflictError(RejectReason.ALREADY_MEMBER, f"{requester_id} is already on the waitlist")

        remaining = self.cooldown_remaining(requester_id)
        if remaining is not None:
            days = math.ceil(remaining.total_seconds() / SECONDS_PER_DAY)
            raise CooldownActive(days_remaining=days, expires_at=self._cooldowns[requester_id])
        if requester_id in self._cooldowns:
            del self._cooldowns[requester_id]
            logger.debug(f"Purged expired cooldown for {requester_id}")

        membership = WaitlistMembership(
            requester_id=requester_id,
            region=region,
            preferred_target=preferred_target,
        )
        self._members[requester_id] = membership
        logger.info(f"{requester_id} joined the waitlist for {region}")
        self.touch()
        return membership

    def get_membership(self, requester_id: str) -> WaitlistMembership | None:
        return self._members.get(requester_id)

    def remove_membership(
        self, requester_id: str, preserve_unlocks: bool = False
    ) -> WaitlistMembership | None:
        """Remove a member and return their record.

        With ``preserve_unlocks`` the returned record reports no unlocked
        resources, so the caller leaves that access in place (used when the
        requester is becoming a reviewer).
        """
        membership = self._members.pop(requester_id, None)
        if membership is None:
            return None
        self.touch()
        unlocked = [] if preserve_unlocks else list(membership.unlocked_resources)
        return membership.model_copy(update={"unlocked_resources": unlocked})

    def unlock_resource(self, requester_id: str, resource_ref: str) -> bool:
        membership = self._members.get(requester_id)
        if membership is None:
            return False
        if resource_ref not in membership.unlocked_resources:
            membership.unlocked_resources.append(resource_ref)
            self.touch()
        return True

    def has_unlocked_region(self, requester_id: str, region: str) -> bool:
        membership = self._members.get(requester_id)
        return membership is not None and membership.region == region

    def set_cooldown(self, requester_id: str, days: float) -> datetime:
        expires_at = self._clock() + timedelta(days=days)
        self._cooldowns[requester_id] = expires_at
        logger.info(f"{requester_id} on cooldown until {expires_at.isoformat()}")
        self.touch()
        return expires_at

    def cooldown_remaining(self, requester_id: str) -> timedelta | None:
        """Time left on a live cooldown, or None if there is none."""
        expires_at = self._cooldowns.get(requester_id)
        if expires_at is None:
            return None
        remaining = expires_at - self._clock()
        if remaining.total_seconds() <= 0:
            return None
        return remaining

    def clear(self) -> None:
        """Drop all members and cooldowns."""
        self._members = {}
        self._cooldowns = {}
        logger.info("Cleared all waitlist data and cooldowns")
        self.mark_dirty()
        self.flush(force=True)

    def to_document(self) -> dict[str, Any]:
        document = WaitlistDocument(
            members=self._members,
            cooldowns={
                requester_id: to_epoch_millis(expires_at)
                for requester_id, expires_at in self._cooldowns.items()
            },
        )
        return document.model_dump(mode="json", by_alias=True)

    def restore(self, document: dict[str, Any]) -> None:
        parsed = WaitlistDocument.model_validate(document)
        self._members = dict(parsed.members)
        self._cooldowns = {
            requester_id: from_epoch_millis(millis)
            for requester_id, millis in parsed.cooldowns.items()
        }
        logger.info(
            f"Loaded {len(self._members)} waitlist member(s) and "
            f"{len(self._cooldowns)} cooldown(s) from persistence."
        )
