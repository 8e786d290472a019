"""Waitlist membership and cooldowns."""

import pytest

from testerqueue.errors import ConflictError, CooldownActive, RejectReason
from testerqueue.infra.persistence import SnapshotFile
from testerqueue.store.waitlist import WaitlistRegistry


def test_add_and_duplicate(waitlist):
    membership = waitlist.add_membership("U1", "EU", "server-1")
    assert membership.region == "EU"
    assert waitlist.get_membership("U1") == membership

    with pytest.raises(ConflictError) as excinfo:
        waitlist.add_membership("U1", "NA", "server-2")
    assert excinfo.value.reason == RejectReason.ALREADY_MEMBER


def test_cooldown_blocks_then_expires(waitlist, clock):
    waitlist.set_cooldown("U1", 30)

    with pytest.raises(CooldownActive) as excinfo:
        waitlist.add_membership("U1", "EU")
    assert 29 < excinfo.value.days_remaining <= 30
    assert waitlist.get_membership("U1") is None

    clock.advance(days=12, hours=1)
    with pytest.raises(CooldownActive) as excinfo:
        waitlist.add_membership("U1", "EU")
    assert excinfo.value.days_remaining == 18

    clock.advance(days=18)
    waitlist.add_membership("U1", "EU")
    assert waitlist.cooldown_remaining("U1") is None
    assert "U1" not in waitlist.to_document()["cooldowns"]


def test_cooldown_without_membership(waitlist):
    waitlist.set_cooldown("ghost", 1)
    assert waitlist.get_membership("ghost") is None
    assert waitlist.cooldown_remaining("ghost") is not None


def test_remove_reports_unlocked_resources(waitlist):
    waitlist.add_membership("U1", "EU")
    waitlist.unlock_resource("U1", "chan-eu")
    waitlist.unlock_resource("U1", "chan-eu")

    removed = waitlist.remove_membership("U1")
    assert removed.unlocked_resources == ["chan-eu"]
    assert waitlist.get_membership("U1") is None
    assert waitlist.remove_membership("U1") is None


def test_remove_preserving_unlocks(waitlist):
    waitlist.add_membership("U1", "EU")
    waitlist.unlock_resource("U1", "chan-eu")

    removed = waitlist.remove_membership("U1", preserve_unlocks=True)
    assert removed.unlocked_resources == []
    assert removed.region == "EU"


def test_has_unlocked_region(waitlist):
    waitlist.add_membership("U1", "EU")
    assert waitlist.has_unlocked_region("U1", "EU") is True
    assert waitlist.has_unlocked_region("U1", "NA") is False
    assert waitlist.has_unlocked_region("U2", "EU") is False


def test_waitlist_round_trip(tmp_path, waitlist, clock):
    waitlist.add_membership("U1", "EU", "server-1")
    waitlist.unlock_resource("U1", "chan-eu")
    expires_at = waitlist.set_cooldown("U2", 30)
    waitlist.flush(force=True)

    reloaded = WaitlistRegistry(SnapshotFile(tmp_path / WaitlistRegistry.FILENAME), clock=clock)
    reloaded.load()

    assert reloaded.get_membership("U1") == waitlist.get_membership("U1")
    assert reloaded.cooldown_remaining("U2") == expires_at - clock()


def test_persisted_shape(waitlist):
    waitlist.add_membership("U1", "EU", "server-1")
    waitlist.set_cooldown("U2", 1)
    document = waitlist.to_document()
    assert document["members"]["U1"] == {
        "requesterId": "U1",
        "region": "EU",
        "preferredTarget": "server-1",
        "unlockedResources": [],
    }
    assert isinstance(document["cooldowns"]["U2"], int)
