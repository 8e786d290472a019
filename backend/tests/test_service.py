"""End-to-end flows through the collaborator-facing API."""

import json

import pytest

from testerqueue.config import Settings, load_settings
from testerqueue.errors import (
    ConflictError,
    CooldownActive,
    FatalStartupError,
    NotFoundError,
    PermissionDenied,
    QueueValidationError,
    RejectReason,
)
from testerqueue.models.queue import QueueState
from testerqueue.service import QueueService


def entries(service, region):
    return [(e.requester_id, e.position) for e in service.queues.get_queue(region).entries]


async def test_reopen_scenario(service, clock):
    for requester in ("U1", "U2"):
        service.join_waitlist(requester, "EU", "server")

    assert service.activate_reviewer("EU", "R1") == QueueState.OPEN
    service.request_join("EU", "U1")
    service.request_join("EU", "U2")
    assert entries(service, "EU") == [("U1", 1), ("U2", 2)]

    service.deactivate_reviewer("EU", "R1")
    queue = service.queues.get_queue("EU")
    assert queue.state == QueueState.CLOSED
    assert [(e.requester_id, e.position) for e in queue.snapshot] == [("U1", 1), ("U2", 2)]
    assert queue.entries == []

    assert service.activate_reviewer("EU", "R2") == QueueState.CONFIRMATION_PERIOD
    assert queue.confirmation_deadline is not None

    service.confirm_still_active("EU", "U1")
    with pytest.raises(ConflictError) as excinfo:
        service.confirm_still_active("EU", "U1")
    assert excinfo.value.reason == RejectReason.ALREADY_CONFIRMED
    with pytest.raises(ConflictError) as excinfo:
        service.confirm_still_active("EU", "U3")
    assert excinfo.value.reason == RejectReason.NOT_PREVIOUS_MEMBER

    clock.advance(minutes=5)
    await service.scheduler.check_confirmations(clock())

    assert entries(service, "EU") == [("U1", 1)]
    assert service.queues.get_queue("EU").state == QueueState.OPEN


async def test_promotion_and_submit(service, clock):
    service.join_waitlist("U1", "eu ", " server-1 ")
    service.activate_reviewer("EU", "R1")
    service.request_join("EU", "U1")

    ran = await service.tick()
    assert "promotion" in ran
    ticket = service.tickets.get_by_requester("U1")
    assert ticket.channel_ref == "chan-eu/ticket-U1"
    assert ticket.preferred_target == "server-1"

    with pytest.raises(ConflictError) as excinfo:
        service.request_join("EU", "U1")
    assert excinfo.value.reason == RejectReason.TICKET_OPEN

    with pytest.raises(PermissionDenied):
        service.submit_ticket(ticket.ticket_id, "U1")

    revoke = service.submit_ticket(ticket.ticket_id, "R1")
    assert revoke == ["chan-eu"]
    assert service.tickets.get(ticket.ticket_id) is None
    assert service.waitlist.get_membership("U1") is None

    with pytest.raises(CooldownActive) as excinfo:
        service.join_waitlist("U1", "EU", "server-1")
    assert excinfo.value.days_remaining == 30


def test_cancel_ticket_permissions(service):
    ticket = service.tickets.create("U1", "R1", "EU")
    with pytest.raises(PermissionDenied):
        service.cancel_ticket(ticket.ticket_id, "stranger")
    service.cancel_ticket(ticket.ticket_id, "U1")
    with pytest.raises(NotFoundError):
        service.cancel_ticket(ticket.ticket_id, "U1")
    assert service.waitlist.cooldown_remaining("U1") is None


def test_request_join_requires_membership_for_region(service):
    service.activate_reviewer("EU", "R1")
    service.activate_reviewer("NA", "R2")
    service.join_waitlist("U1", "NA", "server")

    with pytest.raises(ConflictError) as excinfo:
        service.request_join("EU", "U1")
    assert excinfo.value.reason == RejectReason.NOT_A_MEMBER
    assert service.request_join("na", "U1").position == 1


def test_activating_reviewer_drops_waitlist_membership(service):
    service.join_waitlist("U1", "EU", "server")
    service.activate_reviewer("EU", "R1")
    service.request_join("EU", "U1")

    service.activate_reviewer("NA", "U1")

    assert service.waitlist.get_membership("U1") is None
    assert service.queues.region_of("U1") is None


def test_invalid_region(service):
    with pytest.raises(QueueValidationError):
        service.request_join("MARS", "U1")
    with pytest.raises(QueueValidationError):
        service.join_waitlist("U1", "", "server")


def test_view_model(service, clock):
    service.join_waitlist("U1", "EU", "server")
    service.activate_reviewer("EU", "R1")
    service.request_join("EU", "U1")

    view = service.view_model("EU")
    assert view["state"] == "open"
    assert view["orderedEntries"] == [{"requesterId": "U1", "position": 1}]
    assert view["activeReviewers"] == ["R1"]
    assert "secondsRemaining" not in view

    service.deactivate_reviewer("EU", "R1")
    service.activate_reviewer("EU", "R2")
    service.confirm_still_active("EU", "U1")
    clock.advance(seconds=90)

    view = service.view_model("EU")
    assert view["state"] == "confirmation_period"
    assert view["secondsRemaining"] == 210
    assert view["previousMembers"] == [{"requesterId": "U1", "position": 1, "confirmed": True}]


def test_clear_scopes(service):
    service.join_waitlist("U1", "EU", "server")
    service.activate_reviewer("EU", "R1")
    service.request_join("EU", "U1")
    service.tickets.create("U9", "R1", "EU")

    service.clear("queues")
    assert service.queues.get_queue("EU").state == QueueState.CLOSED
    assert service.waitlist.get_membership("U1") is not None

    service.clear("all")
    assert service.waitlist.get_membership("U1") is None
    assert service.tickets.all() == []

    with pytest.raises(QueueValidationError):
        service.clear("everything")


def test_shutdown_flushes_once(service, settings):
    service.join_waitlist("U1", "EU", "server")
    service.join_waitlist("U2", "EU", "server")
    assert service.waitlist.dirty

    assert service.shutdown() is True
    assert service.shutdown() is False

    document = json.loads((settings.data_dir / "waitlist-data.json").read_text(encoding="utf-8"))
    assert set(document["members"]) == {"U1", "U2"}


def test_restart_restores_state(settings, clock):
    first = QueueService(settings, clock=clock)
    first.join_waitlist("U1", "EU", "server")
    first.activate_reviewer("EU", "R1")
    first.request_join("EU", "U1")
    first.shutdown()

    second = QueueService(settings, clock=clock)
    second.load()

    assert entries(second, "EU") == [("U1", 1)]
    assert second.waitlist.get_membership("U1") is not None
    assert second.queues.get_queue("EU").active_reviewers == ["R1"]


def test_missing_mandatory_config_is_fatal(tmp_path):
    with pytest.raises(FatalStartupError):
        load_settings(data_dir=tmp_path)
    with pytest.raises(FatalStartupError):
        load_settings(queue_channels={"EU": "chan-eu"})


def test_settings_defaults(settings):
    assert settings.max_queue_size == 20
    assert settings.confirmation_grace_period_minutes == 5
    assert settings.waitlist_cooldown_days == 30
    assert settings.save_debounce_seconds == 2.0
    assert isinstance(settings, Settings)
