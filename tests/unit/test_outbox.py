import pytest

from switchboard.dispatch import MessageDispatcher
from switchboard.models import Attachment, DeliveryStatus, Message
from switchboard.outbox import Outbox, OutboundState, TransitionError


@pytest.fixture
def dispatcher():
    return MessageDispatcher()


@pytest.fixture
def outbox(dispatcher):
    return Outbox(dispatcher)


def test_begin_dispatches_sending_placeholder(outbox, dispatcher):
    seen = []
    dispatcher.add_listener("c1", seen.append)

    entry = outbox.begin("c1", "u-1", "hello", Attachment("https://f/x.png", "image/png", 10))

    assert entry.state is OutboundState.PENDING
    assert entry.temp_id.startswith("temp-")
    assert seen[0].status is DeliveryStatus.SENDING
    assert seen[0].message_id == entry.temp_id
    assert outbox.pending("c1") == [entry]


def test_confirm_replaces_placeholder(outbox, dispatcher):
    entry = outbox.begin("c1", "u-1", "hello")
    confirmed = outbox.confirm(entry.temp_id, Message("m1", "c1", "u-1", "hello"))

    assert confirmed.message_id == "m1"
    assert confirmed.status is DeliveryStatus.SENT
    assert confirmed.temp_id == entry.temp_id
    assert entry.state is OutboundState.CONFIRMED
    assert [m.message_id for m in dispatcher.messages("c1")] == ["m1"]


def test_fail_marks_terminal_status(outbox, dispatcher):
    entry = outbox.begin("c1", "u-1", "hello")
    failed = outbox.fail(entry.temp_id, RuntimeError("offline"))

    assert failed.status is DeliveryStatus.FAILED
    assert entry.error == "offline"
    assert outbox.failed() == [entry]
    assert dispatcher.find(entry.temp_id).status is DeliveryStatus.FAILED


def test_transitions_only_leave_pending(outbox):
    entry = outbox.begin("c1", "u-1", "hello")
    outbox.fail(entry.temp_id, "offline")

    with pytest.raises(TransitionError):
        outbox.confirm(entry.temp_id, Message("m1", "c1", "u-1", "hello"))
    with pytest.raises(TransitionError):
        outbox.fail("temp-unknown", "x")


def test_retry_reuses_temp_id_and_row(outbox, dispatcher):
    seen = []
    dispatcher.add_listener("c1", seen.append)
    entry = outbox.begin("c1", "u-1", "hello")
    outbox.fail(entry.temp_id, "offline")

    retried = outbox.retry(entry.temp_id)

    assert retried is entry
    assert entry.state is OutboundState.PENDING
    assert entry.error is None
    assert [m.status for m in seen] == [DeliveryStatus.SENDING, DeliveryStatus.FAILED, DeliveryStatus.SENDING]
    assert {m.message_id for m in seen} == {entry.temp_id}
    assert [m.message_id for m in dispatcher.messages("c1")] == [entry.temp_id]

    outbox.confirm(entry.temp_id, Message("m1", "c1", "u-1", "hello"))
    assert [m.message_id for m in dispatcher.messages("c1")] == ["m1"]


def test_retry_requires_failed_entry(outbox):
    entry = outbox.begin("c1", "u-1", "hello")
    with pytest.raises(TransitionError):
        outbox.retry(entry.temp_id)
    with pytest.raises(TransitionError):
        outbox.retry("temp-unknown")


def test_system_payload_marks_placeholder(outbox):
    entry = outbox.begin("c1", "system", "brief", system_payload={"type": "ALERT", "title": "t"})
    assert entry.message.is_system
    assert entry.message.system_payload["title"] == "t"
