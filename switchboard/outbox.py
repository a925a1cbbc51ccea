"""Optimistic echo of outbound messages as an explicit per-message state machine.

    PENDING --confirm--> CONFIRMED
    PENDING --fail-----> FAILED --retry--> PENDING

Every transition dispatches the current copy so the sender's view updates
before, and independently of, the hub's authoritative echo. The dispatcher's
id/temp-id replace rule makes the order of echo and confirmation irrelevant.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum

from .dispatch import MessageDispatcher
from .models import Attachment, DeliveryStatus, Message

log = logging.getLogger(__name__)


class OutboundState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TransitionError(RuntimeError):
    pass


@dataclass
class Outbound:
    temp_id: str
    channel_id: str
    state: OutboundState
    message: Message
    error: str | None = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Outbox:
    def __init__(self, dispatcher: MessageDispatcher):
        self.dispatcher = dispatcher
        self._entries: dict[str, Outbound] = {}

    def get(self, temp_id: str) -> Outbound | None:
        return self._entries.get(temp_id)

    def pending(self, channel_id: str | None = None) -> list[Outbound]:
        return [
            e
            for e in self._entries.values()
            if e.state is OutboundState.PENDING and (channel_id is None or e.channel_id == channel_id)
        ]

    def failed(self, channel_id: str | None = None) -> list[Outbound]:
        return [
            e
            for e in self._entries.values()
            if e.state is OutboundState.FAILED and (channel_id is None or e.channel_id == channel_id)
        ]

    def begin(
        self,
        channel_id: str,
        sender_id: str,
        body: str,
        attachment: Attachment | None = None,
        system_payload: dict | None = None,
    ) -> Outbound:
        temp_id = f"temp-{uuid.uuid4()}"
        now = _now()
        placeholder = Message(
            message_id=temp_id,
            channel_id=channel_id,
            sender_id=sender_id,
            body=body,
            attachment=attachment,
            created_at=now,
            updated_at=now,
            status=DeliveryStatus.SENDING,
            temp_id=temp_id,
            is_system=system_payload is not None,
            system_payload=system_payload,
        )
        entry = Outbound(temp_id, channel_id, OutboundState.PENDING, placeholder)
        self._entries[temp_id] = entry
        self.dispatcher.dispatch(placeholder)
        return entry

    def _require_pending(self, temp_id: str) -> Outbound:
        entry = self._entries.get(temp_id)
        if entry is None:
            raise TransitionError(f"Unknown outbound message {temp_id}")
        if entry.state is not OutboundState.PENDING:
            raise TransitionError(f"Outbound message {temp_id} already {entry.state.value}")
        return entry

    def confirm(self, temp_id: str, server_copy: Message) -> Message:
        entry = self._require_pending(temp_id)
        confirmed = replace(server_copy, temp_id=temp_id)
        if confirmed.status is DeliveryStatus.SENDING:
            confirmed = replace(confirmed, status=DeliveryStatus.SENT)
        entry.state = OutboundState.CONFIRMED
        entry.message = confirmed
        self.dispatcher.dispatch(confirmed)
        return self.dispatcher.find(confirmed.message_id) or confirmed

    def fail(self, temp_id: str, error: Exception | str) -> Message:
        entry = self._require_pending(temp_id)
        failed = replace(entry.message, status=DeliveryStatus.FAILED)
        entry.state = OutboundState.FAILED
        entry.message = failed
        entry.error = str(error)
        log.warning(f"Send to {entry.channel_id} failed: {error}")
        self.dispatcher.dispatch(failed)
        return failed

    def retry(self, temp_id: str) -> Outbound:
        """Put a failed entry back to PENDING under the same temp id.

        The placeholder is re-dispatched as SENDING, so views that reconcile by id
        swap the failed row in place instead of showing a second copy.
        """
        entry = self._entries.get(temp_id)
        if entry is None or entry.state is not OutboundState.FAILED:
            raise TransitionError(f"No failed outbound message {temp_id}")
        entry.state = OutboundState.PENDING
        entry.error = None
        entry.message = replace(entry.message, status=DeliveryStatus.SENDING)
        self.dispatcher.dispatch(entry.message, restart=True)
        return entry
