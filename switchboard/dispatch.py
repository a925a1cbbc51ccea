"""Inbound fan-out: per-channel message listeners, archive and presence listeners."""

import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import replace

from .listeners import ALL, Registry
from .models import Message

log = logging.getLogger(__name__)

MessageListener = Callable[[Message], None]
ChannelStatusListener = Callable[[str], None]
PresenceListener = Callable[[str, bool], None]


def reconcile(messages: list[Message], message: Message) -> list[Message]:
    """Return `messages` with `message` replacing its id (or temp id) match, else appended.

    Helper for listeners that keep their own list.
    """
    result = []
    placed = False
    for existing in messages:
        same = existing.message_id == message.message_id
        echo = message.temp_id is not None and existing.message_id == message.temp_id
        if same or echo:
            if not placed:
                result.append(message)
                placed = True
            continue
        result.append(existing)
    if not placed:
        result.append(message)
    return result


class MessageDispatcher:
    """Per-channel listener registry plus the live set of known messages.

    A message whose id is already live in its channel replaces the known copy
    in place; listeners get the full message either way and reconcile by id.
    """

    def __init__(self):
        self._messages = Registry("message-listeners")
        self._channel_status = Registry("channel-status-listeners")
        self._presence = Registry("presence-listeners")
        self._live: dict[str, OrderedDict[str, Message]] = {}
        self._index: dict[str, str] = {}

    # Registration

    def add_listener(self, channel_id: str, callback: MessageListener) -> None:
        self._messages.add(channel_id, callback)

    def remove_listener(self, channel_id: str, callback: MessageListener) -> None:
        self._messages.remove(channel_id, callback)

    def listener_count(self, channel_id: str) -> int:
        return self._messages.count(channel_id)

    def add_channel_status_listener(self, channel_id: str, callback: ChannelStatusListener) -> None:
        self._channel_status.add(channel_id, callback)

    def remove_channel_status_listener(self, channel_id: str, callback: ChannelStatusListener) -> None:
        self._channel_status.remove(channel_id, callback)

    def add_presence_listener(self, callback: PresenceListener) -> None:
        self._presence.add(ALL, callback)

    def remove_presence_listener(self, callback: PresenceListener) -> None:
        self._presence.remove(ALL, callback)

    # Live set

    def messages(self, channel_id: str) -> list[Message]:
        return list(self._live.get(channel_id, {}).values())

    def find(self, message_id: str) -> Message | None:
        channel_id = self._index.get(message_id)
        if channel_id is None:
            return None
        return self._live.get(channel_id, {}).get(message_id)

    def seed(self, channel_id: str, messages: list[Message]) -> None:
        """Load history into the live set without notifying listeners."""
        for message in messages:
            if message.channel_id == channel_id:
                self._store(message)

    def forget(self, channel_id: str) -> None:
        """Drop the live set of a channel the user left."""
        live = self._live.pop(channel_id, {})
        for message_id in live:
            self._index.pop(message_id, None)

    def _store(self, message: Message, restart: bool = False) -> bool:
        """Insert or replace. Returns True when the message was appended.

        `restart` lets a retried send put its placeholder back to SENDING.
        """
        live = self._live.setdefault(message.channel_id, OrderedDict())

        if message.temp_id and message.temp_id != message.message_id and message.temp_id in live:
            placeholder = live[message.temp_id]
            if message.message_id in live:
                del live[message.temp_id]
            else:
                live[message.temp_id] = message
                keys = list(live.keys())
                position = keys.index(message.temp_id)
                rebuilt = OrderedDict()
                for i, key in enumerate(keys):
                    rebuilt[message.message_id if i == position else key] = live[key]
                self._live[message.channel_id] = live = rebuilt
            self._index.pop(message.temp_id, None)
            message = replace(message, status=placeholder.status.advance(message.status))

        existing = live.get(message.message_id)
        if existing is not None:
            status = message.status if restart else existing.status.advance(message.status)
            live[message.message_id] = replace(message, status=status)
            self._index[message.message_id] = message.channel_id
            return False

        live[message.message_id] = message
        self._index[message.message_id] = message.channel_id
        return True

    # Dispatch

    def dispatch(self, message: Message, restart: bool = False) -> bool:
        """Reconcile `message` into the live set and notify its channel's listeners.

        Returns True if the message was new to the channel, False if it replaced a
        known copy.
        """
        appended = self._store(message, restart)
        stored = self._live[message.channel_id][message.message_id]
        self._messages.notify(message.channel_id, stored)
        return appended

    def mark_deleted(self, message_id: str) -> Message | None:
        """Flip the delete flag of a known message and dispatch it. Body is kept."""
        existing = self.find(message_id)
        if existing is None:
            log.info(f"Delete for unknown message {message_id} dropped")
            return None
        deleted = replace(existing, deleted=True)
        self.dispatch(deleted)
        return deleted

    def dispatch_archived(self, channel_id: str) -> int:
        return self._channel_status.notify(channel_id, channel_id)

    def dispatch_presence(self, user_id: str, online: bool) -> int:
        return self._presence.notify(ALL, user_id, online)
