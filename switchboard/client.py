"""Session-scoped chat client wiring connection, directory, dispatch, and unread state."""

import functools
import logging
from collections.abc import Callable
from typing import Any

from .config import Settings
from .directory import ChannelDirectory
from .dispatch import MessageDispatcher, MessageListener
from .errors import NotAuthenticated, NotFoundError, SwitchboardError, ValidationError
from .hub.api import ChatApi
from .hub.connection import ConnectionManager, Connector
from .models import Attachment, Channel, ChannelType, ConnectionState, Member, Message, User
from .outbox import Outbound, OutboundState, Outbox
from .permissions import PermissionPolicy, direct_recipient
from .session import SessionStore
from .system import SystemPayload, normalize_payload
from .unread import UnreadTracker

log = logging.getLogger(__name__)


def _hub_event(name: str):
    """Log and drop malformed hub payloads instead of killing the reader."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args):
            try:
                return fn(self, *args)
            except (KeyError, TypeError, ValueError) as e:
                log.warning(f"Dropping malformed {name} event: {e}")
                return None

        return wrapper

    return decorator


class ChatClient:
    """One authenticated chat session.

    Usage:
        async with ChatClient(settings, FileSessionStore(settings.session_path)) as chat:
            chat.add_listener(channel_id, on_message)
            await chat.activate(channel_id)
            await chat.send(channel_id, "hello")
    """

    def __init__(
        self,
        settings: Settings,
        sessions: SessionStore,
        api: ChatApi | None = None,
        connector: Connector | None = None,
        policy: PermissionPolicy | None = None,
    ):
        self.settings = settings
        self.sessions = sessions
        self.api = api or ChatApi(settings.api_url, sessions, timeout=settings.request_timeout)
        self.connection = ConnectionManager(settings, sessions, self.api, connector)
        self.directory = ChannelDirectory(self.api)
        self.dispatcher = MessageDispatcher()
        self.unread = UnreadTracker()
        self.outbox = Outbox(self.dispatcher)
        self.policy = policy or PermissionPolicy()
        self._user: User | None = None
        self._register_hub_handlers()

    async def __aenter__(self) -> "ChatClient":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def user(self) -> User:
        if self._user is None:
            user = self.sessions.user()
            if user is None:
                raise NotAuthenticated("No user profile in session")
            self._user = user
        return self._user

    async def start(self) -> list[Channel]:
        """Connect to the hub and load channels. A hub outage leaves the API fallback in use."""
        _ = self.user
        try:
            await self.connection.init()
        except NotAuthenticated:
            raise
        except SwitchboardError as e:
            log.warning(f"Starting without live updates: {e}")
        return await self.directory.refresh()

    async def close(self) -> None:
        await self.connection.disconnect()
        await self.api.close()

    # Hub events

    def _register_hub_handlers(self) -> None:
        on = self.connection.on
        on("NewMessage", self._on_new_message)
        on("MessageUpdated", self._on_message_updated)
        on("MessageDeleted", self._on_message_deleted)
        on("ChannelArchived", self._on_channel_archived)
        on("UserOnline", lambda user_id: self._on_presence(user_id, True))
        on("UserOffline", lambda user_id: self._on_presence(user_id, False))
        on("ReadStatusUpdated", self._on_read_status)
        on("JoinedChannel", lambda channel_id: log.debug(f"Joined channel {channel_id}"))
        on("LeftChannel", lambda channel_id: log.debug(f"Left channel {channel_id}"))
        on("Error", self._on_error)

    @_hub_event("NewMessage")
    def _on_new_message(self, payload: dict) -> None:
        message = Message.from_dict(payload)
        if self.dispatcher.dispatch(message) and message.sender_id != self.user.user_id:
            self.unread.increment(message.channel_id)

    @_hub_event("MessageUpdated")
    def _on_message_updated(self, payload: dict) -> None:
        self.dispatcher.dispatch(Message.from_dict(payload))

    @_hub_event("MessageDeleted")
    def _on_message_deleted(self, message_id: str) -> None:
        self.dispatcher.mark_deleted(str(message_id))

    @_hub_event("ChannelArchived")
    def _on_channel_archived(self, channel_id: str) -> None:
        channel_id = str(channel_id)
        self.directory.mark_archived(channel_id)
        self.dispatcher.dispatch_archived(channel_id)

    @_hub_event("UserOnline/UserOffline")
    def _on_presence(self, user_id: str, online: bool) -> None:
        self.dispatcher.dispatch_presence(str(user_id), online)

    @_hub_event("ReadStatusUpdated")
    def _on_read_status(self, channel_id: str) -> None:
        self.unread.reset(str(channel_id))

    def _on_error(self, reason: Any) -> None:
        log.error(f"Chat hub error: {reason}")

    # Listeners

    def add_listener(self, channel_id: str, callback: MessageListener) -> None:
        self.dispatcher.add_listener(channel_id, callback)

    def remove_listener(self, channel_id: str, callback: MessageListener) -> None:
        self.dispatcher.remove_listener(channel_id, callback)

    def on_channel_archived(self, channel_id: str, callback: Callable[[str], None]) -> None:
        self.dispatcher.add_channel_status_listener(channel_id, callback)

    def on_presence(self, callback: Callable[[str, bool], None]) -> None:
        self.dispatcher.add_presence_listener(callback)

    def on_connection_state(self, callback: Callable[[ConnectionState], None]) -> None:
        self.connection.add_state_listener(callback)

    # Channels

    def channels(self, include_archived: bool = True) -> list[Channel]:
        return self.directory.list(include_archived=include_archived)

    def unread_count(self, channel_id: str) -> int:
        return self.unread.get(channel_id)

    async def members(self, channel_id: str) -> list[Member]:
        return await self.directory.members(channel_id)

    async def load_history(self, channel_id: str, limit: int = 50, offset: int = 0) -> list[Message]:
        messages = await self.api.get_messages(channel_id, limit=limit, offset=offset)
        self.dispatcher.seed(channel_id, messages)
        return self.dispatcher.messages(channel_id)

    async def activate(self, channel_id: str) -> list[Message]:
        """Make `channel_id` the active channel: clear unread, load history, join, mark read."""
        self.directory.get(channel_id)
        self.unread.activate(channel_id)
        history = await self.load_history(channel_id)
        try:
            await self.connection.join(channel_id)
            await self.connection.mark_read(channel_id)
        except SwitchboardError as e:
            log.warning(f"Live updates for {channel_id} unavailable: {e}")
        return history

    def deactivate(self) -> None:
        self.unread.activate(None)

    async def leave(self, channel_id: str) -> None:
        if self.unread.active_channel_id == channel_id:
            self.deactivate()
        await self.connection.leave(channel_id)
        self.dispatcher.forget(channel_id)

    async def mark_read(self, channel_id: str) -> None:
        await self.connection.mark_read(channel_id)
        self.unread.reset(channel_id)

    async def create_channel(
        self,
        name: str,
        channel_type: ChannelType,
        department_id: str | None = None,
        project_id: str | None = None,
    ) -> Channel:
        if not name.strip():
            raise ValidationError("Channel name is required")
        return await self.directory.create_channel(name, channel_type, department_id, project_id)

    async def open_direct_channel(self, recipient_id: str) -> Channel:
        return await self.directory.create_direct_channel(recipient_id)

    async def archive_channel(self, channel_id: str) -> Channel:
        channel = await self.directory.archive_channel(channel_id)
        self.dispatcher.dispatch_archived(channel_id)
        return channel

    # Permissions

    async def explain_post(self, channel_id: str) -> tuple[bool, str]:
        try:
            channel = self.directory.get(channel_id)
        except NotFoundError:
            return False, "unknown channel"
        recipient = None
        if channel.channel_type is ChannelType.DIRECT_MESSAGE:
            await self.directory.members(channel_id)
            recipient = direct_recipient(self.user, channel)
        return self.policy.explain(self.user, channel, recipient)

    async def can_post(self, channel_id: str) -> bool:
        allowed, _ = await self.explain_post(channel_id)
        return allowed

    # Messages

    async def send(
        self, channel_id: str, body: str, attachment: Attachment | None = None
    ) -> Message | None:
        """Send as the session user.

        Returns the confirmed message, or None when the user may not post here.
        A transport failure marks the optimistic copy FAILED and re-raises.
        """
        return await self._send(channel_id, body, attachment, None)

    async def send_system_message(
        self, channel_id: str, body: str, payload: SystemPayload | dict
    ) -> Message | None:
        """Entry point for scheduled producers: a send with a structured payload."""
        return await self._send(channel_id, body, None, normalize_payload(payload))

    async def _send(
        self,
        channel_id: str,
        body: str,
        attachment: Attachment | None,
        system_payload: dict | None,
    ) -> Message | None:
        if not (body or "").strip() and attachment is None:
            raise ValidationError("Message body or attachment is required")

        if not await self.can_post(channel_id):
            log.info(f"{self.user.user_id} may not post to {channel_id}")
            return None

        entry = self.outbox.begin(channel_id, self.user.user_id, body, attachment, system_payload)
        return await self._deliver(entry)

    async def _deliver(self, entry: Outbound) -> Message:
        message = entry.message
        try:
            server_copy = await self.connection.send(
                message.channel_id, message.body, message.attachment, message.system_payload
            )
        except SwitchboardError as e:
            self.outbox.fail(entry.temp_id, e)
            raise
        return self.outbox.confirm(entry.temp_id, server_copy)

    async def retry(self, temp_id: str) -> Message | None:
        """Re-send a failed message under the same temp id."""
        entry = self.outbox.get(temp_id)
        if entry is None or entry.state is not OutboundState.FAILED:
            raise NotFoundError(f"No failed message {temp_id}")
        if not await self.can_post(entry.channel_id):
            log.info(f"{self.user.user_id} may no longer post to {entry.channel_id}")
            return None
        return await self._deliver(self.outbox.retry(temp_id))

    async def edit_message(self, message_id: str, body: str) -> Message:
        if not body.strip():
            raise ValidationError("Message body is required")
        updated = await self.api.update_message(message_id, body)
        self.dispatcher.dispatch(updated)
        return updated

    async def delete_message(self, message_id: str) -> Message | None:
        await self.api.delete_message(message_id)
        return self.dispatcher.mark_deleted(message_id)

    async def search(self, query: str, channel_id: str | None = None) -> list[Message]:
        if not query.strip():
            raise ValidationError("Search query is required")
        return await self.api.search_messages(query, channel_id)
