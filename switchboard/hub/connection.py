"""Hub connection lifecycle: connect, reconnect, invoke, and the send fallback."""

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import aiohttp

from ..config import Settings
from ..errors import HubConnectionError, HubInvocationError, NotAuthenticated, ValidationError
from ..listeners import ALL, Registry
from ..models import Attachment, ConnectionState, Message
from ..session import SessionStore
from . import protocol
from .api import ChatApi

log = logging.getLogger(__name__)

HUB_EVENTS = (
    "NewMessage",
    "MessageUpdated",
    "MessageDeleted",
    "ChannelArchived",
    "UserOnline",
    "UserOffline",
    "Error",
    "JoinedChannel",
    "LeftChannel",
    "ReadStatusUpdated",
)


class HubSocket(Protocol):
    """Minimal text-frame socket the manager drives."""

    async def send(self, data: str) -> None: ...

    async def recv(self) -> str | None:
        """Next text payload, or None once the socket is closed."""
        ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[HubSocket]]


class AiohttpSocket:
    def __init__(self, http: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse):
        self._http = http
        self._ws = ws

    async def send(self, data: str) -> None:
        await self._ws.send_str(data)

    async def recv(self) -> str | None:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8", errors="replace")
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                return None

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._http.close()


def aiohttp_connector(heartbeat: float = 15.0) -> Connector:
    async def connect(url: str) -> HubSocket:
        http = aiohttp.ClientSession()
        try:
            ws = await http.ws_connect(url, heartbeat=heartbeat)
        except BaseException:
            await http.close()
            raise
        return AiohttpSocket(http, ws)

    return connect


class ConnectionManager:
    """Owns one hub connection for one session.

    `init()` is idempotent and shares an in-flight connect between concurrent
    callers. A dropped link is retried on the `reconnect_delays` schedule;
    `disconnect()` stops that and resets the manager so a later `init()`
    starts from scratch.
    """

    def __init__(
        self,
        settings: Settings,
        sessions: SessionStore,
        api: ChatApi,
        connector: Connector | None = None,
    ):
        self.settings = settings
        self.sessions = sessions
        self.api = api
        self._connector = connector or aiohttp_connector()
        self._handlers: dict[str, Callable[..., Any]] = {}
        self._state_listeners = Registry("connection-state")
        self._ids = itertools.count(1)
        self._reset()

    def _reset(self) -> None:
        self._socket: HubSocket | None = None
        self._connecting: asyncio.Future | None = None
        self._reader: asyncio.Task | None = None
        self._keepalive: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._echoes: list[tuple[tuple, asyncio.Future]] = []
        self._joined: set[str] = set()
        self._closing = False
        self.state = ConnectionState.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._socket is not None

    @property
    def joined_channels(self) -> set[str]:
        return set(self._joined)

    def on(self, target: str, handler: Callable[..., Any]) -> None:
        """Set the single handler for a hub event. Later calls replace it."""
        self._handlers[target] = handler

    def add_state_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        self._state_listeners.add(ALL, callback)

    def remove_state_listener(self, callback: Callable[[ConnectionState], None]) -> None:
        self._state_listeners.remove(ALL, callback)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        self.state = state
        self._state_listeners.notify(ALL, state)

    # Lifecycle

    async def init(self) -> None:
        if self.connected:
            return
        if self._connecting is not None:
            await asyncio.shield(self._connecting)
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            await asyncio.shield(self._reconnect_task)
            if not self.connected:
                raise HubConnectionError("Reconnect to chat hub failed")
            return

        token = self.sessions.token()
        if not token:
            raise NotAuthenticated("No authentication token available")

        self._closing = False
        self._connecting = asyncio.ensure_future(self._open(token))
        try:
            await asyncio.shield(self._connecting)
        finally:
            self._connecting = None
        if self._joined:
            await self._rejoin()

    async def _open(self, token: str) -> None:
        url = protocol.websocket_url(protocol.hub_url_with_token(self.settings.hub_url, token))
        timeout = self.settings.connect_timeout
        if self.state is not ConnectionState.RECONNECTING:
            self._set_state(ConnectionState.CONNECTING)

        socket = None
        try:
            socket = await asyncio.wait_for(self._connector(url), timeout)
            await socket.send(protocol.encode_handshake())
            reply = await asyncio.wait_for(socket.recv(), timeout)
            if reply is None:
                raise HubConnectionError("Hub closed during handshake")
            records = protocol.split(reply)
            if not records:
                raise HubConnectionError("Empty handshake response")
            error = protocol.parse_handshake(records[0])
            if error:
                raise HubConnectionError(f"Hub rejected handshake: {error}")
        except (asyncio.TimeoutError, aiohttp.ClientError, OSError, ValueError) as e:
            await self._discard(socket)
            if self.state is not ConnectionState.RECONNECTING:
                self._set_state(ConnectionState.DISCONNECTED)
            if isinstance(e, HubConnectionError):
                raise
            raise HubConnectionError(f"Error connecting to chat hub: {e}") from e

        self._socket = socket
        self._reader = asyncio.create_task(self._read_loop(socket))
        self._keepalive = asyncio.create_task(self._keepalive_loop(socket))
        self._set_state(ConnectionState.CONNECTED)
        log.info("Connected to chat hub")
        for record in records[1:]:
            self._handle_record(record)

    async def _discard(self, socket: HubSocket | None) -> None:
        if socket is None:
            return
        try:
            await socket.close()
        except Exception as e:
            log.debug(f"Ignoring error closing hub socket: {e}")

    async def _keepalive_loop(self, socket: HubSocket) -> None:
        """Send protocol pings so the hub does not time out an idle client."""
        while self._socket is socket:
            await asyncio.sleep(self.settings.keepalive_interval)
            if self._socket is not socket:
                return
            try:
                await socket.send(protocol.encode_ping())
            except (aiohttp.ClientError, OSError) as e:
                log.debug(f"Keepalive ping failed: {e}")
                return

    async def disconnect(self) -> None:
        """Close the link, stop reconnecting, and forget joined channels."""
        self._closing = True
        tasks = [
            t for t in (self._reconnect_task, self._reader, self._keepalive) if t and not t.done()
        ]
        if self._connecting is not None:
            tasks.append(self._connecting)
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is not current:
                try:
                    await task
                except (asyncio.CancelledError, Exception):
                    pass

        socket = self._socket
        previous = self.state
        self._fail_pending(HubConnectionError("Disconnected from chat hub"))
        self._reset()
        await self._discard(socket)
        if previous is not ConnectionState.DISCONNECTED:
            self._state_listeners.notify(ALL, ConnectionState.DISCONNECTED)
        log.info("Disconnected from chat hub")

    # Inbound

    async def _read_loop(self, socket: HubSocket) -> None:
        try:
            while True:
                data = await socket.recv()
                if data is None:
                    break
                for record in protocol.split(data):
                    self._handle_record(record)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning(f"Hub receive failed: {e}")

        if self._socket is not socket or self._closing:
            return
        self._socket = None
        if self._keepalive is not None:
            self._keepalive.cancel()
            self._keepalive = None
        self._fail_pending(HubConnectionError("Hub connection lost"))
        await self._discard(socket)
        self._reconnect_task = asyncio.create_task(self._reconnect())

    def _handle_record(self, record: str) -> None:
        frame = protocol.parse(record)
        if frame is None:
            log.debug(f"Ignoring malformed hub record: {record[:80]!r}")
            return

        if frame.type == protocol.INVOCATION and frame.target:
            if frame.target == "NewMessage" and self._echoes:
                self._resolve_echo(frame.arguments)
            handler = self._handlers.get(frame.target)
            if handler is None:
                log.debug(f"No handler for hub event {frame.target}")
                return
            try:
                handler(*frame.arguments)
            except Exception:
                log.exception(f"Handler for hub event {frame.target} failed")
        elif frame.type == protocol.COMPLETION and frame.invocation_id:
            future = self._pending.pop(frame.invocation_id, None)
            if future is None or future.done():
                return
            if frame.error:
                future.set_exception(HubInvocationError(frame.error))
            else:
                future.set_result(frame.result)
        elif frame.type == protocol.CLOSE:
            if frame.error:
                log.error(f"Hub closed the connection: {frame.error}")

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        echoes, self._echoes = self._echoes, []
        for future in [*pending.values(), *(f for _, f in echoes)]:
            if not future.done():
                future.set_exception(error)

    def _resolve_echo(self, arguments: list) -> None:
        """Hand a NewMessage broadcast to the oldest send waiting for that content."""
        if not arguments or not isinstance(arguments[0], dict):
            return
        payload = arguments[0]
        sender = payload.get("sender") or {}
        channel_id = str(payload.get("channelId"))
        sender_id = str(payload.get("senderId") or sender.get("id") or "")
        content = (payload.get("body") or "", payload.get("fileUrl"))
        for i, ((expected_channel, expected_sender, expected_content), future) in enumerate(self._echoes):
            if future.done() or expected_channel != channel_id or expected_content != content:
                continue
            if expected_sender is not None and expected_sender != sender_id:
                continue
            future.set_result(payload)
            del self._echoes[i]
            return

    async def _reconnect(self) -> None:
        self._set_state(ConnectionState.RECONNECTING)
        for attempt, delay in enumerate(self.settings.reconnect_delays, start=1):
            if delay:
                log.warning(f"Hub connection lost, retrying in {delay}s (attempt {attempt})")
                await asyncio.sleep(delay)
            if self._closing:
                return
            token = self.sessions.token()
            if not token:
                log.error("Session token gone, giving up reconnect")
                break
            try:
                await self._open(token)
            except HubConnectionError as e:
                log.warning(f"Reconnect attempt {attempt} failed: {e}")
                continue
            await self._rejoin()
            return

        self._set_state(ConnectionState.DISCONNECTED)
        log.error("Could not reconnect to chat hub")

    async def _rejoin(self) -> None:
        for channel_id in sorted(self._joined):
            try:
                await self.invoke("JoinChannel", channel_id)
            except (HubConnectionError, HubInvocationError) as e:
                log.warning(f"Rejoin of channel {channel_id} failed: {e}")

    # Outbound

    async def invoke(self, target: str, *arguments: Any) -> Any:
        """Invoke a hub method and wait for its completion."""
        socket = self._socket
        if socket is None or not self.connected:
            raise HubConnectionError(f"Hub not connected, cannot invoke {target}")

        invocation_id = str(next(self._ids))
        future = asyncio.get_running_loop().create_future()
        self._pending[invocation_id] = future
        try:
            await socket.send(protocol.encode_invocation(target, list(arguments), invocation_id))
            return await asyncio.wait_for(future, self.settings.request_timeout)
        except HubConnectionError:
            raise
        except asyncio.TimeoutError as e:
            raise HubConnectionError(f"Hub did not answer {target} in time") from e
        except (aiohttp.ClientError, OSError) as e:
            raise HubConnectionError(f"Hub send failed for {target}: {e}") from e
        finally:
            self._pending.pop(invocation_id, None)

    async def _await_echo(self, echo: asyncio.Future) -> dict:
        try:
            return await asyncio.wait_for(echo, self.settings.request_timeout)
        except asyncio.TimeoutError as e:
            raise HubConnectionError("Hub accepted SendMessage but sent no copy back in time") from e

    async def _ensure_connected(self) -> bool:
        """Connect if nothing is connected yet. Returns whether the hub is usable."""
        if self.connected:
            return True
        if self.state is ConnectionState.RECONNECTING:
            return False
        try:
            await self.init()
        except HubConnectionError as e:
            log.info(f"Hub unavailable: {e}")
            return False
        return self.connected

    async def send(
        self,
        channel_id: str,
        body: str,
        attachment: Attachment | None = None,
        system_payload: dict | None = None,
    ) -> Message:
        """Post a message through the hub, or the request/response API when it is down.

        Both paths return the server's copy of the message.
        """
        if not (body or "").strip() and attachment is None:
            raise ValidationError("Message body or attachment is required")

        if system_payload is None and await self._ensure_connected():
            user = self.sessions.user()
            echo = asyncio.get_running_loop().create_future()
            content = (body or "", attachment.url if attachment else None)
            self._echoes.append(((channel_id, user.user_id if user else None, content), echo))
            try:
                result = await self.invoke(
                    "SendMessage",
                    channel_id,
                    body,
                    attachment.url if attachment else None,
                    attachment.file_type if attachment else None,
                    attachment.size if attachment else None,
                )
                if not isinstance(result, dict):
                    # SendMessage completes empty; the stored copy comes back as a
                    # NewMessage broadcast to the channel group, which includes us.
                    result = await self._await_echo(echo)
            finally:
                self._echoes = [(key, f) for key, f in self._echoes if f is not echo]
                if echo.done() and not echo.cancelled():
                    echo.exception()  # retrieved, so a dropped link does not warn
            return Message.from_dict(result)

        log.info(f"Sending to {channel_id} through the chat API")
        return await self.api.create_message(channel_id, body, attachment, system_payload)

    async def join(self, channel_id: str) -> bool:
        connected = await self._ensure_connected()
        self._joined.add(channel_id)
        if not connected:
            return False
        await self.invoke("JoinChannel", channel_id)
        return True

    async def leave(self, channel_id: str) -> bool:
        self._joined.discard(channel_id)
        if not self.connected:
            return False
        await self.invoke("LeaveChannel", channel_id)
        return True

    async def mark_read(self, channel_id: str) -> bool:
        if not self.connected:
            return False
        await self.invoke("UpdateReadStatus", channel_id)
        return True
