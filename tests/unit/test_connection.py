import asyncio
from unittest.mock import AsyncMock

import pytest

from switchboard.errors import HubConnectionError, HubInvocationError, NotAuthenticated, ValidationError
from switchboard.hub import protocol
from switchboard.hub.api import ChatApi
from switchboard.hub.connection import ConnectionManager
from switchboard.models import Attachment, ConnectionState, Message
from switchboard.session import MemorySessionStore


@pytest.fixture
def api():
    api = AsyncMock(spec=ChatApi)
    api.create_message.side_effect = lambda channel_id, body, attachment=None, system_payload=None: Message(
        "api-1", channel_id, "u-admin", body, attachment=attachment
    )
    return api


@pytest.fixture
def manager(settings, session, api, hub):
    return ConnectionManager(settings, session, api, connector=hub.connect)


@pytest.fixture
def states(manager):
    seen = []
    manager.add_state_listener(seen.append)
    return seen


@pytest.mark.asyncio
async def test_concurrent_init_shares_one_connect(manager, hub, states):
    hub.gate = asyncio.Event()
    both = asyncio.gather(manager.init(), manager.init())
    await asyncio.sleep(0)
    hub.gate.set()
    await both
    await manager.init()

    assert hub.connects == 1
    assert manager.connected
    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert hub.urls[0] == "ws://localhost:5000/hubs/chat?access_token=tok-123"
    await manager.disconnect()


@pytest.mark.asyncio
async def test_init_without_token_raises(settings, api, hub):
    manager = ConnectionManager(settings, MemorySessionStore(None), api, connector=hub.connect)
    with pytest.raises(NotAuthenticated):
        await manager.init()
    assert hub.connects == 0


@pytest.mark.asyncio
async def test_failed_connect_is_retryable(manager, hub):
    hub.fail_next = 1
    with pytest.raises(HubConnectionError):
        await manager.init()
    assert manager.state is ConnectionState.DISCONNECTED

    await manager.init()
    assert manager.connected
    assert hub.connects == 2
    await manager.disconnect()


@pytest.mark.asyncio
async def test_rejected_handshake(manager, hub):
    hub.reject = "unsupported protocol"
    with pytest.raises(HubConnectionError, match="unsupported protocol"):
        await manager.init()
    assert hub.socket.closed
    assert not manager.connected


@pytest.mark.asyncio
async def test_connect_timeout_is_bounded(settings, session, api):
    settings.connect_timeout = 0.05

    async def hang(url):
        await asyncio.sleep(10)

    manager = ConnectionManager(settings, session, api, connector=hang)
    with pytest.raises(HubConnectionError):
        await manager.init()


@pytest.mark.asyncio
async def test_hub_send_returns_broadcast_copy_after_empty_completion(manager, hub, api):
    await manager.init()
    message = await manager.send("c1", "hello", Attachment("https://f/a.png", "image/png", 5))

    assert message.message_id == "m1"
    assert message.attachment.url == "https://f/a.png"
    assert hub.socket.invocations("SendMessage")[0]["arguments"] == [
        "c1",
        "hello",
        "https://f/a.png",
        "image/png",
        5,
    ]
    api.create_message.assert_not_awaited()
    await manager.disconnect()


@pytest.mark.asyncio
async def test_hub_send_accepts_message_in_completion(manager, hub):
    hub.complete_with_message = True
    hub.echo = False
    await manager.init()
    message = await manager.send("c1", "hello")
    assert message.message_id == "m1"
    await manager.disconnect()


@pytest.mark.asyncio
async def test_hub_send_without_broadcast_times_out(manager, hub, settings):
    settings.request_timeout = 0.1
    hub.echo = False
    await manager.init()
    with pytest.raises(HubConnectionError, match="no copy back"):
        await manager.send("c1", "hello")
    assert manager._echoes == []
    await manager.disconnect()


@pytest.mark.asyncio
async def test_broadcast_from_another_sender_is_not_our_copy(manager, hub, settings):
    settings.request_timeout = 0.1
    hub.sender_id = "u-someone-else"
    await manager.init()
    with pytest.raises(HubConnectionError):
        await manager.send("c1", "hello")
    await manager.disconnect()


@pytest.mark.asyncio
async def test_concurrent_sends_each_get_their_own_copy(manager, hub):
    await manager.init()
    first, second = await asyncio.gather(manager.send("c1", "one"), manager.send("c1", "two"))
    assert (first.body, second.body) == ("one", "two")
    assert first.message_id != second.message_id
    await manager.disconnect()


@pytest.mark.asyncio
async def test_keepalive_pings_until_disconnect(manager, hub, settings, eventually):
    settings.keepalive_interval = 0.02
    await manager.init()
    socket = hub.socket

    def pings():
        return [p for p in socket.sent if p.get("type") == protocol.PING]

    await eventually(lambda: len(pings()) >= 2)
    await manager.disconnect()
    sent = len(pings())
    await asyncio.sleep(0.06)

    assert len(pings()) == sent
    assert manager._keepalive is None


@pytest.mark.asyncio
async def test_keepalive_moves_to_new_socket_after_reconnect(manager, hub, settings, eventually):
    settings.keepalive_interval = 0.02
    await manager.init()
    first = hub.socket
    first.drop()
    await eventually(lambda: len(hub.sockets) == 2 and manager.connected)
    await eventually(lambda: any(p.get("type") == protocol.PING for p in hub.socket.sent))
    await manager.disconnect()


@pytest.mark.asyncio
async def test_send_falls_back_with_same_shape(manager, hub, api):
    await manager.init()
    via_hub = await manager.send("c1", "hello")
    await manager.disconnect()

    hub.fail_next = 5
    via_api = await manager.send("c1", "hello")

    api.create_message.assert_awaited_once()
    assert type(via_api) is type(via_hub)
    assert set(via_api.to_dict()) == set(via_hub.to_dict())
    assert (via_api.channel_id, via_api.body) == (via_hub.channel_id, via_hub.body)


@pytest.mark.asyncio
async def test_system_payload_goes_through_api(manager, api):
    await manager.init()
    await manager.send("c1", "brief", system_payload={"type": "ALERT", "title": "x"})
    api.create_message.assert_awaited_once_with("c1", "brief", None, {"type": "ALERT", "title": "x"})
    await manager.disconnect()


@pytest.mark.asyncio
async def test_empty_send_rejected_before_network(manager, hub, api):
    with pytest.raises(ValidationError):
        await manager.send("c1", "   ")
    assert hub.connects == 0
    api.create_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_hub_event_reaches_handler(manager, hub, eventually):
    received = []
    manager.on("NewMessage", received.append)
    await manager.init()

    hub.socket.push("NewMessage", {"id": "m9", "channelId": "c1", "body": "hey"})
    hub.socket.push("Unregistered", 1)

    await eventually(lambda: received)
    assert received == [{"id": "m9", "channelId": "c1", "body": "hey"}]
    await manager.disconnect()


@pytest.mark.asyncio
async def test_invocation_error_completion(manager, hub):
    hub.errors["JoinChannel"] = "no such channel"
    await manager.init()
    with pytest.raises(HubInvocationError, match="no such channel"):
        await manager.join("c404")
    await manager.disconnect()


@pytest.mark.asyncio
async def test_disconnect_resets_for_clean_init(manager, hub, states):
    await manager.init()
    await manager.join("c1")
    socket = hub.socket

    await manager.disconnect()

    assert socket.closed
    assert manager.state is ConnectionState.DISCONNECTED
    assert manager.joined_channels == set()
    assert states[-1] is ConnectionState.DISCONNECTED
    assert await manager.mark_read("c1") is False

    await manager.disconnect()
    assert states.count(ConnectionState.DISCONNECTED) == 1

    await manager.init()
    assert hub.connects == 2
    assert hub.socket.invocations("JoinChannel") == []
    await manager.disconnect()


@pytest.mark.asyncio
async def test_dropped_link_reconnects_and_rejoins(manager, hub, states, eventually):
    await manager.init()
    await manager.join("c1")
    await manager.join("c2")
    first = hub.socket

    first.drop()
    await eventually(lambda: len(hub.sockets) == 2 and manager.connected)
    await eventually(lambda: len(hub.socket.invocations("JoinChannel")) == 2)

    assert ConnectionState.RECONNECTING in states
    assert [i["arguments"] for i in hub.socket.invocations("JoinChannel")] == [["c1"], ["c2"]]
    await manager.disconnect()


@pytest.mark.asyncio
async def test_reconnect_gives_up_after_schedule(manager, hub, states, eventually):
    await manager.init()
    hub.fail_next = 10
    hub.socket.drop()

    await eventually(lambda: states[-1] is ConnectionState.DISCONNECTED)
    assert ConnectionState.RECONNECTING in states
    assert hub.connects == 2

    hub.fail_next = 0
    await manager.init()
    assert manager.connected
    await manager.disconnect()


@pytest.mark.asyncio
async def test_send_while_reconnecting_uses_api(manager, hub, api, eventually):
    await manager.init()
    hub.gate = asyncio.Event()
    hub.socket.drop()
    await eventually(lambda: manager.state is ConnectionState.RECONNECTING)

    message = await manager.send("c1", "during outage")

    assert message.message_id == "api-1"
    api.create_message.assert_awaited_once()
    hub.gate.set()
    await eventually(lambda: manager.connected)
    await manager.disconnect()


@pytest.mark.asyncio
async def test_pending_invocation_fails_on_drop(manager, hub, settings):
    settings.request_timeout = 5.0
    await manager.init()
    hub.respond = lambda socket, payload: None

    task = asyncio.create_task(manager.invoke("JoinChannel", "c1"))
    await asyncio.sleep(0.01)
    hub.socket.drop()

    with pytest.raises(HubConnectionError):
        await task
    await manager.disconnect()
