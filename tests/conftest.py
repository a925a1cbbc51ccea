import asyncio
import json

import pytest

from switchboard import config
from switchboard.config import Settings
from switchboard.hub import protocol
from switchboard.models import Channel, ChannelType, Member, Role, User
from switchboard.session import MemorySessionStore


class FakeSocket:
    """In-memory hub socket. Replies are queued by the owning FakeHub."""

    def __init__(self, hub: "FakeHub"):
        self.hub = hub
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        for record in protocol.split(data):
            payload = json.loads(record)
            self.sent.append(payload)
            self.hub.respond(self, payload)

    async def recv(self) -> str | None:
        return await self.inbox.get()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.inbox.put_nowait(None)

    def push(self, target: str, *arguments) -> None:
        self.inbox.put_nowait(protocol.encode_invocation(target, list(arguments)))

    def drop(self) -> None:
        """Simulate the server going away."""
        self.closed = True
        self.inbox.put_nowait(None)

    def invocations(self, target: str | None = None) -> list[dict]:
        return [
            p
            for p in self.sent
            if p.get("type") == protocol.INVOCATION and (target is None or p["target"] == target)
        ]


class FakeHub:
    """Connector plus scripted server behaviour for ConnectionManager tests."""

    def __init__(self, sender_id: str = "u-admin"):
        self.sender_id = sender_id
        self.sockets: list[FakeSocket] = []
        self.urls: list[str] = []
        self.connects = 0
        self.fail_next = 0
        self.reject: str | None = None
        self.gate: asyncio.Event | None = None
        self.errors: dict[str, str] = {}
        # Like the real hub: SendMessage completes empty and the stored copy is
        # broadcast as NewMessage to the channel group, sender included.
        self.echo = True
        self.complete_with_message = False
        self._ids = 0

    @property
    def socket(self) -> FakeSocket:
        return self.sockets[-1]

    async def connect(self, url: str) -> FakeSocket:
        self.connects += 1
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_next:
            self.fail_next -= 1
            raise OSError("connection refused")
        socket = FakeSocket(self)
        self.sockets.append(socket)
        return socket

    def respond(self, socket: FakeSocket, payload: dict) -> None:
        if "protocol" in payload:
            reply = {"error": self.reject} if self.reject else {}
            socket.inbox.put_nowait(protocol.encode(reply))
            return
        invocation_id = payload.get("invocationId")
        if payload.get("type") != protocol.INVOCATION or invocation_id is None:
            return
        target = payload["target"]
        if target in self.errors:
            socket.inbox.put_nowait(
                protocol.encode(
                    {"type": protocol.COMPLETION, "invocationId": invocation_id, "error": self.errors[target]}
                )
            )
            return
        result = None
        if target == "SendMessage":
            message = self.message_for(*payload["arguments"])
            if self.echo:
                socket.push("NewMessage", message)
            if self.complete_with_message:
                result = message
        socket.inbox.put_nowait(
            protocol.encode({"type": protocol.COMPLETION, "invocationId": invocation_id, "result": result})
        )

    def message_for(self, channel_id, body, file_url=None, file_type=None, file_size=None) -> dict:
        self._ids += 1
        return {
            "id": f"m{self._ids}",
            "channelId": channel_id,
            "senderId": self.sender_id,
            "body": body,
            "fileUrl": file_url,
            "fileType": file_type,
            "fileSize": file_size,
            "createdAt": "2024-05-01T10:00:00Z",
        }


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Point config at an empty temp location so a real ~/.switchboard is never read."""
    monkeypatch.setenv("SWITCHBOARD_CONFIG", str(tmp_path / "config.yaml"))
    config._clear_cache()
    yield tmp_path / "config.yaml"
    config._clear_cache()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        connect_timeout=1.0,
        request_timeout=1.0,
        reconnect_delays=[0],
        session_file=str(tmp_path / "session.json"),
    )


@pytest.fixture
def admin():
    return User("u-admin", Role.ADMIN, "eng", name="Ada Admin")


@pytest.fixture
def session(admin):
    return MemorySessionStore("tok-123", admin)


@pytest.fixture
def hub():
    return FakeHub()


@pytest.fixture
def channels():
    return [
        Channel("c-general", "general", ChannelType.GENERAL, updated_at="2024-05-01T09:00:00Z"),
        Channel("c-eng", "engineering", ChannelType.DEPARTMENT, department_id="eng"),
        Channel(
            "c-dm",
            "ada / dan",
            ChannelType.DIRECT_MESSAGE,
            members=[Member("u-admin", Role.ADMIN, "eng"), Member("u-dev", Role.DEVELOPER, "eng")],
        ),
    ]


@pytest.fixture
def eventually():
    """Await until `predicate()` holds, failing after `timeout` seconds."""

    async def wait(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return wait
