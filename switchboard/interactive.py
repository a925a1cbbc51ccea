"""Interactive single-channel chat: stream inbound messages while reading input."""

import asyncio
import sys

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout

from .client import ChatClient
from .errors import SwitchboardError
from .format import format_message
from .models import ConnectionState, DeliveryStatus, Message


class Colors:
    CYAN = "\033[36m"
    GRAY = "\033[90m"
    YELLOW = "\033[33m"
    RED = "\033[31m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


def _styled(text: str, *colors: str) -> str:
    return f"{''.join(colors)}{text}{Colors.RESET}"


def render(message: Message, own_id: str) -> str:
    line = format_message(message)
    if message.status is DeliveryStatus.FAILED:
        return _styled(line, Colors.RED)
    if message.status is DeliveryStatus.SENDING:
        return _styled(line, Colors.GRAY)
    if message.sender_id == own_id:
        return _styled(line, Colors.CYAN)
    return line


class ChatSession:
    def __init__(self, client: ChatClient, channel_id: str):
        self.client = client
        self.channel_id = channel_id
        self.running = True
        self.prompt = PromptSession(history=InMemoryHistory())
        self._shown: dict[str, tuple] = {}

    def _on_message(self, message: Message) -> None:
        if message.status is DeliveryStatus.SENDING:
            return
        # A confirmation and the hub echo of it carry the same content; print once.
        shown = (message.body, message.edited, message.deleted, message.status is DeliveryStatus.FAILED)
        if self._shown.get(message.message_id) == shown:
            return
        self._shown[message.message_id] = shown
        print(render(message, self.client.user.user_id))

    def _on_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.RECONNECTING:
            print(_styled("⚠ connection lost, reconnecting…", Colors.YELLOW), file=sys.stderr)
        elif state is ConnectionState.DISCONNECTED:
            print(_styled("⚠ offline, messages go through the API", Colors.YELLOW), file=sys.stderr)
        elif state is ConnectionState.CONNECTED:
            print(_styled("connected", Colors.GRAY), file=sys.stderr)

    def _on_archived(self, channel_id: str) -> None:
        print(_styled(f"#{channel_id} was archived; it is now read-only", Colors.YELLOW))

    async def read_input(self) -> None:
        loop = asyncio.get_running_loop()
        while self.running:
            try:
                with patch_stdout():
                    text = await loop.run_in_executor(None, self.prompt.prompt, "> ")
            except (EOFError, KeyboardInterrupt):
                self.running = False
                return
            text = text.strip()
            if not text:
                continue
            if text in ("/quit", "/exit"):
                self.running = False
                return
            try:
                sent = await self.client.send(self.channel_id, text)
            except SwitchboardError as e:
                print(_styled(f"⚠ {e}", Colors.YELLOW), file=sys.stderr)
                continue
            if sent is None:
                print(_styled("⚠ you cannot post in this channel", Colors.YELLOW), file=sys.stderr)

    async def run(self) -> None:
        channel = self.client.directory.get(self.channel_id)
        self.client.on_connection_state(self._on_state)
        self.client.on_channel_archived(self.channel_id, self._on_archived)
        history = await self.client.activate(self.channel_id)

        print(_styled(f"\n#{channel.name}", Colors.BOLD, Colors.CYAN))
        for message in history:
            self._shown[message.message_id] = (
                message.body,
                message.edited,
                message.deleted,
                message.status is DeliveryStatus.FAILED,
            )
            print(render(message, self.client.user.user_id))
        print()

        self.client.add_listener(self.channel_id, self._on_message)
        try:
            await self.read_input()
        finally:
            self.client.remove_listener(self.channel_id, self._on_message)
            self.client.deactivate()
