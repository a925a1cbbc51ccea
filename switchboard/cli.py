"""switchboard CLI: thin command wrappers over ChatClient."""

import asyncio
import json
import logging

import typer

from . import config
from .client import ChatClient
from .errors import SwitchboardError
from .format import format_channel, format_message
from .models import Attachment, ConnectionState, Message
from .session import FileSessionStore

app = typer.Typer(help="Project chat from the terminal")


def build_client(settings: config.Settings) -> ChatClient:
    return ChatClient(settings, FileSessionStore(settings.session_path))


@app.callback()
def main_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output in JSON format."),
    quiet_output: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output."),
    api_url: str = typer.Option(None, "--api-url", help="Override chat API URL."),
    hub_url: str = typer.Option(None, "--hub-url", help="Override chat hub URL."),
):
    """Read and post project chat messages."""
    if ctx.obj is None:
        ctx.obj = {}
    ctx.obj["json_output"] = json_output
    ctx.obj["quiet_output"] = quiet_output
    if ctx.resilient_parsing:
        return
    try:
        settings = config.load_settings(api_url=api_url, hub_url=hub_url)
    except SwitchboardError as e:
        fail(ctx, e)
    ctx.obj["settings"] = settings
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def output_json(data, ctx: typer.Context):
    """Output data as JSON if requested. Returns True if output, False otherwise."""
    if ctx.obj.get("json_output"):
        typer.echo(json.dumps(data, indent=2, default=str))
        return True
    return False


def echo_if_output(msg: str, ctx: typer.Context):
    if not ctx.obj.get("quiet_output"):
        typer.echo(msg)


def fail(ctx: typer.Context, error: Exception):
    output_json({"status": "error", "message": str(error)}, ctx) or echo_if_output(f"❌ {error}", ctx)
    raise typer.Exit(code=1) from error


def _run(ctx: typer.Context, command):
    """Run `command(client)` inside a started client session."""

    async def runner():
        async with build_client(ctx.obj["settings"]) as client:
            return await command(client)

    try:
        return asyncio.run(runner())
    except SwitchboardError as e:
        fail(ctx, e)


@app.command("channels")
def channels_cmd(
    ctx: typer.Context,
    show_archived: bool = typer.Option(False, "--archived", "-a", help="Include archived channels"),
):
    """List channels visible to the session user."""

    async def command(client: ChatClient):
        return [(c, client.unread_count(c.channel_id)) for c in client.channels(show_archived)]

    rows = _run(ctx, command)
    if output_json(
        [
            {
                "id": c.channel_id,
                "name": c.name,
                "type": c.channel_type.value if c.channel_type else None,
                "archived": c.archived,
                "unread": unread,
            }
            for c, unread in rows
        ],
        ctx,
    ):
        return
    if not rows:
        echo_if_output("No channels", ctx)
        return
    for channel, unread in rows:
        echo_if_output(format_channel(channel, unread), ctx)


@app.command("history")
def history_cmd(
    ctx: typer.Context,
    channel: str = typer.Argument(..., help="Channel id"),
    limit: int = typer.Option(50, "--limit", "-n", help="Messages to fetch"),
):
    """Show recent messages of a channel."""

    async def command(client: ChatClient):
        return await client.load_history(channel, limit=limit)

    messages = _run(ctx, command)
    if output_json([m.to_dict() for m in messages], ctx):
        return
    for message in messages:
        echo_if_output(format_message(message), ctx)


@app.command("send")
def send_cmd(
    ctx: typer.Context,
    channel: str = typer.Argument(..., help="Channel id"),
    body: str = typer.Argument("", help="Message text"),
    file_url: str = typer.Option(None, "--file-url", help="Attachment URL"),
    file_type: str = typer.Option(None, "--file-type", help="Attachment MIME type"),
    file_size: int = typer.Option(None, "--file-size", help="Attachment size in bytes"),
):
    """Post a message to a channel."""
    attachment = Attachment(file_url, file_type, file_size) if file_url else None

    async def command(client: ChatClient):
        return await client.send(channel, body, attachment)

    message = _run(ctx, command)
    if message is None:
        output_json({"status": "denied", "channel": channel}, ctx) or echo_if_output(
            f"❌ Not allowed to post in {channel}", ctx
        )
        raise typer.Exit(code=1)
    output_json({"status": "success", "message": message.to_dict()}, ctx) or echo_if_output(
        f"Sent to {channel}", ctx
    )


@app.command("can-post")
def can_post_cmd(
    ctx: typer.Context,
    channel: str = typer.Argument(..., help="Channel id"),
):
    """Check whether the session user may post in a channel."""

    async def command(client: ChatClient):
        return await client.explain_post(channel)

    allowed, reason = _run(ctx, command)
    output_json({"channel": channel, "allowed": allowed, "reason": reason}, ctx) or echo_if_output(
        f"{'yes' if allowed else 'no'}: {reason}", ctx
    )


@app.command("listen")
def listen_cmd(
    ctx: typer.Context,
    channels: list[str] = typer.Argument(..., help="Channel ids to follow"),
):
    """Print messages for channels as they arrive. Ctrl-C to stop."""

    def on_message(message: Message):
        output_json(message.to_dict(), ctx) or echo_if_output(
            f"#{message.channel_id} {format_message(message)}", ctx
        )

    def on_state(state: ConnectionState):
        if state is not ConnectionState.CONNECTED:
            echo_if_output(f"… {state.value}", ctx)

    async def command(client: ChatClient):
        client.on_connection_state(on_state)
        for channel_id in channels:
            client.add_listener(channel_id, on_message)
            await client.connection.join(channel_id)
        await asyncio.Event().wait()

    try:
        _run(ctx, command)
    except KeyboardInterrupt:
        echo_if_output("Stopped", ctx)


@app.command("chat")
def chat_cmd(
    ctx: typer.Context,
    channel: str = typer.Argument(..., help="Channel id"),
):
    """Interactive chat in one channel."""
    from .interactive import ChatSession

    async def command(client: ChatClient):
        await ChatSession(client, channel).run()

    try:
        _run(ctx, command)
    except KeyboardInterrupt:
        pass


def main() -> None:
    app()
