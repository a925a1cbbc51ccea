"""Terminal formatting for messages and channels."""

from datetime import datetime

from .models import Channel, DeliveryStatus, Message


def format_time(timestamp: str | None) -> str:
    if not timestamp:
        return "--:--:--"
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).strftime("%H:%M:%S")
    except ValueError:
        return timestamp


def format_message(message: Message) -> str:
    prefix = f"{format_time(message.created_at)} {message.sender_id}"
    if message.deleted:
        return f"{prefix}: [deleted]"
    marker = " (edited)" if message.edited else ""
    if message.status is DeliveryStatus.FAILED:
        marker += " [failed]"
    attachment = f" [{message.attachment.url}]" if message.attachment else ""
    return f"{prefix}: {message.body}{attachment}{marker}"


def format_channel(channel: Channel, unread: int = 0) -> str:
    kind = channel.channel_type.value.lower() if channel.channel_type else "unknown"
    flags = " [archived]" if channel.archived else ""
    badge = f" ({unread})" if unread else ""
    return f"{channel.channel_id}  {channel.name}  <{kind}>{flags}{badge}"
