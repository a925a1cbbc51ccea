"""Channel directory: cached channel list, per-channel metadata and members."""

from __future__ import annotations

import logging

from .errors import NotFoundError, SwitchboardError
from .hub.api import ChatApi
from .models import Channel, ChannelType, Member

log = logging.getLogger(__name__)

CATEGORY_ORDER = {
    ChannelType.GENERAL: 0,
    ChannelType.DEPARTMENT: 1,
    ChannelType.PROJECT: 2,
    ChannelType.DIRECT_MESSAGE: 3,
    ChannelType.SYSTEM: 4,
}


def sort_channels(channels: list[Channel]) -> list[Channel]:
    """Category, then most recent activity first, then id. Stable for equal input."""
    ordered = sorted(channels, key=lambda c: c.channel_id)
    ordered.sort(key=lambda c: c.updated_at or c.created_at or "", reverse=True)
    ordered.sort(key=lambda c: CATEGORY_ORDER.get(c.channel_type, len(CATEGORY_ORDER)))
    return ordered


class ChannelDirectory:
    def __init__(self, api: ChatApi):
        self.api = api
        self._channels: dict[str, Channel] = {}
        self._members_loaded: set[str] = set()

    def _upsert(self, channel: Channel) -> Channel:
        cached = self._channels.get(channel.channel_id)
        if cached is not None:
            channel = cached.merge(channel)
        self._channels[channel.channel_id] = channel
        return channel

    async def refresh(self) -> list[Channel]:
        """Fetch the visible channel set. On failure the cached list is kept."""
        channels = await self.api.list_channels()
        seen = set()
        for channel in channels:
            self._upsert(channel)
            seen.add(channel.channel_id)
        for stale in set(self._channels) - seen:
            del self._channels[stale]
            self._members_loaded.discard(stale)
        log.info(f"Loaded {len(seen)} channels")
        return self.list()

    def list(self, include_archived: bool = True) -> list[Channel]:
        channels = [c for c in self._channels.values() if include_archived or not c.archived]
        return sort_channels(channels)

    def get(self, channel_id: str) -> Channel:
        channel = self._channels.get(channel_id)
        if channel is None:
            raise NotFoundError(f"Channel '{channel_id}' not found")
        return channel

    async def fetch(self, channel_id: str) -> Channel:
        return self._upsert(await self.api.get_channel(channel_id))

    async def members(self, channel_id: str) -> list[Member]:
        """Members of a channel. A failed fetch degrades to the last known list."""
        channel = self.get(channel_id)
        if channel_id in self._members_loaded:
            return list(channel.members)
        try:
            members = await self.api.get_members(channel_id)
        except SwitchboardError as e:
            log.warning(f"Could not load members of {channel_id}: {e}")
            return list(channel.members)
        channel.members = members
        self._members_loaded.add(channel_id)
        return list(members)

    def invalidate_members(self, channel_id: str) -> None:
        self._members_loaded.discard(channel_id)

    def mark_archived(self, channel_id: str) -> Channel | None:
        channel = self._channels.get(channel_id)
        if channel is None:
            return None
        channel.archive()
        return channel

    def default_channel(self) -> Channel | None:
        """First non-archived channel in list order, else the first channel."""
        channels = self.list()
        for channel in channels:
            if not channel.archived:
                return channel
        return channels[0] if channels else None

    async def create_channel(
        self,
        name: str,
        channel_type: ChannelType,
        department_id: str | None = None,
        project_id: str | None = None,
    ) -> Channel:
        channel = await self.api.create_channel(name, channel_type, department_id, project_id)
        return self._upsert(channel)

    async def create_direct_channel(self, recipient_id: str) -> Channel:
        return self._upsert(await self.api.create_direct_channel(recipient_id))

    async def archive_channel(self, channel_id: str) -> Channel:
        await self.api.archive_channel(channel_id)
        channel = self.mark_archived(channel_id)
        if channel is None:
            channel = await self.fetch(channel_id)
            channel.archive()
        return channel

    async def add_member(self, channel_id: str, user_id: str) -> None:
        await self.api.add_member(channel_id, user_id)
        self.invalidate_members(channel_id)

    async def remove_member(self, channel_id: str, user_id: str) -> None:
        await self.api.remove_member(channel_id, user_id)
        self.invalidate_members(channel_id)
