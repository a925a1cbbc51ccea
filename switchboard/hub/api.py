"""Request/response chat API used directly and as the hub fallback transport."""

import asyncio
import logging
from typing import Any

import aiohttp

from ..errors import ApiError, HubConnectionError, NotAuthenticated, NotFoundError
from ..models import Attachment, Channel, ChannelType, Member, Message
from ..session import SessionStore

log = logging.getLogger(__name__)


def _unwrap(payload: Any, status: int) -> Any:
    """Accept both bare payloads and `{"success", "data", "error"}` envelopes."""
    if isinstance(payload, dict) and "success" in payload:
        if not payload.get("success"):
            raise ApiError(status, payload.get("error") or "request failed")
        return payload.get("data")
    return payload


def message_payload(body: str, attachment: Attachment | None = None) -> dict:
    payload: dict[str, Any] = {"body": body}
    if attachment:
        payload["fileUrl"] = attachment.url
        payload["fileType"] = attachment.file_type
        payload["fileSize"] = attachment.size
    return payload


class ChatApi:
    def __init__(
        self,
        base_url: str,
        sessions: SessionStore,
        timeout: float = 15.0,
        http: aiohttp.ClientSession | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.sessions = sessions
        self.timeout = timeout
        self._http = http
        self._owns_http = http is None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_http = True
        return self._http

    async def close(self) -> None:
        if self._http is not None and self._owns_http and not self._http.closed:
            await self._http.close()
        self._http = None

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict | None = None,
    ) -> Any:
        token = self.sessions.token()
        if not token:
            raise NotAuthenticated("No authentication token available")

        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {token}"}
        if params:
            params = {k: str(v) for k, v in params.items() if v is not None}

        try:
            async with self._session().request(
                method, url, json=json, params=params, headers=headers
            ) as resp:
                if resp.status == 401:
                    raise NotAuthenticated("Token rejected by chat API")
                if resp.status == 404:
                    raise NotFoundError(f"{method} {path}: not found")
                if resp.status >= 400:
                    raise ApiError(resp.status, (await resp.text()) or resp.reason or "")
                if resp.status == 204 or resp.content_length == 0:
                    return None
                payload = await resp.json(content_type=None)
                return _unwrap(payload, resp.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HubConnectionError(f"{method} {path} failed: {e}") from e

    # Channels

    async def list_channels(self) -> list[Channel]:
        data = await self.request("GET", "chat/channels")
        return [Channel.from_dict(c) for c in data or []]

    async def get_channel(self, channel_id: str) -> Channel:
        data = await self.request("GET", f"chat/channels/{channel_id}")
        if not data:
            raise NotFoundError(f"Channel '{channel_id}' not found")
        return Channel.from_dict(data)

    async def get_members(self, channel_id: str) -> list[Member]:
        data = await self.request("GET", f"chat/channels/{channel_id}/members")
        return [Member.from_dict(m) for m in data or []]

    async def create_channel(
        self,
        name: str,
        channel_type: ChannelType,
        department_id: str | None = None,
        project_id: str | None = None,
    ) -> Channel:
        data = await self.request(
            "POST",
            "chat/channels",
            json={
                "name": name,
                "type": channel_type.value,
                "departmentId": department_id,
                "projectId": project_id,
            },
        )
        return Channel.from_dict(data)

    async def create_direct_channel(self, recipient_id: str) -> Channel:
        data = await self.request("POST", "chat/dm", json={"recipientId": recipient_id})
        return Channel.from_dict(data)

    async def archive_channel(self, channel_id: str) -> None:
        await self.request("PUT", f"chat/channels/{channel_id}/archive", json={})

    async def add_member(self, channel_id: str, user_id: str) -> None:
        await self.request("POST", f"chat/channels/{channel_id}/members", json={"userId": user_id})

    async def remove_member(self, channel_id: str, user_id: str) -> None:
        await self.request("DELETE", f"chat/channels/{channel_id}/members/{user_id}")

    # Messages

    async def get_messages(self, channel_id: str, limit: int = 50, offset: int = 0) -> list[Message]:
        data = await self.request(
            "GET",
            f"chat/channels/{channel_id}/messages",
            params={"limit": limit, "offset": offset},
        )
        return [Message.from_dict(m) for m in data or []]

    async def create_message(
        self,
        channel_id: str,
        body: str,
        attachment: Attachment | None = None,
        system_payload: dict | None = None,
    ) -> Message:
        payload = message_payload(body, attachment)
        if system_payload is not None:
            payload["isSystemMessage"] = True
            payload["systemPayload"] = system_payload
        data = await self.request("POST", f"chat/channels/{channel_id}/messages", json=payload)
        if not data:
            raise ApiError(200, "chat API returned no message")
        return Message.from_dict(data)

    async def update_message(self, message_id: str, body: str) -> Message:
        data = await self.request("PUT", f"chat/messages/{message_id}", json={"body": body})
        return Message.from_dict(data)

    async def delete_message(self, message_id: str) -> None:
        await self.request("DELETE", f"chat/messages/{message_id}")

    async def search_messages(self, query: str, channel_id: str | None = None) -> list[Message]:
        data = await self.request(
            "GET", "chat/search", params={"query": query, "channelId": channel_id}
        )
        return [Message.from_dict(m) for m in data or []]
