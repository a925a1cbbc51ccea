"""Shared data models and types."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Organizational roles, highest authority first."""

    EXECUTIVE = "EXECUTIVE"
    MAIN_PMO = "MAIN_PMO"
    ADMIN = "ADMIN"
    DEPARTMENT_DIRECTOR = "DEPARTMENT_DIRECTOR"
    SUB_PMO = "SUB_PMO"
    PROJECT_MANAGER = "PROJECT_MANAGER"
    TEAM_LEAD = "TEAM_LEAD"
    DEVELOPER = "DEVELOPER"
    PENDING = "PENDING"

    @classmethod
    def parse(cls, value: Any) -> "Role | None":
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class ChannelType(str, Enum):
    GENERAL = "GENERAL"
    DEPARTMENT = "DEPARTMENT"
    PROJECT = "PROJECT"
    DIRECT_MESSAGE = "DIRECT_MESSAGE"
    SYSTEM = "SYSTEM"

    @classmethod
    def parse(cls, value: Any) -> "ChannelType | None":
        if isinstance(value, ChannelType):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class DeliveryStatus(str, Enum):
    """Delivery progress of a message. Forward-only except for terminal FAILED."""

    SENDING = "SENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def advance(self, other: "DeliveryStatus") -> "DeliveryStatus":
        """Return the status after observing `other`; never moves backwards."""
        if self is DeliveryStatus.FAILED:
            return self
        if other is DeliveryStatus.FAILED:
            return other
        return other if other.rank > self.rank else self


_STATUS_RANK = {
    DeliveryStatus.SENDING: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
    DeliveryStatus.READ: 3,
    DeliveryStatus.FAILED: 4,
}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class User:
    """The authenticated user. Loaded once per session."""

    user_id: str
    role: Role | None
    department_id: str | None = None
    is_active: bool = True
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        department = data.get("department") or {}
        return cls(
            user_id=str(data.get("id") or data.get("userId") or ""),
            role=Role.parse(data.get("role")),
            department_id=data.get("departmentId") or department.get("id"),
            is_active=bool(data.get("isActive", True)),
            name=_full_name(data),
        )


@dataclass(frozen=True)
class Member:
    """A channel member as returned by the members endpoint."""

    user_id: str
    role: Role | None = None
    department_id: str | None = None
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Member":
        user = data.get("user") or {}
        department = user.get("department") or {}
        return cls(
            user_id=str(data.get("userId") or user.get("id") or ""),
            role=Role.parse(user.get("role") or data.get("role")),
            department_id=user.get("departmentId") or department.get("id"),
            name=_full_name(user) if user else None,
        )


@dataclass
class Channel:
    """A chat channel. `channel_type` is fixed at creation; `archived` only turns on."""

    channel_id: str
    name: str
    channel_type: ChannelType | None
    archived: bool = False
    department_id: str | None = None
    project_id: str | None = None
    project_manager_id: str | None = None
    project_team_ids: list[str] = field(default_factory=list)
    members: list[Member] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def member_ids(self) -> list[str]:
        return [m.user_id for m in self.members]

    def archive(self) -> None:
        self.archived = True

    def merge(self, other: "Channel") -> "Channel":
        """Take fresh fields from `other` while keeping the archive flag sticky."""
        merged = replace(other, archived=self.archived or other.archived)
        if not other.members and self.members:
            merged.members = list(self.members)
        return merged

    @classmethod
    def from_dict(cls, data: dict) -> "Channel":
        project = data.get("project") or {}
        manager = project.get("projectManager") or {}
        members = [Member.from_dict(m) for m in data.get("members") or []]
        return cls(
            channel_id=str(data["id"]),
            name=data.get("name") or "",
            channel_type=ChannelType.parse(data.get("type")),
            archived=bool(data.get("isArchived", False)),
            department_id=data.get("departmentId") or (data.get("department") or {}).get("id"),
            project_id=data.get("projectId") or project.get("id"),
            project_manager_id=manager.get("id"),
            project_team_ids=[str(m["id"]) for m in project.get("teamMembers") or [] if "id" in m],
            members=members,
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


@dataclass(frozen=True)
class Attachment:
    url: str
    file_type: str | None = None
    size: int | None = None


@dataclass
class Message:
    """A chat message. Deleting sets a flag; the body stays."""

    message_id: str
    channel_id: str
    sender_id: str
    body: str
    edited: bool = False
    deleted: bool = False
    attachment: Attachment | None = None
    created_at: str | None = None
    updated_at: str | None = None
    status: DeliveryStatus = DeliveryStatus.SENT
    temp_id: str | None = None
    is_system: bool = False
    system_payload: dict | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        attachment = None
        if data.get("fileUrl"):
            attachment = Attachment(
                url=data["fileUrl"], file_type=data.get("fileType"), size=data.get("fileSize")
            )
        sender = data.get("sender") or {}
        status = data.get("status")
        return cls(
            message_id=str(data["id"]),
            channel_id=str(data["channelId"]),
            sender_id=str(data.get("senderId") or sender.get("id") or ""),
            body=data.get("body") or "",
            edited=bool(data.get("isEdited", False)),
            deleted=bool(data.get("isDeleted", False)),
            attachment=attachment,
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            status=DeliveryStatus(status) if status in DeliveryStatus.__members__ else DeliveryStatus.SENT,
            temp_id=data.get("tempId"),
            is_system=bool(data.get("isSystemMessage", False)),
            system_payload=data.get("systemPayload"),
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.message_id,
            "channelId": self.channel_id,
            "senderId": self.sender_id,
            "body": self.body,
            "isEdited": self.edited,
            "isDeleted": self.deleted,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "status": self.status.value,
        }
        if self.attachment:
            data["fileUrl"] = self.attachment.url
            data["fileType"] = self.attachment.file_type
            data["fileSize"] = self.attachment.size
        if self.temp_id:
            data["tempId"] = self.temp_id
        if self.is_system:
            data["isSystemMessage"] = True
            data["systemPayload"] = self.system_payload
        return data


def _full_name(data: dict) -> str | None:
    parts = [data.get("firstName"), data.get("lastName")]
    name = " ".join(p for p in parts if p)
    return name or data.get("name")
