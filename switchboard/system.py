"""Structured payloads carried by system-authored messages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ValidationError


class SystemMessageType(str, Enum):
    DAILY_BRIEF = "DAILY_BRIEF"
    ALERT = "ALERT"
    NOTIFICATION = "NOTIFICATION"


class SystemAction(str, Enum):
    MARK_DONE = "MARK_DONE"
    REPORT_ISSUE = "REPORT_ISSUE"
    VIEW_TASK = "VIEW_TASK"
    DISMISS = "DISMISS"


@dataclass
class SystemItem:
    item_id: str
    title: str
    kind: str = "task"
    due_time: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    priority: str | None = None
    status: str | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.item_id,
            "title": self.title,
            "type": self.kind,
            "dueTime": self.due_time,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "priority": self.priority,
            "status": self.status,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class SystemPayload:
    type: SystemMessageType
    title: str
    summary: str | None = None
    items: list[SystemItem] = field(default_factory=list)
    actions: list[SystemAction] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "title": self.title,
            "summary": self.summary,
            "items": [item.to_dict() for item in self.items],
            "availableActions": [a.value for a in self.actions],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SystemPayload":
        try:
            kind = SystemMessageType(data["type"])
            title = data["title"]
        except (KeyError, ValueError, TypeError) as e:
            raise ValidationError(f"Invalid system payload: {e}") from e
        items = [
            SystemItem(
                item_id=str(item.get("id", "")),
                title=item.get("title", ""),
                kind=item.get("type", "task"),
                due_time=item.get("dueTime"),
                project_id=item.get("projectId"),
                project_name=item.get("projectName"),
                priority=item.get("priority"),
                status=item.get("status"),
            )
            for item in data.get("items") or []
        ]
        actions = []
        for action in data.get("availableActions") or []:
            try:
                actions.append(SystemAction(action))
            except ValueError as e:
                raise ValidationError(f"Unknown system action {action!r}") from e
        return cls(
            type=kind,
            title=title,
            summary=data.get("summary"),
            items=items,
            actions=actions,
            metadata=dict(data.get("metadata") or {}),
        )


def normalize_payload(payload: "SystemPayload | dict") -> dict:
    """Validate a payload given as dataclass or mapping and return its wire form."""
    if isinstance(payload, SystemPayload):
        parsed = payload
    elif isinstance(payload, dict):
        parsed = SystemPayload.from_dict(payload)
    else:
        raise ValidationError(f"System payload must be a mapping, got {type(payload).__name__}")
    if not parsed.title.strip():
        raise ValidationError("System payload title is required")
    return parsed.to_dict()
