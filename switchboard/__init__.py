from .client import ChatClient
from .config import Settings, load_settings
from .errors import (
    ApiError,
    HubConnectionError,
    HubInvocationError,
    NotAuthenticated,
    NotFoundError,
    SwitchboardError,
    ValidationError,
)
from .models import Attachment, Channel, ChannelType, DeliveryStatus, Member, Message, Role, User
from .permissions import PermissionPolicy, can_post
from .session import FileSessionStore, MemorySessionStore

__all__ = [
    "ApiError",
    "Attachment",
    "Channel",
    "ChannelType",
    "ChatClient",
    "DeliveryStatus",
    "FileSessionStore",
    "HubConnectionError",
    "HubInvocationError",
    "Member",
    "MemorySessionStore",
    "Message",
    "NotAuthenticated",
    "NotFoundError",
    "PermissionPolicy",
    "Role",
    "Settings",
    "SwitchboardError",
    "User",
    "ValidationError",
    "can_post",
    "load_settings",
]
