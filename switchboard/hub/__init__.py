from .api import ChatApi
from .connection import ConnectionManager, aiohttp_connector

__all__ = ["ChatApi", "ConnectionManager", "aiohttp_connector"]
