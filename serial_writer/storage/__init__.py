from .base import HISTORY_KINDS, StoryStore
from .json_store import JsonFileStore
from .memory_store import InMemoryStore

__all__ = ["HISTORY_KINDS", "StoryStore", "JsonFileStore", "InMemoryStore"]
