"""SQLite-backed description store, group registry and id allocator."""

from persongroup.store.allocator import IdentifierAllocator
from persongroup.store.captures import CaptureStore
from persongroup.store.database import Database
from persongroup.store.groups import GroupRegistry, GroupWithRepresentative

__all__ = [
    "CaptureStore",
    "Database",
    "GroupRegistry",
    "GroupWithRepresentative",
    "IdentifierAllocator",
]
