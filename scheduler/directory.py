"""
Campus directory lookup used to resolve a subscriber's identity.
"""

from abc import ABC, abstractmethod
from typing import Dict, NamedTuple, Optional

import structlog

logger = structlog.get_logger(__name__)


class DirectoryEntry(NamedTuple):
    email: str
    name: Optional[str]


class DirectoryLookup(ABC):
    """
    Resolves a directory uid to an email and display name.

    lookup() returns None when the uid is unknown.
    """

    @abstractmethod
    async def lookup(self, uid: str) -> Optional[DirectoryEntry]:
        pass


class NullDirectory(DirectoryLookup):
    """Directory with no entries."""

    async def lookup(self, uid: str) -> Optional[DirectoryEntry]:
        logger.debug("No directory configured", uid=uid)
        return None


class StaticDirectory(DirectoryLookup):
    """Directory backed by a fixed uid mapping."""

    def __init__(self, entries: Dict[str, Dict[str, str]]):
        self.entries = entries

    async def lookup(self, uid: str) -> Optional[DirectoryEntry]:
        entry = self.entries.get(uid)
        if not entry or not entry.get("email"):
            return None
        return DirectoryEntry(email=entry["email"], name=entry.get("name"))


def build_directory(entries: Dict[str, Dict[str, str]]) -> DirectoryLookup:
    """Static directory when entries are configured, otherwise an empty one."""
    if entries:
        return StaticDirectory(entries)
    return NullDirectory()
