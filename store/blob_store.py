"""
Versioned blob storage over a GitHub repository.

Paths map to byte blobs. Every change is a commit, so earlier versions stay
reachable through history() and get_at_version(). Updates and deletes carry
the version token (blob SHA) read just before, and GitHub rejects them when
the file changed in between.
"""

import logging
from typing import Optional
from dataclasses import dataclass

from .github import DirEntry, GitHubBackend

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100  # GitHub's per_page ceiling


@dataclass(frozen=True)
class HistoryEntry:
    """One change to a path."""
    version: str  # commit SHA, usable with get_at_version
    timestamp: str
    message: str


class VersionedBlobStore:
    """Create/read/update/delete blobs with version history."""

    def __init__(self, backend: GitHubBackend):
        self.backend = backend

    async def get(self, path: str) -> Optional[tuple[bytes, str]]:
        """
        Fetch the current content of path.

        Returns:
            Tuple of (content, version), or None if path was never written
            or has been deleted
        """
        file = await self.backend.read_file(path)
        if file is None:
            return None
        return file.content, file.sha

    async def create(self, path: str, data: bytes, message: str) -> str:
        """
        Write data to path, which must not exist yet.

        No version is read or sent, so the write fails if anything was
        created at path in the meantime.

        Raises:
            Conflict: path already exists
        """
        version = await self.backend.write_file(path, data, message, sha=None)
        logger.info("Created %s", path)
        return version

    async def put(
        self, path: str, data: bytes, message: str, version: Optional[str] = None
    ) -> str:
        """
        Write data to path.

        Args:
            path: Blob path
            data: New content
            message: Change description recorded in history
            version: Version the caller last read. When omitted the current
                version is read first.

        Returns:
            The new version token

        Raises:
            Conflict: path changed since version was read
        """
        if version is None:
            current = await self.get(path)
            version = current[1] if current else None

        new_version = await self.backend.write_file(path, data, message, sha=version)
        logger.info("Saved %s", path)
        return new_version

    async def delete(self, path: str, message: str) -> bool:
        """
        Delete path at its current version.

        Returns:
            False if path does not exist (nothing is written), True on success

        Raises:
            Conflict: path changed between the read and the delete
        """
        current = await self.get(path)
        if current is None:
            return False
        deleted = await self.backend.delete_file(path, message, current[1])
        if deleted:
            logger.info("Deleted %s", path)
        return deleted

    async def history(self, path: str, page: int = 1, page_size: int = 10) -> list[HistoryEntry]:
        """
        List changes to path, newest first.

        An empty list means the path is unknown or page is past the end;
        callers tell the two apart by the page number.
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

        commits = await self.backend.list_commits(path, page=page, per_page=page_size)
        return [
            HistoryEntry(version=c.sha, timestamp=c.date, message=c.message)
            for c in commits
        ]

    async def get_at_version(self, path: str, version: str) -> Optional[bytes]:
        """
        Fetch the content of path as of version.

        Returns:
            The content, or None if path did not exist at that version
        """
        file = await self.backend.read_file(path, ref=version)
        if file is None:
            return None
        return file.content

    async def list(self, prefix: str) -> list[DirEntry]:
        """List the entries directly under prefix."""
        return await self.backend.list_dir(prefix)
