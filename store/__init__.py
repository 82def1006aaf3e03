"""
Remote storage module for Lockbox.

Handles:
- GitHub contents API access (repository creation, files, commits)
- Versioned blob storage with optimistic concurrency
- Key/category validation and remote path layout
"""

from .github import GitHubBackend
from .blob_store import HistoryEntry, VersionedBlobStore
from .paths import normalize_category, secret_path, validate_name

__all__ = [
    "GitHubBackend",
    "HistoryEntry",
    "VersionedBlobStore",
    "normalize_category",
    "secret_path",
    "validate_name",
]
