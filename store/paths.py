"""
Key and category validation, and derivation of remote paths.

A secret named ``db-pass`` in category ``prod/api`` lives at
``keys/prod/api/db-pass.json``. Names and category segments are limited to
letters, digits, ``-`` and ``_`` so a path can never escape ``keys/``.
"""

import re
from typing import Optional

from errors import InvalidPath

KEYS_DIR = "keys"
SUFFIX = ".json"

_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def _check_segment(segment: str, what: str) -> None:
    if segment in (".", ".."):
        raise InvalidPath(f"Invalid {what} '{segment}': path traversal is not allowed")
    if not segment:
        raise InvalidPath(f"Invalid {what}: empty segment")
    if not _SEGMENT_PATTERN.match(segment):
        raise InvalidPath(
            f"Invalid {what} '{segment}'. Use letters, digits, '-' and '_' only."
        )


def normalize_category(category: Optional[str]) -> Optional[str]:
    """
    Validate a category and strip surrounding slashes.

    Returns None when there is no category (None, "" or "/").

    Raises:
        InvalidPath: A segment is empty, '.', '..' or has other characters
    """
    if category is None:
        return None
    trimmed = category.strip("/")
    if not trimmed:
        return None
    for segment in trimmed.split("/"):
        _check_segment(segment, "category segment")
    return trimmed


def validate_name(name: str) -> str:
    """Validate a key name. Names never contain '/'."""
    if "/" in name:
        raise InvalidPath(f"Invalid key name '{name}': '/' is not allowed, use a category")
    _check_segment(name, "key name")
    return name


def secret_path(name: str, category: Optional[str] = None) -> str:
    """Remote path of the secret called name in category."""
    validate_name(name)
    category = normalize_category(category)
    if category:
        return f"{KEYS_DIR}/{category}/{name}{SUFFIX}"
    return f"{KEYS_DIR}/{name}{SUFFIX}"


def category_path(category: Optional[str] = None) -> str:
    """Remote directory holding the secrets of category."""
    category = normalize_category(category)
    if category:
        return f"{KEYS_DIR}/{category}"
    return KEYS_DIR


def display_path(name: str, category: Optional[str] = None) -> str:
    """Human-readable 'category/name' form used in messages."""
    category = normalize_category(category)
    if category:
        return f"{category}/{name}"
    return name
