from __future__ import annotations

import re
from pathlib import Path

from .errors import InvalidIdentifierError


_IDENTIFIER_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_FILENAME_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9._-]")

DEFAULT_FILENAME = "untitled.txt"


def is_valid_identifier(paste_id: object) -> bool:
    return isinstance(paste_id, str) and bool(_IDENTIFIER_RE.match(paste_id))


def normalize_identifier(paste_id: str) -> str:
    """Validate a paste or alias id.

    Ids double as directory names under the notes root, so only
    alphanumerics, hyphens and underscores are accepted.
    """
    if not isinstance(paste_id, str):
        raise InvalidIdentifierError("Invalid paste id")
    paste_id = paste_id.strip()
    if not _IDENTIFIER_RE.match(paste_id):
        raise InvalidIdentifierError(
            "Paste ID must contain only alphanumeric characters, hyphens, and underscores"
        )
    return paste_id


def sanitize_filename(filename: str | None) -> str:
    """Reduce a user-supplied filename to a flat, filesystem-safe basename."""
    name = Path(str(filename or "").replace("\\", "/")).name
    name = _FILENAME_UNSAFE_RE.sub("_", name)
    if name in ("", ".", ".."):
        return DEFAULT_FILENAME
    return name


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name in (".", ".."):
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when serving or storing user-controlled names.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
