"""Alias directories: one-hop indirection from a public id to a paste.

An alias directory holds only ``_alias.json`` with a ``parent`` field. The
parent is always a full paste; pointers are never chained, so resolving an id
reads at most one pointer file.
"""
from __future__ import annotations

import logging
import shutil
from pathlib import Path

from pydantic import ValidationError

from .config import ALIAS_FILENAME, META_FILENAME
from .errors import StorageIOError
from .jsonfile import write_json_atomic
from .models import AliasPointer
from .security import is_valid_identifier

logger = logging.getLogger(__name__)


def alias_dir(root: Path, alias_id: str) -> Path:
    return root / alias_id


def is_alias_dir(path: Path) -> bool:
    return path.is_dir() and (path / ALIAS_FILENAME).is_file()


def read_alias_parent(root: Path, alias_id: str) -> str | None:
    """Return the parent id stored for ``alias_id``, or None if it is not an alias."""
    if not is_valid_identifier(alias_id):
        return None
    path = alias_dir(root, alias_id)
    if not is_alias_dir(path):
        return None
    try:
        pointer = AliasPointer.model_validate_json((path / ALIAS_FILENAME).read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning("Unreadable alias pointer %s: %s", alias_id, e)
        return None
    return pointer.parent


def write_alias_pointer(root: Path, alias_id: str, parent_id: str) -> None:
    """Create or overwrite the alias directory for ``alias_id``."""
    path = alias_dir(root, alias_id)
    if (path / META_FILENAME).exists():
        # Never turn a full paste into a pointer.
        raise StorageIOError(f"Refusing to overwrite paste directory '{alias_id}' with an alias")
    created = not path.exists()
    try:
        path.mkdir(parents=True, exist_ok=True)
        write_json_atomic(path / ALIAS_FILENAME, AliasPointer(parent=parent_id).to_json_dict())
    except OSError as e:
        if created:
            shutil.rmtree(path, ignore_errors=True)
        raise StorageIOError(f"Failed to create alias '{alias_id}': {e}") from e


def remove_alias_dir(root: Path, alias_id: str) -> bool:
    """Delete an alias directory. Returns False if there was nothing to delete."""
    path = alias_dir(root, alias_id)
    if not is_alias_dir(path):
        return False
    try:
        shutil.rmtree(path)
    except OSError as e:
        raise StorageIOError(f"Failed to remove alias '{alias_id}': {e}") from e
    return True


def resolve(root: Path, paste_id: str) -> str:
    """Map any public id to the canonical paste id (one indirection hop)."""
    parent = read_alias_parent(root, paste_id)
    return parent if parent is not None else paste_id
