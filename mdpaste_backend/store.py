from __future__ import annotations

import logging
import re
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import quote

from pydantic import ValidationError

from . import aliases as alias_dirs
from .config import FILES_SUBDIR, META_FILENAME, PROMOTION_MARKER_FILENAME
from .errors import (
    IdentifierConflictError,
    InvalidIdentifierError,
    NotAssociatedError,
    PasteError,
    PasteNotFoundError,
    StorageIOError,
)
from .identifiers import generate_identifier
from .jsonfile import write_json_atomic
from .models import EDITABLE_FIELDS, FileEntry, ItemResult, PasteMeta, PromotionMarker
from .renderer import is_binary_content
from .security import is_safe_basename, is_valid_identifier, normalize_identifier, safe_join

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9\-_.]")

# Prefix of the staging names used while applying a batch of renames.
TEMP_PREFIX = "__temp_"


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def _timestamp(value: str | None) -> float:
    if not value:
        return 0.0
    try:
        return datetime.fromisoformat(value).timestamp()
    except ValueError:
        return 0.0


def _recency_key(paste: "Paste") -> float:
    return _timestamp(paste.meta.updated_at or paste.meta.created_at)


def _as_entry(entry: FileEntry | Mapping[str, Any] | None) -> FileEntry:
    if entry is None:
        return FileEntry()
    if isinstance(entry, FileEntry):
        return entry.model_copy()
    return FileEntry.model_validate(dict(entry))


def _dedupe(ids: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in ids:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


class PasteStore:
    """Handle on a notes directory: one subdirectory per paste or alias.

    A subdirectory is a paste if it holds ``_meta.json``, an alias if it holds
    ``_alias.json``, and is ignored otherwise. Paste ids and alias ids share a
    single namespace.
    """

    def __init__(self, root: Path | str, base_path: str = "") -> None:
        self.root = Path(root).resolve()
        self.base_path = (base_path or "").rstrip("/")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to create notes directory: {e}") from e

    def id_in_use(self, paste_id: str) -> bool:
        """True if ``paste_id`` names a paste or an alias."""
        return is_valid_identifier(paste_id) and (self.root / paste_id).is_dir()

    def exists(self, paste_id: str) -> bool:
        return is_valid_identifier(paste_id) and (self.root / paste_id / META_FILENAME).is_file()

    def is_alias(self, paste_id: str) -> bool:
        return is_valid_identifier(paste_id) and alias_dirs.is_alias_dir(self.root / paste_id)

    def resolve_alias(self, paste_id: str) -> str | None:
        return alias_dirs.read_alias_parent(self.root, paste_id)

    def get_real_id(self, paste_id: str) -> str:
        return alias_dirs.resolve(self.root, paste_id)

    def generate_id(self) -> str:
        return generate_identifier(self.id_in_use)

    def claim_identifier(self, candidate: str) -> str:
        """Validate a user-chosen id and make sure nobody holds it yet."""
        paste_id = normalize_identifier(candidate)
        if self.id_in_use(paste_id):
            raise IdentifierConflictError(f"ID '{paste_id}' already exists")
        return paste_id

    def create(self, data: Mapping[str, Any] | None = None, paste_id: str | None = None) -> "Paste":
        """Create an empty paste, under ``paste_id`` if given, else a generated id."""
        pid = self.claim_identifier(paste_id) if paste_id else self.generate_id()
        fields = {k: v for k, v in dict(data or {}).items() if v is not None}
        meta = PasteMeta.model_validate(fields)
        now = _now_iso()
        meta.created_at = now
        meta.updated_at = now
        meta.aliases = []
        meta.files = {}

        paste_root = self.root / pid
        try:
            (paste_root / FILES_SUBDIR).mkdir(parents=True)
        except FileExistsError as e:
            raise IdentifierConflictError(f"ID '{pid}' already exists") from e
        except OSError as e:
            raise StorageIOError(f"Failed to create paste directory for '{pid}': {e}") from e

        paste = Paste(self, pid, meta)
        try:
            paste.save_meta()
        except StorageIOError:
            shutil.rmtree(paste_root, ignore_errors=True)
            raise
        logger.info("Created paste %s", pid)
        return paste

    def load(self, paste_id: str) -> "Paste":
        pid = normalize_identifier(paste_id)
        meta_path = self.root / pid / META_FILENAME
        if not meta_path.is_file():
            raise PasteNotFoundError(f"Paste '{pid}' not found")
        try:
            meta = PasteMeta.model_validate_json(meta_path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StorageIOError(f"Failed to read metadata for '{pid}': {e}") from e
        except ValidationError as e:
            raise StorageIOError(f"Corrupt metadata for '{pid}': {e}") from e
        return Paste(self, pid, meta)

    def load_resolved(self, public_id: str) -> "Paste":
        """Load the paste behind ``public_id``, following an alias if needed."""
        return self.load(self.get_real_id(public_id))

    def list_all(self, public_only: bool = False) -> list["Paste"]:
        """Every readable paste, most recently updated first."""
        pastes: list[Paste] = []
        for child in sorted(self.root.iterdir()):
            if not is_valid_identifier(child.name) or not (child / META_FILENAME).is_file():
                continue
            try:
                paste = self.load(child.name)
            except PasteError as e:
                logger.warning("Skipping unreadable paste %s: %s", child.name, e)
                continue
            if public_only and not paste.meta.public:
                continue
            pastes.append(paste)
        pastes.sort(key=_recency_key, reverse=True)
        return pastes

    def recover_interrupted_promotions(self) -> list[ItemResult]:
        """Finish every make_primary that left its marker file behind."""
        results: list[ItemResult] = []
        for marker_path in sorted(self.root.glob(f"*/{PROMOTION_MARKER_FILENAME}")):
            paste_id = marker_path.parent.name
            try:
                paste = self.load(paste_id)
                paste.complete_promotion(paste.read_promotion_marker())
            except PasteError as e:
                logger.error("Could not finish promotion for paste %s: %s", paste_id, e)
                results.append(ItemResult.failed(paste_id, e))
                continue
            logger.info("Recovered interrupted promotion: %s is now %s", paste_id, paste.id)
            results.append(ItemResult.ok(paste.id))
        return results


class Paste:
    """A paste record: metadata plus attachments, living in ``<root>/<id>/``."""

    def __init__(self, store: PasteStore, paste_id: str, meta: PasteMeta) -> None:
        self.store = store
        self.id = paste_id
        self.meta = meta

    def __repr__(self) -> str:
        return f"Paste(id={self.id!r}, title={self.title!r})"

    @property
    def root(self) -> Path:
        return self.store.root / self.id

    @property
    def files_dir(self) -> Path:
        return self.root / FILES_SUBDIR

    @property
    def meta_path(self) -> Path:
        return self.root / META_FILENAME

    @property
    def title(self) -> str:
        return self.meta.title or "Untitled"

    @property
    def slug(self) -> str:
        return _SLUG_RE.sub("_", self.title.lower())

    @property
    def html_path(self) -> Path:
        return self.root / f"{self.slug}.html"

    @property
    def html_url(self) -> str:
        return f"{self.store.base_path}/notes/{self.id}/{self.slug}.html"

    def file_url(self, filename: str) -> str:
        return f"{self.store.base_path}/notes/{self.id}/{FILES_SUBDIR}/{quote(filename, safe='')}"

    @property
    def files(self) -> dict[str, FileEntry]:
        return self.meta.files

    @property
    def aliases(self) -> list[str]:
        return list(self.meta.aliases)

    def is_public(self) -> bool:
        return self.meta.public

    def save_meta(self) -> None:
        try:
            write_json_atomic(self.meta_path, self.meta.to_json_dict())
        except OSError as e:
            raise StorageIOError(f"Failed to save metadata file for '{self.id}': {e}") from e

    def _touch(self) -> None:
        self.meta.updated_at = _now_iso()

    def update(self, data: Mapping[str, Any]) -> None:
        """Overwrite the editable top-level fields present (and not None) in ``data``.

        Both attribute names (``display_mode``) and stored names
        (``displayMode``) are accepted.
        """
        changes: dict[str, Any] = {}
        for name in EDITABLE_FIELDS:
            stored = PasteMeta.model_fields[name].alias or name
            for key in (name, stored):
                if data.get(key) is not None:
                    changes[stored] = data[key]
        merged = {**self.meta.to_json_dict(), **changes}
        self.meta = PasteMeta.model_validate(merged)
        self._touch()
        self.save_meta()

    # Attachments

    def _file_path(self, filename: str) -> Path:
        if not is_safe_basename(filename):
            raise InvalidIdentifierError(f"Invalid filename: {filename!r}")
        return safe_join(self.files_dir, filename)

    def _write_file(self, filename: str, content: bytes | str) -> None:
        if isinstance(content, str):
            content = content.encode("utf-8")
        path = self._file_path(filename)
        try:
            self.files_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            raise StorageIOError(f"Failed to save file {filename}: {e}") from e

    def add_file(
        self,
        filename: str,
        content: bytes | str,
        entry: FileEntry | Mapping[str, Any] | None = None,
    ) -> None:
        self._write_file(filename, content)
        self.meta.files[filename] = _as_entry(entry)
        self._touch()
        self.save_meta()

    def update_file(
        self,
        filename: str,
        content: bytes | str | None,
        entry: FileEntry | Mapping[str, Any] | None = None,
    ) -> None:
        """Replace the entry metadata; ``content=None`` keeps the stored bytes."""
        if content is not None:
            self._write_file(filename, content)
        self.meta.files[filename] = _as_entry(entry)
        self._touch()
        self.save_meta()

    def remove_file(self, filename: str) -> None:
        path = self._file_path(filename)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to remove file {filename}: {e}") from e
        self.meta.files.pop(filename, None)
        self._touch()
        self.save_meta()

    def _rename_entry(self, old: str, new: str) -> None:
        # Moves bytes and metadata; the entry keeps its position in the mapping.
        if old == new:
            return
        old_path = self._file_path(old)
        new_path = self._file_path(new)
        if old_path.exists():
            try:
                old_path.replace(new_path)
            except OSError as e:
                raise StorageIOError(f"Failed to rename file from {old} to {new}: {e}") from e
        if old in self.meta.files:
            self.meta.files = {
                (new if name == old else name): entry
                for name, entry in self.meta.files.items()
                if name != new
            }

    def rename_file(self, old: str, new: str) -> None:
        """Single rename. Overwrites ``new`` if it exists; see move_files for batches."""
        if old == new:
            return
        self._rename_entry(old, new)
        self._touch()
        self.save_meta()

    def move_files(self, moves: Mapping[str, str]) -> None:
        """Apply a batch of renames without any step colliding with another.

        Every source is first moved to a fresh staging name, then every staged
        file is moved to its final name, so swaps and rotations are safe.
        Staging names have a fixed length, whatever the length of the source.
        If staging fails, files already staged are moved back. Metadata is
        saved after each pass and after a failed final pass, so it always
        names the files where their bytes are.
        """
        pending = {old: new for old, new in moves.items() if old != new}
        if not pending:
            return
        targets = list(pending.values())
        if len(set(targets)) != len(targets):
            raise InvalidIdentifierError("Two files cannot be renamed to the same name")
        for name in (*pending, *targets):
            self._file_path(name)

        staged: dict[str, tuple[str, str]] = {}
        try:
            for old, new in pending.items():
                temp = f"{TEMP_PREFIX}{uuid.uuid4().hex}"
                self._rename_entry(old, temp)
                staged[temp] = (old, new)
        except StorageIOError:
            for temp, (old, _) in reversed(list(staged.items())):
                self._rename_entry(temp, old)
            raise
        self.save_meta()

        try:
            for temp, (_, new) in staged.items():
                self._rename_entry(temp, new)
        finally:
            self._touch()
            self.save_meta()

    def reorder_files(self, ordered_filenames: list[str]) -> None:
        """Put the listed files first, in that order; unlisted files keep their relative order after them."""
        files = self.meta.files
        reordered = {name: files[name] for name in ordered_filenames if name in files}
        for name, entry in files.items():
            reordered.setdefault(name, entry)
        self.meta.files = reordered
        self._touch()
        self.save_meta()

    def get_file_path(self, filename: str) -> Path | None:
        if not is_safe_basename(filename):
            return None
        path = self.files_dir / filename
        return path if path.is_file() else None

    def _read_bytes(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageIOError(f"Failed to read file {path.name}: {e}") from e

    def get_file(self, filename: str) -> bytes | None:
        """Bytes to show inline, or None if the file is missing.

        Images and binary file/file-link attachments come back empty: they are
        only ever served through their byte endpoint.
        """
        path = self.get_file_path(filename)
        if path is None:
            return None
        render = self.meta.files[filename].render if filename in self.meta.files else ""
        if render == "image":
            return b""
        data = self._read_bytes(path)
        if render in ("file", "file-link") and is_binary_content(data):
            return b""
        return data

    def is_file_binary(self, filename: str) -> bool:
        path = self.get_file_path(filename)
        if path is None:
            return False
        render = self.meta.files[filename].render if filename in self.meta.files else ""
        if render == "image":
            return True
        if render in ("file", "file-link"):
            return is_binary_content(self._read_bytes(path))
        return False

    # Aliases

    def add_alias(self, alias_id: str | None = None) -> str:
        """Register a new alias (generated when ``alias_id`` is None) and return its id."""
        if alias_id is None:
            alias_id = self.store.generate_id()
        else:
            alias_id = self.store.claim_identifier(alias_id)

        alias_dirs.write_alias_pointer(self.store.root, alias_id, self.id)
        self.meta.aliases.append(alias_id)
        self._touch()
        try:
            self.save_meta()
        except StorageIOError:
            self.meta.aliases.remove(alias_id)
            alias_dirs.remove_alias_dir(self.store.root, alias_id)
            raise
        logger.info("Added alias %s -> %s", alias_id, self.id)
        return alias_id

    def remove_alias(self, alias_id: str) -> None:
        if alias_id not in self.meta.aliases:
            raise NotAssociatedError(f"Alias '{alias_id}' is not associated with this paste")
        alias_dirs.remove_alias_dir(self.store.root, alias_id)
        self.meta.aliases = [a for a in self.meta.aliases if a != alias_id]
        self._touch()
        self.save_meta()
        logger.info("Removed alias %s from %s", alias_id, self.id)

    def make_primary(self, alias_id: str) -> None:
        """Swap ``alias_id`` in as this paste's canonical id; the old id becomes an alias.

        A marker file is written first so that a crash part-way through can be
        completed by PasteStore.recover_interrupted_promotions().
        """
        if alias_id not in self.meta.aliases:
            raise NotAssociatedError(f"Alias '{alias_id}' is not associated with this paste")
        target = self.store.root / alias_id
        if target.exists() and not alias_dirs.is_alias_dir(target):
            # A refused promotion leaves no marker behind.
            raise IdentifierConflictError(f"Cannot promote '{alias_id}': it is not an alias directory")
        marker = PromotionMarker(
            old_id=self.id,
            new_id=alias_id,
            aliases=[a for a in self.meta.aliases if a != alias_id],
        )
        self._write_promotion_marker(marker)
        self.complete_promotion(marker)

    def complete_promotion(self, marker: PromotionMarker) -> None:
        """Run the promotion steps still outstanding for ``marker``. Safe to repeat."""
        old_id, new_id = marker.old_id, marker.new_id
        store_root = self.store.root

        if self.id == old_id:
            # The promoted alias is pure indirection; drop it before the rename
            # so two directories never both claim this paste.
            alias_dirs.remove_alias_dir(store_root, new_id)
            old_root, new_root = self.root, store_root / new_id
            if new_root.exists():
                raise StorageIOError(f"Cannot promote '{new_id}': directory already exists")
            try:
                old_root.rename(new_root)
            except OSError as e:
                raise StorageIOError(
                    f"Failed to rename paste directory from '{old_id}' to '{new_id}': {e}"
                ) from e
            self.id = new_id
        elif self.id != new_id:
            raise NotAssociatedError(f"Promotion marker does not belong to paste '{self.id}'")

        self.meta.aliases = [a for a in _dedupe([old_id, *marker.aliases]) if a != new_id]
        self._touch()
        self.save_meta()

        alias_dirs.write_alias_pointer(store_root, old_id, new_id)
        for other in marker.aliases:
            if other == new_id:
                continue
            try:
                alias_dirs.write_alias_pointer(store_root, other, new_id)
            except StorageIOError as e:
                logger.warning("Alias %s could not be repointed to %s: %s", other, new_id, e)

        self._clear_promotion_marker()
        logger.info("Promoted alias %s to primary id (was %s)", new_id, old_id)

    def _write_promotion_marker(self, marker: PromotionMarker) -> None:
        try:
            write_json_atomic(self.root / PROMOTION_MARKER_FILENAME, marker.to_json_dict())
        except OSError as e:
            raise StorageIOError(f"Failed to write promotion marker for '{self.id}': {e}") from e

    def read_promotion_marker(self) -> PromotionMarker:
        path = self.root / PROMOTION_MARKER_FILENAME
        try:
            return PromotionMarker.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StorageIOError(f"Failed to read promotion marker for '{self.id}': {e}") from e
        except ValidationError as e:
            raise StorageIOError(f"Corrupt promotion marker for '{self.id}': {e}") from e

    def _clear_promotion_marker(self) -> None:
        try:
            (self.root / PROMOTION_MARKER_FILENAME).unlink(missing_ok=True)
        except OSError as e:
            # Left in place, the marker only makes the next recovery pass repeat finished steps.
            logger.warning("Could not remove promotion marker for %s: %s", self.id, e)

    def delete(self) -> None:
        """Remove this paste and every alias that points at it."""
        store_root = self.store.root
        for alias_id in self.meta.aliases:
            parent = alias_dirs.read_alias_parent(store_root, alias_id)
            if parent is not None and parent != self.id:
                logger.warning("Alias %s points at %s, not %s; leaving it", alias_id, parent, self.id)
                continue
            alias_dirs.remove_alias_dir(store_root, alias_id)
        try:
            shutil.rmtree(self.root)
        except OSError as e:
            raise StorageIOError(f"Failed to delete paste '{self.id}': {e}") from e
        logger.info("Deleted paste %s", self.id)
