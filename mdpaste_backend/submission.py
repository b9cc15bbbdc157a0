"""Apply an edit-form submission to a paste.

The form describes the desired final file set: one entry per file, in display
order, each optionally naming the ``originalFilename`` it was loaded from.
Turning that into store operations happens in two steps: ``plan_file_changes``
classifies every entry, then ``apply_file_changes`` executes renames, updates,
additions, deletions and the final reorder in that order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_DISPLAY_MODE, DEFAULT_RENDER_MODE
from .errors import PasteError, StorageIOError
from .models import FileEntry, ItemResult
from .renderer import is_textual_mime
from .security import sanitize_filename
from .store import Paste

logger = logging.getLogger(__name__)

# Render modes whose type is simply the mode itself.
_SELF_TYPED_MODES = ("image", "file", "file-link", "link")
_UPLOAD_KEEPS_MODE = ("image", "file", "file-link")


class FileSubmission(BaseModel):
    """One file entry as delivered by the edit form."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    filename: str = "untitled.txt"
    content: str | None = None
    render: str = DEFAULT_RENDER_MODE
    type: str = "text"
    description: str = ""
    display_name: str = Field("", alias="displayName")
    hidden: bool = False
    unwrapped: bool = False
    collapsed: bool = False
    collapsed_description: str = Field("", alias="collapsedDescription")
    original_filename: str | None = Field(None, alias="originalFilename")


class PasteForm(BaseModel):
    """Whole create/edit submission: paste fields, files, alias list."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    title: str = "Untitled"
    description: str = ""
    summary: str = ""
    author: str | None = None
    public: bool = False
    display_mode: str = Field(DEFAULT_DISPLAY_MODE, alias="displayMode")
    selected_file: str = Field("", alias="selectedFile")
    files: list[FileSubmission] = Field(default_factory=list)
    # Desired alias set after the edit. After a promotion the promoted id is dropped
    # from it and the previous id is kept.
    aliases: list[str] = Field(default_factory=list)
    make_primary_id: str | None = Field(None, alias="makePrimaryId")

    def paste_fields(self, default_author: str | None = None) -> dict:
        return {
            "title": self.title or "Untitled",
            "description": self.description,
            "summary": self.summary,
            "author": self.author or default_author or "Anonymous",
            "public": self.public,
            "display_mode": self.display_mode,
            "selected_file": self.selected_file,
        }


@dataclass(frozen=True)
class Upload:
    data: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class PreparedFile:
    index: int
    filename: str
    content: bytes | None
    entry: FileEntry
    original_filename: str | None = None


@dataclass
class FileChangePlan:
    renames: dict[str, str] = field(default_factory=dict)
    updates: list[PreparedFile] = field(default_factory=list)
    additions: list[PreparedFile] = field(default_factory=list)
    deletions: list[str] = field(default_factory=list)
    order: list[str] = field(default_factory=list)


def prepare_file(index: int, submission: FileSubmission, upload: Upload | None = None) -> PreparedFile:
    """Normalize one form entry: sanitize the name, pick the content, fix render/type.

    Content precedence is uploaded bytes, then non-empty inline text, then
    None (meaning "keep what is stored" for existing files).
    """
    render = submission.render or DEFAULT_RENDER_MODE
    file_type = submission.type or "text"

    content: bytes | None = None
    if upload is not None:
        content = upload.data
        mime = (upload.content_type or "").split(";")[0].strip().lower()
        if mime and render not in _UPLOAD_KEEPS_MODE:
            if mime.startswith("image/"):
                render, file_type = "image", "image"
            elif not is_textual_mime(mime):
                render, file_type = "file", "file"
    elif submission.content:
        content = submission.content.encode("utf-8")

    if render in _SELF_TYPED_MODES:
        file_type = render
    elif render == "rendered":
        file_type = "markdown"

    entry = FileEntry(
        display_name=submission.display_name,
        description=submission.description,
        type=file_type,
        render=render,
        hidden=submission.hidden,
        unwrapped=submission.unwrapped,
        collapsed=submission.collapsed,
        collapsed_description=submission.collapsed_description,
    )
    return PreparedFile(
        index=index,
        filename=sanitize_filename(submission.filename),
        content=content,
        entry=entry,
        original_filename=submission.original_filename or None,
    )


def prepare_files(
    submissions: Iterable[FileSubmission],
    uploads: Mapping[int, Upload] | None = None,
) -> list[PreparedFile]:
    uploads = uploads or {}
    return [prepare_file(i, sub, uploads.get(i)) for i, sub in enumerate(submissions)]


def plan_file_changes(existing: Iterable[str], prepared: Iterable[PreparedFile]) -> FileChangePlan:
    """Classify each entry as rename/update/new and find implicit deletions.

    A repeated target name within one submission becomes ``file{index}_{name}``.
    An existing file that no entry claims as its original is deleted, unless
    some entry's final name reuses it, in which case that entry overwrites it.
    """
    existing = list(existing)
    existing_set = set(existing)
    plan = FileChangePlan()
    used: set[str] = set()
    claimed: set[str] = set()

    for item in prepared:
        name = item.filename
        if name in used:
            name = f"file{item.index}_{name}"
        used.add(name)
        if name != item.filename:
            item = PreparedFile(item.index, name, item.content, item.entry, item.original_filename)

        original = item.original_filename
        if original and original in existing_set and original not in claimed:
            claimed.add(original)
            if original != name:
                plan.renames[original] = name
            plan.updates.append(item)
        else:
            plan.additions.append(item)
        plan.order.append(name)

    plan.deletions = [name for name in existing if name not in claimed and name not in used]
    return plan


def apply_file_changes(paste: Paste, plan: FileChangePlan) -> None:
    paste.move_files(plan.renames)
    for item in plan.updates:
        paste.update_file(item.filename, item.content, item.entry)
    for item in plan.additions:
        paste.add_file(item.filename, item.content if item.content is not None else b"", item.entry)
    for name in plan.deletions:
        paste.remove_file(name)
    paste.reorder_files(plan.order)


def sync_aliases(paste: Paste, submitted: Iterable[str]) -> list[ItemResult]:
    """Make the paste's alias set match ``submitted``, one alias at a time.

    Failures (bad id, id taken...) are logged and reported per alias; the
    rest of the batch still runs.
    """
    wanted = [a.strip() for a in submitted if a and a.strip()]
    current = paste.aliases
    results: list[ItemResult] = []

    for alias_id in current:
        if alias_id in wanted:
            continue
        try:
            paste.remove_alias(alias_id)
        except PasteError as e:
            logger.error("Failed to remove alias %s from %s: %s", alias_id, paste.id, e)
            results.append(ItemResult.failed(alias_id, e))
        else:
            results.append(ItemResult.ok(alias_id))

    for alias_id in wanted:
        if alias_id in current or alias_id in paste.aliases:
            continue
        try:
            paste.add_alias(alias_id)
        except PasteError as e:
            logger.error("Failed to add alias %s to %s: %s", alias_id, paste.id, e)
            results.append(ItemResult.failed(alias_id, e))
        else:
            results.append(ItemResult.ok(alias_id))
    return results


def apply_submission(
    paste: Paste,
    form: PasteForm,
    uploads: Mapping[int, Upload] | None = None,
    default_author: str | None = None,
) -> list[ItemResult]:
    """Apply a full edit: paste fields, file set, optional promotion, aliases.

    Returns the per-alias results of the alias sync.
    """
    paste.update(form.paste_fields(default_author))
    plan = plan_file_changes(paste.files.keys(), prepare_files(form.files, uploads))
    apply_file_changes(paste, plan)

    aliases = list(form.aliases)
    if form.make_primary_id:
        old_id = paste.id
        try:
            paste.make_primary(form.make_primary_id)
        except StorageIOError:
            raise
        except PasteError as e:
            logger.error("Failed to make alias %s primary for %s: %s", form.make_primary_id, paste.id, e)
        else:
            # The promoted id is canonical now and the old id always stays reachable.
            aliases = [a for a in aliases if a.strip() != paste.id]
            if old_id not in aliases:
                aliases.append(old_id)

    return sync_aliases(paste, aliases)


def populate_new_paste(paste: Paste, form: PasteForm, uploads: Mapping[int, Upload] | None = None) -> None:
    """Attach the submitted files of a freshly created paste."""
    plan = plan_file_changes([], prepare_files(form.files, uploads))
    for item in plan.additions:
        paste.add_file(item.filename, item.content if item.content is not None else b"", item.entry)
