"""Typed shapes of the JSON documents kept in each paste directory.

Keys are stored in camelCase (``displayMode``, ``selectedFile``...) so that
existing notes directories stay readable; Python code uses the snake_case
attribute names. Missing keys fall back to the same defaults a freshly
created paste gets.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import DEFAULT_DISPLAY_MODE, DEFAULT_RENDER_MODE

RENDER_MODES = ("plain", "highlighted", "image", "file", "file-link", "link", "rendered")


class _StoredModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class FileEntry(_StoredModel):
    """Per-attachment metadata; the bytes live in files/<filename>."""

    display_name: str = Field("", alias="displayName")
    description: str = ""
    type: str = "text"
    render: str = DEFAULT_RENDER_MODE
    hidden: bool = False
    unwrapped: bool = False
    collapsed: bool = False
    collapsed_description: str = Field("", alias="collapsedDescription")


class PasteMeta(_StoredModel):
    title: str = "Untitled"
    description: str = ""
    summary: str = ""
    author: str = "Anonymous"
    public: bool = False
    display_mode: str = Field(DEFAULT_DISPLAY_MODE, alias="displayMode")
    selected_file: str = Field("", alias="selectedFile")
    created_at: str | None = Field(None, alias="createdAt")
    updated_at: str | None = Field(None, alias="updatedAt")
    aliases: list[str] = Field(default_factory=list)
    files: dict[str, FileEntry] = Field(default_factory=dict)

    @field_validator("files", mode="before")
    @classmethod
    def _empty_list_means_no_files(cls, value: Any) -> Any:
        # An empty mapping can be serialized as [] by other writers.
        if isinstance(value, list) and not value:
            return {}
        return value

    @field_validator("aliases", mode="before")
    @classmethod
    def _drop_null_aliases(cls, value: Any) -> Any:
        if value is None:
            return []
        return value

    @property
    def is_single_mode(self) -> bool:
        return self.display_mode.startswith("single-")


# Fields a metadata edit may touch; timestamps, aliases and files have their own operations.
EDITABLE_FIELDS = ("title", "description", "summary", "author", "public", "display_mode", "selected_file")


class AliasPointer(_StoredModel):
    parent: str


class PromotionMarker(_StoredModel):
    """Write-ahead record of an in-flight make_primary, kept inside the paste dir."""

    old_id: str = Field(alias="from")
    new_id: str = Field(alias="to")
    aliases: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one item in a best-effort batch operation."""

    item: str
    success: bool
    error: str | None = None
    title: str | None = None

    @classmethod
    def ok(cls, item: str, title: str | None = None) -> "ItemResult":
        return cls(item=item, success=True, title=title)

    @classmethod
    def failed(cls, item: str, error: BaseException | str, title: str | None = None) -> "ItemResult":
        return cls(item=item, success=False, error=str(error), title=title)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.item, "success": self.success}
        if self.title is not None:
            data["title"] = self.title
        if self.error is not None:
            data["error"] = self.error
        return data
