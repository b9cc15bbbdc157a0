from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from markupsafe import Markup

from .errors import PasteError, StorageIOError
from .models import FileEntry, ItemResult
from .renderer import render_file_content
from .store import Paste, PasteStore

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
PASTE_TEMPLATE = "paste.html"

_PREVIEW_MODES = ("file", "file-link")


@dataclass(frozen=True)
class RenderedFile:
    filename: str
    entry: FileEntry
    html: Markup
    # Inline text shown under file/file-link downloads when the bytes are not binary.
    preview: str | None = None


class PasteCompiler:
    """Builds the cached HTML document of a paste and keeps it on disk."""

    def __init__(self, templates_dir: Path | None = None, base_path: str = "") -> None:
        self.base_path = (base_path or "").rstrip("/")
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir or TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    def selected_files(self, paste: Paste) -> list[str]:
        """Filenames to show: the selected file in single-* modes, else every non-hidden file."""
        files = paste.files
        selected = paste.meta.selected_file
        if paste.meta.is_single_mode and selected and selected in files:
            return [selected]
        return [name for name, entry in files.items() if not entry.hidden]

    def render_file(self, paste: Paste, filename: str) -> RenderedFile:
        entry = paste.files[filename]
        content = paste.get_file(filename)
        fragment = render_file_content(filename, content, entry)
        preview = None
        if entry.render in _PREVIEW_MODES and content and not paste.is_file_binary(filename):
            preview = content.decode("utf-8", errors="replace")
        return RenderedFile(filename=filename, entry=entry, html=Markup(fragment), preview=preview)

    def render_html(self, paste: Paste) -> str:
        files = [self.render_file(paste, name) for name in self.selected_files(paste)]
        try:
            template = self.env.get_template(PASTE_TEMPLATE)
            return template.render(
                paste=paste,
                meta=paste.meta,
                files=files,
                display_mode=paste.meta.display_mode,
                base_path=self.base_path,
            )
        except TemplateError as e:
            raise StorageIOError(f"Failed to render paste '{paste.id}': {e}") from e

    def render(self, paste: Paste) -> str:
        """Render ``paste`` and overwrite its cached document. Returns the HTML."""
        html = self.render_html(paste)
        target = paste.html_path
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            tmp.write_text(html, encoding="utf-8")
            tmp.replace(target)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StorageIOError(f"Failed to write HTML file for '{paste.id}': {e}") from e
        self._remove_stale_documents(paste)
        logger.debug("Rendered paste %s to %s", paste.id, target.name)
        return html

    def _remove_stale_documents(self, paste: Paste) -> None:
        # Documents cached under an earlier title's slug.
        current = paste.html_path.name
        for old in paste.root.glob("*.html"):
            if old.name == current:
                continue
            try:
                old.unlink()
            except OSError as e:
                logger.warning("Could not remove stale document %s of %s: %s", old.name, paste.id, e)

    def ensure_rendered(self, paste: Paste) -> Path:
        """Return the cached document path, rendering it first if missing."""
        if not paste.html_path.is_file():
            self.render(paste)
        return paste.html_path

    def render_all(self, store: PasteStore) -> list[ItemResult]:
        """Re-render every paste; one failure does not stop the rest."""
        results: list[ItemResult] = []
        for paste in store.list_all():
            try:
                self.render(paste)
            except PasteError as e:
                logger.error("Failed to rerender paste %s: %s", paste.id, e)
                results.append(ItemResult.failed(paste.id, e, title=paste.title))
            else:
                results.append(ItemResult.ok(paste.id, title=paste.title))
        return results
