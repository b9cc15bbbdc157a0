"""Turn one attachment into an HTML fragment according to its render mode.

Everything here is a pure function of its arguments: the caller supplies the
bytes (or None when the file is missing) and the URL the byte endpoint lives
at; nothing touches the notes directory.
"""
from __future__ import annotations

import html
import mimetypes
from typing import Callable
from urllib.parse import quote

import markdown

from .config import BINARY_SAMPLE_BYTES, BINARY_THRESHOLD
from .html_transform import add_heading_ids
from .models import FileEntry

MARKDOWN_EXTENSIONS = ["extra", "sane_lists"]

MISSING_FILE_FRAGMENT = '<p class="error">File not found</p>'

# Text-like types that browsers can display even though they are not text/*.
TEXTUAL_APPLICATION_TYPES = ("application/json", "application/xml", "application/javascript")


def is_binary_content(content: bytes) -> bool:
    """Heuristic: True if ``content`` looks binary rather than text.

    A NUL byte anywhere means binary. Otherwise the first 8 KiB are sampled
    and counted as binary if more than 30% are control bytes other than tab,
    LF, VT, FF and CR. Bytes >= 0x80 count as text so UTF-8 passes.
    """
    if not content:
        return False
    if b"\x00" in content:
        return True
    sample = content[:BINARY_SAMPLE_BYTES]
    non_text = sum(1 for b in sample if b < 9 or 13 < b < 32 or b == 127)
    return non_text / len(sample) > BINARY_THRESHOLD


def _text(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


def _pre(text: str) -> str:
    return f"<pre>{html.escape(text)}</pre>"


def render_markdown(text: str) -> str:
    rendered = markdown.markdown(text, extensions=MARKDOWN_EXTENSIONS, output_format="html")
    return add_heading_ids(rendered).html


def _render_plain(filename: str, content: bytes, entry: FileEntry, url: str) -> str:
    return _pre(_text(content))


def _render_highlighted(filename: str, content: bytes, entry: FileEntry, url: str) -> str:
    language = entry.type or "text"
    return (
        f'<pre><code class="language-{html.escape(language)}">'
        f"{html.escape(_text(content))}</code></pre>"
    )


def _render_image(filename: str, content: bytes, entry: FileEntry, url: str) -> str:
    return f'<img src="{html.escape(url)}" alt="{html.escape(filename)}" />'


def _render_file(filename: str, content: bytes, entry: FileEntry, url: str) -> str:
    return (
        '<div class="file-download">'
        f'<a href="{html.escape(url)}" download>'
        f'<span class="icon">&#128193;</span> Download {html.escape(filename)}</a>'
        "</div>"
    )


def _render_file_link(filename: str, content: bytes, entry: FileEntry, url: str) -> str:
    return (
        '<div class="file-link">'
        f'<a href="{html.escape(url)}" target="_blank" rel="noopener">'
        f'<span class="icon">&#128206;</span> {html.escape(filename)}</a>'
        "</div>"
    )


def _render_links(filename: str, content: bytes, entry: FileEntry, url: str) -> str:
    links = [line.strip() for line in _text(content).split("\n")]
    items = "".join(
        f'<li><a href="{html.escape(link)}" target="_blank" rel="noopener">{html.escape(link)}</a></li>'
        for link in links
        if link
    )
    return f'<ul class="link-list">{items}</ul>'


def _render_rendered(filename: str, content: bytes, entry: FileEntry, url: str) -> str:
    if entry.type == "markdown":
        return render_markdown(_text(content))
    return _render_plain(filename, content, entry, url)


RENDERERS: dict[str, Callable[[str, bytes, FileEntry, str], str]] = {
    "plain": _render_plain,
    "highlighted": _render_highlighted,
    "image": _render_image,
    "file": _render_file,
    "file-link": _render_file_link,
    "link": _render_links,
    "rendered": _render_rendered,
}


def render_file_content(
    filename: str,
    content: bytes | str | None,
    entry: FileEntry,
    file_url: str | None = None,
) -> str:
    """Render one attachment.

    ``file_url`` is where the raw bytes are served; it defaults to the
    relative ``./files/<name>`` used inside a paste's own document.
    """
    if content is None:
        return MISSING_FILE_FRAGMENT
    if isinstance(content, str):
        content = content.encode("utf-8")
    if file_url is None:
        file_url = f"./files/{quote(filename, safe='')}"
    renderer = RENDERERS.get(entry.render, _render_plain)
    return renderer(filename, content, entry, file_url)


def guess_mime_type(filename: str) -> str:
    mime, _ = mimetypes.guess_type(filename)
    return mime or "application/octet-stream"


def is_textual_mime(mime: str) -> bool:
    return mime.startswith("text/") or mime in TEXTUAL_APPLICATION_TYPES


def needs_attachment_disposition(render: str, mime: str) -> bool:
    """Force a download only for `file` attachments browsers would not display."""
    if render != "file":
        return False
    return not (mime.startswith("text/") or mime.startswith("image/"))
