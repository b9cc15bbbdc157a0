from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup
from bs4.element import Tag


@dataclass(frozen=True)
class HeadingTransformResult:
    html: str
    anchored_headings: int


_HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]


def slugify_heading(text: str) -> str:
    t = re.sub(r"^#+\s*", "", str(text or "").strip())
    t = re.sub(r"[\s\-_.]+", "-", t)
    t = re.sub(r"[^a-z0-9\-]", "", t.lower())
    return t.strip("-")


def add_heading_ids(html_text: str) -> HeadingTransformResult:
    """Give every heading in rendered markdown a stable anchor id.

    Scheme:
    - H1 uses the plain slug, so href="#introduction" matches "# Introduction".
    - H2+ use "hN-slug", so "## Introduction" does not steal that anchor.
    - Repeated anchors get "-2", "-3"... suffixes in document order.
    - Headings whose text slugs to nothing are left alone.
    """
    raw = html_text or ""
    if "<h" not in raw.lower():
        return HeadingTransformResult(html=raw, anchored_headings=0)

    soup = BeautifulSoup(raw, "html.parser")
    seen: dict[str, int] = {}
    anchored = 0
    for heading in soup.find_all(_HEADING_TAGS):
        if not isinstance(heading, Tag):
            continue
        base = slugify_heading(heading.get_text())
        if not base:
            continue
        level = heading.name[1]
        anchor = base if level == "1" else f"h{level}-{base}"
        count = seen.get(anchor, 0) + 1
        seen[anchor] = count
        if count > 1:
            anchor = f"{anchor}-{count}"
        heading["id"] = anchor
        anchored += 1

    return HeadingTransformResult(html=str(soup), anchored_headings=anchored)
