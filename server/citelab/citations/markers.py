"""Citation markers embedded in document HTML.

A marker is a span such as::

    <span class="citation" data-citation-id="abc" data-citation-number="3">[3]</span>

Attribute order varies between editors, so the id and number attributes are
located independently inside each marker's opening tag. Markers are often
wrapped in styling spans; the scan starts at the marker's own opening tag and
ends at the first closing tag after it.
"""

from __future__ import annotations

import html
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

_MARKER_RE = re.compile(
    r"(<span\b[^>]*\bdata-citation-id\s*=[^>]*>)(.*?)(</span>)",
    re.IGNORECASE | re.DOTALL,
)
_ID_ATTR_RE = re.compile(r"""data-citation-id\s*=\s*(["'])(.*?)\1""", re.IGNORECASE)


@dataclass(frozen=True)
class MarkerChange:
    citation_id: str
    old_number: int
    new_number: int


@dataclass(frozen=True)
class MarkerRewrite:
    content: str
    rewritten: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


def _citation_id(tag: str) -> str | None:
    m = _ID_ATTR_RE.search(tag)
    if not m:
        return None
    return html.unescape(m.group(2)).strip() or None


def render_citation_marker(citation_id: str, inline_number: int, sub_number: int | None = None) -> str:
    label = f"{inline_number}.{sub_number}" if sub_number and sub_number > 1 else str(inline_number)
    return (
        f'<span class="citation" data-citation-id="{html.escape(citation_id, quote=True)}" '
        f'data-citation-number="{inline_number}">[{label}]</span>'
    )


def extract_citation_ids(content: str) -> list[str]:
    seen: dict[str, None] = {}
    for m in _MARKER_RE.finditer(content or ""):
        cid = _citation_id(m.group(1))
        if cid:
            seen.setdefault(cid, None)
    return list(seen)


def rewrite_citation_markers(content: str, changes: Iterable[MarkerChange]) -> MarkerRewrite:
    """Replace old numbers with new ones in the markers of the given citations.

    Only the ``data-citation-number`` attribute and the visible ``[n]`` text of
    spans carrying a changed citation id are touched. Ids whose marker could
    not be found (or no longer shows the old number) are reported in
    ``missing``.
    """
    by_id = {c.citation_id: c for c in changes if c.old_number != c.new_number}
    if not by_id:
        return MarkerRewrite(content=content)

    found: set[str] = set()

    def _replace(m: re.Match[str]) -> str:
        tag, inner, close = m.group(1), m.group(2), m.group(3)
        cid = _citation_id(tag)
        change = by_id.get(cid) if cid else None
        if change is None:
            return m.group(0)
        old = re.escape(str(change.old_number))
        tag, n_attr = re.subn(
            rf"""(data-citation-number\s*=\s*)(["']){old}\2""",
            lambda a: f"{a.group(1)}{a.group(2)}{change.new_number}{a.group(2)}",
            tag,
            count=1,
            flags=re.IGNORECASE,
        )
        inner, n_text = re.subn(
            rf"\[{old}(\.\d+)?\]",
            lambda t: f"[{change.new_number}{t.group(1) or ''}]",
            inner,
            count=1,
        )
        if n_attr or n_text:
            found.add(change.citation_id)
        return f"{tag}{inner}{close}"

    new_content = _MARKER_RE.sub(_replace, content or "")
    rewritten = [cid for cid in by_id if cid in found]
    missing = [cid for cid in by_id if cid not in found]
    return MarkerRewrite(content=new_content, rewritten=rewritten, missing=missing)
