"""Best-effort extraction of structure from free-form model text.

Every function here is pure and never raises on malformed input: a missing
section comes back as ``""``, a missing list as ``[]``, a missing score as
``0.0``.  Handlers decide whether a shortfall is worth a warning.

Header matching
---------------
Section headers are matched case-insensitively.  A header at the start of a
line (optionally decorated with ``#``, ``*``, ``-`` or a list number, as in
``**STRENGTHS:**`` or ``2. OVERALL SCORE``) is preferred over the same words
appearing mid-sentence; the mid-sentence match is the fallback.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

_LINE_PREFIX = r"^[#*>\-\d.)\t ]*"
_NUMBERED = re.compile(r"^\s*\d+[.)]\s+(.+?)\s*$", re.MULTILINE)
_BULLET = re.compile(r"^\s*[-*•]\s+(.+?)\s*$", re.MULTILINE)
_NEXT_LABEL = re.compile(r"\n[^\S\n]*\**[A-Z][A-Z /&-]{2,}\**[^\S\n]*:")
_LABELED_H3 = re.compile(r"^\s*(?:H3\s*:|###)\s*(.+?)\s*$", re.MULTILINE | re.IGNORECASE)


def _find_header(text: str, header: str, pos: int = 0) -> re.Match | None:
    escaped = re.escape(header)
    line_start = re.compile(_LINE_PREFIX + escaped, re.IGNORECASE | re.MULTILINE)
    m = line_start.search(text, pos)
    if m is None:
        m = re.compile(escaped, re.IGNORECASE).search(text, pos)
    return m


def clean_item(item: str) -> str:
    """Strip markdown emphasis, surrounding quotes and stray punctuation."""
    item = item.strip()
    item = re.sub(r"^\*\*(.+?)\*\*", r"\1", item)
    item = item.strip("*_ \t")
    if len(item) >= 2 and item[0] == item[-1] and item[0] in "\"'":
        item = item[1:-1].strip()
    return item


# ── Sections & lists ──────────────────────────────────────────────────────────

def extract_section(text: str, start: str, end: str | Sequence[str] | None = None) -> str:
    """Return the text between header *start* and the next of *end*.

    Parameters
    ----------
    text :
        Model response.
    start :
        Header that opens the section, e.g. ``"MAIN H2 HEADINGS"``.
    end :
        One header or several candidate headers that close the section.  The
        earliest one found *after* the start header wins.

    Returns
    -------
    str
        Section body (header excluded, stripped).  ``""`` if *start* is
        absent; everything to the end of *text* if no end header follows.

    Examples
    --------
    >>> extract_section("A:\\n1. x\\nB:\\n1. y", "A", "B")
    ':\\n1. x'
    """
    if not text:
        return ""
    m = _find_header(text, start)
    if m is None:
        return ""
    body_start = m.end()

    if isinstance(end, str):
        end = [end]
    stop = len(text)
    for marker in end or ():
        em = _find_header(text, marker, body_start)
        if em is not None and em.start() < stop:
            stop = em.start()
    return text[body_start:stop].strip()


def parse_numbered_list(text: str, min_length: int = 1) -> list[str]:
    """Items of a ``1. item`` / ``1) item`` list, in order.

    Items shorter than *min_length* characters after cleaning are dropped.
    Falls back to :func:`parse_bullet_list` when no numbered line is found.
    """
    items = [clean_item(m) for m in _NUMBERED.findall(text or "")]
    items = [i for i in items if len(i) >= min_length]
    if items:
        return items
    return parse_bullet_list(text, min_length=min_length)


def parse_bullet_list(text: str, min_length: int = 1) -> list[str]:
    """Items of a ``-``, ``*`` or ``•`` bulleted list.  ``[]`` if none."""
    items = [clean_item(m) for m in _BULLET.findall(text or "")]
    return [i for i in items if len(i) >= min_length]


def parse_list_items(text: str, limit: int | None = None, min_length: int = 1) -> list[str]:
    """Numbered items, else bullets, else ``H3:`` / ``###`` lines.

    The result is truncated to *limit* items when given.
    """
    items = parse_numbered_list(text, min_length=min_length)
    if not items:
        items = [clean_item(m) for m in _LABELED_H3.findall(text or "")]
        items = [i for i in items if len(i) >= min_length]
    if limit is not None:
        items = items[:limit]
    return items


def markdown_headings(text: str, level: int = 2) -> list[str]:
    """Text of every markdown heading of exactly *level* ``#`` marks."""
    pattern = re.compile(rf"^[^\S\n]*#{{{level}}}(?!#)\s+(.+?)\s*#*\s*$", re.MULTILINE)
    return [clean_item(h) for h in pattern.findall(text or "") if clean_item(h)]


# ── Labeled fields ────────────────────────────────────────────────────────────

def extract_labeled_field(text: str, label: str, default: str | None = None) -> str | None:
    """Value of a ``LABEL: value`` line (label may be wrapped in ``**``).

    Returns *default* when the label is missing or its value is blank.

    Examples
    --------
    >>> extract_labeled_field('TITLE: "Improv for Teams"', "TITLE")
    'Improv for Teams'
    """
    pattern = re.compile(
        rf"\**{re.escape(label)}\**\s*:\s*\**\s*(.+?)\s*(?:\n|$)", re.IGNORECASE
    )
    m = pattern.search(text or "")
    if m is None:
        return default
    value = clean_item(m.group(1))
    return value or default


def extract_score(text: str, label: str = "OVERALL SCORE", maximum: float = 10.0) -> float:
    """First number following *label* (or ``SCORE``), within 0..*maximum*.

    A ``(1-10)`` range hint right after the label is skipped, and so are up
    to three blank or decoration-only lines between a heading and the number.
    Anything unparseable or out of range gives ``0.0``.
    """
    for candidate in (label, "SCORE"):
        pattern = re.compile(
            rf"{re.escape(candidate)}[^0-9\n]*?"
            r"(?:\(\s*\d+\s*(?:-|–|to)\s*\d+\s*\)[^0-9\n]*?)?"
            r"(?:\n[^\w\n]*){0,3}?"
            r"(?:\n[^0-9\n]{0,40}?)?"
            r"(\d+(?:\.\d+)?)",
            re.IGNORECASE,
        )
        m = pattern.search(text or "")
        if m:
            value = float(m.group(1))
            return value if 0.0 <= value <= maximum else 0.0
    return 0.0


def extract_choice(text: str, label: str, options: Sequence[str], window: int = 160) -> str | None:
    """Resolve a numbered choice like ``INTRODUCTION: Option 2`` to its text.

    Only the label's own block is read: from the label up to the next
    ``UPPERCASE LABEL:`` line, at most *window* characters for the number.
    The first integer there maps (1-based) onto *options*.  Falls back to the
    first option quoted verbatim in the block, then ``None``.

    Examples
    --------
    >>> extract_choice("SELECTED INTRODUCTION: story\\nSELECTED CONCLUSION: 3",
    ...                "SELECTED INTRODUCTION", ["a", "b", "c"]) is None
    True
    """
    if not options:
        return None
    m = _find_header(text or "", label)
    if m is None:
        return None
    block = text[m.end():]
    nxt = _NEXT_LABEL.search(block)
    if nxt:
        block = block[:nxt.start()]
    num = re.search(r"\d+", block[:window])
    if num:
        idx = int(num.group()) - 1
        if 0 <= idx < len(options):
            return options[idx]
    lowered = block.lower()
    hits = [(lowered.find(o.lower()), o) for o in options if o and o.lower() in lowered]
    if hits:
        return min(hits)[1]
    return None


# ── Text metrics ──────────────────────────────────────────────────────────────

def count_words(text: str) -> int:
    return len((text or "").split())


def reading_time(words: int, words_per_minute: int = 200) -> int:
    """Minutes to read *words*, rounded up."""
    return math.ceil(words / words_per_minute)


def keyword_density(
    text: str,
    keywords: Iterable[str],
    optimal: tuple[float, float] = (0.5, 2.5),
) -> dict[str, dict[str, Any]]:
    """Per-keyword occurrence count and density (% of total words).

    Matching is case-insensitive substring matching.  ``optimal`` is True
    when the density falls inside the inclusive *optimal* band.
    """
    words = count_words(text)
    lowered = (text or "").lower()
    report: dict[str, dict[str, Any]] = {}
    for kw in keywords:
        kw = kw.strip()
        if not kw:
            continue
        occurrences = len(re.findall(re.escape(kw.lower()), lowered))
        density = round(occurrences / words * 100, 2) if words else 0.0
        report[kw] = {
            "occurrences": occurrences,
            "density": density,
            "optimal": optimal[0] <= density <= optimal[1],
        }
    return report


def content_structure(text: str) -> dict[str, Any]:
    """Heading and paragraph counts of a markdown article."""
    blocks = [b.strip() for b in re.split(r"\n\s*\n", text or "") if b.strip()]
    paragraphs = [b for b in blocks if not b.startswith("#")]
    words = sum(count_words(p) for p in paragraphs)
    return {
        "h1_count": len(markdown_headings(text, 1)),
        "h2_count": len(markdown_headings(text, 2)),
        "h3_count": len(markdown_headings(text, 3)),
        "paragraph_count": len(paragraphs),
        "average_words_per_paragraph": round(words / len(paragraphs)) if paragraphs else 0,
    }


# ── Coercion & misc ───────────────────────────────────────────────────────────

def as_text(value: Any) -> str:
    """Coerce a completion reply of any common shape to plain text.

    Handles ``str``; mappings or objects with ``text`` / ``content``; lists
    of typed content blocks (first block carrying text wins, non-text blocks
    such as ``tool_use`` are skipped); OpenAI-style ``choices``.  Numbers
    are stringified.  Anything else gives ``""``.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, Mapping):
        keys = ("text", "content") if value.get("type") in (None, "text") else ("content",)
        for key in keys:
            if key in value:
                text = as_text(value[key])
                if text.strip():
                    return text
        return ""
    if isinstance(value, (list, tuple)):
        for block in value:
            text = as_text(block)
            if text.strip():
                return text
        return ""
    block_type = getattr(value, "type", None)
    attrs = ("text", "content") if block_type in (None, "text") else ("content",)
    for attr in attrs:
        inner = getattr(value, attr, None)
        if inner is not None and not callable(inner):
            text = as_text(inner)
            if text.strip():
                return text
    choices = getattr(value, "choices", None)
    if choices:
        message = getattr(choices[0], "message", None)
        return as_text(getattr(message, "content", None))
    return ""


def slugify(text: str, max_length: int = 50) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")
    return slug[:max_length].rstrip("-")


def find_near_duplicates(items: Sequence[str], words: int = 3) -> list[tuple[str, str]]:
    """Pairs of items whose first *words* normalized words are identical."""
    seen: dict[str, str] = {}
    dupes: list[tuple[str, str]] = []
    for item in items:
        key = " ".join(re.sub(r"[^a-z0-9\s]", "", item.lower()).split()[:words])
        if not key:
            continue
        if key in seen:
            dupes.append((seen[key], item))
        else:
            seen[key] = item
    return dupes


def to_json_safe(value: Any) -> Any:
    """Round-trip *value* through JSON, stringifying anything unserialisable."""
    return json.loads(json.dumps(value, default=lambda o: f"<non-serialisable: {type(o).__name__}>"))
