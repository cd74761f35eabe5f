"""Markdown checklist parser.

Turns raw markdown text into a tree of TodoSection / TodoItem with
aggregated completion state. Pure function, no I/O, never raises:
unrecognised lines are ignored or kept as item details.

Line grammar (applied to whitespace-trimmed lines):
    Heading   -- "##" or deeper, followed by non-empty text. Level = "#" count.
                 "# Title" (level 1) and bodiless "##" are NOT headings.
    Checkbox  -- "- [ ] rest", "- [x] rest", "- [X] rest".
    Detail    -- any other non-empty line once the innermost open section
                 has an item; attached to that item, leading "- " stripped.

Nesting uses an explicit stack of open section builders. A heading of
level L closes every open section with level >= L; closing computes
``all_completed`` and hands the finished (immutable) section to its parent.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field, replace

from todowatch.todo_types import TodoItem, TodoSection

# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------

_CHECKBOX_RE = re.compile(r"^-\s\[([ xX])\](?:\s(.*))?$")

# "[ssmd]", "[ssmd/varlab]" -- must start with a letter, so "[ ]" and
# "[2024]" are not tags.
_TAG_RE = re.compile(r"\[([a-zA-Z][a-zA-Z0-9/]*)\]")

_DETAIL_PREFIX_RE = re.compile(r"^- ")

# Unicode punctuation and symbol categories that cannot carry a heading on
# their own. "So" (emoji) is not among them.
_MARKUP_CATEGORIES = ("P", "Sm", "Sk", "Sc")


def _is_markup_char(ch: str) -> bool:
    return ch.isspace() or unicodedata.category(ch).startswith(_MARKUP_CATEGORIES)


# ---------------------------------------------------------------------------
# Line classifiers
# ---------------------------------------------------------------------------

def parse_heading(line: str) -> tuple[int, str] | None:
    """Return ``(level, heading)`` for a level >= 2 heading line, else None.

    >>> parse_heading("### Pending")
    (3, 'Pending')
    >>> parse_heading("# Roadmap") is None
    True
    """
    level = len(line) - len(line.lstrip("#"))
    if level < 2:
        return None
    heading = line[level:].strip()
    if not heading or all(_is_markup_char(ch) for ch in heading):
        return None
    return level, heading


def extract_title(rest: str) -> str:
    """Extract the display title from the text after a checkbox marker.

    A closed ``**bold**`` span wins. Otherwise the text is cut at the first
    ``" ["`` (tag annotations) and then at the first ``" - "`` (dates,
    trailing notes).
    """
    bold_start = rest.find("**")
    if bold_start >= 0:
        bold_end = rest.find("**", bold_start + 2)
        if bold_end >= 0:
            return rest[bold_start + 2:bold_end].strip()

    title = rest
    idx = title.find(" [")
    if idx >= 0:
        title = title[:idx]
    idx = title.find(" - ")
    if idx >= 0:
        title = title[:idx]
    return title.strip()


def extract_tags(rest: str) -> tuple[str, ...]:
    """All ``[tag]`` tokens in the full checkbox remainder, left to right."""
    return tuple(m.group(1) for m in _TAG_RE.finditer(rest))


def parse_checkbox(line: str, line_number: int) -> TodoItem | None:
    """Return a TodoItem if ``line`` (already trimmed) is a checkbox."""
    m = _CHECKBOX_RE.match(line)
    if m is None:
        return None
    rest = m.group(2) or ""
    return TodoItem(
        title=extract_title(rest),
        completed=m.group(1) in ("x", "X"),
        line=line_number,
        tags=extract_tags(rest),
    )


# ---------------------------------------------------------------------------
# Tree construction
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class _OpenSection:
    """Mutable builder for a section that has not been closed yet."""

    level: int
    heading: str
    path: str
    items: list[TodoItem] = field(default_factory=list)
    subsections: list[TodoSection] = field(default_factory=list)

    def close(self) -> TodoSection:
        all_items = list(self.items)
        for sub in self.subsections:
            all_items.extend(sub.iter_items())
        return TodoSection(
            heading=self.heading,
            level=self.level,
            path=self.path,
            items=tuple(self.items),
            subsections=tuple(self.subsections),
            all_completed=all(item.completed for item in all_items),
        )


def _pop_into_parent(stack: list[_OpenSection], roots: list[TodoSection]) -> None:
    section = stack.pop().close()
    if stack:
        stack[-1].subsections.append(section)
    else:
        roots.append(section)


def _flush_details(details: list[str], stack: list[_OpenSection]) -> None:
    """Attach buffered detail lines to the newest item of the top section.

    The buffer is always cleared; details with nowhere to go are dropped.
    """
    if details and stack and stack[-1].items:
        items = stack[-1].items
        items[-1] = replace(items[-1], details=tuple(details))
    details.clear()


def parse(text: str) -> list[TodoSection]:
    """Parse markdown text into top-level sections.

    Checkboxes before the first heading are dropped: a document with no
    heading has no addressable items. Empty input yields ``[]``.
    """
    roots: list[TodoSection] = []
    stack: list[_OpenSection] = []
    pending_details: list[str] = []

    for index, raw_line in enumerate(text.split("\n")):
        line = raw_line.strip()
        line_number = index + 1

        heading = parse_heading(line)
        if heading is not None:
            level, title = heading
            _flush_details(pending_details, stack)
            while stack and stack[-1].level >= level:
                _pop_into_parent(stack, roots)
            path = "/".join([s.heading for s in stack] + [title])
            stack.append(_OpenSection(level=level, heading=title, path=path))
            continue

        item = parse_checkbox(line, line_number)
        if item is not None:
            _flush_details(pending_details, stack)
            if stack:
                stack[-1].items.append(item)
            continue

        if line and stack and stack[-1].items:
            pending_details.append(_DETAIL_PREFIX_RE.sub("", line, count=1))

    _flush_details(pending_details, stack)
    while stack:
        _pop_into_parent(stack, roots)

    return roots
