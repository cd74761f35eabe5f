"""Stable identities for parsed items and sections.

Item key::

    "{file_name}:{title}#{occurrence}"

``occurrence`` is a zero-based counter over items sharing the same
``file_name:title`` prefix, assigned depth-first with a section's own items
before its subsections (document order). Keys are positional, not content
hashes: inserting a same-titled item earlier in the file shifts the index,
and therefore the identity, of every later item with that title. Unrelated
edits (other titles, blank lines, details, tags) leave keys untouched.

Section ids are the "/"-joined heading path (``TodoSection.path``). They are
used for collapse and acknowledgment state, never for change detection.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator

from todowatch.todo_types import TodoDocument, TodoItem, TodoSection


def item_key_prefix(file_name: str, title: str) -> str:
    return f"{file_name}:{title}"


def keyed_items(
    file_name: str,
    sections: Iterable[TodoSection],
) -> list[tuple[str, TodoItem]]:
    """Assign a stable key to every item, in traversal order."""
    seen: Counter[str] = Counter()
    out: list[tuple[str, TodoItem]] = []
    for section in sections:
        for item in section.iter_items():
            prefix = item_key_prefix(file_name, item.title)
            out.append((f"{prefix}#{seen[prefix]}", item))
            seen[prefix] += 1
    return out


def completion_map(documents: Iterable[TodoDocument]) -> dict[str, bool]:
    """Build the ``stable key -> completed`` mapping for one scan."""
    state: dict[str, bool] = {}
    for doc in documents:
        for key, item in keyed_items(doc.name, doc.sections):
            state[key] = item.completed
    return state


def iter_sections(sections: Iterable[TodoSection]) -> Iterator[TodoSection]:
    """Depth-first, parent before children."""
    for section in sections:
        yield section
        yield from iter_sections(section.subsections)


def find_section(
    sections: Iterable[TodoSection],
    path: str,
) -> TodoSection | None:
    """First section whose heading path equals ``path``."""
    for section in iter_sections(sections):
        if section.path == path:
            return section
    return None


def section_item_keys(document: TodoDocument, path: str) -> set[str]:
    """Keys of every item transitively under the section at ``path``.

    Occurrence indices are document-wide, so keys are resolved against the
    whole document and then filtered to the section's line numbers.

    Raises:
        KeyError: no section in ``document`` has that path.
    """
    section = find_section(document.sections, path)
    if section is None:
        raise KeyError(f"No section {path!r} in {document.name}")
    lines = {item.line for item in section.iter_items()}
    return {
        key
        for key, item in keyed_items(document.name, document.sections)
        if item.line in lines
    }


def item_keys_by_line(document: TodoDocument) -> dict[int, str]:
    """``source line -> stable key`` for rendering per-item state."""
    return {
        item.line: key
        for key, item in keyed_items(document.name, document.sections)
    }
