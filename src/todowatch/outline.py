"""Consumer-facing views of a watch snapshot.

``flatten`` turns the document tree into navigable rows, honouring a set of
collapsed section paths. ``default_collapsed`` starts with every
all-completed section folded away. ``snapshot_to_dict`` is the JSON shape
shared by the scripts and the dashboard API.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from todowatch.identity import item_keys_by_line, iter_sections
from todowatch.todo_types import TodoDocument, TodoItem, TodoSection
from todowatch.watcher import WatchSnapshot


@dataclass(frozen=True, slots=True)
class OutlineRow:
    """One visible line of the outline: a section heading or an item."""

    kind: str                   # "section" | "item"
    document: str
    depth: int                  # 0 for top-level sections
    section_path: str           # owning section for items
    text: str
    completed: bool
    key: str = ""               # stable key, items only
    changed: bool = False       # item changed, or section contains a change
    collapsed: bool = False     # sections only
    done: int = 0               # sections only: transitive progress
    total: int = 0
    tags: tuple[str, ...] = ()
    line: int = 0


def section_progress(section: TodoSection) -> tuple[int, int]:
    """``(completed, total)`` over every item under ``section``."""
    done = total = 0
    for item in section.iter_items():
        total += 1
        if item.completed:
            done += 1
    return done, total


def default_collapsed(documents: Iterable[TodoDocument]) -> set[tuple[str, str]]:
    """``(document, section path)`` for every all-completed section."""
    return {
        (doc.name, section.path)
        for doc in documents
        for section in iter_sections(doc.sections)
        if section.all_completed
    }


def flatten(
    documents: Sequence[TodoDocument],
    collapsed: set[tuple[str, str]] | None = None,
    changed: frozenset[str] | set[str] = frozenset(),
) -> list[OutlineRow]:
    """Visible rows in display order; children of collapsed sections are skipped."""
    folded = collapsed or set()
    rows: list[OutlineRow] = []
    for doc in documents:
        keys = item_keys_by_line(doc)
        for section in doc.sections:
            _flatten_section(rows, doc.name, section, 0, keys, folded, changed)
    return rows


def _flatten_section(
    rows: list[OutlineRow],
    doc_name: str,
    section: TodoSection,
    depth: int,
    keys: dict[int, str],
    folded: set[tuple[str, str]],
    changed: frozenset[str] | set[str],
) -> None:
    done, total = section_progress(section)
    is_folded = (doc_name, section.path) in folded
    rows.append(OutlineRow(
        kind="section",
        document=doc_name,
        depth=depth,
        section_path=section.path,
        text=section.heading,
        completed=section.all_completed,
        changed=any(keys[item.line] in changed for item in section.iter_items()),
        collapsed=is_folded,
        done=done,
        total=total,
    ))
    if is_folded:
        return
    for item in section.items:
        key = keys[item.line]
        rows.append(_item_row(doc_name, section, item, depth + 1, key, key in changed))
    for sub in section.subsections:
        _flatten_section(rows, doc_name, sub, depth + 1, keys, folded, changed)


def _item_row(
    doc_name: str,
    section: TodoSection,
    item: TodoItem,
    depth: int,
    key: str,
    changed: bool,
) -> OutlineRow:
    return OutlineRow(
        kind="item",
        document=doc_name,
        depth=depth,
        section_path=section.path,
        text=item.title,
        completed=item.completed,
        key=key,
        changed=changed,
        tags=item.tags,
        line=item.line,
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_text(rows: Sequence[OutlineRow], *, show_documents: bool = False) -> str:
    """Plain-text outline: ``[x]`` / ``[ ]`` items, ``*`` marks changes."""
    lines: list[str] = []
    current_doc = None
    for row in rows:
        if show_documents and row.document != current_doc:
            current_doc = row.document
            lines.append(f"== {current_doc}")
        indent = "  " * row.depth
        mark = " *" if row.changed else ""
        if row.kind == "section":
            fold = "+" if row.collapsed else "-"
            lines.append(f"{indent}{fold} {row.text} ({row.done}/{row.total}){mark}")
            continue
        box = "[x]" if row.completed else "[ ]"
        tags = "".join(f" [{t}]" for t in row.tags)
        lines.append(f"{indent}{box} {row.text}{tags}{mark}")
    return "\n".join(lines)


def _item_to_dict(key: str, item: TodoItem, changed: frozenset[str]) -> dict[str, Any]:
    return {
        "key": key,
        "title": item.title,
        "completed": item.completed,
        "line": item.line,
        "tags": list(item.tags),
        "details": list(item.details),
        "changed": key in changed,
    }


def _section_to_dict(
    section: TodoSection,
    keys: dict[int, str],
    changed: frozenset[str],
) -> dict[str, Any]:
    done, total = section_progress(section)
    return {
        "path": section.path,
        "heading": section.heading,
        "level": section.level,
        "all_completed": section.all_completed,
        "done": done,
        "total": total,
        "items": [_item_to_dict(keys[i.line], i, changed) for i in section.items],
        "subsections": [_section_to_dict(s, keys, changed) for s in section.subsections],
    }


def document_to_dict(doc: TodoDocument, changed: frozenset[str] = frozenset()) -> dict[str, Any]:
    keys = item_keys_by_line(doc)
    return {
        "name": doc.name,
        "path": doc.path,
        "sections": [_section_to_dict(s, keys, changed) for s in doc.sections],
    }


def snapshot_to_dict(snapshot: WatchSnapshot) -> dict[str, Any]:
    return {
        "target": snapshot.target,
        "status": str(snapshot.status),
        "errors": list(snapshot.errors),
        "scan_count": snapshot.scan_count,
        "scanned_at": snapshot.scanned_at,
        "changed": sorted(snapshot.changed),
        "documents": [document_to_dict(d, snapshot.changed) for d in snapshot.documents],
    }


def row_to_dict(row: OutlineRow) -> dict[str, Any]:
    return {
        "kind": row.kind,
        "document": row.document,
        "depth": row.depth,
        "section_path": row.section_path,
        "text": row.text,
        "completed": row.completed,
        "key": row.key,
        "changed": row.changed,
        "collapsed": row.collapsed,
        "done": row.done,
        "total": row.total,
        "tags": list(row.tags),
        "line": row.line,
    }
