"""Core types shared by the parser, identity resolver, and watcher.

Every tree type is a frozen dataclass rebuilt wholesale on each parse;
nothing in a parsed tree is ever patched in place.

Type hierarchy:
  Ok[T] / Err[E]  -- Result type for fallible reads
  ReadError       -- Typed reason a file could not be read
  TodoItem        -- One checkbox line
  TodoSection     -- Heading plus nested items and subsections
  TodoDocument    -- One parsed file (logical name + sections)
  ScanStatus      -- Outcome of the most recent scan
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

# ---------------------------------------------------------------------------
# Result ADT
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Ok[T]:
    """Success case of Result[T, E].

    Usage::

        match read_text(path):
            case Ok(value=text): parse(text)
            case Err(error=e): log.warning(e.reason)
    """
    value: T


@dataclass(frozen=True, slots=True)
class Err[E]:
    """Failure case of Result[T, E]."""
    error: E


type Result[T, E] = Ok[T] | Err[E]


@dataclass(frozen=True, slots=True)
class ReadError:
    """Why a watched file could not be turned into text.

    ``kind`` is one of "missing", "unreadable", "decode", "timeout".
    """
    path: str
    kind: str
    message: str

    @property
    def reason(self) -> str:
        return f"{self.kind}: {self.path}: {self.message}"


# ---------------------------------------------------------------------------
# Parsed tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class TodoItem:
    """A single checklist line (``- [ ] ...`` or ``- [x] ...``)."""

    title: str                  # Bold span, or text before " [" / " - "
    completed: bool
    line: int                   # 1-based source line
    tags: tuple[str, ...] = ()  # "[ssmd]" -> "ssmd", order kept, dupes kept
    details: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TodoSection:
    """A level >= 2 heading and everything nested under it.

    Invariants (enforced in __post_init__):
        - level >= 2
        - every subsection has a strictly greater level
    """

    heading: str
    level: int
    path: str                   # "/"-joined heading path from the root
    items: tuple[TodoItem, ...]
    subsections: tuple[TodoSection, ...]
    all_completed: bool

    def __post_init__(self) -> None:
        if self.level < 2:
            raise ValueError(f"TodoSection.level must be >= 2, got {self.level}")
        for sub in self.subsections:
            if sub.level <= self.level:
                raise ValueError(
                    f"Subsection {sub.heading!r} (level {sub.level}) must be "
                    f"deeper than {self.heading!r} (level {self.level})"
                )

    def iter_items(self) -> Iterator[TodoItem]:
        """Yield every item under this section, items before subsections."""
        yield from self.items
        for sub in self.subsections:
            yield from sub.iter_items()


@dataclass(frozen=True, slots=True)
class TodoDocument:
    """One parsed markdown file.

    ``name`` is the logical name used as the prefix of every stable key
    (the file's base name, e.g. ``TODO.md``).
    """

    name: str
    path: str
    sections: tuple[TodoSection, ...]

    @classmethod
    def from_path(cls, path: Path, sections: list[TodoSection]) -> TodoDocument:
        return cls(name=path.name, path=str(path), sections=tuple(sections))

    def iter_items(self) -> Iterator[TodoItem]:
        for section in self.sections:
            yield from section.iter_items()


class ScanStatus(StrEnum):
    """Outcome of the most recent scan of a watched target."""

    IDLE = "idle"          # no target, or target set but never scanned
    OK = "ok"
    PARTIAL = "partial"    # directory target, some files kept stale
    FAILED = "failed"      # nothing could be read; previous state kept
