"""Change detection between successive scans of one watched target.

``detect`` is the pure comparison. ``ChangeTracker`` owns the scan state
(the previous ``key -> completed`` mapping) and the changed-key set under
the explicit-acknowledgment policy:

* every scan unions newly changed keys into the pending set;
* a key leaves the set only when the consumer acknowledges it, either
  directly or through a section that contains it;
* pending keys whose item disappeared from the document are dropped.

There is no timed decay. A tracker is not thread-safe on its own; the
watcher serialises access under its condition lock.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from todowatch.identity import section_item_keys
from todowatch.todo_types import TodoDocument


def detect(
    previous: Mapping[str, bool],
    current: Mapping[str, bool],
) -> set[str]:
    """Keys whose completion flipped, or that appeared, since ``previous``.

    An empty ``previous`` means this is the first scan of the target, so
    nothing is reported. Keys that only exist in ``previous`` (removed
    items) are never reported.
    """
    if not previous:
        return set()
    changed: set[str] = set()
    for key, completed in current.items():
        old = previous.get(key)
        if old is None or old != completed:
            changed.add(key)
    return changed


class ChangeTracker:
    """Scan state plus the acknowledgment-based changed set for one target."""

    def __init__(self) -> None:
        self._previous: dict[str, bool] = {}
        self._changed: set[str] = set()
        self._scans = 0

    @property
    def scan_state(self) -> dict[str, bool]:
        return dict(self._previous)

    @property
    def changed(self) -> frozenset[str]:
        return frozenset(self._changed)

    @property
    def scans(self) -> int:
        return self._scans

    def observe(self, current: Mapping[str, bool]) -> set[str]:
        """Record one completed scan and return the keys it changed.

        The scan state is replaced wholesale with ``current``.
        """
        newly_changed = detect(self._previous, current)
        self._changed = {k for k in self._changed if k in current}
        self._changed |= newly_changed
        self._previous = dict(current)
        self._scans += 1
        return newly_changed

    def acknowledge(self, keys: Iterable[str]) -> set[str]:
        """Remove ``keys`` from the changed set; return the ones removed."""
        removed = self._changed.intersection(keys)
        self._changed -= removed
        return removed

    def acknowledge_item(self, key: str) -> bool:
        return bool(self.acknowledge((key,)))

    def acknowledge_section(self, document: TodoDocument, path: str) -> set[str]:
        """Acknowledge every changed key under the section at ``path``."""
        return self.acknowledge(section_item_keys(document, path))

    def section_has_changes(self, document: TodoDocument, path: str) -> bool:
        return not self._changed.isdisjoint(section_item_keys(document, path))

    def reset(self) -> None:
        """Forget everything; the next observe() is a first scan."""
        self._previous = {}
        self._changed = set()
        self._scans = 0
