"""Watch orchestration: read -> parse -> key -> detect, once per scan.

One ``WatchOrchestrator`` owns one target (a markdown file, or a directory
whose top-level ``*.md`` files form a collection) and everything derived
from it: the current documents, the scan state, and the changed-key set.

Sequencing rules:
    - A scan always re-reads and re-parses everything; nothing is patched.
    - Only one scan runs at a time. Requests that arrive mid-scan set a
      pending flag and are served by exactly one follow-up scan.
    - Filesystem notifications go through a ``Debouncer`` so a burst of
      editor writes produces one scan.
    - Read failures keep the last-known-good documents and scan state and
      are reported through ``WatchSnapshot.status`` / ``errors``.
    - Switching target bumps an epoch; results of an in-flight scan for the
      old target are discarded, and the next scan is a first scan.
    - watch() and stop() run one at a time. Each target gets its own read
      pool, so no worker is shared between targets or orchestrators.
"""
from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from todowatch.change_detector import ChangeTracker
from todowatch.config import WatchConfig
from todowatch.identity import completion_map
from todowatch.io_utils import list_markdown_files, read_text
from todowatch.markdown_parser import parse
from todowatch.todo_types import (
    Err,
    ReadError,
    Result,
    ScanStatus,
    TodoDocument,
)

log = logging.getLogger("todowatch.watcher")

type TextReader = Callable[[Path], Result[str, ReadError]]
type ScanListener = Callable[[WatchSnapshot, frozenset[str]], None]


# ---------------------------------------------------------------------------
# Snapshot handed to consumers
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class WatchSnapshot:
    """Immutable view of a target after its most recent scan."""

    target: str | None
    documents: tuple[TodoDocument, ...]
    changed: frozenset[str]
    status: ScanStatus
    errors: tuple[str, ...] = ()
    scan_count: int = 0
    scanned_at: str | None = None

    def document(self, name: str) -> TodoDocument | None:
        for doc in self.documents:
            if doc.name == name:
                return doc
        return None


_IDLE = WatchSnapshot(target=None, documents=(), changed=frozenset(), status=ScanStatus.IDLE)


# ---------------------------------------------------------------------------
# Debounce + change signal
# ---------------------------------------------------------------------------

class Debouncer:
    """Call ``callback`` once, ``delay`` seconds after the last trigger()."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self._delay = delay
        self._callback = callback
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._callback()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None


class SignalSource(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...


class _TargetEventHandler(FileSystemEventHandler):
    """Forward events that concern the watched target; ignore the rest."""

    def __init__(self, target: Path, is_dir: bool, callback: Callable[[], None]) -> None:
        super().__init__()
        self._target = target
        self._is_dir = is_dir
        self._callback = callback

    def _concerns_target(self, raw_path: str | bytes) -> bool:
        if not raw_path:
            return False
        path = Path(os.fsdecode(raw_path))
        if self._is_dir:
            return path.suffix == ".md"
        return path.name == self._target.name

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        # Atomic-save editors write a temp file and rename it over the target.
        paths = (event.src_path, getattr(event, "dest_path", ""))
        if any(self._concerns_target(p) for p in paths):
            self._callback()


class FileSystemSignal:
    """watchdog-backed "target may have changed" signal.

    A file target is watched through its parent directory so that
    rename-over saves are seen. ``poll=True`` uses ``PollingObserver`` for
    filesystems without native events (network mounts, some containers).
    """

    def __init__(
        self,
        target: Path,
        is_dir: bool,
        callback: Callable[[], None],
        *,
        poll: bool = False,
        poll_interval: float = 1.0,
    ) -> None:
        self._target = target
        self._watch_dir = target if is_dir else target.parent
        self._handler = _TargetEventHandler(target, is_dir, callback)
        self._poll = poll
        self._poll_interval = poll_interval
        self._observer: BaseObserver | None = None

    def start(self) -> None:
        observer: BaseObserver = (
            PollingObserver(timeout=self._poll_interval) if self._poll else Observer()
        )
        try:
            observer.schedule(self._handler, str(self._watch_dir), recursive=False)
            observer.start()
        except OSError as exc:
            log.warning(
                "File events unavailable for %s (%s); manual rescans only",
                self._watch_dir, exc,
            )
            return
        self._observer = observer
        log.debug("Watching %s via %s", self._watch_dir, type(observer).__name__)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None


type SignalFactory = Callable[[Path, bool, Callable[[], None]], SignalSource]


def filesystem_signal_factory(config: WatchConfig) -> SignalFactory:
    def factory(target: Path, is_dir: bool, callback: Callable[[], None]) -> SignalSource:
        return FileSystemSignal(
            target, is_dir, callback,
            poll=config.poll, poll_interval=config.poll_interval_sec,
        )
    return factory


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class _LoadResult:
    documents: tuple[TodoDocument, ...] | None  # None -> nothing usable, keep old state
    status: ScanStatus
    errors: tuple[str, ...]


class WatchOrchestrator:
    """Sequence scans for a single watched target and expose the results.

    Usage::

        watcher = WatchOrchestrator(WatchConfig.from_env())
        watcher.watch(Path("TODO.md"))
        snap = watcher.snapshot()
        ...
        watcher.acknowledge(snap.changed)
        watcher.stop()

    With ``filesystem_events=False`` no observer is started; ``notify()``
    can then be wired to any external signal. ``signal_factory`` replaces
    the watchdog-backed source.
    """

    def __init__(
        self,
        config: WatchConfig | None = None,
        *,
        reader: TextReader | None = None,
        filesystem_events: bool = True,
        signal_factory: SignalFactory | None = None,
    ) -> None:
        self._config = config or WatchConfig()
        self._reader: TextReader = reader or self._read_file
        self._read_pool: ThreadPoolExecutor | None = None
        self._signal_factory: SignalFactory | None = None
        if filesystem_events:
            self._signal_factory = signal_factory or filesystem_signal_factory(self._config)
        self._debouncer = Debouncer(self._config.debounce_sec, self.request_rescan)
        self._signal: SignalSource | None = None
        self._listeners: list[ScanListener] = []

        # Serialises watch() and stop(); never taken while holding _cond.
        self._switch_lock = threading.Lock()
        self._cond = threading.Condition()
        self._target: Path | None = None
        self._is_dir = False
        self._epoch = 0
        self._tracker = ChangeTracker()
        self._documents: tuple[TodoDocument, ...] = ()
        self._snapshot = _IDLE
        self._scanning = False
        self._pending = False
        self._scans_started = 0
        self._scans_finished = 0
        self._scan_thread: int | None = None

    # -- target lifecycle ---------------------------------------------------

    @property
    def config(self) -> WatchConfig:
        return self._config

    def watch(self, target: Path) -> WatchSnapshot:
        """Switch to ``target``, run its first scan, and start listening.

        Concurrent watch() / stop() calls are applied one at a time, so the
        returned snapshot is always for ``target`` and at most one change
        signal is running.
        """
        target = Path(target).expanduser().resolve()
        with self._switch_lock:
            self._stop_signal()
            old_pool = self._read_pool
            with self._cond:
                self._epoch += 1
                self._target = target
                self._is_dir = target.is_dir()
                self._tracker.reset()
                self._documents = ()
                self._snapshot = WatchSnapshot(
                    target=str(target), documents=(), changed=frozenset(),
                    status=ScanStatus.IDLE,
                )
                # One read pool per target; reads stalled on the old one stay there.
                self._read_pool = ThreadPoolExecutor(
                    max_workers=2, thread_name_prefix="todowatch-read"
                )
            if old_pool is not None:
                old_pool.shutdown(wait=False, cancel_futures=True)
            log.info("Watching %s (%s)", target, "directory" if self._is_dir else "file")
            snap = self.rescan()
            if self._signal_factory is not None:
                signal = self._signal_factory(target, self._is_dir, self.notify)
                signal.start()
                with self._cond:
                    self._signal = signal
            return snap

    def stop(self) -> None:
        """Stop listening, release the read workers, and return to Idle."""
        with self._switch_lock:
            self._stop_signal()
            with self._cond:
                self._epoch += 1
                self._target = None
                self._tracker.reset()
                self._documents = ()
                self._snapshot = _IDLE
                pool, self._read_pool = self._read_pool, None
            if pool is not None:
                pool.shutdown(wait=False, cancel_futures=True)

    def _stop_signal(self) -> None:
        self._debouncer.cancel()
        with self._cond:
            signal, self._signal = self._signal, None
        if signal is not None:
            signal.stop()

    def _read_file(self, path: Path) -> Result[str, ReadError]:
        with self._cond:
            pool = self._read_pool
        if pool is None:
            return Err(ReadError(str(path), "unreadable", "watcher is stopped"))
        return read_text(path, timeout=self._config.read_timeout_sec, executor=pool)

    # -- scan triggers ----------------------------------------------------------

    def notify(self) -> None:
        """External "target may have changed" signal (debounced)."""
        self._debouncer.trigger()

    def request_rescan(self) -> None:
        """Non-blocking rescan; coalesced into a running scan if there is one."""
        self._request_scan(wait=False)

    def rescan(self) -> WatchSnapshot:
        """Manual rescan. Waits (bounded) for a scan that started after this call.

        Called from a scan listener, it queues the follow-up scan and returns
        the current snapshot at once.
        """
        return self._request_scan(wait=True)

    def _request_scan(self, *, wait: bool) -> WatchSnapshot:
        with self._cond:
            if self._target is None:
                return self._snapshot
            if self._scanning:
                self._pending = True
                # The scanning thread (a listener) cannot wait on itself.
                if wait and self._scan_thread != threading.get_ident():
                    needed = self._scans_started + 1
                    done = self._cond.wait_for(
                        lambda: self._scans_finished >= needed,
                        timeout=self._config.scan_wait_timeout_sec,
                    )
                    if not done:
                        log.warning("Rescan still queued after %.1fs; returning last snapshot",
                                    self._config.scan_wait_timeout_sec)
                return self._snapshot
            self._scanning = True
            self._scan_thread = threading.get_ident()

        try:
            while True:
                with self._cond:
                    self._scans_started += 1
                    self._pending = False
                event = self._scan_once()
                if event is not None:
                    self._emit(*event)
                with self._cond:
                    self._scans_finished += 1
                    self._cond.notify_all()
                    if not self._pending:
                        self._scanning = False
                        self._scan_thread = None
                        return self._snapshot
        except BaseException:
            with self._cond:
                self._scanning = False
                self._scan_thread = None
                self._scans_finished = self._scans_started
                self._cond.notify_all()
            raise

    # -- one scan -------------------------------------------------------------

    def _scan_once(self) -> tuple[WatchSnapshot, frozenset[str]] | None:
        """Run one scan; return (snapshot, newly changed keys) if committed."""
        with self._cond:
            target, is_dir, epoch = self._target, self._is_dir, self._epoch
            previous = {doc.name: doc for doc in self._documents}
        if target is None:
            return None

        if is_dir:
            result = self._load_directory(target, previous)
        else:
            result = self._load_file(target)

        with self._cond:
            if epoch != self._epoch:
                log.debug("Discarding scan of %s: target switched mid-scan", target)
                return None
            scanned_at = datetime.now(UTC).isoformat()
            if result.documents is None:
                for err in result.errors:
                    log.warning("Scan failed, keeping last state: %s", err)
                self._snapshot = WatchSnapshot(
                    target=str(target),
                    documents=self._documents,
                    changed=self._tracker.changed,
                    status=result.status,
                    errors=result.errors,
                    scan_count=self._tracker.scans,
                    scanned_at=scanned_at,
                )
                return self._snapshot, frozenset()

            for err in result.errors:
                log.warning("Keeping stale document: %s", err)
            self._documents = result.documents
            newly_changed = self._tracker.observe(completion_map(result.documents))
            for key in sorted(newly_changed):
                log.info("Changed: %s", key)
            self._snapshot = WatchSnapshot(
                target=str(target),
                documents=self._documents,
                changed=self._tracker.changed,
                status=result.status,
                errors=result.errors,
                scan_count=self._tracker.scans,
                scanned_at=scanned_at,
            )
            log.debug(
                "Scan #%d of %s: %d document(s), %d newly changed, %d pending",
                self._tracker.scans, target, len(self._documents),
                len(newly_changed), len(self._tracker.changed),
            )
            return self._snapshot, frozenset(newly_changed)

    def _load_file(self, target: Path) -> _LoadResult:
        result = self._reader(target)
        if isinstance(result, Err):
            return _LoadResult(None, ScanStatus.FAILED, (result.error.reason,))
        doc = TodoDocument.from_path(target, parse(result.value))
        return _LoadResult((doc,), ScanStatus.OK, ())

    def _load_directory(
        self,
        target: Path,
        previous: dict[str, TodoDocument],
    ) -> _LoadResult:
        listing = list_markdown_files(target)
        if isinstance(listing, Err):
            return _LoadResult(None, ScanStatus.FAILED, (listing.error.reason,))

        documents: list[TodoDocument] = []
        errors: list[str] = []
        for path in listing.value:
            result = self._reader(path)
            if isinstance(result, Err):
                errors.append(result.error.reason)
                stale = previous.get(path.name)
                if stale is not None:
                    documents.append(stale)
                continue
            documents.append(TodoDocument.from_path(path, parse(result.value)))

        if errors and len(errors) == len(listing.value):
            return _LoadResult(None, ScanStatus.FAILED, tuple(errors))
        status = ScanStatus.PARTIAL if errors else ScanStatus.OK
        return _LoadResult(tuple(documents), status, tuple(errors))

    # -- consumer API -----------------------------------------------------------

    def add_listener(self, listener: ScanListener) -> None:
        """Call ``listener(snapshot, newly_changed)`` after every committed scan.

        Listeners run on the scanning thread, outside the state lock. A
        listener may call rescan(); the follow-up scan runs after it returns.
        """
        with self._cond:
            self._listeners.append(listener)

    def _emit(self, snapshot: WatchSnapshot, newly_changed: frozenset[str]) -> None:
        with self._cond:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot, newly_changed)
            except Exception:
                log.exception("Scan listener %r failed", listener)

    def snapshot(self) -> WatchSnapshot:
        with self._cond:
            return self._snapshot

    def acknowledge(self, keys: Iterable[str]) -> set[str]:
        """Clear ``keys`` from the changed set; returns the keys removed."""
        with self._cond:
            removed = self._tracker.acknowledge(keys)
            self._republish()
        return removed

    def acknowledge_item(self, key: str) -> bool:
        return bool(self.acknowledge((key,)))

    def acknowledge_section(self, document_name: str, section_path: str) -> set[str]:
        """Acknowledge every changed item under a section.

        Raises:
            KeyError: unknown document or section path.
        """
        with self._cond:
            doc = self._document_named(document_name)
            removed = self._tracker.acknowledge_section(doc, section_path)
            self._republish()
        return removed

    def section_has_changes(self, document_name: str, section_path: str) -> bool:
        with self._cond:
            doc = self._document_named(document_name)
            return self._tracker.section_has_changes(doc, section_path)

    def _document_named(self, name: str) -> TodoDocument:
        for doc in self._documents:
            if doc.name == name:
                return doc
        raise KeyError(f"No document named {name!r}")

    def _republish(self) -> None:
        snap = self._snapshot
        self._snapshot = WatchSnapshot(
            target=snap.target,
            documents=snap.documents,
            changed=self._tracker.changed,
            status=snap.status,
            errors=snap.errors,
            scan_count=snap.scan_count,
            scanned_at=snap.scanned_at,
        )
