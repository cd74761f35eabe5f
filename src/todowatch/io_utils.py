"""I/O utilities: fail-fast text reads and orjson output.

``read_text`` never raises for ordinary file problems. It returns
``Ok(text)`` or ``Err(ReadError)`` so callers can keep their last-known-good
state. Reads run on a small worker pool and are abandoned after
``timeout`` seconds (e.g. a stalled network mount) rather than blocking the
caller.
"""
from __future__ import annotations

import sys
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Any

import orjson

from todowatch.todo_types import Err, Ok, ReadError, Result

# Used only by callers that do not pass their own executor. Each
# WatchOrchestrator owns a separate pool.
_default_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="todowatch-read")


def _read_bytes(path: Path) -> bytes:
    return path.read_bytes()


def read_text(
    path: Path,
    *,
    timeout: float = 2.0,
    executor: Executor | None = None,
) -> Result[str, ReadError]:
    """Read a whole file as UTF-8 text on ``executor``.

    Failure kinds: "missing" (not found / not a file), "unreadable" (any
    other OSError, or the executor was shut down), "decode" (not valid
    UTF-8), "timeout". A timed-out read keeps its worker until the OS call
    returns.
    """
    pool = executor or _default_pool
    try:
        future = pool.submit(_read_bytes, path)
    except RuntimeError as exc:
        return Err(ReadError(str(path), "unreadable", str(exc)))
    try:
        raw = future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        return Err(ReadError(str(path), "timeout", f"read exceeded {timeout:g}s"))
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
        return Err(ReadError(str(path), "missing", exc.strerror or str(exc)))
    except OSError as exc:
        return Err(ReadError(str(path), "unreadable", exc.strerror or str(exc)))

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        return Err(ReadError(str(path), "decode", str(exc)))
    return Ok(text)


def list_markdown_files(directory: Path) -> Result[list[Path], ReadError]:
    """Top-level ``*.md`` files in ``directory``, sorted by file name."""
    try:
        entries = list(directory.iterdir())
    except FileNotFoundError as exc:
        return Err(ReadError(str(directory), "missing", exc.strerror or str(exc)))
    except OSError as exc:
        return Err(ReadError(str(directory), "unreadable", exc.strerror or str(exc)))
    files = [p for p in entries if p.suffix == ".md" and p.is_file()]
    return Ok(sorted(files, key=lambda p: p.name))


def dumps_json(obj: Any, *, pretty: bool = True) -> bytes:
    """Serialize with orjson; ``pretty`` adds 2-space indentation."""
    opts = orjson.OPT_INDENT_2 if pretty else 0
    return orjson.dumps(obj, option=opts)


def dump_json(obj: Any, *, pretty: bool = True) -> None:
    """Write ``obj`` as JSON to stdout followed by a newline."""
    sys.stdout.buffer.write(dumps_json(obj, pretty=pretty))
    sys.stdout.buffer.write(b"\n")
    sys.stdout.flush()


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(dumps_json(obj, pretty=pretty))
