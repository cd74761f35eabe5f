"""Watcher configuration.

Defaults < ``TODOWATCH_*`` environment variables < explicit overrides
(script flags). Values are validated at construction time.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

ENV_PREFIX = "TODOWATCH_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True, slots=True)
class WatchConfig:
    debounce_sec: float = 0.3          # coalesce notifications within this window
    read_timeout_sec: float = 2.0      # abandon a stalled read after this long
    poll: bool = False                 # PollingObserver instead of native events
    poll_interval_sec: float = 1.0
    scan_wait_timeout_sec: float = 10.0  # max wait of a manual rescan behind another

    def __post_init__(self) -> None:
        if self.debounce_sec < 0:
            raise ValueError(f"debounce_sec must be >= 0, got {self.debounce_sec}")
        for name in ("read_timeout_sec", "poll_interval_sec", "scan_wait_timeout_sec"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WatchConfig:
        """Build a config from ``TODOWATCH_*`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            values[f.name] = _coerce(f.name, raw, bool if f.type == "bool" else float)
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> WatchConfig:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


def _coerce(name: str, raw: str, kind: type) -> Any:
    value = raw.strip()
    if kind is bool:
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"{ENV_PREFIX}{name.upper()} must be a boolean, got {raw!r}")
    try:
        return float(value)
    except ValueError:
        raise ValueError(
            f"{ENV_PREFIX}{name.upper()} must be a number, got {raw!r}"
        ) from None
