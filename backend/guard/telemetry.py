"""
In-memory telemetry for the storage guard handlers.

Intent:
    Count evictions, rate-limit decisions and swallowed best-effort failures
    so operators (and tests) can see what the handlers did without parsing
    logs. Values live in process memory until an exporter scrapes them.
"""
from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Dict, Tuple

LabelKey = Tuple[Tuple[str, str], ...]
_counters: Dict[str, Dict[LabelKey, int]] = defaultdict(dict)
_gauges: Dict[str, Dict[LabelKey, float]] = defaultdict(dict)
_lock = Lock()


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def increment_counter(name: str, *, amount: int = 1, **labels: str) -> None:
    """Increase a named counter by `amount` (defaults to 1)."""
    if amount == 0:
        return
    key = _label_key(labels)
    with _lock:
        _counters[name][key] = _counters[name].get(key, 0) + amount


def adjust_gauge(name: str, delta: float, **labels: str) -> None:
    """Adjust a gauge by `delta`, clamping the stored value to zero or above."""
    key = _label_key(labels)
    with _lock:
        new_value = _gauges[name].get(key, 0.0) + float(delta)
        _gauges[name][key] = new_value if new_value > 0.0 else 0.0


def counter_value(name: str, **labels: str) -> int:
    """Return one counter cell, 0 when never incremented."""
    with _lock:
        return _counters.get(name, {}).get(_label_key(labels), 0)


def gauge_value(name: str, **labels: str) -> float:
    """Return one gauge cell, 0.0 when never adjusted."""
    with _lock:
        return _gauges.get(name, {}).get(_label_key(labels), 0.0)


def reset_for_tests() -> None:
    """Clear all counters and gauges. Intended for pytest fixtures."""
    with _lock:
        _counters.clear()
        _gauges.clear()
