"""
Centralized configuration for the swatch storage guard.

Intent:
    Provide a single source of truth for the bucket, namespace prefix and the
    resource ceilings enforced by the quota and rate-limit handlers. Both
    handlers receive an immutable `GuardConfig` at construction time so tests
    can tune ceilings without touching module globals.

Behavior:
    - The defaults mirror the reference deployment: 3 GiB budget per owner,
      15 upload attempts per trailing 60 seconds, markers retained for one
      hour and purged with a 10% probability per invocation.
    - load_guard_config() reads env overrides; invalid or non-positive values
      fall back to the defaults instead of failing startup.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os
from dataclasses import dataclass


SWATCH_BUCKET_DEFAULT = "swatches"
NAMESPACE_PREFIX_DEFAULT = "fabrics"
STORAGE_BUDGET_BYTES_DEFAULT = 3 * 1024 * 1024 * 1024
RATE_WINDOW_SECONDS_DEFAULT = 60
RATE_CEILING_DEFAULT = 15
MARKER_RETENTION_SECONDS_DEFAULT = 3600
MARKER_PURGE_PROBABILITY_DEFAULT = 0.10
EVICTION_WORKERS_DEFAULT = 8


@dataclass(frozen=True, slots=True)
class GuardConfig:
    """Immutable ceilings and locations shared by both upload handlers."""

    bucket: str = SWATCH_BUCKET_DEFAULT
    namespace_prefix: str = NAMESPACE_PREFIX_DEFAULT
    storage_budget_bytes: int = STORAGE_BUDGET_BYTES_DEFAULT
    rate_window_seconds: int = RATE_WINDOW_SECONDS_DEFAULT
    rate_ceiling: int = RATE_CEILING_DEFAULT
    marker_retention_seconds: int = MARKER_RETENTION_SECONDS_DEFAULT
    marker_purge_probability: float = MARKER_PURGE_PROBABILITY_DEFAULT
    eviction_workers: int = EVICTION_WORKERS_DEFAULT

    def owner_prefix(self, owner_id: str) -> str:
        """Return the listing prefix for everything an owner has stored."""
        return f"{self.namespace_prefix.strip('/')}/{owner_id}/"


def get_swatch_bucket() -> str:
    """Return the configured swatch bucket name.

    Env:
        SWATCH_STORAGE_BUCKET – optional override; otherwise defaults to
        SWATCH_BUCKET_DEFAULT.
    """
    return (os.getenv("SWATCH_STORAGE_BUCKET") or SWATCH_BUCKET_DEFAULT).strip()


def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def _parse_probability_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not 0.0 <= value <= 1.0:
        return default
    return value


def load_guard_config() -> GuardConfig:
    """Build a GuardConfig from environment overrides.

    Env:
        SWATCH_STORAGE_BUCKET, SWATCH_NAMESPACE_PREFIX,
        SWATCH_STORAGE_BUDGET_BYTES, SWATCH_RATE_WINDOW_SECONDS,
        SWATCH_RATE_CEILING, SWATCH_MARKER_RETENTION_SECONDS,
        SWATCH_MARKER_PURGE_PROBABILITY (0..1), SWATCH_EVICTION_WORKERS (max 32).
    """
    prefix = (os.getenv("SWATCH_NAMESPACE_PREFIX") or NAMESPACE_PREFIX_DEFAULT).strip().strip("/")
    return GuardConfig(
        bucket=get_swatch_bucket(),
        namespace_prefix=prefix or NAMESPACE_PREFIX_DEFAULT,
        storage_budget_bytes=_parse_int_env("SWATCH_STORAGE_BUDGET_BYTES", STORAGE_BUDGET_BYTES_DEFAULT),
        rate_window_seconds=_parse_int_env("SWATCH_RATE_WINDOW_SECONDS", RATE_WINDOW_SECONDS_DEFAULT),
        rate_ceiling=_parse_int_env("SWATCH_RATE_CEILING", RATE_CEILING_DEFAULT),
        marker_retention_seconds=_parse_int_env(
            "SWATCH_MARKER_RETENTION_SECONDS", MARKER_RETENTION_SECONDS_DEFAULT
        ),
        marker_purge_probability=_parse_probability_env(
            "SWATCH_MARKER_PURGE_PROBABILITY", MARKER_PURGE_PROBABILITY_DEFAULT
        ),
        eviction_workers=_parse_int_env("SWATCH_EVICTION_WORKERS", EVICTION_WORKERS_DEFAULT, contract_max=32),
    )


__all__ = [
    "GuardConfig",
    "SWATCH_BUCKET_DEFAULT",
    "NAMESPACE_PREFIX_DEFAULT",
    "STORAGE_BUDGET_BYTES_DEFAULT",
    "get_swatch_bucket",
    "load_guard_config",
]
