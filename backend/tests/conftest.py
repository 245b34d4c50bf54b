"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend and reset module-level state
(telemetry counters, the webhook's guard singleton, env toggles) so tests
stay independent in full-suite runs.
"""
import sys
from pathlib import Path

import pytest

# Ensure the repo root and this directory are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
TESTS_DIR = Path(__file__).resolve().parent
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_guard_telemetry():
    """Clear in-memory counters so assertions only see the current test."""
    from backend.guard import telemetry

    telemetry.reset_for_tests()
    yield
    telemetry.reset_for_tests()


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Keep env-driven settings from leaking between tests.

    Behavior:
        - Default to the dev environment unless a test opts into prod.
        - Clear the webhook secret and every SWATCH_* override.
    """
    for var in (
        "SWATCH_ENV",
        "SWATCH_WEBHOOK_SECRET",
        "SWATCH_RECORD_STORE",
        "SWATCH_STORAGE_BUCKET",
        "SWATCH_NAMESPACE_PREFIX",
        "SWATCH_STORAGE_BUDGET_BYTES",
        "SWATCH_RATE_WINDOW_SECONDS",
        "SWATCH_RATE_CEILING",
        "SWATCH_MARKER_RETENTION_SECONDS",
        "SWATCH_MARKER_PURGE_PROBABILITY",
        "SWATCH_EVICTION_WORKERS",
        "AUTO_CREATE_STORAGE_BUCKETS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_webhook_guard():
    """Drop any guard a test injected into the webhook router."""
    yield
    try:
        from backend.web.routes import storage_events

        storage_events.set_guard(None)
    except Exception:
        pass
