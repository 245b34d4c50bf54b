"Swatchbook storage guard"
from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from backend.web import config as _cfg
from backend.web.routes.storage_events import storage_events_router


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via SWATCH_ENABLE_DOTENV (default true outside pytest).
    """
    import sys

    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("SWATCH_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("swatchbook.web")

app = FastAPI(
    title="Swatchbook Storage Guard",
    description="Storage budget and upload-rate enforcement for fabric swatch uploads",
    version="0.1.0",
)

app.include_router(storage_events_router)


@app.get("/health")
async def health():
    return JSONResponse({"status": "ok"}, headers={"Cache-Control": "no-store"})
