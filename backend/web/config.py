"""
Configuration and startup security checks for the storage guard service.

Why: The guard deletes user data with service-role credentials. A deployment
with a missing webhook secret would let anyone trigger evictions, so
production-like environments must fail fast on such settings while local
development stays permissive.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def is_prod_like() -> bool:
    return _is_prod_like(os.getenv("SWATCH_ENV", "dev"))


def get_webhook_secret() -> str:
    """Return the shared secret expected on storage webhooks ("" when unset)."""
    return (os.getenv("SWATCH_WEBHOOK_SECRET") or "").strip()


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks:
    - Supabase Service Role key must be set and not a known dummy placeholder.
    - The webhook secret must be set and not a placeholder.
    - DATABASE_URL / SWATCH_DATABASE_URL must not explicitly disable TLS.
    - The in-memory record store is not allowed.
    """
    if not is_prod_like():
        return  # dev/test remain permissive

    srole = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )

    secret = get_webhook_secret()
    if not secret or secret.upper().startswith("CHANGE_ME"):
        raise SystemExit("Refusing to start: SWATCH_WEBHOOK_SECRET is unset or a placeholder in production.")

    for key in ("DATABASE_URL", "SWATCH_DATABASE_URL"):
        if "sslmode=disable" in os.getenv(key, ""):
            raise SystemExit(
                f"Refusing to start: {key} contains sslmode=disable in production. Use sslmode=require or verify TLS."
            )

    if (os.getenv("SWATCH_RECORD_STORE") or "").strip().lower() == "memory":
        raise SystemExit("Refusing to start: SWATCH_RECORD_STORE=memory is for development only.")


__all__ = ["ensure_secure_config_on_startup", "get_webhook_secret", "is_prod_like"]
