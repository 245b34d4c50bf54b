"""
Helpers for swatch storage paths.

Why:
    Keep the parsing of upload paths and stored references (raw paths or
    download URLs) in one testable place, shared by both handlers.

Conventions:
    - Swatch uploads: {namespace}/{owner}/{object name}, e.g. fabrics/u1/a.jpg
    - Anything outside "{namespace}/{owner}/..." is not a swatch upload.

Security:
    - Resolved references never contain ".." segments.
"""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import unquote, urlparse

_SUPABASE_OBJECT_RE = re.compile(r"^/storage/v1/object/(?:public|sign|authenticated)/([^/]+)/(.+)$")


class MalformedReferenceError(ValueError):
    """Raised when a stored object reference cannot be turned into a path."""


def parse_owner_from_path(path: str | None, *, namespace_prefix: str) -> Optional[str]:
    """Return the owner id of a swatch upload path, or None for unrelated paths.

    A swatch path has at least three segments: the namespace, the owner and
    the object name (possibly nested). Unrelated uploads are not an error.
    """
    if not path:
        return None
    namespace = namespace_prefix.strip("/")
    parts = path.lstrip("/").split("/")
    if len(parts) < 3 or parts[0] != namespace:
        return None
    owner = parts[1]
    if not owner or owner in {".", ".."}:
        return None
    if not "/".join(parts[2:]).strip("/"):
        return None
    return owner


def _clean_relative_path(path: str, *, bucket: str) -> str:
    norm = path.strip().lstrip("/")
    prefix = f"{bucket}/"
    if bucket and norm.startswith(prefix):
        norm = norm[len(prefix):]
    if not norm or any(seg in {"", ".", ".."} for seg in norm.split("/")):
        raise MalformedReferenceError("invalid_object_path")
    return norm


def resolve_object_ref(ref: str | None, *, bucket: str) -> str:
    """Resolve a stored `object_ref` to a bucket-relative object path.

    Accepted shapes:
        - raw paths ("fabrics/u1/a.jpg", optionally prefixed with the bucket)
        - Supabase object URLs (/storage/v1/object/{public|sign|authenticated}/{bucket}/{path})
        - Firebase-style download URLs (.../b/{bucket}/o/{url-encoded path}?alt=media)

    Raises:
        MalformedReferenceError when no object path can be extracted.
    """
    raw = (ref or "").strip()
    if not raw:
        raise MalformedReferenceError("empty_reference")
    if "://" not in raw:
        return _clean_relative_path(unquote(raw), bucket=bucket)

    parsed = urlparse(raw)
    if parsed.scheme not in {"http", "https"}:
        raise MalformedReferenceError(f"unsupported_scheme: {parsed.scheme}")
    match = _SUPABASE_OBJECT_RE.match(parsed.path or "")
    if match:
        if match.group(1) != bucket:
            raise MalformedReferenceError("foreign_bucket")
        return _clean_relative_path(unquote(match.group(2)), bucket=bucket)
    marker = f"{bucket}/o/"
    if marker in (parsed.path or ""):
        encoded = parsed.path.split(marker, 1)[1]
        return _clean_relative_path(unquote(encoded), bucket=bucket)
    raise MalformedReferenceError("unrecognized_reference")


__all__ = [
    "MalformedReferenceError",
    "parse_owner_from_path",
    "resolve_object_ref",
]
