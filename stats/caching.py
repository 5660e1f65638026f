from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

VOLATILE_KEYS = frozenset({"lastUpdated"})


def compute_etag(payload: Mapping[str, Any]) -> str:
    """Weak validator over the payload, ignoring generation timestamps."""
    stable = {key: value for key, value in payload.items() if key not in VOLATILE_KEYS}
    encoded = json.dumps(stable, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha1(encoded.encode("utf-8")).hexdigest()
    return f'W/"{digest}"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """Evaluate an If-None-Match header against `etag` (weak comparison)."""
    if not if_none_match:
        return False
    candidates = [token.strip() for token in if_none_match.split(",") if token.strip()]
    if "*" in candidates:
        return True
    bare = etag[2:] if etag.startswith("W/") else etag
    for candidate in candidates:
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == bare:
            return True
    return False
