"""Content-derived identifiers."""

from __future__ import annotations

import hashlib
import json
import secrets
from typing import Any


def canonical_json(payload: Any) -> str:
    """Stable JSON encoding used for hashing."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def new_nonce() -> str:
    return secrets.token_hex(8)


def derive_id(*parts: Any) -> str:
    """Hash the given parts into a ``0x``-prefixed hex identifier."""
    digest = hashlib.sha256(canonical_json(list(parts)).encode("utf-8")).hexdigest()
    return f"0x{digest}"


def job_id_for(client_ref: str, content: dict[str, Any], nonce: str) -> str:
    return derive_id("job", client_ref, content, nonce)


def escrow_id_for(job_id: str, offer_id: str, nonce: str) -> str:
    return derive_id("escrow", job_id, offer_id, nonce)


def offer_id_for(job_id: str, worker_ref: str) -> str:
    return derive_id("offer", job_id, worker_ref)


def delivery_ref_for(artifact: dict[str, Any]) -> str:
    """Content address for a delivered artifact."""
    digest = hashlib.sha256(canonical_json(artifact).encode("utf-8")).hexdigest()
    return f"sha256:{digest}"
