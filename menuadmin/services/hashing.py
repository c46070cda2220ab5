from __future__ import annotations

import gzip
import hashlib
import json
from typing import Any


def serialize_payload(payload: Any) -> str:
    """Compact JSON, key order preserved as received.

    The fingerprint is defined over this exact text, so two batches only
    dedupe when they serialize byte-identically.
    """
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def content_hash(payload: Any) -> str:
    return sha256_hex(serialize_payload(payload))


def gzip_text(text: str) -> bytes:
    return gzip.compress(text.encode("utf-8"), mtime=0)
