"""Content hashing for cache keys.

MD5 is used purely as a content fingerprint (cache invalidation), never
for anything security-related.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Iterable


def md5_hex(text: str) -> str:
    """Hex MD5 digest of *text* encoded as UTF-8."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def content_hash(parts: Iterable[str], salt: str = "") -> str:
    """Digest of a multi-file dataset.

    Each part is hashed on its own and the digests are hashed together in
    order, so reordering, adding or editing any part changes the result.
    *salt* is folded in last (e.g. the embedding model id).
    """
    digests = "".join(md5_hex(p) for p in parts)
    return md5_hex(digests + salt)


def json_fingerprint(obj: Any) -> str:
    """Digest of an in-memory JSON-compatible object (insertion order kept)."""
    return md5_hex(json.dumps(obj, separators=(",", ":"), ensure_ascii=False))
