"""Content-derived identifiers for persisted rows."""

from __future__ import annotations

import hashlib
import uuid


def make_stable_id(natural_key: str) -> str:
    """Return a UUID string derived from the first 16 bytes of SHA-256(key).

    The same key always yields the same id, across processes and runtimes, so
    repeated ingestion ticks overwrite rows instead of duplicating them.
    """
    digest = hashlib.sha256(natural_key.encode("utf-8")).digest()
    return str(uuid.UUID(bytes=digest[:16]))


def pr_key(repo_path: str, number: int) -> str:
    return f"{repo_path}#{number}"


def check_key(repo_path: str, number: int, check_name: str) -> str:
    return f"{pr_key(repo_path, number)}#{check_name}"


def comment_key(repo_path: str, number: int, kind: str, comment_id: str) -> str:
    return f"{pr_key(repo_path, number)}#{kind}#{comment_id}"
