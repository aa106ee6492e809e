"""Content hashing and cache directory helpers.

Cache keys are derived from the exact bytes being cached, so identical
audio maps to the same entry across runs, files and workspaces.
"""

from __future__ import annotations

import hashlib
from pathlib import Path


def content_hash(data: bytes) -> str:
    """Return the SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def get_cache_dir(workspace_dir: Path, category: str) -> Path:
    """Get or create a cache subdirectory (e.g. "audio")."""
    cache_dir = Path(workspace_dir) / ".cache" / category
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def file_key(file_path: Path, **params: object) -> str:
    """Compute a cache key from file metadata and parameters.

    Uses resolved path, size, and mtime; file contents are never read.
    Extra keyword arguments (sample_rate, etc.) are included in the hash.

    Returns:
        16-char hex string.
    """
    resolved = Path(file_path).resolve()
    stat = resolved.stat()
    parts = f"{resolved}|{stat.st_size}|{stat.st_mtime_ns}"
    for k, v in sorted(params.items()):
        parts += f"|{k}={v}"
    return hashlib.sha256(parts.encode()).hexdigest()[:16]
