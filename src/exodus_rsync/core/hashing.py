"""Content keys for files published through exodus-gw."""

from __future__ import annotations

import hashlib
from pathlib import Path

READ_BLOCK_SIZE = 64 * 1024


def compute_file_hash(path: Path | str) -> str:
    """Compute SHA-256 hash of a file.

    Reads the file in blocks to handle large files efficiently.

    Args:
        path: Path to the file to hash.

    Returns:
        Hexadecimal SHA-256 hash string, used as the blob object key.
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(READ_BLOCK_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()
