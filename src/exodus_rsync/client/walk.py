"""Enumerate files of a source tree as SyncItems."""

from __future__ import annotations

import logging
import os
import stat
from collections.abc import Iterator

from exodus_rsync.client.types import SyncItem, WalkError
from exodus_rsync.core.hashing import compute_file_hash

logger = logging.getLogger(__name__)


def walk(src: str) -> Iterator[SyncItem]:
    """Yield a SyncItem for every regular file under src.

    Directories are visited in sorted order so that item order is stable
    between runs. Symlinks and special files are skipped.

    Args:
        src: Source file or directory.

    Yields:
        One SyncItem per regular file.

    Raises:
        WalkError: If the source or any file in it can't be read.
    """
    try:
        st = os.lstat(src)
    except OSError as e:
        raise WalkError(f"can't read {src}: {e}") from e

    if stat.S_ISREG(st.st_mode):
        yield _item(src)
        return

    if not stat.S_ISDIR(st.st_mode):
        logger.debug(f"Skipping non-regular source {src}")
        return

    def on_error(e: OSError) -> None:
        raise WalkError(f"can't read {e.filename}: {e}") from e

    for dirpath, dirnames, filenames in os.walk(src, onerror=on_error):
        dirnames.sort()
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            try:
                mode = os.lstat(path).st_mode
            except OSError as e:
                raise WalkError(f"can't read {path}: {e}") from e

            if not stat.S_ISREG(mode):
                logger.debug(f"Skipping non-regular file {path}")
                continue

            yield _item(path)


def _item(path: str) -> SyncItem:
    try:
        key = compute_file_hash(path)
    except OSError as e:
        raise WalkError(f"can't read {path}: {e}") from e
    logger.debug(f"Walked {path} ({key})")
    return SyncItem(src_path=path, key=key)
