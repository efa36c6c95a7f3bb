"""Tests for the source walker."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

import pytest

from exodus_rsync.client.types import WalkError
from exodus_rsync.client.walk import walk


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class TestWalk:
    """Tests for walk()."""

    def test_walks_tree_in_sorted_order(self, tmp_path: Path) -> None:
        """Should yield every regular file, sorted, keyed by content hash."""
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "z.txt").write_bytes(b"z")
        (tmp_path / "b" / "a.txt").write_bytes(b"a")
        (tmp_path / "a.txt").write_bytes(b"top")

        items = list(walk(str(tmp_path)))

        assert [Path(i.src_path).relative_to(tmp_path).as_posix() for i in items] == [
            "a.txt",
            "b/a.txt",
            "b/z.txt",
        ]
        assert items[0].key == sha256(b"top")

    def test_single_file(self, tmp_path: Path) -> None:
        """A file source should yield exactly one item."""
        path = tmp_path / "one.bin"
        path.write_bytes(b"\x00\x01")

        items = list(walk(str(path)))

        assert len(items) == 1
        assert items[0].src_path == str(path)
        assert items[0].key == sha256(b"\x00\x01")

    def test_same_content_same_key(self, tmp_path: Path) -> None:
        """Files with identical content should share a key."""
        (tmp_path / "x").write_text("same")
        (tmp_path / "y").write_text("same")

        keys = {item.key for item in walk(str(tmp_path))}

        assert len(keys) == 1

    def test_skips_symlinks(self, tmp_path: Path) -> None:
        """Symlinks should not produce items."""
        (tmp_path / "real.txt").write_text("data")
        os.symlink(tmp_path / "real.txt", tmp_path / "link.txt")

        items = list(walk(str(tmp_path)))

        assert [Path(i.src_path).name for i in items] == ["real.txt"]

    def test_missing_source_fails(self, tmp_path: Path) -> None:
        """A missing source should raise WalkError."""
        with pytest.raises(WalkError, match="can't read"):
            list(walk(str(tmp_path / "missing")))
