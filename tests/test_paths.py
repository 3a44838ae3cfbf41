"""Tests for key normalization and mirror paths."""

import os
from pathlib import Path

import pytest

from s3mount.errors import InvalidKeyError
from s3mount.paths import (
    key_segments,
    lock_path,
    mirror_path,
    normalize_key,
    normalize_prefix,
)


class TestNormalizeKey:
    """Test conversion of local keys to remote keys."""

    def test_forward_slash_key_unchanged(self):
        assert normalize_key("a/b/c.txt") == "a/b/c.txt"

    def test_backslashes_replaced(self):
        assert normalize_key("a\\b\\c.txt") == "a/b/c.txt"

    def test_native_separator_replaced(self):
        key = os.sep.join(["dir", "file.txt"])
        assert normalize_key(key) == "dir/file.txt"

    def test_idempotent(self):
        once = normalize_key("x\\y/z.bin")
        assert normalize_key(once) == once

    def test_pathlike_accepted(self):
        assert normalize_key(Path("dir") / "file.txt") == "dir/file.txt"

    def test_utf8_bytes_decoded(self):
        assert normalize_key("données/é.csv".encode("utf-8")) == "données/é.csv"

    @pytest.mark.parametrize(
        "key",
        [
            b"\xff\xfe",
            "bad\udcff.txt",
            "",
            "/absolute.txt",
            "folder/",
            "../escape.txt",
            "a/../../escape.txt",
            "a//b.txt",
            "./a.txt",
            "a/./b.txt",
            "a/.",
            "nul\x00byte",
        ],
    )
    def test_invalid_keys_rejected(self, key):
        with pytest.raises(InvalidKeyError):
            normalize_key(key)

    def test_invalid_key_is_value_error(self):
        """Test that callers catching ValueError also catch invalid keys."""
        with pytest.raises(ValueError):
            normalize_key(b"\xff")

    def test_wrong_type_rejected(self):
        with pytest.raises(InvalidKeyError):
            normalize_key(42)

    def test_dots_inside_names_allowed(self):
        assert normalize_key("a/..hidden/b..c") == "a/..hidden/b..c"
        assert normalize_key(".env/.config") == ".env/.config"

    def test_aliases_of_a_key_rejected(self):
        """Test that no other spelling of a key reaches the same mirror file."""
        assert normalize_key("a/b.txt") == "a/b.txt"
        for alias in ("a//b.txt", "a/./b.txt", "./a/b.txt"):
            with pytest.raises(InvalidKeyError):
                normalize_key(alias)


class TestNormalizePrefix:
    """Test listing prefix normalization."""

    def test_empty_prefix_allowed(self):
        assert normalize_prefix("") == ""

    def test_trailing_slash_kept(self):
        assert normalize_prefix("folder\\") == "folder/"

    def test_invalid_utf8_rejected(self):
        with pytest.raises(InvalidKeyError):
            normalize_prefix(b"\xc3\x28")


class TestMirrorPath:
    """Test mirror path derivation."""

    def test_layout(self):
        assert mirror_path(Path("m"), "b", "a/b.txt") == Path("m") / "b" / "a" / "b.txt"

    def test_bucket_is_namespace(self):
        assert mirror_path(Path("m"), "one", "k") != mirror_path(Path("m"), "two", "k")

    def test_key_segments(self):
        assert key_segments("a/b/c") == ["a", "b", "c"]


class TestLockPath:
    """Test advisory lock paths."""

    def test_lock_path_outside_bucket_tree(self):
        path = lock_path(Path("m"), "b", "a/b.txt")
        assert path.parent == Path("m", ".locks", "b")
        assert path.suffix == ".lock"

    def test_lock_path_per_key(self):
        assert lock_path(Path("m"), "b", "x") != lock_path(Path("m"), "b", "y")
        assert lock_path(Path("m"), "b", "x") == lock_path(Path("m"), "b", "x")
