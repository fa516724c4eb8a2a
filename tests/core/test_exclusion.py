"""Tests for exclusion patterns and lock files."""

import os

from worldbackup.core.exclusion import ExclusionSet, is_excluded, is_lock_file


class TestIsExcluded:
    """Tests for the is_excluded predicate."""

    def test_matches_folder_name(self) -> None:
        """A pattern equal to the folder is excluded."""
        assert is_excluded(["cache"], "cache") is True

    def test_matches_nested_path(self) -> None:
        """A path below an excluded folder matches too."""
        assert is_excluded(["DIM-1"], os.path.join("DIM-1", "region")) is True

    def test_no_match(self) -> None:
        """Unrelated paths are kept."""
        assert is_excluded(["cache"], "region") is False

    def test_case_sensitive(self) -> None:
        """Matching does not fold case."""
        assert is_excluded(["Cache"], "cache") is False

    def test_plain_substring_no_glob(self) -> None:
        """Glob characters have no special meaning."""
        assert is_excluded(["*.mca"], "region") is False
        assert is_excluded(["*.mca"], "a*.mca") is True

    def test_empty_pattern_ignored(self) -> None:
        """An empty pattern does not exclude everything."""
        assert is_excluded([""], "region") is False

    def test_separator_normalized(self) -> None:
        """Patterns written with / match platform paths."""
        assert is_excluded(["world/DIM1"], os.path.join("world", "DIM1")) is True


class TestExclusionSet:
    """Tests for ExclusionSet."""

    def test_keeps_order_and_dedups(self) -> None:
        """Patterns are de-duplicated in insertion order."""
        exclusions = ExclusionSet(["b", "a", "b", ""])
        assert list(exclusions) == ["b", "a"]
        assert len(exclusions) == 2

    def test_add_pattern_strips(self) -> None:
        """Surrounding whitespace is dropped."""
        exclusions = ExclusionSet()
        exclusions.add_pattern("  logs ")
        assert list(exclusions) == ["logs"]

    def test_is_excluded(self) -> None:
        """The set delegates to is_excluded."""
        exclusions = ExclusionSet(["plugins"])
        assert exclusions.is_excluded(os.path.join("plugins", "x"))
        assert not exclusions.is_excluded("world")


class TestLockFile:
    """Tests for lock file detection."""

    def test_lock_suffix(self) -> None:
        """Names ending in .lck are lock files."""
        assert is_lock_file("session.lck") is True
        assert is_lock_file("a.txt.lck") is True

    def test_not_lock(self) -> None:
        """Other names are not, even when containing .lck."""
        assert is_lock_file("a.lck.txt") is False
        assert is_lock_file("level.dat") is False
