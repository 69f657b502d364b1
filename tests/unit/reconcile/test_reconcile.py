"""Tests for reconciliation of proposed file changes."""

from __future__ import annotations

import pytest

from iterforge.reconcile.engine import (
    ReconcileMode,
    apply_to_snapshot,
    build_alias_index,
    has_explicit_create,
    normalize_path,
    reconcile,
    resolve_alias,
)

# ------------------------------------------------------------------
# Alias resolution
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "path,expected",
    [
        ("components/Hero-Section.TSX", "components/herosection.tsx"),
        ("components/hero_section.tsx", "components/herosection.tsx"),
        ("Src/My-Dir/file.ts", "src/my-dir/file.ts"),
        ("README", "readme"),
    ],
)
def test_normalize_path(path, expected):
    assert normalize_path(path) == expected


def test_normalize_path_idempotent():
    once = normalize_path("components/Hero-Section.tsx")
    assert normalize_path(once) == once


def test_resolve_alias():
    index = build_alias_index(["components/HeroSection.tsx"])
    assert resolve_alias("components/hero-section.tsx", index) == "components/HeroSection.tsx"
    assert resolve_alias("components/HeroSection.tsx", index) is None
    assert resolve_alias("components/Footer.tsx", index) is None


@pytest.mark.parametrize(
    "prompt,expected",
    [
        ("create a new file called stats-widget.tsx", True),
        ("Add a new component for stats", True),
        ("put it in a new file named x.ts", True),
        ("make the header blue", False),
    ],
)
def test_has_explicit_create(prompt, expected):
    assert has_explicit_create(prompt) is expected


# ------------------------------------------------------------------
# reconcile
# ------------------------------------------------------------------


def test_alias_new_file_becomes_modification():
    previous = {"components/Header.tsx": "Helllo"}
    result = reconcile({}, {"components/header.tsx": "Hello"}, [], previous)
    assert result.modified_files == {"components/Header.tsx": "Hello"}
    assert result.deleted_files == ["components/header.tsx"]
    assert result.new_files == {}


def test_existing_new_path_becomes_modification():
    previous = {"a.ts": "1"}
    result = reconcile({}, {"a.ts": "2"}, [], previous)
    assert result.modified_files == {"a.ts": "2"}
    assert result.new_files == {}
    assert result.deleted_files == []


def test_genuinely_new_file_stays_new():
    result = reconcile({}, {"stats-widget.tsx": "x"}, [], {})
    assert result.new_files == {"stats-widget.tsx": "x"}
    assert result.modified_files == {}


def test_missing_modified_path_becomes_new_with_advisory():
    result = reconcile({"ghost.ts": "x"}, {}, [], {"a.ts": "1"})
    assert result.new_files == {"ghost.ts": "x"}
    assert any("ghost.ts" in a for a in result.advisories)


def test_modified_alias_is_redirected():
    previous = {"lib/api-client.ts": "old"}
    result = reconcile({"lib/apiClient.ts": "new"}, {}, [], previous)
    assert result.modified_files == {"lib/api-client.ts": "new"}
    assert result.deleted_files == ["lib/apiClient.ts"]


def test_last_write_wins_on_collision():
    previous = {"components/HeroSection.tsx": "old"}
    result = reconcile(
        {},
        {"components/hero-section.tsx": "first", "components/hero_section.tsx": "second"},
        [],
        previous,
    )
    assert result.modified_files == {"components/HeroSection.tsx": "second"}
    assert set(result.deleted_files) == {
        "components/hero-section.tsx",
        "components/hero_section.tsx",
    }
    assert any("overrode 'components/hero-section.tsx'" in a for a in result.advisories)


def test_write_beats_delete():
    previous = {"a.ts": "1"}
    result = reconcile({"a.ts": "2"}, {}, ["a.ts"], previous)
    assert result.modified_files == {"a.ts": "2"}
    assert result.deleted_files == []
    assert any("both written and deleted" in a for a in result.advisories)


def test_deletions_are_deduplicated():
    previous = {"a.ts": "1", "b.ts": "2"}
    result = reconcile({}, {}, ["a.ts", "a.ts", "b.ts"], previous)
    assert result.deleted_files == ["a.ts", "b.ts"]


def test_output_sets_are_disjoint():
    previous = {"components/Header.tsx": "h", "lib/util.ts": "u", "old.ts": "o"}
    result = reconcile(
        {"lib/util.ts": "u2", "missing.ts": "m"},
        {"components/header.tsx": "h2", "fresh.ts": "f"},
        ["old.ts", "lib/util.ts"],
        previous,
    )
    modified, new, deleted = set(result.modified_files), set(result.new_files), set(result.deleted_files)
    assert not modified & new
    assert not modified & deleted
    assert not new & deleted
    assert modified <= set(previous)
    assert not new & set(previous)


def test_reconcile_is_repeatable():
    previous = {"components/Header.tsx": "h", "lib/api-client.ts": "a", "old.ts": "o"}
    args = (
        {"lib/apiClient.ts": "a2", "missing.ts": "m"},
        {"components/header.tsx": "h2", "components/hero_section.tsx": "s"},
        ["old.ts", "old.ts"],
        previous,
    )
    first = reconcile(*args)
    second = reconcile(*args)
    assert first == second
    assert apply_to_snapshot(previous, first) == apply_to_snapshot(previous, second)


def test_inputs_are_not_mutated():
    proposed_new = {"components/header.tsx": "Hello"}
    previous = {"components/Header.tsx": "Helllo"}
    reconcile({}, proposed_new, [], previous)
    assert proposed_new == {"components/header.tsx": "Hello"}
    assert previous == {"components/Header.tsx": "Helllo"}


# ------------------------------------------------------------------
# Strict mode
# ------------------------------------------------------------------


def test_strict_mode_demotes_new_files():
    result = reconcile({}, {"helpers.ts": "x"}, [], {"a.ts": "1"}, ReconcileMode.STRICT, "tidy helpers")
    assert result.new_files == {}
    assert result.modified_files == {"helpers.ts": "x"}
    assert any("Strict mode" in a for a in result.advisories)


def test_strict_mode_allows_explicit_creation():
    result = reconcile(
        {},
        {"stats-widget.tsx": "x"},
        [],
        {"a.ts": "1"},
        ReconcileMode.STRICT,
        "create a new file called stats-widget.tsx",
    )
    assert result.new_files == {"stats-widget.tsx": "x"}


# ------------------------------------------------------------------
# apply_to_snapshot
# ------------------------------------------------------------------


def test_apply_to_snapshot():
    previous = {"components/Header.tsx": "Helllo", "old.ts": "o", "keep.ts": "k"}
    result = reconcile({}, {"components/header.tsx": "Hello", "new.ts": "n"}, ["old.ts"], previous)
    snapshot = apply_to_snapshot(previous, result)
    assert snapshot == {"components/Header.tsx": "Hello", "keep.ts": "k", "new.ts": "n"}
    assert previous["old.ts"] == "o"
