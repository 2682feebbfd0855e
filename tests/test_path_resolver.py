"""Tests for decoding Claude Code project directory names."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from src.projects.path_resolver import (
    PathResolver,
    display_name,
    encode_path,
    fold,
    match_entry,
)


def fake_fs(tree: dict[str, Any]) -> Callable[[str], list[str]]:
    """Build a list_dir over a nested dict; leaves are files."""

    def list_dir(path: str) -> list[str]:
        node: Any = tree
        for part in [p for p in path.split("/") if p]:
            if not isinstance(node, dict) or part not in node:
                raise FileNotFoundError(path)
            node = node[part]
        if not isinstance(node, dict):
            raise NotADirectoryError(path)
        return list(node)

    return list_dir


@pytest.fixture
def tree() -> dict[str, Any]:
    return {
        "Users": {
            "alice": {
                "My Project": {},
                "my-app": {},
                "exímIA": {},
                "notes.txt": None,
            },
        },
        "home": {"dev": {"api_server": {}}},
    }


@pytest.fixture
def resolver(tree: dict[str, Any]) -> PathResolver:
    return PathResolver(list_dir=fake_fs(tree))


class TestEncoding:
    def test_encode_path(self) -> None:
        assert encode_path("/Users/alice/My Project") == "-Users-alice-My-Project"

    def test_encode_strips_accents(self) -> None:
        assert encode_path("/Users/alice/exímIA") == "-Users-alice-eximIA"

    def test_fold_keeps_case(self) -> None:
        assert fold("Élan") == "Elan"


class TestDecode:
    def test_space_in_directory_name(self, resolver: PathResolver) -> None:
        assert resolver.decode("-Users-alice-My-Project") == "/Users/alice/My Project"

    def test_dash_in_directory_name(self, resolver: PathResolver) -> None:
        assert resolver.decode("-Users-alice-my-app") == "/Users/alice/my-app"

    def test_accented_directory_name(self, resolver: PathResolver) -> None:
        assert resolver.decode("-Users-alice-eximIA") == "/Users/alice/exímIA"

    def test_underscore_reencodes(self, resolver: PathResolver) -> None:
        assert resolver.decode("-home-dev-api-server") == "/home/dev/api_server"

    def test_case_insensitive_match(self, resolver: PathResolver) -> None:
        assert resolver.decode("-users-alice-my-project") == "/Users/alice/My Project"

    def test_unknown_fragments_kept_literally(self, resolver: PathResolver) -> None:
        assert resolver.decode("-Users-alice-gone-away") == "/Users/alice/gone/away"

    def test_unreadable_listing_consumes_single_fragment(self) -> None:
        def broken(path: str) -> list[str]:
            raise PermissionError(path)

        assert PathResolver(list_dir=broken).decode("-foo-bar-baz") == "/foo/bar/baz"

    def test_name_without_leading_dash_unchanged(self, resolver: PathResolver) -> None:
        assert resolver.decode("relative-name") == "relative-name"

    def test_empty_fragment_list_is_root(self, resolver: PathResolver) -> None:
        assert resolver.decode("-") == "/"
        assert resolver.decode("--") == "/"

    def test_idempotent(self, resolver: PathResolver) -> None:
        name = "-Users-alice-My-Project"
        assert resolver.decode(name) == resolver.decode(name)

    def test_real_filesystem_under_root(self, tmp_path: Path) -> None:
        (tmp_path / "Users" / "alice" / "My Project").mkdir(parents=True)
        resolver = PathResolver(root=str(tmp_path))
        assert resolver.decode("-Users-alice-My-Project") == f"{tmp_path}/Users/alice/My Project"


class TestMatchEntry:
    def test_fuzzy_subsequence_accepted(self) -> None:
        assert match_entry(["my", "project"], ["myproject2024"]) == "myproject2024"

    def test_fuzzy_low_coverage_rejected(self) -> None:
        assert match_entry(["a", "b"], ["a-long-b-directory"]) is None

    def test_fuzzy_needs_multiple_fragments(self) -> None:
        assert match_entry(["proj"], ["project"]) is None

    def test_fuzzy_tie_first_wins(self) -> None:
        assert match_entry(["ab", "cd"], ["abXcd", "abYcd"]) == "abXcd"

    def test_closest_length_wins(self) -> None:
        entries = ["myproject-archive-old", "myproject1"]
        assert match_entry(["my", "project"], entries) == "myproject1"


class TestDisplayName:
    def test_strips_users_prefix(self) -> None:
        assert display_name("-Users-alice-My-Project") == "My-Project"

    def test_strips_dev_prefix(self) -> None:
        assert display_name("-opt-Dev-tool") == "tool"

    def test_falls_back_to_last_fragment(self) -> None:
        assert display_name("-srv-www-site") == "site"
