from __future__ import annotations

from worktree_hub.files.fuzzy import SEARCH_RESULT_LIMIT, allowed_misses, rank, score


def _paths(query: str, paths: list[str]) -> list[str]:
    return [match.path for match in rank(query, paths)]


def test_gapped_query_tolerates_missing_characters() -> None:
    paths = ["src/useWorktreeHelpers.ts", "src/worktree.ts", "README.md"]

    assert _paths("wth", paths) == ["src/useWorktreeHelpers.ts", "src/worktree.ts"]


def test_blank_query_matches_nothing() -> None:
    assert rank("", ["a.py"]) == []
    assert rank("   ", ["a.py"]) == []
    assert score("", "a.py") is None


def test_results_are_capped() -> None:
    paths = [f"pkg/file{index}.py" for index in range(150)]

    results = rank("file", paths)

    assert len(results) == SEARCH_RESULT_LIMIT == 60
    assert results[0].path == "pkg/file0.py"


def test_ties_keep_input_order() -> None:
    assert _paths("foo", ["a/foo.py", "b/foo.py"]) == ["a/foo.py", "b/foo.py"]
    assert _paths("foo", ["b/foo.py", "a/foo.py"]) == ["b/foo.py", "a/foo.py"]


def test_exact_and_prefix_matches_rank_first() -> None:
    paths = ["src/confusing_format_options.py", "src/config_loader.py", "config.py"]

    assert _paths("config", paths)[:2] == ["config.py", "src/config_loader.py"]


def test_matching_is_case_insensitive_and_on_basename() -> None:
    assert _paths("readme", ["docs/README.md", "readme/notes.txt"]) == ["docs/README.md"]


def test_too_many_missing_characters_is_no_match() -> None:
    assert allowed_misses("abqz") == 1
    assert score("abqz", "abc.txt") is None
    assert score("abcq", "abc.txt") is not None


def test_word_boundary_hits_rank_above_inner_hits() -> None:
    paths = ["src/lungs.ts", "src/GitStatus.ts"]

    assert _paths("gs", paths)[0] == "src/GitStatus.ts"
