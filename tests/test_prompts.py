from pathlib import Path

import pytest

from mediagen.errors import ConfigurationError
from mediagen.prompts import collect_prompts, read_prompt_file


def test_prompt_argument_wins(tmp_path: Path):
    (tmp_path / "prompt.txt").write_text("from file")
    assert collect_prompts("from cli", None, False, cwd=tmp_path) == [("", "from cli")]


def test_default_prompt_file(tmp_path: Path):
    (tmp_path / "prompt.txt").write_text("  a lighthouse at dusk \n")
    assert collect_prompts(None, None, False, cwd=tmp_path) == [("", "a lighthouse at dusk")]


def test_named_prompt_file_gives_label(tmp_path: Path):
    (tmp_path / "castle.txt").write_text("a castle")
    assert collect_prompts(None, "castle.txt", False, cwd=tmp_path) == [("castle", "a castle")]


def test_missing_prompt_file(tmp_path: Path):
    with pytest.raises(ConfigurationError):
        collect_prompts(None, None, False, cwd=tmp_path)


def test_empty_prompt_file(tmp_path: Path):
    (tmp_path / "prompt.txt").write_text("\n  \n")
    with pytest.raises(ConfigurationError):
        read_prompt_file(tmp_path / "prompt.txt")


def test_all_prompts_from_lines(tmp_path: Path):
    (tmp_path / "list.txt").write_text("one\n\n two \nthree\n")
    assert collect_prompts(None, "list.txt", True, cwd=tmp_path) == [
        ("list-1", "one"), ("list-2", "two"), ("list-3", "three"),
    ]


def test_all_prompts_from_directory_sorted(tmp_path: Path):
    (tmp_path / "b.txt").write_text("bee")
    (tmp_path / "a.txt").write_text("ant")
    (tmp_path / "notes.md").write_text("ignored")
    assert collect_prompts(None, None, True, cwd=tmp_path) == [("a", "ant"), ("b", "bee")]


def test_all_prompts_empty_directory(tmp_path: Path):
    with pytest.raises(ConfigurationError):
        collect_prompts(None, None, True, cwd=tmp_path)
