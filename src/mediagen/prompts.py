"""Prompt sources: the command line, a prompt file, or a batch of prompts."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

from .errors import ConfigurationError

DEFAULT_PROMPT_FILE = "prompt.txt"


def read_prompt_file(path: Path | str) -> str:
    """Whole file content as one prompt, surrounding whitespace removed."""
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigurationError(f"Cannot read prompt file {p}: {e.strerror or e}") from e
    if not text:
        raise ConfigurationError(f"Prompt file {p} is empty")
    return text


def read_prompt_lines(path: Path | str) -> List[str]:
    p = Path(path).expanduser()
    try:
        lines = p.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise ConfigurationError(f"Cannot read prompt file {p}: {e.strerror or e}") from e
    return [line.strip() for line in lines if line.strip()]


def collect_prompts(prompt: Optional[str], prompt_file: Optional[str], all_prompts: bool,
                    cwd: Optional[Path] = None) -> List[Tuple[str, str]]:
    """Return (label, prompt) pairs to process, in order.

    - ``prompt`` wins and yields a single item.
    - ``all_prompts`` with a file: one item per non-empty line.
    - ``all_prompts`` without a file: one item per ``*.txt`` file in ``cwd``, sorted.
    - Otherwise the prompt file (default ``prompt.txt`` in ``cwd``) is one prompt.

    The label is the prompt file stem, used as a file name prefix, or "" for
    prompts typed on the command line.
    """
    cwd = Path.cwd() if cwd is None else Path(cwd)
    if prompt:
        return [("", prompt)]

    if all_prompts:
        if prompt_file:
            path = cwd / prompt_file
            return [(f"{path.stem}-{n}", line) for n, line in enumerate(read_prompt_lines(path), start=1)]
        files = sorted(cwd.glob("*.txt"))
        if not files:
            raise ConfigurationError(f"No .txt prompt files found in {cwd}")
        return [(p.stem, read_prompt_file(p)) for p in files]

    path = cwd / (prompt_file or DEFAULT_PROMPT_FILE)
    label = path.stem if prompt_file else ""
    return [(label, read_prompt_file(path))]
