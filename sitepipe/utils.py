"""Utility functions for Sitepipe.

Key functions:
    glob_to_regex: Compile a path glob (with ``**`` support) to a regex.
    glob_match: Check a relative path against a glob.
    write_atomic: Write a text file via a temporary file and rename.
    ensure_clean_dir: Ensure a directory exists and is empty.
    remove_dir: Delete a directory tree if it exists.
"""

from __future__ import annotations

import functools
import os
import re
import shutil
from pathlib import Path, PurePosixPath


@functools.lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern:
    """Compile a glob pattern to a regular expression.

    ``*`` and ``?`` never cross a ``/``; ``**`` matches any number of
    directories (including none) and ``[...]`` is a character class.

    Args:
        pattern: Glob using ``/`` separators.

    Returns:
        Compiled regex matching whole paths.

    Examples:
        >>> bool(glob_to_regex("_sass/**/*.scss").match("_sass/main.scss"))
        True

        >>> bool(glob_to_regex("*.md").match("_posts/hello.md"))
        False
    """
    parts: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        char = pattern[i]
        if char == "*":
            if pattern.startswith("**", i):
                i += 2
                if pattern.startswith("/", i):
                    # "**/" also matches zero directories
                    i += 1
                    parts.append("(?:.*/)?")
                else:
                    parts.append(".*")
                continue
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                parts.append(re.escape(char))
            else:
                body = pattern[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                i = end
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("".join(parts) + r"\Z")


def glob_match(pattern: str, path: str | PurePosixPath) -> bool:
    """Check whether a relative path matches a glob.

    Args:
        pattern: Glob pattern (see glob_to_regex).
        path: Path relative to the watched root, ``/`` separated.

    Returns:
        True if the whole path matches.
    """
    if pattern.startswith("./"):
        pattern = pattern[2:]
    return glob_to_regex(pattern).match(str(path)) is not None


def write_atomic(dest: Path, text: str) -> None:
    """Write ``text`` to ``dest`` without leaving a partial file behind.

    The content goes to a hidden temporary file in the same directory,
    which is then renamed over the destination.

    Args:
        dest: Target file; parent directories are created.
        text: Content to write.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(f".{dest.name}.tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, dest)
    finally:
        if tmp.exists():
            tmp.unlink()


def remove_dir(path: Path) -> bool:
    """Delete a directory tree.

    Args:
        path: Directory to remove.

    Returns:
        True if something was removed, False if it did not exist.
    """
    if not path.exists():
        return False
    shutil.rmtree(path)
    return True


def ensure_clean_dir(path: Path, keep: tuple[str, ...] = ()) -> None:
    """Ensure a directory exists and is empty.

    Args:
        path: Directory path to clean or create.
        keep: Top-level entry names left in place (e.g. ``.git``).
    """
    try:
        path.mkdir(parents=True)
    except FileExistsError:
        pass
    for item in path.iterdir():
        if item.name in keep:
            continue
        if item.is_dir() and not item.is_symlink():
            shutil.rmtree(item)
        else:
            item.unlink()
