"""Selects the files of a directory tree that belong in an archive."""

from collections.abc import Iterable
import fnmatch
import os
from pathlib import Path
import re

from .exceptions import SourceNotFoundError

VCS_DIRECTORIES = frozenset(
    {".svn", "_svn", "CVS", "_darcs", ".arch-params", ".monotone", ".bzr", ".git", ".hg"}
)

EXCLUDED_NAMES: tuple[str, ...] = (
    "composer.*",  # Composer configuration
    "*~",  # backup files
    "*.back",
    "*.swp",
    "*Spec.*",  # spec-style test files
)

EXCLUDED_PATHS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(^|/)docs?/", re.IGNORECASE),
    re.compile(r".*phpunit/.*"),
    re.compile(r"(^|/)tests?/.*", re.IGNORECASE),
)


def normalize_excludes(root_dir: Path, exclude_paths: Iterable[str]) -> set[str]:
    """Makes exclude paths relative to `root_dir` and strips trailing separators."""
    root_prefix = str(root_dir.resolve()) + os.sep
    normalized = set()
    for exclude in exclude_paths:
        exclude = str(exclude)
        if exclude.startswith(root_prefix):
            exclude = exclude[len(root_prefix) :]
        exclude = exclude.replace(os.sep, "/").rstrip("/")
        if exclude:
            normalized.add(exclude)
    return normalized


def is_excluded(relative_path: str) -> bool:
    """Applies the fixed exclusion rules to a `/`-separated relative file path."""
    parts = relative_path.split("/")
    if any(part in VCS_DIRECTORIES or part.startswith(".") for part in parts):
        return True
    name = parts[-1]
    if any(fnmatch.fnmatchcase(name, pattern) for pattern in EXCLUDED_NAMES):
        return True
    return any(pattern.search(relative_path) for pattern in EXCLUDED_PATHS)


def _under(relative_path: str, excludes: set[str]) -> bool:
    return any(
        relative_path == exclude or relative_path.startswith(f"{exclude}/")
        for exclude in excludes
    )


def select_files(root_dir: Path, exclude_paths: Iterable[str] = ()) -> list[str]:
    """
    Walks `root_dir` and returns the relative (`/`-separated) paths of every
    file that passes the fixed exclusion rules and is not under one of
    `exclude_paths`. Exclude paths that do not exist are ignored.

    Directory entries are visited in sorted order so the result only depends
    on the state of the tree.
    """
    root_dir = Path(root_dir)
    if not root_dir.is_dir():
        raise SourceNotFoundError(f"Source directory not found: {root_dir}")

    excludes = normalize_excludes(root_dir, exclude_paths)
    selected: list[str] = []
    for dir_path, dir_names, file_names in os.walk(root_dir):
        rel_dir = Path(dir_path).relative_to(root_dir).as_posix()
        prefix = "" if rel_dir == "." else f"{rel_dir}/"

        dir_names[:] = sorted(
            name
            for name in dir_names
            if name not in VCS_DIRECTORIES
            and not name.startswith(".")
            and not _under(prefix + name, excludes)
        )
        for name in sorted(file_names):
            relative_path = prefix + name
            if is_excluded(relative_path) or _under(relative_path, excludes):
                continue
            selected.append(relative_path)
    return selected
