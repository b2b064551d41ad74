"""
Project tree traversal.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Tuple

from .models import AnalysisWarning, LanguageKind


logger = logging.getLogger(__name__)


SCRIPT_EXTENSIONS = (".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".mts", ".cts")
MARKUP_EXTENSIONS = (".vue", ".svelte")
STYLESHEET_EXTENSIONS = (".css", ".scss", ".sass", ".less")

DEFAULT_EXCLUDED_DIRS = frozenset({
    "node_modules", "dist", "build", "coverage", ".git", ".nyc_output",
    ".next", ".nuxt", "storybook-static", ".cache", "bower_components",
})


def language_of(path: str) -> Optional[LanguageKind]:
    ext = os.path.splitext(path)[1].lower()
    if ext in SCRIPT_EXTENSIONS:
        return LanguageKind.SCRIPT
    if ext in MARKUP_EXTENSIONS:
        return LanguageKind.MARKUP
    if ext in STYLESHEET_EXTENSIONS:
        return LanguageKind.STYLESHEET
    return None


def exclusion_predicate(patterns: Iterable[str]) -> Callable[[str], bool]:
    """Build a predicate over root-relative, ``/``-separated paths."""
    cleaned = [pattern.strip().strip("/") for pattern in patterns if pattern.strip()]

    def excluded(relative_path: str) -> bool:
        parts = relative_path.split("/")
        for pattern in cleaned:
            if pattern in parts:
                return True
            if relative_path == pattern or relative_path.startswith(pattern + "/"):
                return True
            if fnmatch.fnmatch(relative_path, pattern):
                return True
        return False

    return excluded


@dataclass
class ScanResult:
    files: List[str] = field(default_factory=list)
    warnings: List[AnalysisWarning] = field(default_factory=list)


def scan_project(
    root: str,
    exclude_patterns: Iterable[str] = (),
    max_depth: int = 64,
) -> ScanResult:
    """Collect supported source files under ``root``.

    Traversal is iterative and name-ordered so the result is stable. Each
    directory is entered once per real path; files reached via several
    symlinks are reported once.
    """
    root = os.path.abspath(root)
    excluded = exclusion_predicate(exclude_patterns)
    result = ScanResult()
    visited_dirs = set()
    seen_files = set()

    # Entries are pushed in reverse so pops follow name order.
    stack: List[Tuple[str, int]] = [(root, 0)]
    while stack:
        directory, depth = stack.pop()
        real = os.path.realpath(directory)
        if real in visited_dirs:
            _warn(result, "symlink-cycle", f"Directory already visited: {directory}", directory)
            continue
        visited_dirs.add(real)

        try:
            with os.scandir(directory) as iterator:
                entries = sorted(iterator, key=lambda entry: entry.name)
        except OSError as e:
            _warn(result, "permission-denied", f"Cannot list {directory}: {e}", directory)
            continue

        subdirs = []
        for entry in entries:
            if entry.name.startswith("."):
                continue
            relative = os.path.relpath(entry.path, root).replace(os.sep, "/")
            try:
                is_dir = entry.is_dir()
                is_file = not is_dir and entry.is_file()
            except OSError as e:
                _warn(result, "permission-denied", f"Cannot stat {entry.path}: {e}", entry.path)
                continue

            if is_dir:
                if entry.name in DEFAULT_EXCLUDED_DIRS or excluded(relative):
                    continue
                if depth + 1 > max_depth:
                    _warn(result, "depth-limit", f"Maximum depth reached at {entry.path}", entry.path)
                    continue
                subdirs.append(entry.path)
            elif is_file:
                if language_of(entry.name) is None or excluded(relative):
                    continue
                real_file = os.path.realpath(entry.path)
                if real_file in seen_files:
                    continue
                seen_files.add(real_file)
                result.files.append(entry.path)

        for subdir in reversed(subdirs):
            stack.append((subdir, depth + 1))

    logger.info("Scanned %d source files under %s", len(result.files), root)
    return result


def _warn(result: ScanResult, kind: str, message: str, path: str) -> None:
    logger.warning("%s: %s", kind, message)
    result.warnings.append(AnalysisWarning(kind, message, path))
