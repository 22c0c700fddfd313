"""Repository file enumeration."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import Callable

from ctxpack.config import IndexerConfig
from ctxpack.exceptions import IndexingError

logger = logging.getLogger("ctxpack.index")


def collect_files(
    root: str | Path,
    config: IndexerConfig | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> list[Path]:
    """Collect all indexable files under `root`, respecting exclusion patterns.

    Raises IndexingError if the root itself cannot be enumerated. Failures
    below the root are logged and skipped. `should_stop` is checked before
    each directory; once it returns True the files found so far are returned.
    """
    root = Path(root).resolve()
    if config is None:
        config = IndexerConfig()

    if not root.is_dir():
        raise IndexingError(f"Repository root is not a directory: {root}")
    try:
        with os.scandir(root):
            pass
    except OSError as e:
        raise IndexingError(f"Cannot enumerate repository root {root}: {e}") from e

    return _collect_files(root, config, should_stop)


def _collect_files(
    root: Path, config: IndexerConfig, should_stop: Callable[[], bool] | None
) -> list[Path]:
    files = []
    max_size = config.max_file_size_kb * 1024

    gitignore_patterns = _read_gitignore(root) if config.respect_gitignore else []
    all_exclude = config.exclude_patterns + gitignore_patterns

    def _on_error(err: OSError) -> None:
        logger.warning(f"Cannot list {err.filename}: {err.strerror}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        if should_stop is not None and should_stop():
            logger.warning(f"File enumeration stopped early under {root}")
            break
        rel_dir = os.path.relpath(dirpath, root)

        # Filter out excluded directories
        dirnames[:] = sorted(
            d
            for d in dirnames
            if not _should_exclude(os.path.join(rel_dir, d) if rel_dir != "." else d, all_exclude)
        )

        for filename in filenames:
            rel_path = os.path.join(rel_dir, filename) if rel_dir != "." else filename

            if _should_exclude(rel_path, all_exclude):
                continue

            full_path = Path(dirpath) / filename
            try:
                if full_path.stat().st_size > max_size:
                    logger.debug(f"Skipping oversized file {rel_path}")
                    continue
            except OSError:
                continue

            files.append(full_path)

    return sorted(files)


def _should_exclude(path: str, patterns: list[str]) -> bool:
    """Check if a path matches any exclusion pattern."""
    path_parts = Path(path).parts
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern):
            return True
        for part in path_parts:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False


def _read_gitignore(root: Path) -> list[str]:
    """Read .gitignore patterns from the project root."""
    gitignore = root / ".gitignore"
    if not gitignore.exists():
        return []

    patterns = []
    try:
        for line in gitignore.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#") and not line.startswith("!"):
                if line.endswith("/"):
                    line = line[:-1]
                patterns.append(line.lstrip("/"))
    except OSError:
        pass
    return patterns
