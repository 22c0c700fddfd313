"""Build a codebase index: artifacts plus their dependency graph."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

import networkx as nx

from ctxpack.config import IndexerConfig, ProjectConfig
from ctxpack.context.models import TokenEstimator
from ctxpack.exceptions import ScanError
from ctxpack.index.files import collect_files
from ctxpack.index.models import Artifact, ArtifactType, CodebaseIndex, VirtualFile
from ctxpack.index.references import (
    ReferenceResolver,
    detect_language,
    extract_references,
    infer_type,
)

logger = logging.getLogger("ctxpack.index")

_SECONDS_PER_DAY = 86400.0
_BINARY_SNIFF_BYTES = 8192


@dataclass
class _Loaded:
    text: str
    mtime: float
    digest: str


def importance(artifact: Artifact, now: float | None = None, recent_days: int = 7) -> float:
    """Structural importance of an artifact in [0, 1].

    entry-point 0.4, config 0.3, importers 0.1 each (max 0.3), modified
    within `recent_days` 0.1, size up to 0.2 (size/10000).
    """
    now = time.time() if now is None else now
    score = 0.0
    if artifact.type == ArtifactType.ENTRY_POINT:
        score += 0.4
    if artifact.type == ArtifactType.CONFIG:
        score += 0.3
    score += min(len(artifact.imported_by) * 0.1, 0.3)
    if now - artifact.mtime <= recent_days * _SECONDS_PER_DAY:
        score += 0.1
    score += min(artifact.size / 10000, 0.2)
    return max(0.0, min(1.0, round(score, 6)))


class CodebaseIndexer:
    """Builds an immutable CodebaseIndex from a directory or a virtual listing.

    File reads run on a bounded thread pool (``IndexerConfig.workers``).
    Scanning stops early when the caller's cancel event is set or the
    configured timeout elapses; the index is then returned with
    ``complete=False``.
    """

    def __init__(self, config: ProjectConfig | IndexerConfig | None = None) -> None:
        if isinstance(config, ProjectConfig):
            config = config.indexer
        self.config = config or IndexerConfig()

    def scan(
        self,
        source: str | Path | Mapping[str, str | VirtualFile],
        cancel: threading.Event | None = None,
        access_counts: Mapping[str, int] | None = None,
        progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> CodebaseIndex:
        """Index a repository.

        Args:
            source: Repository root, or a mapping of relative path to text
                (or VirtualFile) for a virtual listing.
            cancel: Cooperative cancellation signal, checked between artifacts.
            access_counts: Historical access counts to stamp onto artifacts.
            progress_callback: Optional callback(file_path, current, total).

        Returns:
            The built CodebaseIndex.

        Raises:
            IndexingError: If the root cannot be enumerated at all.
        """
        started = time.monotonic()
        built_at = time.time()
        deadline = started + self.config.timeout_s

        def stopped() -> bool:
            return (cancel is not None and cancel.is_set()) or time.monotonic() >= deadline

        listed_all = True

        if isinstance(source, Mapping):
            root = None
            jobs = self._virtual_jobs(source, built_at)
        else:
            root = Path(source).resolve()
            jobs = {
                p.relative_to(root).as_posix(): self._file_loader(p)
                for p in collect_files(root, self.config, should_stop=stopped)
            }
            listed_all = not stopped()

        loaded, warnings, complete = self._load_all(jobs, started, cancel, progress_callback)
        index = self._build(
            root, loaded, warnings, complete and listed_all, built_at, access_counts or {}, stopped
        )

        cycles = index.detect_cycles()
        if cycles:
            logger.info(f"{len(cycles)} dependency cycle(s) in {root or 'virtual listing'}")
        logger.info(
            f"Indexed {len(index)} artifacts, {index.graph.number_of_edges()} edges "
            f"in {(time.monotonic() - started) * 1000:.0f}ms"
            + ("" if index.complete else " (incomplete)")
        )
        return index

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------

    def _virtual_jobs(
        self, listing: Mapping[str, str | VirtualFile], built_at: float
    ) -> dict[str, Callable[[], _Loaded]]:
        jobs: dict[str, Callable[[], _Loaded]] = {}
        for path in sorted(listing):
            entry = listing[path]
            if isinstance(entry, str):
                entry = VirtualFile(content=entry)
            rel = Path(path).as_posix().lstrip("/")
            jobs[rel] = _virtual_loader(entry, built_at)
        return jobs

    def _file_loader(self, full_path: Path) -> Callable[[], _Loaded]:
        def load() -> _Loaded:
            try:
                data = full_path.read_bytes()
                mtime = full_path.stat().st_mtime
            except OSError as e:
                raise ScanError(str(full_path), e.strerror or str(e)) from e
            if b"\x00" in data[:_BINARY_SNIFF_BYTES]:
                raise ScanError(str(full_path), "binary content")
            return _Loaded(
                text=data.decode("utf-8", errors="replace"),
                mtime=mtime,
                digest=hashlib.sha256(data).hexdigest()[:16],
            )

        return load

    def _load_all(
        self,
        jobs: dict[str, Callable[[], _Loaded]],
        started: float,
        cancel: threading.Event | None,
        progress_callback: Callable[[str, int, int], None] | None,
    ) -> tuple[dict[str, _Loaded], list[str], bool]:
        halt = threading.Event()

        def stopped() -> bool:
            return halt.is_set() or (cancel is not None and cancel.is_set())

        def run(load: Callable[[], _Loaded]) -> _Loaded | None:
            if stopped():
                return None
            return load()

        loaded: dict[str, _Loaded] = {}
        warnings: list[str] = []
        total = len(jobs)
        done = 0
        complete = True

        pool = ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="ctxpack-scan")
        try:
            futures = {pool.submit(run, load): rel for rel, load in jobs.items()}
            remaining = self.config.timeout_s - (time.monotonic() - started)
            try:
                for fut in as_completed(futures, timeout=max(remaining, 0.0)):
                    rel = futures[fut]
                    done += 1
                    if progress_callback:
                        progress_callback(rel, done, total)
                    try:
                        result = fut.result()
                    except ScanError as e:
                        logger.warning(str(e))
                        warnings.append(str(e))
                        continue
                    if result is not None:
                        loaded[rel] = result
                    if cancel is not None and cancel.is_set():
                        logger.warning("Indexing cancelled; returning partial index")
                        complete = False
                        break
            except FuturesTimeout:
                logger.warning(
                    f"Indexing timed out after {self.config.timeout_s}s; returning partial index"
                )
                complete = False
        finally:
            halt.set()
            pool.shutdown(wait=True, cancel_futures=True)

        if len(loaded) + len(warnings) < total:
            complete = False
        return loaded, warnings, complete

    # -------------------------------------------------------------------
    # Graph construction
    # -------------------------------------------------------------------

    def _build(
        self,
        root: Path | None,
        loaded: dict[str, _Loaded],
        warnings: list[str],
        complete: bool,
        built_at: float,
        access_counts: Mapping[str, int],
        stopped: Callable[[], bool] = lambda: False,
    ) -> CodebaseIndex:
        graph = nx.DiGraph()
        paths = sorted(loaded)
        graph.add_nodes_from(paths)
        resolver = ReferenceResolver(paths)
        languages = {p: detect_language(p) for p in paths}

        for path in paths:
            if stopped():
                logger.warning("Reference extraction stopped early; dependency graph is partial")
                complete = False
                break
            text = loaded[path].text
            for spec in extract_references(path, text, languages[path]):
                for target in resolver.resolve(path, spec, languages[path]):
                    graph.add_edge(path, target, spec=spec)

        artifacts: dict[str, Artifact] = {}
        for path in paths:
            item = loaded[path]
            artifact = Artifact(
                path=path,
                size=TokenEstimator.estimate(item.text),
                type=infer_type(path, item.text),
                language=languages[path],
                imports=tuple(sorted(graph.successors(path))),
                imported_by=tuple(sorted(graph.predecessors(path))),
                mtime=item.mtime,
                access_count=access_counts.get(path, 0),
                digest=item.digest,
            )
            artifacts[path] = artifact.model_copy(
                update={
                    "importance": importance(artifact, built_at, self.config.recent_days)
                }
            )

        return CodebaseIndex(
            root=root,
            artifacts=artifacts,
            graph=graph,
            contents={p: loaded[p].text for p in paths},
            warnings=warnings,
            complete=complete,
            built_at=built_at,
        )


def _virtual_loader(entry: VirtualFile, built_at: float) -> Callable[[], _Loaded]:
    def load() -> _Loaded:
        data = entry.content.encode("utf-8")
        return _Loaded(
            text=entry.content,
            mtime=entry.mtime if entry.mtime is not None else built_at,
            digest=hashlib.sha256(data).hexdigest()[:16],
        )

    return load
