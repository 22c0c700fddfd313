"""ContextEngine - one object wiring the indexer, scorer, packer, switcher and learner.

Given a repository and a natural-language task, it returns a ContextProfile
that fits a token budget, keeps a resumable stack of suspended tasks per
session, and feeds completed sessions back into the scorer weights.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Mapping

from ctxpack.config import STATE_DB_FILE, ProjectConfig, get_ctxpack_dir, load_config
from ctxpack.context.models import ContextProfile, TaskDescriptor
from ctxpack.exceptions import StateStoreError
from ctxpack.index.indexer import CodebaseIndexer
from ctxpack.index.models import CodebaseIndex, VirtualFile
from ctxpack.learning.learner import FeedbackLearner, Outcome, SessionLog
from ctxpack.packing.packer import BudgetPacker
from ctxpack.scoring.classifier import TaskClassifier
from ctxpack.scoring.scorer import RelevanceScorer
from ctxpack.session.switcher import ContextSwitcher
from ctxpack.session.triggers import COMPLETED, TriggerTable
from ctxpack.state.store import StateStore

logger = logging.getLogger("ctxpack.engine")

LAST_INDEX_KEY = "last_index"


class ContextEngine:
    """Budgeted, session-aware context retrieval over one repository.

    Usage:
        engine = ContextEngine("/path/to/repo")
        profile = engine.request("fix the login timeout bug", budget=6000)
        print(engine.render(profile))
        engine.record_access("default", "auth/login.py")
        engine.complete("default")
    """

    def __init__(
        self,
        source: str | Path | Mapping[str, str | VirtualFile],
        config: ProjectConfig | None = None,
        store: StateStore | None = None,
        classifier: TaskClassifier | None = None,
    ) -> None:
        self.source = source if isinstance(source, Mapping) else Path(source).resolve()
        self.config = config or ProjectConfig()
        self.store = store

        self.indexer = CodebaseIndexer(self.config)
        self.learner = FeedbackLearner(self.config, store=store)
        self.scorer = RelevanceScorer(self.config, classifier=classifier, model=self.learner.current)
        self.packer = BudgetPacker(self.config)
        self.triggers = TriggerTable()
        self.switcher = ContextSwitcher(
            lambda: self.index,
            self.scorer,
            self.packer,
            self.config,
            store=store,
            triggers=self.triggers,
        )
        self.triggers.register(COMPLETED, self._learn_from, priority=0, name="feedback-learner")

        self._index: CodebaseIndex | None = None
        self._index_lock = threading.Lock()

    @classmethod
    def open(cls, root: str | Path, classifier: TaskClassifier | None = None) -> ContextEngine:
        """Engine for a project on disk, with config and state under .ctxpack/."""
        root = Path(root).resolve()
        config = load_config(root)
        store = StateStore(get_ctxpack_dir(root) / STATE_DB_FILE)
        return cls(root, config, store=store, classifier=classifier)

    # -------------------------------------------------------------------
    # Indexing
    # -------------------------------------------------------------------

    @property
    def index(self) -> CodebaseIndex:
        """The current index, built on first use."""
        with self._index_lock:
            current = self._index
        return current if current is not None else self.reindex()

    def reindex(
        self,
        cancel: threading.Event | None = None,
        progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> CodebaseIndex:
        """Rebuild the index from scratch and make it current.

        Raises:
            IndexingError: If the repository root cannot be enumerated.
        """
        index = self.indexer.scan(
            self.source,
            cancel=cancel,
            access_counts=self.learner.current().access_counts,
            progress_callback=progress_callback,
        )
        with self._index_lock:
            self._index = index
        if not index.complete:
            logger.warning(f"Index is incomplete: {len(index)} artifacts loaded before stopping")
        if self.store is not None:
            try:
                self.store.set_metadata(LAST_INDEX_KEY, {"built_at": index.built_at, "stats": index.stats()})
            except StateStoreError as e:
                logger.warning(f"Index build not recorded: {e}")
        return index

    def last_index(self) -> dict | None:
        """Build time and stats of the most recent index, as recorded in the store.

        Survives restarts, so it reports the previous process's build until
        this engine reindexes.
        """
        if self.store is None:
            return None
        try:
            return self.store.get_metadata(LAST_INDEX_KEY)
        except StateStoreError as e:
            logger.warning(f"Cannot read last index build: {e}")
            return None

    # -------------------------------------------------------------------
    # Context requests
    # -------------------------------------------------------------------

    def request(
        self,
        task: TaskDescriptor | str,
        session_id: str = "default",
        focus_files: list[str] | None = None,
        budget: int | None = None,
        resume: str | None = None,
        preserve_current: bool = True,
    ) -> ContextProfile:
        """Produce the ACTIVE context profile for a session.

        With `resume`, the snapshot of that id is restored and `task` is
        ignored; otherwise the session switches to `task`.

        Raises:
            SnapshotNotFound: If `resume` names no snapshot of the session.
        """
        if resume is not None:
            return self.switcher.resume(session_id, resume)
        return self.switcher.switch_to(
            session_id,
            task,
            preserve_current=preserve_current,
            focus_files=focus_files,
            budget=budget,
        )

    def render(self, profile: ContextProfile, include_metadata: bool = True) -> str:
        """Render a profile with dependencies ahead of their dependents."""
        order = self.packer.dependency_order(profile, self.index)
        return profile.render(include_metadata=include_metadata, order=order)

    # -------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------

    def record_access(self, session_id: str, path: str, count: int = 1) -> None:
        self.switcher.record_access(session_id, path, count)

    def complete(
        self,
        session_id: str = "default",
        outcome: Outcome = Outcome.COMPLETED,
        rating: float | None = None,
    ) -> SessionLog | None:
        """Finish the session's ACTIVE task; learning happens in the background."""
        return self.switcher.complete(session_id, outcome, rating)

    def _learn_from(self, payload: dict) -> None:
        self.learner.submit(payload["log"])

    def close(self) -> None:
        self.learner.close()
        if self.store is not None:
            self.store.close()

    def __enter__(self) -> ContextEngine:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
