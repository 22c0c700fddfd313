"""Learn scorer weights and artifact affinity from session feedback.

For each scorer feature k, compare how strongly it fired on the artifacts
the session actually used versus the ones it did not:

    delta(k) = mean_access_weighted(f_k | accessed) - mean(f_k | not accessed)

Deltas are scaled by the session outcome, exponentially smoothed across
sessions, and applied as

    w_k <- clip(w_k + eta * s_k, 0, 1),  then renormalized to sum 1.

The final step is shrunk toward the old weights if needed so that no weight
moves by more than eta in one session.

Learning never runs inside a scoring call. ``submit`` queues a session on
a single background worker; ``current`` always returns the last committed
model.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from itertools import combinations

from pydantic import BaseModel, ConfigDict, Field

from ctxpack.config import FEATURES, LearningConfig, ProjectConfig
from ctxpack.context.models import ContextProfile
from ctxpack.exceptions import ModelCorruption, StateStoreError
from ctxpack.learning.model import LearningModel

logger = logging.getLogger("ctxpack.learning")

# Bound on accessed artifacts considered for pair counting per session
_MAX_PAIR_ARTIFACTS = 50


class Outcome(str, Enum):
    """How a session ended."""

    COMPLETED = "completed"
    ABANDONED = "abandoned"


class SessionLog(BaseModel):
    """What happened during one session with a given context profile."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    profile: ContextProfile
    accesses: dict[str, int] = Field(default_factory=dict)
    outcome: Outcome = Outcome.COMPLETED
    rating: float | None = Field(default=None, ge=0.0, le=1.0)


class FeedbackLearner:
    """Out-of-band updater of the LearningModel.

    Usage:
        learner = FeedbackLearner(config)
        scorer = RelevanceScorer(config, model=learner.current)
        learner.submit(session_log)   # returns immediately
    """

    def __init__(
        self,
        config: ProjectConfig | LearningConfig | None = None,
        model: LearningModel | None = None,
        store=None,
    ) -> None:
        if isinstance(config, ProjectConfig):
            config = config.learning
        self.config = config or LearningConfig()
        self.store = store
        self._lock = threading.Lock()
        self._commit_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._pending: list[Future] = []

        if model is None and store is not None:
            model = self._load_stored(store)
        self._model = self._validated(model)

    def _load_stored(self, store) -> LearningModel | None:
        try:
            return store.load_model()
        except ModelCorruption as e:
            logger.error(f"{e}; resetting weights to defaults")
            try:
                latest = store.latest_model_version() or 0
            except StateStoreError:
                latest = 0
            return self._default().model_copy(update={"version": latest + 1})
        except StateStoreError as e:
            logger.error(f"Cannot read stored learning model ({e}); using default weights")
            return None

    # -------------------------------------------------------------------
    # Model access
    # -------------------------------------------------------------------

    def current(self) -> LearningModel:
        """The last committed model."""
        with self._lock:
            return self._model

    def reset(self) -> LearningModel:
        """Replace the model with default weights (affinity kept)."""
        with self._commit_lock:
            old = self.current()
            fresh = self._default().model_copy(
                update={
                    "version": old.version + 1,
                    "co_access": old.co_access,
                    "access_counts": old.access_counts,
                }
            )
            self._commit(fresh)
            return fresh

    def _default(self) -> LearningModel:
        try:
            return LearningModel.default(
                self.config.initial_weights, self.config.affinity_threshold
            )
        except ModelCorruption as e:
            logger.warning(f"Configured initial weights invalid ({e}); using built-in defaults")
            return LearningModel.default(affinity_threshold=self.config.affinity_threshold)

    def _validated(self, model: LearningModel | None) -> LearningModel:
        if model is None:
            return self._default()
        try:
            model.check()
        except ModelCorruption as e:
            logger.error(f"Learning model v{model.version} corrupt ({e}); resetting weights to defaults")
            return self._default().model_copy(
                update={
                    "version": model.version + 1,
                    "co_access": model.co_access,
                    "access_counts": model.access_counts,
                }
            )
        return model

    def _commit(self, model: LearningModel) -> None:
        model = self._validated(model)
        with self._lock:
            self._model = model
        if self.store is not None:
            try:
                self.store.save_model(model)
            except StateStoreError as e:
                logger.warning(f"Learning model v{model.version} not persisted: {e}")
        logger.info(f"Committed learning model v{model.version}")

    # -------------------------------------------------------------------
    # Learning
    # -------------------------------------------------------------------

    def learn(self, log: SessionLog) -> LearningModel:
        """Apply one session's feedback and commit the resulting model."""
        with self._commit_lock:
            old = self.current()
            deltas = self.feature_deltas(log)

            beta = self.config.smoothing
            if old.smoothed:
                smoothed = {
                    k: beta * old.smoothed.get(k, 0.0) + (1 - beta) * deltas[k]
                    for k in FEATURES
                }
            else:
                smoothed = dict(deltas)
            weights = self._apply(old.weights, smoothed)

            co_access = {a: dict(partners) for a, partners in old.co_access.items()}
            for a, b in self._co_accessed_pairs(log):
                co_access.setdefault(a, {})[b] = co_access.get(a, {}).get(b, 0) + 1
                co_access.setdefault(b, {})[a] = co_access.get(b, {}).get(a, 0) + 1

            access_counts = dict(old.access_counts)
            for path, count in log.accesses.items():
                if count > 0:
                    access_counts[path] = access_counts.get(path, 0) + count

            new = old.model_copy(
                update={
                    "version": old.version + 1,
                    "weights": weights,
                    "smoothed": smoothed,
                    "co_access": co_access,
                    "access_counts": access_counts,
                    "affinity_threshold": self.config.affinity_threshold,
                }
            )
            self._commit(new)
            return new

    def feature_deltas(self, log: SessionLog) -> dict[str, float]:
        """Outcome-scaled effectiveness delta per feature, each in [-1, 1]."""
        entries = [e for e in log.profile.entries if e.features]
        accessed = [e for e in entries if log.accesses.get(e.path, 0) > 0]
        ignored = [e for e in entries if log.accesses.get(e.path, 0) <= 0]
        if not accessed or not ignored:
            return {k: 0.0 for k in FEATURES}

        factor = 1.0 if log.outcome == Outcome.COMPLETED else self.config.abandoned_factor
        if log.rating is not None:
            factor *= 0.5 + 0.5 * log.rating

        total_hits = sum(log.accesses[e.path] for e in accessed)
        deltas = {}
        for k in FEATURES:
            used = sum(e.features.get(k, 0.0) * log.accesses[e.path] for e in accessed) / total_hits
            unused = sum(e.features.get(k, 0.0) for e in ignored) / len(ignored)
            deltas[k] = max(-1.0, min(1.0, (used - unused) * factor))
        return deltas

    def _apply(self, old: dict[str, float], smoothed: dict[str, float]) -> dict[str, float]:
        eta = self.config.learning_rate
        stepped = {k: max(0.0, min(1.0, old[k] + eta * smoothed[k])) for k in FEATURES}
        total = sum(stepped.values())
        if total <= 0:
            return dict(old)
        normalized = {k: v / total for k, v in stepped.items()}

        # Renormalization can push a weight past eta; shrink the whole step.
        largest = max(abs(normalized[k] - old[k]) for k in FEATURES)
        if largest > eta > 0:
            t = eta / largest
            normalized = {k: old[k] + t * (normalized[k] - old[k]) for k in FEATURES}

        # Absorb float drift so the vector sums to exactly 1.
        total = sum(normalized.values())
        return {k: max(0.0, min(1.0, v / total)) for k, v in normalized.items()}

    def _co_accessed_pairs(self, log: SessionLog) -> list[tuple[str, str]]:
        accessed = sorted(
            (p for p, c in log.accesses.items() if c > 0),
            key=lambda p: (-log.accesses[p], p),
        )[:_MAX_PAIR_ARTIFACTS]
        return [tuple(sorted(pair)) for pair in combinations(accessed, 2)]

    # -------------------------------------------------------------------
    # Background execution
    # -------------------------------------------------------------------

    def submit(self, log: SessionLog) -> Future:
        """Queue a session for learning on the background worker."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ctxpack-learn")
            future = self._executor.submit(self._learn_logged, log)
            self._pending = [f for f in self._pending if not f.done()] + [future]
        return future

    def _learn_logged(self, log: SessionLog) -> LearningModel:
        try:
            return self.learn(log)
        except Exception:
            logger.exception(f"Learning from session '{log.session_id}' failed")
            raise

    def flush(self, timeout: float | None = None) -> None:
        """Block until every queued session has been learned."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.exception(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
