"""Relevance scoring of artifacts against a task.

score(a, t) = Σ w_i · f_i(a, t) over five features, each in [0, 1]:

  keyword_match         fraction of task terms found in the artifact text
  name_match            task terms found in the file name / directories
  dependency_proximity  seed relevance inherited from graph neighbors,
                        decayed per hop (0.8, 0.4, 0.2 by default); affine
                        artifact pairs count as direct neighbors
  type_match            TaskType x ArtifactType affinity table
  recency               0.5 ** (age_days / half_life)

Weights come from the current LearningModel and sum to 1, so scores stay in
[0, 1]. The model is read once per call; a learner commit during a call is
not seen until the next one.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable

from ctxpack.config import FEATURES, ProjectConfig, ScoringConfig
from ctxpack.context.models import TaskDescriptor, TaskType
from ctxpack.index.models import Artifact, ArtifactType, CodebaseIndex
from ctxpack.learning.model import LearningModel
from ctxpack.scoring.classifier import KeywordTaskClassifier, TaskClassifier, tokenize

logger = logging.getLogger("ctxpack.scoring")

_SECONDS_PER_DAY = 86400.0

_TYPE_MATCH: dict[TaskType, dict[ArtifactType, float]] = {
    TaskType.DEBUGGING: {
        ArtifactType.SOURCE: 1.0,
        ArtifactType.ENTRY_POINT: 1.0,
        ArtifactType.TEST: 0.5,
        ArtifactType.CONFIG: 0.3,
        ArtifactType.DOC: 0.0,
    },
    TaskType.FEATURE: {
        ArtifactType.SOURCE: 1.0,
        ArtifactType.ENTRY_POINT: 0.8,
        ArtifactType.CONFIG: 0.4,
        ArtifactType.TEST: 0.3,
        ArtifactType.DOC: 0.1,
    },
    TaskType.REFACTOR: {
        ArtifactType.SOURCE: 1.0,
        ArtifactType.ENTRY_POINT: 0.6,
        ArtifactType.TEST: 0.5,
        ArtifactType.CONFIG: 0.2,
        ArtifactType.DOC: 0.0,
    },
    TaskType.TESTING: {
        ArtifactType.TEST: 1.0,
        ArtifactType.SOURCE: 0.5,
        ArtifactType.ENTRY_POINT: 0.4,
        ArtifactType.CONFIG: 0.3,
        ArtifactType.DOC: 0.0,
    },
    TaskType.DOCUMENTATION: {
        ArtifactType.DOC: 1.0,
        ArtifactType.ENTRY_POINT: 0.5,
        ArtifactType.SOURCE: 0.4,
        ArtifactType.CONFIG: 0.2,
        ArtifactType.TEST: 0.1,
    },
    TaskType.GENERAL: {
        ArtifactType.ENTRY_POINT: 0.6,
        ArtifactType.SOURCE: 0.5,
        ArtifactType.CONFIG: 0.4,
        ArtifactType.DOC: 0.4,
        ArtifactType.TEST: 0.3,
    },
}


@dataclass(frozen=True)
class ScoredArtifact:
    """An artifact's relevance to one task, with per-feature values."""

    path: str
    score: float
    features: dict[str, float] = field(default_factory=dict)

    @property
    def proximity(self) -> float:
        return self.features.get("dependency_proximity", 0.0)

    def sort_key(self) -> tuple:
        """Score desc, then proximity desc, then shorter path, then path."""
        return (-self.score, -self.proximity, len(self.path), self.path)


class RelevanceScorer:
    """Scores every artifact of an index against a task descriptor.

    Usage:
        scorer = RelevanceScorer(config, model=learner.current)
        task = scorer.describe("fix the login bug")
        ranked = scorer.score_all(index, task)
    """

    def __init__(
        self,
        config: ProjectConfig | ScoringConfig | None = None,
        classifier: TaskClassifier | None = None,
        model: LearningModel | Callable[[], LearningModel] | None = None,
    ) -> None:
        if isinstance(config, ProjectConfig):
            config = config.scoring
        self.config = config or ScoringConfig()
        self.classifier = classifier or KeywordTaskClassifier()
        if model is None:
            model = LearningModel.default()
        self._model = model if callable(model) else (lambda: model)
        self._terms_cache: weakref.WeakKeyDictionary[CodebaseIndex, dict[str, frozenset[str]]] = (
            weakref.WeakKeyDictionary()
        )
        self._cache_lock = threading.Lock()

    def describe(self, text: str, focus_files: list[str] | tuple[str, ...] | None = None) -> TaskDescriptor:
        return self.classifier.describe(text, focus_files)

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    def score(
        self, index: CodebaseIndex, artifact: Artifact | str, task: TaskDescriptor | str
    ) -> float:
        """Relevance of a single artifact in [0, 1]."""
        path = artifact if isinstance(artifact, str) else artifact.path
        for scored in self.score_all(index, task):
            if scored.path == path:
                return scored.score
        raise KeyError(f"Artifact not in index: {path}")

    def score_all(
        self,
        index: CodebaseIndex,
        task: TaskDescriptor | str,
        paths: list[str] | None = None,
    ) -> list[ScoredArtifact]:
        """Score artifacts, sorted best first with deterministic tie-breaks.

        Args:
            index: The codebase index.
            task: Task descriptor (or raw text, classified on the fly).
            paths: Restrict the output to these paths. Proximity is still
                computed over the whole index.
        """
        if isinstance(task, str):
            task = self.describe(task)
        model = self._model()
        weights = model.weights

        all_paths = index.paths()
        terms = frozenset(task.terms)
        focus = {f for f in task.focus_files if f in index}
        content_terms = self._content_terms(index)

        def base_features(path: str) -> dict[str, float]:
            artifact = index.get(path)
            return {
                "keyword_match": _keyword_match(terms, content_terms.get(path, frozenset())),
                "name_match": 1.0 if path in focus else _name_match(path, terms, task.text),
                "type_match": _TYPE_MATCH[task.task_type].get(artifact.type, 0.0),
                "recency": _recency(artifact, index.built_at, self.config.recency_half_life_days),
            }

        with ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="ctxpack-score") as pool:
            base = dict(zip(all_paths, pool.map(base_features, all_paths)))

        seeds = {
            p: 1.0 if p in focus else max(f["keyword_match"], f["name_match"])
            for p, f in base.items()
        }
        proximity = self._proximity(index, seeds, model)

        wanted = all_paths if paths is None else [p for p in paths if p in base]
        results = []
        for path in wanted:
            features = dict(base[path])
            features["dependency_proximity"] = proximity.get(path, 0.0)
            features = {name: round(features[name], 6) for name in FEATURES}
            total = sum(weights[name] * features[name] for name in FEATURES)
            results.append(
                ScoredArtifact(path=path, score=round(max(0.0, min(1.0, total)), 6), features=features)
            )

        results.sort(key=ScoredArtifact.sort_key)
        return results

    # -------------------------------------------------------------------
    # Features
    # -------------------------------------------------------------------

    def _content_terms(self, index: CodebaseIndex) -> dict[str, frozenset[str]]:
        with self._cache_lock:
            cached = self._terms_cache.get(index)
            if cached is None:
                cached = {p: frozenset(tokenize(index.content(p))) for p in index.paths()}
                self._terms_cache[index] = cached
            return cached

    def _proximity(
        self, index: CodebaseIndex, seeds: dict[str, float], model: LearningModel
    ) -> dict[str, float]:
        """Propagate seed relevance over the undirected dependency graph.

        Each seed contributes seed * decay[hops - 1] to artifacts within
        max_hops; an artifact keeps the maximum contribution. Affine pairs
        from the learning model act as direct edges with a boosted decay.
        """
        decay = self.config.hop_decay
        max_hops = min(self.config.max_hops, len(decay))
        affine_decay = min(1.0, decay[0] + self.config.affinity_boost) if decay else 0.0
        proximity: dict[str, float] = {}

        def offer(path: str, value: float) -> None:
            if value > proximity.get(path, 0.0):
                proximity[path] = value

        for seed, strength in seeds.items():
            if strength <= 0:
                continue
            visited = {seed}
            queue = deque([(seed, 0)])
            while queue:
                node, hops = queue.popleft()
                if hops >= max_hops:
                    continue
                for nb in sorted(index.neighbors(node)):
                    if nb in visited:
                        continue
                    visited.add(nb)
                    offer(nb, strength * decay[hops])
                    queue.append((nb, hops + 1))
            for partner in model.affine_partners(seed):
                if partner != seed and partner in index:
                    offer(partner, strength * affine_decay)

        return proximity


def _keyword_match(terms: frozenset[str], content_terms: frozenset[str]) -> float:
    if not terms:
        return 0.0
    return len(terms & content_terms) / len(terms)


def _name_match(path: str, terms: frozenset[str], text: str) -> float:
    p = PurePosixPath(path)
    lowered = text.lower()
    if p.name.lower() in lowered or path.lower() in lowered:
        return 1.0
    dotted = str(p.with_suffix("")).replace("/", ".").lower()
    if "." in dotted and dotted in lowered:
        return 1.0
    if not terms:
        return 0.0

    stem_tokens = set(tokenize(p.stem))
    dir_tokens = set(tokenize(str(p.parent))) if str(p.parent) != "." else set()
    stem_hit = len(stem_tokens & terms) / len(stem_tokens) if stem_tokens else 0.0
    if not dir_tokens:
        return stem_hit
    dir_hit = len(dir_tokens & terms) / len(dir_tokens)
    return min(1.0, stem_hit * 0.7 + dir_hit * 0.3)


def _recency(artifact: Artifact, now: float, half_life_days: float) -> float:
    age_days = max(0.0, (now - artifact.mtime) / _SECONDS_PER_DAY)
    if half_life_days <= 0:
        return 1.0 if age_days == 0 else 0.0
    return 0.5 ** (age_days / half_life_days)
