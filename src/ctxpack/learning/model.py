"""The learning model: scorer weights plus co-access affinity."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field

from ctxpack.config import DEFAULT_WEIGHTS, FEATURES
from ctxpack.exceptions import ModelCorruption

WEIGHT_TOLERANCE = 1e-6


class LearningModel(BaseModel):
    """Versioned scorer weights and co-access statistics.

    Treated as immutable: the learner derives a new model per update and
    swaps it in whole.
    """

    model_config = ConfigDict(frozen=True)

    version: int = 0
    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    smoothed: dict[str, float] = Field(default_factory=dict)  # EMA of per-feature deltas
    co_access: dict[str, dict[str, int]] = Field(default_factory=dict)  # symmetric pair counts
    access_counts: dict[str, int] = Field(default_factory=dict)
    affinity_threshold: int = 3

    @classmethod
    def default(
        cls, weights: dict[str, float] | None = None, affinity_threshold: int = 3
    ) -> LearningModel:
        model = cls(
            weights=dict(weights or DEFAULT_WEIGHTS),
            affinity_threshold=affinity_threshold,
        )
        model.check()
        return model

    def check(self) -> None:
        """Raise ModelCorruption unless weights are a valid distribution."""
        if set(self.weights) != set(FEATURES):
            raise ModelCorruption(
                f"Weight features {sorted(self.weights)} != {sorted(FEATURES)}"
            )
        for name, w in self.weights.items():
            if not isinstance(w, (int, float)) or math.isnan(w) or not 0.0 <= w <= 1.0:
                raise ModelCorruption(f"Weight '{name}'={w!r} outside [0, 1]")
        total = sum(self.weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ModelCorruption(f"Weights sum to {total:.6f}, expected 1")

    def pair_count(self, a: str, b: str) -> int:
        return self.co_access.get(a, {}).get(b, 0)

    def affine_partners(self, path: str) -> list[str]:
        """Artifacts co-accessed with `path` more than `affinity_threshold` times."""
        return sorted(
            other
            for other, count in self.co_access.get(path, {}).items()
            if count > self.affinity_threshold
        )

    def affine_pairs(self) -> list[tuple[str, str, int]]:
        """All affine pairs as (a, b, count) with a < b."""
        pairs = []
        for a, partners in self.co_access.items():
            for b, count in partners.items():
                if a < b and count > self.affinity_threshold:
                    pairs.append((a, b, count))
        return sorted(pairs)
