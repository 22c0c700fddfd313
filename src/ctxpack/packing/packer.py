"""Budgeted packing of scored artifacts into a tiered context profile.

Greedy by score, with a fixed demotion ladder per artifact:

  1. full content fits the remaining budget          -> high
  2. compressed content (signatures/summaries) fits  -> medium
  3. a one-line path reference fits                  -> low
  4. nothing fits                                    -> excluded (reason kept)

Artifacts scoring below ``min_relevance`` skip straight to step 3. Every
tier's size is charged against the budget, so the profile total never
exceeds it. Carried-over artifacts are offered the budget first; otherwise
the order is the scorer's tie-broken ranking, which makes packing
deterministic for identical inputs.
"""

from __future__ import annotations

import logging
from typing import Iterable

import networkx as nx

from ctxpack.config import PackingConfig, ProjectConfig
from ctxpack.context.models import (
    ContextProfile,
    ProfileEntry,
    TaskDescriptor,
    Tier,
    TokenEstimator,
)
from ctxpack.exceptions import BudgetOverflow, CycleDetected
from ctxpack.index.models import CodebaseIndex
from ctxpack.packing.compression import compress
from ctxpack.scoring.scorer import ScoredArtifact

logger = logging.getLogger("ctxpack.packing")


class BudgetPacker:
    """Selects and tiers artifacts under a token budget."""

    def __init__(self, config: ProjectConfig | PackingConfig | None = None) -> None:
        if isinstance(config, ProjectConfig):
            config = config.packing
        self.config = config or PackingConfig()

    def pack(
        self,
        scored: list[ScoredArtifact],
        index: CodebaseIndex,
        task: TaskDescriptor,
        budget: int | None = None,
        carry_over: Iterable[str] = (),
    ) -> ContextProfile:
        """Pack scored artifacts into a ContextProfile.

        Args:
            scored: Scorer output; re-sorted here with the scorer's tie-break.
            index: Index providing artifact content and metadata.
            task: The task the scores were computed for.
            budget: Token budget; defaults to the configured budget.
            carry_over: Paths admitted ahead of everything else.

        Returns:
            A profile whose total size never exceeds `budget`.
        """
        budget = self.config.budget if budget is None else budget
        if budget < 0:
            raise ValueError("budget must be >= 0")

        carried = set(carry_over)
        ranked = sorted(scored, key=ScoredArtifact.sort_key)
        ordered = [s for s in ranked if s.path in carried] + [
            s for s in ranked if s.path not in carried
        ]

        used = 0
        entries: dict[str, ProfileEntry] = {}
        for item in ordered:
            entry = self._place(item, index, budget - used, item.path in carried)
            used += entry.size
            entries[item.path] = entry

        profile = ContextProfile(
            task=task,
            entries=tuple(entries[s.path] for s in ranked),
            total_size=used,
            budget=budget,
            index_complete=index.complete,
        )
        logger.debug(
            f"Packed {len(profile.included)} artifacts into {used}/{budget} tokens "
            f"({len(profile.excluded)} excluded)"
        )
        return profile

    def _place(
        self, item: ScoredArtifact, index: CodebaseIndex, remaining: int, carried: bool
    ) -> ProfileEntry:
        artifact = index.get(item.path)
        base = {
            "path": item.path,
            "kind": artifact.type.value,
            "relevance_score": item.score,
            "features": dict(item.features),
            "full_size": artifact.size,
            "carried_over": carried,
        }
        overflow: BudgetOverflow | None = None

        if item.score >= self.config.min_relevance or carried:
            content = index.content(item.path)
            try:
                size = self._charge(item.path, artifact.size, remaining)
                return ProfileEntry(
                    **base, tier=Tier.HIGH, size=size, content=content,
                    reason="carried over from previous task" if carried else "",
                )
            except BudgetOverflow as e:
                overflow = e

            compressed = compress(content, artifact.language, artifact.type)
            compressed_size = TokenEstimator.estimate(compressed)
            if compressed_size < artifact.size:
                try:
                    size = self._charge(item.path, compressed_size, remaining)
                    return ProfileEntry(
                        **base, tier=Tier.MEDIUM, size=size, content=compressed,
                        reason=f"compressed {artifact.size}->{compressed_size} tokens to fit budget",
                    )
                except BudgetOverflow as e:
                    overflow = e
            low_reason = f"reference only: {overflow}"
        else:
            low_reason = f"below relevance threshold {self.config.min_relevance}"

        reference = ProfileEntry(**base, tier=Tier.LOW).reference
        try:
            size = self._charge(item.path, TokenEstimator.estimate(reference), remaining)
            return ProfileEntry(**base, tier=Tier.LOW, size=size, reason=low_reason)
        except BudgetOverflow as e:
            return ProfileEntry(**base, tier=Tier.EXCLUDED, size=0, reason=f"{low_reason}; {e}")

    @staticmethod
    def _charge(path: str, cost: int, remaining: int) -> int:
        if cost > remaining:
            raise BudgetOverflow(path, cost, remaining)
        return cost

    # -------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------

    def dependency_order(
        self, profile: ContextProfile, index: CodebaseIndex
    ) -> list[ProfileEntry]:
        """Included entries sorted so dependencies come before dependents.

        Cycles are collapsed into strongly connected components, ordered
        internally by relevance.
        """
        included = {e.path: e for e in profile.included}
        sub = nx.DiGraph()
        sub.add_nodes_from(sorted(included))
        for path in sorted(included):
            if not index.graph.has_node(path):
                continue
            for dep in index.graph.successors(path):
                if dep in included and dep != path:
                    sub.add_edge(dep, path)

        try:
            ordered = self._topological(sub)
        except CycleDetected as e:
            logger.info(f"{e}; ordering by strongly connected components")
            ordered = self._scc_order(sub, included)
        return [included[p] for p in ordered]

    @staticmethod
    def _topological(sub: nx.DiGraph) -> list[str]:
        try:
            return list(nx.lexicographical_topological_sort(sub))
        except nx.NetworkXUnfeasible as e:
            cycles = [c for c in nx.strongly_connected_components(sub) if len(c) > 1]
            raise CycleDetected(cycles) from e

    @staticmethod
    def _scc_order(sub: nx.DiGraph, included: dict[str, ProfileEntry]) -> list[str]:
        condensed = nx.condensation(sub)
        members = condensed.graph["mapping"]
        groups: dict[int, list[str]] = {}
        for node, scc in members.items():
            groups.setdefault(scc, []).append(node)

        ordered: list[str] = []
        for scc in nx.lexicographical_topological_sort(
            condensed, key=lambda n: min(groups[n])
        ):
            ordered.extend(
                sorted(groups[scc], key=lambda p: (-included[p].relevance_score, p))
            )
        return ordered
