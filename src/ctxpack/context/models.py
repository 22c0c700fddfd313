"""Data models for budgeted context profiles."""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TaskType(str, Enum):
    """Kind of work a task descriptor asks for."""

    DEBUGGING = "debugging"
    FEATURE = "feature"
    REFACTOR = "refactor"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    GENERAL = "general"


class Tier(str, Enum):
    """Inclusion depth of an artifact in a context profile."""

    HIGH = "high"  # Full content
    MEDIUM = "medium"  # Compressed: signatures/summaries only
    LOW = "low"  # Path-only reference
    EXCLUDED = "excluded"


class TaskDescriptor(BaseModel):
    """Free-text task plus the derived task type and search terms."""

    model_config = ConfigDict(frozen=True)

    text: str
    task_type: TaskType = TaskType.GENERAL
    terms: tuple[str, ...] = ()
    focus_files: tuple[str, ...] = ()


class ProfileEntry(BaseModel):
    """A single artifact's placement in a context profile."""

    model_config = ConfigDict(frozen=True)

    path: str
    kind: str
    tier: Tier
    relevance_score: float = Field(ge=0.0, le=1.0)
    features: dict[str, float] = Field(default_factory=dict)
    size: int = 0  # Tokens charged against the budget
    full_size: int = 0  # Tokens of the uncompressed artifact
    content: str = ""  # Full text (high), compressed text (medium), "" otherwise
    reason: str = ""
    carried_over: bool = False

    @property
    def reference(self) -> str:
        return f"{self.path} ({self.kind}, ~{self.full_size} tokens)"


class ContextProfile(BaseModel):
    """The bounded, tiered working set produced for one task."""

    model_config = ConfigDict(frozen=True)

    task: TaskDescriptor
    entries: tuple[ProfileEntry, ...] = ()
    total_size: int = 0
    budget: int = 0
    index_complete: bool = True
    created_at: float = Field(default_factory=time.time)

    @property
    def included(self) -> list[ProfileEntry]:
        return [e for e in self.entries if e.tier != Tier.EXCLUDED]

    @property
    def excluded(self) -> list[tuple[str, str]]:
        """(path, reason) for every excluded artifact."""
        return [(e.path, e.reason) for e in self.entries if e.tier == Tier.EXCLUDED]

    @property
    def budget_used_pct(self) -> float:
        return round(self.total_size / max(self.budget, 1) * 100, 1)

    def entry(self, path: str) -> ProfileEntry | None:
        for e in self.entries:
            if e.path == path:
                return e
        return None

    def tier_of(self, path: str) -> Tier | None:
        e = self.entry(path)
        return e.tier if e else None

    def by_tier(self, tier: Tier) -> list[ProfileEntry]:
        return [e for e in self.entries if e.tier == tier]

    def render(
        self,
        include_metadata: bool = True,
        order: list[ProfileEntry] | None = None,
    ) -> str:
        """Render the profile as text for an assistant's context window.

        High-tier artifacts are emitted in full, medium-tier ones as their
        compressed form, low-tier ones as a reference list. `order` (e.g.
        BudgetPacker.dependency_order) overrides the score order.
        """
        ordered = order if order is not None else list(self.entries)
        sections: list[str] = []

        if include_metadata:
            sections.append(f"# Codebase Context for: {self.task.text}")
            sections.append(
                f"# {len(self.included)} artifacts "
                f"(~{self.total_size:,} tokens, {self.budget_used_pct:.0f}% of budget)"
            )
            if not self.index_complete:
                sections.append("# WARNING: index is incomplete (cancelled or timed out)")
            sections.append("")

        for tier in (Tier.HIGH, Tier.MEDIUM):
            for e in (x for x in ordered if x.tier == tier):
                label = "full" if tier == Tier.HIGH else "compressed"
                sections.append(f"## {e.path}")
                if include_metadata:
                    sections.append(
                        f"# [{e.kind}, {label}] relevance: {e.relevance_score:.2f}"
                        + (f" ({e.reason})" if e.reason else "")
                    )
                sections.append(e.content)
                sections.append("")

        low = self.by_tier(Tier.LOW)
        if low:
            sections.append("## Related (not loaded)")
            for e in low:
                sections.append(f"- {e.reference}")
            sections.append("")

        return "\n".join(sections)

    def summary(self) -> str:
        """Human-readable summary block for an external assistant layer."""
        lines = [
            f"Context Profile for: {self.task.text}",
            f"Task type: {self.task.task_type.value}",
            f"Tokens: {self.total_size:,} / {self.budget:,} ({self.budget_used_pct:.0f}%)",
            f"Artifacts: {len(self.included)} included, {len(self.excluded)} excluded",
        ]
        if not self.index_complete:
            lines.append("Index: INCOMPLETE")
        lines.append("")
        for tier in (Tier.HIGH, Tier.MEDIUM, Tier.LOW):
            entries = self.by_tier(tier)
            if not entries:
                continue
            lines.append(f"{tier.value.capitalize()} tier:")
            for e in entries:
                marker = "*" if e.carried_over else "-"
                lines.append(
                    f"  {marker} {e.path} ({e.kind}) score={e.relevance_score:.2f} ~{e.size}tok"
                )
        if self.excluded:
            lines.append("Excluded:")
            for path, reason in self.excluded:
                lines.append(f"  - {path}: {reason}")
        return "\n".join(lines)


class Snapshot(BaseModel):
    """An immutable saved context profile plus resume metadata."""

    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    profile: ContextProfile
    open_questions: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()
    progress_notes: tuple[str, ...] = ()
    created_at: float = Field(default_factory=time.time)


class TokenEstimator:
    """Estimate token counts. The single size unit used everywhere."""

    # Rough heuristic: 1 token ≈ 4 characters
    CHARS_PER_TOKEN = 4.0

    @classmethod
    def estimate(cls, text: str) -> int:
        """Estimate token count for a string."""
        return max(1, int(len(text) / cls.CHARS_PER_TOKEN))
