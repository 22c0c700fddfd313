"""Context profile data model: tasks, tiered entries and snapshots."""

from ctxpack.context.models import (
    ContextProfile,
    ProfileEntry,
    Snapshot,
    TaskDescriptor,
    TaskType,
    Tier,
    TokenEstimator,
)

__all__ = [
    "ContextProfile",
    "ProfileEntry",
    "Snapshot",
    "TaskDescriptor",
    "TaskType",
    "Tier",
    "TokenEstimator",
]
