"""Budgeted packing.

Packs relevance-scored artifacts into a tiered, budget-bounded profile.

Usage:
    from ctxpack.packing import BudgetPacker

    packer = BudgetPacker(config)
    profile = packer.pack(scorer.score_all(index, task), index, task, budget=8000)
    print(profile.render())
"""

from ctxpack.packing.compression import compress
from ctxpack.packing.packer import BudgetPacker

__all__ = ["BudgetPacker", "compress"]
