"""ctxpack - budgeted, session-aware context retrieval for coding assistants."""

__version__ = "0.1.0"

from ctxpack.engine import ContextEngine

__all__ = ["ContextEngine", "__version__"]
