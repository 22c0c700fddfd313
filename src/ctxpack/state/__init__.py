"""SQLite-backed persistence for sessions and learning models."""

from ctxpack.state.store import StateStore

__all__ = ["StateStore"]
