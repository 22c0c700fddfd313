"""Custom exceptions for ctxpack."""


class CtxPackError(Exception):
    """Base exception for all ctxpack errors."""


class ConfigError(CtxPackError):
    """Configuration-related errors."""


class IndexingError(CtxPackError):
    """The repository root could not be enumerated. No partial index exists."""


class ScanError(CtxPackError):
    """A single artifact could not be read. Skipped; indexing continues."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot scan '{path}': {reason}")
        self.path = path
        self.reason = reason


class CycleDetected(CtxPackError):
    """Dependency cycle among artifacts. Informational only."""

    def __init__(self, cycles: list):
        super().__init__(f"{len(cycles)} dependency cycle(s) detected")
        self.cycles = cycles


class BudgetOverflow(CtxPackError):
    """An artifact does not fit the remaining budget at the requested tier."""

    def __init__(self, path: str, needed: int, remaining: int):
        super().__init__(
            f"'{path}' needs {needed} tokens, only {remaining} remaining"
        )
        self.path = path
        self.needed = needed
        self.remaining = remaining


class SnapshotNotFound(CtxPackError):
    """No snapshot with the requested id exists on the session stack."""

    def __init__(self, snapshot_id: str, session_id: str = ""):
        where = f" in session '{session_id}'" if session_id else ""
        super().__init__(f"Snapshot '{snapshot_id}' not found{where}")
        self.snapshot_id = snapshot_id
        self.session_id = session_id


class ModelCorruption(CtxPackError):
    """Learning model weights are outside their valid range."""


class StateStoreError(CtxPackError):
    """Persistent state could not be read or written."""
