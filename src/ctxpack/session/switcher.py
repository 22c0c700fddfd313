"""Per-session context switching with a LIFO stack of snapshots.

Each session holds at most one ACTIVE profile plus a stack of SUSPENDED
snapshots. Switching away snapshots the active profile, re-scores its
artifacts against the new task and carries the relevant ones into the
new profile. Resuming pops a snapshot and restores it verbatim.

Stack mutations for one session are serialized by that session's lock;
different sessions never block each other.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from typing import Any, Callable

from ctxpack.config import ProjectConfig, SessionConfig
from ctxpack.context.models import ContextProfile, Snapshot, TaskDescriptor, Tier
from ctxpack.exceptions import SnapshotNotFound, StateStoreError
from ctxpack.index.models import CodebaseIndex
from ctxpack.learning.learner import Outcome, SessionLog
from ctxpack.packing.packer import BudgetPacker
from ctxpack.scoring.scorer import RelevanceScorer
from ctxpack.session.triggers import COMPLETED, RESUMED, SUSPENDED, SWITCHED, TriggerTable

logger = logging.getLogger("ctxpack.session")

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")


class SessionState:
    """Mutable per-session state. Only touched while ``lock`` is held."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.lock = threading.Lock()
        self.active: ContextProfile | None = None
        self.stack: list[Snapshot] = []
        self.accesses: dict[str, int] = {}
        self.loaded = False


class ContextSwitcher:
    """Manages ACTIVE and SUSPENDED context profiles per session.

    Usage:
        switcher = ContextSwitcher(lambda: index, scorer, packer)
        first = switcher.switch_to("s1", "fix the login bug")
        second = switcher.switch_to("s1", "add rate limiting")
        switcher.resume("s1", switcher.stack("s1")[-1].id)
    """

    def __init__(
        self,
        index: CodebaseIndex | Callable[[], CodebaseIndex],
        scorer: RelevanceScorer,
        packer: BudgetPacker,
        config: ProjectConfig | SessionConfig | None = None,
        store=None,
        triggers: TriggerTable | None = None,
    ) -> None:
        if isinstance(config, ProjectConfig):
            config = config.session
        self.config = config or SessionConfig()
        self._index = index if callable(index) else (lambda: index)
        self.scorer = scorer
        self.packer = packer
        self.store = store
        self.triggers = triggers or TriggerTable()
        self._sessions: dict[str, SessionState] = {}
        self._registry_lock = threading.Lock()

    # -------------------------------------------------------------------
    # Session registry
    # -------------------------------------------------------------------

    def _state(self, session_id: str) -> SessionState:
        with self._registry_lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = SessionState(session_id)
                self._sessions[session_id] = state
            return state

    def _load(self, state: SessionState) -> None:
        """Hydrate a session from the store on first use. Caller holds the lock."""
        if state.loaded:
            return
        state.loaded = True
        if self.store is None:
            return
        try:
            state.stack = self.store.load_stack(state.session_id)
            state.active = self.store.load_active(state.session_id)
        except StateStoreError as e:
            logger.warning(f"Could not load session '{state.session_id}' from store: {e}")
            return
        if state.stack or state.active:
            logger.info(f"Restored session '{state.session_id}' with {len(state.stack)} suspended snapshots")

    def sessions(self) -> list[str]:
        with self._registry_lock:
            known = set(self._sessions)
        if self.store is not None:
            try:
                known.update(self.store.session_ids())
            except StateStoreError as e:
                logger.warning(f"Could not list stored sessions: {e}")
        return sorted(known)

    def active(self, session_id: str) -> ContextProfile | None:
        state = self._state(session_id)
        with state.lock:
            self._load(state)
            return state.active

    def stack(self, session_id: str) -> list[Snapshot]:
        """Suspended snapshots, bottom of the stack first."""
        state = self._state(session_id)
        with state.lock:
            self._load(state)
            return list(state.stack)

    def depth(self, session_id: str) -> int:
        return len(self.stack(session_id))

    # -------------------------------------------------------------------
    # Switching
    # -------------------------------------------------------------------

    def switch_to(
        self,
        session_id: str,
        task: TaskDescriptor | str,
        preserve_current: bool = True,
        focus_files: list[str] | None = None,
        budget: int | None = None,
        notes: list[str] | None = None,
    ) -> ContextProfile:
        """Make a freshly packed profile for `task` the session's ACTIVE one.

        Args:
            session_id: Session whose stack is affected.
            task: Task descriptor or free text.
            preserve_current: Snapshot the outgoing ACTIVE profile onto the
                stack instead of discarding it.
            focus_files: Files the caller is currently working on.
            budget: Token budget override.
            notes: Extra progress notes stored on the snapshot.
        """
        if budget is not None and budget < 0:
            raise ValueError("budget must be >= 0")
        if isinstance(task, str):
            task = self.scorer.describe(task, focus_files)
        elif focus_files:
            task = task.model_copy(update={"focus_files": tuple(focus_files)})

        state = self._state(session_id)
        events: list[tuple[str, dict[str, Any]]] = []
        with state.lock:
            self._load(state)
            index = self._index()
            outgoing = state.active

            # A failed pack leaves the stack and ACTIVE profile as they were
            scored = self.scorer.score_all(index, task)
            carry_over = self._carry_over(outgoing, scored)
            profile = self.packer.pack(scored, index, task, budget=budget, carry_over=carry_over)

            if outgoing is not None and preserve_current:
                snapshot = self._snapshot(state, outgoing, notes)
                state.stack.append(snapshot)
                self._persist(lambda: self.store.push_snapshot(snapshot))
                events.append((SUSPENDED, {"snapshot": snapshot, "profile": outgoing}))

            state.active = profile
            state.accesses = {}
            self._persist(lambda: self.store.save_active(session_id, profile))
            events.append((SWITCHED, {"profile": profile, "carried_over": carry_over}))
            depth = len(state.stack)

        logger.info(
            f"Session '{session_id}' switched to '{task.text[:60]}' "
            f"({len(carry_over)} carried over, depth {depth})"
        )
        self._fire(session_id, events)
        return profile

    def _carry_over(self, outgoing: ContextProfile | None, scored) -> list[str]:
        if outgoing is None:
            return []
        previous = {e.path for e in outgoing.included}
        threshold = self.config.carry_over_threshold
        return [s.path for s in scored if s.path in previous and s.score >= threshold]

    def _snapshot(
        self, state: SessionState, profile: ContextProfile, notes: list[str] | None
    ) -> Snapshot:
        return Snapshot(
            id=uuid.uuid4().hex[:12],
            session_id=state.session_id,
            profile=profile,
            open_questions=tuple(_open_questions(profile.task.text)),
            next_steps=tuple(self._next_steps(profile)),
            progress_notes=tuple(_progress_notes(profile, state.accesses)) + tuple(notes or ()),
        )

    def _next_steps(self, profile: ContextProfile) -> list[str]:
        steps = []
        for entry in profile.by_tier(Tier.HIGH) + profile.by_tier(Tier.MEDIUM):
            verb = "Continue in" if entry.tier == Tier.HIGH else "Review"
            steps.append(f"{verb} {entry.path}")
        return steps[: self.config.max_next_steps]

    # -------------------------------------------------------------------
    # Resuming
    # -------------------------------------------------------------------

    def resume(self, session_id: str, snapshot_id: str) -> ContextProfile:
        """Pop the matching snapshot and restore its profile verbatim.

        The current ACTIVE profile is replaced, not snapshotted. Raises
        SnapshotNotFound, leaving the ACTIVE profile untouched, if the
        session has no such snapshot.
        """
        state = self._state(session_id)
        with state.lock:
            self._load(state)
            for i in range(len(state.stack) - 1, -1, -1):
                if state.stack[i].id == snapshot_id:
                    snapshot = state.stack.pop(i)
                    break
            else:
                raise SnapshotNotFound(snapshot_id, session_id)

            state.active = snapshot.profile
            state.accesses = {}
            self._persist(lambda: self.store.consume_snapshot(snapshot_id))
            self._persist(lambda: self.store.save_active(session_id, snapshot.profile))
            depth = len(state.stack)

        logger.info(f"Session '{session_id}' resumed snapshot {snapshot_id} (depth {depth})")
        self._fire(session_id, [(RESUMED, {"snapshot": snapshot, "profile": snapshot.profile})])
        return snapshot.profile

    def resume_latest(self, session_id: str) -> ContextProfile:
        """Resume the top of the stack."""
        stack = self.stack(session_id)
        if not stack:
            raise SnapshotNotFound("<top>", session_id)
        return self.resume(session_id, stack[-1].id)

    # -------------------------------------------------------------------
    # Usage and completion
    # -------------------------------------------------------------------

    def record_access(self, session_id: str, path: str, count: int = 1) -> None:
        """Note that the assistant used `path` while this session was ACTIVE."""
        state = self._state(session_id)
        with state.lock:
            state.accesses[path] = state.accesses.get(path, 0) + count

    def complete(
        self,
        session_id: str,
        outcome: Outcome = Outcome.COMPLETED,
        rating: float | None = None,
    ) -> SessionLog | None:
        """Close out the ACTIVE task and emit its usage log.

        Returns None if the session has no ACTIVE profile.
        """
        state = self._state(session_id)
        with state.lock:
            self._load(state)
            if state.active is None:
                logger.warning(f"Session '{session_id}' has no active profile to complete")
                return None
            log = SessionLog(
                session_id=session_id,
                profile=state.active,
                accesses=dict(state.accesses),
                outcome=outcome,
                rating=rating,
            )
            state.active = None
            state.accesses = {}
            self._persist(lambda: self.store.clear_active(session_id))

        logger.info(
            f"Session '{session_id}' {outcome.value} "
            f"({sum(log.accesses.values())} accesses over {len(log.accesses)} artifacts)"
        )
        self._fire(session_id, [(COMPLETED, {"log": log, "profile": log.profile})])
        return log

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _persist(self, write: Callable[[], Any]) -> None:
        if self.store is None:
            return
        try:
            write()
        except StateStoreError as e:
            logger.warning(f"Session state not persisted: {e}")

    def _fire(self, session_id: str, events: list[tuple[str, dict[str, Any]]]) -> None:
        for event_type, payload in events:
            self.triggers.fire(event_type, {"event": event_type, "session_id": session_id, **payload})


def _open_questions(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip().endswith("?")]


def _progress_notes(profile: ContextProfile, accesses: dict[str, int]) -> list[str]:
    notes = [
        f"Used {profile.total_size}/{profile.budget} tokens across "
        f"{len(profile.included)} artifacts"
    ]
    touched = sorted((p for p, c in accesses.items() if c > 0), key=lambda p: (-accesses[p], p))
    if touched:
        notes.append(f"Accessed {len(touched)} artifacts; most used: {', '.join(touched[:3])}")
    if not profile.index_complete:
        notes.append("Built from an incomplete index")
    return notes
