"""Session stacks: switching between tasks and resuming suspended ones."""

from ctxpack.session.switcher import ContextSwitcher
from ctxpack.session.triggers import Trigger, TriggerTable

__all__ = ["ContextSwitcher", "Trigger", "TriggerTable"]
