from .engine import TransitionError, apply_transition, allowed_targets
from .registry import WORKFLOWS

__all__ = ["TransitionError", "WORKFLOWS", "allowed_targets", "apply_transition"]
