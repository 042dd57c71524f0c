"""Trigger node executors."""

from typing import Any, Dict

from ..models.core import StepInput
from .base import utc_iso


def activate_trigger(step: StepInput) -> Dict[str, Any]:
    """Mark a trigger as activated; triggers are entry points and never fail."""
    return {
        "triggered": True,
        "trigger": step.node.subtype,
        "trigger_type": step.trigger_type,
        "timestamp": utc_iso(step.now),
    }
