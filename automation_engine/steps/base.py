"""Helpers shared by the built-in step executors."""

from datetime import datetime, timezone
from typing import Any, Type, TypeVar
from pydantic import BaseModel, ValidationError

from ..core.exceptions import StepExecutionError
from ..models.core import StepInput

ConfigT = TypeVar("ConfigT", bound=BaseModel)


def parse_config(model: Type[ConfigT], step: StepInput) -> ConfigT:
    """Validate a node's configuration against its subtype's config model."""
    try:
        return model.model_validate(step.config)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'configuration'}: {error['msg']}"
            for error in e.errors()
        )
        raise StepExecutionError(
            f"Invalid configuration for {step.node.subtype}: {problems}",
            node_id=step.node.id,
        )


def to_number(value: Any, what: str, step: StepInput) -> float:
    """Coerce a value to float or fail the step."""
    if isinstance(value, bool):
        raise StepExecutionError(f"{what} is not numeric: {value!r}", node_id=step.node.id)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise StepExecutionError(f"{what} is not numeric: {value!r}", node_id=step.node.id)


def parse_datetime(value: Any, what: str, step: StepInput) -> datetime:
    """Parse an ISO-8601 value into a naive UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise StepExecutionError(f"{what} is not an ISO-8601 date/time: {value!r}", node_id=step.node.id)
    else:
        raise StepExecutionError(f"{what} is not an ISO-8601 date/time: {value!r}", node_id=step.node.id)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def utc_iso(moment: datetime) -> str:
    return moment.isoformat()
