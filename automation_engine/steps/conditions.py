"""Condition node executors.

Every condition returns a dict with the subtype under ``condition`` and a
boolean under ``result``; the traversal engine only looks at ``result``.
"""

from typing import Any, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, Field, field_validator

from ..core.exceptions import StepExecutionError
from ..models.core import StepInput
from .base import parse_config, parse_datetime, to_number

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class FieldComparisonConfig(BaseModel):
    field: str = Field(..., min_length=1)
    operator: Literal["equals", "not_equals", "greater_than", "less_than", "contains"] = "equals"
    value: Any = None


class DateTimeConditionConfig(BaseModel):
    field: Optional[str] = None
    operator: Literal["before", "after", "on_date", "weekday_in", "between_hours"] = "after"
    value: Any = None


class RoleCheckConfig(BaseModel):
    roles: List[str] = Field(..., min_length=1)
    field: str = "role"

    @field_validator("roles")
    @classmethod
    def normalize_roles(cls, roles):
        return [role.strip().lower() for role in roles if role and role.strip()]


def _loose_equals(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    if isinstance(actual, bool) or isinstance(expected, bool):
        return str(actual).lower() == str(expected).lower()
    try:
        return float(actual) == float(expected)
    except (TypeError, ValueError):
        pass
    if isinstance(actual, str) or isinstance(expected, str):
        return str(actual) == str(expected)
    return False


def _contains(actual: Any, expected: Any, step: StepInput) -> bool:
    if actual is None:
        return False
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, (list, tuple, set)):
        return any(_loose_equals(item, expected) for item in actual)
    if isinstance(actual, dict):
        return str(expected) in actual
    raise StepExecutionError(
        f"Field cannot be searched with 'contains': {type(actual).__name__}",
        node_id=step.node.id,
    )


def evaluate_field_comparison(step: StepInput) -> Dict[str, Any]:
    """Compare a payload field against a configured value."""
    config = parse_config(FieldComparisonConfig, step)
    actual = step.resolve_field(config.field)

    if config.operator == "equals":
        result = _loose_equals(actual, config.value)
    elif config.operator == "not_equals":
        result = not _loose_equals(actual, config.value)
    elif config.operator == "contains":
        result = _contains(actual, config.value, step)
    else:
        left = to_number(actual, f"Field '{config.field}'", step)
        right = to_number(config.value, "Comparison value", step)
        result = left > right if config.operator == "greater_than" else left < right

    return {
        "condition": "field_comparison",
        "field": config.field,
        "operator": config.operator,
        "actual": actual,
        "expected": config.value,
        "result": result,
    }


def _weekday_numbers(value: Any, step: StepInput) -> List[int]:
    items = value if isinstance(value, (list, tuple)) else [value]
    numbers = []
    for item in items:
        if isinstance(item, int) and not isinstance(item, bool) and 0 <= item <= 6:
            numbers.append(item)
        elif isinstance(item, str) and item.strip().lower() in WEEKDAYS:
            numbers.append(WEEKDAYS.index(item.strip().lower()))
        else:
            raise StepExecutionError(f"Invalid weekday: {item!r}", node_id=step.node.id)
    return numbers


def _hour_window(value: Any, step: StepInput) -> Tuple[int, int]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise StepExecutionError("between_hours expects [start_hour, end_hour]", node_id=step.node.id)
    start, end = (int(to_number(hour, "Hour", step)) for hour in value)
    if not (0 <= start <= 24 and 0 <= end <= 24):
        raise StepExecutionError(f"Hours must be within 0-24: {value!r}", node_id=step.node.id)
    return start, end


def evaluate_datetime_condition(step: StepInput) -> Dict[str, Any]:
    """Check a date/time (a payload field or the run time) against the configuration."""
    config = parse_config(DateTimeConditionConfig, step)

    if config.field:
        raw = step.resolve_field(config.field)
        if raw is None:
            raise StepExecutionError(f"Field '{config.field}' is missing", node_id=step.node.id)
        moment = parse_datetime(raw, f"Field '{config.field}'", step)
    else:
        moment = parse_datetime(step.now, "Run time", step)

    if config.operator in ("before", "after"):
        reference = parse_datetime(config.value, "Comparison value", step)
        result = moment < reference if config.operator == "before" else moment > reference
    elif config.operator == "on_date":
        reference = parse_datetime(config.value, "Comparison value", step)
        result = moment.date() == reference.date()
    elif config.operator == "weekday_in":
        result = moment.weekday() in _weekday_numbers(config.value, step)
    else:
        start, end = _hour_window(config.value, step)
        if start <= end:
            result = start <= moment.hour < end
        else:
            result = moment.hour >= start or moment.hour < end

    return {
        "condition": "datetime_condition",
        "operator": config.operator,
        "evaluated_at": moment.isoformat(),
        "result": result,
    }


def _roles_of(value: Union[str, List[Any], None]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip().lower()]
    if isinstance(value, (list, tuple, set)):
        return [str(role).strip().lower() for role in value if role is not None]
    return [str(value).strip().lower()]


def evaluate_role_check(step: StepInput) -> Dict[str, Any]:
    """True when the acting user holds any of the configured roles."""
    config = parse_config(RoleCheckConfig, step)
    user_roles = _roles_of(step.resolve_field(config.field))
    matched = sorted(set(user_roles) & set(config.roles))

    return {
        "condition": "role_check",
        "required_roles": config.roles,
        "matched_roles": matched,
        "result": bool(matched),
    }
