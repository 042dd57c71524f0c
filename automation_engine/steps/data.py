"""Data transform node executors. These are pure and have no side effects."""

from typing import Any, Dict, List, Literal, Union
from pydantic import BaseModel, Field

from ..core.exceptions import StepExecutionError
from ..models.core import StepInput
from .base import parse_config, to_number


class FieldMappingConfig(BaseModel):
    mappings: Dict[str, str] = Field(default_factory=dict)


class CalculationConfig(BaseModel):
    operation: Literal["add", "subtract", "multiply", "divide", "average", "min", "max"]
    operands: List[Union[float, int, str]] = Field(..., min_length=1)


class DataLookupConfig(BaseModel):
    field: str = Field(..., min_length=1)
    default: Any = None


def map_fields(step: StepInput) -> Dict[str, Any]:
    """Copy source fields into a new dict under target names."""
    config = parse_config(FieldMappingConfig, step)
    fields = {target: step.resolve_field(source) for target, source in config.mappings.items()}
    missing = sorted(source for source in config.mappings.values() if not step.has_field(source))
    return {"data": "field_mapping", "mapped": True, "fields": fields, "missing": missing}


def _operand(value: Any, step: StepInput) -> float:
    if isinstance(value, str) and step.has_field(value):
        return to_number(step.resolve_field(value), f"Field '{value}'", step)
    return to_number(value, "Operand", step)


def calculate(step: StepInput) -> Dict[str, Any]:
    """Apply an arithmetic operation to numeric literals or field values."""
    config = parse_config(CalculationConfig, step)
    values = [_operand(operand, step) for operand in config.operands]
    operation = config.operation

    if operation == "add":
        result = sum(values)
    elif operation == "multiply":
        result = 1.0
        for value in values:
            result *= value
    elif operation == "average":
        result = sum(values) / len(values)
    elif operation == "min":
        result = min(values)
    elif operation == "max":
        result = max(values)
    else:
        result = values[0]
        for value in values[1:]:
            if operation == "subtract":
                result -= value
            elif value == 0:
                raise StepExecutionError("Division by zero", node_id=step.node.id)
            else:
                result /= value

    if float(result).is_integer():
        result = int(result)
    return {"data": "calculation", "operation": operation, "result": result}


def lookup_value(step: StepInput) -> Dict[str, Any]:
    """Read one field from the upstream result or trigger payload."""
    config = parse_config(DataLookupConfig, step)
    found = step.has_field(config.field)
    value = step.resolve_field(config.field) if found else config.default
    return {"data": "data_lookup", "field": config.field, "found": found, "value": value}
