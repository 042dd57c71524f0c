"""Data models for the automation engine."""

from .core import (
    NodeCategory,
    TriggerSubtype,
    ConditionSubtype,
    ActionSubtype,
    DataSubtype,
    KNOWN_SUBTYPES,
    TRUE_HANDLE,
    FALSE_HANDLE,
    ExecutionStatusEnum,
    LogPhase,
    ValidationResult,
    NodeDefinition,
    EdgeDefinition,
    WorkflowGraph,
    WorkflowDefinition,
    WorkflowSummary,
    ExecutionLogEntry,
    Execution,
    ExecutionScope,
    StepInput,
)

__all__ = [
    "NodeCategory",
    "TriggerSubtype",
    "ConditionSubtype",
    "ActionSubtype",
    "DataSubtype",
    "KNOWN_SUBTYPES",
    "TRUE_HANDLE",
    "FALSE_HANDLE",
    "ExecutionStatusEnum",
    "LogPhase",
    "ValidationResult",
    "NodeDefinition",
    "EdgeDefinition",
    "WorkflowGraph",
    "WorkflowDefinition",
    "WorkflowSummary",
    "ExecutionLogEntry",
    "Execution",
    "ExecutionScope",
    "StepInput",
]
