"""Built-in step executors."""

from functools import partial, update_wrapper
from typing import Optional

from ..models.core import (
    ActionSubtype,
    ConditionSubtype,
    DataSubtype,
    NodeCategory,
    TriggerSubtype,
)
from . import actions, conditions, data, triggers
from .gateway import SideEffectGateway, SimulatedGateway

__all__ = [
    "SideEffectGateway",
    "SimulatedGateway",
    "register_builtin_executors",
]

ACTION_EXECUTORS = {
    ActionSubtype.CREATE_RECORD: actions.create_record,
    ActionSubtype.UPDATE_RECORD: actions.update_record,
    ActionSubtype.DELETE_RECORD: actions.delete_record,
    ActionSubtype.SEND_EMAIL: actions.send_email,
    ActionSubtype.EXTERNAL_API: actions.call_external_api,
}

CONDITION_EXECUTORS = {
    ConditionSubtype.FIELD_COMPARISON: conditions.evaluate_field_comparison,
    ConditionSubtype.DATETIME_CONDITION: conditions.evaluate_datetime_condition,
    ConditionSubtype.ROLE_CHECK: conditions.evaluate_role_check,
}

DATA_EXECUTORS = {
    DataSubtype.FIELD_MAPPING: data.map_fields,
    DataSubtype.CALCULATION: data.calculate,
    DataSubtype.DATA_LOOKUP: data.lookup_value,
}


def _describe(func) -> str:
    return (func.__doc__ or "").strip().split("\n")[0]


def register_builtin_executors(registry, gateway: Optional[SideEffectGateway] = None) -> None:
    """Register an executor for every built-in (category, subtype) pair."""
    gateway = gateway or SimulatedGateway()

    for subtype in TriggerSubtype:
        registry.register(NodeCategory.TRIGGER.value, subtype.value, triggers.activate_trigger,
                          _describe(triggers.activate_trigger))

    for subtype, func in CONDITION_EXECUTORS.items():
        registry.register(NodeCategory.CONDITION.value, subtype.value, func, _describe(func))

    for subtype, func in ACTION_EXECUTORS.items():
        bound = update_wrapper(partial(func, gateway=gateway), func)
        registry.register(NodeCategory.ACTION.value, subtype.value, bound, _describe(func))

    for subtype, func in DATA_EXECUTORS.items():
        registry.register(NodeCategory.DATA.value, subtype.value, func, _describe(func))
