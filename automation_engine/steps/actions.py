"""Action node executors.

Action executors validate their configuration, resolve any field references
against the step input and hand the side effect to a SideEffectGateway.
"""

import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse
from pydantic import BaseModel, Field, field_validator

from ..core.exceptions import StepExecutionError
from ..models.core import StepInput
from .base import parse_config
from .gateway import SideEffectGateway

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


class CreateRecordConfig(BaseModel):
    table: str = Field(..., min_length=1)
    values: Dict[str, Any] = Field(default_factory=dict)


class UpdateRecordConfig(BaseModel):
    table: str = Field(..., min_length=1)
    record_id: Any
    values: Dict[str, Any] = Field(default_factory=dict)


class DeleteRecordConfig(BaseModel):
    table: str = Field(..., min_length=1)
    record_id: Any


class SendEmailConfig(BaseModel):
    to: Optional[str] = None
    subject: str = ""
    body: str = ""


class ExternalApiConfig(BaseModel):
    url: str = Field(..., min_length=1)
    method: str = "POST"
    payload: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def validate_method(cls, v):
        method = v.strip().upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"method must be one of {', '.join(ALLOWED_METHODS)}")
        return method

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        parsed = urlparse(v.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("url must be an http(s) URL")
        return v.strip()


def _reference(value: Any, step: StepInput) -> Any:
    """Resolve ``"{{path}}"`` placeholders and bare field paths."""
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("{{") and text.endswith("}}"):
            path = text[2:-2].strip()
            if not step.has_field(path):
                raise StepExecutionError(f"Field '{path}' is missing", node_id=step.node.id)
            return step.resolve_field(path)
        if step.has_field(text):
            return step.resolve_field(text)
    return value


def _resolve_values(values: Dict[str, Any], step: StepInput) -> Dict[str, Any]:
    resolved = {}
    for key, value in values.items():
        if isinstance(value, str) and value.strip().startswith("{{"):
            resolved[key] = _reference(value, step)
        else:
            resolved[key] = value
    return resolved


def create_record(step: StepInput, gateway: SideEffectGateway) -> Dict[str, Any]:
    """Create a record through the gateway."""
    config = parse_config(CreateRecordConfig, step)
    outcome = gateway.create_record(config.table, _resolve_values(config.values, step))
    return {"action": "create_record", "table": config.table, **outcome}


def update_record(step: StepInput, gateway: SideEffectGateway) -> Dict[str, Any]:
    """Update a record through the gateway."""
    config = parse_config(UpdateRecordConfig, step)
    record_id = _reference(config.record_id, step)
    if record_id is None or record_id == "":
        raise StepExecutionError("record_id is required", node_id=step.node.id)
    outcome = gateway.update_record(config.table, record_id, _resolve_values(config.values, step))
    return {"action": "update_record", "table": config.table, **outcome}


def delete_record(step: StepInput, gateway: SideEffectGateway) -> Dict[str, Any]:
    """Delete a record through the gateway."""
    config = parse_config(DeleteRecordConfig, step)
    record_id = _reference(config.record_id, step)
    if record_id is None or record_id == "":
        raise StepExecutionError("record_id is required", node_id=step.node.id)
    outcome = gateway.delete_record(config.table, record_id)
    return {"action": "delete_record", "table": config.table, **outcome}


def send_email(step: StepInput, gateway: SideEffectGateway) -> Dict[str, Any]:
    """Send an email through the gateway."""
    config = parse_config(SendEmailConfig, step)
    recipient = _reference(config.to, step) if config.to else None
    if not isinstance(recipient, str) or not EMAIL_PATTERN.match(recipient.strip()):
        raise StepExecutionError("recipient invalid", node_id=step.node.id)
    outcome = gateway.send_email(recipient.strip(), config.subject, config.body)
    return {"action": "send_email", **outcome}


def call_external_api(step: StepInput, gateway: SideEffectGateway) -> Dict[str, Any]:
    """Call an external HTTP API through the gateway."""
    config = parse_config(ExternalApiConfig, step)
    payload = _resolve_values(config.payload, step) if config.payload else None
    outcome = gateway.call_external_api(config.url, config.method, payload, config.headers or None)
    return {"action": "external_api", "url": config.url, "method": config.method, **outcome}
