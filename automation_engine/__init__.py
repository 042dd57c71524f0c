"""Workflow automation engine: runs editor-built trigger/condition/action graphs."""

__version__ = "1.0.0"
