"""Pytest configuration and fixtures."""

import os
import tempfile
from typing import Any, Dict, List, Optional

import pytest

from automation_engine.core.executor_registry import create_default_registry
from automation_engine.core.graph_store import GraphStore
from automation_engine.core.lifecycle import ExecutionLifecycleManager
from automation_engine.core.traversal import TraversalEngine
from automation_engine.models.core import WorkflowGraph
from automation_engine.steps.gateway import SimulatedGateway
from automation_engine.storage.database import create_tables, init_database, reset_database_engine


class RecordingGateway(SimulatedGateway):
    """Simulated gateway that remembers every side effect it was asked for."""

    def __init__(self):
        self.calls: List[tuple] = []

    def create_record(self, table, values):
        self.calls.append(("create_record", table, values))
        return super().create_record(table, values)

    def update_record(self, table, record_id, values):
        self.calls.append(("update_record", table, record_id, values))
        return super().update_record(table, record_id, values)

    def delete_record(self, table, record_id):
        self.calls.append(("delete_record", table, record_id))
        return super().delete_record(table, record_id)

    def send_email(self, to, subject, body):
        self.calls.append(("send_email", to, subject))
        return super().send_email(to, subject, body)

    def call_external_api(self, url, method, payload=None, headers=None):
        self.calls.append(("external_api", method, url))
        return super().call_external_api(url, method, payload, headers)


def editor_node(node_id: str, node_type: str, subtype: str,
                configuration: Optional[Dict[str, Any]] = None, label: Optional[str] = None) -> Dict[str, Any]:
    """A node as the workflow editor stores it."""
    return {
        "id": node_id,
        "type": node_type,
        "position": {"x": 0, "y": 0},
        "data": {
            "label": label or node_id,
            "nodeType": node_type,
            "nodeSubtype": subtype,
            "configuration": configuration or {},
        },
    }


def editor_edge(source: str, target: str, handle: Optional[str] = None) -> Dict[str, Any]:
    edge = {"id": f"{source}-{target}", "source": source, "target": target}
    if handle is not None:
        edge["sourceHandle"] = handle
    return edge


def build_graph(nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]]) -> WorkflowGraph:
    return WorkflowGraph.from_editor_payload({"nodes": nodes, "edges": edges})


def branching_payload(email_to: str = "ops@example.com") -> Dict[str, Any]:
    """Trigger -> field comparison with true/false branches to two actions."""
    return {
        "nodes": [
            editor_node("T1", "trigger", "manual", label="Start"),
            editor_node("C1", "condition", "field_comparison",
                        {"field": "status", "operator": "equals", "value": "approved"}, label="Approved?"),
            editor_node("A1", "action", "send_email",
                        {"to": email_to, "subject": "Approved", "body": "Request approved"}, label="Notify"),
            editor_node("A2", "action", "create_record",
                        {"table": "escalations", "values": {"reason": "rejected"}}, label="Escalate"),
        ],
        "edges": [
            editor_edge("T1", "C1"),
            editor_edge("C1", "A1", "true"),
            editor_edge("C1", "A2", "false"),
        ],
    }


@pytest.fixture
def temp_db():
    """Point the storage layer at a fresh temporary SQLite database."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    init_database(f"sqlite:///{db_path}")
    create_tables()

    yield db_path

    reset_database_engine()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def registry(gateway):
    return create_default_registry(gateway)


@pytest.fixture
def traversal_engine(registry):
    return TraversalEngine(registry)


@pytest.fixture
def graph_store(temp_db):
    return GraphStore()


@pytest.fixture
def lifecycle(graph_store, traversal_engine):
    manager = ExecutionLifecycleManager(graph_store, traversal_engine, max_concurrent_executions=2)
    yield manager
    manager.shutdown(wait=True, cancel_running=True)


@pytest.fixture
def branching_workflow(graph_store):
    """A stored workflow whose condition takes the true branch for status=approved."""
    return graph_store.create_workflow(
        "Approval notification",
        build_graph(**branching_payload()),
        tenant_id="school-1",
    )
