"""Tests for the graph store: workflow definitions and execution records."""

import pytest
from datetime import datetime

from automation_engine.core.exceptions import (
    ExecutionNotFoundError,
    GraphLoadError,
    GraphValidationError,
)
from automation_engine.models.core import (
    ExecutionLogEntry,
    ExecutionScope,
    ExecutionStatusEnum,
    LogPhase,
)
from automation_engine.storage.database import get_session
from automation_engine.storage.models import WorkflowModel

from conftest import branching_payload, build_graph, editor_edge, editor_node


def entry(node_id, phase):
    return ExecutionLogEntry(timestamp=datetime.utcnow(), node_id=node_id, phase=phase)


class TestWorkflowDefinitions:
    """CRUD for stored workflows."""

    def test_create_and_get(self, graph_store):
        created = graph_store.create_workflow(
            "Approval notification",
            build_graph(**branching_payload()),
            tenant_id="school-1",
            description="Notify on approval",
            created_by="user-7",
        )

        loaded = graph_store.get_workflow(created.id)
        assert loaded.name == "Approval notification"
        assert loaded.tenant_id == "school-1"
        assert loaded.created_by == "user-7"
        assert loaded.is_active
        assert loaded.graph == build_graph(**branching_payload())
        assert [node.id for node in loaded.nodes] == ["T1", "C1", "A1", "A2"]

    def test_stored_document_uses_editor_shape(self, graph_store, branching_workflow):
        session = get_session()
        try:
            model = session.query(WorkflowModel).filter(WorkflowModel.id == branching_workflow.id).one()
            assert model.workflow_data["nodes"][0]["data"]["nodeType"] == "trigger"
            assert model.workflow_data["edges"][1]["sourceHandle"] == "true"
        finally:
            session.close()

    def test_empty_name_rejected(self, graph_store):
        with pytest.raises(GraphValidationError):
            graph_store.create_workflow("   ", build_graph(**branching_payload()))

    def test_invalid_graph_rejected(self, graph_store):
        graph = build_graph([editor_node("T1", "trigger", "manual")], [editor_edge("T1", "ghost")])

        with pytest.raises(GraphValidationError) as exc_info:
            graph_store.create_workflow("Broken", graph)
        assert "ghost" in exc_info.value.message
        assert graph_store.list_workflows() == []

    def test_warnings_do_not_block_storage(self, graph_store):
        graph = build_graph([editor_node("A1", "action", "send_email")], [])
        workflow = graph_store.create_workflow("No trigger yet", graph)
        assert graph_store.get_workflow(workflow.id).graph.trigger_nodes() == []

    def test_unvalidated_storage(self, graph_store):
        graph = build_graph([editor_node("T1", "trigger", "manual"), editor_node("X1", "robot", "dance")], [])
        workflow = graph_store.create_workflow("Draft", graph, validate=False)
        assert graph_store.get_workflow(workflow.id).graph.get_node("X1").category == "robot"

    def test_missing_workflow(self, graph_store):
        with pytest.raises(GraphLoadError) as exc_info:
            graph_store.get_workflow("does-not-exist")
        assert exc_info.value.details["not_found"] is True

    @pytest.mark.parametrize("workflow_data", [
        {"nodes": [editor_node("T1", "trigger", "manual"), editor_node("T1", "action", "send_email")]},
        {"nodes": ["T1"]},
        {"nodes": [{"id": "T1", "data": ["trigger"]}]},
        {"nodes": {"T1": {}}},
        {"nodes": [], "edges": "T1->A1"},
    ])
    def test_malformed_stored_graph(self, graph_store, workflow_data):
        session = get_session()
        try:
            session.add(WorkflowModel(
                id="wf-bad",
                name="Corrupted",
                is_active=True,
                workflow_data=workflow_data,
            ))
            session.commit()
        finally:
            session.close()

        with pytest.raises(GraphLoadError) as exc_info:
            graph_store.get_workflow("wf-bad")
        assert "malformed" in exc_info.value.message
        assert "not_found" not in exc_info.value.details

    def test_update_workflow(self, graph_store, branching_workflow):
        payload = branching_payload(email_to="dean@example.com")
        updated = graph_store.update_workflow(
            branching_workflow.id,
            name="Dean notification",
            is_active=False,
            graph=build_graph(**payload),
        )

        assert updated.name == "Dean notification"
        assert not updated.is_active
        assert updated.graph.get_node("A1").configuration["to"] == "dean@example.com"
        assert graph_store.get_workflow(branching_workflow.id).name == "Dean notification"

    def test_update_rejects_invalid_graph(self, graph_store, branching_workflow):
        graph = build_graph([editor_node("X1", "robot", "dance")], [])
        with pytest.raises(GraphValidationError):
            graph_store.update_workflow(branching_workflow.id, graph=graph)

    def test_update_missing_workflow(self, graph_store):
        with pytest.raises(GraphLoadError):
            graph_store.update_workflow("nope", name="x")

    def test_delete_workflow(self, graph_store, branching_workflow):
        execution = graph_store.create_execution(branching_workflow.id, "manual")

        assert graph_store.delete_workflow(branching_workflow.id)
        assert not graph_store.delete_workflow(branching_workflow.id)
        with pytest.raises(ExecutionNotFoundError):
            graph_store.get_execution(execution.id)

    def test_list_workflows_by_tenant(self, graph_store, branching_workflow):
        graph_store.create_workflow("Other school", build_graph(**branching_payload()), tenant_id="school-2")

        everything = graph_store.list_workflows()
        mine = graph_store.list_workflows(tenant_id="school-1")

        assert len(everything) == 2
        assert [summary.id for summary in mine] == [branching_workflow.id]
        assert mine[0].node_count == 4


class TestExecutionRecords:
    """Execution record writes are conditional on the record still running."""

    def test_create_execution(self, graph_store, branching_workflow):
        execution = graph_store.create_execution(branching_workflow.id, "webhook", {"status": "approved"})

        loaded = graph_store.get_execution(execution.id)
        assert loaded.status == ExecutionStatusEnum.RUNNING
        assert loaded.trigger_type == "webhook"
        assert loaded.trigger_data == {"status": "approved"}
        assert loaded.execution_log == []
        assert loaded.workflow_name == "Approval notification"
        assert loaded.completed_at is None

    def test_finalize_execution(self, graph_store, branching_workflow):
        execution = graph_store.create_execution(branching_workflow.id, "manual")
        log = [entry("T1", LogPhase.STARTED), entry("T1", LogPhase.FAILED)]

        assert graph_store.finalize_execution(execution.id, ExecutionStatusEnum.FAILED, log, "boom")

        loaded = graph_store.get_execution(execution.id)
        assert loaded.status == ExecutionStatusEnum.FAILED
        assert loaded.error_message == "boom"
        assert loaded.completed_at is not None
        assert [(e.node_id, e.phase) for e in loaded.execution_log] == [
            ("T1", LogPhase.STARTED), ("T1", LogPhase.FAILED),
        ]

    def test_terminal_record_is_not_rewritten(self, graph_store, branching_workflow):
        execution = graph_store.create_execution(branching_workflow.id, "manual")
        graph_store.finalize_execution(execution.id, ExecutionStatusEnum.COMPLETED, [])

        assert not graph_store.finalize_execution(execution.id, ExecutionStatusEnum.FAILED, [], "late")
        assert not graph_store.mark_cancelled(execution.id)
        assert graph_store.get_execution(execution.id).status == ExecutionStatusEnum.COMPLETED

    def test_cancellation_wins_over_late_finalize(self, graph_store, branching_workflow):
        execution = graph_store.create_execution(branching_workflow.id, "manual")

        assert graph_store.mark_cancelled(execution.id)
        assert not graph_store.finalize_execution(
            execution.id, ExecutionStatusEnum.COMPLETED, [entry("T1", LogPhase.STARTED)]
        )
        graph_store.attach_log(execution.id, [entry("T1", LogPhase.STARTED)])

        loaded = graph_store.get_execution(execution.id)
        assert loaded.status == ExecutionStatusEnum.CANCELLED
        assert loaded.error_message == "Cancelled by user"
        assert len(loaded.execution_log) == 1

    def test_unknown_execution(self, graph_store):
        with pytest.raises(ExecutionNotFoundError):
            graph_store.get_execution("missing")
        with pytest.raises(ExecutionNotFoundError):
            graph_store.mark_cancelled("missing")

    def test_list_executions_scoped(self, graph_store, branching_workflow):
        other = graph_store.create_workflow("Other", build_graph(**branching_payload()), tenant_id="school-2")
        first = graph_store.create_execution(branching_workflow.id, "manual")
        second = graph_store.create_execution(branching_workflow.id, "manual")
        foreign = graph_store.create_execution(other.id, "manual")
        graph_store.finalize_execution(first.id, ExecutionStatusEnum.COMPLETED, [])

        mine = graph_store.list_executions(ExecutionScope(tenant_id="school-1"))
        assert [execution.id for execution in mine] == [second.id, first.id]

        running = graph_store.list_executions(ExecutionScope(status=ExecutionStatusEnum.RUNNING))
        assert {execution.id for execution in running} == {second.id, foreign.id}

        limited = graph_store.list_executions(ExecutionScope(workflow_id=other.id, limit=1))
        assert [execution.id for execution in limited] == [foreign.id]
