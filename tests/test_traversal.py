"""Tests for the traversal engine."""

import time
import pytest

from automation_engine.core.exceptions import (
    CycleDetectedError,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    NoTriggerNodeError,
    StepExecutionError,
    TraversalLimitError,
    UnknownNodeSubtypeError,
)
from automation_engine.core.traversal import CancellationToken, TraversalEngine
from automation_engine.models.core import ExecutionStatusEnum, LogPhase

from conftest import branching_payload, build_graph, editor_edge, editor_node


def visits(result):
    return [(entry.node_id, entry.phase.value) for entry in result.log]


def lookup(node_id):
    return editor_node(node_id, "data", "data_lookup", {"field": "status"})


def chain_graph(length):
    """T1 -> D1 -> D2 -> ... -> D<length>."""
    nodes = [editor_node("T1", "trigger", "manual")] + [lookup(f"D{i}") for i in range(1, length + 1)]
    ids = [node["id"] for node in nodes]
    edges = [editor_edge(source, target) for source, target in zip(ids, ids[1:])]
    return build_graph(nodes, edges)


class TestBranching:
    """Condition handles decide which chains run."""

    def test_true_branch_runs_only_true_chain(self, traversal_engine, gateway):
        graph = build_graph(**branching_payload())
        result = traversal_engine.run(graph, "manual", {"status": "approved"}, execution_id="exec-1")

        assert result.status == ExecutionStatusEnum.COMPLETED
        assert result.error is None
        assert visits(result) == [
            ("T1", "started"), ("T1", "completed"),
            ("C1", "started"), ("C1", "completed"),
            ("A1", "started"), ("A1", "completed"),
        ]
        assert result.log[3].result["result"] is True
        assert gateway.calls == [("send_email", "ops@example.com", "Approved")]

    def test_false_branch_runs_only_false_chain(self, traversal_engine, gateway):
        graph = build_graph(**branching_payload())
        result = traversal_engine.run(graph, "manual", {"status": "rejected"})

        assert result.succeeded
        assert "A1" not in {entry.node_id for entry in result.log}
        assert visits(result)[-2:] == [("A2", "started"), ("A2", "completed")]
        assert gateway.calls == [("create_record", "escalations", {"reason": "rejected"})]

    def test_unlabelled_condition_edge_is_always_followed(self, traversal_engine):
        payload = branching_payload()
        payload["nodes"].append(lookup("D1"))
        payload["edges"].append(editor_edge("C1", "D1"))
        graph = build_graph(**payload)

        for status, branch in (("approved", "A1"), ("rejected", "A2")):
            result = traversal_engine.run(graph, "manual", {"status": status})
            executed = [node_id for node_id, phase in visits(result) if phase == "completed"]
            assert executed == ["T1", "C1", branch, "D1"]

    def test_unknown_handle_is_always_followed(self, traversal_engine):
        payload = branching_payload()
        payload["nodes"].append(lookup("D1"))
        payload["edges"].append(editor_edge("C1", "D1", "maybe"))

        result = traversal_engine.run(build_graph(**payload), "manual", {"status": "approved"})
        assert ("D1", "completed") in visits(result)

    @pytest.mark.parametrize("outcome", [{"note": "no verdict"}, {"result": "false"}, {"result": 1}])
    def test_non_boolean_result_follows_no_labelled_branch(self, registry, outcome):
        registry.register("condition", "custom_check", lambda step: outcome)
        graph = build_graph(
            [
                editor_node("T1", "trigger", "manual"),
                editor_node("C1", "condition", "custom_check"),
                lookup("D1"),
                lookup("D2"),
                lookup("D3"),
            ],
            [
                editor_edge("T1", "C1"),
                editor_edge("C1", "D1", "true"),
                editor_edge("C1", "D2", "false"),
                editor_edge("C1", "D3"),
            ],
        )
        result = TraversalEngine(registry).run(graph)

        assert result.succeeded
        executed = [node_id for node_id, phase in visits(result) if phase == "completed"]
        assert executed == ["T1", "C1", "D3"]

    def test_started_entry_carries_node_details(self, traversal_engine):
        result = traversal_engine.run(build_graph(**branching_payload()), "manual", {"status": "approved"})
        started = result.log[2]

        assert started.phase == LogPhase.STARTED
        assert started.node_category == "condition"
        assert started.node_subtype == "field_comparison"
        assert started.message == "Executing Approved?"

    def test_upstream_result_is_passed_downstream(self, registry):
        seen = []
        registry.register("data", "capture", lambda step: seen.append(step.upstream) or {"captured": True})
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), editor_node("D1", "data", "capture")],
            [editor_edge("T1", "D1")],
        )

        TraversalEngine(registry).run(graph, "webhook", {"status": "new"})

        assert seen[0]["triggered"] is True
        assert seen[0]["trigger_type"] == "webhook"

    def test_multiple_triggers_run_in_node_order(self, traversal_engine):
        graph = build_graph(
            [
                editor_node("T2", "trigger", "schedule"),
                lookup("D2"),
                editor_node("T1", "trigger", "manual"),
                lookup("D1"),
            ],
            [editor_edge("T1", "D1"), editor_edge("T2", "D2")],
        )
        result = traversal_engine.run(graph)

        executed = [node_id for node_id, phase in visits(result) if phase == "completed"]
        assert executed == ["T2", "D2", "T1", "D1"]

    def test_runs_are_deterministic(self, traversal_engine):
        graph = build_graph(**branching_payload())
        first = traversal_engine.run(graph, "manual", {"status": "approved"})
        second = traversal_engine.run(graph, "manual", {"status": "approved"})

        assert visits(first) == visits(second)
        assert [e.result for e in first.log] == [e.result for e in second.log]


class TestFailures:
    """Fail-fast behaviour."""

    def test_failing_action_aborts_run(self, traversal_engine, gateway):
        graph = build_graph(**branching_payload(email_to="not-an-email"))
        result = traversal_engine.run(graph, "manual", {"status": "approved"})

        assert result.status == ExecutionStatusEnum.FAILED
        assert isinstance(result.error, StepExecutionError)
        assert result.error_message == "recipient invalid"
        assert visits(result)[-2:] == [("A1", "started"), ("A1", "failed")]
        assert result.log[-1].error == "recipient invalid"
        assert gateway.calls == []

    def test_nothing_downstream_of_failure_runs(self, registry):
        def explode(step):
            raise StepExecutionError("bad data", node_id=step.node.id)

        registry.register("data", "explode", explode)
        graph = build_graph(
            [
                editor_node("T1", "trigger", "manual"),
                editor_node("D1", "data", "explode"),
                lookup("D2"),
                editor_node("T2", "trigger", "manual"),
            ],
            [editor_edge("T1", "D1"), editor_edge("D1", "D2")],
        )
        result = TraversalEngine(registry).run(graph)

        assert result.error_message == "bad data"
        node_ids = {entry.node_id for entry in result.log}
        assert "D2" not in node_ids
        assert "T2" not in node_ids

    def test_failed_run_keeps_log_written_so_far(self, traversal_engine):
        ok = traversal_engine.run(build_graph(**branching_payload()), "manual", {"status": "approved"})
        failed = traversal_engine.run(
            build_graph(**branching_payload(email_to="bad")), "manual", {"status": "approved"}
        )

        assert visits(failed)[:5] == visits(ok)[:5]
        assert len(failed.log) == len(ok.log)

    def test_unexpected_exception_is_wrapped(self, registry):
        def explode(step):
            raise RuntimeError("boom")

        registry.register("data", "explode", explode)
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), editor_node("D1", "data", "explode")],
            [editor_edge("T1", "D1")],
        )
        result = TraversalEngine(registry).run(graph, execution_id="exec-9")

        assert isinstance(result.error, StepExecutionError)
        assert isinstance(result.error.__cause__, RuntimeError)
        assert result.error.context == {"node_id": "D1", "execution_id": "exec-9"}
        assert result.log[-1].error == "boom"

    def test_unknown_subtype_fails_at_dispatch(self, traversal_engine):
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), editor_node("X1", "action", "teleport")],
            [editor_edge("T1", "X1")],
        )
        result = traversal_engine.run(graph)

        assert isinstance(result.error, UnknownNodeSubtypeError)
        assert visits(result)[-2:] == [("X1", "started"), ("X1", "failed")]
        assert result.log[-1].error == "Unknown action subtype: teleport"

    def test_unknown_category_fails_at_dispatch(self, traversal_engine):
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), editor_node("X1", "robot", "dance")],
            [editor_edge("T1", "X1")],
        )
        result = traversal_engine.run(graph)

        assert result.error_message == "Unknown node type: robot"

    def test_non_dict_results_are_normalized(self, registry):
        registry.register("data", "number", lambda step: 5)
        registry.register("data", "nothing", lambda step: None)
        graph = build_graph(
            [
                editor_node("T1", "trigger", "manual"),
                editor_node("D1", "data", "number"),
                editor_node("D2", "data", "nothing"),
            ],
            [editor_edge("T1", "D1"), editor_edge("D1", "D2")],
        )
        result = TraversalEngine(registry).run(graph)

        completed = [entry.result for entry in result.log if entry.phase == LogPhase.COMPLETED]
        assert completed[1:] == [{"value": 5}, {}]


class TestGuards:
    """Cycles, limits, deadlines and cancellation."""

    def test_no_trigger_raises_before_any_executor(self, traversal_engine, gateway):
        graph = build_graph(
            [editor_node("A1", "action", "send_email", {"to": "ops@example.com"})], []
        )

        with pytest.raises(NoTriggerNodeError):
            traversal_engine.run(graph, workflow_id="wf-1")
        assert gateway.calls == []

    def test_cycle_fails_the_run(self, traversal_engine):
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), lookup("D1"), lookup("D2")],
            [editor_edge("T1", "D1"), editor_edge("D1", "D2"), editor_edge("D2", "D1")],
        )
        result = traversal_engine.run(graph)

        assert result.status == ExecutionStatusEnum.FAILED
        assert isinstance(result.error, CycleDetectedError)
        assert result.error.message == "Cycle detected: D1 -> D2 -> D1"
        assert not any(entry.phase == LogPhase.FAILED for entry in result.log)

    def test_reconverging_node_runs_once_by_default(self, traversal_engine):
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), lookup("D1"), lookup("D2"), lookup("D3")],
            [editor_edge("T1", "D1"), editor_edge("T1", "D2"), editor_edge("D1", "D3"), editor_edge("D2", "D3")],
        )
        result = traversal_engine.run(graph)

        assert result.succeeded
        executed = [node_id for node_id, phase in visits(result) if phase == "completed"]
        assert executed == ["T1", "D1", "D3", "D2"]

    def test_reconverging_node_replays_when_enabled(self, registry):
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), lookup("D1"), lookup("D2"), lookup("D3")],
            [editor_edge("T1", "D1"), editor_edge("T1", "D2"), editor_edge("D1", "D3"), editor_edge("D2", "D3")],
        )
        result = TraversalEngine(registry, replay_reconverging_nodes=True).run(graph)

        executed = [node_id for node_id, phase in visits(result) if phase == "completed"]
        assert executed == ["T1", "D1", "D3", "D2", "D3"]

    def test_depth_limit(self, registry):
        result = TraversalEngine(registry, max_traversal_depth=3).run(chain_graph(5))

        assert isinstance(result.error, TraversalLimitError)
        assert "depth" in result.error.message
        executed = [node_id for node_id, phase in visits(result) if phase == "completed"]
        assert executed == ["T1", "D1", "D2"]
        assert "D3" not in {entry.node_id for entry in result.log}

    def test_node_execution_budget(self, registry):
        result = TraversalEngine(registry, max_node_executions=2).run(chain_graph(3))

        assert isinstance(result.error, TraversalLimitError)
        assert result.error_message == "Maximum of 2 node executions exceeded"
        assert len(result.log) == 4

    def test_skipped_reconvergence_does_not_count_against_budget(self, registry):
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), lookup("D1"), lookup("D2")],
            [editor_edge("T1", "D1"), editor_edge("D1", "D2"), editor_edge("T1", "D2")],
        )
        result = TraversalEngine(registry, max_node_executions=3).run(graph)

        assert result.succeeded, result.error_message
        executed = [node_id for node_id, phase in visits(result) if phase == "completed"]
        assert executed == ["T1", "D1", "D2"]

    def test_deadline(self, registry):
        def slow(step):
            time.sleep(0.2)
            return {"slept": True}

        registry.register("data", "slow", slow)
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), editor_node("D1", "data", "slow"), lookup("D2")],
            [editor_edge("T1", "D1"), editor_edge("D1", "D2")],
        )
        result = TraversalEngine(registry, execution_timeout=0.05).run(graph)

        assert isinstance(result.error, ExecutionTimeoutError)
        assert result.status == ExecutionStatusEnum.FAILED
        assert ("D1", "completed") in visits(result)
        assert "D2" not in {entry.node_id for entry in result.log}

    def test_no_deadline_when_timeout_disabled(self, registry):
        result = TraversalEngine(registry, execution_timeout=None).run(chain_graph(2))
        assert result.succeeded

    def test_pre_cancelled_token(self, traversal_engine, gateway):
        token = CancellationToken()
        token.cancel()

        result = traversal_engine.run(build_graph(**branching_payload()), "manual",
                                      {"status": "approved"}, token=token)

        assert result.status == ExecutionStatusEnum.CANCELLED
        assert isinstance(result.error, ExecutionCancelledError)
        assert result.error_message == "Cancelled by user"
        assert result.log == []
        assert gateway.calls == []

    def test_cancel_between_nodes(self, registry):
        token = CancellationToken()

        def cancel_run(step):
            token.cancel("Stopped by operator")
            return {"cancelled": True}

        registry.register("data", "cancel", cancel_run)
        graph = build_graph(
            [editor_node("T1", "trigger", "manual"), editor_node("D1", "data", "cancel"), lookup("D2")],
            [editor_edge("T1", "D1"), editor_edge("D1", "D2")],
        )
        result = TraversalEngine(registry).run(graph, token=token)

        assert result.status == ExecutionStatusEnum.CANCELLED
        assert result.error_message == "Stopped by operator"
        assert visits(result)[-1] == ("D1", "completed")
