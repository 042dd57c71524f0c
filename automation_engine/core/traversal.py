"""Traversal engine that walks a workflow graph and builds its execution log."""

import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ..models.core import (
    FALSE_HANDLE,
    TRUE_HANDLE,
    EdgeDefinition,
    ExecutionLogEntry,
    ExecutionStatusEnum,
    LogPhase,
    NodeDefinition,
    StepInput,
    WorkflowGraph,
)
from .exceptions import (
    CycleDetectedError,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    NoTriggerNodeError,
    NodeDispatchError,
    StepExecutionError,
    TraversalError,
    TraversalLimitError,
    WorkflowEngineError,
)
from .executor_registry import ExecutorRegistry
from .logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation flag shared between a run and its canceller."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Cancelled by user") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, execution_id: Optional[str] = None) -> None:
        if self._event.is_set():
            raise ExecutionCancelledError(self.reason or "Cancelled by user", execution_id=execution_id)


class TraversalContext:
    """Mutable state of one traversal, threaded through the recursion."""

    def __init__(
        self,
        graph: WorkflowGraph,
        trigger_type: str,
        trigger_data: Any,
        execution_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ):
        self.graph = graph
        self.trigger_type = trigger_type
        self.trigger_data = trigger_data
        self.execution_id = execution_id
        self.token = token or CancellationToken()
        self.started_at = datetime.utcnow()
        self.deadline = time.monotonic() + timeout if timeout else None
        self.timeout = timeout

        self.log: List[ExecutionLogEntry] = []
        self.visited: Set[str] = set()
        self.path: List[str] = []
        self.node_executions = 0

    def append(self, node: NodeDefinition, phase: LogPhase, **fields) -> None:
        self.log.append(ExecutionLogEntry(
            timestamp=datetime.utcnow(),
            node_id=node.id,
            phase=phase,
            **fields
        ))


class TraversalResult:
    """Outcome of one traversal: terminal status, the log and the error if any."""

    def __init__(
        self,
        status: ExecutionStatusEnum,
        log: List[ExecutionLogEntry],
        error: Optional[WorkflowEngineError] = None,
    ):
        self.status = status
        self.log = log
        self.error = error

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatusEnum.COMPLETED


class TraversalEngine:
    """Depth-first executor of workflow graphs.

    Every trigger node starts a chain; chains run in node-list order and each
    follows outgoing edges in edge-list order. Edges leaving a condition node
    with a ``true``/``false`` handle are followed only when the condition's
    result matches; edges without a recognised handle are always followed.
    The first failing node aborts the whole run.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        max_traversal_depth: int = 100,
        max_node_executions: int = 1000,
        execution_timeout: Optional[float] = 300,
        replay_reconverging_nodes: bool = False,
    ):
        """Initialize the traversal engine.

        Args:
            registry: Registry used to resolve node executors
            max_traversal_depth: Longest chain allowed before the run fails
            max_node_executions: Total node executions allowed per run
            execution_timeout: Seconds before a run fails with a timeout;
                None or 0 disables the deadline
            replay_reconverging_nodes: Re-execute a node each time another
                path reaches it instead of running it once per run
        """
        self.registry = registry
        self.max_traversal_depth = max_traversal_depth
        self.max_node_executions = max_node_executions
        self.execution_timeout = execution_timeout
        self.replay_reconverging_nodes = replay_reconverging_nodes

    def run(
        self,
        graph: WorkflowGraph,
        trigger_type: str = "manual",
        trigger_data: Any = None,
        execution_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        workflow_id: Optional[str] = None,
    ) -> TraversalResult:
        """
        Execute every node reachable from the graph's triggers.

        Node and guard failures are returned as a failed (or cancelled)
        result; the log written up to that point is kept.

        Raises:
            NoTriggerNodeError: If the graph has no trigger node
        """
        triggers = graph.trigger_nodes()
        if not triggers:
            raise NoTriggerNodeError(workflow_id=workflow_id)

        context = TraversalContext(
            graph,
            trigger_type,
            trigger_data,
            execution_id=execution_id,
            token=token,
            timeout=self.execution_timeout,
        )

        try:
            for trigger in triggers:
                self._execute_chain(trigger, None, context, depth=0)
        except ExecutionCancelledError as e:
            logger.info(f"Execution {execution_id} cancelled after {context.node_executions} nodes")
            return TraversalResult(ExecutionStatusEnum.CANCELLED, context.log, e)
        except WorkflowEngineError as e:
            logger.warning(f"Execution {execution_id} failed: {e.message}")
            return TraversalResult(ExecutionStatusEnum.FAILED, context.log, e)

        logger.info(f"Execution {execution_id} completed ({context.node_executions} nodes executed)")
        return TraversalResult(ExecutionStatusEnum.COMPLETED, context.log)

    def _check_guards(self, node: NodeDefinition, context: TraversalContext) -> None:
        context.token.raise_if_cancelled(context.execution_id)

        if context.deadline is not None and time.monotonic() > context.deadline:
            raise ExecutionTimeoutError(
                f"Execution exceeded timeout of {context.timeout} seconds",
                timeout=context.timeout,
                execution_id=context.execution_id,
            )

        if node.id in context.path:
            cycle = context.path[context.path.index(node.id):] + [node.id]
            raise CycleDetectedError(
                f"Cycle detected: {' -> '.join(cycle)}",
                cycle=cycle,
                execution_id=context.execution_id,
            )

    def _check_limits(self, node: NodeDefinition, context: TraversalContext, depth: int) -> None:
        if depth >= self.max_traversal_depth:
            raise TraversalLimitError(
                f"Maximum traversal depth of {self.max_traversal_depth} exceeded at node {node.id}",
                limit_name="max_traversal_depth",
                limit=self.max_traversal_depth,
                execution_id=context.execution_id,
            )

        if context.node_executions >= self.max_node_executions:
            raise TraversalLimitError(
                f"Maximum of {self.max_node_executions} node executions exceeded",
                limit_name="max_node_executions",
                limit=self.max_node_executions,
                execution_id=context.execution_id,
            )

    def _execute_chain(
        self,
        node: NodeDefinition,
        upstream: Optional[Dict[str, Any]],
        context: TraversalContext,
        depth: int,
    ) -> None:
        self._check_guards(node, context)

        if node.id in context.visited and not self.replay_reconverging_nodes:
            logger.debug(f"Skipping node {node.id}: already executed in this run")
            return

        self._check_limits(node, context, depth)

        context.path.append(node.id)
        context.visited.add(node.id)
        context.node_executions += 1
        try:
            result = self._execute_node(node, upstream, context)

            for edge in context.graph.outgoing_edges(node.id):
                target = context.graph.get_node(edge.target)
                if target is None:
                    logger.warning(f"Edge {edge.id} targets unknown node {edge.target}; skipping")
                    continue
                if self._should_follow(node, edge, result):
                    self._execute_chain(target, result, context, depth + 1)
        finally:
            context.path.pop()

    def _execute_node(
        self,
        node: NodeDefinition,
        upstream: Optional[Dict[str, Any]],
        context: TraversalContext,
    ) -> Dict[str, Any]:
        context.append(
            node,
            LogPhase.STARTED,
            node_category=node.category,
            node_subtype=node.subtype,
            message=f"Executing {node.display_label}",
        )

        try:
            executor = self.registry.resolve(node)
            result = executor(StepInput(
                node=node,
                upstream=upstream,
                trigger_type=context.trigger_type,
                trigger_data=context.trigger_data,
                now=context.started_at,
            ))
        except (NodeDispatchError, StepExecutionError) as e:
            if context.execution_id:
                e.add_context(execution_id=context.execution_id)
            context.append(node, LogPhase.FAILED, error=e.message)
            raise
        except TraversalError:
            raise
        except Exception as e:
            wrapped = StepExecutionError(
                str(e) or e.__class__.__name__,
                node_id=node.id,
                execution_id=context.execution_id,
            )
            context.append(node, LogPhase.FAILED, error=wrapped.message)
            raise wrapped from e

        if result is None:
            result = {}
        elif not isinstance(result, dict):
            result = {"value": result}

        context.append(node, LogPhase.COMPLETED, result=result)
        logger.debug(f"Node {node.id} ({node.category}/{node.subtype}) completed")
        return result

    @staticmethod
    def _should_follow(node: NodeDefinition, edge: EdgeDefinition, result: Dict[str, Any]) -> bool:
        if not node.is_condition:
            return True
        # Only a boolean result selects a labelled branch
        outcome = result.get("result")
        if edge.source_handle == TRUE_HANDLE:
            return outcome is True
        if edge.source_handle == FALSE_HANDLE:
            return outcome is False
        return True
