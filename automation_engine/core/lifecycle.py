"""Execution lifecycle: creating, running, finalizing and cancelling runs."""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import Execution, ExecutionScope, ExecutionStatusEnum, WorkflowDefinition
from .exceptions import (
    NoTriggerNodeError,
    PersistenceWriteError,
    WorkflowEngineError,
    WorkflowInactiveError,
)
from .graph_store import GraphStore
from .logging import clear_logging_context, get_logger, set_logging_context
from .traversal import CancellationToken, TraversalEngine, TraversalResult

logger = get_logger(__name__)


class ExecutionLifecycleManager:
    """Owns execution records from creation to their terminal state.

    ``start`` runs a workflow synchronously in the caller; ``submit`` runs it
    on a bounded thread pool. In both cases the workflow is loaded, checked
    for a trigger node and for being active, and the ``running`` record is
    created before any node executes. The terminal state is written in one
    conditional update so a cancellation is never overwritten.
    """

    def __init__(
        self,
        graph_store: GraphStore,
        traversal_engine: TraversalEngine,
        max_concurrent_executions: int = 10,
    ):
        """Initialize the lifecycle manager.

        Args:
            graph_store: Store for workflow definitions and execution records
            traversal_engine: Engine that walks the workflow graph
            max_concurrent_executions: Worker threads for background runs
        """
        self.graph_store = graph_store
        self.traversal_engine = traversal_engine
        self.max_concurrent_executions = max_concurrent_executions

        self._tokens: Dict[str, CancellationToken] = {}
        self._futures: Dict[str, Future] = {}
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_executions,
            thread_name_prefix="workflow-execution",
        )

        logger.info(f"ExecutionLifecycleManager initialized with max_concurrent_executions={max_concurrent_executions}")

    def start(self, workflow_id: str, trigger_type: str = "manual", trigger_data: Any = None) -> Execution:
        """
        Run a workflow to completion in the calling thread.

        Args:
            workflow_id: Workflow to run
            trigger_type: What fired the run
            trigger_data: Payload made available to the nodes

        Returns:
            Execution: The finalized execution; a failing graph gives a
            ``failed`` execution rather than an exception

        Raises:
            GraphLoadError: If the workflow cannot be loaded
            NoTriggerNodeError: If the workflow has no trigger node
            WorkflowInactiveError: If the workflow is deactivated
            PersistenceWriteError: If the record cannot be written
        """
        workflow, execution, token = self._prepare(workflow_id, trigger_type, trigger_data)
        self._run(workflow, execution, token)
        return self.graph_store.get_execution(execution.id)

    def submit(self, workflow_id: str, trigger_type: str = "manual", trigger_data: Any = None) -> str:
        """
        Run a workflow in the background.

        The same checks as :meth:`start` happen in the caller, so errors
        loading the workflow are raised here.

        Returns:
            str: ID of the ``running`` execution record
        """
        workflow, execution, token = self._prepare(workflow_id, trigger_type, trigger_data)
        future = self._executor.submit(self._run, workflow, execution, token)
        with self._lock:
            self._futures[execution.id] = future
        future.add_done_callback(partial(self._discard_future, execution.id))
        logger.info(f"Submitted execution {execution.id} for workflow {workflow_id}")
        return execution.id

    def wait(self, execution_id: str, timeout: Optional[float] = None) -> Execution:
        """
        Block until a background run finishes and return its record.

        Raises:
            concurrent.futures.TimeoutError: If the run is still going after ``timeout``
        """
        with self._lock:
            future = self._futures.get(execution_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.graph_store.get_execution(execution_id)

    def cancel(self, execution_id: str) -> bool:
        """
        Cancel a running execution.

        Signals the run's token when it lives in this process and flags the
        record as cancelled while it is still ``running``.

        Returns:
            bool: True if this request cancelled the execution

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        with self._lock:
            token = self._tokens.get(execution_id)
        if token is not None:
            token.cancel()

        transitioned = self.graph_store.mark_cancelled(execution_id)
        if not transitioned and token is not None:
            # The run may have seen the token and finalized itself first
            status = self.graph_store.get_execution(execution_id).status
            transitioned = status == ExecutionStatusEnum.CANCELLED
        if transitioned:
            logger.info(f"Cancelled execution {execution_id}")
        else:
            logger.info(f"Execution {execution_id} already finished; nothing to cancel")
        return transitioned

    def get_execution(self, execution_id: str) -> Execution:
        return self.graph_store.get_execution(execution_id)

    def list_executions(self, scope: Optional[ExecutionScope] = None) -> List[Execution]:
        """List executions newest first within ``scope``."""
        return self.graph_store.list_executions(scope)

    def active_executions(self) -> List[str]:
        with self._lock:
            return list(self._tokens)

    def shutdown(self, wait: bool = True, cancel_running: bool = False) -> None:
        """Stop accepting background runs, optionally cancelling those in flight."""
        if cancel_running:
            with self._lock:
                tokens = list(self._tokens.values())
            for token in tokens:
                token.cancel("Cancelled by shutdown")
        self._executor.shutdown(wait=wait)
        logger.info("ExecutionLifecycleManager shut down")

    def _prepare(
        self,
        workflow_id: str,
        trigger_type: str,
        trigger_data: Any,
    ) -> Tuple[WorkflowDefinition, Execution, CancellationToken]:
        workflow = self.graph_store.get_workflow(workflow_id)

        if not workflow.graph.trigger_nodes():
            raise NoTriggerNodeError(workflow_id=workflow_id)
        if not workflow.is_active:
            raise WorkflowInactiveError(f"Workflow '{workflow.name}' is not active", workflow_id=workflow_id)

        execution = self.graph_store.create_execution(workflow_id, trigger_type, trigger_data)
        token = CancellationToken()
        with self._lock:
            self._tokens[execution.id] = token
        return workflow, execution, token

    def _run(self, workflow: WorkflowDefinition, execution: Execution, token: CancellationToken) -> TraversalResult:
        set_logging_context(execution_id=execution.id, workflow_id=workflow.id)
        try:
            try:
                result = self.traversal_engine.run(
                    workflow.graph,
                    trigger_type=execution.trigger_type,
                    trigger_data=execution.trigger_data,
                    execution_id=execution.id,
                    token=token,
                    workflow_id=workflow.id,
                )
            except WorkflowEngineError as e:
                result = TraversalResult(ExecutionStatusEnum.FAILED, [], e)
            except Exception as e:
                logger.exception(f"Unexpected error while executing {execution.id}")
                result = TraversalResult(
                    ExecutionStatusEnum.FAILED, [], WorkflowEngineError(f"Execution failed: {str(e)}")
                )

            self._finalize(execution.id, result)
            return result
        finally:
            with self._lock:
                self._tokens.pop(execution.id, None)
            clear_logging_context()

    def _finalize(self, execution_id: str, result: TraversalResult) -> None:
        try:
            updated = self.graph_store.finalize_execution(
                execution_id,
                result.status,
                result.log,
                error_message=result.error_message,
            )
            if not updated:
                logger.info(f"Execution {execution_id} was cancelled before it finished; keeping its status")
                self.graph_store.attach_log(execution_id, result.log)
        except PersistenceWriteError as e:
            e.pending = result
            logger.error(f"Could not persist the outcome of execution {execution_id}: {e.message}")
            raise

    def _discard_future(self, execution_id: str, future: Future) -> None:
        with self._lock:
            if self._futures.get(execution_id) is future:
                del self._futures[execution_id]
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Background execution {execution_id} raised: {future.exception()}")
