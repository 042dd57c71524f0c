"""Graph Store adapter: workflow definitions and execution records."""

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import (
    Execution,
    ExecutionLogEntry,
    ExecutionScope,
    ExecutionStatusEnum,
    ValidationResult,
    WorkflowDefinition,
    WorkflowGraph,
    WorkflowSummary,
)
from ..storage.database import get_session
from ..storage.models import WorkflowModel, WorkflowExecutionModel
from .error_recovery import with_retry, RetryConfig
from .exceptions import (
    ExecutionNotFoundError,
    GraphLoadError,
    GraphValidationError,
    PersistenceWriteError,
    StorageError,
)
from .logging import get_logger

logger = get_logger(__name__)

_write_retry = RetryConfig(max_attempts=3, retryable_exceptions=[PersistenceWriteError])


class GraphStore:
    """Reads workflow graphs and writes execution records.

    Every public method opens its own session unless one was injected, in
    which case the injected session is reused and left open.
    """

    def __init__(self, db_session: Optional[Session] = None):
        """Initialize GraphStore with optional database session."""
        self._db_session = db_session

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        if self._db_session is not None:
            yield self._db_session
            return
        session = get_session()
        try:
            yield session
        finally:
            session.close()

    # Workflow definitions

    def create_workflow(
        self,
        name: str,
        graph: Optional[WorkflowGraph] = None,
        tenant_id: Optional[str] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
        is_active: bool = True,
        validate: bool = True,
    ) -> WorkflowDefinition:
        """
        Store a new workflow definition.

        Args:
            name: Display name
            graph: Nodes and edges; an empty graph when omitted
            tenant_id: Owning tenant
            description: Optional description
            created_by: Creator reference
            is_active: Whether the workflow may be run
            validate: Reject graphs with structural errors

        Returns:
            WorkflowDefinition: The stored workflow

        Raises:
            GraphValidationError: If validation is requested and fails
            PersistenceWriteError: If the row cannot be written
        """
        if not name or not name.strip():
            raise GraphValidationError("Workflow name cannot be empty")
        graph = graph or WorkflowGraph()
        if validate:
            self._ensure_valid(graph, name)

        workflow_id = str(uuid.uuid4())
        logger.info(f"Creating workflow '{name}' with ID: {workflow_id}")

        with self._session_scope() as db:
            try:
                now = datetime.utcnow()
                model = WorkflowModel(
                    id=workflow_id,
                    tenant_id=tenant_id,
                    name=name.strip(),
                    description=description,
                    is_active=is_active,
                    workflow_data=graph.to_editor_payload(),
                    created_by=created_by,
                    created_at=now,
                    updated_at=now,
                )
                db.add(model)
                db.commit()
                return self._to_workflow(model)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error while creating workflow: {str(e)}")
                raise PersistenceWriteError(
                    f"Failed to store workflow: {str(e)}", operation="create_workflow", table="workflows"
                )

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """
        Load a workflow definition with its graph.

        Raises:
            GraphLoadError: If the workflow does not exist, cannot be read, or
                its stored graph cannot be parsed
        """
        logger.debug(f"Retrieving workflow with ID: {workflow_id}")

        with self._session_scope() as db:
            try:
                model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            except SQLAlchemyError as e:
                logger.error(f"Database error while retrieving workflow: {str(e)}")
                raise GraphLoadError(f"Failed to retrieve workflow: {str(e)}", workflow_id=workflow_id)

            if model is None:
                raise GraphLoadError(
                    f"Workflow with ID '{workflow_id}' not found", workflow_id=workflow_id
                ).add_details(not_found=True)

            return self._to_workflow(model)

    def update_workflow(
        self,
        workflow_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
        graph: Optional[WorkflowGraph] = None,
        validate: bool = True,
    ) -> WorkflowDefinition:
        """Update metadata and/or the graph of a stored workflow."""
        logger.info(f"Updating workflow with ID: {workflow_id}")

        with self._session_scope() as db:
            model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            if model is None:
                raise GraphLoadError(
                    f"Workflow with ID '{workflow_id}' not found", workflow_id=workflow_id
                ).add_details(not_found=True)

            if graph is not None:
                if validate:
                    self._ensure_valid(graph, name or model.name)
                model.workflow_data = graph.to_editor_payload()
            if name is not None:
                if not name.strip():
                    raise GraphValidationError("Workflow name cannot be empty")
                model.name = name.strip()
            if description is not None:
                model.description = description
            if is_active is not None:
                model.is_active = is_active
            model.updated_at = datetime.utcnow()

            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceWriteError(
                    f"Failed to update workflow: {str(e)}", operation="update_workflow", table="workflows"
                )
            return self._to_workflow(model)

    def delete_workflow(self, workflow_id: str) -> bool:
        """
        Delete a workflow and its execution history.

        Returns:
            bool: True if the workflow was deleted, False if not found
        """
        logger.info(f"Deleting workflow with ID: {workflow_id}")

        with self._session_scope() as db:
            try:
                model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
                if model is None:
                    logger.warning(f"Workflow with ID '{workflow_id}' not found for deletion")
                    return False
                db.delete(model)
                db.commit()
                return True
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceWriteError(
                    f"Failed to delete workflow: {str(e)}", operation="delete_workflow", table="workflows"
                )

    def list_workflows(self, tenant_id: Optional[str] = None) -> List[WorkflowSummary]:
        """List workflows, newest first, optionally for one tenant."""
        with self._session_scope() as db:
            try:
                query = db.query(WorkflowModel)
                if tenant_id is not None:
                    query = query.filter(WorkflowModel.tenant_id == tenant_id)
                models = query.order_by(WorkflowModel.created_at.desc()).all()
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to list workflows: {str(e)}", operation="list_workflows")

            summaries = []
            for model in models:
                data = model.workflow_data if isinstance(model.workflow_data, dict) else {}
                summaries.append(WorkflowSummary(
                    id=model.id,
                    name=model.name,
                    description=model.description,
                    tenant_id=model.tenant_id,
                    is_active=bool(model.is_active),
                    node_count=len(data.get("nodes") or []),
                    created_at=model.created_at,
                ))
            return summaries

    def validate_workflow(self, graph: WorkflowGraph) -> ValidationResult:
        """Validate a graph without storing it."""
        result = graph.validate_structure()
        logger.debug(
            f"Graph validation completed. Valid: {result.is_valid}, "
            f"Errors: {len(result.errors)}, Warnings: {len(result.warnings)}"
        )
        return result

    # Execution records

    @with_retry(_write_retry)
    def create_execution(self, workflow_id: str, trigger_type: str, trigger_data: Any = None) -> Execution:
        """Insert a ``running`` execution row with an empty log."""
        execution_id = str(uuid.uuid4())

        with self._session_scope() as db:
            try:
                model = WorkflowExecutionModel(
                    id=execution_id,
                    workflow_id=workflow_id,
                    trigger_type=trigger_type,
                    trigger_data=trigger_data,
                    status=ExecutionStatusEnum.RUNNING.value,
                    started_at=datetime.utcnow(),
                    execution_log=[],
                )
                db.add(model)
                db.commit()
                logger.info(f"Created execution {execution_id} for workflow {workflow_id}")
                return self._to_execution(model)
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceWriteError(
                    f"Failed to create execution record: {str(e)}",
                    operation="create_execution",
                    table="workflow_executions",
                )

    @with_retry(_write_retry)
    def finalize_execution(
        self,
        execution_id: str,
        status: ExecutionStatusEnum,
        log: List[ExecutionLogEntry],
        error_message: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Write the terminal state of a run in one update.

        Only a row still in ``running`` is updated, so a cancellation that
        landed first is never overwritten.

        Returns:
            bool: True if the row was updated
        """
        values = {
            WorkflowExecutionModel.status: status.value,
            WorkflowExecutionModel.completed_at: completed_at or datetime.utcnow(),
            WorkflowExecutionModel.error_message: error_message,
            WorkflowExecutionModel.execution_log: [entry.to_record() for entry in log],
        }
        return self._update_if_running(execution_id, values, "finalize_execution")

    @with_retry(_write_retry)
    def mark_cancelled(self, execution_id: str, message: str = "Cancelled by user") -> bool:
        """Flag a still running execution as cancelled."""
        values = {
            WorkflowExecutionModel.status: ExecutionStatusEnum.CANCELLED.value,
            WorkflowExecutionModel.completed_at: datetime.utcnow(),
            WorkflowExecutionModel.error_message: message,
        }
        return self._update_if_running(execution_id, values, "mark_cancelled")

    def attach_log(self, execution_id: str, log: List[ExecutionLogEntry]) -> None:
        """Store the log of a run whose row was already cancelled."""
        with self._session_scope() as db:
            try:
                db.query(WorkflowExecutionModel).filter(
                    WorkflowExecutionModel.id == execution_id
                ).update(
                    {WorkflowExecutionModel.execution_log: [entry.to_record() for entry in log]},
                    synchronize_session=False,
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceWriteError(
                    f"Failed to store execution log: {str(e)}",
                    operation="attach_log",
                    table="workflow_executions",
                )

    def get_execution(self, execution_id: str) -> Execution:
        """Load one execution joined with its workflow name."""
        with self._session_scope() as db:
            try:
                row = (
                    db.query(WorkflowExecutionModel, WorkflowModel.name)
                    .outerjoin(WorkflowModel, WorkflowModel.id == WorkflowExecutionModel.workflow_id)
                    .filter(WorkflowExecutionModel.id == execution_id)
                    .first()
                )
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to get execution: {str(e)}", operation="get_execution")

            if row is None:
                raise ExecutionNotFoundError(f"Execution {execution_id} not found", execution_id=execution_id)
            model, workflow_name = row
            return self._to_execution(model, workflow_name)

    def list_executions(self, scope: Optional[ExecutionScope] = None) -> List[Execution]:
        """List executions newest first within the given scope."""
        scope = scope or ExecutionScope()

        with self._session_scope() as db:
            try:
                query = (
                    db.query(WorkflowExecutionModel, WorkflowModel.name)
                    .join(WorkflowModel, WorkflowModel.id == WorkflowExecutionModel.workflow_id)
                )
                if scope.tenant_id is not None:
                    query = query.filter(WorkflowModel.tenant_id == scope.tenant_id)
                if scope.workflow_id is not None:
                    query = query.filter(WorkflowExecutionModel.workflow_id == scope.workflow_id)
                if scope.status is not None:
                    query = query.filter(WorkflowExecutionModel.status == scope.status.value)
                rows = (
                    query.order_by(WorkflowExecutionModel.started_at.desc())
                    .limit(scope.limit)
                    .all()
                )
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to list executions: {str(e)}", operation="list_executions")

            return [self._to_execution(model, name) for model, name in rows]

    # Helpers

    def _update_if_running(self, execution_id: str, values: dict, operation: str) -> bool:
        with self._session_scope() as db:
            try:
                updated = (
                    db.query(WorkflowExecutionModel)
                    .filter(
                        WorkflowExecutionModel.id == execution_id,
                        WorkflowExecutionModel.status == ExecutionStatusEnum.RUNNING.value,
                    )
                    .update(values, synchronize_session=False)
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceWriteError(
                    f"Failed to update execution {execution_id}: {str(e)}",
                    operation=operation,
                    table="workflow_executions",
                )

            if updated:
                return True

            exists = (
                db.query(WorkflowExecutionModel.id)
                .filter(WorkflowExecutionModel.id == execution_id)
                .first()
            )
            if exists is None:
                raise ExecutionNotFoundError(f"Execution {execution_id} not found", execution_id=execution_id)
            return False

    def _ensure_valid(self, graph: WorkflowGraph, name: str) -> None:
        result = self.validate_workflow(graph)
        if not result.is_valid:
            error_msg = f"Graph validation failed: {'; '.join(result.errors)}"
            logger.error(error_msg)
            raise GraphValidationError(error_msg, validation_errors=result.errors, workflow_name=name)
        if result.warnings:
            logger.warning(f"Graph validation warnings: {'; '.join(result.warnings)}")

    @staticmethod
    def _to_workflow(model: WorkflowModel) -> WorkflowDefinition:
        try:
            graph = WorkflowGraph.from_editor_payload(model.workflow_data)
        except ValueError as e:
            raise GraphLoadError(
                f"Stored graph for workflow '{model.id}' is malformed: {e}", workflow_id=model.id
            )
        return WorkflowDefinition(
            id=model.id,
            name=model.name,
            description=model.description,
            tenant_id=model.tenant_id,
            created_by=model.created_by,
            is_active=bool(model.is_active) if model.is_active is not None else True,
            graph=graph,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _to_execution(model: WorkflowExecutionModel, workflow_name: Optional[str] = None) -> Execution:
        return Execution(
            id=model.id,
            workflow_id=model.workflow_id,
            workflow_name=workflow_name,
            trigger_type=model.trigger_type,
            trigger_data=model.trigger_data,
            status=ExecutionStatusEnum(model.status),
            started_at=model.started_at,
            completed_at=model.completed_at,
            error_message=model.error_message,
            execution_log=[ExecutionLogEntry(**entry) for entry in (model.execution_log or [])],
        )
