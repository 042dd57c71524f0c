"""FastAPI REST endpoints for the automation engine."""

from datetime import datetime
from typing import Dict, List, Any, NoReturn, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status
from pydantic import BaseModel, Field, ValidationError

from ..core.exceptions import (
    GraphLoadError,
    GraphValidationError,
    WorkflowEngineError,
    create_error_response,
)
from ..core.executor_registry import ExecutorRegistry
from ..core.graph_store import GraphStore
from ..core.lifecycle import ExecutionLifecycleManager
from ..core.middleware import status_code_for_error
from ..models.core import (
    Execution,
    ExecutionScope,
    ExecutionStatusEnum,
    ValidationResult,
    WorkflowDefinition,
    WorkflowGraph,
    WorkflowSummary,
)
from ..core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["automation"])

# Global instances (initialized by the application factory)
_graph_store: Optional[GraphStore] = None
_lifecycle: Optional[ExecutionLifecycleManager] = None
_registry: Optional[ExecutorRegistry] = None


def init_dependencies(
    graph_store: GraphStore,
    lifecycle: ExecutionLifecycleManager,
    registry: ExecutorRegistry,
):
    """Initialize the global dependencies."""
    global _graph_store, _lifecycle, _registry
    _graph_store = graph_store
    _lifecycle = lifecycle
    _registry = registry


def get_graph_store() -> GraphStore:
    """Dependency to get the graph store."""
    if _graph_store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Graph store not initialized"
        )
    return _graph_store


def get_lifecycle() -> ExecutionLifecycleManager:
    """Dependency to get the execution lifecycle manager."""
    if _lifecycle is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution lifecycle manager not initialized"
        )
    return _lifecycle


def get_registry() -> ExecutorRegistry:
    """Dependency to get the executor registry."""
    if _registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Executor registry not initialized"
        )
    return _registry


# Request/Response models
class CreateWorkflowRequest(BaseModel):
    """Request model for saving a workflow from the editor."""
    name: str = Field(..., min_length=1, description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    tenant_id: Optional[str] = Field(None, description="Owning tenant")
    created_by: Optional[str] = Field(None, description="Creator reference")
    is_active: bool = Field(default=True, description="Whether the workflow may be run")
    workflow_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Editor payload with 'nodes' and 'edges'"
    )


class CreateWorkflowResponse(BaseModel):
    """Response model for workflow creation."""
    workflow_id: str = Field(..., description="Unique identifier of the created workflow")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class UpdateWorkflowRequest(BaseModel):
    """Request model for updating a workflow; omitted fields are unchanged."""
    name: Optional[str] = Field(None, description="New name")
    description: Optional[str] = Field(None, description="New description")
    is_active: Optional[bool] = Field(None, description="Activate or deactivate")
    workflow_data: Optional[Dict[str, Any]] = Field(None, description="Replacement editor payload")


class WorkflowResponse(BaseModel):
    """A stored workflow with its graph in editor form."""
    id: str
    name: str
    description: Optional[str] = None
    tenant_id: Optional[str] = None
    created_by: Optional[str] = None
    is_active: bool
    workflow_data: Dict[str, Any]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_definition(cls, workflow: WorkflowDefinition) -> 'WorkflowResponse':
        return cls(
            id=workflow.id,
            name=workflow.name,
            description=workflow.description,
            tenant_id=workflow.tenant_id,
            created_by=workflow.created_by,
            is_active=workflow.is_active,
            workflow_data=workflow.graph.to_editor_payload(),
            created_at=workflow.created_at,
            updated_at=workflow.updated_at,
        )


class ExecuteWorkflowRequest(BaseModel):
    """Request model for firing a workflow trigger."""
    workflow_id: str = Field(..., description="ID of the workflow to execute")
    trigger_type: str = Field(default="manual", description="What fired the run")
    trigger_data: Optional[Any] = Field(None, description="Trigger payload")
    background: bool = Field(default=False, description="Return immediately and run in the background")


class ExecuteWorkflowResponse(BaseModel):
    """Response model for workflow execution."""
    execution_id: str = Field(..., description="Unique identifier of the execution")
    status: ExecutionStatusEnum = Field(..., description="Execution status")
    message: str = Field(..., description="Summary message")
    execution: Optional[Execution] = Field(None, description="Finalized execution for synchronous runs")


class CancelExecutionResponse(BaseModel):
    """Response model for a cancellation request."""
    execution_id: str
    cancelled: bool = Field(..., description="Whether the execution transitioned to cancelled")
    status: ExecutionStatusEnum = Field(..., description="Status after the request")


def _parse_graph(workflow_data: Dict[str, Any]) -> WorkflowGraph:
    try:
        return WorkflowGraph.from_editor_payload(workflow_data)
    except ValidationError as e:
        raise GraphValidationError(
            "Workflow data is malformed",
            validation_errors=[error["msg"] for error in e.errors()],
        )
    except ValueError as e:
        raise GraphValidationError("Workflow data is malformed", validation_errors=[str(e)])


def _raise_http_error(e: WorkflowEngineError, action: str) -> NoReturn:
    status_code = status_code_for_error(e)
    if status_code >= 500:
        logger.error(f"Error while {action}: {e.message}")
    else:
        logger.warning(f"Error while {action}: {e.message}")
    raise HTTPException(status_code=status_code, detail=create_error_response(e))


# Workflow endpoints

@router.post(
    "/workflows",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Save a workflow",
    description="Validate and store a workflow built in the editor"
)
async def create_workflow(
    request: CreateWorkflowRequest,
    graph_store: GraphStore = Depends(get_graph_store)
) -> CreateWorkflowResponse:
    try:
        graph = _parse_graph(request.workflow_data)
        validation = graph_store.validate_workflow(graph)
        workflow = graph_store.create_workflow(
            request.name,
            graph,
            tenant_id=request.tenant_id,
            description=request.description,
            created_by=request.created_by,
            is_active=request.is_active,
        )
    except WorkflowEngineError as e:
        _raise_http_error(e, "creating workflow")

    return CreateWorkflowResponse(
        workflow_id=workflow.id,
        message=f"Workflow '{workflow.name}' created successfully",
        validation_warnings=validation.warnings,
    )


@router.get(
    "/workflows",
    response_model=List[WorkflowSummary],
    summary="List workflows"
)
async def list_workflows(
    tenant_id: Optional[str] = Query(None, description="Only this tenant's workflows"),
    graph_store: GraphStore = Depends(get_graph_store)
) -> List[WorkflowSummary]:
    try:
        return graph_store.list_workflows(tenant_id)
    except WorkflowEngineError as e:
        _raise_http_error(e, "listing workflows")


@router.get(
    "/workflows/{workflow_id}",
    response_model=WorkflowResponse,
    summary="Get a workflow"
)
async def get_workflow(
    workflow_id: str,
    graph_store: GraphStore = Depends(get_graph_store)
) -> WorkflowResponse:
    try:
        return WorkflowResponse.from_definition(graph_store.get_workflow(workflow_id))
    except WorkflowEngineError as e:
        _raise_http_error(e, f"getting workflow {workflow_id}")


@router.put(
    "/workflows/{workflow_id}",
    response_model=WorkflowResponse,
    summary="Update a workflow"
)
async def update_workflow(
    workflow_id: str,
    request: UpdateWorkflowRequest,
    graph_store: GraphStore = Depends(get_graph_store)
) -> WorkflowResponse:
    try:
        graph = None
        if request.workflow_data is not None:
            graph = _parse_graph(request.workflow_data)
        workflow = graph_store.update_workflow(
            workflow_id,
            name=request.name,
            description=request.description,
            is_active=request.is_active,
            graph=graph,
        )
        return WorkflowResponse.from_definition(workflow)
    except WorkflowEngineError as e:
        _raise_http_error(e, f"updating workflow {workflow_id}")


@router.delete(
    "/workflows/{workflow_id}",
    summary="Delete a workflow and its executions"
)
async def delete_workflow(
    workflow_id: str,
    graph_store: GraphStore = Depends(get_graph_store)
) -> Dict[str, str]:
    try:
        deleted = graph_store.delete_workflow(workflow_id)
    except WorkflowEngineError as e:
        _raise_http_error(e, f"deleting workflow {workflow_id}")

    if not deleted:
        _raise_http_error(
            GraphLoadError(f"Workflow with ID '{workflow_id}' not found", workflow_id=workflow_id)
            .add_details(not_found=True),
            f"deleting workflow {workflow_id}",
        )
    return {"message": f"Workflow {workflow_id} deleted"}


@router.post(
    "/workflows/{workflow_id}/validate",
    response_model=ValidationResult,
    summary="Validate a stored workflow"
)
async def validate_workflow(
    workflow_id: str,
    graph_store: GraphStore = Depends(get_graph_store)
) -> ValidationResult:
    try:
        workflow = graph_store.get_workflow(workflow_id)
        return graph_store.validate_workflow(workflow.graph)
    except WorkflowEngineError as e:
        _raise_http_error(e, f"validating workflow {workflow_id}")


# Execution endpoints

@router.post(
    "/executions",
    response_model=ExecuteWorkflowResponse,
    summary="Fire a workflow trigger",
    description="Run a workflow synchronously, or in the background when 'background' is set"
)
def execute_workflow(
    request: ExecuteWorkflowRequest,
    lifecycle: ExecutionLifecycleManager = Depends(get_lifecycle)
) -> ExecuteWorkflowResponse:
    try:
        if request.background:
            execution_id = lifecycle.submit(request.workflow_id, request.trigger_type, request.trigger_data)
            return ExecuteWorkflowResponse(
                execution_id=execution_id,
                status=ExecutionStatusEnum.RUNNING,
                message="Workflow execution started",
            )

        execution = lifecycle.start(request.workflow_id, request.trigger_type, request.trigger_data)
    except WorkflowEngineError as e:
        _raise_http_error(e, f"executing workflow {request.workflow_id}")

    if execution.status == ExecutionStatusEnum.COMPLETED:
        message = "Workflow executed successfully"
    else:
        message = f"Workflow execution {execution.status.value}: {execution.error_message}"
    return ExecuteWorkflowResponse(
        execution_id=execution.id,
        status=execution.status,
        message=message,
        execution=execution,
    )


@router.get(
    "/executions",
    response_model=List[Execution],
    summary="List executions, newest first"
)
async def list_executions(
    tenant_id: Optional[str] = Query(None, description="Only executions of this tenant's workflows"),
    workflow_id: Optional[str] = Query(None, description="Only executions of this workflow"),
    status_filter: Optional[ExecutionStatusEnum] = Query(None, alias="status", description="Only this status"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum rows returned"),
    lifecycle: ExecutionLifecycleManager = Depends(get_lifecycle)
) -> List[Execution]:
    scope = ExecutionScope(tenant_id=tenant_id, workflow_id=workflow_id, status=status_filter, limit=limit)
    try:
        return lifecycle.list_executions(scope)
    except WorkflowEngineError as e:
        _raise_http_error(e, "listing executions")


@router.get(
    "/executions/{execution_id}",
    response_model=Execution,
    summary="Get an execution with its log"
)
async def get_execution(
    execution_id: str,
    lifecycle: ExecutionLifecycleManager = Depends(get_lifecycle)
) -> Execution:
    try:
        return lifecycle.get_execution(execution_id)
    except WorkflowEngineError as e:
        _raise_http_error(e, f"getting execution {execution_id}")


@router.post(
    "/executions/{execution_id}/cancel",
    response_model=CancelExecutionResponse,
    summary="Cancel a running execution"
)
async def cancel_execution(
    execution_id: str,
    lifecycle: ExecutionLifecycleManager = Depends(get_lifecycle)
) -> CancelExecutionResponse:
    try:
        cancelled = lifecycle.cancel(execution_id)
        execution = lifecycle.get_execution(execution_id)
    except WorkflowEngineError as e:
        _raise_http_error(e, f"cancelling execution {execution_id}")

    return CancelExecutionResponse(
        execution_id=execution_id,
        cancelled=cancelled,
        status=execution.status,
    )


# Node catalogue

@router.get(
    "/node-types",
    summary="List the node types the engine can execute"
)
async def list_node_types(
    registry: ExecutorRegistry = Depends(get_registry)
) -> Dict[str, str]:
    return registry.list_executors()
