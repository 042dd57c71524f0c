"""Core Pydantic models for the automation engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from pydantic import BaseModel, ConfigDict, Field, field_validator


class NodeCategory(str, Enum):
    """Closed set of node categories the engine dispatches on."""
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"
    DATA = "data"


class TriggerSubtype(str, Enum):
    MANUAL = "manual"
    DATABASE_CHANGE = "database_change"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"


class ConditionSubtype(str, Enum):
    FIELD_COMPARISON = "field_comparison"
    DATETIME_CONDITION = "datetime_condition"
    ROLE_CHECK = "role_check"


class ActionSubtype(str, Enum):
    CREATE_RECORD = "create_record"
    UPDATE_RECORD = "update_record"
    DELETE_RECORD = "delete_record"
    SEND_EMAIL = "send_email"
    EXTERNAL_API = "external_api"


class DataSubtype(str, Enum):
    FIELD_MAPPING = "field_mapping"
    CALCULATION = "calculation"
    DATA_LOOKUP = "data_lookup"


KNOWN_SUBTYPES: Dict[NodeCategory, Set[str]] = {
    NodeCategory.TRIGGER: {s.value for s in TriggerSubtype},
    NodeCategory.CONDITION: {s.value for s in ConditionSubtype},
    NodeCategory.ACTION: {s.value for s in ActionSubtype},
    NodeCategory.DATA: {s.value for s in DataSubtype},
}

# Source handles a condition node uses to mark its boolean outcome.
TRUE_HANDLE = "true"
FALSE_HANDLE = "false"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatusEnum.RUNNING


class LogPhase(str, Enum):
    """Phase recorded by an execution log entry."""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class ValidationResult(BaseModel):
    """Result of graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class NodeDefinition(BaseModel):
    """A typed automation step in a workflow graph.

    Category and subtype are kept as plain strings: a graph saved with a value
    the engine does not know still loads, and fails when the node is dispatched.
    """
    id: str = Field(..., description="Unique identifier for the node")
    category: str = Field(..., description="Node category: trigger, condition, action or data")
    subtype: str = Field(..., description="Category specific node subtype")
    label: str = Field(default="", description="Display label")
    configuration: Dict[str, Any] = Field(default_factory=dict, description="Subtype specific configuration")
    position: Optional[Dict[str, float]] = Field(None, description="Editor canvas position")

    @field_validator('id')
    @classmethod
    def validate_id(cls, id_value):
        """Ensure node ID is not blank."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        return id_value.strip()

    @field_validator('category', 'subtype')
    @classmethod
    def normalize_type_names(cls, value):
        """Strip and lowercase category/subtype names."""
        if value is None:
            return ""
        return value.strip().lower()

    @field_validator('configuration', mode='before')
    @classmethod
    def default_configuration(cls, value):
        return value or {}

    @property
    def display_label(self) -> str:
        return self.label or self.id

    @property
    def is_trigger(self) -> bool:
        return self.category == NodeCategory.TRIGGER.value

    @property
    def is_condition(self) -> bool:
        return self.category == NodeCategory.CONDITION.value


class EdgeDefinition(BaseModel):
    """A directed connection between two nodes."""
    id: Optional[str] = Field(None, description="Editor edge identifier")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    source_handle: Optional[str] = Field(None, description="Condition outcome handle ('true' or 'false')")

    @field_validator('source', 'target')
    @classmethod
    def validate_node_ids(cls, node_id):
        """Ensure node IDs are valid."""
        if not node_id or not node_id.strip():
            raise ValueError("Node ID cannot be empty")
        return node_id.strip()

    @field_validator('source_handle')
    @classmethod
    def normalize_handle(cls, handle):
        """Treat blank handles as no handle."""
        if handle is None or not str(handle).strip():
            return None
        return str(handle).strip().lower()


class WorkflowGraph(BaseModel):
    """The node and edge sets of a workflow."""
    nodes: List[NodeDefinition] = Field(default_factory=list, description="Nodes in editor order")
    edges: List[EdgeDefinition] = Field(default_factory=list, description="Edges in editor order")

    @field_validator('nodes')
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        node_ids = [node.id for node in nodes]
        if len(node_ids) != len(set(node_ids)):
            raise ValueError("All node IDs must be unique")
        return nodes

    def get_node(self, node_id: str) -> Optional[NodeDefinition]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_nodes(self) -> List[NodeDefinition]:
        """Trigger nodes in the order they appear in the node list."""
        return [node for node in self.nodes if node.is_trigger]

    def outgoing_edges(self, node_id: str) -> List[EdgeDefinition]:
        return [edge for edge in self.edges if edge.source == node_id]

    @classmethod
    def from_editor_payload(cls, payload: Any) -> 'WorkflowGraph':
        """
        Build a graph from the editor's stored ``workflow_data`` document.

        The editor stores ``{"nodes": [...], "edges": [...]}`` where each node
        keeps its type information under ``data`` (``nodeType``,
        ``nodeSubtype``, ``label``, ``configuration``) and each edge uses
        ``source``/``target``/``sourceHandle``. Anything that is not a mapping
        is treated as an empty graph.

        Raises:
            ValueError: If ``nodes``/``edges`` are not lists of objects or a
                node's ``data`` is not an object
        """
        if not isinstance(payload, dict):
            return cls()

        raw_nodes = payload.get("nodes") or []
        raw_edges = payload.get("edges") or []
        for key, value in (("nodes", raw_nodes), ("edges", raw_edges)):
            if not isinstance(value, list):
                raise ValueError(f"'{key}' must be a list, got {type(value).__name__}")
            for index, item in enumerate(value):
                if not isinstance(item, dict):
                    raise ValueError(f"{key}[{index}] must be an object, got {type(item).__name__}")

        nodes = []
        for index, raw in enumerate(raw_nodes):
            data = raw.get("data") or {}
            if not isinstance(data, dict):
                raise ValueError(f"nodes[{index}].data must be an object, got {type(data).__name__}")
            nodes.append(NodeDefinition(
                id=raw.get("id", ""),
                category=data.get("nodeType") or "",
                subtype=data.get("nodeSubtype") or "",
                label=data.get("label") or "",
                configuration=data.get("configuration") or {},
                position=raw.get("position"),
            ))

        edges = []
        for raw in raw_edges:
            edges.append(EdgeDefinition(
                id=raw.get("id"),
                source=raw.get("source", ""),
                target=raw.get("target", ""),
                source_handle=raw.get("sourceHandle"),
            ))

        return cls(nodes=nodes, edges=edges)

    def to_editor_payload(self) -> Dict[str, Any]:
        """Serialize back to the editor's ``workflow_data`` document."""
        nodes = []
        for node in self.nodes:
            entry = {
                "id": node.id,
                "type": node.category,
                "data": {
                    "label": node.label,
                    "nodeType": node.category,
                    "nodeSubtype": node.subtype,
                    "configuration": node.configuration,
                },
            }
            if node.position is not None:
                entry["position"] = node.position
            nodes.append(entry)

        edges = []
        for index, edge in enumerate(self.edges):
            edges.append({
                "id": edge.id or f"e-{edge.source}-{edge.target}-{index}",
                "source": edge.source,
                "target": edge.target,
                "sourceHandle": edge.source_handle,
            })

        return {"nodes": nodes, "edges": edges}

    def validate_structure(self) -> ValidationResult:
        """Check the graph for structural problems the engine cares about."""
        errors = []
        warnings = []
        node_ids = {node.id for node in self.nodes}
        nodes_by_id = {node.id: node for node in self.nodes}

        for node in self.nodes:
            try:
                category = NodeCategory(node.category)
            except ValueError:
                errors.append(f"Node '{node.id}' has unknown category '{node.category}'")
                continue
            if node.subtype not in KNOWN_SUBTYPES[category]:
                errors.append(
                    f"Node '{node.id}' has unknown {category.value} subtype '{node.subtype}'"
                )

        seen_handles = set()
        for edge in self.edges:
            if edge.source not in node_ids:
                errors.append(f"Edge references non-existent source node: '{edge.source}'")
                continue
            if edge.target not in node_ids:
                errors.append(f"Edge references non-existent target node: '{edge.target}'")
                continue

            source = nodes_by_id[edge.source]
            if edge.source_handle is None:
                continue
            if not source.is_condition:
                warnings.append(
                    f"Edge {edge.source} -> {edge.target} has handle '{edge.source_handle}' "
                    f"but its source is not a condition node; the handle is ignored"
                )
            elif edge.source_handle not in (TRUE_HANDLE, FALSE_HANDLE):
                warnings.append(
                    f"Condition node '{edge.source}' has unrecognized handle "
                    f"'{edge.source_handle}'; the edge is always followed"
                )
            elif (edge.source, edge.source_handle) in seen_handles:
                errors.append(
                    f"Condition node '{edge.source}' has more than one '{edge.source_handle}' edge"
                )
            seen_handles.add((edge.source, edge.source_handle))

        triggers = self.trigger_nodes()
        if not triggers:
            warnings.append("Workflow has no trigger node and cannot be executed")
        else:
            reachable = self._find_reachable_nodes([node.id for node in triggers])
            unreachable = node_ids - reachable
            if unreachable:
                warnings.append(
                    f"Nodes not reachable from any trigger will never run: {', '.join(sorted(unreachable))}"
                )

        if self._has_cycles():
            warnings.append("Graph contains cycles; runs following a cycle will fail")

        return ValidationResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )

    def _adjacency(self) -> Dict[str, List[str]]:
        graph: Dict[str, List[str]] = {}
        for edge in self.edges:
            graph.setdefault(edge.source, []).append(edge.target)
        return graph

    def _find_reachable_nodes(self, entry_points: List[str]) -> Set[str]:
        """Find all nodes reachable from the given entry points."""
        edge_map = self._adjacency()
        reachable = set(entry_points)
        queue = list(entry_points)
        while queue:
            current = queue.pop(0)
            for neighbor in edge_map.get(current, []):
                if neighbor not in reachable:
                    reachable.add(neighbor)
                    queue.append(neighbor)
        return reachable

    def _has_cycles(self) -> bool:
        """Check if the graph contains cycles using DFS."""
        if not self.edges:
            return False

        graph = self._adjacency()
        visited = set()
        rec_stack = set()

        def has_cycle_util(node):
            visited.add(node)
            rec_stack.add(node)

            for neighbor in graph.get(node, []):
                if neighbor not in visited:
                    if has_cycle_util(neighbor):
                        return True
                elif neighbor in rec_stack:
                    return True

            rec_stack.remove(node)
            return False

        for node in self.nodes:
            if node.id not in visited:
                if has_cycle_util(node.id):
                    return True

        return False


class WorkflowDefinition(BaseModel):
    """A stored workflow: ownership metadata plus its graph."""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    tenant_id: Optional[str] = Field(None, description="Owning tenant")
    created_by: Optional[str] = Field(None, description="Creator reference")
    is_active: bool = Field(default=True, description="Whether the workflow may be run")
    graph: WorkflowGraph = Field(default_factory=WorkflowGraph, description="Nodes and edges")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    @property
    def nodes(self) -> List[NodeDefinition]:
        return self.graph.nodes

    @property
    def edges(self) -> List[EdgeDefinition]:
        return self.graph.edges


class WorkflowSummary(BaseModel):
    """Summary information about a workflow."""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    tenant_id: Optional[str] = Field(None, description="Owning tenant")
    is_active: bool = Field(..., description="Whether the workflow may be run")
    node_count: int = Field(..., description="Number of nodes in the graph")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")


class ExecutionLogEntry(BaseModel):
    """One immutable entry of an execution log."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(..., description="When the entry was written")
    node_id: str = Field(..., description="Node the entry refers to")
    phase: LogPhase = Field(..., description="started, completed or failed")
    node_category: Optional[str] = Field(None, description="Node category (started entries)")
    node_subtype: Optional[str] = Field(None, description="Node subtype (started entries)")
    message: Optional[str] = Field(None, description="Human readable message (started entries)")
    result: Optional[Dict[str, Any]] = Field(None, description="Step result (completed entries)")
    error: Optional[str] = Field(None, description="Error message (failed entries)")

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready form stored in the execution row."""
        return self.model_dump(mode="json", exclude_none=True)


class Execution(BaseModel):
    """A durable run record of one trigger invocation."""
    id: str = Field(..., description="Execution ID")
    workflow_id: str = Field(..., description="Executed workflow")
    workflow_name: Optional[str] = Field(None, description="Workflow display name")
    trigger_type: str = Field(..., description="What fired the run")
    trigger_data: Optional[Any] = Field(None, description="Trigger payload")
    status: ExecutionStatusEnum = Field(..., description="Current execution status")
    started_at: datetime = Field(..., description="Timestamp when execution started")
    completed_at: Optional[datetime] = Field(None, description="Timestamp when execution ended")
    error_message: Optional[str] = Field(None, description="Error message if execution failed")
    execution_log: List[ExecutionLogEntry] = Field(default_factory=list, description="Ordered execution log")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ExecutionScope(BaseModel):
    """Filter applied when listing executions."""
    tenant_id: Optional[str] = Field(None, description="Only executions of this tenant's workflows")
    workflow_id: Optional[str] = Field(None, description="Only executions of this workflow")
    status: Optional[ExecutionStatusEnum] = Field(None, description="Only executions in this status")
    limit: int = Field(default=100, ge=1, le=1000, description="Maximum rows returned")


class StepInput(BaseModel):
    """Everything a step executor may look at."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    node: NodeDefinition
    upstream: Optional[Dict[str, Any]] = None
    trigger_type: str = "manual"
    trigger_data: Optional[Any] = None
    now: datetime = Field(default_factory=datetime.utcnow)

    @property
    def config(self) -> Dict[str, Any]:
        return self.node.configuration

    def resolve_field(self, path: str, default: Any = None) -> Any:
        """
        Resolve a dotted field path.

        The upstream step result is searched first, then the trigger payload.
        Integer segments index into lists.
        """
        for source in (self.upstream, self.trigger_data):
            found, value = _lookup_path(source, path)
            if found:
                return value
        return default

    def has_field(self, path: str) -> bool:
        return any(_lookup_path(source, path)[0] for source in (self.upstream, self.trigger_data))


def _lookup_path(source: Any, path: str):
    if source is None or not path:
        return False, None
    current = source
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return False, None
    return True, current
