"""Core Pydantic models for the workflow engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class WorkflowStatus(str, Enum):
    """Lifecycle status of a workflow definition."""
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class ExecutionStatus(str, Enum):
    """Status of an execution or of a single node invocation."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        """Whether the status is SUCCESS or ERROR."""
        return self in (ExecutionStatus.SUCCESS, ExecutionStatus.ERROR)


class ValidationResult(BaseModel):
    """Result of workflow validation."""
    is_valid: bool = Field(..., description="Whether the workflow is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class Node(BaseModel):
    """A typed unit of work within a workflow."""
    id: str = Field(..., description="Identifier, unique within the workflow")
    type: str = Field(..., description="Type tag used to resolve the node handler")
    name: Optional[str] = Field(None, description="Display name")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Handler parameters")
    timeout: Optional[float] = Field(None, description="Timeout in seconds for the handler call")

    @model_validator(mode='before')
    @classmethod
    def lift_editor_parameters(cls, values):
        """Accept editor payloads that nest parameters under ``data.parameters``."""
        if isinstance(values, dict) and "parameters" not in values:
            data = values.get("data")
            if isinstance(data, dict):
                values = dict(values)
                values["parameters"] = data.get("parameters") or {}
                if values.get("name") is None and data.get("label"):
                    values["name"] = data["label"]
        return values

    @field_validator('id')
    @classmethod
    def validate_id_format(cls, id_value):
        """Any non-blank ID is accepted; surrounding whitespace is dropped, as for connection endpoints."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        return id_value.strip()

    @field_validator('type')
    @classmethod
    def validate_type(cls, type_tag):
        """Ensure the type tag is not blank."""
        if not type_tag or not type_tag.strip():
            raise ValueError("Node type cannot be empty")
        return type_tag.strip()

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, timeout):
        """Ensure timeout is positive if specified."""
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be positive")
        return timeout


class Connection(BaseModel):
    """A directed edge between two nodes' handles."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Connection identifier")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    source_handle: Optional[str] = Field(None, alias="sourceHandle", description="Output handle on the source")
    target_handle: Optional[str] = Field(None, alias="targetHandle", description="Input handle on the target")

    @field_validator('source', 'target')
    @classmethod
    def validate_node_ids(cls, node_id):
        """Ensure node IDs are valid."""
        if not node_id or not node_id.strip():
            raise ValueError("Node ID cannot be empty")
        return node_id.strip()


class Workflow(BaseModel):
    """A named, versioned directed graph of nodes and connections."""
    id: str = Field(..., description="Workflow identifier")
    name: str = Field(..., description="Name of the workflow")
    description: str = Field("", description="Description of the workflow")
    nodes: List[Node] = Field(default_factory=list, description="Nodes in declared order")
    connections: List[Connection] = Field(default_factory=list, description="Connections in declared order")
    status: WorkflowStatus = Field(WorkflowStatus.DRAFT, description="Lifecycle status")
    version: int = Field(1, description="Version, bumped on every update")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        """Ensure workflow name is not empty."""
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    @field_validator('nodes')
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        seen = set()
        duplicates = []
        for node in nodes:
            if node.id in seen:
                duplicates.append(node.id)
            seen.add(node.id)
        if duplicates:
            raise ValueError(f"Duplicate node IDs: {', '.join(sorted(set(duplicates)))}")
        return nodes

    @model_validator(mode='after')
    def validate_connection_endpoints(self):
        """Ensure every connection references nodes of this workflow."""
        node_ids = {node.id for node in self.nodes}
        for connection in self.connections:
            if connection.source not in node_ids:
                raise ValueError(f"Connection '{connection.id}' references non-existent source node: {connection.source}")
            if connection.target not in node_ids:
                raise ValueError(f"Connection '{connection.id}' references non-existent target node: {connection.target}")
        return self


class WorkflowSummary(BaseModel):
    """Summary information about a workflow."""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    status: WorkflowStatus = Field(..., description="Lifecycle status")
    version: int = Field(..., description="Workflow version")
    node_count: int = Field(..., description="Number of nodes in the workflow")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")


class Execution(BaseModel):
    """One run of a workflow against a given input."""
    id: str = Field(..., description="Execution identifier")
    workflow_id: str = Field(..., description="Owning workflow ID")
    status: ExecutionStatus = Field(..., description="Execution status")
    input: Any = Field(default_factory=dict, description="Input payload")
    error: Optional[str] = Field(None, description="Error message for failed executions")
    started_at: datetime = Field(..., description="Timestamp when execution started")
    completed_at: Optional[datetime] = Field(None, description="Timestamp when execution reached a terminal status")


class LogEntry(BaseModel):
    """An unpersisted record of one node state transition."""
    execution_id: str = Field(..., description="Owning execution ID")
    node_id: str = Field(..., description="Node that produced the entry")
    status: ExecutionStatus = Field(..., description="Node status at this transition")
    input: Optional[Any] = Field(None, description="Input snapshot")
    output: Optional[Any] = Field(None, description="Output snapshot")
    error: Optional[str] = Field(None, description="Error message")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="When the transition happened")


class ExecutionLog(LogEntry):
    """A persisted, immutable log entry."""
    id: str = Field(..., description="Log entry identifier")


class NodeResult(BaseModel):
    """In-memory result of one node invocation."""
    node_id: str = Field(..., description="Node ID")
    status: ExecutionStatus = Field(..., description="SUCCESS or ERROR")
    output: Any = Field(None, description="Output payload")
    error: Optional[str] = Field(None, description="Error message if the handler failed")

    @field_validator('status')
    @classmethod
    def validate_terminal(cls, status):
        """Handlers may only report a terminal status."""
        if not ExecutionStatus(status).is_terminal:
            raise ValueError("Node result status must be SUCCESS or ERROR")
        return status


class _CamelEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_message(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExecutionUpdateEvent(_CamelEvent):
    """Live execution status update."""
    execution_id: str
    status: ExecutionStatus
    output: Optional[Any] = None
    error: Optional[str] = None


class NodeLogEvent(_CamelEvent):
    """Live per-node log update."""
    execution_id: str
    node_id: str
    status: ExecutionStatus
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = None
