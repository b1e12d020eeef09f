"""
Data Models for Flow Builder Core.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
import uuid

from pydantic import BaseModel, Field

from .config import (
    NodeType,
    ReadyState,
    LogicOperator,
    ConditionDataType,
    ConditionOperator,
    IssueCode,
    IssueKind,
    IssueSeverity,
)
from .exceptions import MalformedNodeError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_operator(raw: Optional[str]) -> Optional[ConditionOperator]:
    """Parse an operator, accepting the type-prefixed form (``number_equals``)."""
    if raw is None or raw == "":
        return None
    try:
        return ConditionOperator(raw)
    except ValueError:
        pass
    for data_type in ConditionDataType:
        prefix = f"{data_type.value}_"
        if raw.startswith(prefix):
            return ConditionOperator(raw[len(prefix):])
    raise ValueError(f"Unknown condition operator: {raw}")


# =============================================================================
# Condition Models
# =============================================================================


@dataclass
class Condition:
    """A typed predicate inside an If node. ``operator=None`` marks a draft."""

    id: str
    data_type: Optional[ConditionDataType] = None
    operator: Optional[ConditionOperator] = None
    value1: str = ""
    value2: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "dataType": self.data_type.value if self.data_type else None,
            "operator": self.operator.value if self.operator else None,
            "value1": self.value1,
            "value2": self.value2,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        data_type = data.get("dataType")
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            data_type=ConditionDataType(data_type) if data_type else None,
            operator=_parse_operator(data.get("operator")),
            value1=data.get("value1") or "",
            value2=data.get("value2") or "",
        )


# =============================================================================
# Node Models
# =============================================================================


@dataclass
class AgentNodeData:
    """Payload of an agent node."""

    agent_id: str
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"agentId": self.agent_id, "color": self.color}


@dataclass
class IfNodeData:
    """
    Payload of an If node.

    ``draft_conditions`` holds every condition the user is editing, complete
    or not. ``conditions`` holds only the valid subset that is evaluated.
    """

    name: str = ""
    logic_operator: LogicOperator = LogicOperator.AND
    conditions: List[Condition] = field(default_factory=list)
    draft_conditions: List[Condition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "logicOperator": self.logic_operator.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "draftConditions": [c.to_dict() for c in self.draft_conditions],
        }


@dataclass
class DataStoreField:
    """A data store node's assignment to a schema field."""

    id: str
    schema_field_id: str
    logic: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schemaFieldId": self.schema_field_id,
            "logic": self.logic,
        }


@dataclass
class DataStoreNodeData:
    """Payload of a data store node."""

    name: str = ""
    color: Optional[str] = None
    fields: List[DataStoreField] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "color": self.color,
            "fields": [f.to_dict() for f in self.fields],
        }


NodeData = Union[AgentNodeData, IfNodeData, DataStoreNodeData, None]


def _parse_agent_data(node_id: str, data: Dict[str, Any]) -> AgentNodeData:
    # Older flows keyed the agent by the node id itself
    return AgentNodeData(
        agent_id=data.get("agentId") or node_id,
        color=data.get("color"),
    )


def _parse_if_data(node_id: str, data: Dict[str, Any]) -> IfNodeData:
    conditions = [Condition.from_dict(c) for c in data.get("conditions") or []]
    if "draftConditions" in data and data["draftConditions"] is not None:
        drafts = [Condition.from_dict(c) for c in data["draftConditions"]]
    else:
        drafts = [Condition.from_dict(c.to_dict()) for c in conditions]
    return IfNodeData(
        name=data.get("name") or data.get("label") or "",
        logic_operator=LogicOperator(data.get("logicOperator") or "AND"),
        conditions=conditions,
        draft_conditions=drafts,
    )


def _parse_data_store_data(node_id: str, data: Dict[str, Any]) -> DataStoreNodeData:
    raw_fields = data.get("fields")
    if raw_fields is None:
        raw_fields = data.get("dataStoreFields") or []
    return DataStoreNodeData(
        name=data.get("name") or data.get("label") or "",
        color=data.get("color"),
        fields=[
            DataStoreField(
                id=f.get("id") or str(uuid.uuid4()),
                schema_field_id=f["schemaFieldId"],
                logic=f.get("logic") or "",
            )
            for f in raw_fields
        ],
    )


_NODE_DATA_PARSERS = {
    NodeType.AGENT: _parse_agent_data,
    NodeType.IF: _parse_if_data,
    NodeType.DATA_STORE: _parse_data_store_data,
}


@dataclass
class Node:
    """A node in a flow graph."""

    id: str
    type: NodeType
    data: NodeData = None
    position: Dict[str, float] = field(default_factory=lambda: {"x": 0, "y": 0})

    @property
    def agent_data(self) -> AgentNodeData:
        if not isinstance(self.data, AgentNodeData):
            raise MalformedNodeError(self.id, "expected agent node data")
        return self.data

    @property
    def if_data(self) -> IfNodeData:
        if not isinstance(self.data, IfNodeData):
            raise MalformedNodeError(self.id, "expected if node data")
        return self.data

    @property
    def data_store_data(self) -> DataStoreNodeData:
        if not isinstance(self.data, DataStoreNodeData):
            raise MalformedNodeError(self.id, "expected data store node data")
        return self.data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "position": self.position,
            "data": self.data.to_dict() if self.data is not None else {},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        node_id = data.get("id") or str(uuid.uuid4())
        try:
            node_type = NodeType(data["type"])
        except (KeyError, ValueError) as e:
            raise MalformedNodeError(node_id, f"unknown node type {data.get('type')!r}") from e

        raw_data = data.get("data") or {}
        if not isinstance(raw_data, dict):
            raise MalformedNodeError(node_id, "node data must be an object")

        parser = _NODE_DATA_PARSERS.get(node_type)
        try:
            node_data = parser(node_id, raw_data) if parser else None
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedNodeError(node_id, str(e)) from e

        return cls(
            id=node_id,
            type=node_type,
            data=node_data,
            position=data.get("position") or {"x": 0, "y": 0},
        )


# =============================================================================
# Edge Models
# =============================================================================


@dataclass
class Edge:
    """Directed edge between two nodes."""

    id: str
    source: str
    target: str
    source_handle: Optional[str] = None  # "true"/"false" on If nodes
    target_handle: Optional[str] = None
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
        }
        if self.source_handle is not None:
            result["sourceHandle"] = self.source_handle
        if self.target_handle is not None:
            result["targetHandle"] = self.target_handle
        if self.label is not None:
            result["label"] = self.label
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        if not data.get("source") or not data.get("target"):
            raise ValueError(f"Edge {data.get('id')} needs a source and a target")
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            source=data["source"],
            target=data["target"],
            source_handle=data.get("sourceHandle"),
            target_handle=data.get("targetHandle"),
            label=data.get("label"),
        )


# =============================================================================
# Agent Models
# =============================================================================


@dataclass
class PromptBlock:
    """A block of a prompt message. Only ``plain`` blocks carry a template."""

    id: str
    type: str = "plain"
    template: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type, "template": self.template}


@dataclass
class PromptMessage:
    """An ordered chat message made of prompt blocks."""

    id: str
    role: str = "user"
    prompt_blocks: List[PromptBlock] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "promptBlocks": [b.to_dict() for b in self.prompt_blocks],
        }


@dataclass
class SchemaField:
    """A structured-output field of an agent."""

    name: str
    type: str = "string"
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "description": self.description}


@dataclass
class Agent:
    """An agent entity, owned outside the flow and referenced by id."""

    id: str
    name: str
    text_prompt: str = ""
    prompt_messages: List[PromptMessage] = field(default_factory=list)
    schema_fields: List[SchemaField] = field(default_factory=list)
    model_name: Optional[str] = None
    api_source: Optional[str] = None

    @property
    def has_model_binding(self) -> bool:
        return bool(self.model_name) and bool(self.api_source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "textPrompt": self.text_prompt,
            "promptMessages": [m.to_dict() for m in self.prompt_messages],
            "schemaFields": [f.to_dict() for f in self.schema_fields],
            "modelName": self.model_name,
            "apiSource": self.api_source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Agent":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            text_prompt=data.get("textPrompt") or "",
            prompt_messages=[
                PromptMessage(
                    id=m.get("id") or str(uuid.uuid4()),
                    role=m.get("role") or "user",
                    prompt_blocks=[
                        PromptBlock(
                            id=b.get("id") or str(uuid.uuid4()),
                            type=b.get("type") or "plain",
                            template=b.get("template") or "",
                        )
                        for b in m.get("promptBlocks") or []
                    ],
                )
                for m in data.get("promptMessages") or []
            ],
            schema_fields=[
                SchemaField(
                    name=f["name"],
                    type=f.get("type") or "string",
                    description=f.get("description") or "",
                )
                for f in data.get("schemaFields") or []
            ],
            model_name=data.get("modelName"),
            api_source=data.get("apiSource"),
        )


# =============================================================================
# Data Store Schema
# =============================================================================


@dataclass
class DataStoreSchemaField:
    """A session-scoped field declared by the flow."""

    id: str
    name: str
    type: str = "string"
    initial_value: str = ""
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "initialValue": self.initial_value,
            "description": self.description,
        }


@dataclass
class DataStoreSchema:
    """Ordered list of data store fields."""

    fields: List[DataStoreSchemaField] = field(default_factory=list)

    def field_ids(self) -> List[str]:
        return [f.id for f in self.fields]

    def to_dict(self) -> Dict[str, Any]:
        return {"fields": [f.to_dict() for f in self.fields]}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DataStoreSchema":
        if not data:
            return cls()
        return cls(
            fields=[
                DataStoreSchemaField(
                    id=f["id"],
                    name=f.get("name") or "",
                    type=f.get("type") or "string",
                    initial_value=f.get("initialValue") or "",
                    description=f.get("description") or "",
                )
                for f in data.get("fields") or []
            ]
        )


# =============================================================================
# Validation Models
# =============================================================================


@dataclass
class ValidationIssue:
    """A validation issue found in a flow."""

    reason: str
    code: IssueCode
    kind: IssueKind = IssueKind.VALIDATION
    severity: IssueSeverity = IssueSeverity.WARNING
    node_id: Optional[str] = None
    edge_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "reason": self.reason,
            "code": self.code.value,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "edgeId": self.edge_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationIssue":
        return cls(
            reason=data["reason"],
            code=IssueCode(data.get("code") or IssueCode.NODE_NOT_CONNECTED.value),
            kind=IssueKind(data.get("kind") or IssueKind.VALIDATION.value),
            severity=IssueSeverity(data.get("severity") or IssueSeverity.WARNING.value),
            node_id=data.get("nodeId"),
            edge_id=data.get("edgeId"),
        )


@dataclass
class ValidationResult:
    """Result of flow validation."""

    issues: List[ValidationIssue] = field(default_factory=list)
    checked_at: datetime = field(default_factory=_utcnow)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.WARNING]

    @property
    def info(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.INFO]

    @property
    def has_hard_errors(self) -> bool:
        return bool(self.errors)

    @property
    def ready(self) -> bool:
        """True when nothing blocks the flow from going live."""
        return not self.errors and not self.warnings

    def for_node(self, node_id: str) -> List[ValidationIssue]:
        return [i for i in self.issues if i.node_id == node_id]


# =============================================================================
# Flow Model
# =============================================================================


@dataclass
class Flow:
    """Flow aggregate root."""

    id: str
    name: str = ""
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    data_store_schema: DataStoreSchema = field(default_factory=DataStoreSchema)
    response_template: str = ""
    ready_state: ReadyState = ReadyState.DRAFT
    validation_issues: List[ValidationIssue] = field(default_factory=list)
    version: int = 1
    updated_at: datetime = field(default_factory=_utcnow)

    def get_node(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def nodes_of_type(self, node_type: NodeType) -> List[Node]:
        return [n for n in self.nodes if n.type == node_type]

    @property
    def agent_ids(self) -> List[str]:
        seen: List[str] = []
        for node in self.nodes_of_type(NodeType.AGENT):
            agent_id = node.agent_data.agent_id
            if agent_id not in seen:
                seen.append(agent_id)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "dataStoreSchema": self.data_store_schema.to_dict(),
            "responseTemplate": self.response_template,
            "readyState": self.ready_state.value,
            "validationIssues": [i.to_dict() for i in self.validation_issues],
            "version": self.version,
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Flow":
        updated_at = data.get("updatedAt")
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            nodes=[Node.from_dict(n) for n in data.get("nodes") or []],
            edges=[Edge.from_dict(e) for e in data.get("edges") or []],
            data_store_schema=DataStoreSchema.from_dict(data.get("dataStoreSchema")),
            response_template=data.get("responseTemplate") or "",
            ready_state=ReadyState(data.get("readyState") or ReadyState.DRAFT.value),
            validation_issues=[
                ValidationIssue.from_dict(i) for i in data.get("validationIssues") or []
            ],
            version=data.get("version") or 1,
            updated_at=datetime.fromisoformat(updated_at) if updated_at else _utcnow(),
        )


# =============================================================================
# API Request/Response Models
# =============================================================================


class CreateFlowRequest(BaseModel):
    """Request to create a flow."""

    name: str = Field(..., min_length=1, max_length=200)
    id: Optional[str] = None


class UpdateFlowRequest(BaseModel):
    """Request to update a flow."""

    name: Optional[str] = None
    nodes: Optional[List[Dict[str, Any]]] = None
    edges: Optional[List[Dict[str, Any]]] = None
    data_store_schema: Optional[Dict[str, Any]] = None
    response_template: Optional[str] = None


class ValidateFlowResponse(BaseModel):
    """Response from flow validation."""

    valid: bool
    ready_state: str
    errors: List[Dict[str, Any]]
    warnings: List[Dict[str, Any]]
    info: List[Dict[str, Any]] = Field(default_factory=list)


class EvaluateNodeRequest(BaseModel):
    """Variables used to resolve condition operands."""

    variables: Dict[str, Any] = Field(default_factory=dict)


class RenameReferencesRequest(BaseModel):
    """Request to rewrite references after an agent rename."""

    old_name: str = Field(..., min_length=1)
    new_name: str = Field(..., min_length=1)


class RenameReferencesResponse(BaseModel):
    """Outcome of a reference rewrite."""

    no_op: bool
    total_references_updated: int
    updated_agent_ids: List[str]
    updated_node_ids: List[str]
    response_template_changed: bool
    updated_response_template: Optional[str] = None


# =============================================================================
# Export
# =============================================================================


__all__ = [
    # Condition
    "Condition",
    # Node
    "AgentNodeData",
    "IfNodeData",
    "DataStoreField",
    "DataStoreNodeData",
    "NodeData",
    "Node",
    # Edge
    "Edge",
    # Agent
    "PromptBlock",
    "PromptMessage",
    "SchemaField",
    "Agent",
    # Schema
    "DataStoreSchemaField",
    "DataStoreSchema",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Flow
    "Flow",
    # API
    "CreateFlowRequest",
    "UpdateFlowRequest",
    "ValidateFlowResponse",
    "EvaluateNodeRequest",
    "RenameReferencesRequest",
    "RenameReferencesResponse",
]
