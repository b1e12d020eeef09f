"""
Configuration for Flow Builder Core.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeType(str, Enum):
    """Available node types."""

    START = "start"
    END = "end"
    AGENT = "agent"
    IF = "if"
    DATA_STORE = "dataStore"


class ReadyState(str, Enum):
    """Flow readiness values."""

    DRAFT = "draft"
    READY = "ready"
    ERROR = "error"


class LogicOperator(str, Enum):
    """How an If node combines its conditions."""

    AND = "AND"
    OR = "OR"


class BranchHandle(str, Enum):
    """Source handles emitted by If nodes."""

    TRUE = "true"
    FALSE = "false"


class ConditionDataType(str, Enum):
    """Data types a condition can compare."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"


class ConditionOperator(str, Enum):
    """Condition operators. Legal sets per data type live in conditions.operators."""

    # Unary
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"

    # Binary
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    NOT_STARTS_WITH = "not_starts_with"
    ENDS_WITH = "ends_with"
    NOT_ENDS_WITH = "not_ends_with"
    MATCHES_REGEX = "matches_regex"
    NOT_MATCHES_REGEX = "not_matches_regex"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUALS = "greater_than_or_equals"
    LESS_THAN_OR_EQUALS = "less_than_or_equals"


class IssueKind(str, Enum):
    """Validation issue taxonomy."""

    STRUCTURAL = "structural"
    VALIDATION = "validation"


class IssueSeverity(str, Enum):
    """
    Issue severity.

    ERROR drives the flow to the error state, WARNING keeps it in draft,
    INFO is advisory.
    """

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCode(str, Enum):
    """Validation issue codes."""

    # Structure
    MISSING_START_NODE = "MISSING_START_NODE"
    MISSING_END_NODE = "MISSING_END_NODE"
    MULTIPLE_START_NODES = "MULTIPLE_START_NODES"
    MULTIPLE_END_NODES = "MULTIPLE_END_NODES"
    DUPLICATE_NODE_ID = "DUPLICATE_NODE_ID"
    DANGLING_EDGE = "DANGLING_EDGE"
    FLOW_TOO_LARGE = "FLOW_TOO_LARGE"

    # Connectivity
    NODE_NOT_CONNECTED = "NODE_NOT_CONNECTED"
    IF_NODE_MISSING_BRANCHES = "IF_NODE_MISSING_BRANCHES"
    IF_NODE_BRANCH_NOT_REACHING_END = "IF_NODE_BRANCH_NOT_REACHING_END"
    CYCLE_DETECTED = "CYCLE_DETECTED"

    # Node configuration
    IF_NODE_NO_VALID_CONDITIONS = "IF_NODE_NO_VALID_CONDITIONS"
    NO_MODEL_SELECTED = "NO_MODEL_SELECTED"
    AGENT_NOT_FOUND = "AGENT_NOT_FOUND"
    DATA_STORE_NO_FIELDS = "DATA_STORE_NO_FIELDS"
    DATA_STORE_UNKNOWN_FIELD = "DATA_STORE_UNKNOWN_FIELD"


class GraphConfig(BaseSettings):
    """Graph limits and traversal caching."""

    model_config = SettingsConfigDict(env_prefix="GRAPH_")

    traversal_cache_size: int = Field(
        default=128, ge=1, description="Traversal results kept in the LRU cache"
    )
    max_nodes_per_flow: int = Field(default=500, description="Max nodes per flow")
    max_edges_per_flow: int = Field(default=2000, description="Max edges per flow")


class ValidationConfig(BaseSettings):
    """Validation switches."""

    model_config = SettingsConfigDict(env_prefix="VALIDATION_")

    require_model_binding: bool = Field(
        default=True, description="Agent nodes must have a model selected"
    )
    check_data_store_fields: bool = Field(
        default=True, description="Check data store fields against the flow schema"
    )
    report_cycles: bool = Field(default=True, description="Report cycles as info issues")


class RewriteConfig(BaseSettings):
    """Agent reference rewriting."""

    model_config = SettingsConfigDict(env_prefix="REWRITE_")

    max_name_length: int = Field(
        default=255, ge=1, description="Longest sanitized agent name accepted"
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service configuration
    service_name: str = Field(default="flow-builder", description="Service name")
    host: str = Field(default="0.0.0.0", description="Host to bind")
    port: int = Field(default=8091, ge=1024, le=65535, description="Port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="info", description="Log level")

    # API settings
    api_prefix: str = Field(default="", description="API prefix")
    enable_docs: bool = Field(default=True, description="Enable API docs")

    # Sub-configurations
    graph: GraphConfig = Field(default_factory=GraphConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    rewrite: RewriteConfig = Field(default_factory=RewriteConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()
