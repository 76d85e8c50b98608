"""Workflow document, node-type schema and validation report models.

Documents are n8n-compatible: camelCase keys on the wire, snake_case attributes
in Python. Scalar execution-control attributes use strict types so that a value
such as ``"true"`` is reported as a structural problem instead of being coerced.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from flowguard.core.errors import DocumentShapeError

Number = StrictInt | StrictFloat


def _check_position(v: list) -> list:
    if len(v) != 2:
        raise ValueError(f"Position must be [x, y], got {len(v)} values")
    return v


Position = Annotated[list[Number], AfterValidator(_check_position)]


def format_location(loc: tuple[Any, ...] | list[Any]) -> str:
    """Render a pydantic error location as ``nodes[0].parameters.url``."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path = f"{path}.{part}" if path else str(part)
    return path or "<root>"


# =============================================================================
# Workflow document
# =============================================================================


class ConnectionTarget(BaseModel):
    """One end of a connection: the target node name and its input slot."""

    model_config = ConfigDict(extra="forbid")

    node: StrictStr
    type: StrictStr = "main"  # Target input type (main, ai_tool, ...)
    index: StrictInt  # Target input index, sign is checked by the graph validator


# source node name -> output type -> output index -> targets
Connections = dict[str, dict[str, list[list[ConnectionTarget] | None]]]


class WorkflowNode(BaseModel):
    """A node placed in a workflow document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: StrictStr
    name: StrictStr
    type: StrictStr
    type_version: Number | None = None
    position: Position = Field(default_factory=lambda: [0, 0])
    parameters: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[str, Any] | None = None
    disabled: StrictBool = False
    notes: StrictStr | None = None
    notes_in_flow: StrictBool | None = None

    # Execution control
    on_error: StrictStr | None = None
    continue_on_fail: StrictBool | None = None
    retry_on_fail: StrictBool | None = None
    max_tries: StrictInt | None = None
    wait_between_tries: StrictInt | None = None
    always_output_data: StrictBool | None = None
    execute_once: StrictBool | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Node name must not be empty")
        return v


class WorkflowDocument(BaseModel):
    """Complete workflow document: nodes, connections and metadata."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: StrictStr = ""
    nodes: list[WorkflowNode]
    connections: Connections = Field(default_factory=dict)
    settings: dict[str, Any] = Field(default_factory=dict)
    tags: list[StrictStr] = Field(default_factory=list)

    @classmethod
    def from_data(cls, data: Any) -> "WorkflowDocument":
        """Build a document from decoded JSON/YAML data.

        Raises:
            DocumentShapeError: If the data does not describe a workflow document.
        """
        if isinstance(data, cls):
            return data
        if not isinstance(data, dict):
            raise DocumentShapeError(
                [
                    {
                        "path": "<root>",
                        "message": f"Expected an object, got {type(data).__name__}",
                    }
                ]
            )
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DocumentShapeError(
                [{"path": format_location(err["loc"]), "message": err["msg"]} for err in e.errors()]
            ) from e

    def to_data(self) -> dict[str, Any]:
        """Serialize back to the camelCase wire shape."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def node_names(self) -> list[str]:
        return [n.name for n in self.nodes]

    def get_node(self, name: str) -> WorkflowNode | None:
        for node in self.nodes:
            if node.name == name:
                return node
        return None


# =============================================================================
# Node-type schema
# =============================================================================


class DisplayOptions(BaseModel):
    """Visibility condition of a property.

    ``show`` lists sibling -> allowed values that must all match; ``hide`` lists
    sibling -> values of which any match hides the property.
    """

    model_config = ConfigDict(extra="ignore")

    show: dict[str, Any] = Field(default_factory=dict)
    hide: dict[str, Any] = Field(default_factory=dict)


class PropertySchema(BaseModel):
    """Declarative description of one node parameter."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
    display_name: str | None = None
    description: str | None = None
    required: bool = False
    default: Any = None
    display_options: DisplayOptions | None = None
    options: list[Any] = Field(default_factory=list)

    def option_values(self) -> list[Any]:
        """Allowed values for ``options``/``multiOptions`` properties."""
        values = []
        for option in self.options:
            if isinstance(option, dict):
                if "value" in option:
                    values.append(option["value"])
            else:
                values.append(option)
        return values

    @property
    def has_default(self) -> bool:
        return self.default not in (None, "")


class CredentialRequirement(BaseModel):
    name: str
    required: bool = False


class NodeTypeSchema(BaseModel):
    """Capabilities of a node type as published by the catalog.

    ``properties`` keeps the raw entries; validators parse them one by one so a
    single malformed entry never hides the rest.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    node_type: str
    display_name: str = ""
    version: Number | list[Number] = 1
    is_trigger: bool = False
    is_loop_capable: bool = False  # May connect an output back to itself
    outputs: list[str] = Field(default_factory=lambda: ["main"])
    dynamic_outputs: bool = False  # Output count depends on parameters
    properties: list[Any] = Field(default_factory=list)
    credentials: list[CredentialRequirement] = Field(default_factory=list)

    @property
    def is_versioned(self) -> bool:
        return isinstance(self.version, list)

    @property
    def latest_version(self) -> int | float:
        if isinstance(self.version, list):
            return max(self.version) if self.version else 1
        return self.version

    @property
    def short_name(self) -> str:
        return self.node_type.rsplit(".", 1)[-1]


# =============================================================================
# Validation results
# =============================================================================


class IssueSeverity(str, Enum):
    """Severity of a validation finding."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(str, Enum):
    """Rule family a finding belongs to; profiles filter on it."""

    STRUCTURE = "structure"  # Document-level shape and naming
    CONNECTION = "connection"  # Connection targets, indices, cardinality
    NODE_TYPE = "node_type"  # Unknown type, bad prefix, typeVersion
    REQUIRED = "required"  # Missing required properties
    TYPE = "type"  # Property value of the wrong type or option
    RULE = "rule"  # Node-type specific execution-correctness rules
    EXPRESSION = "expression"  # Template-expression syntax and references
    EXPRESSION_FORMAT = "expression_format"  # Prefix and resource-locator format
    STYLE = "style"  # Best-practice findings
    SECURITY = "security"  # Hardcoded secrets, injection risks
    ANOMALY = "anomaly"  # Recoverable problems met while validating


class ValidationIssue(BaseModel):
    """A single locatable diagnostic."""

    severity: IssueSeverity
    category: IssueCategory
    message: str
    code: str = ""
    node_name: str | None = None
    node_id: str | None = None
    path: str | None = None  # Field path inside the node, e.g. body.headers[2].value
    fix: str | None = None
    suggested_value: Any = None

    @property
    def location(self) -> str:
        parts = [p for p in (self.node_name, self.path) if p]
        return ": ".join(parts) if parts else "workflow"


class WorkflowStatistics(BaseModel):
    total_nodes: int = 0
    enabled_nodes: int = 0
    trigger_nodes: int = 0
    valid_connections: int = 0
    invalid_connections: int = 0
    expressions_validated: int = 0


class ValidationReport(BaseModel):
    """Aggregated outcome of validating a workflow document."""

    valid: bool = True
    profile: str = "runtime"
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    statistics: WorkflowStatistics = Field(default_factory=WorkflowStatistics)

    def add(self, issue: ValidationIssue) -> None:
        if issue.severity == IssueSeverity.ERROR:
            self.errors.append(issue)
            self.valid = False
        elif issue.severity == IssueSeverity.WARNING:
            self.warnings.append(issue)
        else:
            self.notes.append(f"{issue.location}: {issue.message}")

    @classmethod
    def from_shape_error(cls, error: DocumentShapeError, profile: str) -> "ValidationReport":
        """Report for a document that failed structural parsing."""
        report = cls(profile=profile)
        for item in error.issues:
            report.add(
                ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    category=IssueCategory.STRUCTURE,
                    code="invalid_document",
                    message=f"{item['path']}: {item['message']}",
                    path=item["path"],
                )
            )
        return report
