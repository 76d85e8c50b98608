"""Diff operation models.

Each operation variant is its own pydantic model tagged by ``type``; the
:data:`DiffOperation` union dispatches on that tag. Variants reject unknown
fields so a misspelled field is reported instead of silently ignored.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    TypeAdapter,
    model_validator,
)
from pydantic.alias_generators import to_camel

from flowguard.core.models import Position, ValidationReport, WorkflowDocument, WorkflowNode


class OperationBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    description: str | None = None


class _NodeTargeted(OperationBase):
    """Operation addressing one existing node by id or name."""

    node_id: StrictStr | None = None
    node_name: StrictStr | None = None

    @model_validator(mode="after")
    def require_reference(self):
        if self.node_id is None and self.node_name is None:
            raise ValueError("Either nodeId or nodeName is required")
        return self

    @property
    def reference(self) -> str:
        return self.node_id if self.node_id is not None else self.node_name


class NewNode(WorkflowNode):
    """Node payload of addNode; the id is generated when omitted."""

    id: StrictStr | None = None
    position: Position


# =============================================================================
# Node operations
# =============================================================================


class AddNodeOperation(OperationBase):
    type: Literal["addNode"]
    node: NewNode


class RemoveNodeOperation(_NodeTargeted):
    type: Literal["removeNode"]


class UpdateNodeOperation(_NodeTargeted):
    """Set node attributes by dotted path, e.g. ``{"parameters.url": "https://..."}``."""

    type: Literal["updateNode"]
    changes: dict[str, Any] = Field(min_length=1)


class MoveNodeOperation(_NodeTargeted):
    type: Literal["moveNode"]
    position: Position


class EnableNodeOperation(_NodeTargeted):
    type: Literal["enableNode"]


class DisableNodeOperation(_NodeTargeted):
    type: Literal["disableNode"]


# =============================================================================
# Connection operations
# =============================================================================


class AddConnectionOperation(OperationBase):
    type: Literal["addConnection"]
    source: StrictStr
    target: StrictStr
    source_output: StrictStr = "main"
    target_input: StrictStr = "main"
    source_index: StrictInt = 0
    target_index: StrictInt = 0


class RemoveConnectionOperation(OperationBase):
    """Remove the connection(s) from source to target on one output type.

    Without ``source_index`` every matching output slot is cleared.
    """

    type: Literal["removeConnection"]
    source: StrictStr
    target: StrictStr
    source_output: StrictStr = "main"
    target_input: StrictStr = "main"
    source_index: StrictInt | None = None


class ConnectionChanges(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    source_output: StrictStr | None = None
    target_input: StrictStr | None = None
    source_index: StrictInt | None = None
    target_index: StrictInt | None = None


class UpdateConnectionOperation(OperationBase):
    type: Literal["updateConnection"]
    source: StrictStr
    target: StrictStr
    source_output: StrictStr = "main"
    source_index: StrictInt | None = None
    changes: ConnectionChanges


# =============================================================================
# Metadata operations
# =============================================================================


class UpdateSettingsOperation(OperationBase):
    type: Literal["updateSettings"]
    settings: dict[str, Any]


class UpdateNameOperation(OperationBase):
    type: Literal["updateName"]
    name: StrictStr = Field(min_length=1)


class AddTagOperation(OperationBase):
    type: Literal["addTag"]
    tag: StrictStr = Field(min_length=1)


class RemoveTagOperation(OperationBase):
    type: Literal["removeTag"]
    tag: StrictStr = Field(min_length=1)


DiffOperation = Annotated[
    Union[
        AddNodeOperation,
        RemoveNodeOperation,
        UpdateNodeOperation,
        MoveNodeOperation,
        EnableNodeOperation,
        DisableNodeOperation,
        AddConnectionOperation,
        RemoveConnectionOperation,
        UpdateConnectionOperation,
        UpdateSettingsOperation,
        UpdateNameOperation,
        AddTagOperation,
        RemoveTagOperation,
    ],
    Field(discriminator="type"),
]

diff_operation_adapter: TypeAdapter[DiffOperation] = TypeAdapter(DiffOperation)


# =============================================================================
# Results
# =============================================================================


class DiffError(BaseModel):
    """Why an operation (by position in the batch) was rejected."""

    operation: int
    type: str | None = None
    message: str
    details: dict[str, Any] | None = None


class DiffResult(BaseModel):
    """Outcome of applying (or dry-running) a diff batch.

    On success ``document`` is the transformed copy, or None for a dry run. On
    failure ``document`` is the caller's document, untouched.
    """

    success: bool
    dry_run: bool = False
    document: WorkflowDocument | None = None
    errors: list[DiffError] = Field(default_factory=list)
    operations_applied: int = 0
    message: str = ""
    report: ValidationReport | None = None
