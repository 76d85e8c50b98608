"""Transactional application of diff operation batches.

Operations run in order against a private deep copy of the document. Each one
is checked against the state left by the operations before it, so a batch can
add a node and connect to it. The first failing operation rejects the whole
batch; the caller's document is never modified.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Sequence

from pydantic import ValidationError

from flowguard.core.catalog import (
    TYPE_PREFIXES,
    NodeTypeRepository,
    SchemaCache,
    denormalize_node_type,
    schema_cache,
)
from flowguard.core.diff_models import (
    AddConnectionOperation,
    AddNodeOperation,
    AddTagOperation,
    DiffError,
    DiffOperation,
    DiffResult,
    DisableNodeOperation,
    EnableNodeOperation,
    MoveNodeOperation,
    OperationBase,
    RemoveConnectionOperation,
    RemoveNodeOperation,
    RemoveTagOperation,
    UpdateConnectionOperation,
    UpdateNameOperation,
    UpdateNodeOperation,
    UpdateSettingsOperation,
    diff_operation_adapter,
)
from flowguard.core.errors import DiffApplyError
from flowguard.core.models import (
    ConnectionTarget,
    WorkflowDocument,
    WorkflowNode,
    format_location,
)

logger = logging.getLogger(__name__)


def set_path(data: dict[str, Any], dotted: str, value: Any) -> None:
    """Assign ``value`` at a dotted path, creating intermediate objects.

    Raises:
        DiffApplyError: If an intermediate segment holds a non-object value.
    """
    parts = dotted.split(".")
    if any(not p for p in parts):
        raise DiffApplyError(f"Invalid change path '{dotted}'")
    current = data
    for depth, part in enumerate(parts[:-1]):
        child = current.get(part)
        if child is None:
            child = current[part] = {}
        elif not isinstance(child, dict):
            prefix = ".".join(parts[: depth + 1])
            raise DiffApplyError(f"Cannot set '{dotted}': '{prefix}' is not an object")
        current = child
    current[parts[-1]] = value


def node_type_form_error(node_type: str) -> str | None:
    """Reject type names without a package prefix or in the short catalog form."""
    if "." not in node_type:
        return (
            f'Invalid node type "{node_type}": must include a package prefix '
            f'(e.g. "n8n-nodes-base.{node_type}")'
        )
    if node_type.startswith(tuple(TYPE_PREFIXES.values())):
        return f'Invalid node type "{node_type}": use "{denormalize_node_type(node_type)}" instead'
    return None


def _prune(document: WorkflowDocument, source: str, output: str) -> None:
    """Drop trailing empty slots and empty containers after a removal."""
    outputs = document.connections.get(source)
    if outputs is None:
        return
    slots = outputs.get(output)
    if slots is not None:
        while slots and not slots[-1]:
            slots.pop()
        if not slots:
            del outputs[output]
    if not outputs:
        del document.connections[source]


class DiffEngine:
    """Apply ordered diff batches with all-or-nothing semantics.

    Args:
        repository: Optional catalog; when given, addConnection checks the
            source output index against the node type's declared outputs.
        max_operations: Optional upper bound on batch size.
    """

    def __init__(
        self,
        repository: NodeTypeRepository | None = None,
        max_operations: int | None = None,
        cache: SchemaCache | None = None,
    ) -> None:
        self.repository = repository
        self.max_operations = max_operations
        self.cache = cache or schema_cache
        self._handlers: dict[str, tuple[Callable[..., str | None], Callable[..., None]]] = {
            "addNode": (self._validate_add_node, self._apply_add_node),
            "removeNode": (self._validate_node_exists, self._apply_remove_node),
            "updateNode": (self._validate_update_node, self._apply_update_node),
            "moveNode": (self._validate_node_exists, self._apply_move_node),
            "enableNode": (self._validate_node_exists, self._apply_enable_node),
            "disableNode": (self._validate_node_exists, self._apply_disable_node),
            "addConnection": (self._validate_add_connection, self._apply_add_connection),
            "removeConnection": (self._validate_remove_connection, self._apply_remove_connection),
            "updateConnection": (self._validate_update_connection, self._apply_update_connection),
            "updateSettings": (self._validate_nothing, self._apply_update_settings),
            "updateName": (self._validate_nothing, self._apply_update_name),
            "addTag": (self._validate_nothing, self._apply_add_tag),
            "removeTag": (self._validate_nothing, self._apply_remove_tag),
        }

    # -------------------------------------------------------------------------
    # Batch processing
    # -------------------------------------------------------------------------

    def parse_operations(
        self, operations: Sequence[DiffOperation | dict[str, Any]]
    ) -> tuple[list[DiffOperation], list[DiffError]]:
        """Parse raw operations; every malformed one is reported with its index."""
        parsed: list[DiffOperation] = []
        errors: list[DiffError] = []
        for index, raw in enumerate(operations):
            if isinstance(raw, OperationBase):
                parsed.append(raw)
                continue
            if not isinstance(raw, dict):
                errors.append(
                    DiffError(
                        operation=index,
                        message=f"Invalid operation: expected an object, got {type(raw).__name__}",
                    )
                )
                continue
            try:
                parsed.append(diff_operation_adapter.validate_python(raw))
            except ValidationError as e:
                details = [
                    {"path": format_location(err["loc"]), "message": err["msg"]} for err in e.errors()
                ]
                errors.append(
                    DiffError(
                        operation=index,
                        type=raw.get("type") if isinstance(raw.get("type"), str) else None,
                        message=f"Invalid operation: {details[0]['path']}: {details[0]['message']}",
                        details={"errors": details},
                    )
                )
        return parsed, errors

    def apply(
        self,
        document: WorkflowDocument,
        operations: Sequence[DiffOperation | dict[str, Any]],
        validate_only: bool = False,
    ) -> DiffResult:
        """Apply (or dry-run) a batch.

        Args:
            document: Document to transform; never modified.
            operations: Typed operations or their dict form.
            validate_only: Check every operation without producing a document.

        Returns:
            DiffResult with the transformed copy on success, or the errors and
            the untouched ``document`` on failure.
        """
        ops, errors = self.parse_operations(operations)
        if errors:
            return self._rejected(document, errors, validate_only)
        if self.max_operations is not None and len(ops) > self.max_operations:
            return self._rejected(
                document,
                [
                    DiffError(
                        operation=self.max_operations,
                        message=f"Too many operations: {len(ops)} (maximum {self.max_operations})",
                    )
                ],
                validate_only,
            )

        working = document.model_copy(deep=True)
        for index, op in enumerate(ops):
            validate, apply = self._handlers[op.type]
            message = validate(working, op)
            if message is None:
                try:
                    apply(working, op)
                except DiffApplyError as e:
                    message = str(e)
            if message is not None:
                logger.info(f"Diff operation {index} ({op.type}) rejected: {message}")
                return self._rejected(
                    document,
                    [DiffError(operation=index, type=op.type, message=message)],
                    validate_only,
                )
            logger.debug(f"Diff operation {index} ({op.type}) applied to working copy")

        if validate_only:
            return DiffResult(
                success=True,
                dry_run=True,
                message=f"Validation successful: {len(ops)} operation(s) can be applied",
            )
        return DiffResult(
            success=True,
            document=working,
            operations_applied=len(ops),
            message=f"Applied {len(ops)} operation(s)",
        )

    def _rejected(
        self, document: WorkflowDocument, errors: list[DiffError], validate_only: bool
    ) -> DiffResult:
        return DiffResult(
            success=False,
            dry_run=validate_only,
            document=document,
            errors=errors,
            message=f"Batch rejected; no changes applied ({len(errors)} error(s))",
        )

    # -------------------------------------------------------------------------
    # Node lookup
    # -------------------------------------------------------------------------

    def find_node(self, document: WorkflowDocument, reference: str) -> tuple[WorkflowNode | None, str | None]:
        """Resolve an id or name to exactly one node.

        Returns:
            Tuple of (node, None) or (None, error message) when the reference
            is unknown or matches several nodes.
        """
        matches = [n for n in document.nodes if reference in (n.id, n.name)]
        if not matches:
            return None, f'Node not found: "{reference}"'
        if len(matches) > 1:
            return None, f'Node reference "{reference}" is ambiguous: it matches {len(matches)} nodes'
        return matches[0], None

    def _target_node(self, document: WorkflowDocument, op: Any) -> WorkflowNode:
        node, message = self.find_node(document, op.reference)
        if node is None:
            raise DiffApplyError(message)
        return node

    def _validate_node_exists(self, document: WorkflowDocument, op: Any) -> str | None:
        return self.find_node(document, op.reference)[1]

    def _validate_nothing(self, document: WorkflowDocument, op: Any) -> str | None:
        return None

    # -------------------------------------------------------------------------
    # Node operations
    # -------------------------------------------------------------------------

    def _validate_add_node(self, document: WorkflowDocument, op: AddNodeOperation) -> str | None:
        node = op.node
        if document.get_node(node.name) is not None:
            return f'Node with name "{node.name}" already exists'
        if node.id is not None and any(n.id == node.id for n in document.nodes):
            return f'Node with id "{node.id}" already exists'
        return node_type_form_error(node.type)

    def _apply_add_node(self, document: WorkflowDocument, op: AddNodeOperation) -> None:
        data = op.node.model_dump(by_alias=True, exclude_none=True)
        data.setdefault("id", str(uuid.uuid4()))
        data.setdefault("typeVersion", 1)
        document.nodes.append(WorkflowNode.model_validate(data))

    def _apply_remove_node(self, document: WorkflowDocument, op: RemoveNodeOperation) -> None:
        node = self._target_node(document, op)
        document.nodes = [n for n in document.nodes if n is not node]
        document.connections.pop(node.name, None)
        for source in list(document.connections):
            for output in list(document.connections[source]):
                slots = document.connections[source][output]
                for index, targets in enumerate(slots):
                    if targets:
                        slots[index] = [t for t in targets if t.node != node.name]
                _prune(document, source, output)

    def _updated_node(self, document: WorkflowDocument, op: UpdateNodeOperation) -> WorkflowNode:
        node = self._target_node(document, op)
        data = node.model_dump(by_alias=True, exclude_none=True)
        for path, value in op.changes.items():
            set_path(data, path, value)
        try:
            updated = WorkflowNode.model_validate(data)
        except ValidationError as e:
            err = e.errors()[0]
            raise DiffApplyError(
                f'Invalid update for node "{node.name}": {format_location(err["loc"])}: {err["msg"]}'
            ) from e
        if updated.name != node.name and document.get_node(updated.name) is not None:
            raise DiffApplyError(f'Cannot rename "{node.name}": a node named "{updated.name}" exists')
        if updated.id != node.id and any(n.id == updated.id for n in document.nodes):
            raise DiffApplyError(f'Cannot change id of "{node.name}": id "{updated.id}" is in use')
        if updated.type != node.type:
            message = node_type_form_error(updated.type)
            if message:
                raise DiffApplyError(message)
        return updated

    def _validate_update_node(self, document: WorkflowDocument, op: UpdateNodeOperation) -> str | None:
        try:
            self._updated_node(document, op)
        except DiffApplyError as e:
            return str(e)
        return None

    def _apply_update_node(self, document: WorkflowDocument, op: UpdateNodeOperation) -> None:
        node = self._target_node(document, op)
        updated = self._updated_node(document, op)
        document.nodes = [updated if n is node else n for n in document.nodes]
        if updated.name != node.name:
            self._rename_in_connections(document, node.name, updated.name)

    def _rename_in_connections(self, document: WorkflowDocument, old: str, new: str) -> None:
        if old in document.connections:
            document.connections = {
                (new if key == old else key): value for key, value in document.connections.items()
            }
        for outputs in document.connections.values():
            for slots in outputs.values():
                for targets in slots:
                    for target in targets or []:
                        if target.node == old:
                            target.node = new

    def _apply_move_node(self, document: WorkflowDocument, op: MoveNodeOperation) -> None:
        self._target_node(document, op).position = list(op.position)

    def _apply_enable_node(self, document: WorkflowDocument, op: EnableNodeOperation) -> None:
        self._target_node(document, op).disabled = False

    def _apply_disable_node(self, document: WorkflowDocument, op: DisableNodeOperation) -> None:
        self._target_node(document, op).disabled = True

    # -------------------------------------------------------------------------
    # Connection operations
    # -------------------------------------------------------------------------

    def _endpoints(
        self, document: WorkflowDocument, source: str, target: str
    ) -> tuple[WorkflowNode | None, WorkflowNode | None, str | None]:
        source_node, message = self.find_node(document, source)
        if source_node is None:
            return None, None, f"Source {message[0].lower()}{message[1:]}"
        target_node, message = self.find_node(document, target)
        if target_node is None:
            return None, None, f"Target {message[0].lower()}{message[1:]}"
        return source_node, target_node, None

    def _validate_add_connection(
        self, document: WorkflowDocument, op: AddConnectionOperation
    ) -> str | None:
        source, target, message = self._endpoints(document, op.source, op.target)
        if message:
            return message
        if op.source_index < 0:
            return f"Invalid source index {op.source_index}: must be non-negative"
        if op.target_index < 0:
            return f"Invalid target index {op.target_index}: must be non-negative"

        if self.repository is not None and op.source_output == "main":
            schema = self.cache.get(self.repository, source.type)
            if schema is not None and not schema.dynamic_outputs:
                declared = len(schema.outputs) + (1 if source.on_error == "continueErrorOutput" else 0)
                if op.source_index >= declared:
                    return (
                        f'Output index {op.source_index} of "{source.name}" exceeds the '
                        f"{declared} output(s) declared by {source.type}"
                    )

        slots = document.connections.get(source.name, {}).get(op.source_output, [])
        if op.source_index < len(slots):
            for existing in slots[op.source_index] or []:
                if (
                    existing.node == target.name
                    and existing.type == op.target_input
                    and existing.index == op.target_index
                ):
                    return f'Connection already exists from "{source.name}" to "{target.name}"'
        return None

    def _apply_add_connection(self, document: WorkflowDocument, op: AddConnectionOperation) -> None:
        source = self._target_node_by(document, op.source)
        target = self._target_node_by(document, op.target)
        slots = document.connections.setdefault(source.name, {}).setdefault(op.source_output, [])
        while len(slots) <= op.source_index:
            slots.append([])
        if slots[op.source_index] is None:
            slots[op.source_index] = []
        slots[op.source_index].append(
            ConnectionTarget(node=target.name, type=op.target_input, index=op.target_index)
        )

    def _target_node_by(self, document: WorkflowDocument, reference: str) -> WorkflowNode:
        node, message = self.find_node(document, reference)
        if node is None:
            raise DiffApplyError(message)
        return node

    def _matching_slots(
        self,
        document: WorkflowDocument,
        source: str,
        target: str,
        output: str,
        target_input: str | None,
        source_index: int | None,
    ) -> list[int]:
        slots = document.connections.get(source, {}).get(output, [])
        matches = []
        for index, targets in enumerate(slots):
            if source_index is not None and index != source_index:
                continue
            if any(
                t.node == target and (target_input is None or t.type == target_input)
                for t in targets or []
            ):
                matches.append(index)
        return matches

    def _validate_remove_connection(
        self, document: WorkflowDocument, op: RemoveConnectionOperation
    ) -> str | None:
        source, target, message = self._endpoints(document, op.source, op.target)
        if message:
            return message
        if not self._matching_slots(
            document, source.name, target.name, op.source_output, op.target_input, op.source_index
        ):
            return f'No connection exists from "{source.name}" to "{target.name}" on output "{op.source_output}"'
        return None

    def _apply_remove_connection(
        self, document: WorkflowDocument, op: RemoveConnectionOperation
    ) -> None:
        source = self._target_node_by(document, op.source)
        target = self._target_node_by(document, op.target)
        self._remove_links(
            document, source.name, target.name, op.source_output, op.target_input, op.source_index
        )

    def _remove_links(
        self,
        document: WorkflowDocument,
        source: str,
        target: str,
        output: str,
        target_input: str | None,
        source_index: int | None,
    ) -> list[ConnectionTarget]:
        slots = document.connections[source][output]
        removed = []
        for index in self._matching_slots(document, source, target, output, target_input, source_index):
            kept = []
            for link in slots[index]:
                if link.node == target and (target_input is None or link.type == target_input):
                    removed.append(link)
                else:
                    kept.append(link)
            slots[index] = kept
        _prune(document, source, output)
        return removed

    def _replacement(
        self, document: WorkflowDocument, op: UpdateConnectionOperation
    ) -> tuple[AddConnectionOperation | None, str | None]:
        """Remove the existing link on a trial copy and build the re-add operation."""
        source, target, message = self._endpoints(document, op.source, op.target)
        if message:
            return None, message
        matches = self._matching_slots(
            document, source.name, target.name, op.source_output, None, op.source_index
        )
        if not matches:
            return None, (
                f'No connection exists from "{source.name}" to "{target.name}" '
                f'on output "{op.source_output}"'
            )
        if len(matches) > 1:
            return None, (
                f'Connection from "{source.name}" to "{target.name}" exists on several outputs; '
                "specify sourceIndex"
            )
        index = matches[0]
        existing = next(
            t for t in document.connections[source.name][op.source_output][index] if t.node == target.name
        )
        changes = op.changes
        add = AddConnectionOperation(
            type="addConnection",
            source=source.name,
            target=target.name,
            source_output=changes.source_output or op.source_output,
            target_input=changes.target_input or existing.type,
            source_index=changes.source_index if changes.source_index is not None else index,
            target_index=changes.target_index if changes.target_index is not None else existing.index,
        )
        return add, None

    def _validate_update_connection(
        self, document: WorkflowDocument, op: UpdateConnectionOperation
    ) -> str | None:
        add, message = self._replacement(document, op)
        if message:
            return message
        trial = document.model_copy(deep=True)
        self._remove_links(trial, add.source, add.target, op.source_output, None, op.source_index)
        return self._validate_add_connection(trial, add)

    def _apply_update_connection(
        self, document: WorkflowDocument, op: UpdateConnectionOperation
    ) -> None:
        add, message = self._replacement(document, op)
        if message:
            raise DiffApplyError(message)
        self._remove_links(document, add.source, add.target, op.source_output, None, op.source_index)
        self._apply_add_connection(document, add)

    # -------------------------------------------------------------------------
    # Metadata operations
    # -------------------------------------------------------------------------

    def _apply_update_settings(
        self, document: WorkflowDocument, op: UpdateSettingsOperation
    ) -> None:
        document.settings = {**document.settings, **op.settings}

    def _apply_update_name(self, document: WorkflowDocument, op: UpdateNameOperation) -> None:
        document.name = op.name

    def _apply_add_tag(self, document: WorkflowDocument, op: AddTagOperation) -> None:
        if op.tag not in document.tags:
            document.tags.append(op.tag)

    def _apply_remove_tag(self, document: WorkflowDocument, op: RemoveTagOperation) -> None:
        if op.tag in document.tags:
            document.tags.remove(op.tag)
