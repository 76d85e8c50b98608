"""Entry points: validate a workflow document and apply diff batches to it.

Both accept decoded JSON/YAML data or already-built models. A document whose
shape cannot be parsed never reaches the semantic validators; its pydantic
errors are returned as structural report entries instead.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from flowguard.core.catalog import NodeTypeRepository, load_default_catalog
from flowguard.core.diff_engine import DiffEngine
from flowguard.core.diff_models import DiffError, DiffOperation, DiffResult
from flowguard.core.errors import DocumentShapeError
from flowguard.core.graph_validator import WorkflowGraphValidator
from flowguard.core.models import ValidationReport, WorkflowDocument
from flowguard.core.profiles import ValidationProfile
from flowguard.core.settings import ValidatorSettings

logger = logging.getLogger(__name__)


class WorkflowService:
    """Validator and diff engine sharing one catalog and one settings object.

    Args:
        repository: Node-type catalog. Defaults to the catalog at
            ``settings.catalog_path`` or the bundled one.
        settings: Validator settings; defaults apply when omitted.
    """

    def __init__(
        self,
        repository: NodeTypeRepository | None = None,
        settings: ValidatorSettings | None = None,
    ) -> None:
        self.settings = settings or ValidatorSettings()
        self.repository = repository or load_default_catalog(self.settings.catalog_path)
        self.validator = WorkflowGraphValidator(self.repository, self.settings)
        self.engine = DiffEngine(
            self.repository, max_operations=self.settings.max_operations_per_batch
        )

    def validate_workflow(
        self,
        document: WorkflowDocument | dict[str, Any],
        profile: ValidationProfile | str | None = None,
    ) -> ValidationReport:
        profile_name = ValidationProfile(profile or self.settings.default_profile).value
        try:
            parsed = WorkflowDocument.from_data(document)
        except DocumentShapeError as e:
            logger.info(f"Workflow document rejected: {len(e.issues)} structural error(s)")
            return ValidationReport.from_shape_error(e, profile_name)
        return self.validator.validate(parsed, profile_name)

    def apply_diff(
        self,
        document: WorkflowDocument | dict[str, Any],
        operations: Sequence[DiffOperation | dict[str, Any]],
        validate_only: bool = False,
        validate_result: bool = False,
    ) -> DiffResult:
        """Apply a diff batch.

        Args:
            document: Document to transform; never modified.
            operations: Ordered batch of operations.
            validate_only: Dry run; no document is returned.
            validate_result: Attach a validation report of the new document.
        """
        try:
            parsed = WorkflowDocument.from_data(document)
        except DocumentShapeError as e:
            return DiffResult(
                success=False,
                dry_run=validate_only,
                errors=[
                    DiffError(
                        operation=-1,
                        message=f"Invalid workflow document: {item['path']}: {item['message']}",
                    )
                    for item in e.issues
                ],
                message="Workflow document could not be parsed",
            )

        result = self.engine.apply(parsed, operations, validate_only=validate_only)
        if validate_result and result.success and result.document is not None:
            result.report = self.validator.validate(result.document)
        return result


def validate_workflow(
    document: WorkflowDocument | dict[str, Any],
    profile: ValidationProfile | str | None = None,
    repository: NodeTypeRepository | None = None,
    settings: ValidatorSettings | None = None,
) -> ValidationReport:
    """Validate ``document`` with a one-off :class:`WorkflowService`."""
    return WorkflowService(repository, settings).validate_workflow(document, profile)


def apply_diff(
    document: WorkflowDocument | dict[str, Any],
    operations: Sequence[DiffOperation | dict[str, Any]],
    validate_only: bool = False,
    repository: NodeTypeRepository | None = None,
    settings: ValidatorSettings | None = None,
) -> DiffResult:
    """Apply ``operations`` with a one-off :class:`WorkflowService`."""
    return WorkflowService(repository, settings).apply_diff(
        document, operations, validate_only=validate_only
    )
