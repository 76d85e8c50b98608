"""Core validation and diff modules for flowguard."""

from flowguard.core.catalog import (
    CatalogLoader,
    InMemoryNodeTypeRepository,
    NodeTypeRepository,
    load_default_catalog,
)
from flowguard.core.diff_engine import DiffEngine
from flowguard.core.diff_models import DiffError, DiffResult
from flowguard.core.models import (
    IssueCategory,
    IssueSeverity,
    ValidationIssue,
    ValidationReport,
    WorkflowDocument,
    WorkflowNode,
)
from flowguard.core.profiles import ValidationProfile
from flowguard.core.service import WorkflowService, apply_diff, validate_workflow

__all__ = [
    "CatalogLoader",
    "DiffEngine",
    "DiffError",
    "DiffResult",
    "InMemoryNodeTypeRepository",
    "IssueCategory",
    "IssueSeverity",
    "NodeTypeRepository",
    "ValidationIssue",
    "ValidationProfile",
    "ValidationReport",
    "WorkflowDocument",
    "WorkflowNode",
    "WorkflowService",
    "apply_diff",
    "validate_workflow",
]
