"""Expression format checks: the ``=`` prefix and resource-locator wrappers.

A parameter string is only evaluated as an expression when it starts with the
``=`` prefix; without it ``{{ $json.id }}`` is sent literally. Resource-locator
parameters additionally expect a ``{"__rl": true, "value": ..., "mode": ...}``
object rather than a bare string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from flowguard.core.catalog import normalize_node_type
from flowguard.core.models import IssueSeverity
from flowguard.core.traversal import DEFAULT_MAX_DEPTH, ParameterWalker

EXPRESSION_PREFIX = "="

VALID_LOCATOR_MODES = frozenset({"id", "url", "expression", "name", "list"})

# Short node type -> parameters that are resource locators in current versions
RESOURCE_LOCATOR_FIELDS: dict[str, frozenset[str]] = {
    "github": frozenset({"owner", "repository", "user", "organization"}),
    "slack": frozenset({"channel", "channelId", "user", "userId", "teamId"}),
    "googleSheets": frozenset({"documentId", "sheetName", "sheetId"}),
    "googleDrive": frozenset({"fileId", "folderId", "driveId"}),
    "notion": frozenset({"databaseId", "pageId"}),
    "airtable": frozenset({"base", "table"}),
    "telegram": frozenset({"chatId"}),
    "discord": frozenset({"guildId", "channelId"}),
    "jira": frozenset({"project", "issueKey"}),
    "executeWorkflow": frozenset({"workflowId"}),
    "postgres": frozenset({"table", "schema"}),
    "mySql": frozenset({"table"}),
}


class FormatIssueType(str, Enum):
    MISSING_PREFIX = "missing-prefix"
    NEEDS_RESOURCE_LOCATOR = "needs-resource-locator"
    INVALID_LOCATOR_STRUCTURE = "invalid-rl-structure"
    MIXED_FORMAT = "mixed-format"


@dataclass
class ExpressionFormatIssue:
    """A format problem with the value that would fix it."""

    field_path: str
    current_value: Any
    corrected_value: Any
    issue_type: FormatIssueType
    explanation: str
    severity: IssueSeverity = IssueSeverity.ERROR


@dataclass
class ExpressionFormatResult:
    issues: list[ExpressionFormatIssue] = field(default_factory=list)
    anomalies: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not any(i.severity == IssueSeverity.ERROR for i in self.issues)


def has_expression(value: Any) -> bool:
    return isinstance(value, str) and "{{" in value


def with_prefix(value: str) -> str:
    return value if value.startswith(EXPRESSION_PREFIX) else EXPRESSION_PREFIX + value


def is_pure_expression(value: str) -> bool:
    stripped = value.strip()
    return stripped.startswith("{{") and stripped.endswith("}}") and stripped.count("{{") == 1


def resource_locator(value: str) -> dict[str, Any]:
    return {"__rl": True, "value": with_prefix(value), "mode": "expression"}


class ExpressionFormatValidator:
    """Check expression prefixes and resource-locator structure in node parameters."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.max_depth = max_depth

    def locator_fields(self, node_type: str | None, declared: set[str] | None = None) -> set[str]:
        fields = set(declared or ())
        if node_type:
            short = normalize_node_type(node_type).rsplit(".", 1)[-1]
            fields |= RESOURCE_LOCATOR_FIELDS.get(short, frozenset())
        return fields

    def validate_value(self, value: Any, field_path: str = "") -> ExpressionFormatIssue | None:
        """Prefix check for a single value."""
        if not has_expression(value) or value.startswith(EXPRESSION_PREFIX):
            return None
        if is_pure_expression(value):
            explanation = "Expression requires = prefix to be evaluated"
        else:
            explanation = (
                "Mixed literal text and expression requires = prefix for the expression "
                "to be evaluated"
            )
        return ExpressionFormatIssue(
            field_path=field_path,
            current_value=value,
            corrected_value=with_prefix(value),
            issue_type=FormatIssueType.MISSING_PREFIX,
            explanation=explanation,
        )

    def validate_node_parameters(
        self,
        parameters: dict[str, Any],
        node_type: str | None = None,
        locator_fields: set[str] | None = None,
    ) -> ExpressionFormatResult:
        """Check every value of a node's parameters.

        Args:
            parameters: The node's parameter tree.
            node_type: Used to look up built-in resource-locator parameters.
            locator_fields: Top-level parameters the node schema declares as
                resource locators.
        """
        result = ExpressionFormatResult()
        rl_fields = self.locator_fields(node_type, locator_fields)
        walker = ParameterWalker(max_depth=self.max_depth, skip_private_keys=True)

        for path, key, value in walker.walk(parameters):
            if isinstance(value, dict) and value.get("__rl") is True:
                result.issues.extend(self._check_locator(path, value))
                continue
            if not has_expression(value):
                continue
            if key in rl_fields and path == key:
                result.issues.append(
                    ExpressionFormatIssue(
                        field_path=path,
                        current_value=value,
                        corrected_value=resource_locator(value),
                        issue_type=FormatIssueType.NEEDS_RESOURCE_LOCATOR,
                        explanation=(
                            f"'{key}' is a resource locator; an expression must be wrapped "
                            "as {__rl: true, value: '=...', mode: 'expression'}"
                        ),
                    )
                )
                continue
            issue = self.validate_value(value, path)
            if issue:
                result.issues.append(issue)

        result.anomalies.extend(walker.anomalies)
        return result

    def _check_locator(self, path: str, value: dict[str, Any]) -> list[ExpressionFormatIssue]:
        issues = []
        inner = value.get("value")
        mode = value.get("mode")
        if "value" not in value or mode not in VALID_LOCATOR_MODES:
            corrected = {
                "__rl": True,
                "value": inner if inner is not None else "",
                "mode": "expression" if has_expression(inner) else "id",
            }
            missing = "value" if "value" not in value else "mode"
            detail = (
                f"missing '{missing}'"
                if missing not in value
                else f"unknown mode '{mode}' (expected one of {', '.join(sorted(VALID_LOCATOR_MODES))})"
            )
            issues.append(
                ExpressionFormatIssue(
                    field_path=path,
                    current_value=value,
                    corrected_value=corrected,
                    issue_type=FormatIssueType.INVALID_LOCATOR_STRUCTURE,
                    explanation=f"Resource locator is malformed: {detail}",
                )
            )
        elif has_expression(inner) and mode != "expression":
            issues.append(
                ExpressionFormatIssue(
                    field_path=path,
                    current_value=value,
                    corrected_value={**value, "value": with_prefix(inner), "mode": "expression"},
                    issue_type=FormatIssueType.MIXED_FORMAT,
                    explanation=(
                        f"Resource locator holds an expression but uses mode '{mode}'; "
                        "use mode 'expression'"
                    ),
                    severity=IssueSeverity.WARNING,
                )
            )
        return issues
