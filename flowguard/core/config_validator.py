"""Per-node configuration validation under a validation profile."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from pydantic import ValidationError

from flowguard.core.models import (
    IssueCategory,
    IssueSeverity,
    PropertySchema,
    ValidationIssue,
)
from flowguard.core.node_rules import RuleContext, examples_for, is_expression, run_node_rules
from flowguard.core.profiles import ProfilePolicy, ValidationProfile
from flowguard.core.traversal import ParameterWalker
from flowguard.core.visibility import PropertyVisibilityResolver, values_equal

logger = logging.getLogger(__name__)

SECRET_KEY_PATTERN = re.compile(r"(api[_-]?key|password|passwd|secret|token|credential)", re.IGNORECASE)

# Checks keyed by property type tag; types without an entry are not type-checked
TYPE_CHECKS: dict[str, tuple[str, Any]] = {
    "string": ("a string", lambda v: isinstance(v, str)),
    "number": ("a number", lambda v: isinstance(v, (int, float)) and not isinstance(v, bool)),
    "boolean": ("a boolean", lambda v: isinstance(v, bool)),
    "collection": ("an object", lambda v: isinstance(v, dict)),
    "fixedCollection": ("an object", lambda v: isinstance(v, dict)),
    "multiOptions": ("a list", lambda v: isinstance(v, list)),
    "resourceLocator": ("a string or resource locator", lambda v: isinstance(v, (str, dict))),
}


@dataclass
class NodeConfigResult:
    """Outcome of validating one node's parameters."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    visible_properties: list[str] = field(default_factory=list)
    hidden_properties: list[str] = field(default_factory=list)
    autofix: dict[str, Any] = field(default_factory=dict)
    next_steps: list[str] = field(default_factory=list)
    examples: list[dict[str, Any]] = field(default_factory=list)
    profile: str = ValidationProfile.RUNTIME.value

    @property
    def valid(self) -> bool:
        return not self.errors


class NodeConfigValidator:
    """Validate node parameters against the node type's property schema.

    Example:
        >>> validator = NodeConfigValidator()
        >>> result = validator.validate("nodes-base.webhook", {}, schema.properties)
        >>> [e.message for e in result.errors]
        ["Required property 'path' is missing"]
    """

    def validate(
        self,
        node_type: str,
        parameters: dict[str, Any],
        properties: Sequence[Any],
        profile: ValidationProfile | str = ValidationProfile.RUNTIME,
        type_version: int | float | None = None,
        node_name: str | None = None,
    ) -> NodeConfigResult:
        policy = ProfilePolicy.for_profile(profile)
        result = NodeConfigResult(profile=policy.profile.value)
        ctx = RuleContext(node_type=node_type, parameters=parameters, node_name=node_name)

        schemas = self._parse_properties(properties, ctx)
        effective = self._with_defaults(schemas, parameters)
        resolver = PropertyVisibilityResolver(schemas, effective, type_version)
        visible = resolver.visible_properties()
        result.visible_properties = _unique(p.name for p in visible)
        result.hidden_properties = [
            n for n in _unique(p.name for p in schemas) if n not in result.visible_properties
        ]

        self._check_required(visible, parameters, ctx)
        if policy.check_types:
            self._check_types(visible, parameters, ctx)
        if policy.run_rules:
            run_node_rules(ctx)
            self._check_unused(resolver, parameters, ctx)
            self._check_secrets(parameters, ctx)

        for issue in ctx.issues:
            reported = policy.apply(issue)
            if reported is None:
                continue
            if reported.severity == IssueSeverity.ERROR:
                result.errors.append(reported)
            else:
                result.warnings.append(reported)
        result.errors = deduplicate(result.errors)
        result.warnings = deduplicate(result.warnings, by_message=True)
        result.suggestions = ctx.suggestions
        result.autofix = ctx.autofix

        if policy.include_guidance:
            result.next_steps = next_steps(result)
            result.examples = examples_for(node_type)
        return result

    def _parse_properties(self, properties: Sequence[Any], ctx: RuleContext) -> list[PropertySchema]:
        """Parse schema entries, skipping malformed ones with an anomaly warning."""
        schemas = []
        for index, entry in enumerate(properties):
            if isinstance(entry, PropertySchema):
                schemas.append(entry)
                continue
            try:
                schemas.append(PropertySchema.model_validate(entry))
            except ValidationError as e:
                label = entry.get("name") if isinstance(entry, dict) else None
                logger.warning(
                    f"Skipping malformed property #{index} ({label or 'unnamed'}) "
                    f"of {ctx.node_type}: {e.error_count()} error(s)"
                )
                ctx.report(
                    IssueSeverity.WARNING,
                    IssueCategory.ANOMALY,
                    "malformed_schema",
                    f"properties[{index}]",
                    f"Schema entry #{index} of {ctx.node_type} is malformed and was skipped",
                )
        return schemas

    def _with_defaults(
        self, schemas: Sequence[PropertySchema], parameters: dict[str, Any]
    ) -> dict[str, Any]:
        """Parameters plus declared defaults for keys the node leaves unset."""
        effective = dict(parameters)
        for prop in schemas:
            if prop.name not in parameters and prop.default is not None:
                effective.setdefault(prop.name, prop.default)
        return effective

    def _check_required(
        self, visible: Sequence[PropertySchema], parameters: dict[str, Any], ctx: RuleContext
    ) -> None:
        for prop in visible:
            if not prop.required or prop.has_default:
                continue
            value = parameters.get(prop.name)
            if value is None or value == "":
                label = prop.display_name or prop.name
                ctx.report(
                    IssueSeverity.ERROR,
                    IssueCategory.REQUIRED,
                    "missing_required",
                    prop.name,
                    f"Required property '{label}' is missing",
                    fix=f"Add a value for '{prop.name}'",
                )

    def _check_types(
        self, visible: Sequence[PropertySchema], parameters: dict[str, Any], ctx: RuleContext
    ) -> None:
        checked: set[str] = set()
        for prop in visible:
            if prop.name not in parameters or prop.name in checked:
                continue
            checked.add(prop.name)
            value = parameters[prop.name]
            if value is None or is_expression(value):
                continue

            if prop.type in ("options", "multiOptions"):
                self._check_options(prop, value, ctx)
                continue
            if prop.type == "json":
                if isinstance(value, str):
                    try:
                        json.loads(value)
                    except json.JSONDecodeError as e:
                        ctx.report(
                            IssueSeverity.ERROR,
                            IssueCategory.TYPE,
                            "invalid_value",
                            prop.name,
                            f"Property '{prop.name}' contains invalid JSON: {e.msg}",
                        )
                elif not isinstance(value, (dict, list)):
                    self._type_error(prop, "JSON text or an object", value, ctx)
                continue

            check = TYPE_CHECKS.get(prop.type)
            if check and not check[1](value):
                self._type_error(prop, check[0], value, ctx)

    def _check_options(self, prop: PropertySchema, value: Any, ctx: RuleContext) -> None:
        allowed = prop.option_values()
        if prop.type == "multiOptions":
            if not isinstance(value, list):
                self._type_error(prop, "a list", value, ctx)
                return
            selected = value
        else:
            selected = [value]
        if not allowed:
            return
        for item in selected:
            if not any(values_equal(item, a) for a in allowed):
                shown = ", ".join(str(a) for a in allowed[:10])
                ctx.report(
                    IssueSeverity.ERROR,
                    IssueCategory.TYPE,
                    "invalid_value",
                    prop.name,
                    f"Invalid value for '{prop.name}': {item!r}",
                    fix=f"Must be one of: {shown}",
                )

    def _type_error(self, prop: PropertySchema, expected: str, value: Any, ctx: RuleContext) -> None:
        ctx.report(
            IssueSeverity.ERROR,
            IssueCategory.TYPE,
            "invalid_type",
            prop.name,
            f"Property '{prop.name}' must be {expected}, got {type(value).__name__}",
        )

    def _check_unused(
        self, resolver: PropertyVisibilityResolver, parameters: dict[str, Any], ctx: RuleContext
    ) -> None:
        for name in parameters:
            if name not in resolver.schema_names() or resolver.is_name_visible(name):
                continue
            conditions = [
                e.display_options.show for e in resolver.entries(name) if e.display_options
            ]
            hint = f" (shown when {conditions[0]})" if conditions and conditions[0] else ""
            ctx.style(
                name,
                f"Property '{name}' is configured but won't be used{hint}",
                code="hidden_property",
            )

    def _check_secrets(self, parameters: dict[str, Any], ctx: RuleContext) -> None:
        walker = ParameterWalker(skip_private_keys=True)
        for path, key, value in walker.walk(parameters):
            if not isinstance(key, str) or not SECRET_KEY_PATTERN.search(key):
                continue
            if isinstance(value, str) and value.strip() and not is_expression(value):
                ctx.security(
                    path,
                    f"'{key}' appears to contain a hardcoded secret",
                    fix="Store it in credentials or reference it through an expression",
                )


def _unique(names: Any) -> list[str]:
    seen: dict[str, None] = {}
    for name in names:
        seen.setdefault(name, None)
    return list(seen)


def deduplicate(issues: list[ValidationIssue], by_message: bool = False) -> list[ValidationIssue]:
    """Keep the first issue per (path, code), or per (path, code, message)."""
    seen: set[tuple[str | None, str, str]] = set()
    unique = []
    for issue in issues:
        key = (issue.path, issue.code, issue.message if by_message else "")
        if key in seen:
            continue
        seen.add(key)
        unique.append(issue)
    return unique


def next_steps(result: NodeConfigResult) -> list[str]:
    """Actionable follow-ups for the ai-friendly profile."""
    steps = []
    required = [e.path for e in result.errors if e.code == "missing_required"]
    if required:
        steps.append(f"Add required properties: {', '.join(p for p in required if p)}")
    typed = [e.path for e in result.errors if e.code in ("invalid_type", "invalid_value")]
    if typed:
        steps.append(f"Correct the values of: {', '.join(p for p in typed if p)}")
    if any(e.code == "incompatible" for e in result.errors):
        steps.append("Resolve incompatible settings before running the node")
    if result.autofix:
        steps.append(f"Apply the suggested autofix for: {', '.join(result.autofix)}")
    if result.warnings:
        steps.append(f"Review {len(result.warnings)} warning(s)")
    if not steps:
        steps.append("Configuration looks valid; validate the whole workflow next")
    return steps
