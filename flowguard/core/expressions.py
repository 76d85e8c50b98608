"""Template-expression syntax and reference validation.

Expressions are ``{{ ... }}`` segments inside parameter strings. Each string is
scanned with a brace-depth state machine; the content of every complete
expression is then checked for variable usage, node back-references and
common authoring mistakes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from flowguard.core.traversal import DEFAULT_MAX_DEPTH, ParameterWalker

logger = logging.getLogger(__name__)

OPEN = "{{"
CLOSE = "}}"

KNOWN_VARIABLES = frozenset(
    {
        "$json",
        "$binary",
        "$node",
        "$input",
        "$items",
        "$parameter",
        "$env",
        "$vars",
        "$secrets",
        "$workflow",
        "$execution",
        "$prevNode",
        "$itemIndex",
        "$runIndex",
        "$now",
        "$today",
        "$jmespath",
        "$if",
        "$ifEmpty",
        "$min",
        "$max",
        "$position",
        "$mode",
        "$resumeWebhookUrl",
        "$webhookId",
        "$nodeVersion",
        "$fromAI",
    }
)

VARIABLE_PATTERN = re.compile(r"\$[A-Za-z_][A-Za-z0-9_]*")

# Accessors naming another node: $node["X"], $node.X, $("X"), $items("X")
NODE_REFERENCE_PATTERNS = (
    re.compile(r"\$node\[\s*([\"'])(.+?)\1\s*\]"),
    re.compile(r"\$node\.([A-Za-z_][A-Za-z0-9_]*)"),
    re.compile(r"\$\(\s*([\"'])(.+?)\1\s*\)"),
    re.compile(r"\$items\(\s*([\"'])(.+?)\1"),
)

MISSING_DOLLAR_PATTERN = re.compile(
    r"(?<![$.\w'\"])\b(json|node|input|items|workflow|execution|env|parameter)\."
)
BRACKET_JSON_PATTERN = re.compile(r"\$json\[\s*([\"'])[A-Za-z_][A-Za-z0-9_]*\1\s*\]")
TEMPLATE_LITERAL_PATTERN = re.compile(r"\$\{")


@dataclass
class ExpressionContext:
    """What an expression may refer to.

    ``available_nodes`` of None disables node-reference checking.
    """

    available_nodes: frozenset[str] | None = None
    current_node_name: str | None = None
    has_input_data: bool = True


@dataclass
class ExpressionValidationResult:
    """Findings for one string or a whole parameter tree."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    used_variables: set[str] = field(default_factory=set)
    used_nodes: set[str] = field(default_factory=set)
    expression_count: int = 0

    @property
    def valid(self) -> bool:
        return not self.errors

    def merge(self, other: "ExpressionValidationResult", path: str = "") -> None:
        """Fold ``other`` into this result, prefixing its diagnostics with ``path``."""
        prefix = f"{path}: " if path else ""
        self.errors.extend(prefix + e for e in other.errors)
        self.warnings.extend(prefix + w for w in other.warnings)
        self.used_variables |= other.used_variables
        self.used_nodes |= other.used_nodes
        self.expression_count += other.expression_count


def scan_expressions(text: str) -> tuple[list[str], list[str]]:
    """Split ``text`` into expression bodies using a brace-depth state machine.

    Returns:
        Tuple of (bodies of outermost complete expressions, syntax errors).
    """
    bodies: list[str] = []
    errors: list[str] = []
    depth = 0
    start = 0
    nested_reported = False
    i = 0
    while i < len(text):
        pair = text[i : i + 2]
        if pair == OPEN:
            if depth == 0:
                start = i + 2
            elif not nested_reported:
                errors.append("Nested expressions are not supported ('{{' inside another expression)")
                nested_reported = True
            depth += 1
            i += 2
        elif pair == CLOSE:
            if depth == 0:
                errors.append(f"Unmatched closing bracket '}}}}' at position {i}")
            else:
                depth -= 1
                if depth == 0:
                    bodies.append(text[start:i])
            i += 2
        else:
            i += 1
    if depth > 0:
        errors.append("Unmatched expression brackets: '{{' without closing '}}'")
    return bodies, errors


class ExpressionValidator:
    """Validate template expressions in strings and parameter trees."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.max_depth = max_depth

    def validate_expression(
        self, text: str, context: ExpressionContext | None = None
    ) -> ExpressionValidationResult:
        context = context or ExpressionContext()
        result = ExpressionValidationResult()
        bodies, syntax_errors = scan_expressions(text)
        result.errors.extend(syntax_errors)
        result.expression_count = len(bodies)

        for body in bodies:
            if not body.strip():
                result.errors.append("Empty expression found")
                continue
            self._check_body(body, context, result)
        return result

    def _check_body(
        self, body: str, context: ExpressionContext, result: ExpressionValidationResult
    ) -> None:
        for variable in VARIABLE_PATTERN.findall(body):
            result.used_variables.add(variable)
            if variable not in KNOWN_VARIABLES:
                result.warnings.append(f"Unknown variable {variable}")
        if "$(" in body:
            result.used_variables.add("$()")

        for pattern in NODE_REFERENCE_PATTERNS:
            for match in pattern.finditer(body):
                name = match.group(match.lastindex)
                result.used_nodes.add(name)

        if context.available_nodes is not None:
            for name in sorted(result.used_nodes):
                if name not in context.available_nodes and name != context.current_node_name:
                    message = f'Referenced node "{name}" not found in workflow'
                    if message not in result.errors:
                        result.errors.append(message)

        if "$input" in body and not context.has_input_data:
            result.errors.append("$input is used but this node receives no input data")

        if TEMPLATE_LITERAL_PATTERN.search(body) and "`" not in body:
            result.errors.append("Template literal syntax ${...} is not valid here; use {{ }} instead")

        for match in MISSING_DOLLAR_PATTERN.finditer(body):
            word = match.group(1)
            result.warnings.append(f"Possible missing $ prefix: use ${word} instead of {word}")

        if BRACKET_JSON_PATTERN.search(body):
            result.warnings.append(
                "Bracket notation on $json for a simple key; prefer dot notation ($json.field)"
            )

        if "?." in body:
            result.warnings.append(
                "Optional chaining (?.) may not be supported; use a conditional check instead"
            )

    def validate_parameters(
        self, parameters: Any, context: ExpressionContext | None = None
    ) -> ExpressionValidationResult:
        """Validate every expression-bearing string in a parameter tree.

        Diagnostics are prefixed with the field path of the offending value.
        Depth overruns and circular structures become warnings.
        """
        context = context or ExpressionContext()
        result = ExpressionValidationResult()
        walker = ParameterWalker(max_depth=self.max_depth)
        for path, _key, value in walker.walk(parameters):
            if not isinstance(value, str):
                continue
            if OPEN in value or (value.startswith("=") and CLOSE in value):
                result.merge(self.validate_expression(value, context), path)
        result.warnings.extend(walker.anomalies)
        if result.errors:
            logger.debug(
                f"Expression validation for {context.current_node_name or 'parameters'} "
                f"found {len(result.errors)} error(s)"
            )
        return result
