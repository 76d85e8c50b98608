"""Node-type specific configuration rules.

Rules are registered per short node type (``httpRequest``, ``code``, ...) and
append findings to a :class:`RuleContext`. Structural fixes that can be applied
mechanically are recorded in ``ctx.autofix``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from flowguard.core.models import IssueCategory, IssueSeverity, ValidationIssue


@dataclass
class RuleContext:
    """State shared by the rules run for one node."""

    node_type: str
    parameters: dict[str, Any]
    node_name: str | None = None
    issues: list[ValidationIssue] = field(default_factory=list)
    autofix: dict[str, Any] = field(default_factory=dict)
    suggestions: list[str] = field(default_factory=list)

    def report(
        self,
        severity: IssueSeverity,
        category: IssueCategory,
        code: str,
        path: str,
        message: str,
        fix: str | None = None,
        suggested_value: Any = None,
    ) -> None:
        self.issues.append(
            ValidationIssue(
                severity=severity,
                category=category,
                code=code,
                node_name=self.node_name,
                path=path,
                message=message,
                fix=fix,
                suggested_value=suggested_value,
            )
        )

    def error(self, path: str, message: str, code: str = "invalid_value", **kwargs: Any) -> None:
        self.report(IssueSeverity.ERROR, IssueCategory.RULE, code, path, message, **kwargs)

    def style(self, path: str, message: str, code: str = "best_practice", **kwargs: Any) -> None:
        self.report(IssueSeverity.WARNING, IssueCategory.STYLE, code, path, message, **kwargs)

    def security(self, path: str, message: str, **kwargs: Any) -> None:
        self.report(IssueSeverity.WARNING, IssueCategory.SECURITY, "security", path, message, **kwargs)


def is_expression(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("=")


NodeRule = Callable[[RuleContext], None]

NODE_RULES: dict[str, list[NodeRule]] = {}


def rule(*short_types: str) -> Callable[[NodeRule], NodeRule]:
    """Register a rule for one or more short node types."""

    def decorator(func: NodeRule) -> NodeRule:
        for short in short_types:
            NODE_RULES.setdefault(short, []).append(func)
        return func

    return decorator


def run_node_rules(ctx: RuleContext) -> None:
    short = ctx.node_type.rsplit(".", 1)[-1]
    for func in NODE_RULES.get(short, []):
        func(ctx)


# =============================================================================
# Code
# =============================================================================

RETURN_PATTERN = re.compile(r"\breturn\b")
PRIMITIVE_RETURN_PATTERN = re.compile(
    r"\breturn\s+(?:(?:true|false|null|undefined|None|True|False|-?\d+(?:\.\d+)?)\s*;?\s*$|[\"'`])",
    re.MULTILINE,
)
COMMENT_PATTERNS = (
    re.compile(r"/\*.*?\*/", re.DOTALL),
    re.compile(r"//[^\n]*"),
    re.compile(r"^\s*#[^\n]*", re.MULTILINE),
)


def _strip_comments(code: str) -> str:
    for pattern in COMMENT_PATTERNS:
        code = pattern.sub("", code)
    return code


@rule("code")
def check_code(ctx: RuleContext) -> None:
    params = ctx.parameters
    language = params.get("language", "javaScript")
    is_python = language in ("python", "pythonNative")
    field_name = "pythonCode" if is_python else "jsCode"
    other_field = "jsCode" if is_python else "pythonCode"
    code = params.get(field_name)

    if params.get(other_field) and not code:
        ctx.error(
            other_field,
            f"Code is in '{other_field}' but language is '{language}'",
            code="incompatible",
            fix=f"Move the code to '{field_name}' or change the language",
        )
        return

    if not isinstance(code, str) or not code.strip():
        ctx.error(field_name, "Code cannot be empty", code="missing_required")
        return

    body = _strip_comments(code)
    if not RETURN_PATTERN.search(body):
        example = "return [{json: {...}}]" if not is_python else "return [{'json': {...}}]"
        ctx.error(
            field_name,
            "Code must return data for the next node",
            fix=f"Add a return statement, e.g. {example}",
        )
    elif PRIMITIVE_RETURN_PATTERN.search(body):
        ctx.error(
            field_name,
            "Code returns a primitive value; it must return an array of items",
            fix="Wrap results as items: return [{json: {result: value}}]",
        )

    if params.get("mode") == "runOnceForEachItem" and re.search(r"\bitems\b", body):
        ctx.style(
            field_name,
            "'items' is not available in 'Run Once for Each Item' mode",
            fix="Use $json or $input.item for the current item",
        )


# =============================================================================
# Triggers with a path
# =============================================================================


@rule("webhook", "formTrigger")
def check_trigger_path(ctx: RuleContext) -> None:
    path = ctx.parameters.get("path")
    if not path:
        ctx.error("path", "Webhook path is required", code="missing_required")
        return
    if isinstance(path, str) and not is_expression(path):
        if path.startswith("/"):
            ctx.style(
                "path",
                "Webhook path should not start with '/'",
                suggested_value=path.lstrip("/"),
            )
            ctx.autofix["path"] = path.lstrip("/")
        if " " in path:
            ctx.error("path", "Webhook path must not contain spaces")


@rule("webhook")
def check_webhook_response(ctx: RuleContext) -> None:
    if ctx.parameters.get("responseMode") == "responseNode":
        ctx.suggestions.append(
            "responseMode 'responseNode' needs a Respond to Webhook node downstream"
        )


# =============================================================================
# HTTP Request
# =============================================================================

URL_SCHEME_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
URL_SECRET_PATTERN = re.compile(r"[?&](api_?key|access_token|token|password|secret)=", re.IGNORECASE)


@rule("httpRequest")
def check_http_request(ctx: RuleContext) -> None:
    params = ctx.parameters
    url = params.get("url")
    if isinstance(url, str) and url and not is_expression(url):
        if not URL_SCHEME_PATTERN.match(url):
            ctx.error(
                "url",
                "URL must start with http:// or https://",
                suggested_value=f"https://{url}",
            )
        if URL_SECRET_PATTERN.search(url):
            ctx.security(
                "url",
                "URL query string appears to contain a secret",
                fix="Use credentials or an expression referencing $env",
            )

    method = params.get("method", "GET")
    if method in ("POST", "PUT", "PATCH") and not params.get("sendBody"):
        ctx.style(
            "sendBody",
            f"{method} request does not send a body",
            fix="Enable sendBody and configure the request body",
        )
        ctx.autofix["sendBody"] = True

    json_body = params.get("jsonBody")
    if (
        params.get("sendBody")
        and params.get("specifyBody") == "json"
        and isinstance(json_body, str)
        and not is_expression(json_body)
    ):
        try:
            json.loads(json_body)
        except json.JSONDecodeError as e:
            ctx.error("jsonBody", f"jsonBody contains invalid JSON: {e.msg}")


# =============================================================================
# SQL
# =============================================================================

DELETE_WITHOUT_WHERE = re.compile(r"\bDELETE\s+FROM\s+\S+\s*(?:;|$)", re.IGNORECASE)
DROP_PATTERN = re.compile(r"\b(DROP|TRUNCATE)\s+TABLE\b", re.IGNORECASE)


@rule("postgres", "mySql", "microsoftSql")
def check_sql(ctx: RuleContext) -> None:
    query = ctx.parameters.get("query")
    if not isinstance(query, str) or not query.strip():
        return
    if DELETE_WITHOUT_WHERE.search(query.strip()):
        ctx.security("query", "DELETE without WHERE removes every row of the table")
    if DROP_PATTERN.search(query):
        ctx.security("query", "Query drops or truncates a table")
    if "{{" in query:
        ctx.security(
            "query",
            "Expression inside SQL text can lead to SQL injection",
            fix="Use query parameters instead of interpolating values",
        )


# =============================================================================
# Conditions and routing (fixedCollection structure)
# =============================================================================


@rule("switch")
def check_switch_rules(ctx: RuleContext) -> None:
    rules = ctx.parameters.get("rules")
    if not isinstance(rules, dict) or "conditions" not in rules:
        return
    conditions = rules["conditions"]
    values = [{"conditions": c} for c in conditions] if isinstance(conditions, list) else [
        {"conditions": conditions}
    ]
    corrected = {"values": values}
    ctx.error(
        "rules.conditions",
        "Switch rules must be listed under rules.values, not rules.conditions",
        suggested_value=corrected,
    )
    ctx.autofix["rules"] = corrected


@rule("if", "filter")
def check_condition_structure(ctx: RuleContext) -> None:
    conditions = ctx.parameters.get("conditions")
    if not isinstance(conditions, dict) or "values" not in conditions:
        return
    values = conditions["values"]
    corrected = {
        "options": {"caseSensitive": True, "typeValidation": "strict"},
        "conditions": values if isinstance(values, list) else [values],
        "combinator": "and",
    }
    ctx.error(
        "conditions.values",
        "conditions.values is not a valid structure; conditions must be a list with a combinator",
        suggested_value=corrected,
    )
    ctx.autofix["conditions"] = corrected


@rule("set")
def check_set(ctx: RuleContext) -> None:
    params = ctx.parameters
    mode = params.get("mode", "manual")
    if mode == "raw":
        raw = params.get("jsonOutput")
        if isinstance(raw, str) and raw.strip() and not is_expression(raw):
            try:
                json.loads(raw)
            except json.JSONDecodeError as e:
                ctx.error("jsonOutput", f"jsonOutput contains invalid JSON: {e.msg}")
    elif not params.get("assignments") and not params.get("values"):
        ctx.style("assignments", "Set node has no fields configured")


# =============================================================================
# Guidance for the ai-friendly profile
# =============================================================================

NODE_EXAMPLES: dict[str, list[dict[str, Any]]] = {
    "code": [
        {"jsCode": "return $input.all().map(item => ({json: {...item.json, processed: true}}));"},
    ],
    "webhook": [
        {"httpMethod": "POST", "path": "incoming-order", "responseMode": "onReceived"},
    ],
    "httpRequest": [
        {"method": "GET", "url": "https://api.example.com/items"},
        {
            "method": "POST",
            "url": "https://api.example.com/items",
            "sendBody": True,
            "contentType": "json",
            "specifyBody": "json",
            "jsonBody": '={{ JSON.stringify({name: $json.name}) }}',
        },
    ],
    "if": [
        {
            "conditions": {
                "options": {"caseSensitive": True, "typeValidation": "strict"},
                "conditions": [
                    {
                        "leftValue": "={{ $json.status }}",
                        "rightValue": "active",
                        "operator": {"type": "string", "operation": "equals"},
                    }
                ],
                "combinator": "and",
            }
        }
    ],
    "slack": [
        {
            "resource": "message",
            "operation": "post",
            "channelId": {"__rl": True, "value": "C0123456", "mode": "id"},
            "text": "={{ $json.message }}",
        }
    ],
}


def examples_for(node_type: str) -> list[dict[str, Any]]:
    return NODE_EXAMPLES.get(node_type.rsplit(".", 1)[-1], [])
