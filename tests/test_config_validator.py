"""Tests for per-node configuration validation and node-type rules."""

from __future__ import annotations

import pytest

from flowguard.core.models import IssueCategory, IssueSeverity, ValidationIssue
from flowguard.core.config_validator import deduplicate
from flowguard.core.profiles import ProfilePolicy, ValidationProfile


@pytest.fixture
def check(catalog, config_validator):
    """Validate parameters against a bundled node type."""

    def run(short_type, parameters, profile=ValidationProfile.RUNTIME, type_version=None):
        schema = catalog.get_node_type(f"nodes-base.{short_type}")
        return config_validator.validate(
            schema.node_type,
            parameters,
            schema.properties,
            profile=profile,
            type_version=type_version,
            node_name=short_type,
        )

    return run


def messages(issues):
    return [i.message for i in issues]


# =============================================================================
# Schema-driven checks
# =============================================================================


class TestRequiredAndTypes:
    """Required properties, option values and value types."""

    def test_missing_required_reported_once(self, check):
        result = check("webhook", {})

        assert messages(result.errors) == ["Required property 'path' is missing"]
        assert result.errors[0].category == IssueCategory.REQUIRED
        assert result.errors[0].node_name == "webhook"

    def test_hidden_required_property_not_flagged(self, check):
        result = check("postgres", {"operation": "insert"})

        assert result.valid
        assert "query" in result.hidden_properties

    def test_visible_required_property_flagged(self, check):
        result = check("postgres", {"operation": "executeQuery"})

        assert "Required property 'query' is missing" in messages(result.errors)

    def test_invalid_option(self, check):
        result = check("httpRequest", {"method": "FETCH", "url": "https://example.com"})

        assert messages(result.errors) == ["Invalid value for 'method': 'FETCH'"]
        assert result.errors[0].code == "invalid_value"

    def test_expressions_skip_type_checks(self, check):
        result = check("httpRequest", {"method": "={{ $json.method }}", "url": "https://x.io"})

        assert result.valid

    def test_wrong_type(self, check):
        result = check("httpRequest", {"url": "https://x.io", "sendQuery": "yes"})

        assert messages(result.errors) == ["Property 'sendQuery' must be a boolean, got str"]

    def test_invalid_json_property(self, check):
        result = check("respondToWebhook", {"respondWith": "json", "responseBody": "{oops"})

        assert result.errors[0].path == "responseBody"
        assert "invalid JSON" in result.errors[0].message

    def test_visibility_reported(self, check):
        result = check("httpRequest", {"url": "https://x.io", "sendBody": True})

        assert "contentType" in result.visible_properties
        assert "queryParameters" in result.hidden_properties

    def test_malformed_schema_entry_skipped(self, config_validator):
        properties = [{"name": "", "type": "string"}, {"name": "a", "type": "string", "required": True}]

        result = config_validator.validate("nodes-base.custom", {}, properties)

        assert messages(result.errors) == ["Required property 'a' is missing"]
        assert result.warnings[0].category == IssueCategory.ANOMALY
        assert result.warnings[0].code == "malformed_schema"


class TestProfiles:
    """How profiles change what a node's result contains."""

    def test_minimal_skips_types_and_rules(self, check):
        result = check("httpRequest", {"url": "example.com", "method": "FETCH"}, "minimal")

        assert result.valid
        assert result.warnings == []

    def test_runtime_drops_style(self, check):
        result = check("httpRequest", {"url": "https://x.io", "jsonBody": "{}"})

        assert result.valid
        assert result.warnings == []

    def test_strict_promotes_unused_property(self, check):
        result = check("httpRequest", {"url": "https://x.io", "jsonBody": "{}"}, "strict")

        unused = [e for e in result.errors if e.code == "hidden_property"]
        assert len(unused) == 1
        assert unused[0].message.startswith("Property 'jsonBody' is configured but won't be used")

    def test_ai_friendly_guidance(self, check):
        result = check("webhook", {}, "ai-friendly")

        assert result.profile == "ai-friendly"
        assert result.next_steps[0] == "Add required properties: path"
        assert result.examples[0]["path"] == "incoming-order"

    def test_policy_apply_is_idempotent(self):
        policy = ProfilePolicy.for_profile("strict")
        issue = ValidationIssue(
            severity=IssueSeverity.WARNING,
            category=IssueCategory.STYLE,
            message="style",
        )

        once = policy.apply(issue)

        assert once.severity == IssueSeverity.ERROR
        assert policy.apply(once) == once

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            ProfilePolicy.for_profile("lenient")


# =============================================================================
# Node-type rules
# =============================================================================


class TestCodeRules:
    def test_missing_return(self, check):
        result = check("code", {"jsCode": "const total = 1;"})

        assert "Code must return data for the next node" in messages(result.errors)

    def test_return_inside_comment_does_not_count(self, check):
        result = check("code", {"jsCode": "// return items\nconst x = 1;"})

        assert "Code must return data for the next node" in messages(result.errors)

    @pytest.mark.parametrize("code", ["return 42;", "return 'done';", "return true"])
    def test_primitive_return(self, check, code):
        result = check("code", {"jsCode": code})

        assert any("primitive" in m for m in messages(result.errors))

    def test_valid_code(self, check):
        result = check("code", {"jsCode": "return $input.all().map(i => ({json: i.json}));"})

        assert result.valid

    def test_empty_code(self, check):
        result = check("code", {"jsCode": "   "})

        assert messages(result.errors) == ["Code cannot be empty"]

    def test_code_in_wrong_language_field(self, check):
        result = check("code", {"language": "python", "jsCode": "return []"})

        assert result.errors[0].code == "incompatible"
        assert result.errors[0].path == "jsCode"


class TestTriggerPathRules:
    def test_leading_slash_autofix(self, check):
        result = check("webhook", {"path": "/orders"}, "strict")

        assert result.autofix == {"path": "orders"}
        assert result.errors[0].suggested_value == "orders"

    def test_spaces_rejected(self, check):
        result = check("webhook", {"path": "my orders"})

        assert messages(result.errors) == ["Webhook path must not contain spaces"]

    def test_response_node_suggestion(self, check):
        result = check("webhook", {"path": "x", "responseMode": "responseNode"})

        assert any("Respond to Webhook" in s for s in result.suggestions)


class TestHttpRequestRules:
    def test_url_scheme(self, check):
        result = check("httpRequest", {"url": "example.com"})

        assert result.errors[0].message == "URL must start with http:// or https://"
        assert result.errors[0].suggested_value == "https://example.com"

    def test_expression_url_not_checked(self, check):
        result = check("httpRequest", {"url": "={{ $json.endpoint }}"})

        assert result.valid

    def test_post_without_body_autofix(self, check):
        result = check("httpRequest", {"method": "POST", "url": "https://x.io"})

        assert result.autofix == {"sendBody": True}

    def test_secret_in_query_string(self, check):
        result = check("httpRequest", {"url": "https://x.io/items?api_key=abc"})

        assert result.warnings[0].category == IssueCategory.SECURITY

    def test_invalid_json_body(self, check):
        params = {
            "method": "POST",
            "url": "https://x.io",
            "sendBody": True,
            "contentType": "json",
            "specifyBody": "json",
            "jsonBody": "{broken",
        }

        result = check("httpRequest", params)

        assert any(e.path == "jsonBody" for e in result.errors)


class TestStructureRules:
    def test_switch_conditions_autofix(self, check):
        result = check("switch", {"rules": {"conditions": [{"leftValue": "a"}]}})

        assert result.errors[0].path == "rules.conditions"
        assert result.autofix["rules"] == {"values": [{"conditions": {"leftValue": "a"}}]}

    def test_if_values_autofix(self, check):
        result = check("if", {"conditions": {"values": [{"leftValue": "a"}]}})

        fixed = result.autofix["conditions"]
        assert fixed["conditions"] == [{"leftValue": "a"}]
        assert fixed["combinator"] == "and"

    def test_sql_delete_without_where(self, check):
        result = check("postgres", {"operation": "executeQuery", "query": "DELETE FROM users;"})

        assert result.valid
        assert any("DELETE without WHERE" in w.message for w in result.warnings)

    def test_hardcoded_secret(self, check):
        result = check("httpRequest", {"url": "https://x.io", "options": {"apiKey": "s3cr3t"}})

        secrets = [w for w in result.warnings if w.category == IssueCategory.SECURITY]
        assert secrets[0].path == "options.apiKey"

    def test_set_raw_json(self, check):
        result = check("set", {"mode": "raw", "jsonOutput": "{not json"})

        assert any(e.path == "jsonOutput" for e in result.errors)


def test_deduplicate_keeps_first_per_path_and_code():
    def issue(message, code="missing_required"):
        return ValidationIssue(
            severity=IssueSeverity.ERROR,
            category=IssueCategory.REQUIRED,
            message=message,
            path="path",
            code=code,
        )

    unique = deduplicate([issue("first"), issue("second"), issue("third", code="other")])

    assert messages(unique) == ["first", "third"]
