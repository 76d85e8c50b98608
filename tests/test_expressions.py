"""Tests for template-expression validation and parameter traversal."""

from __future__ import annotations

import pytest

from flowguard.core.expressions import (
    ExpressionContext,
    ExpressionValidator,
    scan_expressions,
)
from flowguard.core.traversal import ParameterWalker, join_path


def nested(depth: int, leaf):
    tree = leaf
    for _ in range(depth):
        tree = {"child": tree}
    return tree


@pytest.fixture
def validator() -> ExpressionValidator:
    return ExpressionValidator()


# =============================================================================
# Syntax scanning
# =============================================================================


class TestScanExpressions:
    """Brace-depth state machine."""

    def test_extracts_bodies(self):
        bodies, errors = scan_expressions("Hi {{ $json.name }}, id {{ $json.id }}")

        assert bodies == [" $json.name ", " $json.id "]
        assert errors == []

    def test_unclosed(self):
        _, errors = scan_expressions("{{ $json.name ")

        assert errors == ["Unmatched expression brackets: '{{' without closing '}}'"]

    def test_unmatched_close(self):
        _, errors = scan_expressions("name }}")

        assert errors == ["Unmatched closing bracket '}}' at position 5"]

    def test_nested(self):
        _, errors = scan_expressions("{{ {{ $json.a }} }}")

        assert errors == ["Nested expressions are not supported ('{{' inside another expression)"]

    def test_plain_text(self):
        assert scan_expressions("no expressions here") == ([], [])


# =============================================================================
# Single expressions
# =============================================================================


class TestValidateExpression:
    """Content checks of complete expressions."""

    def test_valid_expression(self, validator):
        result = validator.validate_expression("={{ $json.total * 2 }}")

        assert result.valid
        assert result.warnings == []
        assert result.used_variables == {"$json"}
        assert result.expression_count == 1

    def test_empty_expression(self, validator):
        result = validator.validate_expression("{{   }}")

        assert result.errors == ["Empty expression found"]

    def test_unknown_node_reference(self, validator):
        context = ExpressionContext(available_nodes=frozenset({"Webhook"}))

        result = validator.validate_expression('={{ $node["Missing"].json.id }}', context)

        assert result.errors == ['Referenced node "Missing" not found in workflow']

    @pytest.mark.parametrize(
        "text,name",
        [
            ('={{ $node["Fetch Order"].json.id }}', "Fetch Order"),
            ("={{ $node.Webhook.json.id }}", "Webhook"),
            ("={{ $('Fetch Order').item.json.id }}", "Fetch Order"),
            ('={{ $items("Webhook").length }}', "Webhook"),
        ],
    )
    def test_node_reference_forms(self, validator, text, name):
        result = validator.validate_expression(text)

        assert name in result.used_nodes

    def test_known_nodes_pass(self, validator):
        context = ExpressionContext(available_nodes=frozenset({"Webhook"}))

        result = validator.validate_expression("={{ $('Webhook').item.json.id }}", context)

        assert result.valid

    def test_reference_checks_disabled_without_node_list(self, validator):
        result = validator.validate_expression('={{ $node["Anything"].json }}')

        assert result.valid

    def test_input_without_incoming_data(self, validator):
        context = ExpressionContext(has_input_data=False)

        result = validator.validate_expression("={{ $input.first().json.id }}", context)

        assert "$input is used but this node receives no input data" in result.errors

    def test_template_literal_syntax(self, validator):
        result = validator.validate_expression("={{ ${value} }}")

        assert not result.valid
        assert "Template literal" in result.errors[0]

    def test_unknown_variable_warning(self, validator):
        result = validator.validate_expression("={{ $foo.bar }}")

        assert result.valid
        assert result.warnings == ["Unknown variable $foo"]

    def test_missing_dollar_warning(self, validator):
        result = validator.validate_expression("={{ json.name }}")

        assert result.warnings == ["Possible missing $ prefix: use $json instead of json"]

    def test_optional_chaining_warning(self, validator):
        result = validator.validate_expression("={{ $json.user?.name }}")

        assert any("Optional chaining" in w for w in result.warnings)


# =============================================================================
# Parameter trees
# =============================================================================


class TestValidateParameters:
    """Recursive validation of whole parameter trees."""

    def test_diagnostics_carry_field_paths(self, validator):
        params = {"body": {"items": ["plain", "={{ $foo }}"]}}

        result = validator.validate_parameters(params)

        assert result.warnings == ["body.items[1]: Unknown variable $foo"]

    def test_counts_expressions(self, validator):
        params = {"a": "={{ $json.a }}", "b": {"c": "={{ $json.c }} and {{ $json.d }}"}}

        result = validator.validate_parameters(params)

        assert result.expression_count == 3

    def test_strings_without_braces_ignored(self, validator):
        result = validator.validate_parameters({"url": "=https://example.com"})

        assert result.expression_count == 0
        assert result.valid

    def test_depth_ceiling_single_warning(self, validator):
        params = {"root": nested(150, "={{ $json.deep }}")}

        result = validator.validate_parameters(params)

        assert result.valid
        depth_warnings = [w for w in result.warnings if "Maximum nesting depth (100)" in w]
        assert len(depth_warnings) == 1
        assert len(result.warnings) == 1

    def test_within_depth_is_validated(self, validator):
        params = {"root": nested(20, "={{ $unknownThing }}")}

        result = validator.validate_parameters(params)

        assert len(result.warnings) == 1
        assert "Unknown variable $unknownThing" in result.warnings[0]

    def test_circular_structure(self, validator):
        params: dict = {"name": "={{ $json.name }}"}
        params["self"] = params

        result = validator.validate_parameters(params)

        assert result.valid
        assert any("Circular reference detected" in w for w in result.warnings)


class TestParameterWalker:
    def test_join_path(self):
        assert join_path("", "url") == "url"
        assert join_path("body", "x") == "body.x"
        assert join_path("body", 2) == "body[2]"

    def test_walk_yields_paths(self):
        walker = ParameterWalker()

        paths = [path for path, _, _ in walker.walk({"a": [1, {"b": 2}]})]

        assert paths == ["", "a", "a[0]", "a[1]", "a[1].b"]

    def test_skips_private_keys(self):
        walker = ParameterWalker(skip_private_keys=True)

        paths = [path for path, _, _ in walker.walk({"__rl": True, "value": "x"})]

        assert "__rl" not in paths
        assert "value" in paths

    def test_shared_subtree_is_not_circular(self):
        """The same object in two sibling positions is visited twice, not flagged."""
        shared = {"x": 1}
        walker = ParameterWalker()

        values = [v for _, key, v in walker.walk({"a": shared, "b": shared}) if key == "x"]

        assert values == [1, 1]
        assert walker.anomalies == []

    def test_anomalies_reset_per_walk(self):
        walker = ParameterWalker(max_depth=2)
        list(walker.walk(nested(5, 1)))
        assert len(walker.anomalies) == 1

        list(walker.walk({"a": 1}))
        assert walker.anomalies == []
