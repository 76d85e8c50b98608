"""Tests for workflow document, schema and report models."""

from __future__ import annotations

import pytest

from flowguard.core.errors import DocumentShapeError
from flowguard.core.models import (
    IssueCategory,
    IssueSeverity,
    NodeTypeSchema,
    PropertySchema,
    ValidationIssue,
    ValidationReport,
    WorkflowDocument,
    format_location,
)


class TestWorkflowDocument:
    """Parsing and serializing workflow documents."""

    def test_parses_camel_case_keys(self, sample_workflow):
        """Wire keys map onto snake_case attributes."""
        doc = WorkflowDocument.from_data(sample_workflow)

        fetch = doc.get_node("Fetch Order")
        assert fetch.type_version == 4.2
        assert fetch.on_error == "continueRegularOutput"
        assert doc.connections["Webhook"]["main"][0][0].node == "Fetch Order"

    def test_round_trip_keeps_wire_shape(self, sample_workflow):
        """to_data() emits camelCase keys and drops unset attributes."""
        data = WorkflowDocument.from_data(sample_workflow).to_data()

        node = data["nodes"][1]
        assert node["typeVersion"] == 4.2
        assert node["onError"] == "continueRegularOutput"
        assert "retryOnFail" not in node
        assert data["tags"] == ["orders"]

    def test_extra_keys_preserved(self, sample_workflow):
        sample_workflow["active"] = True
        sample_workflow["nodes"][0]["webhookId"] = "abc"

        data = WorkflowDocument.from_data(sample_workflow).to_data()

        assert data["active"] is True
        assert data["nodes"][0]["webhookId"] == "abc"

    def test_non_object_rejected(self):
        with pytest.raises(DocumentShapeError) as exc_info:
            WorkflowDocument.from_data(["not", "a", "workflow"])

        assert exc_info.value.issues[0]["path"] == "<root>"

    def test_values_are_not_coerced(self, sample_workflow):
        """A string where a boolean belongs is a structural error."""
        sample_workflow["nodes"][0]["disabled"] = "true"

        with pytest.raises(DocumentShapeError) as exc_info:
            WorkflowDocument.from_data(sample_workflow)

        assert exc_info.value.issues[0]["path"] == "nodes[0].disabled"

    def test_connection_index_must_be_integer(self, sample_workflow):
        sample_workflow["connections"]["Webhook"]["main"][0][0]["index"] = "0"

        with pytest.raises(DocumentShapeError) as exc_info:
            WorkflowDocument.from_data(sample_workflow)

        assert "connections" in exc_info.value.issues[0]["path"]

    def test_position_needs_two_numbers(self, sample_workflow):
        sample_workflow["nodes"][0]["position"] = [1, 2, 3]

        with pytest.raises(DocumentShapeError) as exc_info:
            WorkflowDocument.from_data(sample_workflow)

        assert "Position must be [x, y]" in str(exc_info.value)

    def test_blank_node_name_rejected(self, sample_workflow):
        sample_workflow["nodes"][0]["name"] = "   "

        with pytest.raises(DocumentShapeError):
            WorkflowDocument.from_data(sample_workflow)

    def test_null_output_slots_allowed(self, sample_workflow):
        sample_workflow["connections"]["Webhook"]["main"].append(None)

        doc = WorkflowDocument.from_data(sample_workflow)

        assert doc.connections["Webhook"]["main"][1] is None


class TestFormatLocation:
    def test_renders_indices_and_keys(self):
        assert format_location(("nodes", 0, "parameters", "url")) == "nodes[0].parameters.url"

    def test_empty_location(self):
        assert format_location(()) == "<root>"


class TestNodeTypeSchema:
    """Node-type schema helpers."""

    def test_versioned_latest(self):
        schema = NodeTypeSchema(node_type="nodes-base.set", version=[1, 3.4, 2])

        assert schema.is_versioned
        assert schema.latest_version == 3.4

    def test_single_version(self):
        schema = NodeTypeSchema.model_validate({"nodeType": "nodes-base.noOp", "version": 1})

        assert not schema.is_versioned
        assert schema.latest_version == 1
        assert schema.outputs == ["main"]
        assert schema.short_name == "noOp"

    def test_option_values(self):
        prop = PropertySchema.model_validate(
            {"name": "mode", "type": "options", "options": [{"name": "A", "value": "a"}, "b"]}
        )

        assert prop.option_values() == ["a", "b"]

    def test_empty_default_is_not_a_default(self):
        assert not PropertySchema(name="path", type="string", default="").has_default
        assert PropertySchema(name="flag", type="boolean", default=False).has_default


class TestValidationReport:
    """Aggregation of issues into a report."""

    def _issue(self, severity: IssueSeverity) -> ValidationIssue:
        return ValidationIssue(
            severity=severity,
            category=IssueCategory.RULE,
            message="something",
            node_name="HTTP",
            path="url",
        )

    def test_errors_invalidate(self):
        report = ValidationReport()
        report.add(self._issue(IssueSeverity.WARNING))
        assert report.valid

        report.add(self._issue(IssueSeverity.ERROR))
        assert not report.valid
        assert len(report.errors) == 1
        assert len(report.warnings) == 1

    def test_info_becomes_note(self):
        report = ValidationReport()
        report.add(self._issue(IssueSeverity.INFO))

        assert report.notes == ["HTTP: url: something"]

    def test_from_shape_error(self):
        error = DocumentShapeError([{"path": "nodes[0].name", "message": "Field required"}])

        report = ValidationReport.from_shape_error(error, "strict")

        assert not report.valid
        assert report.profile == "strict"
        assert report.errors[0].category == IssueCategory.STRUCTURE
        assert report.errors[0].path == "nodes[0].name"
