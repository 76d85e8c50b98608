"""Tests for the validate_workflow / apply_diff entry points."""

from __future__ import annotations

from flowguard.core import WorkflowService, apply_diff, validate_workflow
from flowguard.core.models import WorkflowDocument
from flowguard.core.settings import ValidatorSettings


class TestValidateWorkflow:
    def test_accepts_plain_data(self, service, sample_workflow):
        report = service.validate_workflow(sample_workflow)

        assert report.valid
        assert report.profile == "runtime"

    def test_accepts_models(self, service, sample_workflow):
        report = service.validate_workflow(WorkflowDocument.from_data(sample_workflow), "strict")

        assert report.profile == "strict"

    def test_malformed_document(self, service, sample_workflow):
        sample_workflow["nodes"][0]["name"] = 42

        report = service.validate_workflow(sample_workflow)

        assert not report.valid
        assert report.errors[0].code == "invalid_document"
        assert report.errors[0].path == "nodes[0].name"

    def test_non_object_document(self, service):
        report = service.validate_workflow(["not", "a", "workflow"])

        assert report.errors[0].path == "<root>"

    def test_default_profile_from_settings(self, catalog, sample_workflow):
        service = WorkflowService(catalog, ValidatorSettings(default_profile="strict"))

        assert service.validate_workflow(sample_workflow).profile == "strict"

    def test_module_level_function(self, catalog, sample_workflow):
        report = validate_workflow(sample_workflow, "minimal", repository=catalog)

        assert report.valid
        assert report.profile == "minimal"

    def test_bundled_catalog_by_default(self, sample_workflow):
        assert validate_workflow(sample_workflow).valid


class TestApplyDiff:
    def test_returns_transformed_copy(self, service, sample_workflow):
        result = service.apply_diff(sample_workflow, [{"type": "addTag", "tag": "sync"}])

        assert result.success
        assert result.document.tags == ["orders", "sync"]
        assert sample_workflow["tags"] == ["orders"]

    def test_validate_result_attaches_report(self, service, sample_workflow):
        ops = [{"type": "removeConnection", "source": "Webhook", "target": "Fetch Order"}]

        result = service.apply_diff(sample_workflow, ops, validate_result=True)

        assert result.success
        assert result.report is not None
        assert "orphaned_node" in [w.code for w in result.report.warnings]
        assert result.report.statistics.valid_connections == 1

    def test_no_report_for_dry_run(self, service, sample_workflow):
        result = service.apply_diff(
            sample_workflow, [{"type": "addTag", "tag": "x"}], validate_only=True, validate_result=True
        )

        assert result.success
        assert result.report is None

    def test_malformed_document(self, service):
        result = service.apply_diff({"nodes": "none"}, [{"type": "addTag", "tag": "x"}])

        assert not result.success
        assert result.errors[0].operation == -1
        assert result.errors[0].message.startswith("Invalid workflow document: nodes:")
        assert result.message == "Workflow document could not be parsed"

    def test_catalog_checks_output_cardinality(self, service, sample_workflow):
        op = {"type": "addConnection", "source": "Set Status", "target": "Webhook", "sourceIndex": 2}

        result = service.apply_diff(sample_workflow, [op])

        assert not result.success
        assert "exceeds the 1 output(s)" in result.errors[0].message

    def test_max_operations_from_settings(self, catalog, sample_workflow):
        settings = ValidatorSettings(max_operations_per_batch=1)
        ops = [{"type": "addTag", "tag": "a"}, {"type": "addTag", "tag": "b"}]

        result = apply_diff(sample_workflow, ops, repository=catalog, settings=settings)

        assert not result.success
        assert result.errors[0].message == "Too many operations: 2 (maximum 1)"
