"""Terminal rendering of validation reports and diff results."""

from flowguard.cli_ui.report_renderer import ReportRenderer

__all__ = ["ReportRenderer"]
