"""Exceptions raised by the flowguard core."""

from __future__ import annotations

from typing import Any


class FlowguardError(Exception):
    """Base class for flowguard errors."""

    pass


class CatalogError(FlowguardError):
    """Invalid node-type catalog file."""

    pass


class SettingsError(FlowguardError):
    """Invalid flowguard settings file."""

    pass


class DocumentShapeError(FlowguardError):
    """Workflow document does not have the expected structure.

    Attributes:
        issues: One entry per structural problem, each with ``path`` and ``message``.
    """

    def __init__(self, issues: list[dict[str, Any]]) -> None:
        self.issues = issues
        summary = "; ".join(f"{i['path']}: {i['message']}" for i in issues[:3])
        if len(issues) > 3:
            summary += f" (+{len(issues) - 3} more)"
        super().__init__(f"Malformed workflow document: {summary}")


class DiffApplyError(FlowguardError):
    """A diff operation could not be applied to the working document."""

    pass
