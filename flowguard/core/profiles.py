"""Validation profiles and the severity policy each one applies."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from flowguard.core.models import IssueCategory, IssueSeverity, ValidationIssue


class ValidationProfile(str, Enum):
    """Named validation policies, from most lenient to most demanding."""

    MINIMAL = "minimal"  # Required fields only, errors only
    RUNTIME = "runtime"  # What breaks at execution time
    AI_FRIENDLY = "ai-friendly"  # Runtime plus examples and next steps
    STRICT = "strict"  # Everything, style promoted to errors


@dataclass(frozen=True)
class ProfilePolicy:
    """Which rule families run under a profile and how their findings are reported."""

    profile: ValidationProfile
    check_types: bool
    run_rules: bool
    keep_warnings: bool
    keep_style: bool
    promote_style: bool
    include_guidance: bool

    @classmethod
    def for_profile(cls, profile: ValidationProfile | str) -> "ProfilePolicy":
        """Look up the policy for a profile name.

        Raises:
            ValueError: If ``profile`` is not a known profile name.
        """
        return PROFILE_POLICIES[ValidationProfile(profile)]

    def apply(self, issue: ValidationIssue) -> ValidationIssue | None:
        """Return the issue as this profile reports it, or None when suppressed."""
        if issue.category == IssueCategory.STYLE:
            if self.promote_style:
                if issue.severity == IssueSeverity.ERROR:
                    return issue
                return issue.model_copy(update={"severity": IssueSeverity.ERROR})
            if not self.keep_style:
                return None
        if issue.severity != IssueSeverity.ERROR and not self.keep_warnings:
            return None
        return issue


PROFILE_POLICIES: dict[ValidationProfile, ProfilePolicy] = {
    ValidationProfile.MINIMAL: ProfilePolicy(
        profile=ValidationProfile.MINIMAL,
        check_types=False,
        run_rules=False,
        keep_warnings=False,
        keep_style=False,
        promote_style=False,
        include_guidance=False,
    ),
    ValidationProfile.RUNTIME: ProfilePolicy(
        profile=ValidationProfile.RUNTIME,
        check_types=True,
        run_rules=True,
        keep_warnings=True,
        keep_style=False,
        promote_style=False,
        include_guidance=False,
    ),
    ValidationProfile.AI_FRIENDLY: ProfilePolicy(
        profile=ValidationProfile.AI_FRIENDLY,
        check_types=True,
        run_rules=True,
        keep_warnings=True,
        keep_style=False,
        promote_style=False,
        include_guidance=True,
    ),
    ValidationProfile.STRICT: ProfilePolicy(
        profile=ValidationProfile.STRICT,
        check_types=True,
        run_rules=True,
        keep_warnings=True,
        keep_style=True,
        promote_style=True,
        include_guidance=False,
    ),
}
