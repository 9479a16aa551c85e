"""Data models for ffmerge."""

import re
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExitCode(IntEnum):
    """Process exit codes. Values are stable; see README/DESIGN for the table."""

    SUCCESS = 0
    FAILURE = 1
    USAGE = 2
    REJECTED = 3
    NOT_FAST_FORWARD = 4
    TOOL_MISSING = 5
    LOOKUP_FAILED = 6
    SYNC_FAILED = 7
    PUSH_REJECTED = 8
    CONFIG_ERROR = 9


class MergeStep(str, Enum):
    """Steps of the merge workflow, used to label errors and progress."""

    PREFLIGHT = "preflight"
    LOOKUP = "lookup"
    VALIDATE = "validate"
    SYNC = "sync"
    FAST_FORWARD = "fast-forward"
    PUSH = "push"
    NOTIFY = "notify"


class RejectionReason(str, Enum):
    """Expected reasons a pull request is not merged."""

    NOT_MERGEABLE = "not mergeable"
    CHECKS_PENDING = "checks pending"
    CHECKS_FAILED = "checks failed"
    NOT_APPROVED = "not approved"
    DRAFT = "pull request is a draft"
    CLOSED = "pull request is closed"
    WRONG_BASE = "pull request does not target the trunk branch"
    MERGED_ELSEWHERE = "merged on the platform but head is not on trunk"
    NOT_FAST_FORWARD = "not a fast-forward; rebase required"


class OutcomeKind(str, Enum):
    """Outcome categories of a merge run."""

    FAST_FORWARDED = "fast_forwarded"
    REJECTED = "rejected"
    FAILED = "failed"


class PRState(str, Enum):
    """Pull request states as reported by gh."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"


class MergeableState(str, Enum):
    """GitHub's conflict status for a pull request."""

    MERGEABLE = "MERGEABLE"
    CONFLICTING = "CONFLICTING"
    UNKNOWN = "UNKNOWN"


_PR_URL_PATTERN = re.compile(
    r"^https?://github\.com/(?P<owner>[^/]+)/(?P<name>[^/]+)/pull/(?P<number>\d+)(?:[/?#].*)?$"
)
_QUALIFIED_PATTERN = re.compile(r"^(?P<owner>[\w.-]+)/(?P<name>[\w.-]+)#(?P<number>\d+)$")


class PullRequestRef(BaseModel):
    """Identifies the pull request to merge.

    Exactly one of ``number`` or ``branch`` is set. ``repository`` is only set
    when the input named one explicitly (URL or ``owner/name#N``).
    """

    model_config = ConfigDict(frozen=True)

    repository: Optional[str] = Field(default=None, description="Repository as owner/name")
    number: Optional[int] = Field(default=None, description="Pull request number")
    branch: Optional[str] = Field(default=None, description="Head branch name")

    @classmethod
    def parse(cls, identifier: str) -> "PullRequestRef":
        """Parse a pull request identifier.

        Supported formats:
        - 42, #42
        - owner/name#42
        - https://github.com/owner/name/pull/42
        - a head branch name, e.g. feature/signed-commits
        """
        identifier = identifier.strip()
        if not identifier:
            raise ValueError("Pull request identifier cannot be empty")

        match = _PR_URL_PATTERN.match(identifier) or _QUALIFIED_PATTERN.match(identifier)
        if match:
            return cls(
                repository=f"{match.group('owner')}/{match.group('name')}",
                number=int(match.group("number")),
            )

        number = identifier.lstrip("#")
        if number.isdigit():
            return cls(number=int(number))

        if identifier.startswith("#") or any(c.isspace() for c in identifier) or ".." in identifier:
            raise ValueError(f"Unable to parse pull request identifier: {identifier}")

        return cls(branch=identifier)

    @property
    def selector(self) -> str:
        """Argument identifying the pull request for ``gh pr view``."""
        if self.number is not None:
            return str(self.number)
        if self.branch:
            return self.branch
        raise ValueError("Pull request reference has neither a number nor a branch")

    def __str__(self) -> str:
        if self.number is not None:
            prefix = self.repository or ""
            return f"{prefix}#{self.number}"
        return f"branch {self.branch}"


class StatusCheck(BaseModel):
    """One entry of GitHub's statusCheckRollup (CheckRun or StatusContext)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type_name: str = Field(default="CheckRun", alias="__typename")
    name: Optional[str] = Field(default=None, description="CheckRun name")
    status: Optional[str] = Field(default=None, description="CheckRun status")
    conclusion: Optional[str] = Field(default=None, description="CheckRun conclusion")
    context: Optional[str] = Field(default=None, description="StatusContext name")
    state: Optional[str] = Field(default=None, description="StatusContext state")

    @property
    def is_check_run(self) -> bool:
        return self.type_name == "CheckRun"

    @property
    def display_name(self) -> str:
        return self.name or self.context or "unnamed check"

    @property
    def is_pending(self) -> bool:
        if self.is_check_run:
            return (self.status or "").upper() != "COMPLETED"
        return (self.state or "").upper() in ("PENDING", "EXPECTED")

    def is_successful(self, accepted_conclusions: List[str]) -> bool:
        """Whether the check finished with an accepted result."""
        if self.is_pending:
            return False
        if self.is_check_run:
            return (self.conclusion or "").upper() in {c.upper() for c in accepted_conclusions}
        return (self.state or "").upper() == "SUCCESS"


class PullRequestInfo(BaseModel):
    """Point-in-time snapshot of a pull request, fetched once per run."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    number: int = Field(description="PR number")
    title: str = Field(default="", description="PR title")
    url: Optional[str] = Field(default=None, description="PR URL")
    state: PRState = Field(default=PRState.OPEN, description="PR state")
    is_draft: bool = Field(default=False, alias="isDraft", description="Draft flag")
    head_ref_name: str = Field(alias="headRefName", description="Head branch name")
    head_oid: str = Field(alias="headRefOid", description="Head commit id")
    base_ref_name: str = Field(alias="baseRefName", description="Base branch name")
    mergeable: MergeableState = Field(
        default=MergeableState.UNKNOWN, description="Conflict status"
    )
    review_decision: Optional[str] = Field(
        default=None, alias="reviewDecision", description="APPROVED, CHANGES_REQUESTED, ..."
    )
    status_checks: List[StatusCheck] = Field(
        default_factory=list, alias="statusCheckRollup", description="CI checks"
    )
    head_verified: Optional[bool] = Field(
        default=None, description="Platform signature verification of the head commit"
    )
    head_verification_reason: Optional[str] = Field(
        default=None, description="Platform verification reason (valid, unsigned, ...)"
    )

    @field_validator("review_decision", mode="before")
    @classmethod
    def empty_decision_is_none(cls, v: Any) -> Any:
        return v or None

    @field_validator("mergeable", mode="before")
    @classmethod
    def unknown_mergeable(cls, v: Any) -> Any:
        if v not in {m.value for m in MergeableState}:
            return MergeableState.UNKNOWN
        return v

    @field_validator("status_checks", mode="before")
    @classmethod
    def null_rollup(cls, v: Any) -> Any:
        return v or []

    @classmethod
    def from_gh(cls, data: Dict[str, Any]) -> "PullRequestInfo":
        """Build from ``gh pr view --json`` output."""
        return cls.model_validate(data)

    def with_verification(self, verification: Dict[str, Any]) -> "PullRequestInfo":
        """Copy with the head commit's ``commit.verification`` object from the REST API."""
        return self.model_copy(
            update={
                "head_verified": bool(verification.get("verified")),
                "head_verification_reason": verification.get("reason"),
            }
        )

    @property
    def approved(self) -> bool:
        return self.review_decision == "APPROVED"

    def pending_checks(self) -> List[StatusCheck]:
        return [check for check in self.status_checks if check.is_pending]

    def failing_checks(self, accepted_conclusions: List[str]) -> List[StatusCheck]:
        return [
            check
            for check in self.status_checks
            if not check.is_pending and not check.is_successful(accepted_conclusions)
        ]


class GitHubRepository(BaseModel):
    """GitHub repository context model."""

    owner: str = Field(description="Repository owner")
    name: str = Field(description="Repository name")
    default_branch: str = Field(default="main", description="Default branch")
    url: Optional[str] = Field(default=None, description="Repository URL")

    @classmethod
    def from_full_name(cls, full_name: str, **kwargs: Any) -> "GitHubRepository":
        owner, _, name = full_name.partition("/")
        if not owner or not name or "/" in name:
            raise ValueError(f"Repository must be given as owner/name, got: {full_name}")
        return cls(owner=owner, name=name, **kwargs)

    @property
    def full_name(self) -> str:
        """Get full repository name (owner/name)."""
        return f"{self.owner}/{self.name}"


class RepositoryContext(BaseModel):
    """Explicit description of where and what to merge.

    Passed into the orchestrator instead of relying on the process's current
    working directory.
    """

    path: Path = Field(description="Local checkout root")
    remote: str = Field(default="origin", description="Git remote holding the trunk")
    repository: GitHubRepository = Field(description="GitHub repository")
    trunk: str = Field(description="Trunk branch name")

    @property
    def remote_trunk_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.trunk}"


class TrunkState(BaseModel):
    """Trunk tips observed during a merge attempt."""

    branch: str = Field(description="Trunk branch name")
    remote: str = Field(description="Remote name")
    remote_tip: str = Field(description="Remote trunk tip after fetch")
    local_tip: Optional[str] = Field(default=None, description="Local trunk tip before sync")


class CommitSignature(BaseModel):
    """Signature status of one commit, as reported by ``git log --format=%G?``."""

    oid: str = Field(description="Commit id")
    status: str = Field(description="git %G? code (G, B, U, X, Y, R, E, N)")

    @property
    def is_signed(self) -> bool:
        return self.status != "N"

    @property
    def is_good(self) -> bool:
        return self.status == "G"


class MergeOutcome(BaseModel):
    """Result of one merge run, reported through exit status and console output."""

    kind: OutcomeKind = Field(description="Outcome category")
    pr_number: Optional[int] = Field(default=None, description="Pull request number")
    tip: Optional[str] = Field(default=None, description="Trunk tip after the run")
    trunk: Optional[str] = Field(default=None, description="Trunk branch name")
    reason: Optional[RejectionReason] = Field(default=None, description="Rejection reason")
    message: str = Field(default="", description="Human readable diagnosis")
    step: Optional[MergeStep] = Field(default=None, description="Step that stopped the run")
    exit_code: ExitCode = Field(default=ExitCode.SUCCESS, description="Process exit code")
    already_merged: bool = Field(default=False, description="Idempotent no-op")
    commits: List[CommitSignature] = Field(
        default_factory=list, description="Commits added to trunk"
    )
    warnings: List[str] = Field(default_factory=list, description="Non-fatal problems")

    @classmethod
    def fast_forwarded(cls, tip: str, **kwargs: Any) -> "MergeOutcome":
        return cls(kind=OutcomeKind.FAST_FORWARDED, tip=tip, exit_code=ExitCode.SUCCESS, **kwargs)

    @classmethod
    def rejected(
        cls,
        reason: RejectionReason,
        message: Optional[str] = None,
        exit_code: ExitCode = ExitCode.REJECTED,
        **kwargs: Any,
    ) -> "MergeOutcome":
        return cls(
            kind=OutcomeKind.REJECTED,
            reason=reason,
            message=message or reason.value,
            exit_code=exit_code,
            **kwargs,
        )

    @classmethod
    def failed(cls, error: Exception, **kwargs: Any) -> "MergeOutcome":
        """Convert a workflow error into an outcome.

        Rejections become ``rejected`` outcomes; everything else is ``failed``.
        """
        from ffmerge.errors import MergeError, MergeRejectedError

        if isinstance(error, MergeRejectedError):
            return cls.rejected(
                error.reason,
                error.message,
                exit_code=error.exit_code,
                step=error.step,
                pr_number=error.pr_number,
                **kwargs,
            )
        if isinstance(error, MergeError):
            return cls(
                kind=OutcomeKind.FAILED,
                message=error.describe(),
                step=error.step,
                pr_number=error.pr_number,
                exit_code=error.exit_code,
                **kwargs,
            )
        return cls(kind=OutcomeKind.FAILED, message=str(error), exit_code=ExitCode.FAILURE, **kwargs)

    @property
    def success(self) -> bool:
        return self.kind == OutcomeKind.FAST_FORWARDED

    def summary(self) -> str:
        """Final console line stating the outcome category."""
        subject = f"PR #{self.pr_number}" if self.pr_number is not None else "pull request"
        if self.kind == OutcomeKind.FAST_FORWARDED:
            short = (self.tip or "")[:12]
            trunk = self.trunk or "trunk"
            if self.already_merged:
                return f"Already merged: {subject} is already on {trunk} at {short}; nothing to do"
            return f"Fast-forwarded: {trunk} is now at {short} ({subject})"
        if self.kind == OutcomeKind.REJECTED:
            return f"Rejected: {subject}: {self.message}. Update the pull request or branch and re-run"
        if self.exit_code == ExitCode.USAGE:
            return f"Error: {self.message}"
        return f"Failed: {self.message}. Fix the environment and re-run"


# Configuration models


_INVALID_REF_CHARS = [":", "~", "^", "?", "*", "[", "\\", " "]


class MergeConfig(BaseModel):
    """Merge behaviour settings."""

    trunk_branch: Optional[str] = Field(
        default=None, description="Trunk branch (repository default branch if unset)"
    )
    remote: str = Field(default="origin", description="Git remote that holds the trunk")
    require_approval: bool = Field(default=True, description="Require an APPROVED review")
    ignore_ci: bool = Field(default=False, description="Skip status check validation")
    accepted_conclusions: List[str] = Field(
        default_factory=lambda: ["SUCCESS", "SKIPPED", "NEUTRAL"],
        description="CheckRun conclusions that count as passing",
    )
    mark_merged: bool = Field(default=True, description="Mark the PR merged after the push")
    mark_merged_attempts: int = Field(
        default=3, description="Times to poll for GitHub's own merge detection"
    )
    mark_merged_interval: float = Field(
        default=2.0, description="Seconds between merge detection polls"
    )
    push_retry_interval: Optional[float] = Field(
        default=None, description="Retry a rejected push once after this many seconds"
    )

    @field_validator("trunk_branch")
    @classmethod
    def validate_trunk_branch(cls, v: Optional[str]) -> Optional[str]:
        """Validate trunk branch name."""
        if v is None:
            return v
        if not v.strip():
            raise ValueError("Trunk branch cannot be empty")
        for char in _INVALID_REF_CHARS:
            if char in v:
                raise ValueError(f"Trunk branch contains invalid character: '{char}'")
        return v

    @field_validator("remote")
    @classmethod
    def validate_remote(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Remote name cannot be empty")
        return v

    @field_validator("mark_merged_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("mark_merged_attempts must be at least 1")
        return v

    @field_validator("mark_merged_interval", "push_retry_interval")
    @classmethod
    def validate_interval(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("Intervals cannot be negative")
        return v


class ToolsConfig(BaseModel):
    """External executables."""

    git: str = Field(default="git", description="git executable")
    gh: str = Field(default="gh", description="GitHub CLI executable")


class Config(BaseModel):
    """Main configuration model."""

    version: str = Field(default="1.0", description="Config version")
    merge: MergeConfig = Field(default_factory=MergeConfig, description="Merge settings")
    tools: ToolsConfig = Field(default_factory=ToolsConfig, description="External tools")

    model_config = {"extra": "allow"}
