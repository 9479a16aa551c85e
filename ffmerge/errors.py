"""Error taxonomy for the merge workflow.

Every failure the merge can hit is one of these classes. Integrations translate
``ShellError`` into them at the subprocess boundary, and the workflow turns them
into a :class:`~ffmerge.models.MergeOutcome` so callers never catch anything.

Two categories are distinguished in user-facing wording:

* ``rejection``: the pull request or branch needs attention (not mergeable,
  not a fast-forward, checks pending).
* ``infrastructure``: the environment needs fixing (missing tool, network,
  authentication, remote race).
"""

from typing import Optional

from ffmerge.models import ExitCode, MergeStep, RejectionReason


class MergeError(Exception):
    """Base class for merge workflow errors."""

    exit_code: ExitCode = ExitCode.FAILURE
    category: str = "infrastructure"

    def __init__(
        self,
        message: str,
        step: Optional[MergeStep] = None,
        pr_number: Optional[int] = None,
        detail: str = "",
    ):
        """Initialize merge error.

        Args:
            message: One-line diagnosis
            step: Workflow step that failed
            pr_number: Pull request number, when known
            detail: Underlying tool output (usually stderr)
        """
        super().__init__(message)
        self.message = message
        self.step = step
        self.pr_number = pr_number
        self.detail = detail.strip()

    def describe(self) -> str:
        """Render the diagnosis with PR, step and tool output context."""
        parts = []
        if self.pr_number is not None:
            parts.append(f"PR #{self.pr_number}")
        if self.step is not None:
            parts.append(f"{self.step.value} step")
        prefix = f"[{', '.join(parts)}] " if parts else ""
        text = f"{prefix}{self.message}"
        if self.detail:
            last_line = self.detail.splitlines()[-1]
            if last_line not in self.message:
                text = f"{text} ({last_line})"
        return text


class UsageError(MergeError):
    """The invocation itself is inconsistent (e.g. no PR given while on trunk)."""

    exit_code = ExitCode.USAGE
    category = "usage"


class ToolMissingError(MergeError):
    """A required executable is not on PATH."""

    exit_code = ExitCode.TOOL_MISSING


class PullRequestLookupError(MergeError, LookupError):
    """The platform query failed (not found, auth, network, rate limit)."""

    exit_code = ExitCode.LOOKUP_FAILED


class SyncError(MergeError):
    """Updating or inspecting the local repository failed."""

    exit_code = ExitCode.SYNC_FAILED


class PushError(MergeError):
    """The remote rejected the trunk push."""

    exit_code = ExitCode.PUSH_REJECTED

    def __init__(self, message: str, race: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.race = race


class PlatformNotifyError(MergeError):
    """Marking the pull request as merged failed after a successful push.

    Never fatal: the trunk push is the authoritative result.
    """


class MergeRejectedError(MergeError):
    """The pull request cannot be merged as it stands."""

    exit_code = ExitCode.REJECTED
    category = "rejection"

    def __init__(self, reason: RejectionReason, message: Optional[str] = None, **kwargs):
        super().__init__(message or reason.value, **kwargs)
        self.reason = reason


class NotFastForwardError(MergeRejectedError):
    """Trunk has commits that are not in the pull request head's ancestry."""

    exit_code = ExitCode.NOT_FAST_FORWARD

    def __init__(self, message: Optional[str] = None, **kwargs):
        super().__init__(RejectionReason.NOT_FAST_FORWARD, message, **kwargs)
