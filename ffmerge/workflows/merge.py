"""Fast-forward merge workflow for pull requests.

This module holds the whole merge decision procedure: look the pull request
up, sync trunk, validate it, fast-forward trunk to the PR head and push it
without force. Commits are never rebased or re-created, so linear history and
every commit's signature survive the merge.
"""

import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from ffmerge.errors import (
    MergeError,
    MergeRejectedError,
    NotFastForwardError,
    PlatformNotifyError,
    PushError,
    SyncError,
    ToolMissingError,
    UsageError,
)
from ffmerge.integrations.base import HostingPlatform, VersionControl
from ffmerge.integrations.git import GitRepository
from ffmerge.integrations.github import GitHubCLI, parse_github_remote
from ffmerge.models import (
    CommitSignature,
    Config,
    MergeableState,
    MergeConfig,
    MergeOutcome,
    MergeStep,
    PRState,
    PullRequestInfo,
    PullRequestRef,
    RejectionReason,
    RepositoryContext,
    ToolsConfig,
    TrunkState,
)
from ffmerge.utils.logger import get_logger
from ffmerge.utils.shell import check_command_exists

logger = get_logger(__name__)

ProgressCallback = Callable[[str], None]


class MergeOrchestrator:
    """Merges one pull request into trunk by fast-forward.

    All collaborators are injected: ``git`` and ``platform`` implement the
    capability interfaces from :mod:`ffmerge.integrations.base`.
    """

    def __init__(
        self,
        context: RepositoryContext,
        git: VersionControl,
        platform: HostingPlatform,
        config: Optional[MergeConfig] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        """Initialize merge orchestrator.

        Args:
            context: Repository, remote and trunk to merge into
            git: Version control collaborator bound to the local checkout
            platform: Hosting platform collaborator
            config: Merge settings
            progress: Called with one human readable line per step
        """
        self.context = context
        self.git = git
        self.platform = platform
        self.config = config or MergeConfig()
        self.progress = progress

    @property
    def trunk(self) -> str:
        return self.context.trunk

    @property
    def remote(self) -> str:
        return self.context.remote

    def _report(self, message: str) -> None:
        logger.debug(message)
        if self.progress:
            self.progress(message)

    def merge_pull_request(self, ref: PullRequestRef) -> MergeOutcome:
        """Merge the pull request by fast-forwarding trunk to its head.

        Args:
            ref: Pull request to merge

        Returns:
            FastForwarded, Rejected or Failed outcome; errors are never raised
        """
        pr_number = ref.number
        try:
            info = self._lookup(ref)
            pr_number = info.number
            trunk_state = self._sync(info)

            # A PR already on trunk is a no-op whatever its state or checks say now
            if self.git.is_ancestor(info.head_oid, trunk_state.remote_tip):
                outcome = self._already_merged(info, trunk_state)
            else:
                if info.state == PRState.MERGED:
                    raise MergeRejectedError(
                        RejectionReason.MERGED_ELSEWHERE,
                        f"PR is merged on GitHub but its head {info.head_oid[:12]} "
                        f"is not on {self.remote}/{self.trunk}",
                        step=MergeStep.SYNC,
                    )
                self._validate(info)
                commits = self._fast_forward(info, trunk_state)
                self._push()
                outcome = MergeOutcome.fast_forwarded(
                    info.head_oid, pr_number=info.number, trunk=self.trunk, commits=commits
                )
        except MergeError as error:
            if error.pr_number is None:
                error.pr_number = pr_number
            logger.debug(f"Merge of {ref} stopped: {error.describe()}")
            return MergeOutcome.failed(error, trunk=self.trunk)

        self._notify(info, outcome)
        return outcome

    def _lookup(self, ref: PullRequestRef) -> PullRequestInfo:
        self._report(f"Looking up {ref} in {self.context.repository.full_name}")
        info = self.platform.fetch_pull_request(ref, self.context.repository)
        self._report(
            f"PR #{info.number} '{info.title}': {info.head_ref_name} at {info.head_oid[:12]} "
            f"into {info.base_ref_name}"
        )
        return info

    def _validate(self, info: PullRequestInfo) -> None:
        """Check mergeability of a PR whose head is not on trunk yet.

        Review and check policy is GitHub's; only its reported status is read.

        Raises:
            MergeRejectedError: If the pull request cannot be merged now
        """
        step = MergeStep.VALIDATE

        if info.state == PRState.CLOSED:
            raise MergeRejectedError(RejectionReason.CLOSED, step=step)

        if info.base_ref_name != self.trunk:
            raise MergeRejectedError(
                RejectionReason.WRONG_BASE,
                f"PR targets {info.base_ref_name}, not {self.trunk}",
                step=step,
            )
        if info.is_draft:
            raise MergeRejectedError(RejectionReason.DRAFT, step=step)
        if info.mergeable == MergeableState.CONFLICTING:
            raise MergeRejectedError(
                RejectionReason.NOT_MERGEABLE,
                f"not mergeable: conflicts with {self.trunk}",
                step=step,
            )

        if self.config.require_approval and not info.approved:
            decision = (info.review_decision or "no review decision").replace("_", " ").lower()
            raise MergeRejectedError(
                RejectionReason.NOT_APPROVED, f"not approved ({decision})", step=step
            )

        if self.config.ignore_ci:
            self._report("Ignoring CI status checks")
        else:
            pending = info.pending_checks()
            if pending:
                names = ", ".join(check.display_name for check in pending)
                raise MergeRejectedError(
                    RejectionReason.CHECKS_PENDING, f"checks pending: {names}", step=step
                )
            failing = info.failing_checks(self.config.accepted_conclusions)
            if failing:
                names = ", ".join(check.display_name for check in failing)
                raise MergeRejectedError(
                    RejectionReason.CHECKS_FAILED, f"checks failed: {names}", step=step
                )

        if info.head_verified is False:
            reason = info.head_verification_reason or "unverified"
            self._report(
                f"Head commit {info.head_oid[:12]} is not verified by GitHub ({reason}); "
                "its signature state is kept as-is"
            )

        self._report(f"PR #{info.number} is approved and mergeable")

    def _sync(self, info: PullRequestInfo) -> TrunkState:
        """Fetch trunk and the PR head from the remote.

        Only remote-tracking refs change here; the checkout is left alone.

        Raises:
            SyncError: If the fetch fails or the head commit is unavailable
        """
        step = MergeStep.SYNC
        self._report(f"Fetching {self.trunk} and PR #{info.number} from {self.remote}")
        self.git.fetch(
            self.remote,
            [
                f"+refs/heads/{self.trunk}:{self.context.remote_trunk_ref}",
                f"refs/pull/{info.number}/head",
            ],
        )

        remote_tip = self.git.rev_parse(self.context.remote_trunk_ref)
        if remote_tip is None:
            raise SyncError(f"{self.remote}/{self.trunk} does not exist after fetch", step=step)

        if not self.git.has_commit(info.head_oid):
            raise SyncError(
                f"Head commit {info.head_oid[:12]} is not available after fetch; "
                "the pull request may have been updated, re-run",
                step=step,
            )

        return TrunkState(
            branch=self.trunk,
            remote=self.remote,
            remote_tip=remote_tip,
            local_tip=self.git.rev_parse(f"refs/heads/{self.trunk}"),
        )

    def _already_merged(self, info: PullRequestInfo, trunk_state: TrunkState) -> MergeOutcome:
        self._report(
            f"Head {info.head_oid[:12]} is already on {self.remote}/{self.trunk}; nothing to push"
        )
        return MergeOutcome.fast_forwarded(
            trunk_state.remote_tip,
            pr_number=info.number,
            trunk=self.trunk,
            already_merged=True,
        )

    def _prepare_trunk(self, trunk_state: TrunkState) -> None:
        """Check out local trunk and bring it to the remote tip.

        Raises:
            SyncError: If the tree is dirty or local trunk has unpushed commits
        """
        step = MergeStep.SYNC
        if not self.git.is_clean():
            raise SyncError(
                "Working tree has uncommitted changes; commit or stash them first", step=step
            )

        if trunk_state.local_tip is None:
            self._report(f"Creating local {self.trunk} from {self.remote}/{self.trunk}")
            self.git.checkout(self.trunk, start_point=self.context.remote_trunk_ref)
            return

        self.git.checkout(self.trunk)
        if trunk_state.local_tip == trunk_state.remote_tip:
            return

        if not self.git.is_ancestor(trunk_state.local_tip, trunk_state.remote_tip):
            raise SyncError(
                f"Local {self.trunk} has diverged from {self.remote}/{self.trunk} "
                f"(local {trunk_state.local_tip[:12]}); push or reset it first",
                step=step,
            )
        self._report(f"Updating local {self.trunk} to {trunk_state.remote_tip[:12]}")
        self.git.ff_merge(trunk_state.remote_tip)

    def _fast_forward(self, info: PullRequestInfo, trunk_state: TrunkState) -> List[CommitSignature]:
        """Fast-forward local trunk to the PR head.

        Raises:
            NotFastForwardError: If trunk is not an ancestor of the PR head
            SyncError: If the result is not exactly the PR head
        """
        step = MergeStep.FAST_FORWARD
        base, head = trunk_state.remote_tip, info.head_oid

        if not self.git.is_ancestor(base, head):
            raise NotFastForwardError(
                f"not a fast-forward; rebase required: {self.remote}/{self.trunk} "
                f"({base[:12]}) is not an ancestor of {head[:12]}",
                step=step,
            )

        self._prepare_trunk(trunk_state)

        before = self.git.commit_signatures(base, head)
        signed = sum(1 for commit in before if commit.is_signed)
        self._report(
            f"Fast-forwarding {self.trunk} {base[:12]}..{head[:12]} "
            f"({len(before)} commits, {signed} signed)"
        )
        self.git.ff_merge(head)

        new_tip = self.git.rev_parse(f"refs/heads/{self.trunk}")
        if new_tip != head:
            raise SyncError(
                f"{self.trunk} ended at {(new_tip or 'nothing')[:12]} instead of {head[:12]}; not pushing",
                step=step,
            )

        after = self.git.commit_signatures(base, new_tip)
        if after != before:
            raise SyncError("Commit signature status changed during the merge; not pushing", step=step)
        return after

    def _push(self) -> None:
        """Push trunk without force; the remote serializes concurrent merges.

        Raises:
            PushError: If the remote rejects the push
        """
        self._report(f"Pushing {self.trunk} to {self.remote}")
        try:
            self.git.push(self.remote, self.trunk)
        except PushError:
            interval = self.config.push_retry_interval
            if interval is None:
                raise
            self._report(f"Push was rejected; retrying once in {interval}s")
            time.sleep(interval)
            self.git.push(self.remote, self.trunk)

    def _notify(self, info: PullRequestInfo, outcome: MergeOutcome) -> None:
        """Mark the pull request merged; failures only produce a warning."""
        if not self.config.mark_merged or info.state != PRState.OPEN:
            return

        self._report(f"Marking PR #{info.number} as merged")
        try:
            self.platform.mark_merged(
                info,
                self.context.repository,
                outcome.tip or info.head_oid,
                self.trunk,
                attempts=self.config.mark_merged_attempts,
                interval=self.config.mark_merged_interval,
            )
        except PlatformNotifyError as e:
            warning = f"{self.trunk} was pushed, but PR #{info.number} could not be marked merged: {e.describe()}"
            logger.warning(warning)
            outcome.warnings.append(warning)


def ensure_tools(tools: ToolsConfig) -> None:
    """Check that git and gh are on PATH.

    Raises:
        ToolMissingError: If either executable is missing
    """
    for executable in (tools.git, tools.gh):
        if not check_command_exists(executable):
            raise ToolMissingError(
                f"Required tool `{executable}` was not found on PATH", step=MergeStep.PREFLIGHT
            )


def resolve_context(
    git: VersionControl,
    platform: HostingPlatform,
    config: MergeConfig,
    path: Path,
    repository: Optional[str] = None,
    trunk: Optional[str] = None,
    remote: Optional[str] = None,
) -> RepositoryContext:
    """Work out which repository, remote and trunk branch to merge into.

    Trunk precedence: explicit argument, then ``merge.trunk_branch``, then the
    repository's default branch on GitHub.

    Raises:
        PullRequestLookupError: If the repository cannot be resolved
        SyncError: If the remote is missing or points at another repository
    """
    github_repository = platform.resolve_repository(repository)
    trunk_name = trunk or config.trunk_branch or github_repository.default_branch
    remote_name = remote or config.remote

    remote_url = git.remote_url(remote_name)
    if remote_url is None:
        raise SyncError(
            f"git remote '{remote_name}' is not configured in {path}", step=MergeStep.PREFLIGHT
        )

    remote_repository = parse_github_remote(remote_url)
    if remote_repository and remote_repository.lower() != github_repository.full_name.lower():
        raise SyncError(
            f"git remote '{remote_name}' points at {remote_repository}, "
            f"not {github_repository.full_name}",
            step=MergeStep.PREFLIGHT,
        )
    if remote_repository is None:
        logger.debug(f"Remote {remote_name} ({remote_url}) is not a github.com URL; not cross-checking")

    return RepositoryContext(
        path=path,
        remote=remote_name,
        repository=github_repository,
        trunk=trunk_name,
    )


def ref_for_current_branch(git: VersionControl, trunk: str) -> PullRequestRef:
    """Build a reference to the pull request whose head is the checked out branch.

    Raises:
        UsageError: If HEAD is detached or trunk itself is checked out
    """
    branch = git.current_branch()
    if branch is None:
        raise UsageError("HEAD is detached; specify the PR number or branch to merge")
    if branch == trunk:
        raise UsageError(f"On {trunk}; specify the PR number or branch name to merge")
    return PullRequestRef(branch=branch)


def merge_pull_request(
    ref: Optional[PullRequestRef],
    config: Config,
    path: Optional[Union[str, Path]] = None,
    repository: Optional[str] = None,
    trunk: Optional[str] = None,
    remote: Optional[str] = None,
    git: Optional[VersionControl] = None,
    platform: Optional[HostingPlatform] = None,
    progress: Optional[ProgressCallback] = None,
) -> MergeOutcome:
    """Merge a pull request by fast-forward, end to end.

    This is the process boundary: every ``MergeError`` is converted into a
    ``MergeOutcome``.

    Args:
        ref: Pull request to merge, or None for the current branch's PR
        config: Loaded configuration
        path: Local checkout (current directory if None)
        repository: owner/name override
        trunk: Trunk branch override
        remote: Remote name override
        git: Version control collaborator (built from config if None)
        platform: Hosting platform collaborator (built from config if None)
        progress: Called with one human readable line per step

    Returns:
        Outcome of the merge
    """
    checkout = Path(path) if path else Path.cwd()
    pr_number = ref.number if ref else None

    try:
        if ref and ref.repository:
            if repository and repository.lower() != ref.repository.lower():
                raise UsageError(
                    f"PR {ref} belongs to {ref.repository}, but --repo is {repository}"
                )
            repository = ref.repository

        if git is None or platform is None:
            ensure_tools(config.tools)
        git = git or GitRepository(checkout, config.tools.git)
        platform = platform or GitHubCLI(config.tools.gh, cwd=checkout)

        context = resolve_context(
            git, platform, config.merge, checkout, repository=repository, trunk=trunk, remote=remote
        )
        if ref is None:
            ref = ref_for_current_branch(git, context.trunk)
    except MergeError as error:
        if error.pr_number is None:
            error.pr_number = pr_number
        return MergeOutcome.failed(error)

    orchestrator = MergeOrchestrator(context, git, platform, config.merge, progress)
    return orchestrator.merge_pull_request(ref)
