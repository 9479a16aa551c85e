"""GitHub integration via gh CLI."""

import json
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ffmerge.errors import PlatformNotifyError, PullRequestLookupError, ToolMissingError
from ffmerge.models import (
    GitHubRepository,
    MergeStep,
    PRState,
    PullRequestInfo,
    PullRequestRef,
)
from ffmerge.utils.logger import get_logger
from ffmerge.utils.shell import ShellError, ShellResult, run_command

logger = get_logger(__name__)

_GITHUB_REMOTE_PATTERNS = [
    re.compile(r"^https://(?:[^@/]+@)?github\.com/(?P<owner>[^/]+)/(?P<name>[^/]+?)(?:\.git)?/?$"),
    re.compile(r"^(?:ssh://)?git@github\.com[:/](?P<owner>[^/]+)/(?P<name>[^/]+?)(?:\.git)?/?$"),
]

PR_FIELDS = [
    "number",
    "title",
    "url",
    "state",
    "isDraft",
    "headRefName",
    "headRefOid",
    "baseRefName",
    "mergeable",
    "reviewDecision",
    "statusCheckRollup",
]


def parse_github_remote(remote_url: str) -> Optional[str]:
    """Extract owner/name from a GitHub remote URL.

    Returns:
        Repository full name, or None if the URL is not a github.com remote
    """
    for pattern in _GITHUB_REMOTE_PATTERNS:
        match = pattern.match(remote_url.strip())
        if match:
            return f"{match.group('owner')}/{match.group('name')}"
    return None


def describe_gh_failure(stderr: str, subject: str) -> str:
    """Turn gh's stderr into a one-line diagnosis.

    Args:
        stderr: gh standard error
        subject: What was being looked up (e.g. "PR #42 in owner/repo")
    """
    lowered = stderr.lower()
    if "could not resolve to a pullrequest" in lowered or "no pull requests found" in lowered:
        return f"{subject} not found"
    if "could not resolve to a repository" in lowered or "http 404" in lowered:
        return f"{subject}: repository not found or not accessible"
    if "gh auth login" in lowered or "http 401" in lowered or "authentication" in lowered:
        return f"{subject}: GitHub CLI is not authenticated (run 'gh auth login')"
    if "rate limit" in lowered:
        return f"{subject}: GitHub API rate limit exceeded"
    return f"Failed to look up {subject}"


class GitHubCLI:
    """GitHub access through the gh command line tool."""

    def __init__(self, executable: str = "gh", cwd: Optional[Union[str, Path]] = None):
        """Initialize GitHub CLI wrapper.

        Args:
            executable: gh executable name or path
            cwd: Directory gh runs in (lets gh infer the repository)
        """
        self.executable = executable
        self.cwd = Path(cwd) if cwd else None

    def _run(self, args: List[str]) -> ShellResult:
        try:
            return run_command([self.executable, *args], cwd=self.cwd)
        except ShellError as e:
            raise ToolMissingError(
                f"Required tool `{self.executable}` could not be run",
                step=MergeStep.PREFLIGHT,
                detail=e.stderr,
            )

    def _run_json(self, args: List[str], subject: str, pr_number: Optional[int] = None) -> Dict[str, Any]:
        result = self._run(args)
        if not result.success:
            raise PullRequestLookupError(
                describe_gh_failure(result.stderr, subject),
                step=MergeStep.LOOKUP,
                pr_number=pr_number,
                detail=result.stderr,
            )
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise PullRequestLookupError(
                f"Failed to parse gh output for {subject}: {e}",
                step=MergeStep.LOOKUP,
                pr_number=pr_number,
            )
        if not isinstance(data, dict):
            raise PullRequestLookupError(
                f"Unexpected gh output for {subject}", step=MergeStep.LOOKUP, pr_number=pr_number
            )
        return data

    def resolve_repository(self, full_name: Optional[str] = None) -> GitHubRepository:
        """Look up a repository and its default branch.

        Args:
            full_name: owner/name, or None for the repository of the current checkout

        Raises:
            PullRequestLookupError: If the repository cannot be resolved
        """
        args = ["repo", "view"]
        if full_name:
            args.append(full_name)
        args.extend(["--json", "nameWithOwner,defaultBranchRef,url"])

        subject = f"repository {full_name}" if full_name else "repository of the current checkout"
        data = self._run_json(args, subject)

        try:
            default_branch = (data.get("defaultBranchRef") or {}).get("name") or "main"
            repository = GitHubRepository.from_full_name(
                data["nameWithOwner"], default_branch=default_branch, url=data.get("url")
            )
        except (KeyError, ValueError) as e:
            raise PullRequestLookupError(
                f"Unexpected gh output for {subject}: {e}", step=MergeStep.LOOKUP
            )

        logger.debug(f"Resolved {repository.full_name} (default branch {repository.default_branch})")
        return repository

    def fetch_pull_request(self, ref: PullRequestRef, repository: GitHubRepository) -> PullRequestInfo:
        """Fetch pull request metadata and the head commit's verification status.

        Raises:
            PullRequestLookupError: If the PR does not exist or gh fails
        """
        subject = f"PR {ref.selector} in {repository.full_name}"
        data = self._run_json(
            ["pr", "view", ref.selector, "--repo", repository.full_name, "--json", ",".join(PR_FIELDS)],
            subject,
            pr_number=ref.number,
        )

        try:
            info = PullRequestInfo.from_gh(data)
        except ValueError as e:
            raise PullRequestLookupError(
                f"Unexpected gh output for {subject}: {e}", step=MergeStep.LOOKUP, pr_number=ref.number
            )

        commit = self._run_json(
            ["api", f"repos/{repository.full_name}/commits/{info.head_oid}"],
            f"commit {info.head_oid[:12]} in {repository.full_name}",
            pr_number=info.number,
        )
        info = info.with_verification((commit.get("commit") or {}).get("verification") or {})

        logger.debug(
            f"PR #{info.number}: head {info.head_oid[:12]} on {info.head_ref_name}, "
            f"base {info.base_ref_name}, state {info.state.value}, mergeable {info.mergeable.value}"
        )
        return info

    def pull_request_state(self, number: int, repository: GitHubRepository) -> PRState:
        """Get the current state of a pull request.

        Raises:
            PlatformNotifyError: If the state cannot be read
        """
        result = self._run(
            ["pr", "view", str(number), "--repo", repository.full_name, "--json", "state"],
        )
        try:
            result.check()
            return PRState(json.loads(result.stdout)["state"])
        except (ShellError, json.JSONDecodeError, KeyError, ValueError) as e:
            raise PlatformNotifyError(
                f"Could not read state of PR #{number}",
                step=MergeStep.NOTIFY,
                pr_number=number,
                detail=result.stderr or str(e),
            )

    def mark_merged(
        self,
        info: PullRequestInfo,
        repository: GitHubRepository,
        commit: str,
        trunk: str,
        attempts: int = 1,
        interval: float = 0.0,
    ) -> None:
        """Make sure the pull request is shown as merged.

        GitHub marks a PR merged by itself once its head lands on the base
        branch, but detection can lag behind the push. Poll for that first;
        if it never happens, close the PR with a comment naming the commit.

        Raises:
            PlatformNotifyError: If the PR cannot be checked or closed
        """
        for attempt in range(attempts):
            if self.pull_request_state(info.number, repository) == PRState.MERGED:
                logger.debug(f"GitHub marked PR #{info.number} as merged")
                return
            if attempt < attempts - 1:
                time.sleep(interval)

        comment = (
            f"Fast-forwarded `{trunk}` to {commit} with ffmerge. "
            "Commits were pushed unchanged, so their signatures are preserved."
        )
        result = self._run(
            ["pr", "close", str(info.number), "--repo", repository.full_name, "--comment", comment],
        )
        if not result.success:
            raise PlatformNotifyError(
                f"Could not close PR #{info.number}",
                step=MergeStep.NOTIFY,
                pr_number=info.number,
                detail=result.stderr,
            )
        logger.info(f"Closed PR #{info.number} with a reference to {commit[:12]}")
