"""Local git operations for the fast-forward merge."""

from pathlib import Path
from typing import List, Optional, Union

from ffmerge.errors import NotFastForwardError, PushError, SyncError, ToolMissingError
from ffmerge.models import CommitSignature, MergeStep
from ffmerge.utils.logger import get_logger
from ffmerge.utils.shell import ShellError, ShellResult, run_command

logger = get_logger(__name__)

# Substrings git prints when the remote refused because its tip moved
_RACE_MARKERS = ("non-fast-forward", "fetch first", "stale info", "tip of your current branch is behind")


class GitRepository:
    """git command line wrapper bound to one checkout.

    Every method translates failures into the merge error taxonomy; nothing here
    ever forces a push or rewrites a commit.
    """

    def __init__(self, path: Union[str, Path], executable: str = "git"):
        """Initialize git repository wrapper.

        Args:
            path: Checkout root (or any directory inside it)
            executable: git executable name or path
        """
        self.path = Path(path)
        self.executable = executable

    def _run(self, *args: str) -> ShellResult:
        try:
            return run_command([self.executable, *args], cwd=self.path)
        except ShellError as e:
            raise ToolMissingError(
                f"Required tool `{self.executable}` could not be run",
                step=MergeStep.PREFLIGHT,
                detail=e.stderr,
            )

    def current_branch(self) -> Optional[str]:
        """Get the checked out branch, or None when HEAD is detached."""
        result = self._run("branch", "--show-current")
        if not result.success:
            raise SyncError("Could not read the current branch", step=MergeStep.SYNC, detail=result.stderr)
        return result.output or None

    def is_clean(self) -> bool:
        """Check for uncommitted changes to tracked files."""
        result = self._run("status", "--porcelain", "--untracked-files=no")
        if not result.success:
            raise SyncError(
                f"git status failed in {self.path}", step=MergeStep.SYNC, detail=result.stderr
            )
        return not result.output

    def remote_url(self, remote: str) -> Optional[str]:
        """Get the fetch URL of a remote, or None if it is not configured."""
        result = self._run("remote", "get-url", remote)
        return result.output if result.success else None

    def fetch(self, remote: str, refspecs: List[str]) -> None:
        """Fetch refspecs from a remote.

        Raises:
            SyncError: On network, auth or ref update failure
        """
        logger.debug(f"Fetching {', '.join(refspecs)} from {remote}")
        result = self._run("fetch", "--no-tags", remote, *refspecs)
        if not result.success:
            raise SyncError(
                f"git fetch from {remote} failed", step=MergeStep.SYNC, detail=result.stderr
            )

    def rev_parse(self, ref: str) -> Optional[str]:
        """Resolve a ref to a commit id, or None if it does not exist."""
        result = self._run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        return result.output if result.success and result.output else None

    def has_commit(self, oid: str) -> bool:
        """Check whether a commit object exists locally."""
        return self._run("cat-file", "-e", f"{oid}^{{commit}}").success

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Check whether ``ancestor`` is reachable from ``descendant``.

        A commit counts as its own ancestor.

        Raises:
            SyncError: If git cannot answer (unknown commit, corrupt repository)
        """
        result = self._run("merge-base", "--is-ancestor", ancestor, descendant)
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise SyncError(
            f"Could not compare {ancestor[:12]} and {descendant[:12]}",
            step=MergeStep.SYNC,
            detail=result.stderr,
        )

    def checkout(self, branch: str, start_point: Optional[str] = None) -> None:
        """Check out a branch, creating it at ``start_point`` when given.

        Raises:
            SyncError: If the checkout fails
        """
        if start_point:
            result = self._run("checkout", "-b", branch, start_point)
        else:
            result = self._run("checkout", branch)
        if not result.success:
            raise SyncError(f"git checkout {branch} failed", step=MergeStep.SYNC, detail=result.stderr)

    def ff_merge(self, commit: str) -> None:
        """Fast-forward the current branch to ``commit``.

        Raises:
            NotFastForwardError: If the current branch is not an ancestor of ``commit``
            SyncError: For any other merge failure (e.g. local changes in the way)
        """
        result = self._run("merge", "--ff-only", commit)
        if result.success:
            return
        if "fast-forward" in result.stderr.lower():
            raise NotFastForwardError(step=MergeStep.FAST_FORWARD, detail=result.stderr)
        raise SyncError(
            f"git merge --ff-only {commit[:12]} failed",
            step=MergeStep.FAST_FORWARD,
            detail=result.stderr,
        )

    def push(self, remote: str, branch: str) -> None:
        """Push a branch to the same name on the remote, never forced.

        The remote only accepts the update if it is a fast-forward of its
        current tip, which is what serializes concurrent merges.

        Raises:
            PushError: If the remote rejects the push
        """
        refspec = f"refs/heads/{branch}:refs/heads/{branch}"
        result = self._run("push", "--porcelain", remote, refspec)
        if result.success:
            return

        output = f"{result.stdout}\n{result.stderr}".strip()
        race = any(marker in output.lower() for marker in _RACE_MARKERS)
        if race:
            message = f"{remote}/{branch} moved while merging; re-run to merge onto the new tip"
        else:
            message = f"Push of {branch} to {remote} was rejected"
        raise PushError(message, race=race, step=MergeStep.PUSH, detail=output)

    def commit_signatures(self, base: str, head: str) -> List[CommitSignature]:
        """List signature status for commits in ``base..head``, newest first.

        Uses git's own verification (``%G?``); nothing is re-verified here.
        """
        result = self._run("log", "--format=%H %G?", f"{base}..{head}")
        if not result.success:
            raise SyncError(
                f"git log {base[:12]}..{head[:12]} failed", step=MergeStep.SYNC, detail=result.stderr
            )

        signatures = []
        for line in result.output.splitlines():
            oid, _, status = line.strip().partition(" ")
            if oid:
                signatures.append(CommitSignature(oid=oid, status=status or "N"))
        return signatures
