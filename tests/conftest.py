"""Shared test configuration and fixtures."""

import os
from collections import deque
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from ffmerge.config import ConfigManager
from ffmerge.errors import NotFastForwardError, PushError, SyncError
from ffmerge.models import (
    CommitSignature,
    GitHubRepository,
    MergeStep,
    PullRequestInfo,
    RepositoryContext,
)


@pytest.fixture
def temp_home(tmp_path):
    """Create a temporary home directory for tests."""
    return tmp_path


@pytest.fixture
def isolated_config_manager(temp_home, monkeypatch):
    """Create an isolated ConfigManager that doesn't touch real config files."""
    monkeypatch.setattr(Path, "home", lambda: temp_home)
    monkeypatch.setattr("ffmerge.config.get_git_root", lambda cwd=None: None)
    for key in list(os.environ):
        if key.startswith("FFMERGE_"):
            monkeypatch.delenv(key)

    manager = ConfigManager()
    manager._user_config_path = temp_home / ".ffmerge" / "config.yaml"
    manager._project_config_path = None
    manager._config = None

    return manager


@pytest.fixture(autouse=True)
def mock_global_config_manager(isolated_config_manager, monkeypatch):
    """Automatically replace the global config_manager for all tests."""
    import ffmerge.cli
    import ffmerge.config

    monkeypatch.setattr(ffmerge.config, "config_manager", isolated_config_manager)
    monkeypatch.setattr(ffmerge.cli, "config_manager", isolated_config_manager)

    return isolated_config_manager


@pytest.fixture
def runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner
    return CliRunner()


class FakeGit:
    """In-memory commit graph standing in for a checkout plus its remote.

    ``server`` holds the remote's branches; ``server_objects`` the commits the
    remote can hand out (including PR heads under refs/pull). Local state is
    ``refs``, ``objects`` and ``current``.
    """

    def __init__(self, graph: Dict[str, List[str]], server: Dict[str, str], signatures: Optional[Dict[str, str]] = None):
        self.graph = graph
        self.server = dict(server)
        self.server_objects = set(graph)
        self.signatures = signatures or {}
        self.objects: set = set()
        self.refs: Dict[str, str] = {}
        self.current: Optional[str] = None
        self.dirty = False
        self.urls = {"origin": "git@github.com:acme/widgets.git"}
        self.fetch_error: Optional[SyncError] = None
        self.before_push: Optional[Callable[["FakeGit"], None]] = None
        self.calls: List[tuple] = []

    # helpers

    def clone_trunk(self, branch: str = "main") -> None:
        """Give the checkout a local trunk matching the server, checked out."""
        tip = self.server[branch]
        self.objects |= self._reachable(tip)
        self.refs[f"refs/heads/{branch}"] = tip
        self.refs[f"refs/remotes/origin/{branch}"] = tip
        self.current = branch

    def _reachable(self, oid: str) -> set:
        seen, queue = set(), deque([oid])
        while queue:
            commit = queue.popleft()
            if commit in seen:
                continue
            seen.add(commit)
            queue.extend(self.graph.get(commit, []))
        return seen

    def commit(self, oid: str, parent: str) -> None:
        self.graph[oid] = [parent]
        self.server_objects.add(oid)

    # VersionControl

    def current_branch(self):
        return self.current

    def is_clean(self):
        return not self.dirty

    def remote_url(self, remote):
        return self.urls.get(remote)

    def fetch(self, remote, refspecs):
        self.calls.append(("fetch", remote, tuple(refspecs)))
        if self.fetch_error:
            raise self.fetch_error
        for branch, tip in self.server.items():
            self.refs[f"refs/remotes/{remote}/{branch}"] = tip
            self.objects |= self._reachable(tip)
        self.objects |= self.server_objects

    def rev_parse(self, ref):
        if ref in self.refs:
            return self.refs[ref]
        return ref if ref in self.objects else None

    def has_commit(self, oid):
        return oid in self.objects

    def is_ancestor(self, ancestor, descendant):
        return ancestor in self._reachable(descendant)

    def checkout(self, branch, start_point=None):
        self.calls.append(("checkout", branch, start_point))
        if start_point:
            self.refs[f"refs/heads/{branch}"] = self.rev_parse(start_point)
        self.current = branch

    def ff_merge(self, commit):
        self.calls.append(("ff_merge", commit))
        ref = f"refs/heads/{self.current}"
        if not self.is_ancestor(self.refs[ref], commit):
            raise NotFastForwardError(step=MergeStep.FAST_FORWARD)
        self.refs[ref] = commit

    def push(self, remote, branch):
        self.calls.append(("push", remote, branch))
        if self.before_push:
            hook, self.before_push = self.before_push, None
            hook(self)
        local_tip = self.refs[f"refs/heads/{branch}"]
        if not self.is_ancestor(self.server[branch], local_tip):
            raise PushError(f"{remote}/{branch} moved while merging", race=True, step=MergeStep.PUSH)
        self.server[branch] = local_tip

    def commit_signatures(self, base, head):
        commits = self._reachable(head) - self._reachable(base)
        return [
            CommitSignature(oid=oid, status=self.signatures.get(oid, "N"))
            for oid in sorted(commits)
        ]

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakePlatform:
    """Hosting platform returning a fixed pull request snapshot."""

    def __init__(self, info: PullRequestInfo, repository: GitHubRepository):
        self.info = info
        self.repository = repository
        self.lookup_error: Optional[Exception] = None
        self.notify_error: Optional[Exception] = None
        self.lookups: List = []
        self.marked: List[tuple] = []

    def resolve_repository(self, full_name=None):
        return self.repository

    def fetch_pull_request(self, ref, repository):
        self.lookups.append(ref)
        if self.lookup_error:
            raise self.lookup_error
        return self.info

    def mark_merged(self, info, repository, commit, trunk, attempts=1, interval=0.0):
        self.marked.append((info.number, commit, trunk))
        if self.notify_error:
            raise self.notify_error


@pytest.fixture
def repository():
    """GitHub repository used across merge tests."""
    return GitHubRepository(owner="acme", name="widgets", default_branch="main")


@pytest.fixture
def context(tmp_path, repository):
    """Repository context merging into acme/widgets main via origin."""
    return RepositoryContext(path=tmp_path, remote="origin", repository=repository, trunk="main")


@pytest.fixture
def make_pr_info():
    """Factory for approved, green, mergeable pull request snapshots."""

    def _make(number: int = 42, head: str = "abc123", **overrides) -> PullRequestInfo:
        data = {
            "number": number,
            "title": "Add signed widgets",
            "url": f"https://github.com/acme/widgets/pull/{number}",
            "state": "OPEN",
            "isDraft": False,
            "headRefName": "feature/widgets",
            "headRefOid": head,
            "baseRefName": "main",
            "mergeable": "MERGEABLE",
            "reviewDecision": "APPROVED",
            "statusCheckRollup": [
                {"__typename": "CheckRun", "name": "test", "status": "COMPLETED", "conclusion": "SUCCESS"},
            ],
        }
        data.update(overrides)
        return PullRequestInfo.from_gh(data).with_verification({"verified": True, "reason": "valid"})

    return _make


@pytest.fixture
def fast_forward_git():
    """main at def456; PR head abc123 sits on top of it via c0ffee."""
    git = FakeGit(
        graph={"root": [], "def456": ["root"], "c0ffee": ["def456"], "abc123": ["c0ffee"]},
        server={"main": "def456"},
        signatures={"c0ffee": "G", "abc123": "G"},
    )
    git.clone_trunk()
    return git


@pytest.fixture
def diverged_git():
    """main at beef999, which is not in the ancestry of PR head cafe001."""
    git = FakeGit(
        graph={"root": [], "base01": ["root"], "beef999": ["base01"], "cafe001": ["base01"]},
        server={"main": "beef999"},
    )
    git.clone_trunk()
    return git
