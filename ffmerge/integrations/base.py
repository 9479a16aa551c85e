"""Capability interfaces the merge orchestrator depends on.

The subprocess-backed implementations live in :mod:`ffmerge.integrations.git`
and :mod:`ffmerge.integrations.github`; tests substitute deterministic fakes.
"""

from typing import List, Optional, Protocol

from ffmerge.models import CommitSignature, GitHubRepository, PullRequestInfo, PullRequestRef


class VersionControl(Protocol):
    def current_branch(self) -> Optional[str]:
        ...

    def is_clean(self) -> bool:
        ...

    def remote_url(self, remote: str) -> Optional[str]:
        ...

    def fetch(self, remote: str, refspecs: List[str]) -> None:
        ...

    def rev_parse(self, ref: str) -> Optional[str]:
        ...

    def has_commit(self, oid: str) -> bool:
        ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        ...

    def checkout(self, branch: str, start_point: Optional[str] = None) -> None:
        ...

    def ff_merge(self, commit: str) -> None:
        ...

    def push(self, remote: str, branch: str) -> None:
        ...

    def commit_signatures(self, base: str, head: str) -> List[CommitSignature]:
        ...


class HostingPlatform(Protocol):
    def resolve_repository(self, full_name: Optional[str] = None) -> GitHubRepository:
        ...

    def fetch_pull_request(
        self, ref: PullRequestRef, repository: GitHubRepository
    ) -> PullRequestInfo:
        ...

    def mark_merged(
        self,
        info: PullRequestInfo,
        repository: GitHubRepository,
        commit: str,
        trunk: str,
        attempts: int = 1,
        interval: float = 0.0,
    ) -> None:
        ...
