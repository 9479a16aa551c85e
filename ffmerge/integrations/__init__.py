"""Integrations with the git and gh command line tools."""

from ffmerge.integrations.base import HostingPlatform, VersionControl
from ffmerge.integrations.git import GitRepository
from ffmerge.integrations.github import GitHubCLI

__all__ = [
    "GitHubCLI",
    "GitRepository",
    "HostingPlatform",
    "VersionControl",
]
