"""Tests for GitHub integration."""

import json
from unittest.mock import patch

import pytest

from ffmerge.errors import PlatformNotifyError, PullRequestLookupError, ToolMissingError
from ffmerge.integrations.github import (
    PR_FIELDS,
    GitHubCLI,
    describe_gh_failure,
    parse_github_remote,
)
from ffmerge.models import GitHubRepository, MergeStep, PRState, PullRequestRef
from ffmerge.utils.shell import ShellError, ShellResult


PR_JSON = {
    "number": 42,
    "title": "Add signed widgets",
    "url": "https://github.com/acme/widgets/pull/42",
    "state": "OPEN",
    "isDraft": False,
    "headRefName": "feature/widgets",
    "headRefOid": "abc123",
    "baseRefName": "main",
    "mergeable": "MERGEABLE",
    "reviewDecision": "APPROVED",
    "statusCheckRollup": [
        {"__typename": "CheckRun", "name": "test", "status": "COMPLETED", "conclusion": "SUCCESS"},
    ],
}

COMMIT_JSON = {"sha": "abc123", "commit": {"verification": {"verified": True, "reason": "valid"}}}


def _ok(data, command="gh"):
    return ShellResult(0, json.dumps(data), "", command)


def _fail(stderr, command="gh"):
    return ShellResult(1, "", stderr, command)


@pytest.fixture
def repository():
    return GitHubRepository(owner="acme", name="widgets", default_branch="main")


class TestRemoteParsing:
    """Test GitHub remote URL parsing."""

    @pytest.mark.parametrize("url,expected", [
        ("https://github.com/acme/widgets.git", "acme/widgets"),
        ("https://github.com/acme/widgets", "acme/widgets"),
        ("https://x-access-token@github.com/acme/widgets.git", "acme/widgets"),
        ("git@github.com:acme/widgets.git", "acme/widgets"),
        ("ssh://git@github.com/acme/widgets.git", "acme/widgets"),
        ("git@github.com:acme/widgets.js.git", "acme/widgets.js"),
    ])
    def test_github_urls(self, url, expected):
        assert parse_github_remote(url) == expected

    @pytest.mark.parametrize("url", [
        "https://gitlab.com/acme/widgets.git",
        "/srv/git/widgets.git",
        "git@github.com:acme",
    ])
    def test_other_urls(self, url):
        assert parse_github_remote(url) is None


class TestFailureDescriptions:
    """Test gh stderr classification."""

    @pytest.mark.parametrize("stderr,expected", [
        ("GraphQL: Could not resolve to a PullRequest with the number of 999.", "PR #999 not found"),
        ("no pull requests found for branch \"feature\"", "PR #999 not found"),
        ("GraphQL: Could not resolve to a Repository with the name 'acme/nope'.", "repository not found"),
        ("To get started with GitHub CLI, please run:  gh auth login", "not authenticated"),
        ("HTTP 401: Bad credentials", "not authenticated"),
        ("API rate limit exceeded for user ID 1.", "rate limit exceeded"),
        ("something unexpected", "Failed to look up PR #999"),
    ])
    def test_describe(self, stderr, expected):
        assert expected in describe_gh_failure(stderr, "PR #999")


class TestResolveRepository:
    """Test repository lookup through gh repo view."""

    @patch("ffmerge.integrations.github.run_command")
    def test_current_checkout(self, mock_run_command, tmp_path):
        mock_run_command.return_value = _ok({
            "nameWithOwner": "acme/widgets",
            "defaultBranchRef": {"name": "trunk"},
            "url": "https://github.com/acme/widgets",
        })

        repository = GitHubCLI(cwd=tmp_path).resolve_repository()

        assert repository.full_name == "acme/widgets"
        assert repository.default_branch == "trunk"
        mock_run_command.assert_called_once_with(
            ["gh", "repo", "view", "--json", "nameWithOwner,defaultBranchRef,url"], cwd=tmp_path
        )

    @patch("ffmerge.integrations.github.run_command")
    def test_explicit_repository(self, mock_run_command):
        mock_run_command.return_value = _ok({"nameWithOwner": "acme/widgets", "defaultBranchRef": None})

        repository = GitHubCLI().resolve_repository("acme/widgets")

        assert repository.default_branch == "main"
        assert mock_run_command.call_args[0][0][:4] == ["gh", "repo", "view", "acme/widgets"]

    @patch("ffmerge.integrations.github.run_command")
    def test_not_found(self, mock_run_command):
        mock_run_command.return_value = _fail("GraphQL: Could not resolve to a Repository with the name 'acme/nope'.")

        with pytest.raises(PullRequestLookupError) as exc_info:
            GitHubCLI().resolve_repository("acme/nope")

        assert exc_info.value.step == MergeStep.LOOKUP
        assert "repository not found" in str(exc_info.value)

    @patch("ffmerge.integrations.github.run_command")
    def test_malformed_output(self, mock_run_command):
        mock_run_command.return_value = ShellResult(0, "not json", "", "gh")

        with pytest.raises(PullRequestLookupError, match="Failed to parse gh output"):
            GitHubCLI().resolve_repository()

    @patch("ffmerge.integrations.github.run_command")
    def test_gh_missing(self, mock_run_command):
        mock_run_command.side_effect = ShellError("Command not found: gh", -1, "", "No such file")

        with pytest.raises(ToolMissingError):
            GitHubCLI().resolve_repository()


class TestFetchPullRequest:
    """Test pull request lookup through gh pr view and the commits API."""

    @patch("ffmerge.integrations.github.run_command")
    def test_fetch_by_number(self, mock_run_command, repository):
        mock_run_command.side_effect = [_ok(PR_JSON), _ok(COMMIT_JSON)]

        info = GitHubCLI().fetch_pull_request(PullRequestRef(number=42), repository)

        assert info.number == 42
        assert info.head_oid == "abc123"
        assert info.approved
        assert info.head_verified is True
        assert info.head_verification_reason == "valid"

        view_args = mock_run_command.call_args_list[0][0][0]
        assert view_args == [
            "gh", "pr", "view", "42", "--repo", "acme/widgets", "--json", ",".join(PR_FIELDS),
        ]
        api_args = mock_run_command.call_args_list[1][0][0]
        assert api_args == ["gh", "api", "repos/acme/widgets/commits/abc123"]

    @patch("ffmerge.integrations.github.run_command")
    def test_fetch_by_branch(self, mock_run_command, repository):
        mock_run_command.side_effect = [_ok(PR_JSON), _ok(COMMIT_JSON)]

        GitHubCLI().fetch_pull_request(PullRequestRef(branch="feature/widgets"), repository)

        assert mock_run_command.call_args_list[0][0][0][3] == "feature/widgets"

    @patch("ffmerge.integrations.github.run_command")
    def test_unsigned_head(self, mock_run_command, repository):
        unsigned = {"commit": {"verification": {"verified": False, "reason": "unsigned"}}}
        mock_run_command.side_effect = [_ok(PR_JSON), _ok(unsigned)]

        info = GitHubCLI().fetch_pull_request(PullRequestRef(number=42), repository)

        assert info.head_verified is False
        assert info.head_verification_reason == "unsigned"

    @patch("ffmerge.integrations.github.run_command")
    def test_not_found(self, mock_run_command, repository):
        mock_run_command.return_value = _fail(
            "GraphQL: Could not resolve to a PullRequest with the number of 999. (repository.pullRequest)"
        )

        with pytest.raises(PullRequestLookupError) as exc_info:
            GitHubCLI().fetch_pull_request(PullRequestRef(number=999), repository)

        error = exc_info.value
        assert isinstance(error, LookupError)
        assert error.pr_number == 999
        assert "PR 999 in acme/widgets not found" in str(error)

    @patch("ffmerge.integrations.github.run_command")
    def test_unexpected_payload(self, mock_run_command, repository):
        mock_run_command.return_value = _ok({"number": 42})

        with pytest.raises(PullRequestLookupError, match="Unexpected gh output"):
            GitHubCLI().fetch_pull_request(PullRequestRef(number=42), repository)


class TestMarkMerged:
    """Test marking a pull request merged after the push."""

    @pytest.fixture
    def info(self):
        from ffmerge.models import PullRequestInfo
        return PullRequestInfo.from_gh(PR_JSON)

    @patch("ffmerge.integrations.github.time.sleep")
    @patch("ffmerge.integrations.github.run_command")
    def test_github_detects_merge(self, mock_run_command, mock_sleep, info, repository):
        """Nothing is closed once GitHub reports the PR as merged."""
        mock_run_command.side_effect = [_ok({"state": "OPEN"}), _ok({"state": "MERGED"})]

        GitHubCLI().mark_merged(info, repository, "abc123", "main", attempts=3, interval=2.0)

        assert mock_run_command.call_count == 2
        mock_sleep.assert_called_once_with(2.0)

    @patch("ffmerge.integrations.github.time.sleep")
    @patch("ffmerge.integrations.github.run_command")
    def test_closes_with_comment(self, mock_run_command, mock_sleep, info, repository):
        """The PR is closed with a comment naming the commit if GitHub never notices."""
        mock_run_command.side_effect = [
            _ok({"state": "OPEN"}),
            _ok({"state": "OPEN"}),
            ShellResult(0, "", "", "gh pr close"),
        ]

        GitHubCLI().mark_merged(info, repository, "abc123", "main", attempts=2, interval=0.5)

        close_args = mock_run_command.call_args_list[-1][0][0]
        assert close_args[:6] == ["gh", "pr", "close", "42", "--repo", "acme/widgets"]
        assert close_args[6] == "--comment"
        assert "Fast-forwarded `main` to abc123" in close_args[7]
        assert mock_sleep.call_count == 1

    @patch("ffmerge.integrations.github.run_command")
    def test_close_failure(self, mock_run_command, info, repository):
        mock_run_command.side_effect = [
            _ok({"state": "OPEN"}),
            _fail("HTTP 403: Resource not accessible by integration"),
        ]

        with pytest.raises(PlatformNotifyError) as exc_info:
            GitHubCLI().mark_merged(info, repository, "abc123", "main")

        assert exc_info.value.step == MergeStep.NOTIFY
        assert "Resource not accessible" in exc_info.value.describe()

    @patch("ffmerge.integrations.github.run_command")
    def test_state_lookup_failure(self, mock_run_command, repository):
        mock_run_command.return_value = _fail("HTTP 502: Bad Gateway")

        with pytest.raises(PlatformNotifyError, match="Could not read state of PR #42"):
            GitHubCLI().pull_request_state(42, repository)

    @patch("ffmerge.integrations.github.run_command")
    def test_pull_request_state(self, mock_run_command, repository):
        mock_run_command.return_value = _ok({"state": "MERGED"})

        assert GitHubCLI().pull_request_state(42, repository) == PRState.MERGED
