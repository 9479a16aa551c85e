"""Workflow modules for ffmerge."""

from ffmerge.workflows.merge import (
    MergeOrchestrator,
    ensure_tools,
    merge_pull_request,
    ref_for_current_branch,
    resolve_context,
)

__all__ = [
    "MergeOrchestrator",
    "ensure_tools",
    "merge_pull_request",
    "ref_for_current_branch",
    "resolve_context",
]
