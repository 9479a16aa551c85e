"""ffmerge - fast-forward merge button for GitHub pull requests.

Merges a pull request into the trunk branch with a local ``git merge --ff-only``
and a non-forced push, keeping history linear and every commit signature intact.
"""

__version__ = "0.1.0"
