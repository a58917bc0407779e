"""
Platform adapters for the review reconciler.

This package provides:
- GitHub and Azure DevOps adapters that read comments and apply post plans
- A local dry-run adapter
- Diff sources for unified-diff text and local git ranges
"""

from .azure_devops import AzureDevOpsAdapter
from .base import ApplyReport, PlatformAdapter, PlatformError
from .diff_source import GitDiffSource, parse_unified_diff
from .github import GitHubAdapter, parse_github_pr_url
from .local import LocalAdapter

__all__ = [
    "ApplyReport",
    "PlatformAdapter",
    "PlatformError",
    "AzureDevOpsAdapter",
    "GitHubAdapter",
    "LocalAdapter",
    "GitDiffSource",
    "parse_unified_diff",
    "parse_github_pr_url",
]
