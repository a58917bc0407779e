"""
Review Reconciler

Reconciles AI code-review findings against a pull-request diff and the
comments already posted, producing a deterministic plan of new comments,
trimmed comments and resolved threads.
"""

__version__ = "0.1.0"
__author__ = "Review Reconciler Team"

__all__ = [
    "__version__",
    "__author__",
]
