"""
AniList write path.

Exports the MutationApplier and the retry policy it runs writes under.
"""

from worker.retry import RetryPolicy, TransientError, PermanentError
from worker.applier import MutationApplier, ApplyFailed

__all__ = ['RetryPolicy', 'TransientError', 'PermanentError', 'MutationApplier', 'ApplyFailed']
