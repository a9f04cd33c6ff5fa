"""
Validation module for anilistwatched.

Provides error classification shared by the retry policy and the
scrobble engine.
"""

from validation.errors import classify_exception, classify_http_error

__all__ = [
    'classify_exception',
    'classify_http_error',
]
