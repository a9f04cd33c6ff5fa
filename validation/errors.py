"""
Centralized error classification for retry routing.

Decides whether a failed upstream call is worth retrying (transient) or must
fail at once (permanent), so the retry policy and the scrobble engine agree
on the same taxonomy.
"""

import logging
from typing import Type

from shared_lib.anilist_client import (
    AniListAuthError,
    AniListConnectionError,
    AniListQueryError,
)
from shared_lib.jellyfin_client import JellyfinConnectionError
from worker.retry import TransientError, PermanentError


# HTTP status codes that indicate transient (retry-able) errors
# 429: Rate limited - retry after cool-down
# 5xx: Server errors - usually temporary
TRANSIENT_CODES = frozenset({429, 500, 502, 503, 504})

# HTTP status codes that indicate permanent (non-retry-able) errors
# 400: Bad request - malformed mutation
# 401: Unauthorized - token invalid or expired
# 403: Forbidden - token lacks permission
# 404: Not found - entry or media doesn't exist
# 422: Unprocessable entity - validation failure
PERMANENT_CODES = frozenset({400, 401, 403, 404, 405, 410, 422})

# Module logger
logger = logging.getLogger(__name__)


def classify_http_error(status_code: int) -> Type[Exception]:
    """
    Classify an HTTP status code as transient or permanent error.

    Args:
        status_code: HTTP response status code

    Returns:
        TransientError class for retry-able errors
        PermanentError class for non-retry-able errors
    """
    if status_code in TRANSIENT_CODES:
        logger.debug(f"HTTP {status_code} classified as transient")
        return TransientError

    if status_code in PERMANENT_CODES:
        logger.debug(f"HTTP {status_code} classified as permanent")
        return PermanentError

    if status_code >= 500:
        # Unknown 5xx = transient (server error, may recover)
        logger.debug(f"HTTP {status_code} (unknown 5xx) classified as transient")
        return TransientError

    # Unknown 4xx and anything unexpected = permanent
    logger.debug(f"HTTP {status_code} classified as permanent")
    return PermanentError


def classify_exception(exc: Exception) -> Type[Exception]:
    """
    Classify an exception as transient or permanent error.

    - Already classified: Return same type
    - AniList auth failures: Permanent (operator must rotate the token)
    - AniList HTTP / GraphQL errors: by status code
    - Network errors: Transient (connectivity, timeout)
    - Anything else: Permanent (programming or data error, retry won't help)

    Args:
        exc: The exception to classify

    Returns:
        TransientError class for retry-able errors
        PermanentError class for non-retry-able errors
    """
    if isinstance(exc, TransientError):
        return TransientError

    if isinstance(exc, PermanentError):
        return PermanentError

    if isinstance(exc, AniListAuthError):
        logger.debug("AniList auth failure classified as permanent")
        return PermanentError

    if isinstance(exc, AniListQueryError):
        return classify_http_error(exc.status_code)

    if isinstance(exc, (AniListConnectionError, JellyfinConnectionError)):
        logger.debug(f"Upstream unreachable classified as transient: {type(exc).__name__}")
        return TransientError

    # Check for HTTP response (raw httpx errors)
    response = getattr(exc, 'response', None)
    status_code = getattr(response, 'status_code', None)
    if status_code is not None:
        return classify_http_error(status_code)

    if isinstance(exc, (ConnectionError, TimeoutError)):
        logger.debug(f"Network error classified as transient: {type(exc).__name__}")
        return TransientError

    logger.debug(f"Unknown exception classified as permanent: {type(exc).__name__}")
    return PermanentError
