"""
Error taxonomy for GitHub authentication and API requests.
Every failure that leaves the request client is one of these types;
classify() is the single place raw transport failures are converted.
"""

import re
import time
import logging
from typing import Any, Dict, Mapping, Optional


logger = logging.getLogger(__name__)

RATE_LIMIT_PATTERN = re.compile(r"rate limit", re.IGNORECASE)
DEFAULT_RESET_WINDOW = 3600  # 1 hour
GENERIC_MESSAGE = "An unexpected error occurred"


def format_wait(seconds: float) -> str:
    """Render a wait duration as 'N seconds' or 'N minutes'."""
    seconds = max(0, int(seconds + 0.999))
    if seconds < 60:
        return f"{seconds} second{'' if seconds == 1 else 's'}"
    minutes = -(-seconds // 60)
    return f"{minutes} minute{'' if minutes == 1 else 's'}"


class LgtmError(Exception):
    """Base error with a printable message, optional status code and context."""

    code = "UNKNOWN_ERROR"
    default_status: Optional[int] = None

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status
        self.context = dict(context or {})

    def __str__(self) -> str:
        return self.message


class AuthError(LgtmError):
    """No credential, or the credential was rejected."""
    code = "AUTH_ERROR"
    default_status = 401


class RateLimitError(LgtmError):
    """GitHub quota exhausted until reset_at (epoch seconds)."""

    code = "RATE_LIMIT_ERROR"
    default_status = 429

    def __init__(
        self,
        message: str,
        reset_at: int,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, status_code=status_code, context=context)
        self.reset_at = int(reset_at)

    def seconds_until_reset(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, int(self.reset_at - now))

    def time_until_reset(self, now: Optional[float] = None) -> str:
        """Human-readable time until the quota resets."""
        return format_wait(self.seconds_until_reset(now))


class NotFoundError(LgtmError):
    code = "NOT_FOUND_ERROR"
    default_status = 404


class PermissionDeniedError(LgtmError):
    code = "PERMISSION_ERROR"
    default_status = 403


class ValidationError(LgtmError):
    code = "VALIDATION_ERROR"
    default_status = 400


class ConfigError(LgtmError):
    """Local configuration or credential persistence failure."""
    code = "CONFIG_ERROR"


class RepositoryError(LgtmError):
    code = "REPOSITORY_ERROR"


class UnknownError(LgtmError):
    code = "UNKNOWN_ERROR"


def rate_limit_message(reset_at: int, now: float) -> str:
    return f"GitHub API rate limit exceeded. Resets in {format_wait(reset_at - now)}"


def _response_of(failure: Any) -> Any:
    if isinstance(failure, Mapping):
        return None
    return getattr(failure, "response", None)


def _status_of(failure: Any) -> Optional[int]:
    if isinstance(failure, Mapping):
        status = failure.get("status", failure.get("status_code"))
    else:
        response = _response_of(failure)
        status = getattr(response, "status_code", None) if response is not None else None
        if status is None:
            status = getattr(failure, "status", None) or getattr(failure, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _headers_of(failure: Any) -> Mapping:
    if isinstance(failure, Mapping):
        headers = failure.get("headers")
    else:
        response = _response_of(failure)
        headers = getattr(response, "headers", None) if response is not None else None
        if headers is None:
            headers = getattr(failure, "headers", None)
    if not isinstance(headers, Mapping):
        return {}
    return {str(k).lower(): v for k, v in headers.items()}


def _message_of(failure: Any) -> Optional[str]:
    if isinstance(failure, Mapping):
        message = failure.get("message")
        return str(message) if message else None

    response = _response_of(failure)
    if response is not None:
        # GitHub puts the useful text in the JSON body
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])

    if isinstance(failure, BaseException):
        text = str(failure)
        return text or None

    message = getattr(failure, "message", None)
    return str(message) if message else None


def _tracked_reset(rate_limiter: Any, now: float) -> int:
    state = getattr(rate_limiter, "state", None) if rate_limiter is not None else None
    # a window that already reset says nothing about the current throttle
    if state is not None and state.reset_at > now:
        return int(state.reset_at)
    return int(now) + DEFAULT_RESET_WINDOW


def _header_reset(headers: Mapping, now: float) -> Optional[int]:
    reset = headers.get("x-ratelimit-reset")
    if reset is not None:
        try:
            reset_at = int(reset)
        except (TypeError, ValueError):
            reset_at = None
        if reset_at is not None and reset_at > now:
            return reset_at
    retry_after = headers.get("retry-after")
    if retry_after is not None:
        try:
            return int(now) + int(retry_after)
        except (TypeError, ValueError):
            pass
    return None


def classify(
    failure: Any,
    rate_limiter: Any = None,
    now: Optional[float] = None
) -> LgtmError:
    """
    Map any failure shape onto the error taxonomy.

    First match wins: typed passthrough, 401/403 carrying rate-limit text,
    401/403, 404, 429, anything with a message, generic fallback.

    Args:
        failure: Exception, response-carrying error, mapping or None
        rate_limiter: Tracker whose state supplies the reset time for 403s
        now: Current epoch seconds (defaults to time.time())

    Returns:
        An LgtmError instance (never raises)
    """
    if isinstance(failure, LgtmError):
        return failure

    now = time.time() if now is None else now
    status = _status_of(failure)
    message = _message_of(failure)
    context: Dict[str, Any] = {}
    if status is not None:
        context["status"] = status

    if status in (401, 403) and message and RATE_LIMIT_PATTERN.search(message):
        reset_at = _tracked_reset(rate_limiter, now)
        context["remote_message"] = message
        return RateLimitError(
            rate_limit_message(reset_at, now), reset_at, status_code=status, context=context
        )

    if status in (401, 403):
        return AuthError(message or "Authentication failed", status_code=status, context=context)

    if status == 404:
        return NotFoundError(message or "Resource not found", status_code=404, context=context)

    if status == 429:
        reset_at = _header_reset(_headers_of(failure), now)
        if reset_at is None:
            reset_at = _tracked_reset(rate_limiter, now)
        if message:
            context["remote_message"] = message
        return RateLimitError(
            rate_limit_message(reset_at, now), reset_at, status_code=429, context=context
        )

    if message:
        return UnknownError(message, status_code=status, context=context)

    logger.debug(f"Unclassifiable failure: {type(failure).__name__}")
    return UnknownError(GENERIC_MESSAGE, status_code=status, context=context)
