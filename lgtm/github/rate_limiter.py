"""
Tracks the GitHub REST quota window from x-ratelimit-* response headers.
Thread-safe; shared by every caller of one API client.
"""

import time
import threading
import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional


logger = logging.getLogger(__name__)

HEADER_LIMIT = "x-ratelimit-limit"
HEADER_REMAINING = "x-ratelimit-remaining"
HEADER_RESET = "x-ratelimit-reset"


@dataclass(frozen=True)
class RateLimitState:
    """Snapshot of one quota window."""
    limit: int
    remaining: int
    reset_at: int

    @property
    def is_exhausted(self) -> bool:
        return self.remaining <= 0


def _parse_int(value) -> Optional[int]:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed >= 0 else None


def parse_rate_limit_headers(headers: Optional[Mapping]) -> Optional[RateLimitState]:
    """
    Build a RateLimitState from response headers.

    Returns None unless limit, remaining and reset are all present and
    well-formed non-negative integers.
    """
    if not headers:
        return None
    lowered = {str(k).lower(): v for k, v in headers.items()}
    limit = _parse_int(lowered.get(HEADER_LIMIT))
    remaining = _parse_int(lowered.get(HEADER_REMAINING))
    reset_at = _parse_int(lowered.get(HEADER_RESET))
    if limit is None or remaining is None or reset_at is None:
        return None
    return RateLimitState(limit=limit, remaining=remaining, reset_at=reset_at)


class RateLimitTracker:
    """
    Holds the latest known quota window.

    remaining never increases within a window: header sets for the same
    reset timestamp keep the lower count, and header sets for an older
    window are ignored. The tracker never sleeps; callers use wait_hint().
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._state: Optional[RateLimitState] = None

    @property
    def state(self) -> Optional[RateLimitState]:
        with self._lock:
            return self._state

    def update(self, headers: Optional[Mapping]) -> bool:
        """
        Apply a response's rate limit headers.

        Args:
            headers: Response headers (any mapping, case-insensitive lookup)

        Returns:
            True if the tracked state changed
        """
        incoming = parse_rate_limit_headers(headers)
        if incoming is None:
            return False

        with self._lock:
            current = self._state
            if current is None or incoming.reset_at > current.reset_at:
                if current is not None:
                    logger.debug(
                        f"Rate limit window rolled over: reset {current.reset_at} -> {incoming.reset_at}"
                    )
                updated = incoming
            elif incoming.reset_at < current.reset_at:
                # response from a previous window arriving late
                return False
            else:
                updated = RateLimitState(
                    limit=incoming.limit,
                    remaining=min(current.remaining, incoming.remaining),
                    reset_at=current.reset_at
                )
                if updated == current:
                    return False
            self._state = updated

        if updated.remaining <= 0:
            logger.warning(f"GitHub rate limit exhausted until {updated.reset_at}")
        return True

    def refresh(self, state: RateLimitState):
        """Overwrite the tracked window from an explicit quota fetch."""
        with self._lock:
            self._state = state
        logger.debug(f"Rate limit refreshed: {state.remaining}/{state.limit}")

    def is_exhausted(self, now: Optional[float] = None) -> bool:
        """True iff remaining <= 0 and the window has not reset yet."""
        now = self._clock() if now is None else now
        state = self.state
        return state is not None and state.remaining <= 0 and now < state.reset_at

    def wait_hint(self, now: Optional[float] = None) -> float:
        """Seconds until the tracked window resets (0 if unknown or past)."""
        now = self._clock() if now is None else now
        state = self.state
        if state is None:
            return 0
        return max(0, state.reset_at - now)

    def get_status(self) -> dict:
        """Get current rate limit status."""
        state = self.state
        if state is None:
            return {"known": False}
        return {
            "known": True,
            "limit": state.limit,
            "remaining": state.remaining,
            "reset_at": state.reset_at,
            "exhausted": self.is_exhausted(),
            "seconds_until_reset": int(self.wait_hint()),
        }
