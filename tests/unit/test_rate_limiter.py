"""
Unit tests for rate limit tracking.
Tests header parsing, window handling and thread safety.
"""

import threading
import unittest

from lgtm.github.rate_limiter import RateLimitState, RateLimitTracker, parse_rate_limit_headers
from fakes import FakeClock, rate_headers

NOW = 1_700_000_000


class TestParseHeaders(unittest.TestCase):

    def test_parses_complete_header_set(self):
        state = parse_rate_limit_headers(rate_headers(4999, NOW + 3600))
        self.assertEqual(state, RateLimitState(limit=5000, remaining=4999, reset_at=NOW + 3600))
        self.assertFalse(state.is_exhausted)

    def test_header_names_are_case_insensitive(self):
        state = parse_rate_limit_headers({
            "x-ratelimit-limit": "60",
            "X-RATELIMIT-REMAINING": "0",
            "X-RateLimit-Reset": str(NOW),
        })
        self.assertTrue(state.is_exhausted)

    def test_malformed_or_partial_sets_are_rejected(self):
        for headers in (
            None,
            {},
            {"X-RateLimit-Limit": "5000", "X-RateLimit-Remaining": "10"},
            {"X-RateLimit-Limit": "5000", "X-RateLimit-Remaining": "ten", "X-RateLimit-Reset": "1"},
            {"X-RateLimit-Limit": "5000", "X-RateLimit-Remaining": "-1", "X-RateLimit-Reset": "1"},
        ):
            self.assertIsNone(parse_rate_limit_headers(headers))


class TestRateLimitTracker(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock(NOW)
        self.tracker = RateLimitTracker(clock=self.clock)

    def test_initial_state_unknown(self):
        self.assertIsNone(self.tracker.state)
        self.assertFalse(self.tracker.is_exhausted())
        self.assertEqual(self.tracker.wait_hint(), 0)
        self.assertEqual(self.tracker.get_status(), {"known": False})

    def test_update_adopts_first_state(self):
        self.assertTrue(self.tracker.update(rate_headers(100, NOW + 60)))
        self.assertEqual(self.tracker.state.remaining, 100)

    def test_malformed_headers_never_degrade_known_state(self):
        self.tracker.update(rate_headers(100, NOW + 60))
        before = self.tracker.state

        self.assertFalse(self.tracker.update({"X-RateLimit-Remaining": "garbage"}))
        self.assertFalse(self.tracker.update({}))
        self.assertEqual(self.tracker.state, before)

    def test_remaining_non_increasing_within_window(self):
        reset = NOW + 600
        observed = []
        for remaining in (50, 49, 47, 48, 45, 46, 44):
            self.tracker.update(rate_headers(remaining, reset))
            observed.append(self.tracker.state.remaining)

        self.assertEqual(observed, [50, 49, 47, 47, 45, 45, 44])
        self.assertEqual(observed, sorted(observed, reverse=True))

    def test_new_window_resets_remaining(self):
        self.tracker.update(rate_headers(0, NOW + 60))
        self.tracker.update(rate_headers(5000, NOW + 3660))

        self.assertEqual(self.tracker.state.remaining, 5000)
        self.assertEqual(self.tracker.state.reset_at, NOW + 3660)

    def test_exhausted_new_window_logs_warning(self):
        self.tracker.update(rate_headers(10, NOW + 60))

        with self.assertLogs("lgtm.github.rate_limiter", level="WARNING") as logs:
            self.assertTrue(self.tracker.update(rate_headers(0, NOW + 3660)))

        self.assertTrue(any("exhausted" in line for line in logs.output))

    def test_exhausted_first_state_logs_warning(self):
        with self.assertLogs("lgtm.github.rate_limiter", level="WARNING"):
            self.tracker.update(rate_headers(0, NOW + 60))

    def test_stale_window_is_ignored(self):
        self.tracker.update(rate_headers(10, NOW + 3600))
        self.assertFalse(self.tracker.update(rate_headers(4000, NOW + 60)))
        self.assertEqual(self.tracker.state.remaining, 10)

    def test_refresh_overwrites(self):
        self.tracker.update(rate_headers(10, NOW + 3600))
        self.tracker.refresh(RateLimitState(limit=5000, remaining=4990, reset_at=NOW + 3600))
        self.assertEqual(self.tracker.state.remaining, 4990)

    def test_is_exhausted_until_reset(self):
        self.tracker.update(rate_headers(0, NOW + 120))

        self.assertTrue(self.tracker.is_exhausted())
        self.assertEqual(self.tracker.wait_hint(), 120)

        self.clock.advance(120)
        self.assertFalse(self.tracker.is_exhausted())
        self.assertEqual(self.tracker.wait_hint(), 0)

    def test_not_exhausted_with_remaining(self):
        self.tracker.update(rate_headers(1, NOW + 120))
        self.assertFalse(self.tracker.is_exhausted(now=NOW))

    def test_status_snapshot(self):
        self.tracker.update(rate_headers(0, NOW + 30, limit=60))
        status = self.tracker.get_status()

        self.assertTrue(status["known"])
        self.assertEqual(status["limit"], 60)
        self.assertEqual(status["remaining"], 0)
        self.assertTrue(status["exhausted"])
        self.assertEqual(status["seconds_until_reset"], 30)

    def test_thread_safety(self):
        """Concurrent updates within one window keep the lowest count."""
        reset = NOW + 3600

        def worker(start):
            for remaining in range(start, start - 50, -1):
                self.tracker.update(rate_headers(remaining, reset))

        threads = [threading.Thread(target=worker, args=(4000 + i * 7,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(self.tracker.state.remaining, 4000 - 49)


if __name__ == '__main__':
    unittest.main()
