"""Tests for the per-identifier login throttle."""

import threading

from backoffice_api.services.login_throttle import LoginThrottle


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_throttle(clock: FakeClock) -> LoginThrottle:
    return LoginThrottle(max_attempts=5, window_seconds=15 * 60, clock=clock)


class TestLoginThrottle:
    """Lockout behaviour."""

    def test_five_attempts_allowed_sixth_denied(self) -> None:
        """Exactly max_attempts checks pass; the next one is denied."""
        clock = FakeClock()
        throttle = make_throttle(clock)

        for _ in range(5):
            assert throttle.check("alice@example.com").allowed

        result = throttle.check("alice@example.com")
        assert not result.allowed
        assert result.minutes_left == 15

    def test_denial_is_monotonic_within_window(self) -> None:
        """Once denied, every further attempt in the window is denied."""
        clock = FakeClock()
        throttle = make_throttle(clock)
        for _ in range(5):
            throttle.check("alice@example.com")

        for _ in range(20):
            clock.advance(30)
            assert not throttle.check("alice@example.com").allowed

    def test_minutes_left_counts_down(self) -> None:
        """minutes_left is the remaining window rounded up, at least 1."""
        clock = FakeClock()
        throttle = make_throttle(clock)
        for _ in range(5):
            throttle.check("alice@example.com")

        clock.advance(10 * 60 + 1)
        assert throttle.check("alice@example.com").minutes_left == 5

        clock.advance(4 * 60 + 58)
        assert throttle.check("alice@example.com").minutes_left == 1

    def test_window_expiry_resets_counter(self) -> None:
        """After the window elapses the identifier starts over at 1."""
        clock = FakeClock()
        throttle = make_throttle(clock)
        for _ in range(6):
            throttle.check("alice@example.com")

        clock.advance(15 * 60)
        assert throttle.check("alice@example.com").allowed
        assert throttle.attempts("alice@example.com") == 1

    def test_identifiers_are_independent_and_case_insensitive(self) -> None:
        clock = FakeClock()
        throttle = make_throttle(clock)
        for _ in range(5):
            throttle.check("Alice@Example.com")

        assert not throttle.check("alice@example.com").allowed
        assert throttle.check("bob@example.com").allowed

    def test_reset_clears_counter(self) -> None:
        """A successful login clears the counter."""
        clock = FakeClock()
        throttle = make_throttle(clock)
        for _ in range(5):
            throttle.check("alice@example.com")

        throttle.reset("alice@example.com")
        assert throttle.attempts("alice@example.com") == 0
        assert throttle.check("alice@example.com").allowed

    def test_expired_entries_purged_on_check(self) -> None:
        """Any check drops every identifier whose window has passed."""
        clock = FakeClock()
        throttle = make_throttle(clock)
        throttle.check("a@example.com")
        throttle.check("b@example.com")
        assert throttle.tracked_count() == 2

        clock.advance(15 * 60)
        throttle.check("c@example.com")
        assert throttle.tracked_count() == 1

    def test_concurrent_checks_never_exceed_limit(self) -> None:
        """Parallel checks on one identifier allow at most max_attempts."""
        throttle = LoginThrottle(max_attempts=5, window_seconds=900)
        results: list[bool] = []
        results_lock = threading.Lock()

        def attempt() -> None:
            allowed = throttle.check("race@example.com").allowed
            with results_lock:
                results.append(allowed)

        threads = [threading.Thread(target=attempt) for _ in range(50)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 5
        assert results.count(False) == 45
