"""Tests for fixed-reset window rate limiting."""
import pytest

from relay.chat.rate_limiter import ChunkBudget, KeyedRateLimiter, RateLimiter


class TestRateLimiter:
    """Tests for the per-subject fixed-reset window."""

    def test_allows_up_to_limit(self, clock):
        limiter = RateLimiter(limit=12, interval=10, clock=clock)
        window = limiter.new_window()

        results = [limiter.allow(window) for _ in range(12)]
        assert all(results)
        assert window.count == 12

    def test_rejects_after_limit_within_window(self, clock):
        limiter = RateLimiter(limit=12, interval=10, clock=clock)
        window = limiter.new_window()

        for _ in range(12):
            limiter.allow(window)
        clock.advance(2)

        assert limiter.allow(window) is False
        assert limiter.allow(window) is False

    def test_window_resets_after_interval(self, clock):
        limiter = RateLimiter(limit=2, interval=10, clock=clock)
        window = limiter.new_window()
        limiter.allow(window)
        limiter.allow(window)
        assert limiter.allow(window) is False

        clock.advance(10.5)
        assert limiter.allow(window) is True
        assert window.count == 1
        assert window.started_at == clock.now

    def test_exact_interval_does_not_reset(self, clock):
        """The window resets only once elapsed time exceeds the interval."""
        limiter = RateLimiter(limit=1, interval=10, clock=clock)
        window = limiter.new_window()
        limiter.allow(window)

        clock.advance(10)
        assert limiter.allow(window) is False

    def test_counter_never_negative(self, clock):
        limiter = RateLimiter(limit=3, interval=1, clock=clock)
        window = limiter.new_window()
        for _ in range(5):
            clock.advance(2)
            limiter.allow(window)
            assert window.count >= 0

    def test_window_start_is_monotonic(self, clock):
        limiter = RateLimiter(limit=1, interval=1, clock=clock)
        window = limiter.new_window()
        starts = []
        for _ in range(4):
            clock.advance(1.5)
            limiter.allow(window)
            starts.append(window.started_at)
        assert starts == sorted(starts)


class TestKeyedRateLimiter:
    """Tests for the per-address limiter used by room creation."""

    def test_keys_are_independent(self, clock):
        limiter = KeyedRateLimiter(limit=1, interval=60, clock=clock)
        assert limiter.allow("10.0.0.1") is True
        assert limiter.allow("10.0.0.1") is False
        assert limiter.allow("10.0.0.2") is True

    def test_expired_windows_are_pruned(self, clock):
        limiter = KeyedRateLimiter(limit=1, interval=60, clock=clock)
        limiter.allow("a")
        limiter.allow("b")
        assert len(limiter) == 2

        clock.advance(61)
        assert limiter.allow("c") is True
        assert len(limiter) == 1

    def test_key_allowed_again_after_window(self, clock):
        limiter = KeyedRateLimiter(limit=10, interval=3600, clock=clock)
        for _ in range(10):
            assert limiter.allow("1.2.3.4")
        assert limiter.allow("1.2.3.4") is False

        clock.advance(3601)
        assert limiter.allow("1.2.3.4") is True


class TestChunkBudget:
    """Tests for the timer-reset chunk budget."""

    def test_within_budget(self):
        budget = ChunkBudget(limit=3)
        assert [budget.consume() for _ in range(3)] == [(True, False)] * 3

    def test_notifies_once_per_window(self):
        budget = ChunkBudget(limit=1)
        budget.consume()
        assert budget.consume() == (False, True)
        assert budget.consume() == (False, False)
        assert budget.consume() == (False, False)

    def test_reset_restores_budget_and_notice(self):
        budget = ChunkBudget(limit=1)
        budget.consume()
        budget.consume()

        budget.reset()
        assert budget.count == 0
        assert budget.consume() == (True, False)
        assert budget.consume() == (False, True)

    @pytest.mark.parametrize("limit", [1, 400])
    def test_count_tracks_consumption(self, limit):
        budget = ChunkBudget(limit=limit)
        for _ in range(limit + 5):
            budget.consume()
        assert budget.count == limit + 5
