"""Tests for the daily counters and throttles on searches and photo requests."""

from datetime import datetime, timedelta, timezone

from rentbot.rate_limit import RateLimiter

from conftest import PHONE


class Clock:
    def __init__(self):
        self.now = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_limiter(repo, clock, **kwargs):
    params = dict(search_day_limit=2, photo_day_limit=1, throttle_seconds=60, clock=clock)
    params.update(kwargs)
    return RateLimiter(repo, **params)


class TestSearchGate:
    async def test_first_check_opens_window(self, repo):
        clock = Clock()
        limiter = make_limiter(repo, clock)
        user = await repo.ensure_user(PHONE)
        decision = await limiter.check_search(user)
        assert decision.ok
        stored = await repo.get_user(PHONE)
        assert stored.rate_reset_at == clock.now

    async def test_throttle(self, repo):
        clock = Clock()
        limiter = make_limiter(repo, clock)
        await repo.ensure_user(PHONE)
        await limiter.check_search(await repo.get_user(PHONE))
        await limiter.record_search(PHONE)

        clock.advance(seconds=30)
        decision = await limiter.check_search(await repo.get_user(PHONE))
        assert not decision.ok
        assert decision.reason == "throttled"

        clock.advance(seconds=31)
        assert (await limiter.check_search(await repo.get_user(PHONE))).ok

    async def test_daily_limit(self, repo):
        clock = Clock()
        limiter = make_limiter(repo, clock, throttle_seconds=0)
        await repo.ensure_user(PHONE)
        for _ in range(2):
            assert (await limiter.check_search(await repo.get_user(PHONE))).ok
            await limiter.record_search(PHONE)
        decision = await limiter.check_search(await repo.get_user(PHONE))
        assert decision.reason == "daily_limit"

    async def test_window_resets_after_a_day(self, repo):
        clock = Clock()
        limiter = make_limiter(repo, clock, throttle_seconds=0)
        await repo.ensure_user(PHONE)
        for _ in range(2):
            await limiter.check_search(await repo.get_user(PHONE))
            await limiter.record_search(PHONE)

        clock.advance(hours=25)
        assert (await limiter.check_search(await repo.get_user(PHONE))).ok
        stored = await repo.get_user(PHONE)
        assert stored.search_count_day == 0
        assert stored.photo_request_count_day == 0


class TestPhotoGate:
    async def test_daily_limit(self, repo):
        clock = Clock()
        limiter = make_limiter(repo, clock, throttle_seconds=0)
        await repo.ensure_user(PHONE)
        assert (await limiter.check_photos(await repo.get_user(PHONE))).ok
        await limiter.record_photos(PHONE)
        assert (await limiter.check_photos(await repo.get_user(PHONE))).reason == "daily_limit"

    async def test_verified_users_get_double(self, repo):
        limiter = make_limiter(repo, Clock(), photo_day_limit=5)
        user = await repo.ensure_user(PHONE)
        assert limiter.photo_limit_for(user) == 5
        assert limiter.photo_limit_for(user.model_copy(update={"verified": True})) == 10

    async def test_gates_are_independent(self, repo):
        clock = Clock()
        limiter = make_limiter(repo, clock)
        await repo.ensure_user(PHONE)
        await limiter.check_search(await repo.get_user(PHONE))
        await limiter.record_search(PHONE)
        # A fresh search throttle does not block photo requests
        assert (await limiter.check_photos(await repo.get_user(PHONE))).ok
