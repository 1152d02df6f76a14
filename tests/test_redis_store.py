"""Tests for the Redis counting store.

Unit tests drive the store through a mocked redis client. The integration
tests at the bottom talk to a real server and only run when REDIS_URL is set.
"""

import multiprocessing
import os
import time
import uuid
from unittest.mock import MagicMock

import pytest
import redis

from app.adapters.rate_limit.redis_store import PRUNE_COUNT_ADD_SCRIPT, RedisCountingStore
from app.core.errors import StoreUnavailableError
from app.services.rate_limiter import SlidingWindowRateLimiter


@pytest.fixture
def client() -> MagicMock:
    mock_client = MagicMock(spec=redis.Redis)
    mock_client.register_script.return_value = MagicMock()
    return mock_client


class TestRedisCountingStore:
    def test_registers_single_script(self, client: MagicMock) -> None:
        RedisCountingStore(client=client)

        client.register_script.assert_called_once_with(PRUNE_COUNT_ADD_SCRIPT)

    def test_allowed_reply(self, client: MagicMock) -> None:
        script = client.register_script.return_value
        script.return_value = [1, 3, "99.5"]
        store = RedisCountingStore(client=client)

        result = store.prune_count_add("rl:global:u", cutoff=40.0, limit=5, now=100.0, ttl_seconds=60)

        assert result.allowed is True
        assert result.count == 3
        assert result.oldest == 99.5

        kwargs = script.call_args.kwargs
        assert kwargs["keys"] == ["rl:global:u"]
        cutoff, limit, now, ttl_ms, member = kwargs["args"]
        assert cutoff == "40.0"
        assert limit == 5
        assert now == "100.0"
        assert ttl_ms == 60000
        assert member.startswith("100.0:")

    def test_denied_reply(self, client: MagicMock) -> None:
        client.register_script.return_value.return_value = [0, 5, "41.0"]
        store = RedisCountingStore(client=client)

        result = store.prune_count_add("k", cutoff=40.0, limit=5, now=100.0, ttl_seconds=60)

        assert result.allowed is False
        assert result.count == 5
        assert result.oldest == 41.0

    def test_empty_window_reply_has_no_oldest(self, client: MagicMock) -> None:
        client.register_script.return_value.return_value = [0, 0]
        store = RedisCountingStore(client=client)

        result = store.prune_count_add("k", cutoff=0.0, limit=1, now=1.0, ttl_seconds=1)

        assert result.oldest is None

    def test_same_instant_requests_get_distinct_members(self, client: MagicMock) -> None:
        script = client.register_script.return_value
        script.return_value = [1, 1, "5.0"]
        store = RedisCountingStore(client=client)

        store.prune_count_add("k", cutoff=0.0, limit=5, now=5.0, ttl_seconds=5)
        store.prune_count_add("k", cutoff=0.0, limit=5, now=5.0, ttl_seconds=5)

        members = [c.kwargs["args"][4] for c in script.call_args_list]
        assert members[0] != members[1]

    def test_sub_millisecond_ttl_rounds_up(self, client: MagicMock) -> None:
        script = client.register_script.return_value
        script.return_value = [1, 1, "0.0"]
        store = RedisCountingStore(client=client)

        store.prune_count_add("k", cutoff=0.0, limit=1, now=0.0, ttl_seconds=0.0001)

        assert script.call_args.kwargs["args"][3] == 1

    @pytest.mark.parametrize(
        "error",
        [
            redis.exceptions.ConnectionError("refused"),
            redis.exceptions.TimeoutError("read timed out"),
            redis.exceptions.ResponseError("NOSCRIPT"),
        ],
    )
    def test_redis_errors_become_store_unavailable(self, client: MagicMock, error) -> None:
        client.register_script.return_value.side_effect = error
        store = RedisCountingStore(client=client)

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.prune_count_add("k", cutoff=0.0, limit=1, now=1.0, ttl_seconds=1)

        assert exc_info.value.code == "rate_limit_store_unavailable"
        assert exc_info.value.details["error_type"] == type(error).__name__

    def test_ping_failure(self, client: MagicMock) -> None:
        client.ping.side_effect = redis.exceptions.ConnectionError("down")
        store = RedisCountingStore(client=client)

        with pytest.raises(StoreUnavailableError):
            store.ping()

    def test_reset_deletes_key(self, client: MagicMock) -> None:
        store = RedisCountingStore(client=client)

        store.reset("rl:global:u")

        client.delete.assert_called_once_with("rl:global:u")

    def test_limiter_does_not_convert_outage(self, client: MagicMock) -> None:
        client.register_script.return_value.side_effect = redis.exceptions.ConnectionError()
        limiter = SlidingWindowRateLimiter(RedisCountingStore(client=client))

        with pytest.raises(StoreUnavailableError):
            limiter.check_and_record("u", 1, 60, now=0.0)

    def test_unreachable_server_is_store_unavailable(self) -> None:
        # Nothing listens on port 1; connect fails fast.
        store = RedisCountingStore(url="redis://127.0.0.1:1/0", timeout_seconds=0.2)

        with pytest.raises(StoreUnavailableError):
            store.prune_count_add("k", cutoff=0.0, limit=1, now=1.0, ttl_seconds=1)


REDIS_URL = os.getenv("REDIS_URL")
requires_redis = pytest.mark.skipif(not REDIS_URL, reason="REDIS_URL not set")


def _hammer(url: str, key: str, limit: int, calls: int, now: float, queue) -> None:
    limiter = SlidingWindowRateLimiter(RedisCountingStore(url=url, timeout_seconds=2.0))
    allowed = sum(limiter.check_and_record(key, limit, 60, now=now).allowed for _ in range(calls))
    queue.put(allowed)


@requires_redis
class TestRedisIntegration:
    @pytest.fixture
    def limiter(self):
        store = RedisCountingStore(url=REDIS_URL, timeout_seconds=2.0)
        store.ping()
        return SlidingWindowRateLimiter(store, key_prefix=f"test-{uuid.uuid4().hex}")

    def test_window_slide(self, limiter) -> None:
        now = time.time()
        for _ in range(10):
            assert limiter.check_and_record("u", 10, 60, now=now).allowed
        assert not limiter.check_and_record("u", 10, 60, now=now + 30).allowed
        assert limiter.check_and_record("u", 10, 60, now=now + 61).allowed

    def test_entry_exactly_at_cutoff_is_still_counted(self, limiter) -> None:
        now = time.time()
        assert limiter.check_and_record("u", 1, 10, now=now).allowed

        assert not limiter.check_and_record("u", 1, 10, now=now + 10).allowed
        assert limiter.check_and_record("u", 1, 10, now=now + 10.001).allowed

    def test_denial_records_nothing(self, limiter) -> None:
        now = time.time()
        limiter.check_and_record("u", 2, 10, now=now)
        limiter.check_and_record("u", 2, 10, now=now + 4)
        for offset in (5, 6, 9):
            assert not limiter.check_and_record("u", 2, 10, now=now + offset).allowed

        assert limiter.check_and_record("u", 2, 10, now=now + 10.5).allowed
        assert not limiter.check_and_record("u", 2, 10, now=now + 10.6).allowed

    def test_same_instant_burst_fills_quota(self, limiter) -> None:
        now = time.time()
        outcomes = [limiter.check_and_record("u", 5, 60, now=now).allowed for _ in range(6)]

        assert outcomes == [True] * 5 + [False]

    def test_key_gets_ttl(self, limiter) -> None:
        limiter.check_and_record("u", 1, 5, now=time.time())

        client = redis.Redis.from_url(REDIS_URL)
        keys = list(client.scan_iter(match=f"{limiter._key_prefix}:*"))
        assert len(keys) == 1
        assert 0 < client.pttl(keys[0]) <= 5000

    def test_processes_share_one_quota(self) -> None:
        limit, workers, calls = 15, 4, 10
        key = f"mp-{uuid.uuid4().hex}"
        now = time.time()
        ctx = multiprocessing.get_context("spawn")
        queue = ctx.Queue()

        processes = [
            ctx.Process(target=_hammer, args=(REDIS_URL, key, limit, calls, now, queue))
            for _ in range(workers)
        ]
        for p in processes:
            p.start()
        totals = [queue.get(timeout=30) for _ in processes]
        for p in processes:
            p.join(timeout=30)

        assert sum(totals) == limit
