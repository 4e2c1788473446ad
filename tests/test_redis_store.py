"""RedisChallengeStorage with a mocked redis.asyncio client."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from passkeys.schemas import Challenge, NewChallenge
from passkeys.storage.redis_store import RedisChallengeStorage


@pytest.fixture
def pipe():
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[True, True])
    return pipe


@pytest.fixture
def redis(pipe):
    client = MagicMock()
    client.pipeline.return_value = pipe
    client.get = AsyncMock(return_value=None)
    client.delete = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def store(redis):
    return RedisChallengeStorage(redis, key_prefix="test:")


def _challenge(**overrides) -> Challenge:
    now = datetime.now(UTC)
    values = dict(
        id="c-1",
        challenge="value-1",
        type="registration",
        user_id="u1",
        created_at=now,
        expires_at=now + timedelta(minutes=5),
    )
    values.update(overrides)
    return Challenge(**values)


class TestCreate:
    async def test_writes_both_keys_with_ttl(self, store, pipe):
        expires_at = datetime.now(UTC) + timedelta(seconds=300)
        created = await store.create_challenge(
            NewChallenge(challenge="value-1", type="registration", user_id="u1", expires_at=expires_at)
        )

        (value_call, id_call) = pipe.setex.call_args_list
        value_key, ttl, payload = value_call.args
        assert value_key == "test:value:value-1"
        assert 299 <= ttl <= 300
        assert Challenge.model_validate_json(payload) == created
        assert id_call.args == (f"test:id:{created.id}", ttl, "value-1")
        pipe.execute.assert_awaited_once()

    async def test_ttl_is_at_least_one_second(self, store, pipe):
        await store.create_challenge(
            NewChallenge(
                challenge="v", type="authentication", expires_at=datetime.now(UTC) - timedelta(seconds=10)
            )
        )
        assert pipe.setex.call_args_list[0].args[1] == 1


class TestLookup:
    async def test_by_value(self, store, redis):
        stored = _challenge()
        redis.get.return_value = stored.model_dump_json().encode()

        found = await store.get_challenge_by_value("value-1")

        assert found == stored
        redis.get.assert_awaited_once_with("test:value:value-1")

    async def test_by_value_missing(self, store):
        assert await store.get_challenge_by_value("nope") is None

    async def test_by_id_follows_index(self, store, redis):
        stored = _challenge()
        redis.get.side_effect = [b"value-1", stored.model_dump_json().encode()]

        found = await store.get_challenge_by_id("c-1")

        assert found == stored
        assert [c.args[0] for c in redis.get.await_args_list] == ["test:id:c-1", "test:value:value-1"]

    async def test_by_id_missing(self, store, redis):
        assert await store.get_challenge_by_id("c-1") is None
        redis.get.assert_awaited_once_with("test:id:c-1")


class TestDelete:
    async def test_removes_index_and_value(self, store, redis, pipe):
        pipe.execute.return_value = [b"value-1", 1]

        assert await store.delete_challenge("c-1") is True

        pipe.get.assert_called_once_with("test:id:c-1")
        pipe.delete.assert_called_once_with("test:id:c-1")
        redis.delete.assert_awaited_once_with("test:value:value-1")

    async def test_unknown_id_is_a_no_op(self, store, redis, pipe):
        pipe.execute.return_value = [None, 0]
        assert await store.delete_challenge("gone") is False
        redis.delete.assert_not_awaited()

    async def test_expiry_is_left_to_redis(self, store):
        assert await store.delete_expired_challenges() == 0


async def test_close(store, redis):
    await store.close()
    redis.aclose.assert_awaited_once()
