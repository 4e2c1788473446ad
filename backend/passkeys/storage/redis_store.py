import json
import math
from datetime import UTC, datetime

from redis.asyncio import Redis

from ..schemas import Challenge, NewChallenge
from ..security import generate_id
from .base import ChallengeStorage


class RedisChallengeStorage(ChallengeStorage):
    """Challenges in Redis, expired natively by key TTL.

    Two keys per challenge: ``<prefix>value:<challenge>`` holds the record and
    ``<prefix>id:<id>`` points back at the value so deletion by id needs no
    key scan.
    """

    def __init__(self, redis: Redis, key_prefix: str = "passkey:challenge:"):
        self.r = redis
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisChallengeStorage":
        return cls(Redis.from_url(url), **kwargs)

    def _value_key(self, value: str) -> str:
        return f"{self.key_prefix}value:{value}"

    def _id_key(self, challenge_id: str) -> str:
        return f"{self.key_prefix}id:{challenge_id}"

    async def create_challenge(self, new: NewChallenge) -> Challenge:
        now = datetime.now(UTC)
        ttl = max(1, math.ceil((new.expires_at - now).total_seconds()))
        challenge = Challenge(id=generate_id(), created_at=now, **new.model_dump())
        pipe = self.r.pipeline()
        pipe.setex(self._value_key(challenge.challenge), ttl, challenge.model_dump_json())
        pipe.setex(self._id_key(challenge.id), ttl, challenge.challenge)
        await pipe.execute()
        return challenge

    async def get_challenge_by_id(self, challenge_id: str) -> Challenge | None:
        value = await self.r.get(self._id_key(challenge_id))
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return await self.get_challenge_by_value(value)

    async def get_challenge_by_value(self, value: str) -> Challenge | None:
        data = await self.r.get(self._value_key(value))
        if data is None:
            return None
        return Challenge.model_validate(json.loads(data))

    async def delete_challenge(self, challenge_id: str) -> bool:
        # GET and DEL run in one MULTI block; only one caller sees removed == 1
        pipe = self.r.pipeline()
        pipe.get(self._id_key(challenge_id))
        pipe.delete(self._id_key(challenge_id))
        value, removed = await pipe.execute()
        if value is None or not removed:
            return False
        if isinstance(value, bytes):
            value = value.decode()
        await self.r.delete(self._value_key(value))
        return True

    async def delete_expired_challenges(self) -> int:
        # Redis expires keys on its own
        return 0

    async def close(self) -> None:
        await self.r.aclose()
