import binascii
import json
import logging
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from ..errors import InvalidChallengeError, StorageError, translate_errors
from ..schemas import Challenge, ChallengeType, NewChallenge
from ..security import b64url_decode, generate_challenge
from ..storage.base import ChallengeStorage

logger = logging.getLogger(__name__)

CHALLENGE_TTL_SECONDS = 300


def extract_challenge(client_payload: Mapping[str, Any] | str) -> str:
    """Pull the challenge value out of a ceremony response.

    Accepts the whole credential JSON sent by the browser or just its
    base64url ``clientDataJSON``.
    """
    client_data_json = client_payload
    if isinstance(client_payload, Mapping):
        response = client_payload.get("response")
        client_data_json = response.get("clientDataJSON") if isinstance(response, Mapping) else None
    if not client_data_json or not isinstance(client_data_json, str):
        raise InvalidChallengeError("Client data missing from ceremony response")
    try:
        client_data = json.loads(b64url_decode(client_data_json))
    except (binascii.Error, ValueError, UnicodeDecodeError) as exc:
        raise InvalidChallengeError("Client data is not valid base64url JSON") from exc
    challenge = client_data.get("challenge") if isinstance(client_data, dict) else None
    if not challenge or not isinstance(challenge, str):
        raise InvalidChallengeError("Challenge not found in client data")
    return challenge


class ChallengeService:
    """Issues one-time ceremony challenges and checks them back in.

    ``verify`` claims the challenge through the storage's delete-if-exists,
    so of two concurrent verifications only one gets the record. Callers
    still ``retire`` after the ceremony; retiring is idempotent. Expired
    challenges are deleted on the lookup that finds them.
    """

    def __init__(self, storage: ChallengeStorage, ttl_seconds: int = CHALLENGE_TTL_SECONDS):
        self.storage = storage
        self.ttl_seconds = ttl_seconds

    async def issue(
        self, type: ChallengeType, user_id: str | None = None, email: str | None = None
    ) -> Challenge:
        return await self.record(generate_challenge(), type, user_id, email)

    async def record(
        self,
        value: str,
        type: ChallengeType,
        user_id: str | None = None,
        email: str | None = None,
    ) -> Challenge:
        expires_at = datetime.now(UTC) + timedelta(seconds=self.ttl_seconds)
        with translate_errors(StorageError):
            challenge = await self.storage.create_challenge(
                NewChallenge(challenge=value, type=type, user_id=user_id, email=email, expires_at=expires_at)
            )
        logger.debug("Issued %s challenge %s", type, challenge.id)
        return challenge

    async def verify(self, client_payload: Mapping[str, Any] | str) -> Challenge:
        value = extract_challenge(client_payload)
        with translate_errors(StorageError):
            challenge = await self.storage.get_challenge_by_value(value)
        if challenge is None:
            raise InvalidChallengeError("Challenge not found")
        if challenge.expires_at <= datetime.now(UTC):
            await self.retire(challenge.id)
            raise InvalidChallengeError("Challenge has expired")
        with translate_errors(StorageError):
            claimed = await self.storage.delete_challenge(challenge.id)
        if not claimed:
            raise InvalidChallengeError("Challenge has already been used")
        return challenge

    async def retire(self, challenge_id: str) -> None:
        with translate_errors(StorageError):
            await self.storage.delete_challenge(challenge_id)

    async def purge_expired(self) -> int:
        with translate_errors(StorageError):
            removed = await self.storage.delete_expired_challenges()
        if removed:
            logger.info("Purged %d expired challenges", removed)
        return removed
