from dataclasses import dataclass

from ..config import PasskeyConfig, assert_valid_config, assert_valid_storage
from ..storage.base import (
    CHALLENGE_STORAGE_METHODS,
    PASSKEY_STORAGE_METHODS,
    ChallengeStorage,
    PasskeyStorage,
)
from ..verifier import CeremonyVerifier
from .ceremonies import PasskeyService
from .challenges import ChallengeService
from .recovery import RecoveryService


@dataclass
class PasskeyServices:
    challenges: ChallengeService
    passkeys: PasskeyService
    recovery: RecoveryService

    @classmethod
    def build(
        cls,
        config: PasskeyConfig,
        storage: PasskeyStorage,
        challenges: ChallengeStorage,
        verifier: CeremonyVerifier,
    ) -> "PasskeyServices":
        assert_valid_config(config)
        assert_valid_storage(storage, PASSKEY_STORAGE_METHODS, "storage")
        assert_valid_storage(challenges, CHALLENGE_STORAGE_METHODS, "challenges")
        return cls(
            challenges=ChallengeService(challenges, config.challenge_ttl_seconds),
            passkeys=PasskeyService(storage, verifier, config),
            recovery=RecoveryService(storage, config),
        )

    async def purge_expired(self) -> dict[str, int]:
        return {
            "challenges": await self.challenges.purge_expired(),
            "email_recovery_tokens": await self.recovery.purge_expired_tokens(),
        }


__all__ = ["ChallengeService", "PasskeyService", "PasskeyServices", "RecoveryService"]
