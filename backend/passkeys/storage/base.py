"""Storage contracts consumed by the services.

Backends implement :class:`PasskeyStorage` for users, credentials and
recovery material, and :class:`ChallengeStorage` for ceremony challenges.
The two are separate so challenges can live somewhere with native expiry
(Redis) while the rest sits in a relational database.

Single-use transitions (``mark_recovery_code_used``,
``mark_email_recovery_token_used``) must be conditional: they return True
only for the one caller that flipped the flag. Backends with transactions or
compare-and-swap should implement them atomically.
"""

from abc import ABC, abstractmethod

from ..schemas import (
    Challenge,
    Credential,
    CredentialUpdate,
    EmailRecoveryToken,
    NewChallenge,
    NewCredential,
    NewEmailRecoveryToken,
    NewRecoveryCode,
    RecoveryCode,
    User,
)


class PasskeyStorage(ABC):
    # users

    @abstractmethod
    async def create_user(self, email: str) -> User:
        """Raises DuplicateUserError if the email is taken."""

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> User | None: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    async def update_user(self, user_id: str, email: str) -> User:
        """Raises UserNotFoundError or DuplicateUserError."""

    @abstractmethod
    async def delete_user(self, user_id: str) -> None:
        """Delete the user and cascade credentials, codes and tokens."""

    # credentials

    @abstractmethod
    async def create_credential(self, new: NewCredential) -> Credential: ...

    @abstractmethod
    async def get_credential_by_id(self, credential_id: str) -> Credential | None: ...

    @abstractmethod
    async def get_user_credentials(self, user_id: str) -> list[Credential]: ...

    @abstractmethod
    async def update_credential(self, credential_id: str, update: CredentialUpdate) -> Credential:
        """Apply the fields set on ``update``. Raises CredentialNotFoundError."""

    @abstractmethod
    async def delete_credential(self, credential_id: str) -> None: ...

    # recovery codes

    @abstractmethod
    async def create_recovery_codes(self, codes: list[NewRecoveryCode]) -> list[RecoveryCode]: ...

    @abstractmethod
    async def get_user_recovery_codes(self, user_id: str) -> list[RecoveryCode]:
        """Unused codes only."""

    @abstractmethod
    async def mark_recovery_code_used(self, code_id: str) -> bool: ...

    @abstractmethod
    async def delete_user_recovery_codes(self, user_id: str) -> None: ...

    # email recovery tokens

    @abstractmethod
    async def create_email_recovery_token(self, new: NewEmailRecoveryToken) -> EmailRecoveryToken: ...

    @abstractmethod
    async def get_email_recovery_token(self, token_id: str) -> EmailRecoveryToken | None: ...

    @abstractmethod
    async def get_email_recovery_token_by_hash(self, token_hash: str) -> EmailRecoveryToken | None:
        """Only unused, unexpired tokens match."""

    @abstractmethod
    async def mark_email_recovery_token_used(self, token_id: str) -> bool: ...

    @abstractmethod
    async def delete_expired_email_recovery_tokens(self) -> int: ...


class ChallengeStorage(ABC):
    @abstractmethod
    async def create_challenge(self, new: NewChallenge) -> Challenge: ...

    @abstractmethod
    async def get_challenge_by_id(self, challenge_id: str) -> Challenge | None: ...

    @abstractmethod
    async def get_challenge_by_value(self, value: str) -> Challenge | None: ...

    @abstractmethod
    async def delete_challenge(self, challenge_id: str) -> bool:
        """Delete-if-exists. True only for the call that removed the record;
        deleting an unknown id is not an error."""

    @abstractmethod
    async def delete_expired_challenges(self) -> int: ...


PASSKEY_STORAGE_METHODS = tuple(sorted(PasskeyStorage.__abstractmethods__))
CHALLENGE_STORAGE_METHODS = tuple(sorted(ChallengeStorage.__abstractmethods__))
