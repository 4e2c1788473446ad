"""Dict-backed storage for tests and local development. Not for production."""

from datetime import UTC, datetime

from ..errors import CredentialNotFoundError, DuplicateCredentialError, DuplicateUserError, UserNotFoundError
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
from ..security import generate_id
from .base import ChallengeStorage, PasskeyStorage


def _now() -> datetime:
    return datetime.now(UTC)


class MemoryStorage(PasskeyStorage):
    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.credentials: dict[str, Credential] = {}
        self.recovery_codes: dict[str, RecoveryCode] = {}
        self.email_tokens: dict[str, EmailRecoveryToken] = {}

    # users

    async def create_user(self, email: str) -> User:
        if await self.get_user_by_email(email):
            raise DuplicateUserError(email)
        now = _now()
        user = User(id=generate_id(), email=email, created_at=now, updated_at=now)
        self.users[user.id] = user
        return user.model_copy()

    async def get_user_by_id(self, user_id: str) -> User | None:
        user = self.users.get(user_id)
        return user.model_copy() if user else None

    async def get_user_by_email(self, email: str) -> User | None:
        for user in self.users.values():
            if user.email == email:
                return user.model_copy()
        return None

    async def update_user(self, user_id: str, email: str) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if email != user.email:
            if await self.get_user_by_email(email):
                raise DuplicateUserError(email)
            user.email = email
        user.updated_at = _now()
        return user.model_copy()

    async def delete_user(self, user_id: str) -> None:
        if self.users.pop(user_id, None) is None:
            raise UserNotFoundError(user_id)
        for store in (self.credentials, self.recovery_codes, self.email_tokens):
            for key in [k for k, v in store.items() if v.user_id == user_id]:
                del store[key]

    # credentials

    async def create_credential(self, new: NewCredential) -> Credential:
        if new.id in self.credentials:
            raise DuplicateCredentialError(new.id)
        now = _now()
        credential = Credential(**new.model_dump(), created_at=now, updated_at=now)
        self.credentials[credential.id] = credential
        return credential.model_copy()

    async def get_credential_by_id(self, credential_id: str) -> Credential | None:
        credential = self.credentials.get(credential_id)
        return credential.model_copy() if credential else None

    async def get_user_credentials(self, user_id: str) -> list[Credential]:
        return [c.model_copy() for c in self.credentials.values() if c.user_id == user_id]

    async def update_credential(self, credential_id: str, update: CredentialUpdate) -> Credential:
        credential = self.credentials.get(credential_id)
        if credential is None:
            raise CredentialNotFoundError(credential_id)
        for field, value in update.model_dump(exclude_unset=True).items():
            setattr(credential, field, value)
        credential.updated_at = _now()
        return credential.model_copy()

    async def delete_credential(self, credential_id: str) -> None:
        if self.credentials.pop(credential_id, None) is None:
            raise CredentialNotFoundError(credential_id)

    # recovery codes

    async def create_recovery_codes(self, codes: list[NewRecoveryCode]) -> list[RecoveryCode]:
        now = _now()
        created = []
        for new in codes:
            code = RecoveryCode(id=generate_id(), created_at=now, **new.model_dump())
            self.recovery_codes[code.id] = code
            created.append(code.model_copy())
        return created

    async def get_user_recovery_codes(self, user_id: str) -> list[RecoveryCode]:
        return [
            c.model_copy()
            for c in self.recovery_codes.values()
            if c.user_id == user_id and not c.used
        ]

    async def mark_recovery_code_used(self, code_id: str) -> bool:
        code = self.recovery_codes.get(code_id)
        if code is None or code.used:
            return False
        code.used = True
        code.used_at = _now()
        return True

    async def delete_user_recovery_codes(self, user_id: str) -> None:
        for key in [k for k, c in self.recovery_codes.items() if c.user_id == user_id]:
            del self.recovery_codes[key]

    # email recovery tokens

    async def create_email_recovery_token(self, new: NewEmailRecoveryToken) -> EmailRecoveryToken:
        token = EmailRecoveryToken(id=generate_id(), created_at=_now(), **new.model_dump())
        self.email_tokens[token.id] = token
        return token.model_copy()

    async def get_email_recovery_token(self, token_id: str) -> EmailRecoveryToken | None:
        token = self.email_tokens.get(token_id)
        if token is None or token.expires_at <= _now():
            return None
        return token.model_copy()

    async def get_email_recovery_token_by_hash(self, token_hash: str) -> EmailRecoveryToken | None:
        now = _now()
        for token in self.email_tokens.values():
            if token.token_hash == token_hash and not token.used and token.expires_at > now:
                return token.model_copy()
        return None

    async def mark_email_recovery_token_used(self, token_id: str) -> bool:
        token = self.email_tokens.get(token_id)
        if token is None or token.used:
            return False
        token.used = True
        token.used_at = _now()
        return True

    async def delete_expired_email_recovery_tokens(self) -> int:
        now = _now()
        expired = [k for k, t in self.email_tokens.items() if t.expires_at <= now]
        for key in expired:
            del self.email_tokens[key]
        return len(expired)


class MemoryChallengeStorage(ChallengeStorage):
    def __init__(self) -> None:
        self.challenges: dict[str, Challenge] = {}

    async def create_challenge(self, new: NewChallenge) -> Challenge:
        challenge = Challenge(id=generate_id(), created_at=_now(), **new.model_dump())
        self.challenges[challenge.id] = challenge
        return challenge.model_copy()

    async def get_challenge_by_id(self, challenge_id: str) -> Challenge | None:
        challenge = self.challenges.get(challenge_id)
        return challenge.model_copy() if challenge else None

    async def get_challenge_by_value(self, value: str) -> Challenge | None:
        for challenge in self.challenges.values():
            if challenge.challenge == value:
                return challenge.model_copy()
        return None

    async def delete_challenge(self, challenge_id: str) -> bool:
        return self.challenges.pop(challenge_id, None) is not None

    async def delete_expired_challenges(self) -> int:
        now = _now()
        expired = [k for k, c in self.challenges.items() if c.expires_at <= now]
        for key in expired:
            del self.challenges[key]
        return len(expired)
