"""SQLAlchemy backend.

Sessions are synchronous (``session_scope``); every contract call runs its
unit of work on a worker thread so the event loop is never blocked.
"""

import asyncio
from datetime import UTC, datetime
from functools import partial
from typing import Any, Callable, TypeVar

from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .. import models, schemas
from ..db import session_scope
from ..errors import CredentialNotFoundError, DuplicateCredentialError, DuplicateUserError, UserNotFoundError
from ..security import generate_id
from .base import ChallengeStorage, PasskeyStorage

R = TypeVar("R", bound=BaseModel)
T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(UTC)


def _aware(value: Any) -> Any:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _record(schema: type[R], row: Any) -> R:
    data = {c.name: _aware(getattr(row, c.name)) for c in row.__table__.columns}
    if schema is schemas.Credential:
        data["transports"] = data["transports"].split(",") if data["transports"] else None
    return schema.model_validate(data)


def _join_transports(transports: list[str] | None) -> str | None:
    return ",".join(transports) if transports else None


class SqlStorage(PasskeyStorage, ChallengeStorage):
    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(partial(fn, *args))

    # users

    def _create_user(self, email: str) -> schemas.User:
        now = _now()
        try:
            with session_scope(self.session_factory) as db:
                user = models.User(id=generate_id(), email=email, created_at=now, updated_at=now)
                db.add(user)
                db.flush()
                return _record(schemas.User, user)
        except IntegrityError as exc:
            raise DuplicateUserError(email) from exc

    async def create_user(self, email: str) -> schemas.User:
        return await self._run(self._create_user, email)

    def _get_user(self, **criteria: str) -> schemas.User | None:
        with session_scope(self.session_factory) as db:
            user = db.execute(select(models.User).filter_by(**criteria)).scalar_one_or_none()
            return _record(schemas.User, user) if user else None

    async def get_user_by_id(self, user_id: str) -> schemas.User | None:
        return await self._run(partial(self._get_user, id=user_id))

    async def get_user_by_email(self, email: str) -> schemas.User | None:
        return await self._run(partial(self._get_user, email=email))

    def _update_user(self, user_id: str, email: str) -> schemas.User:
        try:
            with session_scope(self.session_factory) as db:
                user = db.get(models.User, user_id)
                if user is None:
                    raise UserNotFoundError(user_id)
                user.email = email
                user.updated_at = _now()
                db.flush()
                return _record(schemas.User, user)
        except IntegrityError as exc:
            raise DuplicateUserError(email) from exc

    async def update_user(self, user_id: str, email: str) -> schemas.User:
        return await self._run(self._update_user, user_id, email)

    def _delete_user(self, user_id: str) -> None:
        with session_scope(self.session_factory) as db:
            user = db.get(models.User, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            db.delete(user)

    async def delete_user(self, user_id: str) -> None:
        await self._run(self._delete_user, user_id)

    # credentials

    def _create_credential(self, new: schemas.NewCredential) -> schemas.Credential:
        now = _now()
        try:
            with session_scope(self.session_factory) as db:
                data = new.model_dump()
                data["transports"] = _join_transports(new.transports)
                credential = models.Credential(**data, created_at=now, updated_at=now)
                db.add(credential)
                db.flush()
                return _record(schemas.Credential, credential)
        except IntegrityError as exc:
            raise DuplicateCredentialError(new.id) from exc

    async def create_credential(self, new: schemas.NewCredential) -> schemas.Credential:
        return await self._run(self._create_credential, new)

    def _get_credential(self, credential_id: str) -> schemas.Credential | None:
        with session_scope(self.session_factory) as db:
            credential = db.get(models.Credential, credential_id)
            return _record(schemas.Credential, credential) if credential else None

    async def get_credential_by_id(self, credential_id: str) -> schemas.Credential | None:
        return await self._run(self._get_credential, credential_id)

    def _user_credentials(self, user_id: str) -> list[schemas.Credential]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(models.Credential)
                .where(models.Credential.user_id == user_id)
                .order_by(models.Credential.created_at)
            ).scalars()
            return [_record(schemas.Credential, c) for c in rows]

    async def get_user_credentials(self, user_id: str) -> list[schemas.Credential]:
        return await self._run(self._user_credentials, user_id)

    def _update_credential(self, credential_id: str, changes: schemas.CredentialUpdate) -> schemas.Credential:
        with session_scope(self.session_factory) as db:
            credential = db.get(models.Credential, credential_id)
            if credential is None:
                raise CredentialNotFoundError(credential_id)
            for field, value in changes.model_dump(exclude_unset=True).items():
                setattr(credential, field, value)
            credential.updated_at = _now()
            db.flush()
            return _record(schemas.Credential, credential)

    async def update_credential(self, credential_id: str, update: schemas.CredentialUpdate) -> schemas.Credential:
        return await self._run(self._update_credential, credential_id, update)

    def _delete_credential(self, credential_id: str) -> None:
        with session_scope(self.session_factory) as db:
            credential = db.get(models.Credential, credential_id)
            if credential is None:
                raise CredentialNotFoundError(credential_id)
            db.delete(credential)

    async def delete_credential(self, credential_id: str) -> None:
        await self._run(self._delete_credential, credential_id)

    # recovery codes

    def _create_recovery_codes(self, codes: list[schemas.NewRecoveryCode]) -> list[schemas.RecoveryCode]:
        now = _now()
        with session_scope(self.session_factory) as db:
            rows = [
                models.RecoveryCode(id=generate_id(), created_at=now, used=False, **c.model_dump())
                for c in codes
            ]
            db.add_all(rows)
            db.flush()
            return [_record(schemas.RecoveryCode, r) for r in rows]

    async def create_recovery_codes(self, codes: list[schemas.NewRecoveryCode]) -> list[schemas.RecoveryCode]:
        return await self._run(self._create_recovery_codes, codes)

    def _unused_codes(self, user_id: str) -> list[schemas.RecoveryCode]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(models.RecoveryCode).where(
                    models.RecoveryCode.user_id == user_id,
                    models.RecoveryCode.used.is_(False),
                )
            ).scalars()
            return [_record(schemas.RecoveryCode, r) for r in rows]

    async def get_user_recovery_codes(self, user_id: str) -> list[schemas.RecoveryCode]:
        return await self._run(self._unused_codes, user_id)

    def _mark_used(self, model: Any, row_id: str) -> bool:
        # conditional update: only one caller can flip used from false to true
        with session_scope(self.session_factory) as db:
            result = db.execute(
                update(model)
                .where(model.id == row_id, model.used.is_(False))
                .values(used=True, used_at=_now())
            )
            return result.rowcount == 1

    async def mark_recovery_code_used(self, code_id: str) -> bool:
        return await self._run(self._mark_used, models.RecoveryCode, code_id)

    def _delete_codes(self, user_id: str) -> None:
        with session_scope(self.session_factory) as db:
            db.execute(delete(models.RecoveryCode).where(models.RecoveryCode.user_id == user_id))

    async def delete_user_recovery_codes(self, user_id: str) -> None:
        await self._run(self._delete_codes, user_id)

    # email recovery tokens

    def _create_token(self, new: schemas.NewEmailRecoveryToken) -> schemas.EmailRecoveryToken:
        with session_scope(self.session_factory) as db:
            token = models.EmailRecoveryToken(
                id=generate_id(), created_at=_now(), used=False, **new.model_dump()
            )
            db.add(token)
            db.flush()
            return _record(schemas.EmailRecoveryToken, token)

    async def create_email_recovery_token(self, new: schemas.NewEmailRecoveryToken) -> schemas.EmailRecoveryToken:
        return await self._run(self._create_token, new)

    def _get_token(self, token_id: str) -> schemas.EmailRecoveryToken | None:
        with session_scope(self.session_factory) as db:
            token = db.execute(
                select(models.EmailRecoveryToken).where(
                    models.EmailRecoveryToken.id == token_id,
                    models.EmailRecoveryToken.expires_at > _now(),
                )
            ).scalar_one_or_none()
            return _record(schemas.EmailRecoveryToken, token) if token else None

    async def get_email_recovery_token(self, token_id: str) -> schemas.EmailRecoveryToken | None:
        return await self._run(self._get_token, token_id)

    def _get_token_by_hash(self, token_hash: str) -> schemas.EmailRecoveryToken | None:
        with session_scope(self.session_factory) as db:
            token = db.execute(
                select(models.EmailRecoveryToken).where(
                    models.EmailRecoveryToken.token_hash == token_hash,
                    models.EmailRecoveryToken.used.is_(False),
                    models.EmailRecoveryToken.expires_at > _now(),
                )
            ).scalar_one_or_none()
            return _record(schemas.EmailRecoveryToken, token) if token else None

    async def get_email_recovery_token_by_hash(self, token_hash: str) -> schemas.EmailRecoveryToken | None:
        return await self._run(self._get_token_by_hash, token_hash)

    async def mark_email_recovery_token_used(self, token_id: str) -> bool:
        return await self._run(self._mark_used, models.EmailRecoveryToken, token_id)

    def _delete_expired(self, model: Any) -> int:
        with session_scope(self.session_factory) as db:
            result = db.execute(delete(model).where(model.expires_at <= _now()))
            return result.rowcount or 0

    async def delete_expired_email_recovery_tokens(self) -> int:
        return await self._run(self._delete_expired, models.EmailRecoveryToken)

    # challenges

    def _create_challenge(self, new: schemas.NewChallenge) -> schemas.Challenge:
        with session_scope(self.session_factory) as db:
            challenge = models.Challenge(id=generate_id(), created_at=_now(), **new.model_dump())
            db.add(challenge)
            db.flush()
            return _record(schemas.Challenge, challenge)

    async def create_challenge(self, new: schemas.NewChallenge) -> schemas.Challenge:
        return await self._run(self._create_challenge, new)

    def _get_challenge(self, **criteria: str) -> schemas.Challenge | None:
        with session_scope(self.session_factory) as db:
            row = db.execute(select(models.Challenge).filter_by(**criteria)).scalar_one_or_none()
            return _record(schemas.Challenge, row) if row else None

    async def get_challenge_by_id(self, challenge_id: str) -> schemas.Challenge | None:
        return await self._run(partial(self._get_challenge, id=challenge_id))

    async def get_challenge_by_value(self, value: str) -> schemas.Challenge | None:
        return await self._run(partial(self._get_challenge, challenge=value))

    def _delete_challenge(self, challenge_id: str) -> bool:
        with session_scope(self.session_factory) as db:
            result = db.execute(delete(models.Challenge).where(models.Challenge.id == challenge_id))
            return result.rowcount == 1

    async def delete_challenge(self, challenge_id: str) -> bool:
        return await self._run(self._delete_challenge, challenge_id)

    async def delete_expired_challenges(self) -> int:
        return await self._run(self._delete_expired, models.Challenge)
