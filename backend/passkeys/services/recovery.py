import asyncio
import inspect
import logging
from datetime import UTC, datetime, timedelta

from ..config import PasskeyConfig
from ..errors import (
    ConfigurationError,
    EmailDeliveryError,
    InvalidRecoveryCodeError,
    InvalidRecoveryTokenError,
    StorageError,
    ValidationError,
    translate_errors,
)
from ..events import EventType
from ..schemas import NewEmailRecoveryToken, NewRecoveryCode
from ..security import (
    MAX_RECOVERY_CODE_LENGTH,
    check_secret,
    generate_email_token,
    generate_recovery_code,
    hash_secret,
    sha256_hex,
)
from ..storage.base import PasskeyStorage
from ..validation import normalize_recovery_code, validate_email

logger = logging.getLogger(__name__)

GENERIC_EMAIL_RECOVERY_MESSAGE = "If this email exists, a recovery link has been sent"


class RecoveryService:
    """Recovery codes and email recovery tokens.

    Both paths authenticate a user without a passkey. Codes are stored as
    bcrypt hashes and can only be compared; email tokens are stored as
    SHA-256 hashes so they can be looked up.
    """

    def __init__(self, storage: PasskeyStorage, config: PasskeyConfig):
        self.storage = storage
        self.config = config
        self.events = config.events

    # ---------- Recovery codes ----------

    async def generate_codes(
        self, user_id: str, count: int | None = None, code_length: int | None = None
    ) -> list[str]:
        settings = self.config.recovery.codes
        if not settings.enabled:
            raise ConfigurationError("Recovery codes are not enabled in configuration.")
        count = settings.count if count is None else count
        code_length = settings.length if code_length is None else code_length
        if count <= 0 or code_length <= 0:
            raise ValidationError("Recovery code count and length must be positive")
        if code_length > MAX_RECOVERY_CODE_LENGTH:
            raise ValidationError(
                f"Recovery code length must be at most {MAX_RECOVERY_CODE_LENGTH} characters"
            )

        with translate_errors(StorageError):
            if await self.storage.get_user_by_id(user_id) is None:
                raise ValidationError("User not found")

            codes: list[str] = []
            while len(codes) < count:
                code = generate_recovery_code(code_length)
                if code not in codes:
                    codes.append(code)
            hashes = await asyncio.gather(
                *(asyncio.to_thread(hash_secret, code, settings.hash_rounds) for code in codes)
            )

            # regeneration replaces the whole set
            await self.storage.delete_user_recovery_codes(user_id)
            await self.storage.create_recovery_codes(
                [NewRecoveryCode(user_id=user_id, code_hash=h) for h in hashes]
            )

        logger.info("Generated %d recovery codes for user %s", count, user_id)
        await self.events.emit(
            EventType.RECOVERY_CODES_REGENERATED, user_id=user_id, data={"count": count}
        )
        return codes

    async def verify_code(self, user_id: str, code: str) -> bool:
        try:
            normalized = normalize_recovery_code(code)
        except ValidationError as exc:
            raise InvalidRecoveryCodeError() from exc

        with translate_errors(StorageError):
            candidates = await self.storage.get_user_recovery_codes(user_id)
            if not candidates:
                logger.warning("Recovery code attempt for user %s with no codes left", user_id)
                raise InvalidRecoveryCodeError()

            for candidate in candidates:
                if not await asyncio.to_thread(check_secret, normalized, candidate.code_hash):
                    continue
                if not await self.storage.mark_recovery_code_used(candidate.id):
                    # redeemed concurrently by someone else
                    break
                await self.events.emit(EventType.RECOVERY_CODE_USED, user_id=user_id)
                logger.info("Recovery code used by user %s", user_id)
                return True

        logger.warning("Invalid recovery code for user %s", user_id)
        raise InvalidRecoveryCodeError()

    async def verify_code_for_email(self, email: str, code: str) -> str:
        """Redeem a code for the account behind ``email`` and return its user id.

        An unknown email fails exactly like a wrong code.
        """
        with translate_errors(StorageError):
            user = await self.storage.get_user_by_email(email)
        if user is None:
            logger.warning("Recovery code attempt for unknown email")
            raise InvalidRecoveryCodeError()
        await self.verify_code(user.id, code)
        return user.id

    async def code_count(self, user_id: str) -> int:
        with translate_errors(StorageError):
            return len(await self.storage.get_user_recovery_codes(user_id))

    # ---------- Email recovery ----------

    def _require_email_recovery(self) -> None:
        if not self.config.recovery.email.enabled:
            raise ConfigurationError("Email recovery is not enabled in configuration.")

    async def initiate(self, email: str) -> tuple[str, str, datetime]:
        self._require_email_recovery()
        settings = self.config.recovery.email
        validate_email(email)

        token = generate_email_token()
        token_hash = sha256_hex(token)
        expires_at = datetime.now(UTC) + timedelta(minutes=settings.token_ttl_minutes)

        with translate_errors(StorageError):
            user = await self.storage.get_user_by_email(email)
        if user is None:
            await asyncio.sleep(settings.enumeration_delay_seconds)
            raise ValidationError(GENERIC_EMAIL_RECOVERY_MESSAGE)

        with translate_errors(StorageError):
            record = await self.storage.create_email_recovery_token(
                NewEmailRecoveryToken(user_id=user.id, token_hash=token_hash, expires_at=expires_at)
            )

        if settings.send_email is not None:
            try:
                result = settings.send_email(email, token, user.id)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Recovery email for user %s was not delivered: %s", user.id, exc)
                # an undelivered token must not stay redeemable
                with translate_errors(StorageError):
                    await self.storage.mark_email_recovery_token_used(record.id)
                raise EmailDeliveryError("Recovery email could not be sent") from exc

        await self.events.emit(EventType.EMAIL_RECOVERY_REQUESTED, user_id=user.id, email=email)
        return token, user.id, expires_at

    async def verify_token(self, token: str) -> str:
        self._require_email_recovery()
        if not token or not isinstance(token, str):
            raise InvalidRecoveryTokenError()

        with translate_errors(StorageError):
            record = await self.storage.get_email_recovery_token_by_hash(sha256_hex(token))
            if record is None or not await self.storage.mark_email_recovery_token_used(record.id):
                raise InvalidRecoveryTokenError()

        await self.events.emit(EventType.EMAIL_RECOVERY_COMPLETED, user_id=record.user_id)
        return record.user_id

    async def purge_expired_tokens(self) -> int:
        with translate_errors(StorageError):
            removed = await self.storage.delete_expired_email_recovery_tokens()
        if removed:
            logger.info("Purged %d expired email recovery tokens", removed)
        return removed
