import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from ..config import PasskeyConfig
from ..errors import (
    AUTHENTICATION_TROUBLESHOOTING,
    CREDENTIAL_UNKNOWN_TROUBLESHOOTING,
    REGISTRATION_TROUBLESHOOTING,
    AuthenticationError,
    CounterAnomalyError,
    CredentialNotFoundError,
    DuplicateUserError,
    PasskeyError,
    RegistrationError,
    StorageError,
    ValidationError,
    translate_errors,
)
from ..events import EventType
from ..schemas import Credential, CredentialDescriptor, CredentialUpdate, NewCredential, User
from ..storage.base import PasskeyStorage
from ..validation import validate_email, validate_label
from ..verifier import CeremonyOptions, CeremonyVerifier

logger = logging.getLogger(__name__)


def _descriptors(credentials: list[Credential]) -> list[CredentialDescriptor]:
    # credentials without transport hints are left out of exclude/allow lists
    return [
        CredentialDescriptor(id=c.id, transports=c.transports)
        for c in credentials
        if c.transports
    ]


def counter_regressed(stored: int, reported: int) -> bool:
    """True when a non-zero counter failed to move forward.

    Authenticators that never implement the counter report zero; those are
    exempt on either side.
    """
    return stored > 0 and reported > 0 and reported <= stored


class PasskeyService:
    """Registration and authentication ceremonies plus credential management."""

    def __init__(self, storage: PasskeyStorage, verifier: CeremonyVerifier, config: PasskeyConfig):
        self.storage = storage
        self.verifier = verifier
        self.config = config
        self.events = config.events

    @property
    def _require_uv(self) -> bool:
        return self.config.user_verification == "required"

    # ---------- Registration ----------

    async def prepare_registration(self, email: str) -> tuple[CeremonyOptions, str]:
        validate_email(email)
        with translate_errors(RegistrationError):
            user = await self._get_or_create_user(email)
            await self.events.emit(EventType.REGISTRATION_STARTED, user_id=user.id, email=email)
            existing = await self.storage.get_user_credentials(user.id)
            options = await self.verifier.build_registration_options(
                rp_id=self.config.rp_id,
                rp_name=self.config.rp_name,
                user_id=user.id,
                user_name=user.email,
                user_display_name=user.email,
                exclude_credentials=_descriptors(existing),
                attestation=self.config.attestation,
                user_verification=self.config.user_verification,
                timeout_ms=self.config.timeout_ms,
            )
        logger.debug("Prepared registration for user %s (%d existing)", user.id, len(existing))
        return options, user.id

    async def _get_or_create_user(self, email: str) -> User:
        user = await self.storage.get_user_by_email(email)
        if user is not None:
            return user
        try:
            return await self.storage.create_user(email)
        except DuplicateUserError:
            # lost a race with a concurrent first registration
            user = await self.storage.get_user_by_email(email)
            if user is None:
                raise
            return user

    async def complete_registration(
        self,
        response: Mapping[str, Any],
        expected_challenge: str,
        user_id: str,
        label: str | None = None,
    ) -> Credential:
        try:
            if label is not None:
                label = validate_label(label)
            verification = await self.verifier.verify_registration(
                response=response,
                expected_challenge=expected_challenge,
                expected_origin=self.config.origin,
                expected_rp_id=self.config.rp_id,
                require_user_verification=self._require_uv,
            )
            if not verification.verified or not verification.credential_id:
                raise RegistrationError(
                    "Registration verification failed", dict(REGISTRATION_TROUBLESHOOTING)
                )
            client_response = response.get("response") or {}
            transports = client_response.get("transports") if isinstance(client_response, Mapping) else None
            credential = await self.storage.create_credential(
                NewCredential(
                    id=verification.credential_id,
                    user_id=user_id,
                    public_key=verification.public_key,
                    counter=verification.counter,
                    device_type=verification.device_type,
                    backed_up=verification.backed_up,
                    transports=list(transports) if transports else None,
                    label=label,
                )
            )
        except Exception as exc:
            logger.warning("Registration failed for user %s: %s", user_id, exc)
            await self.events.emit(EventType.REGISTRATION_FAILED, user_id=user_id, error=exc)
            if isinstance(exc, PasskeyError):
                raise
            raise RegistrationError(str(exc) or "Registration failed") from exc

        logger.info("Registered credential %s for user %s", credential.id, user_id)
        await self.events.emit(
            EventType.REGISTRATION_SUCCEEDED, user_id=user_id, credential_id=credential.id
        )
        return credential

    # ---------- Authentication ----------

    async def prepare_authentication(self, email: str | None = None) -> tuple[CeremonyOptions, str | None]:
        user_id = None
        allow: list[CredentialDescriptor] = []
        if email:
            validate_email(email)
            await self.events.emit(EventType.AUTHENTICATION_STARTED, email=email)
        with translate_errors(AuthenticationError):
            if email:
                user = await self.storage.get_user_by_email(email)
                if user is not None:
                    user_id = user.id
                    allow = _descriptors(await self.storage.get_user_credentials(user.id))
            options = await self.verifier.build_authentication_options(
                rp_id=self.config.rp_id,
                user_verification=self.config.user_verification,
                timeout_ms=self.config.timeout_ms,
                # no qualifying credentials: let the client pick (discoverable flow)
                allow_credentials=allow or None,
            )
        return options, user_id

    async def complete_authentication(
        self, response: Mapping[str, Any], expected_challenge: str
    ) -> tuple[str, Credential]:
        with translate_errors(AuthenticationError):
            credential_id = response.get("id") or response.get("rawId")
            credential = None
            if isinstance(credential_id, str):
                credential = await self.storage.get_credential_by_id(credential_id)
            if credential is None:
                raise AuthenticationError(
                    "Credential not found", dict(CREDENTIAL_UNKNOWN_TROUBLESHOOTING)
                )

            try:
                verification = await self.verifier.verify_authentication(
                    response=response,
                    expected_challenge=expected_challenge,
                    expected_origin=self.config.origin,
                    expected_rp_id=self.config.rp_id,
                    require_user_verification=self._require_uv,
                    credential=CredentialDescriptor(
                        id=credential.id,
                        public_key=credential.public_key,
                        counter=credential.counter,
                        transports=credential.transports or [],
                    ),
                )
                failure: Exception | None = None
                if not verification.verified:
                    failure = AuthenticationError(
                        "Authentication verification failed", dict(AUTHENTICATION_TROUBLESHOOTING)
                    )
            except PasskeyError:
                raise
            except Exception as exc:
                failure = AuthenticationError(
                    str(exc) or "Authentication verification failed",
                    dict(AUTHENTICATION_TROUBLESHOOTING),
                )
                failure.__cause__ = exc

            if failure is not None:
                await self._report_auth_failure(credential, failure)
                raise failure

            stored, reported = credential.counter, verification.new_counter
            if counter_regressed(stored, reported):
                logger.warning(
                    "Counter anomaly on credential %s: stored %d, received %d",
                    credential.id, stored, reported,
                )
                await self.events.emit(
                    EventType.COUNTER_ANOMALY,
                    user_id=credential.user_id,
                    credential_id=credential.id,
                    data={"expected": stored, "received": reported},
                )
                raise CounterAnomalyError(stored, reported)

            # a zero report never lowers the stored high-water mark
            updated = await self.storage.update_credential(
                credential.id,
                CredentialUpdate(counter=max(stored, reported), last_used_at=datetime.now(UTC)),
            )

        await self.events.emit(
            EventType.AUTHENTICATION_SUCCEEDED, user_id=updated.user_id, credential_id=updated.id
        )
        return updated.user_id, updated

    async def _report_auth_failure(self, credential: Credential, error: Exception) -> None:
        try:
            user = await self.storage.get_user_by_id(credential.user_id)
        except Exception:
            logger.exception("Could not resolve owner of credential %s", credential.id)
            user = None
        email = user.email if user else "unknown"
        logger.warning("Authentication failed for credential %s: %s", credential.id, error)
        await self.events.emit(
            EventType.AUTHENTICATION_FAILED,
            user_id=credential.user_id,
            credential_id=credential.id,
            email=email,
            error=error,
        )

    # ---------- Credential management ----------

    async def list_credentials(self, user_id: str) -> list[Credential]:
        with translate_errors(StorageError):
            return await self.storage.get_user_credentials(user_id)

    async def _owned_credential(self, user_id: str, credential_id: str) -> Credential:
        # missing and not-yours are one error on purpose
        with translate_errors(StorageError):
            credential = await self.storage.get_credential_by_id(credential_id)
        if credential is None or credential.user_id != user_id:
            raise CredentialNotFoundError(credential_id)
        return credential

    async def rename_credential(self, user_id: str, credential_id: str, label: str) -> Credential:
        label = validate_label(label)
        await self._owned_credential(user_id, credential_id)
        with translate_errors(StorageError):
            return await self.storage.update_credential(credential_id, CredentialUpdate(label=label))

    async def delete_credential(self, user_id: str, credential_id: str) -> None:
        await self._owned_credential(user_id, credential_id)
        with translate_errors(StorageError):
            remaining = await self.storage.get_user_credentials(user_id)
            if len(remaining) <= 1:
                raise ValidationError(
                    "Cannot delete the last passkey. At least one authentication method must remain."
                )
            await self.storage.delete_credential(credential_id)
        logger.info("Deleted credential %s of user %s", credential_id, user_id)
        await self.events.emit(EventType.CREDENTIAL_DELETED, user_id=user_id, credential_id=credential_id)

    async def update_credential_counter(self, credential_id: str, counter: int) -> Credential:
        if counter < 0:
            raise ValidationError("Counter must not be negative")
        with translate_errors(StorageError):
            return await self.storage.update_credential(credential_id, CredentialUpdate(counter=counter))
