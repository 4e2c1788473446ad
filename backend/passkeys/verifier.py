"""Ceremony verification: the cryptographic half of WebAuthn.

The services only talk to :class:`CeremonyVerifier`. :class:`Fido2Verifier`
is the production implementation on top of the ``fido2`` package; tests use
``passkeys.testing.FakeCeremonyVerifier``.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import Enum
from typing import Any, Literal

import cbor2
from fido2.cose import CoseKey
from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    Aaguid,
    AttestationConveyancePreference,
    AttestedCredentialData,
    AuthenticationResponse,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    RegistrationResponse,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)
from pydantic import BaseModel

from .schemas import CredentialDescriptor, DeviceType
from .security import generate_challenge

logger = logging.getLogger(__name__)


class CeremonyOptions(BaseModel):
    """Options for the browser plus the challenge value embedded in them."""

    options: dict[str, Any]
    challenge: str


class RegistrationVerification(BaseModel):
    verified: bool
    credential_id: str | None = None
    public_key: str | None = None
    counter: int = 0
    device_type: DeviceType = "single_device"
    backed_up: bool = False
    error: str | None = None


class AuthenticationVerification(BaseModel):
    verified: bool
    new_counter: int = 0
    error: str | None = None


class CeremonyVerifier(ABC):
    @abstractmethod
    async def build_registration_options(
        self,
        *,
        rp_id: str,
        rp_name: str,
        user_id: str,
        user_name: str,
        user_display_name: str,
        exclude_credentials: list[CredentialDescriptor],
        attestation: str,
        user_verification: str,
        timeout_ms: int,
    ) -> CeremonyOptions: ...

    @abstractmethod
    async def verify_registration(
        self,
        *,
        response: Mapping[str, Any],
        expected_challenge: str,
        expected_origin: str,
        expected_rp_id: str,
        require_user_verification: bool,
    ) -> RegistrationVerification: ...

    @abstractmethod
    async def build_authentication_options(
        self,
        *,
        rp_id: str,
        user_verification: str,
        timeout_ms: int,
        allow_credentials: list[CredentialDescriptor] | None,
    ) -> CeremonyOptions: ...

    @abstractmethod
    async def verify_authentication(
        self,
        *,
        response: Mapping[str, Any],
        expected_challenge: str,
        expected_origin: str,
        expected_rp_id: str,
        require_user_verification: bool,
        credential: CredentialDescriptor,
    ) -> AuthenticationVerification: ...


def to_json(value: Any) -> Any:
    """Turn fido2 option objects into plain JSON data (bytes as base64url)."""
    if isinstance(value, bytes):
        return websafe_encode(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {k: to_json(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return value


def _descriptor(cred: CredentialDescriptor) -> PublicKeyCredentialDescriptor:
    return PublicKeyCredentialDescriptor(
        type=PublicKeyCredentialType.PUBLIC_KEY,
        id=websafe_decode(cred.id),
        transports=cred.transports or None,
    )


def _attested(cred: CredentialDescriptor) -> AttestedCredentialData:
    # public_key is base64url(CBOR(COSE map))
    cose_key = CoseKey.parse(cbor2.loads(websafe_decode(cred.public_key)))
    return AttestedCredentialData.create(
        aaguid=Aaguid.NONE, credential_id=websafe_decode(cred.id), public_key=cose_key
    )


def _state(challenge: str, required: bool) -> dict:
    return {
        "challenge": challenge,
        "user_verification": UserVerificationRequirement.REQUIRED if required else None,
    }


class Fido2Verifier(CeremonyVerifier):
    def _server(
        self,
        rp_id: str,
        rp_name: str | None = None,
        origin: str | None = None,
        attestation: str | None = None,
    ) -> Fido2Server:
        rp = PublicKeyCredentialRpEntity(id=rp_id, name=rp_name or rp_id)
        verify_origin = (lambda o: o == origin) if origin else None
        return Fido2Server(
            rp,
            attestation=AttestationConveyancePreference(attestation) if attestation else None,
            verify_origin=verify_origin,
        )

    async def build_registration_options(
        self,
        *,
        rp_id,
        rp_name,
        user_id,
        user_name,
        user_display_name,
        exclude_credentials,
        attestation,
        user_verification,
        timeout_ms,
    ) -> CeremonyOptions:
        server = self._server(rp_id, rp_name, attestation=attestation)
        server.timeout = timeout_ms
        challenge = generate_challenge()
        user = PublicKeyCredentialUserEntity(
            id=user_id.encode(), name=user_name, display_name=user_display_name
        )
        options, _ = server.register_begin(
            user=user,
            credentials=[_descriptor(c) for c in exclude_credentials],  # excludeCredentials
            resident_key_requirement=ResidentKeyRequirement.PREFERRED,
            user_verification=UserVerificationRequirement(user_verification),
            challenge=websafe_decode(challenge),
        )
        return CeremonyOptions(options=to_json(dict(options.public_key)), challenge=challenge)

    async def verify_registration(
        self,
        *,
        response,
        expected_challenge,
        expected_origin,
        expected_rp_id,
        require_user_verification,
    ) -> RegistrationVerification:
        server = self._server(expected_rp_id, origin=expected_origin)
        try:
            auth_data = server.register_complete(
                _state(expected_challenge, require_user_verification),
                RegistrationResponse.from_dict(dict(response)),
            )
        except ValueError as exc:
            logger.debug("fido2 rejected registration: %s", exc)
            return RegistrationVerification(verified=False, error=str(exc))

        cred = auth_data.credential_data
        device_type: Literal["single_device", "multi_device"] = (
            "multi_device" if auth_data.is_backup_eligible() else "single_device"
        )
        return RegistrationVerification(
            verified=True,
            credential_id=websafe_encode(cred.credential_id),
            public_key=websafe_encode(cbor2.dumps(dict(cred.public_key))),
            counter=auth_data.counter,
            device_type=device_type,
            backed_up=auth_data.is_backed_up(),
        )

    async def build_authentication_options(
        self, *, rp_id, user_verification, timeout_ms, allow_credentials
    ) -> CeremonyOptions:
        server = self._server(rp_id)
        server.timeout = timeout_ms
        challenge = generate_challenge()
        options, _ = server.authenticate_begin(
            credentials=[_descriptor(c) for c in allow_credentials] if allow_credentials else None,
            user_verification=UserVerificationRequirement(user_verification),
            challenge=websafe_decode(challenge),
        )
        return CeremonyOptions(options=to_json(dict(options.public_key)), challenge=challenge)

    async def verify_authentication(
        self,
        *,
        response,
        expected_challenge,
        expected_origin,
        expected_rp_id,
        require_user_verification,
        credential,
    ) -> AuthenticationVerification:
        server = self._server(expected_rp_id, origin=expected_origin)
        try:
            parsed = AuthenticationResponse.from_dict(dict(response))
            server.authenticate_complete(
                _state(expected_challenge, require_user_verification),
                [_attested(credential)],
                parsed,
            )
        except ValueError as exc:
            logger.debug("fido2 rejected assertion: %s", exc)
            return AuthenticationVerification(
                verified=False, new_counter=credential.counter, error=str(exc)
            )
        return AuthenticationVerification(
            verified=True, new_counter=parsed.response.authenticator_data.counter
        )
