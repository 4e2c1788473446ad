"""Test helpers for applications embedding the passkey core.

``FakeCeremonyVerifier`` stands in for a real authenticator: it checks the
challenge, origin and ceremony type carried in ``clientDataJSON`` and reads
the credential material and counters from JSON blobs that the
``registration_response`` / ``authentication_response`` builders put where
a browser would put CBOR.
"""

import json
import secrets
from collections.abc import Mapping
from typing import Any

from .config import PasskeyConfig, RecoveryCodesConfig, RecoveryConfig
from .security import b64url_decode, b64url_encode, generate_challenge
from .verifier import (
    AuthenticationVerification,
    CeremonyOptions,
    CeremonyVerifier,
    RegistrationVerification,
)

TEST_ORIGIN = "http://localhost:8080"


def _encode_json(data: dict) -> str:
    return b64url_encode(json.dumps(data).encode())


def _decode_json(data: str) -> dict:
    return json.loads(b64url_decode(data))


def client_data(challenge: str, type: str, origin: str = TEST_ORIGIN) -> str:
    return _encode_json({"type": type, "challenge": challenge, "origin": origin})


def registration_response(
    challenge: str,
    *,
    credential_id: str | None = None,
    origin: str = TEST_ORIGIN,
    transports: list[str] | None = None,
    counter: int = 0,
    backup_eligible: bool = False,
    backed_up: bool = False,
) -> dict[str, Any]:
    credential_id = credential_id or b64url_encode(secrets.token_bytes(16))
    response: dict[str, Any] = {
        "clientDataJSON": client_data(challenge, "webauthn.create", origin),
        "attestationObject": _encode_json(
            {
                "publicKey": b64url_encode(b"fake-cose-key:" + credential_id.encode()),
                "counter": counter,
                "backupEligible": backup_eligible,
                "backedUp": backed_up,
            }
        ),
    }
    if transports is not None:
        response["transports"] = transports
    return {"id": credential_id, "rawId": credential_id, "type": "public-key", "response": response}


def authentication_response(
    challenge: str,
    credential_id: str,
    *,
    counter: int = 0,
    origin: str = TEST_ORIGIN,
) -> dict[str, Any]:
    return {
        "id": credential_id,
        "rawId": credential_id,
        "type": "public-key",
        "response": {
            "clientDataJSON": client_data(challenge, "webauthn.get", origin),
            "authenticatorData": _encode_json({"counter": counter}),
            "signature": b64url_encode(b"fake-signature"),
        },
    }


class FakeCeremonyVerifier(CeremonyVerifier):
    """Verifier double. Set ``reject`` to fail verification or ``error`` to raise."""

    def __init__(self) -> None:
        self.reject = False
        self.error: Exception | None = None
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def _check(self, response: Mapping[str, Any], type: str, challenge: str, origin: str) -> bool:
        if self.error is not None:
            raise self.error
        if self.reject:
            return False
        data = _decode_json(response["response"]["clientDataJSON"])
        return (
            data.get("type") == type
            and data.get("challenge") == challenge
            and data.get("origin") == origin
        )

    async def build_registration_options(self, **kwargs) -> CeremonyOptions:
        self.calls.append(("build_registration_options", kwargs))
        challenge = generate_challenge()
        options = {
            "challenge": challenge,
            "rp": {"id": kwargs["rp_id"], "name": kwargs["rp_name"]},
            "user": {
                "id": b64url_encode(kwargs["user_id"].encode()),
                "name": kwargs["user_name"],
                "displayName": kwargs["user_display_name"],
            },
            "excludeCredentials": [
                {"type": "public-key", "id": c.id, "transports": c.transports}
                for c in kwargs["exclude_credentials"]
            ],
            "attestation": kwargs["attestation"],
            "authenticatorSelection": {
                "residentKey": "preferred",
                "userVerification": kwargs["user_verification"],
            },
            "timeout": kwargs["timeout_ms"],
        }
        return CeremonyOptions(options=options, challenge=challenge)

    async def verify_registration(self, **kwargs) -> RegistrationVerification:
        self.calls.append(("verify_registration", kwargs))
        response = kwargs["response"]
        if not self._check(response, "webauthn.create", kwargs["expected_challenge"], kwargs["expected_origin"]):
            return RegistrationVerification(verified=False, error="client data mismatch")
        attestation = _decode_json(response["response"]["attestationObject"])
        return RegistrationVerification(
            verified=True,
            credential_id=response["id"],
            public_key=attestation["publicKey"],
            counter=attestation["counter"],
            device_type="multi_device" if attestation["backupEligible"] else "single_device",
            backed_up=attestation["backedUp"],
        )

    async def build_authentication_options(self, **kwargs) -> CeremonyOptions:
        self.calls.append(("build_authentication_options", kwargs))
        challenge = generate_challenge()
        options: dict[str, Any] = {
            "challenge": challenge,
            "rpId": kwargs["rp_id"],
            "userVerification": kwargs["user_verification"],
            "timeout": kwargs["timeout_ms"],
        }
        if kwargs["allow_credentials"]:
            options["allowCredentials"] = [
                {"type": "public-key", "id": c.id, "transports": c.transports}
                for c in kwargs["allow_credentials"]
            ]
        return CeremonyOptions(options=options, challenge=challenge)

    async def verify_authentication(self, **kwargs) -> AuthenticationVerification:
        self.calls.append(("verify_authentication", kwargs))
        response = kwargs["response"]
        credential = kwargs["credential"]
        if not self._check(response, "webauthn.get", kwargs["expected_challenge"], kwargs["expected_origin"]):
            return AuthenticationVerification(
                verified=False, new_counter=credential.counter, error="client data mismatch"
            )
        auth_data = _decode_json(response["response"]["authenticatorData"])
        return AuthenticationVerification(verified=True, new_counter=auth_data["counter"])


def make_config(**overrides: Any) -> PasskeyConfig:
    """Config with test defaults: localhost RP and the cheapest bcrypt cost."""
    values: dict[str, Any] = {
        "rp_id": "localhost",
        "rp_name": "Test App",
        "origin": TEST_ORIGIN,
        "recovery": RecoveryConfig(codes=RecoveryCodesConfig(hash_rounds=4)),
    }
    values.update(overrides)
    return PasskeyConfig(**values)
