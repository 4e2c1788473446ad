import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field

from ..config import Settings
from ..errors import AuthenticationError, PasskeyError, ValidationError
from ..schemas import Credential
from ..security import decode_token, issue_token
from ..services import PasskeyServices
from ..services.recovery import GENERIC_EMAIL_RECOVERY_MESSAGE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["webauthn"])

bearer_scheme = HTTPBearer(auto_error=False, description="Session token from a login or recovery route")


# ---------- Dependencies ----------
def get_services(request: Request) -> PasskeyServices:
    return request.app.state.services


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings_dep),
) -> str:
    """Resolve the caller from a Bearer session token issued by this service."""
    payload = decode_token(credentials.credentials, settings.JWT_SECRET) if credentials else None
    if not payload or "sub" not in payload:
        raise AuthenticationError("Authentication required")
    return payload["sub"]


def _session(user_id: str, settings: Settings) -> dict:
    return {
        "status": "ok",
        "userId": user_id,
        "token": issue_token(sub=user_id, secret=settings.JWT_SECRET, ttl_seconds=settings.JWT_TTL_SECONDS),
    }


def _credential_json(c: Credential) -> dict:
    return {
        "id": c.id,
        "label": c.label,
        "deviceType": c.device_type,
        "backedUp": c.backed_up,
        "transports": c.transports,
        "createdAt": c.created_at.isoformat(),
        "lastUsedAt": c.last_used_at.isoformat() if c.last_used_at else None,
    }


# ---------- Request bodies ----------
class EmailBody(BaseModel):
    email: EmailStr


class OptionalEmailBody(BaseModel):
    email: EmailStr | None = None


class RegisterFinishBody(BaseModel):
    response: dict[str, Any]
    label: str | None = Field(default=None, max_length=100)


class LoginFinishBody(BaseModel):
    response: dict[str, Any]


class RecoveryCodeBody(BaseModel):
    email: EmailStr
    code: str


class TokenBody(BaseModel):
    token: str


class LabelBody(BaseModel):
    label: str


class GenerateCodesBody(BaseModel):
    count: int | None = Field(default=None, gt=0, le=50)


# ---------- Registration ----------
@router.post("/register/start")
async def register_start(body: EmailBody, services: PasskeyServices = Depends(get_services)):
    options, user_id = await services.passkeys.prepare_registration(body.email)
    await services.challenges.record(options.challenge, "registration", user_id, body.email)
    return JSONResponse({"options": options.options, "userId": user_id})


@router.post("/register/finish")
async def register_finish(body: RegisterFinishBody, services: PasskeyServices = Depends(get_services)):
    challenge = await services.challenges.verify(body.response)
    if challenge.type != "registration" or not challenge.user_id:
        raise ValidationError("Challenge was not issued for registration")

    credential = await services.passkeys.complete_registration(
        body.response, challenge.challenge, challenge.user_id, body.label
    )
    await services.challenges.retire(challenge.id)
    return {"status": "ok", "credential": _credential_json(credential)}


# ---------- Authentication ----------
@router.post("/login/start")
async def login_start(body: OptionalEmailBody, services: PasskeyServices = Depends(get_services)):
    options, user_id = await services.passkeys.prepare_authentication(body.email)
    await services.challenges.record(options.challenge, "authentication", user_id, body.email)
    # user id is not echoed back: it would reveal which emails are registered
    return JSONResponse({"options": options.options})


@router.post("/login/finish")
async def login_finish(
    body: LoginFinishBody,
    services: PasskeyServices = Depends(get_services),
    settings: Settings = Depends(get_settings_dep),
):
    challenge = await services.challenges.verify(body.response)
    if challenge.type != "authentication":
        raise ValidationError("Challenge was not issued for authentication")

    user_id, _ = await services.passkeys.complete_authentication(body.response, challenge.challenge)
    await services.challenges.retire(challenge.id)
    return _session(user_id, settings)


# ---------- Recovery ----------
@router.post("/recovery/codes/authenticate")
async def recovery_code_login(
    body: RecoveryCodeBody,
    services: PasskeyServices = Depends(get_services),
    settings: Settings = Depends(get_settings_dep),
):
    user_id = await services.recovery.verify_code_for_email(body.email, body.code)
    return _session(user_id, settings)


@router.post("/recovery/email/initiate")
async def email_recovery_initiate(body: EmailBody, services: PasskeyServices = Depends(get_services)):
    try:
        await services.recovery.initiate(body.email)
    except PasskeyError as exc:
        # every outcome renders the same response
        logger.info("Email recovery not initiated: %s", exc.code)
    return {"status": "ok", "message": GENERIC_EMAIL_RECOVERY_MESSAGE}


@router.post("/recovery/email/verify")
async def email_recovery_verify(
    body: TokenBody,
    services: PasskeyServices = Depends(get_services),
    settings: Settings = Depends(get_settings_dep),
):
    user_id = await services.recovery.verify_token(body.token)
    return _session(user_id, settings)


# ---------- Management (requires session) ----------
@router.get("/passkeys")
async def list_passkeys(
    user_id: str = Depends(current_user_id), services: PasskeyServices = Depends(get_services)
):
    credentials = await services.passkeys.list_credentials(user_id)
    return {"passkeys": [_credential_json(c) for c in credentials]}


@router.patch("/passkeys/{credential_id}")
async def rename_passkey(
    credential_id: str,
    body: LabelBody,
    user_id: str = Depends(current_user_id),
    services: PasskeyServices = Depends(get_services),
):
    credential = await services.passkeys.rename_credential(user_id, credential_id, body.label)
    return {"status": "ok", "credential": _credential_json(credential)}


@router.delete("/passkeys/{credential_id}")
async def delete_passkey(
    credential_id: str,
    user_id: str = Depends(current_user_id),
    services: PasskeyServices = Depends(get_services),
):
    await services.passkeys.delete_credential(user_id, credential_id)
    return {"status": "ok"}


@router.post("/recovery/codes/generate")
async def generate_recovery_codes(
    body: GenerateCodesBody | None = None,
    user_id: str = Depends(current_user_id),
    services: PasskeyServices = Depends(get_services),
):
    codes = await services.recovery.generate_codes(user_id, count=body.count if body else None)
    return {"codes": codes}


@router.get("/recovery/codes/count")
async def recovery_code_count(
    user_id: str = Depends(current_user_id), services: PasskeyServices = Depends(get_services)
):
    return {"count": await services.recovery.code_count(user_id)}
