from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ChallengeType = Literal["registration", "authentication"]
DeviceType = Literal["single_device", "multi_device"]


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class User(_Record):
    id: str
    email: str
    created_at: datetime
    updated_at: datetime


class Credential(_Record):
    """A stored passkey. ``id`` is the base64url credential id."""

    id: str
    user_id: str
    public_key: str
    counter: int = 0
    device_type: DeviceType = "single_device"
    backed_up: bool = False
    transports: list[str] | None = None
    label: str | None = None
    last_used_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class NewCredential(BaseModel):
    id: str
    user_id: str
    public_key: str
    counter: int = 0
    device_type: DeviceType = "single_device"
    backed_up: bool = False
    transports: list[str] | None = None
    label: str | None = None


class CredentialUpdate(BaseModel):
    """Partial update; only fields that were set are applied."""

    counter: int | None = None
    label: str | None = None
    last_used_at: datetime | None = None


class Challenge(_Record):
    id: str
    challenge: str
    type: ChallengeType
    user_id: str | None = None
    email: str | None = None
    created_at: datetime
    expires_at: datetime


class NewChallenge(BaseModel):
    challenge: str
    type: ChallengeType
    user_id: str | None = None
    email: str | None = None
    expires_at: datetime


class RecoveryCode(_Record):
    id: str
    user_id: str
    code_hash: str
    used: bool = False
    used_at: datetime | None = None
    created_at: datetime


class NewRecoveryCode(BaseModel):
    user_id: str
    code_hash: str


class EmailRecoveryToken(_Record):
    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    used: bool = False
    used_at: datetime | None = None
    created_at: datetime


class NewEmailRecoveryToken(BaseModel):
    user_id: str
    token_hash: str
    expires_at: datetime


class CredentialDescriptor(BaseModel):
    """What the verifier needs to know about a stored credential."""

    id: str
    public_key: str | None = None
    counter: int = 0
    transports: list[str] = Field(default_factory=list)
