import logging
from functools import lru_cache
from typing import Any, Awaitable, Callable, List, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ValidationError
from .events import EventBus
from .security import MAX_RECOVERY_CODE_LENGTH
from .validation import validate_origin, validate_rp_id

logger = logging.getLogger(__name__)

UserVerification = Literal["required", "preferred", "discouraged"]
Attestation = Literal["none", "indirect", "direct", "enterprise"]
EmailSender = Callable[[str, str, str], Awaitable[None] | None]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite://"
    REDIS_URL: str = "redis://localhost:6379/0"
    CHALLENGE_BACKEND: Literal["redis", "sql", "memory"] = "sql"
    RP_ID: str = "localhost"
    RP_NAME: str = "Passkeys Demo RP"
    ORIGIN: str = "http://localhost:8080"
    ALLOWED_ORIGINS: str = "http://localhost:8080"
    JWT_SECRET: str = "change-me"
    JWT_TTL_SECONDS: int = 3600
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    USER_VERIFICATION: UserVerification = "preferred"
    ATTESTATION: Attestation = "none"
    CEREMONY_TIMEOUT_MS: int = 60000
    CHALLENGE_TTL_SECONDS: int = 300

    RECOVERY_CODE_COUNT: int = 8
    RECOVERY_CODE_LENGTH: int = 20
    RECOVERY_CODE_HASH_ROUNDS: int = 10
    EMAIL_RECOVERY_ENABLED: bool = False
    EMAIL_TOKEN_TTL_MINUTES: float = 60

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


class RecoveryCodesConfig(BaseModel):
    enabled: bool = True
    count: int = 8
    length: int = 20
    hash_rounds: int = 10


class EmailRecoveryConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    enabled: bool = False
    send_email: EmailSender | None = None
    token_ttl_minutes: float = 60
    # Wall-clock padding for unknown emails so the failure path takes about
    # as long as a real send.
    enumeration_delay_seconds: float = 0.1


class RecoveryConfig(BaseModel):
    codes: RecoveryCodesConfig = Field(default_factory=RecoveryCodesConfig)
    email: EmailRecoveryConfig = Field(default_factory=EmailRecoveryConfig)


class PasskeyConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    rp_id: str
    rp_name: str
    origin: str
    timeout_ms: int = 60000
    user_verification: UserVerification = "preferred"
    attestation: Attestation = "none"
    challenge_ttl_seconds: int = 300
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    events: EventBus = Field(default_factory=EventBus)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        send_email: EmailSender | None = None,
        events: EventBus | None = None,
    ) -> "PasskeyConfig":
        return cls(
            rp_id=settings.RP_ID,
            rp_name=settings.RP_NAME,
            origin=settings.ORIGIN,
            timeout_ms=settings.CEREMONY_TIMEOUT_MS,
            user_verification=settings.USER_VERIFICATION,
            attestation=settings.ATTESTATION,
            challenge_ttl_seconds=settings.CHALLENGE_TTL_SECONDS,
            recovery=RecoveryConfig(
                codes=RecoveryCodesConfig(
                    count=settings.RECOVERY_CODE_COUNT,
                    length=settings.RECOVERY_CODE_LENGTH,
                    hash_rounds=settings.RECOVERY_CODE_HASH_ROUNDS,
                ),
                email=EmailRecoveryConfig(
                    enabled=settings.EMAIL_RECOVERY_ENABLED,
                    send_email=send_email,
                    token_ttl_minutes=settings.EMAIL_TOKEN_TTL_MINUTES,
                ),
            ),
            events=events or EventBus(),
        )


class ConfigValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def validate_config(config: PasskeyConfig) -> ConfigValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    try:
        validate_rp_id(config.rp_id)
    except ValidationError as exc:
        errors.append(f"Invalid rp_id: {exc.message}")

    if not config.rp_name:
        errors.append("rp_name cannot be empty")
    elif len(config.rp_name) > 64:
        warnings.append("rp_name is longer than 64 characters; some authenticators truncate it")

    try:
        validate_origin(config.origin)
    except ValidationError as exc:
        errors.append(f"Invalid origin: {exc.message}")
    else:
        host = urlparse(config.origin).hostname or ""
        rp_id = config.rp_id.lower()
        if rp_id != "localhost" and host != rp_id and not host.endswith(f".{rp_id}"):
            warnings.append(
                f"Origin hostname ({host}) does not match rp_id ({rp_id}); verification will fail"
            )

    if config.timeout_ms <= 0:
        errors.append("timeout_ms must be positive")
    elif config.timeout_ms < 10000:
        warnings.append("timeout_ms is less than 10 seconds; ceremonies may take longer")
    elif config.timeout_ms > 300000:
        warnings.append("timeout_ms is greater than 5 minutes")

    if config.challenge_ttl_seconds <= 0:
        errors.append("challenge_ttl_seconds must be positive")

    codes = config.recovery.codes
    if codes.count <= 0:
        errors.append("recovery.codes.count must be positive")
    elif codes.count > 20:
        warnings.append("recovery.codes.count is greater than 20")
    if codes.length <= 0:
        errors.append("recovery.codes.length must be positive")
    elif codes.length > MAX_RECOVERY_CODE_LENGTH:
        errors.append(f"recovery.codes.length must be at most {MAX_RECOVERY_CODE_LENGTH} (bcrypt limit)")
    elif codes.length < 6:
        warnings.append("recovery.codes.length is less than 6; codes are easy to guess")
    elif codes.length > 20:
        warnings.append("recovery.codes.length is greater than 20")
    if not 4 <= codes.hash_rounds <= 31:
        errors.append("recovery.codes.hash_rounds must be between 4 and 31")

    email = config.recovery.email
    if email.enabled and email.send_email is None:
        errors.append("recovery.email.send_email is required when email recovery is enabled")
    if email.token_ttl_minutes <= 0:
        errors.append("recovery.email.token_ttl_minutes must be positive")
    elif email.enabled and email.token_ttl_minutes < 5:
        warnings.append("recovery.email.token_ttl_minutes is less than 5 minutes")
    elif email.token_ttl_minutes > 1440:
        warnings.append("recovery.email.token_ttl_minutes is greater than 24 hours")

    return ConfigValidationResult(valid=not errors, errors=errors, warnings=warnings)


def assert_valid_config(config: PasskeyConfig) -> None:
    result = validate_config(config)
    if not result.valid:
        raise ValidationError(
            f"Invalid configuration: {'; '.join(result.errors)}",
            {"errors": result.errors, "warnings": result.warnings},
        )
    for warning in result.warnings:
        logger.warning("Configuration warning: %s", warning)


def assert_valid_storage(storage: Any, required: tuple[str, ...], name: str = "storage") -> None:
    missing = [m for m in required if not callable(getattr(storage, m, None))]
    if missing:
        raise ValidationError(
            f"{name} is missing required methods: {', '.join(missing)}",
            {"missing": missing},
        )
