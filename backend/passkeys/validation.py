import re
from urllib.parse import urlparse

from email_validator import EmailNotValidError
from email_validator import validate_email as check_email_syntax

from .errors import ValidationError

DOMAIN_RE = re.compile(r"^([a-z0-9]+(-[a-z0-9]+)*\.)+[a-z]{2,}$|^localhost$", re.IGNORECASE)
RECOVERY_CODE_RE = re.compile(r"^[A-Z0-9]+$")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

MAX_EMAIL_LENGTH = 255
MAX_LABEL_LENGTH = 100


def validate_email(email: str) -> None:
    if not email or not isinstance(email, str):
        raise ValidationError("Email is required")
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationError(f"Email too long (max {MAX_EMAIL_LENGTH} characters)")
    try:
        check_email_syntax(email, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("Invalid email format", {"reason": str(exc)}) from exc


def sanitize_string(value: str) -> str:
    return CONTROL_CHARS_RE.sub("", value).strip()


def validate_label(label: str) -> str:
    """Return the sanitised label or raise."""
    if not isinstance(label, str):
        raise ValidationError("Label is required")
    cleaned = sanitize_string(label)
    if not cleaned:
        raise ValidationError("Label is required")
    if len(cleaned) > MAX_LABEL_LENGTH:
        raise ValidationError(f"Label too long (max {MAX_LABEL_LENGTH} characters)")
    return cleaned


def normalize_recovery_code(code: str) -> str:
    """Strip whitespace and separators users add when typing a code back in."""
    if not code or not isinstance(code, str):
        raise ValidationError("Recovery code is required")
    normalized = re.sub(r"[\s-]", "", code).upper()
    if not normalized or not RECOVERY_CODE_RE.match(normalized):
        raise ValidationError("Invalid recovery code format")
    return normalized


def validate_rp_id(rp_id: str) -> None:
    if not rp_id or not isinstance(rp_id, str):
        raise ValidationError("RP ID is required")
    if not DOMAIN_RE.match(rp_id):
        raise ValidationError("RP ID must be a valid domain")


def validate_origin(origin: str) -> None:
    if not origin or not isinstance(origin, str):
        raise ValidationError("Origin is required")
    parsed = urlparse(origin)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValidationError("Origin must be an http(s) URL")
