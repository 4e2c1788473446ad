from contextlib import contextmanager
from typing import Any, Callable, Iterator

PROBLEM_TYPE_PREFIX = "urn:passkeys:error:"


class PasskeyError(Exception):
    """Base class for every error surfaced by the passkey core.

    Each subclass pins a stable machine-readable ``code`` and an HTTP-style
    ``status_code`` so transport adapters can branch without string matching.
    """

    code = "PASSKEY_ERROR"
    status_code = 500
    title = "Passkey Error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_problem_details(self) -> dict[str, Any]:
        """Render as an RFC 7807 problem document."""
        problem = {
            "type": f"{PROBLEM_TYPE_PREFIX}{self.code}",
            "title": self.title,
            "status": self.status_code,
            "detail": self.message,
            "code": self.code,
        }
        problem.update(self.details)
        return problem


class ValidationError(PasskeyError):
    code = "VALIDATION_ERROR"
    status_code = 400
    title = "Validation Error"


class ConfigurationError(ValidationError):
    code = "CONFIGURATION_ERROR"
    title = "Configuration Error"


class InvalidChallengeError(PasskeyError):
    code = "INVALID_CHALLENGE"
    status_code = 400
    title = "Invalid Challenge"

    def __init__(self, message: str = "Challenge is invalid or expired"):
        super().__init__(message)


class RegistrationError(PasskeyError):
    code = "REGISTRATION_FAILED"
    status_code = 400
    title = "Registration Failed"


class AuthenticationError(PasskeyError):
    code = "AUTHENTICATION_FAILED"
    status_code = 401
    title = "Authentication Failed"


class CounterAnomalyError(PasskeyError):
    """Signature counter went backwards: the credential may have been cloned."""

    code = "COUNTER_ANOMALY"
    status_code = 401
    title = "Counter Anomaly"

    def __init__(self, expected: int, received: int):
        super().__init__(
            f"Counter anomaly detected: expected more than {expected}, received {received}",
            {"expected": expected, "received": received},
        )
        self.expected = expected
        self.received = received

class CredentialNotFoundError(PasskeyError):
    code = "CREDENTIAL_NOT_FOUND"
    status_code = 404
    title = "Credential Not Found"

    def __init__(self, credential_id: str):
        super().__init__(f"Credential not found: {credential_id}")
        self.credential_id = credential_id

class UserNotFoundError(PasskeyError):
    code = "USER_NOT_FOUND"
    status_code = 404
    title = "User Not Found"

    def __init__(self, identifier: str):
        super().__init__(f"User not found: {identifier}")

class DuplicateUserError(PasskeyError):
    code = "DUPLICATE_USER"
    status_code = 409
    title = "Duplicate User"

    def __init__(self, email: str):
        super().__init__(f"User with email {email} already exists")

class DuplicateCredentialError(PasskeyError):
    code = "DUPLICATE_CREDENTIAL"
    status_code = 409
    title = "Duplicate Credential"

    def __init__(self, credential_id: str):
        super().__init__(f"Credential already registered: {credential_id}")
        self.credential_id = credential_id

class RecoveryError(PasskeyError):
    status_code = 400
    title = "Recovery Failed"

class InvalidRecoveryCodeError(RecoveryError):
    code = "INVALID_RECOVERY_CODE"
    title = "Invalid Recovery Code"

    def __init__(self, message: str = "Invalid or already used recovery code"):
        super().__init__(message)

class InvalidRecoveryTokenError(RecoveryError):
    code = "INVALID_RECOVERY_TOKEN"
    title = "Invalid Recovery Token"

    def __init__(self, message: str = "Invalid or expired recovery token"):
        super().__init__(message)

class EmailDeliveryError(RecoveryError):
    code = "EMAIL_DELIVERY_FAILED"
    status_code = 502
    title = "Email Delivery Failed"

class StorageError(PasskeyError):
    code = "STORAGE_ERROR"
    status_code = 500
    title = "Storage Error"

@contextmanager
def translate_errors(factory: Callable[[str], PasskeyError]) -> Iterator[None]:
    """Re-raise foreign exceptions as ``factory(message)``.

    Errors that are already part of the taxonomy pass through untouched.
    """
    try:
        yield
    except PasskeyError:
        raise
    except Exception as exc:
        raise factory(str(exc) or exc.__class__.__name__) from exc

# Troubleshooting details attached to ceremony failures. The anchors point
# into the README troubleshooting section.
REGISTRATION_TROUBLESHOOTING = {
    "troubleshooting": "README.md#registration-verification",
    "common_causes": [
        "Browser not supporting WebAuthn",
        "HTTPS required in production (localhost exception for development)",
        "Origin mismatch between rp_id and request origin",
        "User cancelled the registration",
        "Authenticator error or timeout",
    ],
    "solutions": [
        "Ensure you are using HTTPS in production",
        "Verify rp_id matches your domain",
        "Check browser console for WebAuthn errors",
        "Try a different browser or device",
    ],
}

CREDENTIAL_UNKNOWN_TROUBLESHOOTING = {
    "troubleshooting": "README.md#credential-not-found",
    "common_causes": [
        "Passkey was deleted",
        "User is using a different device",
        "Browser cleared stored credentials",
    ],
    "solutions": [
        "Ask the user to register a new passkey",
        "Offer a recovery code or email recovery",
    ],
}

AUTHENTICATION_TROUBLESHOOTING = {
    "troubleshooting": "README.md#authentication-verification",
    "common_causes": [
        "Origin mismatch between rp_id and request origin",
        "User cancelled the authentication",
        "Challenge expired (5 minute TTL)",
        "Signature did not match the stored public key",
    ],
    "solutions": [
        "Ensure you are using HTTPS in production",
        "Verify rp_id matches your domain",
        "Generate a new challenge if expired",
    ],
}
