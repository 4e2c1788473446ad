"""Error taxonomy and problem-details rendering."""

import pytest

from passkeys.errors import (
    AuthenticationError,
    ConfigurationError,
    CounterAnomalyError,
    CredentialNotFoundError,
    DuplicateCredentialError,
    DuplicateUserError,
    EmailDeliveryError,
    InvalidChallengeError,
    InvalidRecoveryCodeError,
    InvalidRecoveryTokenError,
    PasskeyError,
    RegistrationError,
    StorageError,
    UserNotFoundError,
    ValidationError,
    translate_errors,
)


@pytest.mark.parametrize(
    "error, code, status",
    [
        (ValidationError("bad"), "VALIDATION_ERROR", 400),
        (ConfigurationError("off"), "CONFIGURATION_ERROR", 400),
        (InvalidChallengeError(), "INVALID_CHALLENGE", 400),
        (RegistrationError("no"), "REGISTRATION_FAILED", 400),
        (AuthenticationError("no"), "AUTHENTICATION_FAILED", 401),
        (CounterAnomalyError(10, 5), "COUNTER_ANOMALY", 401),
        (CredentialNotFoundError("c1"), "CREDENTIAL_NOT_FOUND", 404),
        (UserNotFoundError("u1"), "USER_NOT_FOUND", 404),
        (DuplicateCredentialError("c1"), "DUPLICATE_CREDENTIAL", 409),
        (DuplicateUserError("a@example.com"), "DUPLICATE_USER", 409),
        (InvalidRecoveryCodeError(), "INVALID_RECOVERY_CODE", 400),
        (InvalidRecoveryTokenError(), "INVALID_RECOVERY_TOKEN", 400),
        (EmailDeliveryError("smtp"), "EMAIL_DELIVERY_FAILED", 502),
        (StorageError("down"), "STORAGE_ERROR", 500),
    ],
)
def test_codes_and_statuses(error, code, status):
    assert error.code == code
    assert error.status_code == status
    assert isinstance(error, PasskeyError)


def test_configuration_error_is_a_validation_error():
    assert issubclass(ConfigurationError, ValidationError)


def test_problem_details():
    problem = CounterAnomalyError(10, 5).to_problem_details()
    assert problem == {
        "type": "urn:passkeys:error:COUNTER_ANOMALY",
        "title": "Counter Anomaly",
        "status": 401,
        "detail": "Counter anomaly detected: expected more than 10, received 5",
        "code": "COUNTER_ANOMALY",
        "expected": 10,
        "received": 5,
    }


class TestTranslateErrors:
    def test_foreign_errors_are_wrapped(self):
        with pytest.raises(StorageError, match="disk full") as exc_info:
            with translate_errors(StorageError):
                raise OSError("disk full")
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_empty_message_falls_back_to_class_name(self):
        with pytest.raises(StorageError, match="KeyError"):
            with translate_errors(StorageError):
                raise KeyError()

    def test_taxonomy_errors_pass_through(self):
        original = CredentialNotFoundError("c1")
        with pytest.raises(CredentialNotFoundError) as exc_info:
            with translate_errors(StorageError):
                raise original
        assert exc_info.value is original
