from .config import EmailRecoveryConfig, PasskeyConfig, RecoveryCodesConfig, RecoveryConfig, Settings, get_settings
from .errors import (
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
    RecoveryError,
    RegistrationError,
    StorageError,
    UserNotFoundError,
    ValidationError,
)
from .events import Event, EventBus, EventType
from .services import ChallengeService, PasskeyService, PasskeyServices, RecoveryService
from .verifier import CeremonyVerifier, Fido2Verifier

__version__ = "0.1.0"
