from .base import (
    CHALLENGE_STORAGE_METHODS,
    PASSKEY_STORAGE_METHODS,
    ChallengeStorage,
    PasskeyStorage,
)
from .memory import MemoryChallengeStorage, MemoryStorage

__all__ = [
    "CHALLENGE_STORAGE_METHODS",
    "PASSKEY_STORAGE_METHODS",
    "ChallengeStorage",
    "MemoryChallengeStorage",
    "MemoryStorage",
    "PasskeyStorage",
]
