"""Shared fixtures: in-memory backends, the fake verifier and a wired service bundle."""

import pytest

from passkeys.events import EventBus
from passkeys.services import PasskeyServices
from passkeys.storage import MemoryChallengeStorage, MemoryStorage
from passkeys.testing import FakeCeremonyVerifier, make_config


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def challenge_storage() -> MemoryChallengeStorage:
    return MemoryChallengeStorage()


@pytest.fixture
def verifier() -> FakeCeremonyVerifier:
    return FakeCeremonyVerifier()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded(events):
    """Every event emitted on the bus, in order."""
    seen = []
    events.subscribe_all(seen.append)
    return seen


@pytest.fixture
def sent_emails() -> list[tuple[str, str, str]]:
    return []


@pytest.fixture
def config(events, sent_emails):
    async def send_email(email: str, token: str, user_id: str) -> None:
        sent_emails.append((email, token, user_id))

    config = make_config(events=events)
    config.recovery.email.enabled = True
    config.recovery.email.send_email = send_email
    config.recovery.email.enumeration_delay_seconds = 0
    return config


@pytest.fixture
def services(config, storage, challenge_storage, verifier) -> PasskeyServices:
    return PasskeyServices.build(config, storage, challenge_storage, verifier)
