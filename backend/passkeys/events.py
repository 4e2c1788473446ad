import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    REGISTRATION_STARTED = "registration.started"
    REGISTRATION_SUCCEEDED = "registration.succeeded"
    REGISTRATION_FAILED = "registration.failed"
    AUTHENTICATION_STARTED = "authentication.started"
    AUTHENTICATION_SUCCEEDED = "authentication.succeeded"
    AUTHENTICATION_FAILED = "authentication.failed"
    COUNTER_ANOMALY = "counter.anomaly"
    CREDENTIAL_DELETED = "credential.deleted"
    RECOVERY_CODES_REGENERATED = "recovery_codes.regenerated"
    RECOVERY_CODE_USED = "recovery_code.used"
    EMAIL_RECOVERY_REQUESTED = "email_recovery.requested"
    EMAIL_RECOVERY_COMPLETED = "email_recovery.completed"


@dataclass(frozen=True)
class Event:
    type: EventType
    user_id: str | None = None
    credential_id: str | None = None
    email: str | None = None
    error: BaseException | None = None
    data: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Event], Awaitable[None] | None]


class EventBus:
    """Fan-out of security events to registered listeners.

    Listeners run in registration order; type-specific listeners first, then
    the catch-all ones. A failing listener is logged and skipped so it can
    neither stop the fan-out nor replace the error the core is reporting.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = defaultdict(list)
        self._catch_all: list[Listener] = []

    def subscribe(self, event_type: EventType, listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def subscribe_all(self, listener: Listener) -> None:
        self._catch_all.append(listener)

    def unsubscribe(self, event_type: EventType, listener: Listener) -> None:
        try:
            self._listeners[event_type].remove(listener)
        except ValueError:
            pass

    def on(self, event_type: EventType) -> Callable[[Listener], Listener]:
        """Decorator form of :meth:`subscribe`."""

        def register(listener: Listener) -> Listener:
            self.subscribe(event_type, listener)
            return listener

        return register

    def listeners(self, event_type: EventType) -> list[Listener]:
        return [*self._listeners.get(event_type, []), *self._catch_all]

    async def emit(self, event_type: EventType, **fields: Any) -> Event:
        event = Event(type=event_type, **fields)
        for listener in self.listeners(event_type):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener %r failed for %s", listener, event_type.value)
        return event
