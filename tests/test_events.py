"""EventBus fan-out and failure isolation."""

from passkeys.events import Event, EventBus, EventType


class TestEventBus:
    async def test_listeners_run_in_order(self):
        bus = EventBus()
        calls = []
        bus.subscribe(EventType.REGISTRATION_STARTED, lambda e: calls.append("first"))
        bus.subscribe(EventType.REGISTRATION_STARTED, lambda e: calls.append("second"))
        bus.subscribe_all(lambda e: calls.append("all"))

        event = await bus.emit(EventType.REGISTRATION_STARTED, user_id="u1", email="a@example.com")

        assert calls == ["first", "second", "all"]
        assert event == Event(type=EventType.REGISTRATION_STARTED, user_id="u1", email="a@example.com")

    async def test_async_listeners_are_awaited(self):
        bus = EventBus()
        seen = []

        @bus.on(EventType.COUNTER_ANOMALY)
        async def record(event):
            seen.append(event.data)

        await bus.emit(EventType.COUNTER_ANOMALY, data={"expected": 5, "received": 3})
        assert seen == [{"expected": 5, "received": 3}]

    async def test_other_types_are_not_delivered(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.RECOVERY_CODE_USED, seen.append)

        await bus.emit(EventType.CREDENTIAL_DELETED, user_id="u1")
        assert seen == []

    async def test_failing_listener_is_isolated(self, caplog):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        async def broken_async(event):
            raise ValueError("async boom")

        bus.subscribe(EventType.AUTHENTICATION_FAILED, broken)
        bus.subscribe(EventType.AUTHENTICATION_FAILED, broken_async)
        bus.subscribe(EventType.AUTHENTICATION_FAILED, seen.append)

        await bus.emit(EventType.AUTHENTICATION_FAILED, email="unknown")

        assert len(seen) == 1
        assert "failed for authentication.failed" in caplog.text

    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.RECOVERY_CODE_USED, seen.append)
        bus.unsubscribe(EventType.RECOVERY_CODE_USED, seen.append)
        bus.unsubscribe(EventType.RECOVERY_CODE_USED, seen.append)

        await bus.emit(EventType.RECOVERY_CODE_USED)
        assert seen == []
        assert bus.listeners(EventType.RECOVERY_CODE_USED) == []

    def test_event_types_are_strings(self):
        assert EventType.EMAIL_RECOVERY_REQUESTED == "email_recovery.requested"
