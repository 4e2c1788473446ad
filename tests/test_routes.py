"""HTTP flows through the FastAPI adapter."""

import pytest
from httpx import ASGITransport, AsyncClient

from passkeys.config import Settings
from passkeys.main import create_app
from passkeys.security import issue_token
from passkeys.storage import MemoryStorage
from passkeys.testing import FakeCeremonyVerifier, authentication_response, registration_response

SECRET = "route-test-secret-of-32-bytes-or-more"


def _settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        JWT_SECRET=SECRET,
        CHALLENGE_BACKEND="memory",
        EMAIL_RECOVERY_ENABLED=True,
        RECOVERY_CODE_HASH_ROUNDS=4,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def outbox():
    return []


@pytest.fixture
def app_storage():
    return MemoryStorage()


@pytest.fixture
def app(app_storage, outbox):
    async def send_email(email, token, user_id):
        outbox.append((email, token))

    return create_app(
        _settings(),
        storage=app_storage,
        verifier=FakeCeremonyVerifier(),
        send_email=send_email,
    )


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def _register(client, email="a@example.com", counter=0):
    start = await client.post("/api/v1/register/start", json={"email": email})
    assert start.status_code == 200
    challenge = start.json()["options"]["challenge"]
    response = registration_response(challenge, transports=["internal"], counter=counter)
    finish = await client.post("/api/v1/register/finish", json={"response": response, "label": "Laptop"})
    assert finish.status_code == 200, finish.text
    return finish.json()["credential"]


async def _login(client, credential_id, counter, email="a@example.com"):
    start = await client.post("/api/v1/login/start", json={"email": email})
    challenge = start.json()["options"]["challenge"]
    return await client.post(
        "/api/v1/login/finish",
        json={"response": authentication_response(challenge, credential_id, counter=counter)},
    )


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestHealth:
    async def test_health(self, client):
        health = (await client.get("/api/v1/health")).json()
        assert health["status"] == "ok"
        assert health["rp_id"] == "localhost"
        assert (await client.get("/healthz")).json() == {"status": "ok", "db": "n/a"}

    async def test_healthz_with_sql_backend(self):
        app = create_app(
            _settings(CHALLENGE_BACKEND="sql", DATABASE_URL="sqlite://"),
            verifier=FakeCeremonyVerifier(),
            send_email=lambda email, token, user_id: None,
        )
        async with app.router.lifespan_context(app):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                assert (await client.get("/api/healthz")).json() == {"status": "ok", "db": "up"}
                await _register(client)


class TestRegistration:
    async def test_register_flow(self, client, app_storage):
        credential = await _register(client)

        assert credential["label"] == "Laptop"
        assert credential["transports"] == ["internal"]
        assert credential["id"] in app_storage.credentials

    async def test_challenge_cannot_be_replayed(self, client):
        start = await client.post("/api/v1/register/start", json={"email": "a@example.com"})
        response = registration_response(start.json()["options"]["challenge"])

        first = await client.post("/api/v1/register/finish", json={"response": response})
        second = await client.post("/api/v1/register/finish", json={"response": response})

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.headers["content-type"] == "application/problem+json"
        assert second.json()["code"] == "INVALID_CHALLENGE"

    async def test_invalid_email(self, client):
        response = await client.post("/api/v1/register/start", json={"email": "nope"})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize("email", ["a@b..c", "a@-bad-.com", "a@b.c."])
    async def test_malformed_email_is_a_problem_document(self, client, email):
        response = await client.post("/api/v1/register/start", json={"email": email})

        assert response.status_code == 400
        assert response.headers["content-type"] == "application/problem+json"
        problem = response.json()
        assert problem["code"] == "VALIDATION_ERROR"
        assert problem["errors"][0]["loc"] == ["body", "email"]


class TestLogin:
    async def test_login_returns_session_token(self, client):
        credential = await _register(client)

        response = await _login(client, credential["id"], counter=1)

        assert response.status_code == 200
        body = response.json()
        listed = await client.get("/api/v1/passkeys", headers=_bearer(body["token"]))
        assert [p["id"] for p in listed.json()["passkeys"]] == [credential["id"]]

    async def test_login_start_does_not_reveal_accounts(self, client):
        response = await client.post("/api/v1/login/start", json={"email": "nobody@example.com"})
        assert response.status_code == 200
        assert set(response.json()) == {"options"}

    async def test_counter_anomaly(self, client):
        credential = await _register(client, counter=100)

        response = await _login(client, credential["id"], counter=50)

        assert response.status_code == 401
        problem = response.json()
        assert problem["code"] == "COUNTER_ANOMALY"
        assert problem["expected"] == 100
        assert problem["received"] == 50

    async def test_unknown_credential(self, client):
        await _register(client)
        response = await _login(client, "unknown-credential", counter=1)
        assert response.status_code == 401
        assert response.json()["troubleshooting"] == "README.md#credential-not-found"


class TestManagement:
    async def test_requires_session(self, client):
        assert (await client.get("/api/v1/passkeys")).status_code == 401
        invalid = await client.get("/api/v1/passkeys", headers=_bearer("garbage"))
        assert invalid.status_code == 401
        assert invalid.json()["code"] == "AUTHENTICATION_FAILED"

    async def test_non_bearer_scheme_is_rejected(self, client):
        token = issue_token(sub="u1", secret=SECRET, ttl_seconds=60)
        response = await client.get("/api/v1/passkeys", headers={"Authorization": f"Basic {token}"})
        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_FAILED"

    async def test_bearer_scheme_is_documented(self, client):
        schema = (await client.get("/openapi.json")).json()
        assert schema["components"]["securitySchemes"]["HTTPBearer"]["scheme"] == "bearer"
        assert schema["paths"]["/api/v1/passkeys"]["get"]["security"] == [{"HTTPBearer": []}]

    async def test_rename_and_delete(self, client):
        first = await _register(client)
        second = await _register(client)
        token = (await _login(client, first["id"], counter=1)).json()["token"]

        renamed = await client.patch(
            f"/api/v1/passkeys/{first['id']}", json={"label": "Phone"}, headers=_bearer(token)
        )
        assert renamed.json()["credential"]["label"] == "Phone"

        deleted = await client.delete(f"/api/v1/passkeys/{second['id']}", headers=_bearer(token))
        assert deleted.status_code == 200

        last = await client.delete(f"/api/v1/passkeys/{first['id']}", headers=_bearer(token))
        assert last.status_code == 400
        assert "last passkey" in last.json()["detail"]

    async def test_other_users_passkey_is_not_found(self, client):
        mine = await _register(client, email="a@example.com")
        theirs = await _register(client, email="b@example.com")
        token = (await _login(client, mine["id"], counter=1)).json()["token"]

        response = await client.delete(f"/api/v1/passkeys/{theirs['id']}", headers=_bearer(token))
        assert response.status_code == 404
        assert response.json()["code"] == "CREDENTIAL_NOT_FOUND"


class TestRecovery:
    async def test_recovery_code_login(self, client):
        credential = await _register(client)
        token = (await _login(client, credential["id"], counter=1)).json()["token"]

        codes = (await client.post("/api/v1/recovery/codes/generate", headers=_bearer(token))).json()["codes"]
        assert len(codes) == 8

        body = {"email": "a@example.com", "code": codes[0]}
        recovered = await client.post("/api/v1/recovery/codes/authenticate", json=body)
        assert recovered.status_code == 200
        assert recovered.json()["token"]

        reused = await client.post("/api/v1/recovery/codes/authenticate", json=body)
        assert reused.status_code == 400
        assert reused.json()["code"] == "INVALID_RECOVERY_CODE"

        count = await client.get("/api/v1/recovery/codes/count", headers=_bearer(token))
        assert count.json() == {"count": 7}

    async def test_recovery_code_for_unknown_email(self, client):
        response = await client.post(
            "/api/v1/recovery/codes/authenticate", json={"email": "nobody@example.com", "code": "ABCDEF"}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_RECOVERY_CODE"

    async def test_email_recovery(self, client, outbox):
        await _register(client)

        known = await client.post("/api/v1/recovery/email/initiate", json={"email": "a@example.com"})
        unknown = await client.post("/api/v1/recovery/email/initiate", json={"email": "nobody@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        ((email, token),) = outbox
        assert email == "a@example.com"

        verified = await client.post("/api/v1/recovery/email/verify", json={"token": token})
        assert verified.status_code == 200
        assert verified.json()["token"]

        again = await client.post("/api/v1/recovery/email/verify", json={"token": token})
        assert again.status_code == 400
        assert again.json()["code"] == "INVALID_RECOVERY_TOKEN"


class TestUnexpectedErrors:
    async def test_rendered_as_internal_error(self, app):
        async def explode(user_id):
            raise RuntimeError("database exploded")

        app.state.services.recovery.code_count = explode
        token = issue_token(sub="u1", secret=SECRET, ttl_seconds=60)
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/v1/recovery/codes/count", headers=_bearer(token))

        assert response.status_code == 500
        assert response.json()["code"] == "INTERNAL_ERROR"
        assert "database exploded" not in response.text

    async def test_storage_failure_on_code_login(self):
        class Broken(MemoryStorage):
            async def get_user_by_email(self, email):
                raise RuntimeError("database exploded")

        app = create_app(
            _settings(),
            storage=Broken(),
            verifier=FakeCeremonyVerifier(),
            send_email=lambda email, token, user_id: None,
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post(
                "/api/v1/recovery/codes/authenticate", json={"email": "a@example.com", "code": "ABCDEF"}
            )

        assert response.status_code == 500
        assert response.headers["content-type"] == "application/problem+json"
        assert response.json()["code"] == "STORAGE_ERROR"
