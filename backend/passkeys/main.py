import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__, models  # noqa: F401  models registers the ORM tables
from .config import EmailSender, PasskeyConfig, Settings, get_settings
from .db import Base, db_ping, make_engine, make_session_factory
from .errors import PROBLEM_TYPE_PREFIX, PasskeyError, ValidationError
from .routes import core, fido
from .services import PasskeyServices
from .storage import ChallengeStorage, MemoryChallengeStorage, PasskeyStorage
from .storage.redis_store import RedisChallengeStorage
from .storage.sql import SqlStorage
from .verifier import CeremonyVerifier, Fido2Verifier

logger = logging.getLogger(__name__)

PROBLEM_JSON = "application/problem+json"


def create_app(
    settings: Settings | None = None,
    *,
    storage: PasskeyStorage | None = None,
    challenges: ChallengeStorage | None = None,
    verifier: CeremonyVerifier | None = None,
    send_email: EmailSender | None = None,
) -> FastAPI:
    """Build the relying-party API.

    Backends default to what ``settings`` describes: SQL for users and
    credentials, and ``CHALLENGE_BACKEND`` for challenges. Anything passed
    explicitly wins. Run with ``uvicorn passkeys.main:create_app --factory``.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    engine = None
    if storage is None or (challenges is None and settings.CHALLENGE_BACKEND == "sql"):
        engine = make_engine(settings.DATABASE_URL)
        sql = SqlStorage(make_session_factory(engine))
        storage = storage or sql
    if challenges is None:
        if settings.CHALLENGE_BACKEND == "redis":
            challenges = RedisChallengeStorage.from_url(settings.REDIS_URL)
        elif settings.CHALLENGE_BACKEND == "memory":
            challenges = MemoryChallengeStorage()
        else:
            challenges = sql

    config = PasskeyConfig.from_settings(settings, send_email=send_email)
    services = PasskeyServices.build(config, storage, challenges, verifier or Fido2Verifier())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            # tables are created on startup (no migrations yet)
            Base.metadata.create_all(bind=engine)
        logger.info("Passkey API ready for RP %s (%s)", settings.RP_ID, settings.ENV)
        yield
        if isinstance(challenges, RedisChallengeStorage):
            await challenges.close()
        if engine is not None:
            engine.dispose()

    app = FastAPI(title="Passkeys Backend", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.config = config
    app.state.services = services
    app.state.storage = storage
    app.state.challenges = challenges

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PasskeyError)
    async def passkey_error_handler(request: Request, exc: PasskeyError):
        return JSONResponse(exc.to_problem_details(), status_code=exc.status_code, media_type=PROBLEM_JSON)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
        logger.info("Rejected request body on %s: %s", request.url.path, errors)
        return await passkey_error_handler(request, ValidationError("Invalid request body", {"errors": errors}))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        body = {
            "type": f"{PROBLEM_TYPE_PREFIX}INTERNAL_ERROR",
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
        }
        return JSONResponse(body, status_code=500, media_type=PROBLEM_JSON)

    @app.get("/healthz")
    def healthz():
        return {
            "status": "ok",
            "db": ("up" if db_ping(engine) else "down") if engine is not None else "n/a",
        }

    # gateway proxies that keep the /api prefix
    @app.get("/api/healthz")
    def healthz_alias():
        return healthz()

    app.include_router(core.router)
    app.include_router(fido.router)

    @app.get("/")
    def root():
        return {"service": "passkeys", "version": __version__}

    return app
