from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ratecard_recon import __version__
from ratecard_recon.api.routes import Engine, prediction_router, router
from ratecard_recon.db.repository import InMemoryRateCardRepository, RateCardRepository, RepositoryError
from ratecard_recon.ingest.tokenizer import ParseError
from ratecard_recon.models.config_models import AppConfig
from ratecard_recon.services.catalog import RateCardNotFound, RateCardValidationError
from ratecard_recon.services.sessions import SessionError, SessionSweeper, UploadSessionStore
from ratecard_recon.services.settlement import DomainInputError

"""FastAPI application factory.

Engine exceptions map to HTTP status codes here so route handlers stay
free of error plumbing:

    ParseError 400, DomainInputError 400, RateCardValidationError 400,
    RateCardNotFound 404, SessionError 410, RepositoryError 500
"""

__all__ = ["create_app"]

logger = logging.getLogger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ParseError)
    async def _parse_error(request: Request, exc: ParseError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(DomainInputError)
    async def _domain_error(request: Request, exc: DomainInputError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RateCardValidationError)
    async def _validation_error(request: Request, exc: RateCardValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "issues": exc.issues})

    @app.exception_handler(RateCardNotFound)
    async def _not_found(request: Request, exc: RateCardNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SessionError)
    async def _session_error(request: Request, exc: SessionError):
        return JSONResponse(
            status_code=410,
            content={"detail": str(exc), "analysis_id": exc.session_id, "action": "re-upload"},
        )

    @app.exception_handler(RepositoryError)
    async def _repository_error(request: Request, exc: RepositoryError):
        logger.error("repository: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Storage error", "error": str(exc)})


def create_app(
    config: AppConfig | None = None,
    repository: RateCardRepository | None = None,
    store: UploadSessionStore | None = None,
) -> FastAPI:
    config = config or AppConfig()
    repository = repository if repository is not None else InMemoryRateCardRepository()
    store = store or UploadSessionStore(
        ttl_seconds=config.sessions.ttl_seconds,
        capacity=config.sessions.capacity,
    )
    sweeper = SessionSweeper(store, config.sessions.sweep_interval_seconds)

    app = FastAPI(
        title="Rate Card Reconciliation API",
        description="Rate-card upload, conflict review and settlement prediction",
        version=__version__,
    )
    app.state.engine = Engine(config=config, repository=repository, store=store)
    app.state.sweeper = sweeper

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _start_sweeper():
        sweeper.start()
        logger.info("session sweeper started (every %ss)", sweeper.interval_seconds)

    @app.on_event("shutdown")
    async def _stop_sweeper():
        await sweeper.stop()

    @app.get("/health", tags=["system"])
    def health():
        return {"status": "ok"}

    _register_error_handlers(app)
    app.include_router(router)
    app.include_router(prediction_router)
    return app
