import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from broker.auth import models  # noqa: F401  registers tables on Base
from broker.auth.service import BrokerContext
from broker.core.config import Settings, load_settings
from broker.core.errors import BrokerError, InternalError
from broker.database.database import Base, make_engine, make_session_factory
from broker.routers import broker

logger = logging.getLogger(__name__)


def _log_error(request: Request, exc: BrokerError) -> None:
    where = f"{request.method} {request.url.path}"
    if isinstance(exc, InternalError):
        logger.error("%s failed: %r", where, exc)
    elif exc.status_code >= 500:
        logger.error("%s upstream failure: %r", where, exc)
    else:
        logger.info("%s rejected: %r", where, exc)


def create_app(settings: Optional[Settings] = None, http: Optional[httpx.AsyncClient] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        engine = make_engine(settings.database_url)
        Base.metadata.create_all(bind=engine)

        client = http or httpx.AsyncClient(timeout=settings.http_timeout)
        app.state.settings = settings
        app.state.session_factory = make_session_factory(engine)
        app.state.ctx = BrokerContext.build(settings, client)
        logger.info("Broker started, hydra admin at %s", settings.hydra_admin_url)
        try:
            yield
        finally:
            if http is None:
                await client.aclose()
            engine.dispose()

    app = FastAPI(title="Consent Broker", lifespan=lifespan)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BrokerError)
    async def broker_error_handler(request: Request, exc: BrokerError):
        _log_error(request, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("%s %s crashed", request.method, request.url.path)
        return JSONResponse(status_code=500, content=InternalError().to_dict())

    app.include_router(broker.router)
    return app
