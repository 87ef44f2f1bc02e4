"""
FastAPI application factory.

Run with:
    uvicorn otpgate.main:app
"""
import logging

from fastapi import FastAPI

from . import __version__
from .core.config import validate_config
from .db import Base, get_engine
from .exception_handlers import register_exception_handlers
from .routers import account, auth

logger = logging.getLogger(__name__)


def create_app(create_tables: bool = False) -> FastAPI:
    validate_config()

    app = FastAPI(title="otpgate", version=__version__)
    register_exception_handlers(app)
    app.include_router(auth.router)
    app.include_router(account.router)
    app.include_router(account.admin_router)

    if create_tables:
        Base.metadata.create_all(bind=get_engine())
        logger.info("[Startup] Database tables created")

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    return app


app = create_app()
