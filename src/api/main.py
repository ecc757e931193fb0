# api/main.py

import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import AppContext, build_context
from api.routes import admin, sync, webhooks
from config import ConfigurationError, Settings
from scheduler import build_scheduler

# Charge .env en local uniquement (en prod les vars sont injectées)
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s : %(message)s",
)
logger = logging.getLogger("amo_sheets_sync.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("amo-sheets-sync : Démarrage")

    owned = getattr(app.state, "context", None) is None
    if owned:
        settings = Settings.from_env()
        errors = settings.validate()
        if errors:
            for error in errors:
                logger.error(f"[config] {error}")
            raise ConfigurationError("; ".join(errors))

        logger.info(f"[config] {settings.summary()}")
        context = build_context(settings)
        context.scheduler = build_scheduler(
            context.tokens,
            timezone=settings.scheduler_timezone
        )
        context.scheduler.start()
        app.state.context = context

    yield

    context = app.state.context
    if owned and context and context.scheduler:
        context.scheduler.shutdown(wait=False)
    logger.info("amo-sheets-sync : Arrêt")


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Sans context : construit depuis l'environnement au démarrage,
    avec le scheduler de refresh.
    Avec context : utilisé tel quel, pas de scheduler.
    """
    app = FastAPI(
        title="amo-sheets-sync",
        version="1.0.0",
        description="Synchronisation amoCRM → Google Sheets",
        lifespan=lifespan,
    )
    app.state.context = context

    # ─────────────────────────────────────────
    # ROUTES
    # ─────────────────────────────────────────
    app.include_router(webhooks.router, prefix="/webhook", tags=["webhook"])
    app.include_router(sync.router, prefix="/sync", tags=["sync"])
    app.include_router(admin.router, tags=["admin"])

    # ─────────────────────────────────────────
    # HEALTH
    # ─────────────────────────────────────────
    @app.get("/health")
    def health(request: Request) -> dict:
        ctx = request.app.state.context
        return {
            "status": "OK",
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "environment": ctx.settings.environment if ctx else None,
        }

    # ─────────────────────────────────────────
    # ERREURS GLOBALES
    # ─────────────────────────────────────────
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Erreur non gérée : {request.method} {request.url}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)},
        )

    return app


app = create_app()
