# api/routes/admin.py

import logging
from datetime import datetime, timezone

import requests
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import AppContext, get_context
from models import RefreshResult

router = APIRouter()
logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


# ─────────────────────────────────────────
# STATUS
# ─────────────────────────────────────────

@router.get("/status")
def status(ctx: AppContext = Depends(get_context)) -> dict:
    """Vue d'ensemble. Aucune valeur de token n'est exposée."""
    amo_healthy = ctx.crm.connect()

    try:
        sheets = ctx.store.stats().to_dict()
    except Exception as e:
        logger.error(f"[sheets] Stats indisponibles : {e}")
        sheets = {"error": str(e)}

    return {
        "status": "OK",
        "timestamp": _now(),
        "environment": ctx.settings.environment,
        "services": {
            "amocrm": "OK" if amo_healthy else "ERROR",
            "googleSheets": "ERROR" if "error" in sheets else "OK",
        },
        "tokens": ctx.tokens.status(),
        "googleSheets": sheets,
        "config": ctx.settings.summary(),
    }


# ─────────────────────────────────────────
# TOKEN
# ─────────────────────────────────────────

@router.post("/token/refresh")
def refresh_token(ctx: AppContext = Depends(get_context)) -> JSONResponse:
    logger.info("[token] Refresh manuel demandé")
    result = ctx.tokens.force_refresh()

    if result == RefreshResult.REFRESHED:
        return JSONResponse(
            status_code=200,
            content={
                "success": True,
                "message": "Token refreshed successfully",
                "timestamp": _now(),
                "tokenStatus": ctx.tokens.status(),
            }
        )

    if result == RefreshResult.SKIPPED:
        return JSONResponse(
            status_code=409,
            content={
                "success": False,
                "error": "Token refresh already in progress",
                "timestamp": _now(),
                "tokenStatus": ctx.tokens.status(),
            }
        )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Token refresh failed",
            "timestamp": _now(),
            "tokenStatus": ctx.tokens.status(),
        }
    )


# ─────────────────────────────────────────
# TESTS DE CONNEXION
# ─────────────────────────────────────────

@router.get("/test/google-sheets")
def test_google_sheets(ctx: AppContext = Depends(get_context)) -> JSONResponse:
    try:
        stats = ctx.store.stats()
    except Exception as e:
        logger.error(f"[sheets] Test de connexion en échec : {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(e), "timestamp": _now()}
        )

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": "Google Sheets connection successful",
            "stats": stats.to_dict(),
            "timestamp": _now(),
        }
    )


@router.get("/test/amocrm")
def test_amocrm(ctx: AppContext = Depends(get_context)) -> JSONResponse:
    try:
        account = ctx.crm.get_account()
        pipelines = ctx.crm.get_pipelines()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"[amocrm] Test de connexion en échec : {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(e), "timestamp": _now()}
        )

    target = ctx.crm.find_pipeline_by_name(ctx.settings.target_pipeline_name)

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": "AMO CRM connection successful",
            "account": {
                "id": account.get("id"),
                "name": account.get("name"),
                "subdomain": account.get("subdomain"),
            },
            "pipelines": len(pipelines),
            "targetPipeline": (
                {"id": target.get("id"), "name": target.get("name")}
                if target else None
            ),
            "timestamp": _now(),
        }
    )
