# api/routes/sync.py

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.dependencies import AppContext, get_context
from models import SkipReason

router = APIRouter()
logger = logging.getLogger(__name__)


class ManualSyncRequest(BaseModel):
    dealId: Optional[int] = None
    force: bool = False


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _elapsed(started: float) -> str:
    return f"{int((time.monotonic() - started) * 1000)}ms"


# ─────────────────────────────────────────
# SYNC D'UN DEAL
# ─────────────────────────────────────────

@router.post("/deal/{deal_id}")
def sync_specific_deal(
    deal_id: int,
    ctx: AppContext = Depends(get_context)
) -> JSONResponse:
    started = time.monotonic()

    try:
        result = ctx.orchestrator.sync_deal(deal_id, triggered_by="manual_api")
    except Exception as e:
        logger.error(f"[sync] Sync manuelle en échec pour {deal_id} : {e}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(e),
                "dealId": deal_id,
                "processingTime": _elapsed(started),
                "timestamp": _now(),
            }
        )

    if result.reason == SkipReason.NOT_FOUND.value:
        return JSONResponse(
            status_code=404,
            content={
                "error": f"Deal {deal_id} not found in AMO CRM",
                "timestamp": _now(),
            }
        )

    content = {
        **result.to_dict(),
        "dealId": deal_id,
        "processingTime": _elapsed(started),
        "timestamp": _now(),
    }
    content.pop("leadId", None)
    return JSONResponse(status_code=200, content=content)


# ─────────────────────────────────────────
# SYNC MANUELLE
# ─────────────────────────────────────────

@router.post("/manual")
def manual_sync(
    body: ManualSyncRequest,
    ctx: AppContext = Depends(get_context)
) -> JSONResponse:
    if body.dealId is not None:
        return sync_specific_deal(body.dealId, ctx)

    logger.info("[sync] Sync globale demandée : non disponible")
    return JSONResponse(
        status_code=501,
        content={
            "error": "Bulk sync not implemented yet",
            "suggestion": "Use /sync/deal/{dealId} for specific deal sync",
            "timestamp": _now(),
        }
    )
