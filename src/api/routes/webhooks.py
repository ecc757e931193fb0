# api/routes/webhooks.py

import json
import logging
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Union
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError, model_validator

from api.dependencies import AppContext, get_context

router = APIRouter()
logger = logging.getLogger(__name__)

# leads[update][0][id]=123
FORM_KEY = re.compile(r"^leads\[(add|update|status|delete)\]\[(\d+)\]\[(\w+)\]$")


# ─────────────────────────────────────────
# PAYLOAD
# ─────────────────────────────────────────

class LeadRef(BaseModel):
    id: int


class GroupedLeads(BaseModel):
    add: list[LeadRef] = []
    update: list[LeadRef] = []
    status: list[LeadRef] = []
    delete: list[LeadRef] = []


class WebhookPayload(BaseModel):
    """
    Deux formes acceptées :
    → {"leads": [{"id": 1}, ...]}
    → {"leads": {"update": [...], "status": [...], "delete": [...]}}
    """
    leads: Union[list[LeadRef], GroupedLeads]

    @model_validator(mode="after")
    def leads_not_empty(self) -> "WebhookPayload":
        if not self.sync_ids() and not self.deleted_ids():
            raise ValueError("Leads array is empty")
        return self

    def sync_ids(self) -> list[int]:
        if isinstance(self.leads, list):
            return [lead.id for lead in self.leads]
        grouped = self.leads
        return [lead.id for lead in grouped.add + grouped.update + grouped.status]

    def deleted_ids(self) -> list[int]:
        if isinstance(self.leads, list):
            return []
        return [lead.id for lead in self.leads.delete]


def parse_form_payload(body: str) -> dict:
    """
    Webhook amoCRM en x-www-form-urlencoded → forme groupée.
    Les clés hors leads[...] sont ignorées.
    """
    groups: dict = defaultdict(dict)

    for key, values in parse_qs(body).items():
        match = FORM_KEY.match(key)
        if not match or not values:
            continue
        event, index, field_name = match.groups()
        groups[event].setdefault(int(index), {})[field_name] = values[0]

    return {
        "leads": {
            event: [entries[i] for i in sorted(entries)]
            for event, entries in groups.items()
        }
    }


def _parse_body(body: bytes, content_type: str):
    text = body.decode("utf-8")
    if "application/x-www-form-urlencoded" in content_type:
        return parse_form_payload(text)
    return json.loads(text)


def _validation_messages(error: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in err['loc']) or 'payload'}: {err['msg']}"
        for err in error.errors()
    ]


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


# ─────────────────────────────────────────
# AMOCRM WEBHOOK
# ─────────────────────────────────────────

@router.post("/amocrm")
async def amocrm_webhook(
    request: Request,
    ctx: AppContext = Depends(get_context)
) -> JSONResponse:
    """
    Reçoit une livraison amoCRM.

    Chaque lead est traité dans l'ordre, indépendamment.
    Réponse 200 dès que la livraison est valide,
    même si certains leads ont échoué : le détail est dans results.
    """
    body = await request.body()
    content_type = request.headers.get("content-type", "")

    try:
        payload = WebhookPayload.model_validate(_parse_body(body, content_type))
    except ValidationError as e:
        logger.warning(f"[webhook] Payload invalide : {_validation_messages(e)}")
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid payload",
                "details": _validation_messages(e),
                "timestamp": _now(),
            }
        )
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"[webhook] Corps illisible : {e}")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid payload", "timestamp": _now()}
        )

    sync_ids = payload.sync_ids()
    deleted_ids = payload.deleted_ids()
    logger.info(
        f"[webhook] Livraison reçue : {len(sync_ids)} lead(s) à synchroniser, "
        f"{len(deleted_ids)} suppression(s)"
    )

    summary = await run_in_threadpool(
        ctx.orchestrator.process_delivery, sync_ids, deleted_ids
    )

    return JSONResponse(
        status_code=200,
        content={**summary.to_dict(), "timestamp": _now()}
    )


# ─────────────────────────────────────────
# HEALTH
# ─────────────────────────────────────────

@router.get("/health")
def webhook_health(ctx: AppContext = Depends(get_context)) -> JSONResponse:
    amo_healthy = ctx.crm.connect()

    try:
        ctx.store.stats()
        sheets_healthy = True
    except Exception as e:
        logger.error(f"[webhook] Health Google Sheets : {e}")
        sheets_healthy = False

    return JSONResponse(
        status_code=200 if amo_healthy and sheets_healthy else 503,
        content={
            "status": "OK" if amo_healthy and sheets_healthy else "ERROR",
            "timestamp": _now(),
            "services": {
                "amocrm": "OK" if amo_healthy else "ERROR",
                "googleSheets": "OK" if sheets_healthy else "ERROR",
            },
        }
    )
