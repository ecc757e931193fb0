# services/formatter.py

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Optional

from models import Deal, FormattedRow, RowStatus, SOURCE_TAG, UNKNOWN_STAGE

logger = logging.getLogger(__name__)

LOOKUP_WORKERS = 8


def format_timestamp(value) -> str:
    """
    Timestamp → texte ISO 8601 UTC.

    amoCRM envoie des secondes epoch.
    Au-delà de 1e12 on considère des millisecondes.
    Valeur absente ou illisible → chaîne vide.
    """
    if not value:
        return ""

    try:
        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, (int, float)):
            seconds = value / 1000 if value >= 1e12 else value
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        else:
            s = str(value).strip()
            if s.isdigit():
                return format_timestamp(int(s))
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).isoformat()

    except (ValueError, TypeError, OSError, OverflowError):
        return ""


def stage_name(deal: Deal, pipelines: list[dict]) -> str:
    pipeline = next(
        (p for p in pipelines if p.get("id") == deal.pipeline_id), None
    )
    if not pipeline:
        return UNKNOWN_STAGE

    stage = next(
        (s for s in pipeline.get("statuses") or [] if s.get("id") == deal.status_id),
        None
    )
    if not stage:
        return UNKNOWN_STAGE
    return stage.get("name") or UNKNOWN_STAGE


class DealFormatter:
    """
    Deal brut + entités liées → une ligne de 13 colonnes.

    Les lookups (pipelines, responsable, contacts, sociétés)
    partent en parallèle. Seul l'échec des pipelines remonte :
    les autres lookups renvoient None et laissent la cellule vide.
    """

    def __init__(self, crm, max_workers: int = LOOKUP_WORKERS):
        self.crm = crm
        self.max_workers = max_workers

    def format(self, deal: Deal) -> FormattedRow:
        with ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="deal-lookup"
        ) as pool:
            pipelines_future = pool.submit(self.crm.get_pipelines)
            user_future = (
                pool.submit(self.crm.get_user, deal.responsible_user_id)
                if deal.responsible_user_id else None
            )
            contact_futures = [
                pool.submit(self.crm.get_contact, cid) for cid in deal.contact_ids
            ]
            company_futures = [
                pool.submit(self.crm.get_company, cid) for cid in deal.company_ids
            ]

            pipelines = pipelines_future.result()
            responsible = user_future.result() if user_future else None
            contacts = [f.result() for f in contact_futures]
            companies = [f.result() for f in company_futures]

        main_contact = _first(contacts)
        main_company = _first(companies)

        return FormattedRow(
            id=deal.id,
            name=deal.name or "",
            price=deal.price or 0,
            created_at=format_timestamp(deal.created_at),
            updated_at=format_timestamp(deal.updated_at),
            stage=stage_name(deal, pipelines),
            responsible=(responsible or {}).get("name") or "",
            contact_name=(main_contact or {}).get("name") or "",
            contact_phone=self.crm.extract_phone(main_contact),
            contact_email=self.crm.extract_email(main_contact),
            company=(main_company or {}).get("name") or "",
            status=(RowStatus.DELETED if deal.is_deleted else RowStatus.ACTIVE).value,
            source=SOURCE_TAG,
        )


def _first(items: list) -> Optional[dict]:
    return next((item for item in items if item), None)
