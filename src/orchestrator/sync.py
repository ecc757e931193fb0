# orchestrator/sync.py

import logging
import time
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from models import (
    AuditAction,
    DeliverySummary,
    LeadResult,
    SkipReason,
)
from orchestrator.locks import DealLocks

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# FLUX PAR DEAL
#
# Received → Fetched → Filtered{skip|continue}
#          → Formatted → Upserted → Audited → Done
# Failed est atteignable depuis chaque étape.
# ─────────────────────────────────────────

class SyncOrchestrator:

    def __init__(
        self,
        crm,
        pipeline_filter,
        formatter,
        store,
        executor,
        audit,
        locks: Optional[DealLocks] = None,
    ):
        self.crm = crm
        self.pipeline_filter = pipeline_filter
        self.formatter = formatter
        self.store = store
        self.executor = executor
        self.audit = audit
        self.locks = locks or DealLocks()

    # ─────────────────────────────────────────
    # LIVRAISON WEBHOOK
    # ─────────────────────────────────────────

    def process_delivery(
        self,
        lead_ids: Iterable[Any],
        deleted_ids: Iterable[Any] = ()
    ) -> DeliverySummary:
        """
        Traite chaque lead indépendamment, dans l'ordre reçu.
        L'échec d'un lead est enregistré dans son résultat
        et n'empêche pas le traitement des suivants.
        """
        started = time.monotonic()
        summary = DeliverySummary()

        for lead_id in lead_ids:
            try:
                summary.results.append(self.process_lead(lead_id))
            except Exception as e:
                logger.error(f"[sync] Échec du lead {lead_id} : {e}")
                summary.results.append(
                    LeadResult(lead_id=lead_id, success=False, error=str(e))
                )

        for lead_id in deleted_ids:
            try:
                summary.results.append(self.delete_deal(lead_id))
            except Exception as e:
                logger.error(f"[sync] Échec suppression du lead {lead_id} : {e}")
                summary.results.append(
                    LeadResult(lead_id=lead_id, success=False, error=str(e))
                )

        summary.processing_time_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            f"[sync] Livraison traitée : {summary.processed} leads, "
            f"{summary.successful} OK, {summary.errors} en erreur "
            f"({summary.processing_time_ms}ms)"
        )
        return summary

    def process_lead(
        self,
        lead_id: Any,
        action: AuditAction = AuditAction.WEBHOOK_SYNC,
        error_action: AuditAction = AuditAction.WEBHOOK_ERROR,
        audit_context: Optional[dict] = None
    ) -> LeadResult:
        """
        Un lead de bout en bout.
        Toute exception est auditée puis relancée.
        """
        context = audit_context or {}
        logger.info(f"[sync] Traitement du lead {lead_id}")

        try:
            deal = self.crm.get_deal(lead_id)
            if deal is None:
                logger.info(f"[sync] Deal {lead_id} introuvable, ignoré")
                return LeadResult(
                    lead_id=lead_id,
                    success=True,
                    action="skipped",
                    reason=SkipReason.NOT_FOUND.value,
                )

            if not self.pipeline_filter.is_monitored(deal):
                logger.info(f"[sync] Deal {lead_id} hors pipeline surveillé, ignoré")
                return LeadResult(
                    lead_id=lead_id,
                    success=True,
                    action="skipped",
                    reason=SkipReason.NOT_MONITORED.value,
                    deal_name=deal.name,
                )

            row = self.formatter.format(deal)

            with self.locks.hold(deal.id):
                result = self.executor.with_retry(
                    lambda: self.store.upsert(row),
                    label=f"upsert deal {deal.id}"
                )

            self.audit.record(action, lead_id, {
                "action": result.action.value,
                "row": result.row,
                "dealName": deal.name,
                "pipeline": deal.pipeline_id,
                **context,
            })

            logger.info(
                f"[sync] Deal {lead_id} synchronisé : {result.action.value}"
                + (f" ligne {result.row}" if result.row else "")
            )

            return LeadResult(
                lead_id=lead_id,
                success=True,
                action=result.action.value,
                row=result.row,
                deal_name=deal.name,
            )

        except Exception as e:
            logger.error(f"[sync] Erreur sur le lead {lead_id} : {e}")
            self.audit.record(error_action, lead_id, {
                "error": str(e),
                "timestamp": datetime.now(tz=timezone.utc).isoformat(),
                **context,
            })
            raise

    # ─────────────────────────────────────────
    # SYNC MANUELLE
    # ─────────────────────────────────────────

    def sync_deal(self, deal_id: Any, triggered_by: str = "manual_api") -> LeadResult:
        logger.info(f"[sync] Sync manuelle demandée pour le deal {deal_id}")
        return self.process_lead(
            deal_id,
            action=AuditAction.MANUAL_SYNC,
            error_action=AuditAction.MANUAL_SYNC_ERROR,
            audit_context={"triggeredBy": triggered_by},
        )

    # ─────────────────────────────────────────
    # SUPPRESSION
    # ─────────────────────────────────────────

    def delete_deal(self, deal_id: Any) -> LeadResult:
        """
        Soft-delete : seule la colonne statut change.
        Deal absent de la feuille → succès avec action not_found.
        """
        logger.info(f"[sync] Suppression du deal {deal_id}")

        try:
            with self.locks.hold(deal_id):
                result = self.executor.with_retry(
                    lambda: self.store.soft_delete(deal_id),
                    label=f"soft delete deal {deal_id}"
                )

            self.audit.record(AuditAction.DEAL_DELETED, deal_id, {
                "action": result.action.value,
                "row": result.row,
            })

            return LeadResult(
                lead_id=deal_id,
                success=True,
                action=result.action.value,
                row=result.row,
            )

        except Exception as e:
            logger.error(f"[sync] Erreur suppression deal {deal_id} : {e}")
            self.audit.record(AuditAction.DELETE_ERROR, deal_id, {"error": str(e)})
            raise
