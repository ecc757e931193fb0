# services/audit.py

import logging
from typing import Any, Optional

from models import AuditAction, AuditEntry

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Journal append-only dans l'onglet Audit de la feuille.

    Best-effort : un échec d'écriture est loggé puis abandonné,
    jamais relancé, jamais retenté.
    """

    def __init__(self, store, environment: str = "production"):
        self.store = store
        self.environment = environment

    def record(
        self,
        action: AuditAction,
        deal_id: Any,
        details: Optional[dict] = None
    ) -> bool:
        entry = AuditEntry(
            action=action.value if isinstance(action, AuditAction) else str(action),
            deal_id=deal_id,
            details=details or {},
            environment=self.environment,
        )

        try:
            self.store.append_audit(entry.to_row())
            return True
        except Exception as e:
            # Le log ne doit jamais crasher l'action principale
            logger.warning(
                f"[audit] Écriture impossible ({entry.action} / {deal_id}) : {e}"
            )
            return False
