# api/dependencies.py

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import HTTPException, Request

from config import Settings
from connectors.crm.amocrm import AmoCRMConnector
from connectors.sheets.google_sheets import GoogleSheetsStore
from orchestrator.locks import DealLocks
from orchestrator.sync import SyncOrchestrator
from services.audit import AuditLog
from services.executor import RetryExecutor
from services.formatter import DealFormatter
from services.pipeline_filter import PipelineFilter
from services.token_manager import TokenManager


@dataclass
class AppContext:
    """
    Tous les composants, construits une fois et passés par référence.
    Les tests construisent le leur avec des doubles.
    """
    settings: Settings
    tokens: TokenManager
    crm: AmoCRMConnector
    store: GoogleSheetsStore
    pipeline_filter: PipelineFilter
    orchestrator: SyncOrchestrator
    scheduler: Optional[Any] = None


def build_context(settings: Settings) -> AppContext:
    tokens = TokenManager(settings)
    crm = AmoCRMConnector(settings, tokens)
    store = GoogleSheetsStore(settings)

    pipeline_filter = PipelineFilter(
        crm,
        target_name=settings.target_pipeline_name,
        debug_skip_filter=settings.debug_skip_filter,
    )

    orchestrator = SyncOrchestrator(
        crm=crm,
        pipeline_filter=pipeline_filter,
        formatter=DealFormatter(crm),
        store=store,
        executor=RetryExecutor(reauthenticate=store.reinitialize_auth),
        audit=AuditLog(store, environment=settings.environment),
        locks=DealLocks(),
    )

    return AppContext(
        settings=settings,
        tokens=tokens,
        crm=crm,
        store=store,
        pipeline_filter=pipeline_filter,
        orchestrator=orchestrator,
    )


def get_context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Service non configuré")
    return context
