# models.py

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# ─────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────

class RowStatus(str, Enum):
    ACTIVE = "Active"
    DELETED = "Deleted"


class UpsertAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class DeleteAction(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


class RefreshResult(str, Enum):
    REFRESHED = "refreshed"
    SKIPPED = "skipped"      # un refresh tourne déjà, pas une erreur
    FAILED = "failed"


class AuditAction(str, Enum):
    WEBHOOK_SYNC = "WEBHOOK_SYNC"
    WEBHOOK_ERROR = "WEBHOOK_ERROR"
    MANUAL_SYNC = "MANUAL_SYNC"
    MANUAL_SYNC_ERROR = "MANUAL_SYNC_ERROR"
    DEAL_DELETED = "DEAL_DELETED"
    DELETE_ERROR = "DELETE_ERROR"


class SkipReason(str, Enum):
    NOT_FOUND = "not_found"
    NOT_MONITORED = "not_monitored_pipeline"


# ─────────────────────────────────────────
# SCHÉMA DE LA FEUILLE
# Colonnes A → M, dans cet ordre exact.
# ─────────────────────────────────────────

SHEET_HEADERS = [
    "Deal ID",
    "Deal name",
    "Budget",
    "Created at",
    "Updated at",
    "Stage",
    "Responsible",
    "Contact",
    "Phone",
    "Email",
    "Company",
    "Status",
    "Source",
]

STATUS_COLUMN_INDEX = 11     # colonne L
UNKNOWN_STAGE = "Unknown stage"
SOURCE_TAG = "AMO CRM"


# ─────────────────────────────────────────
# CORE MODELS
# ─────────────────────────────────────────

@dataclass(frozen=True)
class Deal:
    """
    Snapshot d'une sync.
    Jamais mis en cache au-delà d'une opération.
    """
    id: int
    name: str = ""
    price: float = 0.0

    # Timestamps amoCRM : secondes epoch
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    pipeline_id: Optional[int] = None
    status_id: Optional[int] = None
    responsible_user_id: Optional[int] = None
    is_deleted: bool = False

    contact_ids: tuple = ()
    company_ids: tuple = ()


@dataclass
class FormattedRow:
    id: int
    name: str
    price: float
    created_at: str
    updated_at: str
    stage: str
    responsible: str
    contact_name: str
    contact_phone: str
    contact_email: str
    company: str
    status: str
    source: str = SOURCE_TAG

    def to_row(self) -> list:
        return [
            self.id,
            self.name,
            self.price,
            self.created_at,
            self.updated_at,
            self.stage,
            self.responsible,
            self.contact_name,
            self.contact_phone,
            self.contact_email,
            self.company,
            self.status,
            self.source,
        ]

    @classmethod
    def from_row(cls, values: list) -> "FormattedRow":
        """
        Relit une ligne stockée.
        Google Sheets tronque les cellules vides en fin de ligne :
        on complète jusqu'à 13 colonnes.
        """
        padded = list(values) + [""] * (len(SHEET_HEADERS) - len(values))

        raw_id = padded[0]
        try:
            deal_id = int(raw_id)
        except (ValueError, TypeError):
            deal_id = raw_id

        raw_price = padded[2]
        try:
            price = float(raw_price) if raw_price != "" else 0.0
        except (ValueError, TypeError):
            price = 0.0

        return cls(
            id=deal_id,
            name=str(padded[1]),
            price=price,
            created_at=str(padded[3]),
            updated_at=str(padded[4]),
            stage=str(padded[5]),
            responsible=str(padded[6]),
            contact_name=str(padded[7]),
            contact_phone=str(padded[8]),
            contact_email=str(padded[9]),
            company=str(padded[10]),
            status=str(padded[11]),
            source=str(padded[12]),
        )


@dataclass(frozen=True)
class TokenState:
    """
    Remplacé en bloc par TokenManager, jamais muté en place.
    """
    access_token: str = ""
    refresh_token: str = ""
    last_refresh_time: Optional[datetime] = None
    next_refresh_time: Optional[datetime] = None


@dataclass
class AuditEntry:
    action: str
    deal_id: Any
    details: dict = field(default_factory=dict)
    environment: str = "production"
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(tz=timezone.utc)
    )

    def to_row(self) -> list:
        return [
            self.timestamp.isoformat(),
            self.action,
            self.deal_id,
            json.dumps(self.details, ensure_ascii=False, default=str),
            self.environment,
        ]


# ─────────────────────────────────────────
# RÉSULTATS
# ─────────────────────────────────────────

@dataclass
class UpsertResult:
    action: UpsertAction
    row: Optional[int] = None      # None après un append


@dataclass
class DeleteResult:
    action: DeleteAction
    row: Optional[int] = None


@dataclass
class SheetStats:
    total_rows: int
    data_rows: int
    active_deals: int
    deleted_deals: int
    last_updated: str

    def to_dict(self) -> dict:
        return {
            "totalRows": self.total_rows,
            "dataRows": self.data_rows,
            "activeDeals": self.active_deals,
            "deletedDeals": self.deleted_deals,
            "lastUpdated": self.last_updated,
        }


@dataclass
class LeadResult:
    lead_id: Any
    success: bool
    action: str = ""
    row: Optional[int] = None
    reason: str = ""
    deal_name: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        data = {"leadId": self.lead_id, "success": self.success}
        if self.action:
            data["action"] = self.action
        if self.row is not None:
            data["row"] = self.row
        if self.reason:
            data["reason"] = self.reason
        if self.deal_name:
            data["dealName"] = self.deal_name
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DeliverySummary:
    results: list = field(default_factory=list)
    processing_time_ms: int = 0

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def errors(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "processed": self.processed,
            "successful": self.successful,
            "errors": self.errors,
            "processingTime": f"{self.processing_time_ms}ms",
            "results": [r.to_dict() for r in self.results],
        }
