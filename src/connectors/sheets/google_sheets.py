# connectors/sheets/google_sheets.py

import logging
from datetime import datetime, timezone
from typing import Optional

import gspread
from google.oauth2.service_account import Credentials

from connectors.base import BaseConnector
from models import (
    DeleteAction,
    DeleteResult,
    FormattedRow,
    RowStatus,
    SHEET_HEADERS,
    STATUS_COLUMN_INDEX,
    SheetStats,
    UpsertAction,
    UpsertResult,
)

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

HEADER_RANGE = "A1:M1"
DATA_RANGE = "A:M"
STATUS_COLUMN = "L"
AUDIT_SHEET_TITLE = "Audit"
AUDIT_RANGE = "A:E"


class GoogleSheetsStore(BaseConnector):
    """
    La feuille Google Sheets vue comme une table indexée par deal id.

    → une ligne par deal au maximum, la colonne A porte l'id
    → position 1 = en-tête, les données commencent en ligne 2
    → pas de suppression physique : soft_delete() écrit seulement le statut

    Attention : find_row() → update/append n'est pas atomique.
    Deux upserts concurrents du même nouveau deal peuvent créer deux lignes.
    Les appelants sérialisent par deal id (orchestrator.locks.DealLocks).
    """

    def __init__(self, settings, client: Optional[gspread.Client] = None):
        super().__init__(settings)
        self._client = client
        self._worksheet = None
        self._audit_worksheet = None

    def _get_source_name(self) -> str:
        return "google_sheets"

    # ─────────────────────────────────────────
    # AUTH
    # ─────────────────────────────────────────

    def _authorize(self) -> gspread.Client:
        creds = Credentials.from_service_account_info(
            self.settings.google_credentials_info(), scopes=SCOPES
        )
        client = gspread.authorize(creds)
        logger.info("[sheets] Client gspread initialisé")
        return client

    def reinitialize_auth(self) -> None:
        """
        Appelé par RetryExecutor après un 401 :
        nouvelles credentials, cache des worksheets vidé.
        """
        logger.warning("[sheets] Réinitialisation de l'authentification")
        self._client = self._authorize()
        self._worksheet = None
        self._audit_worksheet = None

    def _get_client(self) -> gspread.Client:
        if self._client is None:
            self._client = self._authorize()
        return self._client

    def _get_worksheet(self):
        if self._worksheet is None:
            spreadsheet = self._get_client().open_by_key(self.settings.google_sheet_id)
            self._worksheet = spreadsheet.get_worksheet_by_id(
                self.settings.google_sheet_gid
            )
        return self._worksheet

    def connect(self) -> bool:
        try:
            self._get_worksheet()
            return True
        except Exception as e:
            logger.error(f"[sheets] Connexion : {e}")
            return False

    # ─────────────────────────────────────────
    # LECTURE
    # ─────────────────────────────────────────

    def ensure_headers(self) -> bool:
        """
        Écrit l'en-tête seulement si A1:M1 est vide.
        Retourne True si l'en-tête vient d'être créé.
        """
        ws = self._get_worksheet()

        existing = ws.get(HEADER_RANGE)
        if existing and any(existing[0]):
            return False

        ws.update(
            values=[SHEET_HEADERS],
            range_name=HEADER_RANGE,
            value_input_option="RAW"
        )
        logger.info(f"[sheets] En-tête créé sur {HEADER_RANGE}")
        return True

    def find_row(self, deal_id) -> Optional[int]:
        """
        Scan linéaire de la colonne A, en-tête exclu.
        Comparaison par forme texte : "123" == 123.
        """
        ws = self._get_worksheet()
        ids = ws.col_values(1)
        wanted = str(deal_id)

        for position, value in enumerate(ids[1:], start=2):
            if value is not None and value != "" and str(value) == wanted:
                return position

        return None

    def read_row(self, position: int) -> Optional[FormattedRow]:
        values = self._get_worksheet().row_values(position)
        if not values:
            return None
        return FormattedRow.from_row(values)

    def stats(self) -> SheetStats:
        values = self._get_worksheet().get(DATA_RANGE) or []

        total_rows = len(values)
        data_rows = max(total_rows - 1, 0)

        deleted = 0
        for row in values[1:]:
            status = row[STATUS_COLUMN_INDEX] if len(row) > STATUS_COLUMN_INDEX else ""
            if status == RowStatus.DELETED.value:
                deleted += 1

        return SheetStats(
            total_rows=total_rows,
            data_rows=data_rows,
            active_deals=data_rows - deleted,
            deleted_deals=deleted,
            last_updated=datetime.now(tz=timezone.utc).isoformat(),
        )

    # ─────────────────────────────────────────
    # ÉCRITURE
    # ─────────────────────────────────────────

    def upsert(self, row: FormattedRow) -> UpsertResult:
        self.ensure_headers()

        ws = self._get_worksheet()
        values = row.to_row()
        existing = self.find_row(row.id)

        if existing:
            cell_range = f"A{existing}:M{existing}"
            ws.update(
                values=[values],
                range_name=cell_range,
                value_input_option="RAW"
            )
            logger.info(f"[sheets] Deal {row.id} mis à jour ligne {existing}")
            return UpsertResult(action=UpsertAction.UPDATED, row=existing)

        ws.append_row(
            values,
            value_input_option="RAW",
            insert_data_option="INSERT_ROWS",
            table_range=DATA_RANGE
        )
        logger.info(f"[sheets] Deal {row.id} ajouté en nouvelle ligne")
        return UpsertResult(action=UpsertAction.CREATED, row=None)

    def soft_delete(self, deal_id) -> DeleteResult:
        existing = self.find_row(deal_id)

        if not existing:
            logger.warning(f"[sheets] Deal {deal_id} introuvable pour suppression")
            return DeleteResult(action=DeleteAction.NOT_FOUND)

        self._get_worksheet().update(
            values=[[RowStatus.DELETED.value]],
            range_name=f"{STATUS_COLUMN}{existing}",
            value_input_option="RAW"
        )
        logger.info(f"[sheets] Deal {deal_id} marqué supprimé ligne {existing}")
        return DeleteResult(action=DeleteAction.DELETED, row=existing)

    # ─────────────────────────────────────────
    # AUDIT
    # ─────────────────────────────────────────

    def append_audit(self, values: list) -> None:
        """
        Ajoute une ligne dans l'onglet Audit.
        Les erreurs remontent : c'est AuditLog qui décide de les ignorer.
        """
        if self._audit_worksheet is None:
            spreadsheet = self._get_client().open_by_key(self.settings.google_sheet_id)
            self._audit_worksheet = spreadsheet.worksheet(AUDIT_SHEET_TITLE)

        self._audit_worksheet.append_row(
            values,
            value_input_option="RAW",
            insert_data_option="INSERT_ROWS",
            table_range=AUDIT_RANGE
        )
