# connectors/crm/amocrm.py

import requests
from typing import Optional
from models import Deal, RefreshResult
from connectors.base import BaseConnector
from services.token_manager import TokenManager, USER_AGENT
import logging

logger = logging.getLogger(__name__)

AMO_REQUEST_TIMEOUT = 30
DEAL_EMBEDS = "contacts,companies,catalog_elements,loss_reason,pipeline"

# Codes de custom fields amoCRM pour les contacts
PHONE_FIELD = ("PHONE", "Телефон")
EMAIL_FIELD = ("EMAIL", "Email")


class AmoCRMConnector(BaseConnector):
    """
    Client amoCRM API v4.

    Politique de retry volontairement limitée :
    → 401 : un refresh via TokenManager, puis UNE seule nouvelle tentative
    → toute autre erreur HTTP remonte telle quelle
    Les retries plus larges appartiennent à RetryExecutor, pas à ce client.
    """

    def __init__(self, settings, token_manager: TokenManager):
        super().__init__(settings)
        self.tokens = token_manager

    def _get_source_name(self) -> str:
        return "amocrm"

    def _base_url(self) -> str:
        return f"https://{self.settings.amo_domain}/api/v4"

    def _get_headers(self) -> dict:
        headers = {
            "Content-Type": "application/json",
            "User-Agent":   USER_AGENT,
        }
        token = self.tokens.access_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # ─────────────────────────────────────────
    # TRANSPORT
    # ─────────────────────────────────────────

    def _send(self, method: str, path: str, params: Optional[dict]) -> requests.Response:
        response = requests.request(
            method,
            f"{self._base_url()}{path}",
            params=params,
            headers=self._get_headers(),
            timeout=AMO_REQUEST_TIMEOUT
        )
        logger.debug(
            f"[amocrm] {method} {path} → {response.status_code}"
        )
        return response

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None
    ) -> requests.Response:
        response = self._send(method, path, params)

        if response.status_code != 401:
            return response

        logger.warning(f"[amocrm] 401 sur {path}, refresh du token")

        result = self.tokens.refresh()
        if result == RefreshResult.SKIPPED:
            # Un autre thread rafraîchit : on attend son token
            self.tokens.wait_until_idle()
        elif result == RefreshResult.FAILED:
            response.raise_for_status()

        return self._send(method, path, params)

    # ─────────────────────────────────────────
    # CONNEXION
    # ─────────────────────────────────────────

    def get_account(self) -> dict:
        response = self._request("GET", "/account")
        response.raise_for_status()
        return response.json()

    def connect(self) -> bool:
        try:
            self.get_account()
            return True
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[amocrm] Connexion : {e}")
            return False

    # ─────────────────────────────────────────
    # DEALS
    # ─────────────────────────────────────────

    def get_deal(self, deal_id) -> Optional[Deal]:
        """
        Deal + entités liées.
        Absent (404 / 204) → None.
        Toute autre erreur → exception.
        """
        response = self._request(
            "GET", f"/leads/{deal_id}", params={"with": DEAL_EMBEDS}
        )

        if response.status_code in (204, 404):
            logger.warning(f"[amocrm] Deal {deal_id} introuvable")
            return None

        response.raise_for_status()
        return self._normalize_deal(response.json())

    def _normalize_deal(self, raw: dict) -> Optional[Deal]:
        deal_id = self._safe_int(raw.get("id"))
        if deal_id is None:
            return None

        embedded = raw.get("_embedded") or {}
        contacts = embedded.get("contacts") or []
        companies = embedded.get("companies") or []

        return Deal(
            id=deal_id,
            name=self._safe_str(raw.get("name")),
            price=self._safe_float(raw.get("price")),
            created_at=self._safe_int(raw.get("created_at")),
            updated_at=self._safe_int(raw.get("updated_at")),
            pipeline_id=self._safe_int(raw.get("pipeline_id")),
            status_id=self._safe_int(raw.get("status_id")),
            responsible_user_id=self._safe_int(raw.get("responsible_user_id")),
            is_deleted=bool(raw.get("is_deleted")),
            contact_ids=tuple(
                c["id"] for c in contacts if isinstance(c, dict) and c.get("id")
            ),
            company_ids=tuple(
                c["id"] for c in companies if isinstance(c, dict) and c.get("id")
            ),
        )

    # ─────────────────────────────────────────
    # PIPELINES
    # ─────────────────────────────────────────

    def get_pipelines(self) -> list[dict]:
        """
        Nécessaire au filtre et aux noms d'étapes : les erreurs remontent.
        Les statuts (embarqués dans _embedded) sont remontés
        sous la clé "statuses".
        """
        response = self._request("GET", "/leads/pipelines")
        if response.status_code == 204:
            return []
        response.raise_for_status()

        pipelines = (response.json().get("_embedded") or {}).get("pipelines") or []

        for pipeline in pipelines:
            if "statuses" not in pipeline:
                pipeline["statuses"] = (
                    (pipeline.get("_embedded") or {}).get("statuses") or []
                )

        return pipelines

    def find_pipeline_by_name(self, pipeline_name: str) -> Optional[dict]:
        """
        Correspondance par sous-chaîne, insensible à la casse :
        les noms amoCRM portent parfois des décorations.
        """
        needle = pipeline_name.lower()

        for pipeline in self.get_pipelines():
            name = pipeline.get("name") or ""
            if needle in name.lower():
                logger.info(
                    f"[amocrm] Pipeline \"{pipeline_name}\" trouvé : {pipeline.get('id')}"
                )
                return pipeline

        logger.warning(f"[amocrm] Pipeline \"{pipeline_name}\" introuvable")
        return None

    # ─────────────────────────────────────────
    # ENTITÉS LIÉES (best-effort)
    # Un responsable ou un contact manquant ne bloque pas la sync.
    # ─────────────────────────────────────────

    def _get_optional(self, path: str, params: Optional[dict] = None) -> Optional[dict]:
        try:
            response = self._request("GET", path, params=params)
            if response.status_code == 204:
                return None
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[amocrm] Échec GET {path} : {e}")
            return None

    def get_user(self, user_id) -> Optional[dict]:
        return self._get_optional(f"/users/{user_id}")

    def get_contact(self, contact_id) -> Optional[dict]:
        return self._get_optional(
            f"/contacts/{contact_id}", params={"with": "custom_fields"}
        )

    def get_company(self, company_id) -> Optional[dict]:
        return self._get_optional(f"/companies/{company_id}")

    # ─────────────────────────────────────────
    # CUSTOM FIELDS
    # ─────────────────────────────────────────

    def extract_phone(self, contact: Optional[dict]) -> str:
        return self._extract_field(contact, PHONE_FIELD)

    def extract_email(self, contact: Optional[dict]) -> str:
        return self._extract_field(contact, EMAIL_FIELD)

    def _extract_field(self, contact: Optional[dict], field: tuple) -> str:
        if not contact:
            return ""

        code, name = field
        for cf in contact.get("custom_fields_values") or []:
            if cf.get("field_code") == code or cf.get("field_name") == name:
                values = cf.get("values") or []
                if values:
                    return self._safe_str(values[0].get("value"))
                return ""

        return ""
