# config.py

"""
Configuration lue depuis l'environnement.

Le chargement du .env se fait aux points d'entrée (api/main.py),
pas ici : Settings.from_env() lit seulement os.environ.
"""

import json
import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


REQUIRED_VARS = [
    "AMO_DOMAIN",
    "AMO_CLIENT_ID",
    "AMO_CLIENT_SECRET",
    "AMO_REFRESH_TOKEN",
    "GOOGLE_CREDENTIALS",
    "GOOGLE_SHEET_ID",
]

DEFAULT_PIPELINE_NAME = "ЕВГ СПБ"


class ConfigurationError(Exception):
    pass


@dataclass(frozen=True)
class Settings:
    # amoCRM
    amo_domain: str = ""
    amo_client_id: str = ""
    amo_client_secret: str = ""
    amo_redirect_uri: str = ""
    amo_refresh_token: str = ""
    amo_access_token: str = ""
    target_pipeline_name: str = DEFAULT_PIPELINE_NAME

    # Google Sheets
    google_credentials: str = ""     # JSON du service account
    google_sheet_id: str = ""
    google_sheet_gid: int = 0

    # Divers
    debug_skip_filter: bool = False
    environment: str = "production"
    scheduler_timezone: str = "Europe/Moscow"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ

        try:
            gid = int(env.get("GOOGLE_SHEET_GID", "0") or 0)
        except ValueError:
            logger.warning(
                f"GOOGLE_SHEET_GID invalide : {env.get('GOOGLE_SHEET_GID')}, "
                f"on utilise 0"
            )
            gid = 0

        return cls(
            amo_domain=env.get("AMO_DOMAIN", "").strip(),
            amo_client_id=env.get("AMO_CLIENT_ID", "").strip(),
            amo_client_secret=env.get("AMO_CLIENT_SECRET", "").strip(),
            amo_redirect_uri=env.get("AMO_REDIRECT_URI", "").strip(),
            amo_refresh_token=env.get("AMO_REFRESH_TOKEN", "").strip(),
            amo_access_token=(
                env.get("AMO_ACCESS_TOKEN") or env.get("AMO_TOKEN") or ""
            ).strip(),
            target_pipeline_name=(
                env.get("TARGET_PIPELINE_NAME", "").strip()
                or DEFAULT_PIPELINE_NAME
            ),
            google_credentials=env.get("GOOGLE_CREDENTIALS", ""),
            google_sheet_id=env.get("GOOGLE_SHEET_ID", "").strip(),
            google_sheet_gid=gid,
            debug_skip_filter=env.get("DEBUG_SKIP_FILTER", "").lower() == "true",
            environment=(
                env.get("APP_ENV") or env.get("NODE_ENV") or "production"
            ),
            scheduler_timezone=env.get("SCHEDULER_TIMEZONE", "Europe/Moscow"),
        )

    def validate(self) -> list[str]:
        """
        Retourne la liste des problèmes.
        Liste vide = configuration utilisable.
        """
        errors = []

        values = {
            "AMO_DOMAIN":        self.amo_domain,
            "AMO_CLIENT_ID":     self.amo_client_id,
            "AMO_CLIENT_SECRET": self.amo_client_secret,
            "AMO_REFRESH_TOKEN": self.amo_refresh_token,
            "GOOGLE_CREDENTIALS": self.google_credentials,
            "GOOGLE_SHEET_ID":   self.google_sheet_id,
        }
        for name in REQUIRED_VARS:
            if not values[name]:
                errors.append(f"Missing required environment variable: {name}")

        if self.amo_domain and ".amocrm." not in self.amo_domain:
            errors.append(
                "AMO_DOMAIN must be a valid AMO CRM domain "
                "(*.amocrm.ru or *.amocrm.com)"
            )

        if self.google_credentials:
            try:
                creds = json.loads(self.google_credentials)
                if not isinstance(creds, dict) or not (
                    creds.get("client_email") and creds.get("private_key")
                ):
                    errors.append(
                        "GOOGLE_CREDENTIALS must contain client_email and private_key"
                    )
            except ValueError:
                errors.append("GOOGLE_CREDENTIALS must be valid JSON")

        if self.google_sheet_id and len(self.google_sheet_id) != 44:
            # Simple avertissement, pas bloquant
            logger.warning(
                "GOOGLE_SHEET_ID format may be incorrect "
                "(expected 44 character string)"
            )

        return errors

    def require_valid(self) -> "Settings":
        errors = self.validate()
        if errors:
            raise ConfigurationError("; ".join(errors))
        return self

    def google_credentials_info(self) -> dict:
        try:
            return json.loads(self.google_credentials)
        except ValueError as e:
            raise ConfigurationError(f"GOOGLE_CREDENTIALS invalide : {e}")

    def summary(self) -> dict:
        """Vue publique pour /status. Aucun secret."""
        return {
            "domain": self.amo_domain,
            "sheetId": self.google_sheet_id,
            "sheetGid": self.google_sheet_gid,
            "targetPipeline": self.target_pipeline_name,
            "debugSkipFilter": self.debug_skip_filter,
            "environment": self.environment,
        }
