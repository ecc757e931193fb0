# connectors/base.py

from abc import ABC, abstractmethod
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class BaseConnector(ABC):
    """
    Contrat commun aux deux systèmes distants (amoCRM, Google Sheets).

    → connect()  : vérifie que le système répond avec nos credentials
    → utilitaires de conversion tolérants (jamais d'exception)
    """

    def __init__(self, settings):
        self.settings    = settings
        self.source_name = self._get_source_name()

    @abstractmethod
    def _get_source_name(self) -> str:
        pass

    @abstractmethod
    def connect(self) -> bool:
        pass

    # ─────────────────────────────────────────
    # UTILITAIRES COMMUNS
    # ─────────────────────────────────────────

    def _safe_float(self, value, default: float = 0.0) -> float:
        try:
            return float(value) if value is not None else default
        except (ValueError, TypeError):
            return default

    def _safe_int(self, value, default: Optional[int] = None) -> Optional[int]:
        try:
            return int(value) if value is not None else default
        except (ValueError, TypeError):
            return default

    def _safe_str(self, value, default: str = "") -> str:
        if value is None:
            return default
        return str(value).strip()
