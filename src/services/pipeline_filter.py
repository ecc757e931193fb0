# services/pipeline_filter.py

import logging
from typing import Optional

import requests

from models import Deal

logger = logging.getLogger(__name__)


class PipelineFilter:
    """
    Décide si un deal appartient au pipeline surveillé.

    L'id du pipeline cible est résolu par nom une seule fois
    puis gardé en mémoire pour la durée du process.
    En cas de doute on refuse : pipeline introuvable → deal ignoré.
    """

    def __init__(self, crm, target_name: str, debug_skip_filter: bool = False):
        self.crm = crm
        self.target_name = target_name
        self.debug_skip_filter = debug_skip_filter
        self._pipeline_id: Optional[int] = None

    @property
    def pipeline_id(self) -> Optional[int]:
        return self._pipeline_id

    def resolve_pipeline_id(self) -> Optional[int]:
        if self._pipeline_id is not None:
            return self._pipeline_id

        pipeline = self.crm.find_pipeline_by_name(self.target_name)
        if not pipeline:
            logger.error(f"[filter] Pipeline \"{self.target_name}\" introuvable")
            return None

        self._pipeline_id = int(pipeline["id"])
        return self._pipeline_id

    def is_monitored(self, deal: Deal) -> bool:
        if self.debug_skip_filter:
            logger.info("[filter] DEBUG : filtre pipeline ignoré")
            return True

        if deal.pipeline_id is None:
            logger.warning(f"[filter] Deal {deal.id} sans pipeline_id")
            return False

        try:
            target_id = self.resolve_pipeline_id()
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.error(f"[filter] Résolution du pipeline impossible : {e}")
            return False

        if target_id is None:
            return False

        monitored = deal.pipeline_id == target_id
        logger.info(
            f"[filter] Deal {deal.id} : pipeline {deal.pipeline_id}, "
            f"surveillé {target_id}, retenu={monitored}"
        )
        return monitored
