# services/token_manager.py

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import requests

from config import Settings
from models import RefreshResult, TokenState

logger = logging.getLogger(__name__)

# amoCRM : access token valide 24h par défaut
AMO_TOKEN_LIFETIME_SECONDS = 86400
REFRESH_LEAD_WINDOW = timedelta(hours=1)
BACKUP_REFRESH_AFTER = timedelta(hours=23)
TOKEN_REQUEST_TIMEOUT = 30

USER_AGENT = "amo-sheets-sync/1.0"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class TokenManager:
    """
    Seul propriétaire des tokens OAuth amoCRM.

    → refresh() est single-flight : si un refresh tourne déjà,
      les autres appels retournent SKIPPED immédiatement
    → l'état (TokenState) est remplacé en bloc, jamais muté
    → les autres composants lisent access_token, rien d'autre
    """

    def __init__(
        self,
        settings: Settings,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings
        self._now = now

        self._state = TokenState(
            access_token=settings.amo_access_token,
            refresh_token=settings.amo_refresh_token,
        )
        self._guard = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self.last_error: Optional[str] = None

    # ─────────────────────────────────────────
    # LECTURE
    # ─────────────────────────────────────────

    @property
    def access_token(self) -> str:
        return self._state.access_token

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def refresh_in_progress(self) -> bool:
        return self._guard.locked()

    # ─────────────────────────────────────────
    # REFRESH
    # ─────────────────────────────────────────

    def refresh(self) -> RefreshResult:
        if not self._guard.acquire(blocking=False):
            logger.info("[token] Refresh déjà en cours, on passe")
            return RefreshResult.SKIPPED

        self._idle.clear()
        try:
            return self._do_refresh()
        finally:
            self._idle.set()
            self._guard.release()

    def force_refresh(self) -> RefreshResult:
        logger.info("[token] Refresh manuel demandé")
        return self.refresh()

    def wait_until_idle(self, timeout: float = TOKEN_REQUEST_TIMEOUT) -> bool:
        """Attend la fin d'un refresh lancé par un autre thread."""
        return self._idle.wait(timeout)

    def _do_refresh(self) -> RefreshResult:
        current = self._state
        s = self.settings

        if not all([current.refresh_token, s.amo_client_id,
                    s.amo_client_secret, s.amo_domain]):
            self.last_error = "Missing required AMO CRM credentials for token refresh"
            logger.error(f"[token] {self.last_error}")
            return RefreshResult.FAILED

        token_url = f"https://{s.amo_domain}/oauth2/access_token"

        logger.info("[token] Tentative de refresh du token amoCRM")

        try:
            response = requests.post(
                token_url,
                json={
                    "client_id":     s.amo_client_id,
                    "client_secret": s.amo_client_secret,
                    "grant_type":    "refresh_token",
                    "refresh_token": current.refresh_token,
                    "redirect_uri":  s.amo_redirect_uri,
                },
                headers={"User-Agent": USER_AGENT},
                timeout=TOKEN_REQUEST_TIMEOUT
            )
            response.raise_for_status()
            data = response.json()

        except requests.RequestException as e:
            status = getattr(e.response, "status_code", None)
            self.last_error = f"{e}"
            logger.error(f"[token] Échec du refresh (HTTP {status}) : {e}")
            return RefreshResult.FAILED

        except ValueError as e:
            self.last_error = f"Invalid JSON from token endpoint: {e}"
            logger.error(f"[token] {self.last_error}")
            return RefreshResult.FAILED

        if not isinstance(data, dict) or not data.get("access_token"):
            self.last_error = "Invalid response from AMO CRM token endpoint"
            logger.error(f"[token] {self.last_error}")
            return RefreshResult.FAILED

        try:
            expires_in = int(data.get("expires_in") or AMO_TOKEN_LIFETIME_SECONDS)
        except (ValueError, TypeError):
            expires_in = AMO_TOKEN_LIFETIME_SECONDS

        now = self._now()
        self._state = TokenState(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or current.refresh_token,
            last_refresh_time=now,
            next_refresh_time=now + timedelta(seconds=expires_in),
        )
        self.last_error = None

        logger.info(
            f"[token] Token rafraîchi, expire dans {expires_in}s "
            f"(prochain refresh : {self._state.next_refresh_time.isoformat()})"
        )
        return RefreshResult.REFRESHED

    # ─────────────────────────────────────────
    # POLITIQUE DE REFRESH
    # ─────────────────────────────────────────

    def should_refresh(self) -> bool:
        """
        → Pas de prochaine échéance connue : on rafraîchit
        → Moins d'une heure avant l'échéance : on rafraîchit
        """
        next_due = self._state.next_refresh_time
        if next_due is None:
            return True
        return self._now() >= next_due - REFRESH_LEAD_WINDOW

    def needs_backup_refresh(self) -> bool:
        """
        Filet de sécurité si le job horaire a raté :
        plus de 23h depuis le dernier refresh réussi.
        """
        last = self._state.last_refresh_time
        if last is None:
            return False
        return self._now() - last >= BACKUP_REFRESH_AFTER

    def status(self) -> dict:
        state = self._state
        return {
            "lastRefreshTime": (
                state.last_refresh_time.isoformat()
                if state.last_refresh_time else None
            ),
            "nextRefreshTime": (
                state.next_refresh_time.isoformat()
                if state.next_refresh_time else None
            ),
            "refreshInProgress": self.refresh_in_progress,
            "shouldRefresh": self.should_refresh(),
            "hasAccessToken": bool(state.access_token),
            "hasRefreshToken": bool(state.refresh_token),
            "lastError": self.last_error,
        }
