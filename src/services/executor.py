# services/executor.py

import time
import logging
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────
# CLASSIFICATION DES ERREURS
# ─────────────────────────────────────────

class ErrorKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    OTHER = "other"


def _status_code(error: Exception) -> Optional[int]:
    """
    Code HTTP porté par l'exception, quelle que soit la librairie :
    → gspread.exceptions.APIError : .response.status_code (et .code)
    → requests.HTTPError          : .response.status_code
    """
    response = getattr(error, "response", None)
    code = getattr(response, "status_code", None)
    if code is None:
        code = getattr(error, "code", None)
    try:
        return int(code) if code is not None else None
    except (ValueError, TypeError):
        return None


def classify_error(error: Exception) -> ErrorKind:
    code = _status_code(error)
    message = str(error).lower()

    if code == 429 or "rate limit" in message:
        return ErrorKind.RATE_LIMIT
    if code == 401 or "unauthorized" in message:
        return ErrorKind.AUTH
    return ErrorKind.OTHER


# ─────────────────────────────────────────
# EXECUTOR
# ─────────────────────────────────────────

class RetryExecutor:
    """
    Retry des écritures Google Sheets, piloté par le type d'erreur.

    → rate limit : backoff exponentiel, 2^tentative secondes
    → auth       : réinitialisation des credentials, retry immédiat
    → autre      : UNE seule nouvelle tentative après 1s, puis abandon

    Tentatives épuisées → la dernière erreur est relancée.
    À utiliser pour les mutations, pas pour les lectures.
    """

    MAX_ATTEMPTS = 3
    OTHER_ERROR_DELAY = 1

    def __init__(
        self,
        reauthenticate: Optional[Callable[[], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._reauthenticate = reauthenticate
        self._sleep = sleep

    def with_retry(
        self,
        operation: Callable[[], Any],
        max_attempts: int = MAX_ATTEMPTS,
        label: str = "operation"
    ) -> Any:
        last_error: Optional[Exception] = None
        other_retry_used = False

        for attempt in range(1, max_attempts + 1):
            try:
                return operation()

            except Exception as e:
                last_error = e
                kind = classify_error(e)

                if attempt >= max_attempts:
                    break

                if kind == ErrorKind.RATE_LIMIT:
                    delay = 2 ** attempt
                    logger.warning(
                        f"[retry] {label} : rate limit, nouvel essai dans {delay}s "
                        f"(tentative {attempt}/{max_attempts})"
                    )
                    self._sleep(delay)
                    continue

                if kind == ErrorKind.AUTH:
                    logger.warning(
                        f"[retry] {label} : erreur d'auth, réinitialisation "
                        f"(tentative {attempt}/{max_attempts})"
                    )
                    if self._reauthenticate is not None:
                        self._reauthenticate()
                    continue

                if other_retry_used:
                    break

                other_retry_used = True
                logger.warning(
                    f"[retry] {label} : échec ({e}), nouvel essai dans "
                    f"{self.OTHER_ERROR_DELAY}s (tentative {attempt}/{max_attempts})"
                )
                self._sleep(self.OTHER_ERROR_DELAY)

        logger.error(f"[retry] {label} : abandon après erreur : {last_error}")
        raise last_error
