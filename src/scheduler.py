# scheduler.py

import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED

from services.token_manager import TokenManager

logger = logging.getLogger(__name__)

STARTUP_DELAY_SECONDS = 5


# ─────────────────────────────────────────
# JOBS
# Chaque job attrape ses erreurs : un refresh raté
# ne doit jamais tuer le scheduler.
# ─────────────────────────────────────────

def run_scheduled_refresh(tokens: TokenManager) -> None:
    """Toutes les heures, à la minute 0."""
    try:
        if tokens.should_refresh():
            logger.info("[scheduler] Refresh planifié déclenché")
            tokens.refresh()
        else:
            logger.debug("[scheduler] Refresh pas encore nécessaire")
    except Exception as e:
        logger.error(f"[scheduler] Refresh planifié en échec : {e}")


def run_backup_refresh(tokens: TokenManager) -> None:
    """
    Toutes les 30 minutes.
    Filet de sécurité si le job horaire a été manqué :
    ne rafraîchit que si le dernier refresh date de 23h ou plus.
    """
    try:
        if tokens.needs_backup_refresh():
            logger.info("[scheduler] Refresh de secours (23h+ depuis le dernier)")
            tokens.refresh()
    except Exception as e:
        logger.error(f"[scheduler] Refresh de secours en échec : {e}")


def run_startup_refresh(tokens: TokenManager) -> None:
    """Une fois, quelques secondes après le démarrage."""
    try:
        if tokens.should_refresh():
            logger.info("[scheduler] Refresh de démarrage déclenché")
            tokens.refresh()
    except Exception as e:
        logger.error(f"[scheduler] Refresh de démarrage en échec : {e}")


# ─────────────────────────────────────────
# LISTENERS
# ─────────────────────────────────────────

def _on_job_executed(event) -> None:
    if event.exception:
        logger.error(f"[scheduler] Job {event.job_id}: exception levée")


# ─────────────────────────────────────────
# BUILD SCHEDULER
# ─────────────────────────────────────────

def build_scheduler(
    tokens: TokenManager,
    timezone: str = "Europe/Moscow",
    scheduler_cls=BackgroundScheduler
):
    """
    Le scheduler tourne dans le process de l'API :
    l'état des tokens vit en mémoire, dans TokenManager.
    """
    scheduler = scheduler_cls(timezone=timezone)
    scheduler.add_listener(
        _on_job_executed,
        EVENT_JOB_ERROR | EVENT_JOB_EXECUTED
    )

    # Toutes les heures
    scheduler.add_job(
        run_scheduled_refresh,
        args=[tokens],
        trigger=CronTrigger(minute=0),
        id="token_refresh",
        name="Token: Refresh horaire",
        max_instances=1,
        coalesce=True
    )

    # Toutes les 30 minutes
    scheduler.add_job(
        run_backup_refresh,
        args=[tokens],
        trigger=CronTrigger(minute="*/30"),
        id="token_refresh_backup",
        name="Token: Refresh de secours",
        max_instances=1,
        coalesce=True
    )

    # Démarrage + 5s
    scheduler.add_job(
        run_startup_refresh,
        args=[tokens],
        trigger=DateTrigger(
            run_date=datetime.now() + timedelta(seconds=STARTUP_DELAY_SECONDS)
        ),
        id="token_refresh_startup",
        name="Token: Refresh au démarrage",
        max_instances=1,
        coalesce=True
    )

    return scheduler
