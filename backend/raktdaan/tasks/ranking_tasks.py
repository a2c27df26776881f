"""Periodic matching jobs: response re-ranking and the expiry sweep.

Both jobs are idempotent.  Each alert is re-ranked in its own transaction;
one failing alert does not stop the sweep.
"""
import asyncio
import logging
import uuid
from datetime import datetime

from sqlalchemy import select

from raktdaan.models.alert import BloodAlert, AlertStatus
from raktdaan.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

# Alerts whose responder order can still change
RANKABLE_STATUSES = (AlertStatus.ACTIVE, AlertStatus.DONOR_CONFIRMED, AlertStatus.ESCALATED)


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _make_session():
    """Create a fresh async engine + session factory bound to this task's loop.

    asyncpg connections belong to the loop that opened them, so the web
    process's global engine cannot be reused from a new loop.
    """
    from raktdaan.config import get_settings
    from raktdaan.db.postgres import build_engine

    return build_engine(get_settings().WORKER_POOL_SIZE, 0)


async def refresh_all_rankings(session_factory, *, now: datetime | None = None) -> dict:
    from raktdaan.services.ranking_service import refresh_rankings

    async with session_factory() as db:
        result = await db.execute(
            select(BloodAlert.id).where(BloodAlert.status.in_(RANKABLE_STATUSES))
        )
        alert_ids: list[uuid.UUID] = [row[0] for row in result.all()]

    refreshed, failed = 0, 0
    for alert_id in alert_ids:
        async with session_factory() as db:
            try:
                await refresh_rankings(db, alert_id, now=now)
                await db.commit()
                refreshed += 1
            except Exception:
                await db.rollback()
                failed += 1
                logger.exception("Re-ranking failed for alert %s", alert_id)

    logger.info("Ranking sweep: %d refreshed, %d failed", refreshed, failed)
    return {"refreshed": refreshed, "failed": failed}


async def expire_due_alerts(session_factory, *, now: datetime | None = None) -> int:
    from raktdaan.services.alert_service import expire_stale_alerts

    async with session_factory() as db:
        try:
            expired = await expire_stale_alerts(db, now=now)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    return expired


@celery_app.task(name="raktdaan.tasks.ranking_tasks.refresh_active_rankings")
def refresh_active_rankings():
    """Re-rank responders on every alert that is still in play."""
    async def _run():
        eng, factory = _make_session()
        try:
            return await refresh_all_rankings(factory)
        finally:
            await eng.dispose()

    return _run_async(_run())


@celery_app.task(name="raktdaan.tasks.ranking_tasks.refresh_alert_rankings")
def refresh_alert_rankings(alert_id: str):
    """Re-rank a single alert's responders on demand."""
    from raktdaan.services.ranking_service import refresh_rankings

    async def _run():
        eng, factory = _make_session()
        try:
            async with factory() as db:
                rankings = await refresh_rankings(db, uuid.UUID(alert_id))
                await db.commit()
                return rankings
        finally:
            await eng.dispose()

    return _run_async(_run())


@celery_app.task(name="raktdaan.tasks.ranking_tasks.expire_alerts")
def expire_alerts():
    """Mark alerts past their deadline as expired."""
    async def _run():
        eng, factory = _make_session()
        try:
            return await expire_due_alerts(factory)
        finally:
            await eng.dispose()

    return _run_async(_run())
