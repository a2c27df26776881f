"""
Response analytics routes (read-only).

Endpoints:
    GET /analytics/alerts/{id}/responses       Breakdown, timeline, top responders
    GET /analytics/alerts/{id}/matching        Notified vs. responded, fulfilment estimate
    GET /analytics/alerts/{id}/unavailability  Drop-out reasons and replacement success
    GET /analytics/alerts/{id}/availability    Per-responder availability and ETA
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from raktdaan.db.postgres import get_db
from raktdaan.models.user import User, UserRole
from raktdaan.api.middleware.auth import require_role, ensure_alert_owner
from raktdaan.services import analytics_service

router = APIRouter()


@router.get("/analytics/alerts/{alert_id}/responses")
async def response_analytics(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    return await analytics_service.get_response_analytics(db, alert_id)


@router.get("/analytics/alerts/{alert_id}/matching")
async def matching_analytics(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    return await analytics_service.get_matching_analytics(db, alert_id)


@router.get("/analytics/alerts/{alert_id}/unavailability")
async def unavailability_analytics(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    return await analytics_service.get_unavailability_analytics(db, alert_id)


@router.get("/analytics/alerts/{alert_id}/availability")
async def availability_updates(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    return {"donors": await analytics_service.get_donor_availability_updates(db, alert_id)}
