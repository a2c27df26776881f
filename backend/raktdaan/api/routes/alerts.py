"""
Blood alert API routes.

Endpoints:
    POST   /alerts                            Create an alert (hospital_admin)
    GET    /alerts                            Active alerts by priority (authenticated)
    GET    /alerts/urgent                     Critical/urgent alerts needing attention
    GET    /alerts/{id}                       Alert detail
    GET    /alerts/{id}/eligible-donors       Ranked eligible donors (owning hospital)
    GET    /alerts/{id}/top-donors            Top 3 with priority rank (owning hospital)
    POST   /alerts/{id}/rankings/refresh      Re-rank existing responders
    POST   /alerts/{id}/travel-times/refresh  Recompute responder ETAs
    POST   /alerts/{id}/extend                Extend expiry, recompute priority
    PUT    /alerts/{id}/status                Update alert status
    DELETE /alerts/{id}                       Delete alert and its responses
    GET    /hospitals/{id}/alerts             Alerts raised by one hospital
"""

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from raktdaan.db.postgres import get_db
from raktdaan.models.alert import AlertStatus, AlertUrgency
from raktdaan.models.donor import BloodType
from raktdaan.models.user import User, UserRole
from raktdaan.api.middleware.auth import get_current_user, require_role, ensure_alert_owner
from raktdaan.services import alert_service, ranking_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class AlertCreateRequest(BaseModel):
    blood_type: BloodType
    urgency: AlertUrgency
    units_needed: int = Field(..., ge=1)
    location: str = Field(..., min_length=1)
    contact_number: Optional[str] = None
    description: Optional[str] = None
    target_area: Optional[str] = None
    radius_km: Optional[float] = Field(default=None, gt=0)
    expires_in_hours: Optional[float] = Field(default=None, gt=0)
    hospital_id: Optional[UUID] = Field(default=None, description="Required for super_admin only")


class AlertExtendRequest(BaseModel):
    additional_hours: float = Field(..., gt=0)


class AlertStatusUpdateRequest(BaseModel):
    # Lifecycle statuses (donor_confirmed, completed, escalated) are not settable here
    status: Literal["active", "fulfilled", "expired", "cancelled"]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/alerts", status_code=status.HTTP_201_CREATED)
async def create_alert(
    payload: AlertCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    """Create a blood alert for the caller's hospital."""
    hospital_id = current_user.hospital_id
    if current_user.role == UserRole.SUPER_ADMIN:
        hospital_id = payload.hospital_id or hospital_id
    if not hospital_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You must be associated with a hospital to create an alert",
        )

    return await alert_service.create_alert(
        db,
        hospital_id=hospital_id,
        blood_type=payload.blood_type.value,
        urgency=payload.urgency,
        units_needed=payload.units_needed,
        location=payload.location,
        contact_number=payload.contact_number,
        description=payload.description,
        target_area=payload.target_area,
        radius_km=payload.radius_km,
        expires_in_hours=payload.expires_in_hours,
    )


@router.get("/alerts")
async def list_alerts(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    blood_type: Optional[BloodType] = None,
    urgency: Optional[AlertUrgency] = None,
    location: Optional[str] = None,
):
    alerts = await alert_service.list_active_alerts(
        db,
        blood_type=blood_type.value if blood_type else None,
        urgency=urgency.value if urgency else None,
        location=location,
    )
    return {"alerts": alerts, "total": len(alerts)}


@router.get("/alerts/urgent")
async def urgent_alerts(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"alerts": await alert_service.get_urgent_alerts(db)}


@router.get("/alerts/{alert_id}")
async def get_alert(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await alert_service.get_alert(db, alert_id)


@router.get("/alerts/{alert_id}/eligible-donors")
async def eligible_donors(
    alert_id: UUID,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    matches = await ranking_service.find_eligible_donors(db, alert_id, limit=limit)
    return {"donors": [m.to_dict() for m in matches], "total": len(matches)}


@router.get("/alerts/{alert_id}/top-donors")
async def top_donors(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    matches = await ranking_service.get_top_recommended_donors(db, alert_id)
    return {"donors": [m.to_dict() for m in matches]}


@router.post("/alerts/{alert_id}/rankings/refresh")
async def refresh_rankings(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    return {"rankings": await ranking_service.refresh_rankings(db, alert_id)}


@router.post("/alerts/{alert_id}/travel-times/refresh")
async def refresh_travel_times(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    return {"travel_times": await ranking_service.refresh_travel_times(db, alert_id)}


@router.post("/alerts/{alert_id}/extend")
async def extend_alert(
    alert_id: UUID,
    payload: AlertExtendRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    return await alert_service.extend_alert(db, alert_id, payload.additional_hours)


@router.put("/alerts/{alert_id}/status")
async def update_alert_status(
    alert_id: UUID,
    payload: AlertStatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    return await alert_service.update_alert_status(db, alert_id, payload.status)


@router.delete("/alerts/{alert_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_alert(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    await ensure_alert_owner(db, alert_id, current_user)
    await alert_service.delete_alert(db, alert_id)


@router.get("/hospitals/{hospital_id}/alerts")
async def hospital_alerts(
    hospital_id: UUID,
    status_filter: Optional[AlertStatus] = Query(default=None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    if current_user.role != UserRole.SUPER_ADMIN and current_user.hospital_id != hospital_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your hospital")
    alerts = await alert_service.list_hospital_alerts(
        db, hospital_id, status=status_filter.value if status_filter else None,
    )
    return {"alerts": alerts, "total": len(alerts)}
