"""
Donor response lifecycle routes.

Endpoints:
    POST /alerts/{id}/responses                         Donor responds (donor)
    PUT  /alerts/{id}/responses/{donor_id}/confirm      Donor confirms availability (donor)
    PUT  /alerts/{id}/responses/{donor_id}              Accept/reject/hold/complete (hospital_admin)
    POST /alerts/{id}/responses/{donor_id}/unavailable  Donor drops out, find replacements
    PUT  /donors/{donor_id}/availability                Donor sets their own availability (donor)
"""

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from raktdaan.db.postgres import get_db
from raktdaan.models.donor_response import UnavailabilityReason
from raktdaan.models.user import User, UserRole
from raktdaan.api.middleware.auth import (
    get_current_user, require_role, ensure_alert_owner, ensure_donor_self,
)
from raktdaan.services import response_service
from raktdaan.services.performance import update_donor_availability

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class DonorResponseCreateRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=1000)
    donor_id: Optional[UUID] = Field(default=None, description="Required for super_admin only")


class DonorConfirmRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=1000)


class ManageResponseRequest(BaseModel):
    action: Literal["accept", "reject", "hold", "complete"]
    notes: Optional[str] = Field(default=None, max_length=1000)


class UnavailabilityRequest(BaseModel):
    reason: UnavailabilityReason
    notes: Optional[str] = Field(default=None, max_length=1000)


class AvailabilityUpdateRequest(BaseModel):
    available: bool
    response_time: Optional[float] = Field(default=None, ge=0, description="Minutes")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/alerts/{alert_id}/responses", status_code=status.HTTP_201_CREATED)
async def record_response(
    alert_id: UUID,
    payload: DonorResponseCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DONOR)),
):
    """Record the calling donor's first reaction to an alert."""
    donor_id = current_user.donor_id
    if current_user.role == UserRole.SUPER_ADMIN:
        donor_id = payload.donor_id or donor_id
    if not donor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Your account is not linked to a donor profile",
        )
    return await response_service.record_donor_response(
        db, alert_id=alert_id, donor_id=donor_id, notes=payload.notes,
    )


@router.put("/alerts/{alert_id}/responses/{donor_id}/confirm")
async def confirm_response(
    alert_id: UUID,
    donor_id: UUID,
    payload: DonorConfirmRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DONOR)),
):
    ensure_donor_self(current_user, donor_id)
    return await response_service.confirm_donor_response(
        db, alert_id=alert_id, donor_id=donor_id, notes=payload.notes,
    )


@router.put("/alerts/{alert_id}/responses/{donor_id}")
async def manage_response(
    alert_id: UUID,
    donor_id: UUID,
    payload: ManageResponseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.HOSPITAL_ADMIN)),
):
    """Hospital decision on a donor response."""
    await ensure_alert_owner(db, alert_id, current_user)
    return await response_service.manage_response(
        db, alert_id=alert_id, donor_id=donor_id, action=payload.action, notes=payload.notes,
    )


@router.post("/alerts/{alert_id}/responses/{donor_id}/unavailable")
async def donor_unavailable(
    alert_id: UUID,
    donor_id: UUID,
    payload: UnavailabilityRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Either the donor themself or the owning hospital may report unavailability."""
    if current_user.role == UserRole.DONOR:
        ensure_donor_self(current_user, donor_id)
    else:
        await ensure_alert_owner(db, alert_id, current_user)
    return await response_service.handle_donor_unavailability(
        db, alert_id=alert_id, donor_id=donor_id, reason=payload.reason, notes=payload.notes,
    )


@router.put("/donors/{donor_id}/availability")
async def set_donor_availability(
    donor_id: UUID,
    payload: AvailabilityUpdateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.DONOR)),
):
    ensure_donor_self(current_user, donor_id)
    donor = await update_donor_availability(
        db, donor_id, payload.available, payload.response_time,
    )
    return {
        "donor_id": str(donor.id),
        "availability": donor.availability,
        "response_time": donor.response_time,
        "last_availability_update": donor.last_availability_update.isoformat(),
    }
