"""
Shared fixtures: an in-memory SQLite database per test, row factories, a
pinned travel-estimator clock and mocked Socket.IO dispatch.
"""

import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import raktdaan.models  # noqa: F401  register all ORM models with Base.metadata
from raktdaan.db.postgres import Base
from raktdaan.models.alert import BloodAlert, AlertStatus, AlertUrgency
from raktdaan.models.donor import Donor, DonorVerification, HealthStatus
from raktdaan.models.donor_response import DonorResponse, ResponseStatus
from raktdaan.models.hospital import Hospital
from raktdaan.services import travel_service

NOW = datetime(2025, 6, 1, 12, 0, 0)
HOSPITAL_COORDS = (27.7172, 85.3240)


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def notifications():
    """Replace Socket.IO dispatch so no test ever reaches Redis."""
    with patch("raktdaan.services.response_service.notify_donor", new_callable=AsyncMock) as notify_donor, \
            patch("raktdaan.services.response_service.notify_hospital", new_callable=AsyncMock) as notify_hospital, \
            patch("raktdaan.services.response_service.broadcast_alert", new_callable=AsyncMock) as broadcast, \
            patch("raktdaan.services.alert_service.notify_donor", new=notify_donor), \
            patch("raktdaan.services.alert_service.broadcast_alert", new=broadcast):
        yield SimpleNamespace(
            notify_donor=notify_donor,
            notify_hospital=notify_hospital,
            broadcast_alert=broadcast,
        )


@pytest.fixture(autouse=True)
def noon_traffic():
    """Travel estimates at midday, where the traffic multiplier is 1.0."""
    previous = travel_service.get_travel_estimator()
    travel_service.set_travel_estimator(travel_service.HeuristicEstimator(clock=lambda: NOW))
    yield
    travel_service.set_travel_estimator(previous)


class Factory:
    def __init__(self, session: AsyncSession):
        self.db = session

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.flush()
        return obj

    async def hospital(self, **kw) -> Hospital:
        fields = dict(
            id=uuid.uuid4(),
            name="Bir Hospital",
            location="Kathmandu",
            latitude=HOSPITAL_COORDS[0],
            longitude=HOSPITAL_COORDS[1],
            verified=True,
        )
        fields.update(kw)
        return await self._save(Hospital(**fields))

    async def donor(self, **kw) -> Donor:
        fields = dict(
            id=uuid.uuid4(),
            name="Donor",
            blood_type="O-",
            location="Kathmandu",
            latitude=HOSPITAL_COORDS[0],
            longitude=HOSPITAL_COORDS[1],
            availability=True,
            health_status=HealthStatus.GOOD,
            emergency_only=False,
            response_time=5.0,
            success_rate=80.0,
        )
        fields.update(kw)
        return await self._save(Donor(**fields))

    async def verification(self, donor: Donor, **kw) -> DonorVerification:
        fields = dict(
            id=uuid.uuid4(),
            donor_id=donor.id,
            health_conditions=[],
            eligibility_consent=True,
            status="approved",
        )
        fields.update(kw)
        return await self._save(DonorVerification(**fields))

    async def alert(self, hospital: Hospital, **kw) -> BloodAlert:
        fields = dict(
            id=uuid.uuid4(),
            hospital_id=hospital.id,
            blood_type="O-",
            urgency=AlertUrgency.NORMAL,
            units_needed=2,
            location="Kathmandu",
            status=AlertStatus.ACTIVE,
            created_at=NOW - timedelta(minutes=10),
            expires_at=NOW + timedelta(hours=24),
            priority_score=30,
            matched_donors=[],
            notifications_sent=0,
            escalation_level=0,
            total_responses=0,
        )
        fields.update(kw)
        return await self._save(BloodAlert(**fields))

    async def response(self, alert: BloodAlert, donor: Donor, **kw) -> DonorResponse:
        fields = dict(
            id=uuid.uuid4(),
            alert_id=alert.id,
            donor_id=donor.id,
            status=ResponseStatus.INTERESTED,
            match_score=80.0,
            response_speed_s=300,
            estimated_travel_time=5,
            responded_at=NOW - timedelta(minutes=5),
            is_primary_donor=False,
            is_replacement=False,
        )
        fields.update(kw)
        return await self._save(DonorResponse(**fields))


@pytest.fixture
def factory(db):
    return Factory(db)
