"""
API route tests

Exercises the HTTP surface end to end against the in-memory database:
- POST /alerts, GET /alerts/{id}, GET /alerts/{id}/top-donors
- POST /alerts/{id}/responses and PUT /alerts/{id}/responses/{donor_id}
- POST /alerts/{id}/responses/{donor_id}/unavailable
- PUT /alerts/{id}/status, GET /hospitals/{id}/alerts, PUT /donors/{id}/availability
- GET /analytics/alerts/{id}/responses
plus role and ownership checks and error mapping (403/404/409/422).
"""

import uuid
from datetime import datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from raktdaan.api.middleware.auth import create_access_token, decode_token, get_current_user, token_for_user
from raktdaan.db.postgres import get_db
from raktdaan.main import app
from raktdaan.models.alert import AlertStatus
from raktdaan.models.donor_response import ResponseStatus
from raktdaan.models.user import User, UserRole

API = "/api/v1"


def make_user(role: UserRole, hospital_id=None, donor_id=None) -> User:
    return User(id=uuid.uuid4(), phone=str(uuid.uuid4()), role=role, is_active=True,
                hospital_id=hospital_id, donor_id=donor_id)


@pytest_asyncio.fixture
async def client(db):
    async def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def login(user: User) -> None:
    app.dependency_overrides[get_current_user] = lambda: user


async def live_alert(factory, hospital, **kw):
    """Alert timed against the wall clock, which the routes use."""
    now = datetime.utcnow()
    return await factory.alert(hospital, created_at=now, expires_at=now + timedelta(hours=24), **kw)


class TestAuthTokens:
    def test_round_trip(self):
        token = create_access_token({"sub": "abc", "role": "donor", "donor_id": "d1"})
        data = decode_token(token)
        assert data.user_id == "abc"
        assert data.role == UserRole.DONOR
        assert data.donor_id == "d1"

    def test_token_for_donor_user(self):
        donor_id = uuid.uuid4()
        user = make_user(UserRole.DONOR, donor_id=donor_id)
        data = decode_token(token_for_user(user))
        assert data.user_id == str(user.id)
        assert data.donor_id == str(donor_id)
        assert data.hospital_id is None

    def test_garbage_token(self):
        from fastapi import HTTPException
        with pytest.raises(HTTPException) as exc:
            decode_token("not-a-token")
        assert exc.value.status_code == 401


class TestAlertRoutes:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_create_and_fetch(self, client, factory):
        hospital = await factory.hospital()
        await factory.donor()
        login(make_user(UserRole.HOSPITAL_ADMIN, hospital_id=hospital.id))

        created = await client.post(f"{API}/alerts", json={
            "blood_type": "O-", "urgency": "critical", "units_needed": 2, "location": "Kathmandu",
        })
        assert created.status_code == 201
        body = created.json()
        assert len(body["matched_donors"]) == 1

        fetched = await client.get(f"{API}/alerts/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["urgency"] == "critical"

        top = await client.get(f"{API}/alerts/{body['id']}/top-donors")
        assert top.json()["donors"][0]["priority_rank"] == 1

    async def test_donor_cannot_create_alert(self, client, factory):
        login(make_user(UserRole.DONOR, donor_id=uuid.uuid4()))
        response = await client.post(f"{API}/alerts", json={
            "blood_type": "O-", "urgency": "critical", "units_needed": 2, "location": "Kathmandu",
        })
        assert response.status_code == 403

    async def test_validation(self, client, factory):
        hospital = await factory.hospital()
        login(make_user(UserRole.HOSPITAL_ADMIN, hospital_id=hospital.id))
        response = await client.post(f"{API}/alerts", json={
            "blood_type": "Z+", "urgency": "critical", "units_needed": 0, "location": "Kathmandu",
        })
        assert response.status_code == 422

    async def test_unknown_alert(self, client):
        login(make_user(UserRole.SUPER_ADMIN))
        response = await client.get(f"{API}/alerts/{uuid.uuid4()}")
        assert response.status_code == 404

    async def test_other_hospital_forbidden(self, client, factory):
        hospital = await factory.hospital()
        alert = await live_alert(factory, hospital)
        login(make_user(UserRole.HOSPITAL_ADMIN, hospital_id=uuid.uuid4()))
        response = await client.get(f"{API}/alerts/{alert.id}/eligible-donors")
        assert response.status_code == 403

    async def test_manual_status_limited_to_hospital_statuses(self, client, factory):
        hospital = await factory.hospital()
        alert = await live_alert(factory, hospital)
        login(make_user(UserRole.HOSPITAL_ADMIN, hospital_id=hospital.id))

        lifecycle = await client.put(f"{API}/alerts/{alert.id}/status", json={"status": "donor_confirmed"})
        assert lifecycle.status_code == 422
        cancelled = await client.put(f"{API}/alerts/{alert.id}/status", json={"status": "cancelled"})
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"

    async def test_hospital_alerts_filter_and_ownership(self, client, factory):
        hospital = await factory.hospital()
        await live_alert(factory, hospital)
        await live_alert(factory, hospital, status=AlertStatus.CANCELLED)

        login(make_user(UserRole.HOSPITAL_ADMIN, hospital_id=hospital.id))
        listed = await client.get(f"{API}/hospitals/{hospital.id}/alerts", params={"status": "cancelled"})
        assert listed.status_code == 200
        assert listed.json()["total"] == 1
        assert listed.json()["alerts"][0]["status"] == "cancelled"

        login(make_user(UserRole.HOSPITAL_ADMIN, hospital_id=uuid.uuid4()))
        foreign = await client.get(f"{API}/hospitals/{hospital.id}/alerts")
        assert foreign.status_code == 403

        login(make_user(UserRole.DONOR, donor_id=uuid.uuid4()))
        assert (await client.get(f"{API}/hospitals/{hospital.id}/alerts")).status_code == 403


class TestResponseRoutes:
    async def test_respond_accept_and_report(self, client, factory):
        hospital = await factory.hospital()
        alert = await live_alert(factory, hospital)
        donor = await factory.donor()
        admin = make_user(UserRole.HOSPITAL_ADMIN, hospital_id=hospital.id)
        donor_user = make_user(UserRole.DONOR, donor_id=donor.id)

        login(donor_user)
        created = await client.post(f"{API}/alerts/{alert.id}/responses", json={"notes": "5 min away"})
        assert created.status_code == 201
        assert created.json()["status"] == "interested"

        duplicate = await client.post(f"{API}/alerts/{alert.id}/responses", json={})
        assert duplicate.status_code == 409

        confirmed = await client.put(f"{API}/alerts/{alert.id}/responses/{donor.id}/confirm", json={})
        assert confirmed.json()["status"] == "confirmed"

        login(admin)
        accepted = await client.put(f"{API}/alerts/{alert.id}/responses/{donor.id}",
                                    json={"action": "accept"})
        assert accepted.status_code == 200
        assert accepted.json()["status"] == ResponseStatus.ACCEPTED.value

        report = await client.get(f"{API}/analytics/alerts/{alert.id}/responses")
        assert report.json()["fulfillment_status"] == "donor_confirmed"

    async def test_unknown_action_rejected(self, client, factory):
        hospital = await factory.hospital()
        alert = await live_alert(factory, hospital)
        donor = await factory.donor()
        await factory.response(alert, donor)
        login(make_user(UserRole.HOSPITAL_ADMIN, hospital_id=hospital.id))
        response = await client.put(f"{API}/alerts/{alert.id}/responses/{donor.id}",
                                    json={"action": "teleport"})
        assert response.status_code == 422

    async def test_donor_cannot_confirm_for_someone_else(self, client, factory):
        hospital = await factory.hospital()
        alert = await live_alert(factory, hospital)
        donor = await factory.donor()
        await factory.response(alert, donor)
        login(make_user(UserRole.DONOR, donor_id=uuid.uuid4()))
        response = await client.put(f"{API}/alerts/{alert.id}/responses/{donor.id}/confirm", json={})
        assert response.status_code == 403

    async def test_unavailability_escalates(self, client, factory):
        hospital = await factory.hospital()
        alert = await live_alert(factory, hospital)
        donor = await factory.donor()
        await factory.response(alert, donor, status=ResponseStatus.CONFIRMED)
        login(make_user(UserRole.DONOR, donor_id=donor.id))

        response = await client.post(f"{API}/alerts/{alert.id}/responses/{donor.id}/unavailable",
                                     json={"reason": "emergency"})
        assert response.status_code == 200
        assert response.json()["success"] is False

        login(make_user(UserRole.HOSPITAL_ADMIN, hospital_id=hospital.id))
        fetched = await client.get(f"{API}/alerts/{alert.id}")
        assert fetched.json()["status"] == "escalated"
        assert fetched.json()["escalation_level"] == 3

    async def test_donor_restores_own_availability(self, client, factory):
        donor = await factory.donor(availability=False)
        login(make_user(UserRole.DONOR, donor_id=donor.id))

        response = await client.put(f"{API}/donors/{donor.id}/availability",
                                    json={"available": True, "response_time": 8})
        assert response.status_code == 200
        assert response.json()["availability"] is True
        assert response.json()["response_time"] == 8

        other = await client.put(f"{API}/donors/{uuid.uuid4()}/availability", json={"available": True})
        assert other.status_code == 403
