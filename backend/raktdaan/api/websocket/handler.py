import logging

import socketio

from raktdaan.config import get_settings

logger = logging.getLogger(__name__)
_settings = get_settings()

# Use Redis manager so Celery workers can emit events via the same bus
_redis_mgr = socketio.AsyncRedisManager(_settings.REDIS_URL)
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*",
    client_manager=_redis_mgr,
)


@sio.event
async def connect(sid, environ):
    logger.info("Socket.IO client connected: %s", sid)


@sio.event
async def disconnect(sid):
    logger.info("Socket.IO client disconnected: %s", sid)


@sio.event
async def join_hospital(sid, data):
    """Hospital dashboard joins its room for response updates on its alerts."""
    hospital_id = data.get("hospital_id")
    if hospital_id:
        await sio.enter_room(sid, f"hospital_{hospital_id}")
        await sio.emit("joined", {"room": f"hospital_{hospital_id}"}, to=sid)


@sio.event
async def join_donor(sid, data):
    """Donor joins their personal room for match and status notifications."""
    donor_id = data.get("donor_id")
    if donor_id:
        await sio.enter_room(sid, f"donor_{donor_id}")
        await sio.emit("joined", {"room": f"donor_{donor_id}"}, to=sid)


@sio.event
async def join_alerts(sid, data=None):
    """Join the global alerts room."""
    await sio.enter_room(sid, "alerts")
    await sio.emit("joined", {"room": "alerts"}, to=sid)


# --- Broadcast functions (called from services) ---

async def broadcast_alert(alert_data: dict):
    """Push a new or escalated blood alert to every connected dashboard."""
    await sio.emit("blood_alert", alert_data, room="alerts")


async def notify_donor(donor_id: str, data: dict):
    """Send a match, replacement or status notification to one donor."""
    await sio.emit("donor_notification", data, room=f"donor_{donor_id}")


async def notify_hospital(hospital_id: str, data: dict):
    """Send a response-lifecycle update to the hospital that owns the alert."""
    await sio.emit("hospital_notification", data, room=f"hospital_{hospital_id}")
