"""
WebSocket Server
================

Socket.IO server for the Doers marketplace.  Pushes proposal, contract,
payment and dispute events to the web and mobile clients and refresh hints
to the admin dashboard.

Architecture:
  - python-socketio AsyncServer mounted as an ASGI app next to FastAPI
  - Redis manager so emits reach clients on every server instance
  - JWT authentication on connect, extracting user_id and role
  - Room-based routing: ``user_<user_id>``, ``job_<job_id>``, ``dashboard``

Connection lifecycle:
  1. Client connects with ``auth: { token: "<jwt>" }``
  2. Server validates the JWT and joins the user's personal room
  3. Client joins job rooms via ``join_job``; admins join ``dashboard``
     via ``join_dashboard``
"""

from __future__ import annotations

import logging
from typing import Any

import jwt
import socketio

from src.core.config import settings

logger = logging.getLogger(__name__)

DASHBOARD_ROOM = "dashboard"


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


def job_room(job_id: str) -> str:
    return f"job_{job_id}"


# ---------------------------------------------------------------------------
# Socket.IO server instance
# ---------------------------------------------------------------------------

client_manager = socketio.AsyncRedisManager(settings.redis_url, write_only=False)

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.ws_cors_allowed_origins,
    client_manager=client_manager,
    logger=False,
    engineio_logger=False,
    ping_timeout=settings.ws_ping_timeout,
    ping_interval=settings.ws_ping_interval,
    max_http_buffer_size=1_000_000,  # 1 MB
)


# ---------------------------------------------------------------------------
# JWT authentication helper
# ---------------------------------------------------------------------------

def _authenticate_token(token: str | None) -> dict[str, Any] | None:
    """Validate a JWT and return the decoded payload, or None on failure.

    Expected payload fields:
      - sub: str  (user_id as UUID string)
      - role: str (client | doer | admin)
    """
    if not token:
        return None
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
        if "sub" not in payload or "role" not in payload:
            logger.warning("JWT missing required claims (sub, role)")
            return None
        return payload
    except jwt.ExpiredSignatureError:
        logger.warning("JWT token expired")
        return None
    except jwt.InvalidTokenError as exc:
        logger.warning("Invalid JWT token: %s", exc)
        return None


# ---------------------------------------------------------------------------
# Connect / disconnect
# ---------------------------------------------------------------------------

@sio.event
async def connect(sid: str, environ: dict[str, Any], auth: dict[str, Any] | None = None) -> bool:
    """Authenticate the connection and join the user's personal room.

    Returns ``False`` to reject unauthenticated connections.
    """
    payload = _authenticate_token((auth or {}).get("token"))
    if payload is None:
        logger.info("Connection rejected for sid=%s -- authentication failed", sid)
        return False

    user_id: str = payload["sub"]
    role: str = payload["role"]
    await sio.save_session(sid, {"user_id": user_id, "role": role})
    await sio.enter_room(sid, user_room(user_id))

    logger.info("Connected: sid=%s user_id=%s role=%s", sid, user_id, role)
    return True


@sio.event
async def disconnect(sid: str) -> None:
    logger.info("Disconnected: sid=%s", sid)


# ---------------------------------------------------------------------------
# Room management events (client-initiated)
# ---------------------------------------------------------------------------

@sio.on("join_job")
async def handle_join_job(sid: str, data: dict[str, Any]) -> dict[str, Any]:
    """Payload: { "job_id": "<uuid>" }"""
    job_id = (data or {}).get("job_id")
    if not job_id:
        return {"ok": False, "error": "job_id is required"}
    room = job_room(job_id)
    await sio.enter_room(sid, room)
    logger.info("sid=%s joined room %s", sid, room)
    return {"ok": True, "room": room}


@sio.on("leave_job")
async def handle_leave_job(sid: str, data: dict[str, Any]) -> dict[str, Any]:
    job_id = (data or {}).get("job_id")
    if not job_id:
        return {"ok": False, "error": "job_id is required"}
    room = job_room(job_id)
    await sio.leave_room(sid, room)
    logger.info("sid=%s left room %s", sid, room)
    return {"ok": True, "room": room}


@sio.on("join_dashboard")
async def handle_join_dashboard(sid: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    """Admins subscribe to dashboard refresh hints."""
    session = await sio.get_session(sid)
    if session.get("role") != "admin":
        return {"ok": False, "error": "admin only"}
    await sio.enter_room(sid, DASHBOARD_ROOM)
    return {"ok": True, "room": DASHBOARD_ROOM}


# ---------------------------------------------------------------------------
# High-level broadcast helpers
# ---------------------------------------------------------------------------

async def broadcast_to_job(job_id: str, event: str, data: dict[str, Any]) -> None:
    room = job_room(job_id)
    await sio.emit(event, data, room=room)
    logger.debug("Broadcast %s to room=%s", event, room)


async def send_to_user(user_id: str, event: str, data: dict[str, Any]) -> None:
    room = user_room(user_id)
    await sio.emit(event, data, room=room)
    logger.debug("Sent %s to room=%s", event, room)


async def broadcast_dashboard(event: str, data: dict[str, Any]) -> None:
    await sio.emit(event, data, room=DASHBOARD_ROOM)
    logger.debug("Broadcast %s to room=%s", event, DASHBOARD_ROOM)


# ---------------------------------------------------------------------------
# ASGI app for mounting onto FastAPI
# ---------------------------------------------------------------------------

socket_app = socketio.ASGIApp(
    socketio_server=sio,
    socketio_path="/ws/socket.io",
)
