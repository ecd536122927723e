"""
Doers Real-time Module
==============================

Socket.IO server and the broadcaster the services use to reach it.

Usage in FastAPI app startup::

    from src.realtime import socket_app
    app.mount("/ws", socket_app)
"""

from __future__ import annotations

from .socketServer import (
    broadcast_dashboard,
    broadcast_to_job,
    send_to_user,
    sio,
    socket_app,
)

__all__ = [
    "sio",
    "socket_app",
    "broadcast_to_job",
    "send_to_user",
    "broadcast_dashboard",
]
