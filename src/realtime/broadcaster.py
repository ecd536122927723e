"""
Socket broadcaster used by the marketplace services.

Wraps the module-level helpers in ``socketServer`` behind an object so the
API layer can inject it (and tests can replace it with a recorder).
"""

from __future__ import annotations

from typing import Any

from . import socketServer


class SocketBroadcaster:

    async def to_user(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        await socketServer.send_to_user(user_id, event, data)

    async def to_job(self, job_id: str, event: str, data: dict[str, Any]) -> None:
        await socketServer.broadcast_to_job(job_id, event, data)

    async def to_dashboard(self, event: str, data: dict[str, Any]) -> None:
        await socketServer.broadcast_dashboard(event, data)
