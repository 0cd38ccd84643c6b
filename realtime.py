"""
Socket.IO relay

Clients join `project-{id}` and `collaboration-{problem_id}` rooms; HTTP
handlers push events into those rooms after a successful write. Delivery is
fire and forget: no acknowledgment, no backlog for offline clients, rooms are
not remembered across reconnects.
"""

import os
import logging
import functools
from typing import Any, Dict, List, Optional

import anyio.from_thread
import socketio

logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=CORS_ORIGINS)

# sid -> user id, filled by "user-online"
online_users: Dict[str, str] = {}


def project_room(project_id: str) -> str:
    return f"project-{project_id}"


def collaboration_room(collaboration_id: str) -> str:
    # "{problem_id}_{user_id}[_role]" ids from the profile page all map to the problem's room
    return f"collaboration-{problem_id_of(collaboration_id)}"


def problem_id_of(collaboration_id: str) -> str:
    return str(collaboration_id).split("_")[0]


def online_user_ids() -> List[str]:
    return sorted(set(online_users.values()))


def broadcast(event: str, data: Any, room: str) -> None:
    """Emit from a sync route handler running in the worker thread pool."""
    try:
        anyio.from_thread.run(functools.partial(sio.emit, event, data, room=room))
    except Exception:
        logger.warning("Could not emit %s to %s", event, room, exc_info=True)


@sio.event
async def connect(sid, environ, auth=None):
    logger.info("Socket connected: %s", sid)


@sio.event
async def disconnect(sid):
    logger.info("Socket disconnected: %s", sid)
    if online_users.pop(sid, None) is not None:
        await sio.emit("online-users", online_user_ids())


@sio.on("user-online")
async def user_online(sid, user_id):
    online_users[sid] = str(user_id)
    await sio.emit("online-users", online_user_ids())


@sio.on("join-project")
async def join_project(sid, project_id):
    await sio.enter_room(sid, project_room(project_id))
    logger.info("Socket %s joined project %s", sid, project_id)


@sio.on("leave-project")
async def leave_project(sid, project_id):
    await sio.leave_room(sid, project_room(project_id))


@sio.on("join-collaboration")
async def join_collaboration(sid, collaboration_id):
    await sio.enter_room(sid, collaboration_room(collaboration_id))
    logger.info("Socket %s joined collaboration %s", sid, collaboration_id)


@sio.on("leave-collaboration")
async def leave_collaboration(sid, collaboration_id):
    await sio.leave_room(sid, collaboration_room(collaboration_id))


def relay_target(sid: str, data: Any, key: str) -> Optional[str]:
    """Id named by `key` in a client payload, or None if the payload can't be routed."""
    if isinstance(data, dict) and data.get(key):
        return str(data[key])
    logger.warning("Dropping payload from %s without %s", sid, key)
    return None


@sio.on("project-update")
async def project_update(sid, data):
    project_id = relay_target(sid, data, "project_id")
    if project_id:
        await sio.emit("project-updated", data, room=project_room(project_id), skip_sid=sid)


@sio.on("send-message")
async def send_message(sid, data):
    project_id = relay_target(sid, data, "project_id")
    if project_id:
        await sio.emit("new-message", data, room=project_room(project_id))


@sio.on("task-update")
async def task_update(sid, data):
    project_id = relay_target(sid, data, "project_id")
    if project_id:
        await sio.emit("task-updated", data, room=project_room(project_id), skip_sid=sid)


@sio.on("send-collaboration-message")
async def send_collaboration_message(sid, data):
    collaboration_id = relay_target(sid, data, "collaboration_id")
    if collaboration_id:
        await sio.emit("new-collaboration-message", data, room=collaboration_room(collaboration_id))
