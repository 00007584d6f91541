"""
Socket.IO relay for live pushes.

Rooms:
    user_{userId}    every socket of a user, entered on connect
    event_{eventId}  sockets that asked to follow an event (active members only)

Clients connect with ``auth={"userId": <id>}`` (or ``?userId=<id>``), the
same identity the upstream auth layer forwards as X-User-Id on HTTP calls.

The room table is python-socketio's in-process state; it is rebuilt as
clients (re)connect and never persisted. Chat is not relayed here.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional
from urllib.parse import parse_qs

import socketio
from socketio.exceptions import ConnectionRefusedError
from sqlalchemy import and_, select

from services.tripcrew.db.models import EventMember

logger = logging.getLogger(__name__)


def user_room(user_id: int) -> str:
    return f"user_{user_id}"


def event_room(event_id: int) -> str:
    return f"event_{event_id}"


def _coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def extract_user_id(environ: dict, auth: object | None) -> Optional[int]:
    if isinstance(auth, dict) and auth.get("userId") is not None:
        return _coerce_id(auth.get("userId"))

    # ASGI passes the scope; some servers nest it under "asgi.scope".
    scope = environ
    if isinstance(environ, dict) and isinstance(environ.get("asgi.scope"), dict):
        scope = environ["asgi.scope"]

    query_string: str | bytes = ""
    if isinstance(scope, dict):
        query_string = scope.get("query_string", b"") or scope.get("QUERY_STRING", "")
    if isinstance(query_string, (bytes, bytearray)):
        query_string = query_string.decode(errors="ignore")

    return _coerce_id(parse_qs(str(query_string)).get("userId", [None])[0])


def create_socket_server(
    cors_origins: list[str] | str = "*",
    message_queue: str = "",
) -> socketio.AsyncServer:
    # With a message queue, emits from other processes (the standalone sweep
    # job) reach sockets connected here.
    client_manager = socketio.AsyncRedisManager(message_queue) if message_queue else None
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=cors_origins,
        client_manager=client_manager,
        logger=False,
        engineio_logger=False,
    )


def create_external_emitter(message_queue: str) -> socketio.AsyncRedisManager:
    """Write-only handle for emitting into a server's rooms from another process."""
    return socketio.AsyncRedisManager(message_queue, write_only=True)


class SocketIORelay:
    """PushSender backed by a python-socketio AsyncServer."""

    def __init__(
        self,
        sio: socketio.AsyncServer | socketio.AsyncRedisManager,
        session_factory: Optional[Callable[[], Any]] = None,
    ):
        self.sio = sio
        # Set by the app lifespan once the database is configured.
        self.session_factory = session_factory

    def register_handlers(self) -> None:
        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on("join_event", self.on_join_event)
        self.sio.on("leave_event", self.on_leave_event)

    # -- pushes -------------------------------------------------------------

    async def push_to_user(self, user_id: int, event: str, payload: dict[str, Any]) -> None:
        await self.sio.emit(event, payload, room=user_room(user_id))

    async def publish_to_event(self, event_id: int, event: str, payload: dict[str, Any]) -> None:
        await self.sio.emit(event, payload, room=event_room(event_id))

    # -- handlers -----------------------------------------------------------

    async def on_connect(self, sid: str, environ: dict, auth: object | None = None) -> None:
        user_id = extract_user_id(environ, auth)
        if user_id is None:
            raise ConnectionRefusedError("unauthorized")

        await self.sio.save_session(sid, {"user_id": user_id})
        await self.sio.enter_room(sid, user_room(user_id))
        logger.info("socket_connected sid=%s user=%s", sid, user_id)

    async def on_disconnect(self, sid: str, *args: Any) -> None:
        # Rooms/session are cleaned up by python-socketio.
        logger.info("socket_disconnected sid=%s", sid)

    async def _is_active_member(self, event_id: int, user_id: int) -> bool:
        if self.session_factory is None:
            return False
        async with self.session_factory() as session:
            stmt = select(EventMember.id).where(
                and_(
                    EventMember.eventId == event_id,
                    EventMember.userId == user_id,
                    EventMember.status == "active",
                )
            )
            return (await session.execute(stmt)).scalars().first() is not None

    async def on_join_event(self, sid: str, data: Any) -> None:
        session = await self.sio.get_session(sid)
        user_id = session.get("user_id") if isinstance(session, dict) else None
        event_id = _coerce_id(data.get("eventId") if isinstance(data, dict) else data)

        if user_id is None or event_id is None:
            await self.sio.emit("error", {"message": "Invalid event."}, to=sid)
            return

        if not await self._is_active_member(event_id, user_id):
            await self.sio.emit("error", {"message": "Not a member of this event."}, to=sid)
            return

        await self.sio.enter_room(sid, event_room(event_id))
        await self.sio.emit("joined_event", {"eventId": event_id}, to=sid)
        logger.info("socket_joined_event sid=%s user=%s event=%s", sid, user_id, event_id)

    async def on_leave_event(self, sid: str, data: Any) -> None:
        event_id = _coerce_id(data.get("eventId") if isinstance(data, dict) else data)
        if event_id is None:
            return
        await self.sio.leave_room(sid, event_room(event_id))
        await self.sio.emit("left_event", {"eventId": event_id}, to=sid)
