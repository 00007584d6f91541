from services.tripcrew.realtime.relay import (
    SocketIORelay,
    create_external_emitter,
    create_socket_server,
    event_room,
    extract_user_id,
    user_room,
)

__all__ = [
    "SocketIORelay",
    "create_external_emitter",
    "create_socket_server",
    "event_room",
    "extract_user_id",
    "user_room",
]
