import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.api.deps import SessionFactoryDep
from giftcircle.core.config import settings
from giftcircle.core.security import user_id_from_token
from giftcircle.models.models import MAX_ID, User, Wishlist
from giftcircle.realtime.manager import Connection, hub, user_room, wishlist_room
from giftcircle.services.permissions import resolve_wishlist_access

router = APIRouter(tags=["ws"])
logger = logging.getLogger("giftcircle.ws")


def _error(message: str) -> dict[str, str]:
    return {"type": "error", "message": message}


def _extract_token(websocket: WebSocket) -> str | None:
    auth_header = websocket.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.removeprefix("Bearer ").strip() or None
    if websocket.query_params.get("token"):
        return websocket.query_params["token"]
    return websocket.cookies.get("access_token")


async def _resolve_viewer(db: AsyncSession, token: str | None) -> User | None:
    user_id = user_id_from_token(token)
    if user_id is None or not 1 <= user_id <= MAX_ID:
        return None
    return await db.get(User, user_id)


def _int_field(message: dict[str, Any], key: str) -> int | None:
    value = message.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return None


async def handle_message(db: AsyncSession, connection: Connection, raw: str) -> dict[str, Any]:
    """Apply one client message to the connection and build the reply."""
    try:
        message = json.loads(raw)
    except ValueError:
        return _error("Invalid JSON")
    if not isinstance(message, dict):
        return _error("Invalid message")

    message_type = message.get("type")
    if message_type == "ping":
        return {"type": "pong"}

    if message_type in ("join:wishlist", "leave:wishlist"):
        wishlist_id = _int_field(message, "wishlist_id")
        if wishlist_id is None:
            return _error("wishlist_id is required")
        room = wishlist_room(wishlist_id)
        if message_type == "leave:wishlist":
            hub.leave(connection, room)
            return {"type": "left", "room": room}

        wishlist = await db.get(Wishlist, wishlist_id) if 1 <= wishlist_id <= MAX_ID else None
        access = await resolve_wishlist_access(db, wishlist, connection.user_id) if wishlist else None
        if access is None:
            logger.info("WS join denied conn=%s user_id=%s room=%s", connection.id[:8], connection.user_id, room)
            return _error("Access denied to wishlist")
        hub.join(connection, room)
        return {"type": "joined", "room": room}

    if message_type in ("join:user", "leave:user"):
        user_id = _int_field(message, "user_id")
        if connection.user_id is None or user_id != connection.user_id:
            return _error("Can only join your own user room")
        room = user_room(user_id)
        if message_type == "leave:user":
            hub.leave(connection, room)
            return {"type": "left", "room": room}
        hub.join(connection, room)
        return {"type": "joined", "room": room}

    return _error(f"Unknown message type: {message_type}")


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket, session_factory: SessionFactoryDep) -> None:
    await websocket.accept()
    async with session_factory() as db:
        viewer = await _resolve_viewer(db, _extract_token(websocket))
    connection = hub.register(websocket, viewer.id if viewer else None)
    pong_timeout = max(settings.ws_ping_timeout - settings.ws_ping_interval, 1)

    try:
        while True:
            try:
                raw = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=settings.ws_ping_interval,
                )
            except asyncio.TimeoutError:
                try:
                    await asyncio.wait_for(
                        websocket.send_json({"type": "ping"}),
                        timeout=pong_timeout,
                    )
                except (asyncio.TimeoutError, RuntimeError):
                    logger.info("WS idle timeout, closing conn=%s", connection.id[:8])
                    break
                continue

            async with session_factory() as db:
                reply = await handle_message(db, connection, raw)
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info("WS disconnected conn=%s", connection.id[:8])
    finally:
        hub.unregister(connection)
