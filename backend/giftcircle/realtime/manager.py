"""Room-based fan-out of live events to WebSocket clients.

Rooms are ``wishlist:<id>`` and ``user:<id>``. Delivery is best effort: no
ordering, persistence or replay. With ``realtime_redis_enabled`` events go
through a Redis channel so every worker delivers to its own sockets.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
import json
import logging
from typing import Any
from uuid import uuid4

import redis.asyncio as redis
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from giftcircle.core.config import settings


logger = logging.getLogger("giftcircle.ws")


class RealtimeEvent(str, Enum):
    ITEM_ADDED = "wishlist:item:added"
    ITEM_UPDATED = "wishlist:item:updated"
    ITEM_DELETED = "wishlist:item:deleted"
    WISHLIST_UPDATED = "wishlist:updated"
    CLAIM_CREATED = "claim:created"
    CLAIM_REMOVED = "claim:removed"
    FRIEND_REQUEST = "friend:request"
    FRIEND_ACCEPTED = "friend:accepted"


def wishlist_room(wishlist_id: int) -> str:
    return f"wishlist:{wishlist_id}"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


@dataclass(eq=False)
class Connection:
    websocket: WebSocket
    user_id: int | None
    id: str = field(default_factory=lambda: uuid4().hex)
    rooms: set[str] = field(default_factory=set)


class RealtimeHub:
    def __init__(self) -> None:
        self._rooms: dict[str, set[Connection]] = defaultdict(set)
        self._connections: dict[str, Connection] = {}
        self._redis: redis.Redis | None = None
        self._subscriber_task: asyncio.Task | None = None

    def register(self, websocket: WebSocket, user_id: int | None) -> Connection:
        connection = Connection(websocket=websocket, user_id=user_id)
        self._connections[connection.id] = connection
        logger.info(
            "WS register conn=%s user_id=%s total=%s",
            connection.id[:8],
            user_id,
            len(self._connections),
        )
        return connection

    def unregister(self, connection: Connection) -> None:
        for room in list(connection.rooms):
            self.leave(connection, room)
        self._connections.pop(connection.id, None)
        logger.info("WS unregister conn=%s total=%s", connection.id[:8], len(self._connections))

    def join(self, connection: Connection, room: str) -> None:
        self._rooms[room].add(connection)
        connection.rooms.add(room)
        logger.info("WS join conn=%s room=%s size=%s", connection.id[:8], room, len(self._rooms[room]))

    def leave(self, connection: Connection, room: str) -> None:
        members = self._rooms.get(room)
        connection.rooms.discard(room)
        if members is None:
            return
        members.discard(connection)
        if not members:
            self._rooms.pop(room, None)

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def emit_to_wishlist(
        self,
        wishlist_id: int,
        event: RealtimeEvent,
        data: dict[str, Any],
        *,
        exclude_user_ids: tuple[int, ...] = (),
    ) -> None:
        await self.emit(wishlist_room(wishlist_id), event, data, exclude_user_ids=exclude_user_ids)

    async def emit_to_user(self, user_id: int, event: RealtimeEvent, data: dict[str, Any]) -> None:
        await self.emit(user_room(user_id), event, data)

    async def emit(
        self,
        room: str,
        event: RealtimeEvent,
        data: dict[str, Any],
        *,
        exclude_user_ids: tuple[int, ...] = (),
    ) -> None:
        message = {"type": event.value, "data": jsonable_encoder(data)}
        if settings.realtime_redis_enabled:
            envelope = json.dumps({"room": room, "message": message, "exclude": list(exclude_user_ids)})
            try:
                client = await self._get_redis()
                await client.publish(settings.realtime_channel, envelope)
                return
            except redis.RedisError:
                logger.exception("WS publish to redis failed room=%s event=%s", room, event.value)
        await self.deliver_local(room, message, exclude_user_ids)

    async def deliver_local(
        self,
        room: str,
        message: dict[str, Any],
        exclude_user_ids: tuple[int, ...] | list[int] = (),
    ) -> int:
        members = self._rooms.get(room)
        if not members:
            return 0

        excluded = set(exclude_user_ids)
        delivered = 0
        dead: list[Connection] = []
        for connection in list(members):
            if connection.user_id is not None and connection.user_id in excluded:
                continue
            try:
                await connection.websocket.send_json(message)
                delivered += 1
            except (TypeError, ValueError):
                # Bad payload; the socket itself is fine.
                logger.exception("WS payload not serializable room=%s type=%s", room, message.get("type"))
                break
            except Exception:
                logger.exception("WS send failed room=%s conn=%s", room, connection.id[:8])
                dead.append(connection)

        for connection in dead:
            self.unregister(connection)
        if dead:
            logger.info("WS pruned room=%s total=%s", room, self.room_size(room))
        return delivered

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def relay(self, raw: str) -> int:
        """Deliver an envelope received from the Redis channel to local sockets."""
        try:
            envelope = json.loads(raw)
            room = envelope["room"]
            message = envelope["message"]
            exclude = envelope.get("exclude", [])
        except (ValueError, KeyError, TypeError):
            logger.exception("WS malformed redis envelope")
            return 0
        return await self.deliver_local(room, message, exclude)

    async def _close_pubsub(self, pubsub: Any) -> None:
        try:
            await pubsub.aclose()
        except (redis.RedisError, OSError):
            logger.warning("WS redis pubsub close failed", exc_info=True)

    async def subscribe_forever(self) -> None:
        """Listen on the realtime channel, re-subscribing with backoff after failures."""
        delay = settings.realtime_retry_min_seconds
        while True:
            pubsub = None
            try:
                client = await self._get_redis()
                pubsub = client.pubsub()
                await pubsub.subscribe(settings.realtime_channel)
                logger.info("WS redis subscriber started channel=%s", settings.realtime_channel)
                delay = settings.realtime_retry_min_seconds
                async for raw in pubsub.listen():
                    if raw.get("type") == "message":
                        await self.relay(raw["data"])
                logger.warning("WS redis subscription ended channel=%s", settings.realtime_channel)
            except asyncio.CancelledError:
                logger.info("WS redis subscriber cancelled")
                raise
            except Exception:
                logger.exception("WS redis subscriber error, retrying in %.1fs", delay)
            finally:
                if pubsub is not None:
                    await self._close_pubsub(pubsub)

            await asyncio.sleep(delay)
            delay = min(delay * 2, settings.realtime_retry_max_seconds)

    async def start_subscriber(self) -> None:
        if self._subscriber_task is not None or not settings.realtime_redis_enabled:
            return
        self._subscriber_task = asyncio.create_task(self.subscribe_forever())

    async def stop_subscriber(self) -> None:
        if self._subscriber_task is not None:
            self._subscriber_task.cancel()
            try:
                await self._subscriber_task
            except asyncio.CancelledError:
                pass
            self._subscriber_task = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


hub = RealtimeHub()
