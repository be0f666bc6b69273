"""Friendship lookups and redaction of user identity for non-friends."""

from collections.abc import Iterable
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.models.models import Friendship, User


def friendship_clause(user_a: int, user_b: int):
    return or_(
        and_(Friendship.user_id == user_a, Friendship.friend_id == user_b),
        and_(Friendship.user_id == user_b, Friendship.friend_id == user_a),
    )


async def are_friends(db: AsyncSession, user_a: int | None, user_b: int | None) -> bool:
    """Users are always friends with themselves; anonymous users with nobody."""
    if user_a is None or user_b is None:
        return False
    if user_a == user_b:
        return True
    result = await db.execute(
        select(Friendship.id).where(friendship_clause(user_a, user_b)).limit(1)
    )
    return result.first() is not None


async def check_friendships(
    db: AsyncSession,
    viewer_id: int | None,
    user_ids: Iterable[int],
) -> dict[int, bool]:
    """Map every requested user id to whether it is the viewer or a friend of the viewer."""
    requested = list(dict.fromkeys(user_ids))
    friendship_map: dict[int, bool] = {user_id: False for user_id in requested}
    if not requested or viewer_id is None:
        return friendship_map

    if viewer_id in friendship_map:
        friendship_map[viewer_id] = True

    others = [user_id for user_id in requested if user_id != viewer_id]
    if not others:
        return friendship_map

    result = await db.execute(
        select(Friendship.user_id, Friendship.friend_id).where(
            or_(
                and_(Friendship.user_id == viewer_id, Friendship.friend_id.in_(others)),
                and_(Friendship.user_id.in_(others), Friendship.friend_id == viewer_id),
            )
        )
    )
    for user_id, friend_id in result.all():
        other = friend_id if user_id == viewer_id else user_id
        friendship_map[other] = True
    return friendship_map


def user_summary(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "image": user.image}


def redact_user_data(user_data: dict[str, Any] | None, is_friend: bool) -> dict[str, Any] | None:
    # The whole record goes, not individual fields.
    if is_friend:
        return user_data
    return None


def redact_multiple_users(
    users_data: list[dict[str, Any]],
    friendship_map: dict[int, bool],
) -> list[dict[str, Any] | None]:
    return [
        redact_user_data(user_data, friendship_map.get(user_data["id"], False))
        for user_data in users_data
    ]


async def redact_claims_user_data(
    db: AsyncSession,
    claims: list[dict[str, Any]],
    viewer_id: int | None,
) -> list[dict[str, Any]]:
    """Return copies of serialized claims with ``user`` hidden unless the claimer is a friend."""
    if not claims:
        return []
    friendship_map = await check_friendships(db, viewer_id, [claim["user_id"] for claim in claims])
    return [
        {
            **claim,
            "user": redact_user_data(claim.get("user"), friendship_map.get(claim["user_id"], False)),
        }
        for claim in claims
    ]
