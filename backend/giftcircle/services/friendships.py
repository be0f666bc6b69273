"""Friend requests and the symmetric friendship graph.

A friendship is two directed rows written together. Requests are addressed
by email so a request can exist before the addressee answers it.
"""

from dataclasses import dataclass
import logging

from fastapi import HTTPException, status
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from giftcircle.core.config import settings
from giftcircle.models.models import FriendRequest, FriendRequestStatusEnum, Friendship, User
from giftcircle.services.privacy import friendship_clause


logger = logging.getLogger("giftcircle.friends")

PENDING = FriendRequestStatusEnum.PENDING.value


@dataclass
class FriendRequestOutcome:
    request: FriendRequest
    target: User | None
    accepted: bool


async def _pending_request(db: AsyncSession, requester_id: int, email: str) -> FriendRequest | None:
    result = await db.execute(
        select(FriendRequest)
        .where(
            FriendRequest.requester_id == requester_id,
            func.lower(FriendRequest.email) == email.lower(),
            FriendRequest.status == PENDING,
        )
        .order_by(FriendRequest.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _has_friendship_row(db: AsyncSession, user_a: int, user_b: int) -> bool:
    result = await db.execute(
        select(Friendship.id).where(friendship_clause(user_a, user_b)).limit(1)
    )
    return result.first() is not None


async def _create_friendship_rows(db: AsyncSession, user_a: int, user_b: int) -> None:
    existing = await db.execute(
        select(Friendship.user_id, Friendship.friend_id).where(friendship_clause(user_a, user_b))
    )
    present = {tuple(row) for row in existing.all()}
    for user_id, friend_id in ((user_a, user_b), (user_b, user_a)):
        if (user_id, friend_id) not in present:
            db.add(Friendship(user_id=user_id, friend_id=friend_id))


async def friendship_status(db: AsyncSession, viewer: User | None, target: User) -> str:
    statuses = await friendship_statuses(db, viewer, [target])
    return statuses[target.id]


async def friendship_statuses(
    db: AsyncSession,
    viewer: User | None,
    targets: list[User],
) -> dict[int, str]:
    """Map each target to none | friends | pending_sent | pending_received for the viewer."""
    statuses = {target.id: "none" for target in targets}
    if viewer is None or not targets:
        return statuses

    others = [target for target in targets if target.id != viewer.id]
    if not others:
        return statuses
    other_ids = [target.id for target in others]

    friends_result = await db.execute(
        select(Friendship.user_id, Friendship.friend_id).where(
            or_(
                and_(Friendship.user_id == viewer.id, Friendship.friend_id.in_(other_ids)),
                and_(Friendship.user_id.in_(other_ids), Friendship.friend_id == viewer.id),
            )
        )
    )
    friend_ids = {
        friend_id if user_id == viewer.id else user_id
        for user_id, friend_id in friends_result.all()
    }

    emails_by_id = {target.id: target.email.lower() for target in others}
    sent_result = await db.execute(
        select(func.lower(FriendRequest.email)).where(
            FriendRequest.requester_id == viewer.id,
            func.lower(FriendRequest.email).in_(list(emails_by_id.values())),
            FriendRequest.status == PENDING,
        )
    )
    sent_emails = set(sent_result.scalars().all())

    received_result = await db.execute(
        select(FriendRequest.requester_id).where(
            FriendRequest.requester_id.in_(other_ids),
            func.lower(FriendRequest.email) == viewer.email.lower(),
            FriendRequest.status == PENDING,
        )
    )
    received_from = set(received_result.scalars().all())

    for target_id, email in emails_by_id.items():
        if target_id in friend_ids:
            statuses[target_id] = "friends"
        elif email in sent_emails:
            statuses[target_id] = "pending_sent"
        elif target_id in received_from:
            statuses[target_id] = "pending_received"
    return statuses


async def accept_request(db: AsyncSession, friend_request: FriendRequest, receiver: User) -> None:
    """Mark ``friend_request`` accepted and write both friendship rows in one commit."""
    friend_request.status = FriendRequestStatusEnum.ACCEPTED.value
    friend_request.receiver_id = receiver.id
    await _create_friendship_rows(db, friend_request.requester_id, receiver.id)
    await db.commit()
    logger.info(
        "Friend request accepted id=%s requester_id=%s receiver_id=%s",
        friend_request.id,
        friend_request.requester_id,
        receiver.id,
    )


async def send_friend_request(
    db: AsyncSession,
    requester: User,
    *,
    target_user_id: int | None = None,
    email: str | None = None,
) -> FriendRequestOutcome:
    target: User | None = None
    if target_user_id is not None:
        if target_user_id == requester.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot add yourself as a friend",
            )
        target = await db.get(User, target_user_id)
        if target is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        email = target.email
    else:
        email = (email or "").strip().lower()
        if email == requester.email.lower():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot add yourself as a friend",
            )
        result = await db.execute(select(User).where(func.lower(User.email) == email))
        target = result.scalar_one_or_none()

    if target is not None and await _has_friendship_row(db, requester.id, target.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Already friends")

    if await _pending_request(db, requester.id, email) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Friend request already sent")

    if target is not None:
        reverse = await _pending_request(db, target.id, requester.email)
        if reverse is not None:
            await accept_request(db, reverse, requester)
            return FriendRequestOutcome(request=reverse, target=target, accepted=True)

    friend_request = FriendRequest(requester_id=requester.id, email=email, status=PENDING)
    db.add(friend_request)
    await db.commit()
    await db.refresh(friend_request)
    logger.info(
        "Friend request sent id=%s requester_id=%s target_id=%s",
        friend_request.id,
        requester.id,
        target.id if target else None,
    )
    return FriendRequestOutcome(request=friend_request, target=target, accepted=False)


async def list_incoming_requests(db: AsyncSession, user: User) -> list[FriendRequest]:
    result = await db.execute(
        select(FriendRequest)
        .options(selectinload(FriendRequest.requester))
        .where(
            func.lower(FriendRequest.email) == user.email.lower(),
            FriendRequest.status == PENDING,
        )
        .order_by(FriendRequest.created_at.desc(), FriendRequest.id.desc())
    )
    return list(result.scalars().all())


async def respond_to_request(
    db: AsyncSession,
    user: User,
    request_id: int,
    action: str | None,
) -> FriendRequest:
    if action not in ("accept", "ignore"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")

    result = await db.execute(
        select(FriendRequest).where(
            FriendRequest.id == request_id,
            func.lower(FriendRequest.email) == user.email.lower(),
            FriendRequest.status == PENDING,
        )
    )
    friend_request = result.scalar_one_or_none()
    if friend_request is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Friend request not found")

    if action == "accept":
        await accept_request(db, friend_request, user)
    else:
        friend_request.status = FriendRequestStatusEnum.IGNORED.value
        friend_request.receiver_id = user.id
        await db.commit()
        logger.info("Friend request ignored id=%s receiver_id=%s", friend_request.id, user.id)
    return friend_request


async def list_friends(db: AsyncSession, user: User) -> list[User]:
    result = await db.execute(
        select(User)
        .join(Friendship, Friendship.friend_id == User.id)
        .where(Friendship.user_id == user.id)
        .order_by(func.coalesce(User.name, User.email))
    )
    return list(result.scalars().all())


async def remove_friend(db: AsyncSession, user: User, friend_id: int) -> int:
    result = await db.execute(delete(Friendship).where(friendship_clause(user.id, friend_id)))
    await db.commit()
    logger.info("Friend removed user_id=%s friend_id=%s rows=%s", user.id, friend_id, result.rowcount)
    return result.rowcount or 0


async def search_users(db: AsyncSession, viewer: User, query: str | None) -> list[tuple[User, str]]:
    term = (query or "").strip()
    if len(term) < 2:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query must be at least 2 characters",
        )

    pattern = f"%{term.lower()}%"
    result = await db.execute(
        select(User)
        .where(
            User.id != viewer.id,
            or_(
                func.lower(func.coalesce(User.name, "")).like(pattern),
                func.lower(User.email).like(pattern),
            ),
        )
        .order_by(User.id)
        .limit(settings.user_search_limit)
    )
    users = list(result.scalars().all())
    statuses = await friendship_statuses(db, viewer, users)
    return [(user, statuses[user.id]) for user in users]
