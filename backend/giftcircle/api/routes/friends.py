from typing import Any

from fastapi import APIRouter, Request, status

from giftcircle.api.deps import CurrentUserDep, DbSessionDep, IdPath
from giftcircle.core.audit import AuditAction, audit_friend_action
from giftcircle.models.models import User
from giftcircle.realtime.manager import RealtimeEvent, hub
from giftcircle.schemas.friend import (
    FriendPublic,
    FriendRequestAction,
    FriendRequestCreate,
    FriendRequestPublic,
    FriendRequestResult,
)
from giftcircle.services.friendships import (
    list_friends,
    list_incoming_requests,
    remove_friend,
    respond_to_request,
    send_friend_request,
)
from giftcircle.services.permissions import Permission, PermissionContext, require_permission
from giftcircle.services.privacy import user_summary


router = APIRouter(tags=["friends"])


def _friend_public(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name or user.email,
        "email": user.email,
        "image": user.image,
    }


async def _emit_accepted(request_id: int, requester: User, receiver: User) -> None:
    await hub.emit_to_user(
        requester.id,
        RealtimeEvent.FRIEND_ACCEPTED,
        {"request_id": request_id, "user": user_summary(receiver)},
    )
    await hub.emit_to_user(
        receiver.id,
        RealtimeEvent.FRIEND_ACCEPTED,
        {"request_id": request_id, "user": user_summary(requester)},
    )


@router.get("/friends", response_model=list[FriendPublic])
async def get_friends(db: DbSessionDep, current_user: CurrentUserDep) -> list[dict[str, Any]]:
    return [_friend_public(friend) for friend in await list_friends(db, current_user)]


@router.delete("/friends/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_friend(
    user_id: IdPath,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> None:
    await require_permission(db, PermissionContext(current_user.id), Permission.FRIENDS_MANAGE)
    await remove_friend(db, current_user, user_id)
    audit_friend_action(AuditAction.FRIEND_REMOVE, request, current_user.id, user_id)


@router.get("/friend-requests", response_model=list[FriendRequestPublic])
async def get_friend_requests(db: DbSessionDep, current_user: CurrentUserDep) -> list[dict[str, Any]]:
    return [
        {
            "id": friend_request.id,
            "email": friend_request.email,
            "status": friend_request.status,
            "created_at": friend_request.created_at,
            "requester": _friend_public(friend_request.requester) if friend_request.requester else None,
        }
        for friend_request in await list_incoming_requests(db, current_user)
    ]


@router.post("/friend-requests", response_model=FriendRequestResult, status_code=status.HTTP_201_CREATED)
async def create_friend_request(
    payload: FriendRequestCreate,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    await require_permission(db, PermissionContext(current_user.id), Permission.FRIENDS_INVITE)
    outcome = await send_friend_request(
        db,
        current_user,
        target_user_id=payload.user_id,
        email=payload.email,
    )
    target_id = outcome.target.id if outcome.target else None

    if outcome.accepted:
        audit_friend_action(AuditAction.FRIEND_ACCEPT, request, current_user.id, target_id)
        await _emit_accepted(outcome.request.id, outcome.target, current_user)
        return {
            "message": "Friend request accepted",
            "status": outcome.request.status,
            "request_id": outcome.request.id,
        }

    audit_friend_action(AuditAction.FRIEND_REQUEST, request, current_user.id, target_id)
    if outcome.target is not None:
        await hub.emit_to_user(
            outcome.target.id,
            RealtimeEvent.FRIEND_REQUEST,
            {"request_id": outcome.request.id, "requester": user_summary(current_user)},
        )
    return {
        "message": "Friend request sent",
        "status": outcome.request.status,
        "request_id": outcome.request.id,
    }


@router.post("/friend-requests/{request_id}", response_model=FriendRequestResult)
async def answer_friend_request(
    request_id: IdPath,
    payload: FriendRequestAction,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    await require_permission(db, PermissionContext(current_user.id), Permission.FRIENDS_MANAGE)
    friend_request = await respond_to_request(db, current_user, request_id, payload.action)

    if payload.action == "accept":
        audit_friend_action(AuditAction.FRIEND_ACCEPT, request, current_user.id, friend_request.requester_id)
        requester = await db.get(User, friend_request.requester_id)
        if requester is not None:
            await _emit_accepted(friend_request.id, requester, current_user)
        message = "Friend request accepted"
    else:
        audit_friend_action(AuditAction.FRIEND_IGNORE, request, current_user.id, friend_request.requester_id)
        message = "Friend request ignored"

    return {"message": message, "status": friend_request.status, "request_id": friend_request.id}
