from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from sqlalchemy import select

from giftcircle.api.deps import CurrentUserDep, DbSessionDep, IdPath, OptionalUserDep
from giftcircle.core.config import settings
from giftcircle.core.rate_limit import check_rate_limit
from giftcircle.models.models import PrivacyLevelEnum, User, Wishlist
from giftcircle.schemas.friend import UserProfile, UserSearchResult
from giftcircle.services.friendships import friendship_status, search_users
from giftcircle.services.privacy import are_friends, redact_user_data, user_summary
from giftcircle.services.wishlists import summarize_wishlists


router = APIRouter(prefix="/users", tags=["users"])


@router.get("/search", response_model=list[UserSearchResult])
async def search(
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
    q: str | None = Query(default=None),
) -> list[dict[str, Any]]:
    check_rate_limit(
        request,
        max_requests=settings.rate_limit_search_requests,
        window_seconds=settings.rate_limit_window_seconds,
        key_suffix=f"search:{current_user.id}",
    )
    results = await search_users(db, current_user, q)
    return [{**user_summary(user), "friendship_status": status_value} for user, status_value in results]


@router.get("/{user_id}", response_model=UserProfile)
async def get_profile(user_id: IdPath, db: DbSessionDep, viewer: OptionalUserDep) -> dict[str, Any]:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    viewer_id = viewer.id if viewer else None
    is_own_profile = viewer_id == user.id
    is_friend = await are_friends(db, viewer_id, user.id)

    stmt = select(Wishlist).where(Wishlist.owner_id == user.id, Wishlist.is_deleted.is_(False))
    if not is_own_profile:
        visible = [PrivacyLevelEnum.PUBLIC.value]
        if is_friend:
            visible.append(PrivacyLevelEnum.FRIENDS_ONLY.value)
        stmt = stmt.where(Wishlist.privacy.in_(visible))
    result = await db.execute(
        stmt.order_by(Wishlist.is_default.desc(), Wishlist.created_at.desc(), Wishlist.id.desc())
    )

    status_value = "none"
    if viewer is not None and not is_own_profile:
        status_value = await friendship_status(db, viewer, user)

    return {
        "user": redact_user_data(user_summary(user), is_friend),
        "friendship_status": status_value,
        "is_own_profile": is_own_profile,
        "wishlists": await summarize_wishlists(db, list(result.scalars().all())),
    }
