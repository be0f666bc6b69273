from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from giftcircle.api.deps import CurrentUserDep, DbSessionDep
from giftcircle.models.models import MAX_ID, Wishlist
from giftcircle.services.permissions import PermissionContext, get_user_permissions, get_user_wishlist_role
from giftcircle.services.wishlists import get_wishlist_by_permalink


router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("")
async def get_permissions(
    db: DbSessionDep,
    current_user: CurrentUserDep,
    wishlist: str | None = Query(default=None, description="Wishlist id or permalink"),
) -> dict[str, Any]:
    user_id = current_user.id
    wishlist_id: int | None = None
    if wishlist:
        target = None
        if wishlist.isascii() and wishlist.isdigit() and int(wishlist) <= MAX_ID:
            target = await db.get(Wishlist, int(wishlist))
        if target is None:
            target = await get_wishlist_by_permalink(db, wishlist)
        if target is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wishlist not found")
        wishlist_id = target.id

    context = PermissionContext(user_id=user_id, wishlist_id=wishlist_id)
    permissions = await get_user_permissions(db, context)
    role = await get_user_wishlist_role(db, user_id, wishlist_id) if wishlist_id is not None else None
    return {
        "permissions": [permission.value for permission in permissions],
        "role": role.value if role else None,
        "user_id": user_id,
        "context": {"wishlist_id": wishlist_id},
    }
