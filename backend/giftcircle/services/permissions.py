"""Role resolution for wishlists.

A user's role on a wishlist is derived, never stored: ownership wins, then an
editor grant (collaborator), then the wishlist's privacy combined with the
friendship graph (friend / viewer). ``None`` means no access at all.
"""

from dataclasses import dataclass
from enum import Enum
import logging

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.models.models import PrivacyLevelEnum, Wishlist, WishlistEditor
from giftcircle.services.privacy import are_friends


logger = logging.getLogger("giftcircle.permissions")


class Permission(str, Enum):
    WISHLISTS_READ = "wishlists:read"
    WISHLISTS_WRITE = "wishlists:write"
    WISHLISTS_DELETE = "wishlists:delete"
    WISHLISTS_SHARE = "wishlists:share"
    ITEMS_READ = "items:read"
    ITEMS_WRITE = "items:write"
    ITEMS_DELETE = "items:delete"
    ITEMS_MOVE = "items:move"
    ITEMS_CLAIM = "items:claim"
    FRIENDS_INVITE = "friends:invite"
    FRIENDS_MANAGE = "friends:manage"
    MEMBERS_INVITE = "members:invite"
    MEMBERS_REMOVE = "members:remove"


class WishlistRole(str, Enum):
    OWNER = "owner"
    COLLABORATOR = "collaborator"
    FRIEND = "friend"
    VIEWER = "viewer"


GLOBAL_PERMISSIONS: tuple[Permission, ...] = (
    Permission.FRIENDS_INVITE,
    Permission.FRIENDS_MANAGE,
)

_READ_AND_CLAIM = (
    Permission.WISHLISTS_READ,
    Permission.ITEMS_READ,
    Permission.ITEMS_CLAIM,
)

ROLE_PERMISSIONS: dict[WishlistRole, tuple[Permission, ...]] = {
    WishlistRole.OWNER: (
        Permission.WISHLISTS_READ,
        Permission.WISHLISTS_WRITE,
        Permission.WISHLISTS_DELETE,
        Permission.WISHLISTS_SHARE,
        Permission.ITEMS_READ,
        Permission.ITEMS_WRITE,
        Permission.ITEMS_DELETE,
        Permission.ITEMS_MOVE,
        Permission.ITEMS_CLAIM,
        Permission.MEMBERS_INVITE,
        Permission.MEMBERS_REMOVE,
    ),
    WishlistRole.COLLABORATOR: (
        Permission.WISHLISTS_READ,
        Permission.WISHLISTS_WRITE,
        Permission.ITEMS_READ,
        Permission.ITEMS_WRITE,
        Permission.ITEMS_MOVE,
        Permission.ITEMS_CLAIM,
    ),
    WishlistRole.FRIEND: _READ_AND_CLAIM,
    WishlistRole.VIEWER: _READ_AND_CLAIM,
}


@dataclass(frozen=True)
class PermissionContext:
    user_id: int | None
    wishlist_id: int | None = None


@dataclass(frozen=True)
class WishlistAccess:
    role: WishlistRole
    can_delete: bool = False

    @property
    def permissions(self) -> tuple[Permission, ...]:
        granted = ROLE_PERMISSIONS[self.role]
        if self.role is WishlistRole.COLLABORATOR and self.can_delete:
            granted = granted + (Permission.ITEMS_DELETE,)
        return granted

    def allows(self, permission: Permission) -> bool:
        return permission in self.permissions


async def resolve_wishlist_access(
    db: AsyncSession,
    wishlist: Wishlist,
    user_id: int | None,
) -> WishlistAccess | None:
    if user_id is not None and wishlist.owner_id == user_id:
        return WishlistAccess(WishlistRole.OWNER)

    if wishlist.is_deleted:
        return None

    if user_id is not None:
        result = await db.execute(
            select(WishlistEditor).where(
                WishlistEditor.wishlist_id == wishlist.id,
                WishlistEditor.user_id == user_id,
            )
        )
        editor = result.scalar_one_or_none()
        if editor:
            return WishlistAccess(WishlistRole.COLLABORATOR, can_delete=bool(editor.can_delete))

    if wishlist.privacy == PrivacyLevelEnum.PUBLIC.value:
        if await are_friends(db, user_id, wishlist.owner_id):
            return WishlistAccess(WishlistRole.FRIEND)
        return WishlistAccess(WishlistRole.VIEWER)

    if wishlist.privacy == PrivacyLevelEnum.FRIENDS_ONLY.value:
        if await are_friends(db, user_id, wishlist.owner_id):
            return WishlistAccess(WishlistRole.FRIEND)

    return None


async def get_user_wishlist_role(
    db: AsyncSession,
    user_id: int | None,
    wishlist_id: int,
) -> WishlistRole | None:
    wishlist = await db.get(Wishlist, wishlist_id)
    if wishlist is None:
        return None
    access = await resolve_wishlist_access(db, wishlist, user_id)
    return access.role if access else None


async def has_permission(
    db: AsyncSession,
    context: PermissionContext,
    permission: Permission,
) -> bool:
    try:
        if context.wishlist_id is not None:
            wishlist = await db.get(Wishlist, context.wishlist_id)
            if wishlist is None:
                return False
            access = await resolve_wishlist_access(db, wishlist, context.user_id)
            return access is not None and access.allows(permission)
    except SQLAlchemyError:
        logger.exception(
            "Permission check failed user_id=%s wishlist_id=%s permission=%s",
            context.user_id,
            context.wishlist_id,
            permission.value,
        )
        return False

    return context.user_id is not None and permission in GLOBAL_PERMISSIONS


async def require_permission(
    db: AsyncSession,
    context: PermissionContext,
    permission: Permission,
) -> None:
    if not await has_permission(db, context, permission):
        logger.info(
            "Permission denied user_id=%s wishlist_id=%s permission=%s",
            context.user_id,
            context.wishlist_id,
            permission.value,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied: missing permission '{permission.value}'",
        )


async def get_user_permissions(db: AsyncSession, context: PermissionContext) -> list[Permission]:
    permissions: list[Permission] = []
    if context.wishlist_id is not None:
        wishlist = await db.get(Wishlist, context.wishlist_id)
        if wishlist is not None:
            access = await resolve_wishlist_access(db, wishlist, context.user_id)
            if access:
                permissions.extend(access.permissions)
    if context.user_id is not None:
        permissions.extend(GLOBAL_PERMISSIONS)
    return list(dict.fromkeys(permissions))
