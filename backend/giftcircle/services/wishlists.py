"""Wishlist lookup, permalink generation and serialization shared by the wishlist, item and claim routes."""

from collections import defaultdict
import logging
import re
import unicodedata
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from giftcircle.models.models import Claim, PrivacyLevelEnum, User, Wishlist, WishlistItem, utcnow
from giftcircle.services.permissions import (
    Permission,
    WishlistAccess,
    WishlistRole,
    resolve_wishlist_access,
)
from giftcircle.services.privacy import are_friends, redact_claims_user_data, redact_user_data, user_summary


logger = logging.getLogger("giftcircle.wishlists")

PERMALINK_MAX_LENGTH = 50


def slugify(title: str) -> str:
    ascii_title = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_title.lower()).strip("-")
    slug = slug[:PERMALINK_MAX_LENGTH].strip("-")
    return slug or "wishlist"


async def generate_permalink(db: AsyncSession, title: str) -> str:
    base = slugify(title)
    permalink = base
    counter = 1
    while True:
        existing = await db.execute(select(Wishlist.id).where(Wishlist.permalink == permalink))
        if existing.first() is None:
            return permalink
        permalink = f"{base}-{counter}"
        counter += 1


async def clear_default_flag(db: AsyncSession, owner_id: int, keep_id: int | None = None) -> None:
    stmt = (
        update(Wishlist)
        .where(Wishlist.owner_id == owner_id, Wishlist.is_default.is_(True))
        .values(is_default=False)
    )
    if keep_id is not None:
        stmt = stmt.where(Wishlist.id != keep_id)
    await db.execute(stmt)


async def count_active_wishlists(db: AsyncSession, owner_id: int) -> int:
    result = await db.execute(
        select(func.count(Wishlist.id)).where(
            Wishlist.owner_id == owner_id,
            Wishlist.is_deleted.is_(False),
        )
    )
    return int(result.scalar_one())


async def item_counts(db: AsyncSession, wishlist_ids: list[int], include_deleted: bool = False) -> dict[int, int]:
    if not wishlist_ids:
        return {}
    stmt = (
        select(WishlistItem.wishlist_id, func.count(WishlistItem.id))
        .where(WishlistItem.wishlist_id.in_(wishlist_ids))
        .group_by(WishlistItem.wishlist_id)
    )
    if not include_deleted:
        stmt = stmt.where(WishlistItem.is_deleted.is_(False))
    result = await db.execute(stmt)
    return {wishlist_id: count for wishlist_id, count in result.all()}


def serialize_wishlist_summary(wishlist: Wishlist, item_count: int = 0) -> dict[str, Any]:
    return {
        "id": wishlist.id,
        "title": wishlist.title,
        "description": wishlist.description,
        "permalink": wishlist.permalink,
        "privacy": wishlist.privacy,
        "is_default": wishlist.is_default,
        "item_count": item_count,
        "created_at": wishlist.created_at,
        "updated_at": wishlist.updated_at,
        "deleted_at": wishlist.deleted_at,
    }


async def summarize_wishlists(db: AsyncSession, wishlists: list[Wishlist], include_deleted_items: bool = False) -> list[dict[str, Any]]:
    counts = await item_counts(db, [wishlist.id for wishlist in wishlists], include_deleted_items)
    return [serialize_wishlist_summary(wishlist, counts.get(wishlist.id, 0)) for wishlist in wishlists]


async def list_user_wishlists(db: AsyncSession, owner_id: int) -> list[Wishlist]:
    result = await db.execute(
        select(Wishlist)
        .where(Wishlist.owner_id == owner_id, Wishlist.is_deleted.is_(False))
        .order_by(Wishlist.is_default.desc(), Wishlist.created_at.desc(), Wishlist.id.desc())
    )
    return list(result.scalars().all())


async def get_wishlist_by_permalink(db: AsyncSession, permalink: str) -> Wishlist | None:
    result = await db.execute(select(Wishlist).where(Wishlist.permalink == permalink))
    return result.scalar_one_or_none()


async def get_visible_wishlist(
    db: AsyncSession,
    permalink: str,
    viewer_id: int | None,
) -> tuple[Wishlist, WishlistAccess]:
    """Return the wishlist and the viewer's access, or 404 when missing, deleted or not visible."""
    wishlist = await get_wishlist_by_permalink(db, permalink)
    if wishlist is None or wishlist.is_deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wishlist not found")
    access = await resolve_wishlist_access(db, wishlist, viewer_id)
    if access is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wishlist not found")
    return wishlist, access


def ensure_allowed(access: WishlistAccess, permission: Permission) -> None:
    if not access.allows(permission):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied: missing permission '{permission.value}'",
        )


async def get_visible_item(
    db: AsyncSession,
    item_id: int,
    viewer_id: int | None,
    *,
    include_deleted: bool = False,
) -> tuple[WishlistItem, Wishlist, WishlistAccess]:
    item = await db.get(WishlistItem, item_id)
    if item is None or (item.is_deleted and not include_deleted):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    wishlist = await db.get(Wishlist, item.wishlist_id)
    access = await resolve_wishlist_access(db, wishlist, viewer_id) if wishlist else None
    if wishlist is None or wishlist.is_deleted or access is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return item, wishlist, access


def serialize_claim(claim: Claim, user: User | None = None) -> dict[str, Any]:
    return {
        "id": claim.id,
        "item_id": claim.item_id,
        "user_id": claim.user_id,
        "wishlist_id": claim.wishlist_id,
        "sent": claim.sent,
        "sent_at": claim.sent_at,
        "created_at": claim.created_at,
        "user": user_summary(user),
    }


def serialize_item(
    item: WishlistItem,
    claims: list[dict[str, Any]] | None = None,
    claim_count: int | None = None,
) -> dict[str, Any]:
    return {
        "id": item.id,
        "wishlist_id": item.wishlist_id,
        "name": item.name,
        "description": item.description,
        "url": item.url,
        "image_url": item.image_url,
        "price": float(item.price) if item.price is not None else None,
        "currency": item.currency,
        "priority": item.priority,
        "tags": list(item.tags or []),
        "created_at": item.created_at,
        "updated_at": item.updated_at,
        "deleted_at": item.deleted_at,
        "claims": claims,
        "claim_count": claim_count,
    }


async def list_active_items(db: AsyncSession, wishlist_id: int) -> list[WishlistItem]:
    result = await db.execute(
        select(WishlistItem)
        .where(WishlistItem.wishlist_id == wishlist_id, WishlistItem.is_deleted.is_(False))
        .order_by(WishlistItem.priority.desc(), WishlistItem.created_at.desc(), WishlistItem.id.desc())
    )
    return list(result.scalars().all())


async def build_item_views(
    db: AsyncSession,
    items: list[WishlistItem],
    access: WishlistAccess,
    viewer_id: int | None,
    *,
    only_own_claims: bool = False,
) -> list[dict[str, Any]]:
    """Serialize items with the claim data this viewer may see.

    The owner gets neither claims nor counts, anonymous viewers get counts
    only, everyone else gets claims with claimer identity redacted for
    non-friends.
    """
    if access.role is WishlistRole.OWNER:
        return [serialize_item(item) for item in items]
    if not items:
        return []

    result = await db.execute(
        select(Claim)
        .options(selectinload(Claim.user))
        .where(Claim.item_id.in_([item.id for item in items]))
        .order_by(Claim.created_at, Claim.id)
    )
    claims_by_item: dict[int, list[Claim]] = defaultdict(list)
    for claim in result.scalars().all():
        claims_by_item[claim.item_id].append(claim)

    if viewer_id is None:
        return [serialize_item(item, claim_count=len(claims_by_item[item.id])) for item in items]

    views: list[dict[str, Any]] = []
    for item in items:
        claims = claims_by_item[item.id]
        if only_own_claims:
            claims = [claim for claim in claims if claim.user_id == viewer_id]
        serialized = [serialize_claim(claim, claim.user) for claim in claims]
        redacted = await redact_claims_user_data(db, serialized, viewer_id)
        views.append(serialize_item(item, claims=redacted, claim_count=len(claims_by_item[item.id])))
    return views


async def visible_owner(db: AsyncSession, wishlist: Wishlist, viewer_id: int | None) -> dict[str, Any] | None:
    owner = await db.get(User, wishlist.owner_id)
    summary = user_summary(owner)
    if wishlist.privacy == PrivacyLevelEnum.PUBLIC.value or viewer_id == wishlist.owner_id:
        return summary
    return redact_user_data(summary, await are_friends(db, viewer_id, wishlist.owner_id))


async def soft_delete_wishlist(db: AsyncSession, wishlist: Wishlist) -> None:
    """Mark deleted and hand the default flag to another list. The caller commits."""
    if wishlist.is_default:
        result = await db.execute(
            select(Wishlist)
            .where(
                Wishlist.owner_id == wishlist.owner_id,
                Wishlist.id != wishlist.id,
                Wishlist.is_deleted.is_(False),
            )
            .order_by(Wishlist.created_at.desc(), Wishlist.id.desc())
            .limit(1)
        )
        successor = result.scalar_one_or_none()
        if successor is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete the only wishlist",
            )
        successor.is_default = True
        wishlist.is_default = False

    wishlist.is_deleted = True
    wishlist.deleted_at = utcnow()
    logger.info("Wishlist soft-deleted id=%s owner_id=%s", wishlist.id, wishlist.owner_id)
