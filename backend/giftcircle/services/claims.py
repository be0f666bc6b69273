from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.models.models import Claim, User, Wishlist, WishlistItem
from giftcircle.services.privacy import user_summary
from giftcircle.services.wishlists import serialize_claim


async def list_user_claims(db: AsyncSession, user_id: int) -> list[dict[str, Any]]:
    """The user's claims, newest first, each with item and wishlist summaries."""
    result = await db.execute(
        select(Claim, WishlistItem, Wishlist, User)
        .join(WishlistItem, WishlistItem.id == Claim.item_id)
        .join(Wishlist, Wishlist.id == Claim.wishlist_id)
        .join(User, User.id == Wishlist.owner_id)
        .where(Claim.user_id == user_id)
        .order_by(Claim.created_at.desc(), Claim.id.desc())
    )
    claims: list[dict[str, Any]] = []
    for claim, item, wishlist, owner in result.all():
        claims.append(
            {
                **serialize_claim(claim),
                "item": {
                    "id": item.id,
                    "name": item.name,
                    "description": item.description,
                    "url": item.url,
                    "image_url": item.image_url,
                    "price": float(item.price) if item.price is not None else None,
                    "currency": item.currency,
                    "is_deleted": item.is_deleted,
                },
                "wishlist": {
                    "id": wishlist.id,
                    "title": wishlist.title,
                    "permalink": wishlist.permalink,
                    "owner": user_summary(owner),
                },
            }
        )
    return claims
