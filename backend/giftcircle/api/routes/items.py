import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import update

from giftcircle.api.deps import CurrentUserDep, DbSessionDep, IdPath, OptionalUserDep
from giftcircle.core.config import settings
from giftcircle.models.models import Claim, Wishlist, WishlistItem, utcnow
from giftcircle.realtime.manager import RealtimeEvent, hub
from giftcircle.schemas.wishlist import ItemMoveRequest, ItemMoveResult, ItemPublic, ItemUpdate
from giftcircle.services.permissions import Permission, resolve_wishlist_access
from giftcircle.services.wishlists import build_item_views, ensure_allowed, get_visible_item, serialize_item


router = APIRouter(prefix="/items", tags=["items"])
logger = logging.getLogger("giftcircle.items")


@router.post("/move", response_model=ItemMoveResult)
async def move_items(
    payload: ItemMoveRequest,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    if not payload.item_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Item IDs are required")
    if payload.target_wishlist_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Target wishlist is required")

    target = await db.get(Wishlist, payload.target_wishlist_id)
    target_access = await resolve_wishlist_access(db, target, current_user.id) if target else None
    if target is None or target.is_deleted or target_access is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Target wishlist not found")
    ensure_allowed(target_access, Permission.ITEMS_WRITE)

    item_ids = list(dict.fromkeys(payload.item_ids))
    items: list[WishlistItem] = []
    sources: dict[int, list[int]] = {}
    for item_id in item_ids:
        item, source, source_access = await get_visible_item(db, item_id, current_user.id)
        ensure_allowed(source_access, Permission.ITEMS_MOVE)
        items.append(item)
        if source.id != target.id:
            sources.setdefault(source.id, []).append(item.id)

    now = utcnow()
    for item in items:
        item.wishlist_id = target.id
        item.updated_at = now
    await db.execute(
        update(Claim).where(Claim.item_id.in_(item_ids)).values(wishlist_id=target.id)
    )
    await db.commit()
    logger.info(
        "Items moved count=%s target_wishlist_id=%s user_id=%s",
        len(items),
        target.id,
        current_user.id,
    )

    views = [serialize_item(item) for item in items]
    for source_id, moved_ids in sources.items():
        for moved_id in moved_ids:
            await hub.emit_to_wishlist(
                source_id,
                RealtimeEvent.ITEM_DELETED,
                {"wishlist_id": source_id, "item_id": moved_id},
            )
    for view in views:
        await hub.emit_to_wishlist(target.id, RealtimeEvent.ITEM_ADDED, {"wishlist_id": target.id, "item": view})

    return {
        "success": True,
        "moved_items_count": len(items),
        "target_wishlist_id": target.id,
        "items": views,
    }


@router.get("/{item_id}", response_model=ItemPublic)
async def get_item(item_id: IdPath, db: DbSessionDep, viewer: OptionalUserDep) -> dict[str, Any]:
    viewer_id = viewer.id if viewer else None
    item, _, access = await get_visible_item(db, item_id, viewer_id)
    views = await build_item_views(db, [item], access, viewer_id)
    return views[0]


@router.put("/{item_id}", response_model=ItemPublic)
async def update_item(
    item_id: IdPath,
    payload: ItemUpdate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    item, wishlist, access = await get_visible_item(db, item_id, current_user.id)
    ensure_allowed(access, Permission.ITEMS_WRITE)

    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and not changes["name"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
    if "currency" in changes and not changes["currency"]:
        changes["currency"] = settings.default_currency
    if "priority" in changes and changes["priority"] is None:
        changes["priority"] = 0
    if "tags" in changes and changes["tags"] is None:
        changes["tags"] = []
    for key, value in changes.items():
        setattr(item, key, value)
    item.updated_at = utcnow()

    await db.commit()
    await db.refresh(item)
    logger.info("Item updated id=%s wishlist_id=%s user_id=%s", item.id, wishlist.id, current_user.id)

    await hub.emit_to_wishlist(
        wishlist.id,
        RealtimeEvent.ITEM_UPDATED,
        {"wishlist_id": wishlist.id, "item": serialize_item(item)},
    )
    views = await build_item_views(db, [item], access, current_user.id)
    return views[0]


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(item_id: IdPath, db: DbSessionDep, current_user: CurrentUserDep) -> None:
    item, wishlist, access = await get_visible_item(db, item_id, current_user.id)
    ensure_allowed(access, Permission.ITEMS_DELETE)

    item.is_deleted = True
    item.deleted_at = utcnow()
    await db.commit()
    logger.info("Item soft-deleted id=%s wishlist_id=%s user_id=%s", item.id, wishlist.id, current_user.id)

    await hub.emit_to_wishlist(
        wishlist.id,
        RealtimeEvent.ITEM_DELETED,
        {"wishlist_id": wishlist.id, "item_id": item.id},
    )


@router.post("/{item_id}/restore", response_model=ItemPublic)
async def restore_item(item_id: IdPath, db: DbSessionDep, current_user: CurrentUserDep) -> dict[str, Any]:
    try:
        item, wishlist, access = await get_visible_item(db, item_id, current_user.id, include_deleted=True)
    except HTTPException as exc:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Item not found or already restored",
            ) from None
        raise
    if not item.is_deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found or already restored")
    ensure_allowed(access, Permission.ITEMS_DELETE)

    item.is_deleted = False
    item.deleted_at = None
    await db.commit()
    await db.refresh(item)
    logger.info("Item restored id=%s wishlist_id=%s user_id=%s", item.id, wishlist.id, current_user.id)

    view = serialize_item(item)
    await hub.emit_to_wishlist(wishlist.id, RealtimeEvent.ITEM_ADDED, {"wishlist_id": wishlist.id, "item": view})
    return view
