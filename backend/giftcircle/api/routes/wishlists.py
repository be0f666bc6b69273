from datetime import timedelta
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.api.deps import CurrentUserDep, DbSessionDep, IdPath, OptionalUserDep
from giftcircle.core.audit import AuditAction, audit_wishlist_action
from giftcircle.core.config import settings
from giftcircle.models.models import (
    Claim,
    User,
    Wishlist,
    WishlistEditor,
    WishlistItem,
    utcnow,
)
from giftcircle.realtime.manager import RealtimeEvent, hub
from giftcircle.schemas.wishlist import (
    EditorGrant,
    EditorPublic,
    ItemCreate,
    ItemPublic,
    WishlistCreate,
    WishlistPublic,
    WishlistSummary,
    WishlistUpdate,
)
from giftcircle.services.friendships import friendship_status
from giftcircle.services.occasions import (
    delete_wishlist_occasions,
    get_wishlist_occasions,
    serialize_occasion,
    sync_wishlist_occasions,
)
from giftcircle.services.permissions import Permission, WishlistAccess, WishlistRole
from giftcircle.services.privacy import user_summary
from giftcircle.services.wishlists import (
    build_item_views,
    clear_default_flag,
    count_active_wishlists,
    ensure_allowed,
    generate_permalink,
    get_visible_wishlist,
    get_wishlist_by_permalink,
    list_active_items,
    list_user_wishlists,
    serialize_item,
    soft_delete_wishlist,
    summarize_wishlists,
    visible_owner,
)


router = APIRouter(prefix="/wishlists", tags=["wishlists"])
logger = logging.getLogger("giftcircle.wishlists")


async def _build_wishlist_view(
    db: AsyncSession,
    wishlist: Wishlist,
    access: WishlistAccess,
    viewer: User | None,
) -> dict[str, Any]:
    viewer_id = viewer.id if viewer else None
    items = await list_active_items(db, wishlist.id)
    owner = await db.get(User, wishlist.owner_id)
    status_value = "none"
    if viewer is not None and owner is not None and viewer.id != owner.id:
        status_value = await friendship_status(db, viewer, owner)

    return {
        "id": wishlist.id,
        "title": wishlist.title,
        "description": wishlist.description,
        "permalink": wishlist.permalink,
        "privacy": wishlist.privacy,
        "is_default": wishlist.is_default,
        "owner_id": wishlist.owner_id,
        "owner": await visible_owner(db, wishlist, viewer_id),
        "role": access.role.value,
        "friendship_status": status_value,
        "created_at": wishlist.created_at,
        "updated_at": wishlist.updated_at,
        "items": await build_item_views(db, items, access, viewer_id),
        "occasions": [serialize_occasion(occasion) for occasion in await get_wishlist_occasions(db, wishlist.id)],
    }


async def _get_owned_deleted_wishlist(db: AsyncSession, permalink: str, owner_id: int) -> Wishlist:
    wishlist = await get_wishlist_by_permalink(db, permalink)
    if wishlist is None or wishlist.owner_id != owner_id or not wishlist.is_deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deleted wishlist not found")
    return wishlist


async def _emit_wishlist_updated(wishlist: Wishlist) -> None:
    await hub.emit_to_wishlist(
        wishlist.id,
        RealtimeEvent.WISHLIST_UPDATED,
        {
            "wishlist_id": wishlist.id,
            "permalink": wishlist.permalink,
            "title": wishlist.title,
            "privacy": wishlist.privacy,
            "is_deleted": wishlist.is_deleted,
        },
    )


@router.get("", response_model=list[WishlistSummary])
async def list_my_wishlists(db: DbSessionDep, current_user: CurrentUserDep) -> list[dict[str, Any]]:
    wishlists = await list_user_wishlists(db, current_user.id)
    return await summarize_wishlists(db, wishlists)


@router.post("", response_model=WishlistPublic, status_code=status.HTTP_201_CREATED)
async def create_wishlist(
    payload: WishlistCreate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    if not payload.title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")

    is_default = payload.is_default or await count_active_wishlists(db, current_user.id) == 0
    if is_default:
        await clear_default_flag(db, current_user.id)

    wishlist = Wishlist(
        owner_id=current_user.id,
        title=payload.title,
        description=payload.description,
        privacy=payload.privacy.value,
        is_default=is_default,
        permalink=await generate_permalink(db, payload.title),
    )
    db.add(wishlist)
    await db.flush()
    if payload.occasions:
        await sync_wishlist_occasions(db, current_user.id, wishlist.id, payload.occasions)
    await db.commit()
    await db.refresh(wishlist)
    logger.info(
        "Wishlist created id=%s owner_id=%s permalink=%s",
        wishlist.id,
        current_user.id,
        wishlist.permalink,
    )
    return await _build_wishlist_view(db, wishlist, WishlistAccess(WishlistRole.OWNER), current_user)


@router.get("/deleted", response_model=list[WishlistSummary])
async def list_recently_deleted(
    db: DbSessionDep,
    current_user: CurrentUserDep,
    limit: int = Query(default=10, ge=1, le=100),
) -> list[dict[str, Any]]:
    cutoff = utcnow() - timedelta(days=settings.deleted_retention_days)
    result = await db.execute(
        select(Wishlist)
        .where(
            Wishlist.owner_id == current_user.id,
            Wishlist.is_deleted.is_(True),
            Wishlist.deleted_at >= cutoff,
        )
        .order_by(Wishlist.deleted_at.desc())
        .limit(limit)
    )
    wishlists = list(result.scalars().all())
    return await summarize_wishlists(db, wishlists, include_deleted_items=True)


@router.get("/{permalink}", response_model=WishlistPublic)
async def get_wishlist(
    permalink: str,
    db: DbSessionDep,
    viewer: OptionalUserDep,
) -> dict[str, Any]:
    wishlist, access = await get_visible_wishlist(db, permalink, viewer.id if viewer else None)
    return await _build_wishlist_view(db, wishlist, access, viewer)


@router.put("/{permalink}", response_model=WishlistPublic)
async def update_wishlist(
    permalink: str,
    payload: WishlistUpdate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    wishlist, access = await get_visible_wishlist(db, permalink, current_user.id)
    ensure_allowed(access, Permission.WISHLISTS_WRITE)
    is_owner = access.role is WishlistRole.OWNER

    if payload.privacy is not None and payload.privacy.value != wishlist.privacy and not is_owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the owner can change privacy",
        )
    if payload.is_default is not None and payload.is_default != wishlist.is_default and not is_owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the owner can change the default wishlist",
        )
    if payload.title is not None and not payload.title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")

    if payload.title is not None:
        wishlist.title = payload.title
    if "description" in payload.model_fields_set:
        wishlist.description = payload.description
    if payload.privacy is not None:
        wishlist.privacy = payload.privacy.value
    if payload.is_default:
        await clear_default_flag(db, wishlist.owner_id, keep_id=wishlist.id)
        wishlist.is_default = True
    if payload.occasions is not None:
        await sync_wishlist_occasions(db, wishlist.owner_id, wishlist.id, payload.occasions)

    wishlist.updated_at = utcnow()
    await db.commit()
    await db.refresh(wishlist)
    await _emit_wishlist_updated(wishlist)
    return await _build_wishlist_view(db, wishlist, access, current_user)


@router.delete("/{permalink}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_wishlist(
    permalink: str,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> None:
    wishlist, access = await get_visible_wishlist(db, permalink, current_user.id)
    if access.role is not WishlistRole.OWNER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied: missing permission '{Permission.WISHLISTS_DELETE.value}'",
        )

    await soft_delete_wishlist(db, wishlist)
    await db.commit()
    audit_wishlist_action(AuditAction.WISHLIST_DELETE, request, current_user.id, wishlist.id)
    await _emit_wishlist_updated(wishlist)


@router.post("/{permalink}/restore", response_model=WishlistSummary)
async def restore_wishlist(
    permalink: str,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    wishlist = await _get_owned_deleted_wishlist(db, permalink, current_user.id)
    wishlist.is_deleted = False
    wishlist.deleted_at = None
    if await count_active_wishlists(db, current_user.id) == 0:
        wishlist.is_default = True
    await db.commit()
    await db.refresh(wishlist)
    audit_wishlist_action(AuditAction.WISHLIST_RESTORE, request, current_user.id, wishlist.id)
    logger.info("Wishlist restored id=%s owner_id=%s", wishlist.id, current_user.id)
    summaries = await summarize_wishlists(db, [wishlist])
    return summaries[0]


@router.delete("/{permalink}/permanent", status_code=status.HTTP_204_NO_CONTENT)
async def permanently_delete_wishlist(
    permalink: str,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> None:
    wishlist = await _get_owned_deleted_wishlist(db, permalink, current_user.id)
    wishlist_id = wishlist.id
    item_ids = select(WishlistItem.id).where(WishlistItem.wishlist_id == wishlist_id)

    await delete_wishlist_occasions(db, wishlist_id)
    await db.execute(delete(Claim).where(Claim.item_id.in_(item_ids)))
    await db.execute(delete(Claim).where(Claim.wishlist_id == wishlist_id))
    await db.execute(delete(WishlistItem).where(WishlistItem.wishlist_id == wishlist_id))
    await db.execute(delete(WishlistEditor).where(WishlistEditor.wishlist_id == wishlist_id))
    await db.execute(delete(Wishlist).where(Wishlist.id == wishlist_id))
    await db.commit()
    audit_wishlist_action(AuditAction.WISHLIST_PURGE, request, current_user.id, wishlist_id)
    logger.info("Wishlist purged id=%s owner_id=%s", wishlist_id, current_user.id)


@router.get("/{permalink}/items", response_model=list[ItemPublic])
async def list_wishlist_items(
    permalink: str,
    db: DbSessionDep,
    viewer: OptionalUserDep,
) -> list[dict[str, Any]]:
    viewer_id = viewer.id if viewer else None
    wishlist, access = await get_visible_wishlist(db, permalink, viewer_id)
    items = await list_active_items(db, wishlist.id)
    return await build_item_views(db, items, access, viewer_id, only_own_claims=True)


@router.post("/{permalink}/items", response_model=ItemPublic, status_code=status.HTTP_201_CREATED)
async def create_item(
    permalink: str,
    payload: ItemCreate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    wishlist, access = await get_visible_wishlist(db, permalink, current_user.id)
    ensure_allowed(access, Permission.ITEMS_WRITE)
    if not payload.name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")

    item = WishlistItem(
        wishlist_id=wishlist.id,
        name=payload.name,
        description=payload.description,
        url=payload.url,
        image_url=payload.image_url,
        price=payload.price,
        currency=payload.currency or settings.default_currency,
        priority=payload.priority,
        tags=payload.tags,
    )
    db.add(item)
    await db.commit()
    await db.refresh(item)
    logger.info("Item created id=%s wishlist_id=%s user_id=%s", item.id, wishlist.id, current_user.id)

    view = serialize_item(item)
    await hub.emit_to_wishlist(wishlist.id, RealtimeEvent.ITEM_ADDED, {"wishlist_id": wishlist.id, "item": view})
    return view


@router.get("/{permalink}/editors", response_model=list[EditorPublic])
async def list_editors(
    permalink: str,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> list[dict[str, Any]]:
    wishlist, access = await get_visible_wishlist(db, permalink, current_user.id)
    ensure_allowed(access, Permission.MEMBERS_INVITE)
    result = await db.execute(
        select(WishlistEditor, User)
        .join(User, User.id == WishlistEditor.user_id)
        .where(WishlistEditor.wishlist_id == wishlist.id)
        .order_by(WishlistEditor.created_at, WishlistEditor.id)
    )
    return [
        {
            "user_id": editor.user_id,
            "can_delete": editor.can_delete,
            "created_at": editor.created_at,
            "user": user_summary(user),
        }
        for editor, user in result.all()
    ]


@router.post("/{permalink}/editors", response_model=EditorPublic, status_code=status.HTTP_201_CREATED)
async def grant_editor(
    permalink: str,
    payload: EditorGrant,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    wishlist, access = await get_visible_wishlist(db, permalink, current_user.id)
    ensure_allowed(access, Permission.MEMBERS_INVITE)
    if payload.user_id == wishlist.owner_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Owner cannot be an editor")
    user = await db.get(User, payload.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    result = await db.execute(
        select(WishlistEditor).where(
            WishlistEditor.wishlist_id == wishlist.id,
            WishlistEditor.user_id == user.id,
        )
    )
    editor = result.scalar_one_or_none()
    if editor is None:
        editor = WishlistEditor(wishlist_id=wishlist.id, user_id=user.id, can_delete=payload.can_delete)
        db.add(editor)
    else:
        editor.can_delete = payload.can_delete
    await db.commit()
    await db.refresh(editor)
    audit_wishlist_action(
        AuditAction.EDITOR_GRANT,
        request,
        current_user.id,
        wishlist.id,
        {"editor_id": user.id, "can_delete": editor.can_delete},
    )
    return {
        "user_id": editor.user_id,
        "can_delete": editor.can_delete,
        "created_at": editor.created_at,
        "user": user_summary(user),
    }


@router.delete("/{permalink}/editors/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_editor(
    permalink: str,
    user_id: IdPath,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> None:
    wishlist, access = await get_visible_wishlist(db, permalink, current_user.id)
    ensure_allowed(access, Permission.MEMBERS_REMOVE)
    result = await db.execute(
        delete(WishlistEditor).where(
            WishlistEditor.wishlist_id == wishlist.id,
            WishlistEditor.user_id == user_id,
        )
    )
    if not result.rowcount:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Editor not found")
    await db.commit()
    audit_wishlist_action(AuditAction.EDITOR_REVOKE, request, current_user.id, wishlist.id, {"editor_id": user_id})
