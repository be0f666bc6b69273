"""Claims: a user's intent to gift an item. Never shown to the wishlist owner."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from giftcircle.api.deps import CurrentUserDep, DbSessionDep, IdPath
from giftcircle.core.audit import AuditAction, audit_claim_action
from giftcircle.models.models import Claim, utcnow
from giftcircle.realtime.manager import RealtimeEvent, hub
from giftcircle.schemas.wishlist import ClaimDetail, ClaimPublic
from giftcircle.services.claims import list_user_claims
from giftcircle.services.permissions import Permission
from giftcircle.services.wishlists import ensure_allowed, get_visible_item, serialize_claim


router = APIRouter(tags=["claims"])
logger = logging.getLogger("giftcircle.claims")


def _claim_event(claim: Claim) -> dict[str, Any]:
    return {
        "claim_id": claim.id,
        "item_id": claim.item_id,
        "wishlist_id": claim.wishlist_id,
        "user_id": claim.user_id,
    }


@router.post("/items/{item_id}/claim", response_model=ClaimPublic, status_code=status.HTTP_201_CREATED)
async def claim_item(
    item_id: IdPath,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    item, wishlist, access = await get_visible_item(db, item_id, current_user.id)
    if wishlist.owner_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot claim your own item")
    ensure_allowed(access, Permission.ITEMS_CLAIM)

    existing = await db.execute(
        select(Claim.id).where(Claim.item_id == item.id, Claim.user_id == current_user.id)
    )
    if existing.first() is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Item already claimed by you")

    claim = Claim(item_id=item.id, user_id=current_user.id, wishlist_id=wishlist.id)
    db.add(claim)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Item already claimed by you",
        ) from None
    await db.refresh(claim)

    audit_claim_action(AuditAction.CLAIM_CREATE, request, current_user.id, item.id, wishlist.id)
    logger.info("Claim created id=%s item_id=%s user_id=%s", claim.id, item.id, current_user.id)
    await hub.emit_to_wishlist(
        wishlist.id,
        RealtimeEvent.CLAIM_CREATED,
        _claim_event(claim),
        exclude_user_ids=(wishlist.owner_id,),
    )
    return serialize_claim(claim, current_user)


@router.delete("/items/{item_id}/claim", status_code=status.HTTP_204_NO_CONTENT)
async def unclaim_item(
    item_id: IdPath,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> None:
    item, wishlist, _ = await get_visible_item(db, item_id, current_user.id)
    result = await db.execute(
        select(Claim).where(Claim.item_id == item.id, Claim.user_id == current_user.id)
    )
    claim = result.scalar_one_or_none()
    if claim is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Claim not found")

    event = _claim_event(claim)
    await db.delete(claim)
    await db.commit()

    audit_claim_action(AuditAction.CLAIM_REMOVE, request, current_user.id, item.id, wishlist.id)
    logger.info("Claim removed item_id=%s user_id=%s", item.id, current_user.id)
    await hub.emit_to_wishlist(
        wishlist.id,
        RealtimeEvent.CLAIM_REMOVED,
        event,
        exclude_user_ids=(wishlist.owner_id,),
    )


@router.get("/claims", response_model=list[ClaimDetail])
async def list_my_claims(db: DbSessionDep, current_user: CurrentUserDep) -> list[dict[str, Any]]:
    return await list_user_claims(db, current_user.id)


@router.post("/claims/{claim_id}/sent", response_model=ClaimPublic)
async def mark_claim_sent(
    claim_id: IdPath,
    db: DbSessionDep,
    request: Request,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    claim = await db.get(Claim, claim_id)
    if claim is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Claim not found")
    if claim.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only mark your own claims as sent",
        )
    if claim.sent:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Gift already marked as sent")

    claim.sent = True
    claim.sent_at = utcnow()
    await db.commit()
    await db.refresh(claim)
    audit_claim_action(AuditAction.CLAIM_SENT, request, current_user.id, claim.item_id, claim.wishlist_id)
    return serialize_claim(claim, current_user)
