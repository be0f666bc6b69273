from datetime import date
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from giftcircle.api.deps import CurrentUserDep, DbSessionDep, IdPath
from giftcircle.models.models import Occasion, OccasionTypeEnum
from giftcircle.schemas.occasion import OccasionCreate, OccasionPublic, OccasionUpdate
from giftcircle.services.occasions import (
    get_owned_occasion,
    get_upcoming_occasions,
    get_user_occasions,
    serialize_occasion,
)


router = APIRouter(prefix="/occasions", tags=["occasions"])
logger = logging.getLogger("giftcircle.occasions")


def _validate_start_year(occasion_type: OccasionTypeEnum | str | None, start_year: int | None) -> None:
    if occasion_type != OccasionTypeEnum.BIRTHDAY or not start_year:
        return
    if start_year < 1900 or start_year > date.today().year:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid start year")


async def _upcoming(db: DbSessionDep, user_id: int, months: int) -> list[dict[str, Any]]:
    return [serialize_occasion(occasion) for occasion, _ in await get_upcoming_occasions(db, user_id, months)]


@router.get("", response_model=list[OccasionPublic])
async def list_occasions(
    db: DbSessionDep,
    current_user: CurrentUserDep,
    upcoming: bool = False,
    months: int = Query(default=3, ge=1, le=24),
) -> list[dict[str, Any]]:
    if upcoming:
        return await _upcoming(db, current_user.id, months)
    return [serialize_occasion(occasion) for occasion in await get_user_occasions(db, current_user.id)]


@router.get("/upcoming", response_model=list[OccasionPublic])
async def list_upcoming_occasions(
    db: DbSessionDep,
    current_user: CurrentUserDep,
    months: int = Query(default=3, ge=1, le=24),
) -> list[dict[str, Any]]:
    return await _upcoming(db, current_user.id, months)


@router.post("", response_model=OccasionPublic, status_code=status.HTTP_201_CREATED)
async def create_occasion(
    payload: OccasionCreate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    if not payload.title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
    _validate_start_year(payload.type, payload.start_year)

    occasion = Occasion(
        owner_id=current_user.id,
        title=payload.title,
        description=payload.description,
        occurs_on=payload.date,
        type=payload.type.value,
        is_recurring=payload.is_recurring,
        start_year=payload.start_year,
        entity_type=payload.entity_type.value if payload.entity_type else None,
        entity_id=payload.entity_id,
    )
    db.add(occasion)
    await db.commit()
    await db.refresh(occasion)
    logger.info("Occasion created id=%s owner_id=%s type=%s", occasion.id, current_user.id, occasion.type)
    return serialize_occasion(occasion)


@router.get("/{occasion_id}", response_model=OccasionPublic)
async def get_occasion(occasion_id: IdPath, db: DbSessionDep, current_user: CurrentUserDep) -> dict[str, Any]:
    return serialize_occasion(await get_owned_occasion(db, occasion_id, current_user.id))


@router.put("/{occasion_id}", response_model=OccasionPublic)
async def update_occasion(
    occasion_id: IdPath,
    payload: OccasionUpdate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> dict[str, Any]:
    occasion = await get_owned_occasion(db, occasion_id, current_user.id)
    changes = payload.model_dump(exclude_unset=True)
    if "title" in changes and not changes["title"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
    _validate_start_year(changes.get("type", occasion.type), changes.get("start_year"))

    if "date" in changes:
        if changes["date"] is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Date is required")
        changes["occurs_on"] = changes.pop("date")
    for key in ("type", "entity_type"):
        if changes.get(key) is not None:
            changes[key] = changes[key].value
    for key, value in changes.items():
        setattr(occasion, key, value)

    await db.commit()
    await db.refresh(occasion)
    return serialize_occasion(occasion)


@router.delete("/{occasion_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_occasion(occasion_id: IdPath, db: DbSessionDep, current_user: CurrentUserDep) -> None:
    occasion = await get_owned_occasion(db, occasion_id, current_user.id)
    await db.delete(occasion)
    await db.commit()
    logger.info("Occasion deleted id=%s owner_id=%s", occasion_id, current_user.id)
