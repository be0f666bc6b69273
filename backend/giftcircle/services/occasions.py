"""Occasions: dated events (birthdays, holidays) owned by a user, optionally tied to a wishlist."""

from datetime import date
import logging

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.models.models import EntityTypeEnum, Occasion, OccasionTypeEnum
from giftcircle.schemas.occasion import OccasionInput


logger = logging.getLogger("giftcircle.occasions")

# Month/day used when a holiday occasion is given without a date.
HOLIDAY_DATES: dict[OccasionTypeEnum, tuple[int, int]] = {
    OccasionTypeEnum.CHRISTMAS: (12, 25),
    OccasionTypeEnum.VALENTINES_DAY: (2, 14),
}


def anniversary_in(original: date, year: int) -> date:
    """``original``'s month and day in ``year``; Feb 29 falls back to Feb 28."""
    try:
        return original.replace(year=year)
    except ValueError:
        return date(year, 2, 28)


def add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = value.day
    while True:
        try:
            return date(year, month, day)
        except ValueError:
            day -= 1


def calculate_next_occurrence(
    original: date,
    is_recurring: bool,
    from_date: date | None = None,
) -> date | None:
    from_date = from_date or date.today()
    if not is_recurring:
        return original if original >= from_date else None

    candidate = anniversary_in(original, from_date.year)
    if candidate < from_date:
        candidate = anniversary_in(original, from_date.year + 1)
    return candidate


def calculate_age(
    original: date,
    start_year: int | None,
    as_of: date | None = None,
) -> int | None:
    if not start_year:
        return None
    as_of = as_of or date.today()
    age = as_of.year - start_year
    if as_of < anniversary_in(original, as_of.year):
        age -= 1
    return age


def serialize_occasion(occasion: Occasion, today: date | None = None) -> dict:
    today = today or date.today()
    next_occurrence = calculate_next_occurrence(occasion.occurs_on, occasion.is_recurring, today)
    return {
        "id": occasion.id,
        "owner_id": occasion.owner_id,
        "title": occasion.title,
        "description": occasion.description,
        "date": occasion.occurs_on,
        "type": occasion.type,
        "is_recurring": occasion.is_recurring,
        "start_year": occasion.start_year,
        "entity_type": occasion.entity_type,
        "entity_id": occasion.entity_id,
        "created_at": occasion.created_at,
        "next_occurrence": next_occurrence,
        "age": calculate_age(occasion.occurs_on, occasion.start_year, next_occurrence or today),
    }


async def get_user_occasions(db: AsyncSession, user_id: int) -> list[Occasion]:
    result = await db.execute(
        select(Occasion).where(Occasion.owner_id == user_id).order_by(Occasion.occurs_on, Occasion.id)
    )
    return list(result.scalars().all())


async def get_owned_occasion(db: AsyncSession, occasion_id: int, user_id: int) -> Occasion:
    occasion = await db.get(Occasion, occasion_id)
    if occasion is None or occasion.owner_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Occasion not found")
    return occasion


async def get_upcoming_occasions(
    db: AsyncSession,
    user_id: int,
    months: int = 3,
    today: date | None = None,
) -> list[tuple[Occasion, date]]:
    today = today or date.today()
    horizon = add_months(today, months)
    upcoming: list[tuple[Occasion, date]] = []
    for occasion in await get_user_occasions(db, user_id):
        next_occurrence = calculate_next_occurrence(occasion.occurs_on, occasion.is_recurring, today)
        if next_occurrence is not None and next_occurrence <= horizon:
            upcoming.append((occasion, next_occurrence))
    upcoming.sort(key=lambda pair: pair[1])
    return upcoming


async def get_wishlist_occasions(db: AsyncSession, wishlist_id: int) -> list[Occasion]:
    result = await db.execute(
        select(Occasion)
        .where(
            Occasion.entity_type == EntityTypeEnum.WISHLIST.value,
            Occasion.entity_id == wishlist_id,
        )
        .order_by(Occasion.occurs_on, Occasion.id)
    )
    return list(result.scalars().all())


async def sync_wishlist_occasions(
    db: AsyncSession,
    owner_id: int,
    wishlist_id: int,
    entries: list[OccasionInput],
) -> None:
    """Make the wishlist's occasions match ``entries``. The caller commits."""
    existing = {occasion.id: occasion for occasion in await get_wishlist_occasions(db, wishlist_id)}
    kept: set[int] = set()
    today = date.today()

    for entry in entries:
        if entry.type is None:
            continue

        occurs_on = entry.date
        if occurs_on is None and entry.type in HOLIDAY_DATES:
            month, day = HOLIDAY_DATES[entry.type]
            occurs_on = date(today.year, month, day)
        if occurs_on is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Occasion date is required")

        values = {
            "title": (entry.title or "").strip() or entry.type.value,
            "description": entry.description,
            "occurs_on": occurs_on,
            "type": entry.type.value,
            "is_recurring": entry.is_recurring,
            "start_year": entry.start_year,
        }
        if entry.id is not None:
            occasion = existing.get(entry.id)
            if occasion is not None:
                for key, value in values.items():
                    setattr(occasion, key, value)
                kept.add(occasion.id)
            continue

        db.add(
            Occasion(
                owner_id=owner_id,
                entity_type=EntityTypeEnum.WISHLIST.value,
                entity_id=wishlist_id,
                **values,
            )
        )

    stale = [occasion_id for occasion_id in existing if occasion_id not in kept]
    if stale:
        await db.execute(delete(Occasion).where(Occasion.id.in_(stale)))
    logger.info(
        "Occasions synced wishlist_id=%s kept=%s removed=%s",
        wishlist_id,
        len(kept),
        len(stale),
    )


async def delete_wishlist_occasions(db: AsyncSession, wishlist_id: int) -> None:
    await db.execute(
        delete(Occasion).where(
            Occasion.entity_type == EntityTypeEnum.WISHLIST.value,
            Occasion.entity_id == wishlist_id,
        )
    )
