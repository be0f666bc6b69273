"""Dashboard aggregates: own lists, friends' gift reminders, upcoming occasions and claims."""

from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.config import settings
from giftcircle.models.models import Claim, User, Wishlist, as_utc
from giftcircle.services.claims import list_user_claims
from giftcircle.services.friendships import list_friends
from giftcircle.services.occasions import anniversary_in, get_upcoming_occasions, serialize_occasion
from giftcircle.services.privacy import user_summary
from giftcircle.services.wishlists import list_user_wishlists, summarize_wishlists


def _next_and_previous(original: date, today: date) -> tuple[date, date]:
    upcoming = anniversary_in(original, today.year)
    if upcoming < today:
        upcoming = anniversary_in(original, today.year + 1)
    return upcoming, anniversary_in(original, upcoming.year - 1)


def _claimed_since(last_claim: datetime | None, since: date) -> bool:
    return last_claim is not None and as_utc(last_claim).date() >= since


def collect_upcoming_gifts(
    friends: list[User],
    last_claims: dict[int, datetime],
    today: date,
    window_days: int,
) -> list[dict[str, Any]]:
    """Birthdays and Christmas of friends within ``window_days``.

    A reminder is dropped once the viewer has claimed something from that
    friend since the previous occurrence of the same occasion.
    """
    gifts: list[dict[str, Any]] = []
    for friend in friends:
        last_claim = last_claims.get(friend.id)
        candidates: list[tuple[str, date]] = [("christmas", date(today.year, 12, 25))]
        if friend.birthday is not None:
            candidates.insert(0, ("birthday", friend.birthday))

        for occasion, original in candidates:
            upcoming, previous = _next_and_previous(original, today)
            days_until = (upcoming - today).days
            if days_until > window_days or _claimed_since(last_claim, previous):
                continue
            gifts.append(
                {
                    "friend": user_summary(friend),
                    "occasion": occasion,
                    "days_until": days_until,
                    "date": upcoming,
                }
            )
    gifts.sort(key=lambda gift: gift["days_until"])
    return gifts


async def last_claims_by_owner(db: AsyncSession, user_id: int, owner_ids: list[int]) -> dict[int, datetime]:
    if not owner_ids:
        return {}
    result = await db.execute(
        select(Wishlist.owner_id, func.max(Claim.created_at))
        .join(Wishlist, Wishlist.id == Claim.wishlist_id)
        .where(Claim.user_id == user_id, Wishlist.owner_id.in_(owner_ids))
        .group_by(Wishlist.owner_id)
    )
    return {owner_id: created_at for owner_id, created_at in result.all()}


async def build_dashboard(db: AsyncSession, user: User, today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    friends = await list_friends(db, user)
    last_claims = await last_claims_by_owner(db, user.id, [friend.id for friend in friends])
    upcoming = await get_upcoming_occasions(db, user.id, months=2, today=today)
    return {
        "wishlists": await summarize_wishlists(db, await list_user_wishlists(db, user.id)),
        "upcoming_gifts": collect_upcoming_gifts(
            friends,
            last_claims,
            today,
            settings.upcoming_gift_window_days,
        ),
        "upcoming_occasions": [serialize_occasion(occasion, today) for occasion, _ in upcoming],
        "claimed_gifts": await list_user_claims(db, user.id),
    }
