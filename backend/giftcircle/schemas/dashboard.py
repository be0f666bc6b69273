import datetime as dt
from typing import Literal

from pydantic import BaseModel

from giftcircle.schemas.occasion import OccasionPublic
from giftcircle.schemas.wishlist import ClaimDetail, UserSummary, WishlistSummary


class UpcomingGift(BaseModel):
    friend: UserSummary
    occasion: Literal["birthday", "christmas"]
    days_until: int
    date: dt.date


class DashboardPublic(BaseModel):
    wishlists: list[WishlistSummary]
    upcoming_gifts: list[UpcomingGift]
    upcoming_occasions: list[OccasionPublic]
    claimed_gifts: list[ClaimDetail]
