from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, model_validator

from giftcircle.schemas.common import RecordId
from giftcircle.schemas.wishlist import UserSummary, WishlistSummary


FriendshipStatus = Literal["none", "friends", "pending_sent", "pending_received"]


class FriendRequestCreate(BaseModel):
    user_id: RecordId | None = None
    email: EmailStr | None = None

    @model_validator(mode="after")
    def _target_required(self) -> "FriendRequestCreate":
        if self.user_id is None and self.email is None:
            raise ValueError("Either user_id or email is required")
        return self


class FriendRequestAction(BaseModel):
    action: str | None = None


class FriendPublic(BaseModel):
    id: int
    name: str | None = None
    email: str
    image: str | None = None


class FriendRequestPublic(BaseModel):
    id: int
    email: str
    status: str
    created_at: datetime
    requester: FriendPublic | None = None


class FriendRequestResult(BaseModel):
    success: bool = True
    message: str
    status: str
    request_id: int | None = None


class UserSearchResult(UserSummary):
    friendship_status: FriendshipStatus


class UserProfile(BaseModel):
    user: UserSummary | None = None
    friendship_status: FriendshipStatus
    is_own_profile: bool
    wishlists: list[WishlistSummary]
