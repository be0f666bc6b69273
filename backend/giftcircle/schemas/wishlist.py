from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from giftcircle.models.models import PrivacyLevelEnum
from giftcircle.schemas.common import RecordId
from giftcircle.schemas.occasion import OccasionInput, OccasionPublic


def _strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class UserSummary(BaseModel):
    id: int
    name: str | None = None
    image: str | None = None


class WishlistCreate(BaseModel):
    title: str = Field(max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    privacy: PrivacyLevelEnum = PrivacyLevelEnum.PRIVATE
    is_default: bool = False
    occasions: list[OccasionInput] | None = None

    @field_validator("title")
    @classmethod
    def _wishlist_title_strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("description")
    @classmethod
    def _wishlist_description_strip(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class WishlistUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    privacy: PrivacyLevelEnum | None = None
    is_default: bool | None = None
    occasions: list[OccasionInput] | None = None

    @field_validator("title")
    @classmethod
    def _title_update_strip(cls, value: str | None) -> str | None:
        return value.strip() if value is not None else None

    @field_validator("description")
    @classmethod
    def _description_update_strip(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class WishlistSummary(BaseModel):
    id: int
    title: str
    description: str | None
    permalink: str
    privacy: PrivacyLevelEnum
    is_default: bool
    item_count: int = 0
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None


class ItemCreate(BaseModel):
    name: str = Field(max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    url: str | None = Field(default=None, max_length=2048)
    image_url: str | None = Field(default=None, max_length=2048)
    price: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    priority: int = 0
    tags: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("description", "url", "image_url")
    @classmethod
    def _normalize_text(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @field_validator("currency")
    @classmethod
    def _currency_upper(cls, value: str | None) -> str | None:
        return value.upper() if value else None

    @field_validator("tags")
    @classmethod
    def _tags_clean(cls, value: list[str]) -> list[str]:
        return [tag.strip() for tag in value if tag and tag.strip()]


class ItemUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    url: str | None = Field(default=None, max_length=2048)
    image_url: str | None = Field(default=None, max_length=2048)
    price: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    priority: int | None = None
    tags: list[str] | None = None

    @field_validator("name")
    @classmethod
    def _name_update_strip(cls, value: str | None) -> str | None:
        return value.strip() if value is not None else None

    @field_validator("description", "url", "image_url")
    @classmethod
    def _normalize_update_text(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @field_validator("currency")
    @classmethod
    def _currency_update_upper(cls, value: str | None) -> str | None:
        return value.upper() if value else None

    @field_validator("tags")
    @classmethod
    def _tags_update_clean(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [tag.strip() for tag in value if tag and tag.strip()]


class ItemMoveRequest(BaseModel):
    item_ids: list[RecordId] = Field(default_factory=list)
    target_wishlist_id: RecordId | None = None


class ClaimPublic(BaseModel):
    id: int
    item_id: int
    user_id: int
    wishlist_id: int
    sent: bool
    sent_at: datetime | None = None
    created_at: datetime
    user: UserSummary | None = None


class ItemPublic(BaseModel):
    id: int
    wishlist_id: int
    name: str
    description: str | None
    url: str | None
    image_url: str | None
    price: float | None
    currency: str
    priority: int
    tags: list[str]
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    claims: list[ClaimPublic] | None = None
    claim_count: int | None = None


class ItemMoveResult(BaseModel):
    success: bool
    moved_items_count: int
    target_wishlist_id: int
    items: list[ItemPublic]


class WishlistPublic(BaseModel):
    id: int
    title: str
    description: str | None
    permalink: str
    privacy: PrivacyLevelEnum
    is_default: bool
    owner_id: int
    owner: UserSummary | None = None
    role: str
    friendship_status: str
    created_at: datetime
    updated_at: datetime
    items: list[ItemPublic] = Field(default_factory=list)
    occasions: list[OccasionPublic] = Field(default_factory=list)


class EditorGrant(BaseModel):
    user_id: RecordId
    can_delete: bool = False


class EditorPublic(BaseModel):
    user_id: int
    can_delete: bool
    created_at: datetime
    user: UserSummary | None = None


class ClaimedItemSummary(BaseModel):
    id: int
    name: str
    description: str | None = None
    url: str | None = None
    image_url: str | None = None
    price: float | None = None
    currency: str
    is_deleted: bool


class ClaimedWishlistSummary(BaseModel):
    id: int
    title: str
    permalink: str
    owner: UserSummary | None = None


class ClaimDetail(ClaimPublic):
    item: ClaimedItemSummary
    wishlist: ClaimedWishlistSummary
