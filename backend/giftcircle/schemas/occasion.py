import datetime as dt

from pydantic import BaseModel, Field, field_validator, model_validator

from giftcircle.models.models import EntityTypeEnum, OccasionTypeEnum
from giftcircle.schemas.common import RecordId


class OccasionInput(BaseModel):
    """An occasion attached to a wishlist; entries without a type are ignored."""

    id: RecordId | None = None
    title: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    type: OccasionTypeEnum | None = None
    date: dt.date | None = None
    is_recurring: bool = True
    start_year: int | None = None


class OccasionCreate(BaseModel):
    title: str = Field(max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    date: dt.date
    type: OccasionTypeEnum
    is_recurring: bool = True
    start_year: int | None = None
    entity_type: EntityTypeEnum | None = None
    entity_id: RecordId | None = None

    @field_validator("title")
    @classmethod
    def _title_strip(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def _entity_pair(self) -> "OccasionCreate":
        if (self.entity_type is None) != (self.entity_id is None):
            raise ValueError("Entity type and entity ID must be provided together")
        return self


class OccasionUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    date: dt.date | None = None
    type: OccasionTypeEnum | None = None
    is_recurring: bool | None = None
    start_year: int | None = None
    entity_type: EntityTypeEnum | None = None
    entity_id: RecordId | None = None

    @field_validator("title")
    @classmethod
    def _title_update_strip(cls, value: str | None) -> str | None:
        return value.strip() if value is not None else None

    @model_validator(mode="after")
    def _entity_pair(self) -> "OccasionUpdate":
        if (self.entity_type is None) != (self.entity_id is None):
            raise ValueError("Entity type and entity ID must be provided together")
        return self


class OccasionPublic(BaseModel):
    id: int
    owner_id: int
    title: str
    description: str | None = None
    date: dt.date
    type: OccasionTypeEnum
    is_recurring: bool
    start_year: int | None = None
    entity_type: EntityTypeEnum | None = None
    entity_id: int | None = None
    created_at: dt.datetime
    next_occurrence: dt.date | None = None
    age: int | None = None
