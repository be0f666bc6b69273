import re
from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from giftcircle.models.models import ThemeEnum


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    remember_me: bool = True


def _validate_password_strength(password: str) -> str:
    """Validate password has required complexity."""
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise ValueError("Password must contain at least one digit")
    return password


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str | None = Field(default=None, max_length=120)
    birthday: date | None = None
    remember_me: bool = True

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class UserPublic(BaseModel):
    id: int
    email: EmailStr
    name: str | None = None
    image: str | None = None
    birthday: date | None = None
    theme: ThemeEnum = ThemeEnum.SYSTEM
    created_at: datetime

    model_config = {"from_attributes": True}


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=120)
    image: str | None = Field(default=None, max_length=512)
    birthday: date | None = None
    theme: ThemeEnum | None = None

    @field_validator("name")
    @classmethod
    def _name_update_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(min_length=8, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def _validate_new_password(cls, value: str) -> str:
        return _validate_password_strength(value)
