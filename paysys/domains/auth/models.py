import re
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class Identity(BaseModel):
    """The authenticated account a request acts on behalf of."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = True
    is_email_verified: bool = False


PHONE_PATTERN = r"^\(\d{2}\)\s\d{4,5}-\d{4}$"
DOCUMENT_PATTERN = r"^\d{11}$"


def check_password_strength(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if (
        len(value) < 8
        or not re.search(r"[a-z]", value)
        or not re.search(r"[A-Z]", value)
        or not re.search(r"\d", value)
        or not re.search(r"[@$!%*?&]", value)
    ):
        raise ValueError(
            "Password must have at least 8 characters with one uppercase letter, "
            "one lowercase letter, one number and one special character"
        )
    return value


class RegisterRequest(BaseModel):
    email: EmailStr
    password: Optional[str] = None
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    document: Optional[str] = Field(default=None, pattern=DOCUMENT_PATTERN)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value):
        return check_password_strength(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    document: Optional[str] = Field(default=None, pattern=DOCUMENT_PATTERN)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value):
        return check_password_strength(value)
