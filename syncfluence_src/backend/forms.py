"""Form validation run before any write reaches the store."""
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator

from errors import ValidationFailed


class SignUpForm(BaseModel):
    display_name: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)

    @field_validator("display_name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class AnonymousForm(BaseModel):
    display_name: str = Field(min_length=1, max_length=50)

    @field_validator("display_name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class ProfileForm(BaseModel):
    display_name: str = Field(min_length=3, max_length=50)
    bio: str = Field(default="", max_length=160)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)
    current_password: Optional[str] = None

    @field_validator("display_name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", "password", "current_password", mode="before")
    @classmethod
    def blank_is_absent(cls, v):
        # Empty form fields mean "leave unchanged"
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("bio", mode="before")
    @classmethod
    def bio_default(cls, v):
        return v or ""


class ChannelForm(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    is_private: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


def validate_form(form_cls, **values):
    """Build a form or raise ValidationFailed naming the first bad field."""
    try:
        return form_cls(**values)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "input"
        raise ValidationFailed(f"{field}: {first.get('msg', 'invalid value')}") from e
