from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

from .errors import UserInputError

_USERNAME_PATTERN = r"^[A-Za-z0-9_.@-]+$"


def _clean_ids(v: Any) -> list[str]:
    arr = v if isinstance(v, (list, tuple, set)) else []
    out: list[str] = []
    for x in arr:
        s = str(x or "").strip()
        if s and s not in out:
            out.append(s)
    return out


class UserCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    username: str = Field(..., min_length=3, max_length=64, pattern=_USERNAME_PATTERN)
    password: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=32)
    role: str | None = Field(default=None, max_length=80)
    groups: list[str] = Field(default_factory=list)
    active: bool = True

    @field_validator("groups", mode="before")
    @classmethod
    def _groups(cls, v: Any) -> list[str]:
        return _clean_ids(v)


class UserUpdate(BaseModel):
    """Every field is optional; `None` means "leave unchanged"."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    username: str | None = Field(default=None, min_length=3, max_length=64, pattern=_USERNAME_PATTERN)
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=32)
    role: str | None = Field(default=None, max_length=80)
    groups: list[str] | None = None
    active: bool | None = None

    @field_validator("groups", mode="before")
    @classmethod
    def _groups(cls, v: Any) -> list[str] | None:
        return None if v is None else _clean_ids(v)


class GroupInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=120)
    color: str | None = Field(default=None, max_length=32)


def validate_input(model: type[BaseModel], data: Any) -> BaseModel:
    """Validate `data` and translate pydantic errors into a field-level UserInputError."""
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        input_errors: dict[str, dict[str, Any]] = {}
        for err in e.errors():
            loc = [str(x) for x in (err.get("loc") or ())]
            name = ".".join(loc) or "__root__"
            input_errors.setdefault(name, {"message": err.get("msg", "Invalid value"), "type": err.get("type")})
        raise UserInputError(message="validation.failed", input_errors=input_errors, cause=e) from e
