"""Company schemas."""

from typing import Any, Optional

from pydantic import Field

from app.schemas.base import BaseSchema, IDMixin, TimestampMixin, UpdateSchema


class CompanyCreate(BaseSchema):
    """Create a company (platform administrators only)."""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=2, max_length=100, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    settings: dict[str, Any] = Field(default_factory=dict)


class CompanyUpdate(UpdateSchema):
    not_null = frozenset({"name", "settings"})

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    settings: Optional[dict[str, Any]] = None


class CompanyResponse(BaseSchema, IDMixin, TimestampMixin):
    name: str
    slug: str
    settings: dict[str, Any]
