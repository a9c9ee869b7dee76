"""Building schemas."""

from typing import Optional
from uuid import UUID

from pydantic import Field

from app.schemas.base import BaseSchema, IDMixin, PhoneE164, TimestampMixin, UpdateSchema


class BuildingCreate(BaseSchema):
    """Create a building. company_id defaults to the caller's company."""

    company_id: Optional[UUID] = None
    name: Optional[str] = Field(None, max_length=255)
    address_line1: str = Field(..., min_length=1, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., pattern=r"^[A-Z]{2}$")
    zip: str = Field(..., pattern=r"^\d{5}(-\d{4})?$")
    gate_code: Optional[str] = Field(None, max_length=50)
    water_shutoff_location: Optional[str] = None
    gas_shutoff_location: Optional[str] = None
    onsite_contact_name: Optional[str] = Field(None, max_length=255)
    onsite_contact_phone: Optional[PhoneE164] = None
    access_notes: Optional[str] = None


class BuildingUpdate(UpdateSchema):
    not_null = frozenset({"address_line1", "city", "state", "zip"})

    name: Optional[str] = Field(None, max_length=255)
    address_line1: Optional[str] = Field(None, min_length=1, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[str] = Field(None, pattern=r"^[A-Z]{2}$")
    zip: Optional[str] = Field(None, pattern=r"^\d{5}(-\d{4})?$")
    gate_code: Optional[str] = Field(None, max_length=50)
    water_shutoff_location: Optional[str] = None
    gas_shutoff_location: Optional[str] = None
    onsite_contact_name: Optional[str] = Field(None, max_length=255)
    onsite_contact_phone: Optional[PhoneE164] = None
    access_notes: Optional[str] = None


class BuildingResponse(BaseSchema, IDMixin, TimestampMixin):
    company_id: UUID
    name: Optional[str] = None
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    zip: str
    gate_code: Optional[str] = None
    water_shutoff_location: Optional[str] = None
    gas_shutoff_location: Optional[str] = None
    onsite_contact_name: Optional[str] = None
    onsite_contact_phone: Optional[str] = None
    access_notes: Optional[str] = None
