"""Pydantic schemas for the work-order API."""

from app.schemas.envelope import *
from app.schemas.company import *
from app.schemas.user import *
from app.schemas.building import *
from app.schemas.space import *
from app.schemas.occupant import *
from app.schemas.entitlement import *
from app.schemas.invitation import *
from app.schemas.ticket import *
from app.schemas.admin import *
