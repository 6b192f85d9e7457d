from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class OrgRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    MEMBER = "member"


class BranchRole(str, Enum):
    MANAGER = "manager"
    STAFF = "staff"
    VIEWER = "viewer"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class OrganizationType(str, Enum):
    RESTAURANT = "restaurant"
    GROCERY_STORE = "grocery_store"
    CAFE = "cafe"
    BAKERY = "bakery"
    FOOD_TRUCK = "food_truck"
    CATERING = "catering"
    HOTEL = "hotel"
    OTHER = "other"


class ActionResponse(BaseModel):
    """Uniform success body: ``{"success": true, ...extra}``."""

    model_config = ConfigDict(extra="allow")

    success: bool = True
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
