import enum
import uuid

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    DELIVERY = "delivery"


# Roles that run a branch: accept, dispatch, hand over at the counter.
BRANCH_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER, UserRole.STAFF})


class AuthUser(BaseModel):
    """
    Represents an authenticated caller, as asserted by the identity service token.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: uuid.UUID = Field(..., alias="sub")
    role: UserRole = UserRole.CUSTOMER
