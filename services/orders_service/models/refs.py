"""Read-only mappings of tables owned by other subsystems.

Users, branches and the coffee catalog are maintained elsewhere (identity,
branch admin and menu CRUD). The orders service only reads them to validate
checkout input, price line items and check delivery agents.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.auth.models import UserRole
from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.orders_service.models.enums import enum_values
from sqlalchemy import Boolean, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

_EXTERNAL = {"extend_existing": True, "info": {"skip_autogenerate": True}}


class BranchRef(Base):
    """Coffee shop branch."""

    __tablename__ = "branches"
    __table_args__ = _EXTERNAL

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<BranchRef {self.name}>"


class UserRef(Base):
    """Platform user. ``branch_id`` is set for staff, managers and agents."""

    __tablename__ = "users"
    __table_args__ = _EXTERNAL

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        SAEnum(
            UserRole,
            name="user_role_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=UserRole.CUSTOMER,
        nullable=False,
    )
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("branches.id"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<UserRef {self.id} role={self.role}>"


class CoffeeRef(Base):
    """Menu item as priced by the catalog."""

    __tablename__ = "coffees"
    __table_args__ = _EXTERNAL

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<CoffeeRef {self.name} {self.price}>"
