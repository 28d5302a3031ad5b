"""Station, product, and user models consumed by the reconciliation core."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pms_engine.models.base import Base, TimestampMixin
from pms_engine.models.enums import ProductType, sql_in


class Station(Base, TimestampMixin):
    """A fuel station."""

    __tablename__ = "station"

    station_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)


class Product(Base, TimestampMixin):
    """A product sold at a station. Pumps dispense PMS products."""

    __tablename__ = "product"

    product_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    station_id: Mapped[UUID] = mapped_column(
        ForeignKey("station.station_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    product_type: Mapped[str] = mapped_column(String, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    __table_args__ = (
        CheckConstraint(
            f"product_type IN ({sql_in(ProductType)})",
            name="product_type_check",
        ),
        CheckConstraint("unit_price >= 0", name="product_unit_price_check"),
    )


class AppUser(Base, TimestampMixin):
    """Station user. Roles are administered elsewhere and only read here."""

    __tablename__ = "app_user"

    user_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    station_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("station.station_id", ondelete="SET NULL"),
        nullable=True,
    )
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("station_id", "display_name", name="app_user_station_name_unique"),
        CheckConstraint(
            "role IN ('staff', 'manager', 'director')",
            name="app_user_role_check",
        ),
    )
