# cart_coupons/models/coupon.py
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cart_coupons.db.base import Base
from cart_coupons.domain.enums import CouponType, DiscountType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        Index("ix_coupons_type_active_window", "coupon_type", "is_active", "start_time", "expiry_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Stored upper-cased; lookups normalize the same way.
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    coupon_type: Mapped[CouponType] = mapped_column(
        SqlEnum(CouponType, name="coupon_type", values_callable=_enum_values),
        default=CouponType.general,
        nullable=False,
    )
    discount_type: Mapped[DiscountType] = mapped_column(
        SqlEnum(DiscountType, name="discount_type", values_callable=_enum_values),
        default=DiscountType.fixed,
        nullable=False,
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    max_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    min_cart_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    min_cart_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    # None means "every product"; both lists empty is treated the same way.
    applicable_product_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    applicable_categories: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    max_total_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Display cache only; limit checks inside the usage lock count the ledger.
    current_total_uses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_uses_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)

    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    usages: Mapped[list["CouponUsage"]] = relationship(
        "CouponUsage", back_populates="coupon", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_auto_applied(self) -> bool:
        return self.coupon_type == CouponType.auto_applied

    @property
    def has_allow_list(self) -> bool:
        return bool(self.applicable_product_ids) or bool(self.applicable_categories)


class CouponUsage(Base):
    """Append-only redemption ledger; authoritative for usage limits."""

    __tablename__ = "coupon_usages"
    __table_args__ = (
        Index("ix_coupon_usages_coupon_customer", "coupon_id", "customer_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # Plain references: the ledger outlives carts and orders.
    cart_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    discount_applied: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    cart_total_at_application: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    coupon: Mapped[Coupon] = relationship("Coupon", back_populates="usages")
