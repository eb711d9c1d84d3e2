from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cart_coupons.core.logging import get_logger
from cart_coupons.db.operations import commit_async, flush_async, refresh_async, rollback_async
from cart_coupons.domain.enums import CouponType, CouponValidationCode, DiscountType
from cart_coupons.models.cart import Cart
from cart_coupons.models.coupon import Coupon, CouponUsage
from cart_coupons.schemas.coupon import CouponCreate, CouponUpdate
from cart_coupons.services.coupon_validator import (
    CouponValidationResult,
    as_utc,
    utcnow,
    validate_coupon,
)
from cart_coupons.services.discounts import round_money, to_decimal
from cart_coupons.services.exceptions import (
    ConflictError,
    CouponValidationFailed,
    DomainValidationError,
    LockContentionError,
    LockExpiredError,
    ResourceNotFoundError,
)
from cart_coupons.services.lock_manager import Lease, LockManager, coupon_lock_keys

logger = get_logger(__name__)

_MONEY_FIELDS = {"discount_value", "max_discount_amount", "min_cart_value"}
# Explicit nulls on a patch leave these columns untouched.
_REQUIRED_FIELDS = {
    "code", "name", "coupon_type", "discount_type", "discount_value", "start_time",
    "expiry_time", "min_cart_items", "min_cart_value", "is_active", "priority",
}


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _column_value(field: str, value):
    if value is None:
        return None
    if field in _MONEY_FIELDS:
        return to_decimal(value)
    if field in {"start_time", "expiry_time"}:
        return as_utc(value)
    if field == "applicable_product_ids":
        return [str(pid) for pid in value]
    return value


def _check_window(start_time: datetime, expiry_time: datetime) -> None:
    if as_utc(expiry_time) <= as_utc(start_time):
        raise DomainValidationError("Expiry time must be after start time")


async def _ensure_code_available(db: AsyncSession, code: str) -> None:
    existing = await db.scalar(select(Coupon.id).where(Coupon.code == code))
    if existing:
        raise ConflictError(f'Coupon with code "{code}" already exists')


# --- Administration ---

async def create_coupon(db: AsyncSession, payload: CouponCreate) -> Coupon:
    _check_window(payload.start_time, payload.expiry_time)
    code = normalize_code(payload.code)
    await _ensure_code_available(db, code)

    data = payload.model_dump()
    data["code"] = code
    coupon = Coupon(**{field: _column_value(field, value) for field, value in data.items()})
    coupon.current_total_uses = 0
    db.add(coupon)
    await flush_async(db, coupon)
    await refresh_async(db, coupon)
    return coupon


async def list_coupons(db: AsyncSession, *, page: int, limit: int) -> tuple[list[Coupon], int]:
    total = await db.scalar(select(func.count()).select_from(Coupon))
    result = await db.execute(
        select(Coupon).order_by(Coupon.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return list(result.scalars().all()), int(total or 0)


async def list_active_coupons(db: AsyncSession, now: datetime | None = None) -> list[Coupon]:
    now = now or utcnow()
    result = await db.execute(
        select(Coupon)
        .where(
            Coupon.is_active.is_(True),
            Coupon.start_time <= now,
            Coupon.expiry_time >= now,
        )
        .order_by(Coupon.priority.desc(), Coupon.created_at.desc())
    )
    return list(result.scalars().all())


async def find_coupon(db: AsyncSession, coupon_id: UUID, *, refresh: bool = False) -> Coupon | None:
    return await db.get(Coupon, coupon_id, populate_existing=refresh)


async def get_coupon(db: AsyncSession, coupon_id: UUID) -> Coupon:
    coupon = await find_coupon(db, coupon_id)
    if not coupon:
        raise ResourceNotFoundError(f'Coupon with ID "{coupon_id}" not found')
    return coupon


async def get_coupon_by_code(db: AsyncSession, code: str) -> Coupon | None:
    return await db.scalar(select(Coupon).where(Coupon.code == normalize_code(code)))


async def update_coupon(db: AsyncSession, coupon_id: UUID, payload: CouponUpdate) -> Coupon:
    coupon = await get_coupon(db, coupon_id)
    changes = payload.model_dump(exclude_unset=True)

    if "code" in changes and changes["code"] is not None:
        changes["code"] = normalize_code(changes["code"])
        if changes["code"] != coupon.code:
            await _ensure_code_available(db, changes["code"])

    _check_window(
        changes.get("start_time") or coupon.start_time,
        changes.get("expiry_time") or coupon.expiry_time,
    )

    discount_type = changes.get("discount_type") or coupon.discount_type
    discount_value = to_decimal(changes.get("discount_value") or coupon.discount_value)
    if discount_type == DiscountType.percentage and discount_value > 100:
        raise DomainValidationError("Percentage discounts cannot exceed 100")

    for field, value in changes.items():
        if value is None and field in _REQUIRED_FIELDS:
            continue
        setattr(coupon, field, _column_value(field, value))

    db.add(coupon)
    await flush_async(db, coupon)
    await refresh_async(db, coupon)
    return coupon


async def delete_coupon(db: AsyncSession, coupon_id: UUID) -> None:
    coupon = await get_coupon(db, coupon_id)
    # Carts keep a nullable reference; clear it here for backends without FK actions.
    await db.execute(
        update(Cart)
        .where(Cart.applied_coupon_id == coupon.id)
        .values(applied_coupon_id=None, is_coupon_auto_applied=False)
        .execution_options(synchronize_session=False)
    )
    await db.delete(coupon)
    await db.flush()


async def list_active_auto_applied(db: AsyncSession, now: datetime) -> list[Coupon]:
    """Auto-applied coupons that are switched on and inside their window."""
    result = await db.execute(
        select(Coupon)
        .where(
            Coupon.coupon_type == CouponType.auto_applied,
            Coupon.is_active.is_(True),
            Coupon.start_time <= now,
            Coupon.expiry_time >= now,
        )
        .order_by(Coupon.priority.desc(), Coupon.code.asc())
    )
    return list(result.scalars().all())


async def increment_total_uses(db: AsyncSession, coupon_id: UUID, by: int = 1) -> None:
    await db.execute(
        update(Coupon)
        .where(Coupon.id == coupon_id)
        .values(current_total_uses=Coupon.current_total_uses + by)
        .execution_options(synchronize_session=False)
    )


# --- Usage ledger ---

async def count_user_usage(db: AsyncSession, coupon_id: UUID, customer_id: str) -> int:
    total = await db.scalar(
        select(func.count(CouponUsage.id)).where(
            CouponUsage.coupon_id == coupon_id,
            CouponUsage.customer_id == customer_id,
        )
    )
    return int(total or 0)


async def count_user_usages(db: AsyncSession, coupon_ids: Iterable[UUID], customer_id: str) -> dict[UUID, int]:
    ids = list(coupon_ids)
    if not ids:
        return {}
    result = await db.execute(
        select(CouponUsage.coupon_id, func.count(CouponUsage.id))
        .where(CouponUsage.coupon_id.in_(ids), CouponUsage.customer_id == customer_id)
        .group_by(CouponUsage.coupon_id)
    )
    return {coupon_id: int(count) for coupon_id, count in result.all()}


async def count_total_usage(db: AsyncSession, coupon_id: UUID) -> int:
    total = await db.scalar(select(func.count(CouponUsage.id)).where(CouponUsage.coupon_id == coupon_id))
    return int(total or 0)


async def append_usage(db: AsyncSession, usage: CouponUsage) -> CouponUsage:
    db.add(usage)
    await flush_async(db, usage)
    return usage


async def user_usage_for(db: AsyncSession, coupon: Coupon, customer_id: str) -> int | None:
    """Ledger count when the coupon has a per-user ceiling, otherwise ``None``."""
    if coupon.max_uses_per_user is None:
        return None
    return await count_user_usage(db, coupon.id, customer_id)


async def validate_coupon_code(
    db: AsyncSession,
    code: str,
    cart: Cart,
    customer_id: str,
    now: datetime | None = None,
) -> CouponValidationResult:
    coupon = await get_coupon_by_code(db, code)
    if coupon is None:
        return CouponValidationResult.failure(
            None,
            CouponValidationCode.coupon_not_found,
            f'Coupon "{normalize_code(code)}" not found',
        )
    usage_count = await user_usage_for(db, coupon, customer_id)
    return validate_coupon(coupon, cart, customer_id, now or utcnow(), usage_count)


# --- Auto-apply resolution ---

@dataclass(frozen=True, slots=True)
class AutoApplyCandidate:
    coupon: Coupon
    discount: Decimal


def _outranks(candidate: AutoApplyCandidate, best: AutoApplyCandidate) -> bool:
    if candidate.discount != best.discount:
        return candidate.discount > best.discount
    if candidate.coupon.priority != best.coupon.priority:
        return candidate.coupon.priority > best.coupon.priority
    # Same discount and priority: smallest code keeps the choice stable.
    return candidate.coupon.code < best.coupon.code


def select_best_auto_coupon(
    coupons: Sequence[Coupon],
    cart: Cart,
    customer_id: str,
    now: datetime,
    usage_counts: dict[UUID, int] | None = None,
) -> AutoApplyCandidate | None:
    """Highest discount wins, then higher priority, then smallest code."""
    usage_counts = usage_counts or {}
    best: AutoApplyCandidate | None = None
    for coupon in coupons:
        result = validate_coupon(coupon, cart, customer_id, now, usage_counts.get(coupon.id, 0))
        if not result.is_valid or not result.calculated_discount:
            continue
        candidate = AutoApplyCandidate(coupon=coupon, discount=result.calculated_discount)
        if best is None or _outranks(candidate, best):
            best = candidate
    return best


async def resolve_best_auto_coupon(
    db: AsyncSession,
    cart: Cart,
    customer_id: str,
    now: datetime | None = None,
) -> AutoApplyCandidate | None:
    if not cart.items:
        return None
    now = now or utcnow()
    coupons = await list_active_auto_applied(db, now)
    if not coupons:
        return None
    limited = [coupon.id for coupon in coupons if coupon.max_uses_per_user is not None]
    usage_counts = await count_user_usages(db, limited, customer_id)
    return select_best_auto_coupon(coupons, cart, customer_id, now, usage_counts)


# --- Usage recording ---

async def record_coupon_usage(
    db: AsyncSession,
    *,
    lock_manager: LockManager,
    coupon_id: UUID,
    customer_id: str,
    cart_id: UUID | None,
    discount: Decimal,
    cart_total: Decimal,
) -> CouponUsage:
    """Append a ledger row and bump the coupon counter under the usage lock.

    Limits are re-checked against the ledger once the lease is held, and the
    session is committed before the lease is released, so pending changes
    made by the caller (e.g. the cart's coupon slot) land in the same
    transaction as the usage row.
    """

    async def _commit(lease: Lease) -> CouponUsage:
        try:
            coupon = await find_coupon(db, coupon_id, refresh=True)
            if coupon is None:
                raise ResourceNotFoundError(f'Coupon with ID "{coupon_id}" not found')

            if coupon.max_total_uses is not None:
                total_used = await count_total_usage(db, coupon_id)
                if total_used >= coupon.max_total_uses:
                    raise CouponValidationFailed(
                        CouponValidationCode.max_total_uses_reached,
                        "This coupon has reached its maximum usage limit",
                    )

            if coupon.max_uses_per_user is not None:
                used = await count_user_usage(db, coupon_id, customer_id)
                if used >= coupon.max_uses_per_user:
                    raise CouponValidationFailed(
                        CouponValidationCode.max_user_uses_reached,
                        "You have reached the maximum usage limit for this coupon",
                    )

            usage = await append_usage(
                db,
                CouponUsage(
                    coupon_id=coupon_id,
                    customer_id=customer_id,
                    cart_id=cart_id,
                    discount_applied=round_money(discount),
                    cart_total_at_application=round_money(cart_total),
                    applied_at=utcnow(),
                ),
            )
            await increment_total_uses(db, coupon_id, 1)

            if lease.expired:
                raise LockExpiredError("Coupon lock expired before the usage could be saved. Please try again.")
            await commit_async(db)
        except Exception:
            await rollback_async(db)
            raise

        logger.info(
            "coupon_usage_recorded",
            extra={"coupon_id": str(coupon_id), "customer_id": customer_id, "cart_id": str(cart_id)},
        )
        return usage

    outcome = await lock_manager.with_lock(coupon_lock_keys(coupon_id, customer_id), _commit)
    if not outcome.success:
        logger.warning(
            "coupon_usage_lock_busy",
            extra={"coupon_id": str(coupon_id), "customer_id": customer_id, "reason": outcome.reason},
        )
        raise LockContentionError()
    return outcome.result
