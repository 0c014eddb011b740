"""
Stock ledger: an append-only log of movements per (warehouse, product).

On-hand quantity, reserved quantity and availability are never stored as the
source of truth. They are sums over `stock_movements`, computed either in SQL
(`get_current_levels`, `recalculate`) or in Python (`aggregate_movements`),
both driven by the same sign tables. `stock_levels` is a cache of those sums,
kept in step on every write and rebuilt by `recalculate`.
"""
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import case, func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from erpledger.core.config import settings
from erpledger.core.errors import ConflictError, NotFoundError, ValidationError
from erpledger.core.id_utils import generate_id
from erpledger.core.money import MAX_QUANTITY, QUANTITY_QUANT, ZERO_QUANTITY, has_excess_precision, to_quantity
from erpledger.core.observability import log_event
from erpledger.models.catalog import Product, Warehouse
from erpledger.models.stock import StockLevel, StockMovement
from erpledger.services.audit_service import log_audit_event, model_snapshot

logger = logging.getLogger("erpledger.stock")

MOVEMENT_TYPES = ("IN", "OUT", "TRANSFER", "ADJUSTMENT", "RESERVED", "UNRESERVED")
TRANSFER_REFERENCE = "TRANSFER"

# Signed effect of one unit of `quantity` per movement type. TRANSFER rows
# are absent from both tables and so contribute nothing.
_QUANTITY_SIGN = {"IN": 1, "OUT": -1, "ADJUSTMENT": 1}
_RESERVED_SIGN = {"RESERVED": 1, "UNRESERVED": -1}


@dataclass(frozen=True)
class LevelTotals:
    quantity: Decimal = ZERO_QUANTITY
    reserved: Decimal = ZERO_QUANTITY

    @property
    def available(self) -> Decimal:
        return self.quantity - self.reserved

    def apply(self, movement_type: str, quantity: Decimal | int | str) -> "LevelTotals":
        quantity_delta, reserved_delta = movement_effect(movement_type, quantity)
        return LevelTotals(
            quantity=to_quantity(self.quantity + quantity_delta),
            reserved=to_quantity(self.reserved + reserved_delta),
        )


@dataclass(frozen=True)
class StockLevelView:
    warehouse_id: str
    product_id: str
    quantity: Decimal
    reserved: Decimal
    available: Decimal
    last_movement_at: datetime | None


def movement_effect(movement_type: str, quantity: Decimal | int | str) -> tuple[Decimal, Decimal]:
    """Return (quantity delta, reserved delta) for one movement."""
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError(f"Unknown movement type: {movement_type}")
    amount = Decimal(str(quantity))
    return (
        amount * _QUANTITY_SIGN.get(movement_type, 0),
        amount * _RESERVED_SIGN.get(movement_type, 0),
    )


def aggregate_movements(movements: Iterable) -> dict[tuple[str, str], LevelTotals]:
    """Fold movements into totals keyed by (warehouse_id, product_id); order does not matter."""
    totals: dict[tuple[str, str], LevelTotals] = {}
    for movement in movements:
        key = (movement.warehouse_id, movement.product_id)
        totals[key] = totals.get(key, LevelTotals()).apply(movement.movement_type, movement.quantity)
    return totals


def _signed_sum(signs: dict[str, int]):
    return func.coalesce(
        func.sum(
            case(
                *[(StockMovement.movement_type == movement_type, StockMovement.quantity * sign)
                  for movement_type, sign in signs.items()],
                else_=0,
            )
        ),
        0,
    )


def _levels_stmt(company_id: str):
    return (
        select(
            StockMovement.warehouse_id,
            StockMovement.product_id,
            _signed_sum(_QUANTITY_SIGN).label("quantity"),
            _signed_sum(_RESERVED_SIGN).label("reserved"),
            func.max(StockMovement.created_at).label("last_movement_at"),
        )
        .where(StockMovement.company_id == company_id)
        .group_by(StockMovement.warehouse_id, StockMovement.product_id)
    )


def _key_totals(db: Session, *, company_id: str, warehouse_id: str, product_id: str) -> LevelTotals:
    row = db.execute(
        _levels_stmt(company_id).where(
            StockMovement.warehouse_id == warehouse_id,
            StockMovement.product_id == product_id,
        )
    ).first()
    if not row:
        return LevelTotals()
    return LevelTotals(quantity=to_quantity(row.quantity), reserved=to_quantity(row.reserved))


def _warehouse_or_404(db: Session, *, company_id: str, warehouse_id: str) -> Warehouse:
    warehouse = db.execute(
        select(Warehouse).where(Warehouse.id == warehouse_id, Warehouse.company_id == company_id)
    ).scalar_one_or_none()
    if not warehouse:
        raise NotFoundError("Warehouse not found")
    return warehouse


def _product_or_404(db: Session, *, company_id: str, product_id: str) -> Product:
    product = db.execute(
        select(Product).where(Product.id == product_id, Product.company_id == company_id)
    ).scalar_one_or_none()
    if not product:
        raise NotFoundError("Product not found")
    return product


def active_warehouse(db: Session, *, company_id: str, warehouse_id: str) -> Warehouse:
    warehouse = _warehouse_or_404(db, company_id=company_id, warehouse_id=warehouse_id)
    if not warehouse.is_active:
        raise ValidationError("Warehouse is inactive", field="warehouse_id")
    return warehouse


def stockable_product(db: Session, *, company_id: str, product_id: str) -> Product:
    product = _product_or_404(db, company_id=company_id, product_id=product_id)
    if not product.is_active:
        raise ValidationError("Product is inactive", field="product_id")
    if product.is_service:
        raise ValidationError("Services do not carry stock", field="product_id")
    return product


def validate_quantity(movement_type: str, quantity: Decimal | int | str) -> Decimal:
    try:
        amount = Decimal(str(quantity))
    except InvalidOperation as exc:
        raise ValidationError("quantity must be a number", field="quantity") from exc
    if not amount.is_finite():
        raise ValidationError("quantity must be a number", field="quantity")
    if abs(amount) > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}", field="quantity")
    if has_excess_precision(amount, QUANTITY_QUANT):
        raise ValidationError("quantity supports at most 3 decimal places", field="quantity")
    if movement_type == "ADJUSTMENT":
        if amount == 0:
            raise ValidationError("ADJUSTMENT quantity cannot be zero", field="quantity")
    elif amount <= 0:
        raise ValidationError("quantity must be greater than zero", field="quantity")
    return to_quantity(amount)


def _normalize_movement_type(movement_type: str) -> str:
    normalized = (movement_type or "").strip().upper()
    if normalized not in MOVEMENT_TYPES:
        raise ValidationError(
            f"movement_type must be one of: {', '.join(MOVEMENT_TYPES)}",
            field="movement_type",
        )
    return normalized


_LEVEL_KEY = ("company_id", "warehouse_id", "product_id")


def _insert_ignoring_existing(db: Session, values: dict):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql_insert(StockLevel).values(**values).on_conflict_do_nothing(index_elements=list(_LEVEL_KEY))
    if dialect == "sqlite":
        return sqlite_insert(StockLevel).values(**values).on_conflict_do_nothing(index_elements=list(_LEVEL_KEY))
    raise RuntimeError(f"Unsupported database dialect for stock levels: {dialect}")


def _lock_level_row(db: Session, *, company_id: str, warehouse_id: str, product_id: str) -> StockLevel:
    # A concurrent first writer for the same key makes this insert a no-op;
    # the select below then waits on that writer's row lock.
    db.execute(
        _insert_ignoring_existing(
            db,
            {
                "id": generate_id(),
                "company_id": company_id,
                "warehouse_id": warehouse_id,
                "product_id": product_id,
                "quantity": ZERO_QUANTITY,
                "reserved": ZERO_QUANTITY,
                "available": ZERO_QUANTITY,
            },
        )
    )
    return db.execute(
        select(StockLevel)
        .where(
            StockLevel.company_id == company_id,
            StockLevel.warehouse_id == warehouse_id,
            StockLevel.product_id == product_id,
        )
        .with_for_update()
    ).scalar_one()


def _check_guard(movement_type: str, current: LevelTotals, projected: LevelTotals) -> None:
    if settings.stock_allow_negative:
        return
    quantity_delta = projected.quantity - current.quantity
    reserved_delta = projected.reserved - current.reserved
    if reserved_delta < 0 and projected.reserved < 0:
        raise ConflictError(
            f"Cannot unreserve more than is reserved (reserved {current.reserved})"
        )
    if (quantity_delta < 0 or reserved_delta > 0) and projected.available < 0:
        raise ConflictError(
            f"Insufficient available stock for {movement_type} (available {current.available})"
        )


def _append_movement(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    warehouse_id: str,
    product_id: str,
    movement_type: str,
    quantity: Decimal,
    reference_id: str | None,
    reference_type: str | None,
    notes: str | None,
) -> StockMovement:
    # Lock the cache row first; the log is re-read inside the lock.
    level = _lock_level_row(db, company_id=company_id, warehouse_id=warehouse_id, product_id=product_id)
    current = _key_totals(db, company_id=company_id, warehouse_id=warehouse_id, product_id=product_id)
    projected = current.apply(movement_type, quantity)
    _check_guard(movement_type, current, projected)
    if max(abs(projected.quantity), abs(projected.reserved)) > MAX_QUANTITY:
        raise ValidationError(f"Stock level cannot exceed {MAX_QUANTITY}", field="quantity")

    movement = StockMovement(
        id=generate_id(),
        company_id=company_id,
        warehouse_id=warehouse_id,
        product_id=product_id,
        movement_type=movement_type,
        quantity=quantity,
        reference_id=reference_id,
        reference_type=reference_type,
        notes=notes,
        created_by_id=actor_user_id,
        created_at=datetime.now(timezone.utc),
    )
    db.add(movement)
    db.flush()

    level.quantity = projected.quantity
    level.reserved = projected.reserved
    level.available = projected.available
    level.last_movement_at = movement.created_at
    db.flush()

    log_audit_event(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        action="CREATE",
        entity_type="stock_movement",
        entity_id=movement.id,
        new_values=model_snapshot(movement),
    )
    log_event(
        logger,
        "stock_movement.recorded",
        company_id=company_id,
        movement_id=movement.id,
        movement_type=movement_type,
        warehouse_id=warehouse_id,
        product_id=product_id,
        quantity=str(quantity),
        available=str(projected.available),
    )
    return movement


def record_movement(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    warehouse_id: str,
    product_id: str,
    movement_type: str,
    quantity: Decimal | int | str,
    reference_id: str | None = None,
    reference_type: str | None = None,
    notes: str | None = None,
) -> StockMovement:
    movement_type = _normalize_movement_type(movement_type)
    if movement_type == "TRANSFER":
        raise ValidationError(
            "TRANSFER movements are recorded through /stock-transfers",
            field="movement_type",
        )
    amount = validate_quantity(movement_type, quantity)
    active_warehouse(db, company_id=company_id, warehouse_id=warehouse_id)
    stockable_product(db, company_id=company_id, product_id=product_id)

    return _append_movement(
        db,
        company_id=company_id,
        actor_user_id=actor_user_id,
        warehouse_id=warehouse_id,
        product_id=product_id,
        movement_type=movement_type,
        quantity=amount,
        reference_id=reference_id,
        reference_type=(reference_type or "").strip().upper() or None,
        notes=notes,
    )


def record_transfer(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    from_warehouse_id: str,
    to_warehouse_id: str,
    product_id: str,
    quantity: Decimal | int | str,
    notes: str | None = None,
) -> tuple[StockMovement, StockMovement]:
    """Move stock between two warehouses as an OUT/IN pair sharing one reference_id."""
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError("Source and target warehouses must differ", field="to_warehouse_id")
    amount = validate_quantity("OUT", quantity)
    active_warehouse(db, company_id=company_id, warehouse_id=from_warehouse_id)
    active_warehouse(db, company_id=company_id, warehouse_id=to_warehouse_id)
    stockable_product(db, company_id=company_id, product_id=product_id)

    reference_id = generate_id()
    common = dict(
        company_id=company_id,
        actor_user_id=actor_user_id,
        product_id=product_id,
        quantity=amount,
        reference_id=reference_id,
        reference_type=TRANSFER_REFERENCE,
        notes=notes,
    )
    out_movement = _append_movement(db, warehouse_id=from_warehouse_id, movement_type="OUT", **common)
    in_movement = _append_movement(db, warehouse_id=to_warehouse_id, movement_type="IN", **common)
    return out_movement, in_movement


def get_current_levels(
    db: Session,
    *,
    company_id: str,
    warehouse_id: str | None = None,
    product_id: str | None = None,
) -> list[StockLevelView]:
    stmt = _levels_stmt(company_id)
    if warehouse_id:
        _warehouse_or_404(db, company_id=company_id, warehouse_id=warehouse_id)
        stmt = stmt.where(StockMovement.warehouse_id == warehouse_id)
    if product_id:
        _product_or_404(db, company_id=company_id, product_id=product_id)
        stmt = stmt.where(StockMovement.product_id == product_id)

    rows = db.execute(stmt.order_by(StockMovement.warehouse_id, StockMovement.product_id)).all()
    views = []
    for row in rows:
        totals = LevelTotals(quantity=to_quantity(row.quantity), reserved=to_quantity(row.reserved))
        views.append(
            StockLevelView(
                warehouse_id=row.warehouse_id,
                product_id=row.product_id,
                quantity=totals.quantity,
                reserved=totals.reserved,
                available=totals.available,
                last_movement_at=row.last_movement_at,
            )
        )
    return views


def recalculate(db: Session, *, company_id: str) -> dict[str, int]:
    """Rebuild every cached level of the company from the movement log."""
    cached = {
        (level.warehouse_id, level.product_id): level
        for level in db.execute(
            select(StockLevel).where(StockLevel.company_id == company_id).with_for_update()
        ).scalars()
    }
    derived = {
        (row.warehouse_id, row.product_id): row
        for row in db.execute(_levels_stmt(company_id)).all()
    }

    recalculated_count = 0
    corrected_count = 0
    for key in sorted(set(cached) | set(derived)):
        row = derived.get(key)
        totals = LevelTotals()
        last_movement_at = None
        if row is not None:
            totals = LevelTotals(quantity=to_quantity(row.quantity), reserved=to_quantity(row.reserved))
            last_movement_at = row.last_movement_at

        level = cached.get(key)
        if level is None:
            level = _lock_level_row(db, company_id=company_id, warehouse_id=key[0], product_id=key[1])
            # Writers for this key may have appended since the snapshot above.
            totals = _key_totals(db, company_id=company_id, warehouse_id=key[0], product_id=key[1])
            corrected_count += 1
        elif (
            to_quantity(level.quantity) != totals.quantity
            or to_quantity(level.reserved) != totals.reserved
            or to_quantity(level.available) != totals.available
        ):
            corrected_count += 1

        level.quantity = totals.quantity
        level.reserved = totals.reserved
        level.available = totals.available
        level.last_movement_at = last_movement_at
        recalculated_count += 1

    db.flush()
    log_event(
        logger,
        "stock.recalculated",
        company_id=company_id,
        recalculated_count=recalculated_count,
        corrected_count=corrected_count,
    )
    return {"recalculated_count": recalculated_count, "corrected_count": corrected_count}


def reserved_by_reference(
    db: Session,
    *,
    company_id: str,
    reference_type: str,
    reference_id: str,
    warehouse_id: str | None = None,
) -> dict[tuple[str, str], Decimal]:
    """Outstanding reservations of one reference, keyed by (warehouse_id, product_id)."""
    stmt = (
        select(
            StockMovement.warehouse_id,
            StockMovement.product_id,
            _signed_sum(_RESERVED_SIGN).label("reserved"),
        )
        .where(
            StockMovement.company_id == company_id,
            StockMovement.reference_type == reference_type,
            StockMovement.reference_id == reference_id,
        )
        .group_by(StockMovement.warehouse_id, StockMovement.product_id)
    )
    if warehouse_id:
        stmt = stmt.where(StockMovement.warehouse_id == warehouse_id)

    reserved: dict[tuple[str, str], Decimal] = {}
    for row in db.execute(stmt).all():
        amount = to_quantity(row.reserved)
        if amount > 0:
            reserved[(row.warehouse_id, row.product_id)] = amount
    return reserved


def list_movements(
    db: Session,
    *,
    company_id: str,
    warehouse_id: str | None = None,
    product_id: str | None = None,
    movement_type: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockMovement], int]:
    if date_from and date_to and date_to < date_from:
        raise ValidationError("date_to cannot be before date_from", field="date_to")

    conditions = [StockMovement.company_id == company_id]
    if warehouse_id:
        _warehouse_or_404(db, company_id=company_id, warehouse_id=warehouse_id)
        conditions.append(StockMovement.warehouse_id == warehouse_id)
    if product_id:
        _product_or_404(db, company_id=company_id, product_id=product_id)
        conditions.append(StockMovement.product_id == product_id)
    if movement_type:
        conditions.append(StockMovement.movement_type == _normalize_movement_type(movement_type))
    if date_from:
        conditions.append(func.date(StockMovement.created_at) >= date_from)
    if date_to:
        conditions.append(func.date(StockMovement.created_at) <= date_to)

    total = int(db.execute(select(func.count(StockMovement.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(StockMovement)
        .where(*conditions)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), total
