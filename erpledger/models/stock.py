from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from erpledger.db.base import Base


class StockMovement(Base):
    """
    Append-only log of inventory changes. The effect of `quantity` depends on
    `movement_type`; only ADJUSTMENT rows carry a sign of their own.
    """
    __tablename__ = "stock_movements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    warehouse_id: Mapped[str] = mapped_column(String(36), ForeignKey("warehouses.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)

    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)  # e.g., order id
    reference_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)  # "ORDER", "TRANSFER"
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_by_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_stock_movements_company_created_at", "company_id", "created_at"),
        Index(
            "ix_stock_movements_company_warehouse_product_created_at",
            "company_id",
            "warehouse_id",
            "product_id",
            "created_at",
        ),
        Index("ix_stock_movements_company_reference", "company_id", "reference_type", "reference_id"),
    )


class StockLevel(Base):
    """
    Materialized totals per (warehouse, product), rebuilt from stock_movements by recalculation.
    """
    __tablename__ = "stock_levels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    warehouse_id: Mapped[str] = mapped_column(String(36), ForeignKey("warehouses.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal("0"), server_default="0")
    reserved: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal("0"), server_default="0")
    available: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal("0"), server_default="0")
    last_movement_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("company_id", "warehouse_id", "product_id", name="uq_stock_levels_company_warehouse_product"),
    )
