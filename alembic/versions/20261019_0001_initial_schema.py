"""initial schema: tenants, catalog, stock ledger, orders, billing, audit

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _company_fk() -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(["company_id"], ["companies.id"])


def _create_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "companies"):
        op.create_table(
            "companies",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("base_currency", sa.String(length=3), nullable=False, server_default="RUB"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "company_memberships"):
        op.create_table(
            "company_memberships",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=True),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="admin"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            _company_fk(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "warehouses"):
        op.create_table(
            "warehouses",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("address", sa.String(length=255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            _updated_at(),
            _company_fk(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "categories"):
        op.create_table(
            "categories",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("parent_id", sa.String(length=36), nullable=True),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("description", sa.String(length=255), nullable=True),
            _created_at(),
            _updated_at(),
            _company_fk(),
            sa.ForeignKeyConstraint(["parent_id"], ["categories.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("category_id", sa.String(length=36), nullable=True),
            sa.Column("sku", sa.String(length=100), nullable=True),
            sa.Column("unit", sa.String(length=20), nullable=False, server_default="pcs"),
            sa.Column("is_service", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            _updated_at(),
            _company_fk(),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    for partner_table in ("customers", "suppliers"):
        if not _table_exists(inspector, partner_table):
            op.create_table(
                partner_table,
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("company_id", sa.String(length=36), nullable=False),
                sa.Column("name", sa.String(length=255), nullable=False),
                sa.Column("email", sa.String(length=255), nullable=True),
                sa.Column("phone", sa.String(length=50), nullable=True),
                sa.Column("tax_id", sa.String(length=50), nullable=True),
                _created_at(),
                _company_fk(),
                sa.PrimaryKeyConstraint("id"),
            )

    if not _table_exists(inspector, "stock_movements"):
        op.create_table(
            "stock_movements",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("warehouse_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("movement_type", sa.String(length=20), nullable=False),
            sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
            sa.Column("reference_id", sa.String(length=36), nullable=True),
            sa.Column("reference_type", sa.String(length=30), nullable=True),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.Column("created_by_id", sa.String(length=36), nullable=False),
            _created_at(),
            _company_fk(),
            sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "stock_levels"):
        op.create_table(
            "stock_levels",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("warehouse_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
            sa.Column("reserved", sa.Numeric(14, 3), nullable=False, server_default="0"),
            sa.Column("available", sa.Numeric(14, 3), nullable=False, server_default="0"),
            sa.Column("last_movement_at", sa.DateTime(timezone=True), nullable=True),
            _updated_at(),
            _company_fk(),
            sa.ForeignKeyConstraint(["warehouse_id"], ["warehouses.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "company_id",
                "warehouse_id",
                "product_id",
                name="uq_stock_levels_company_warehouse_product",
            ),
        )

    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("order_number", sa.String(length=30), nullable=False),
            sa.Column("customer_id", sa.String(length=36), nullable=True),
            sa.Column("supplier_id", sa.String(length=36), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("created_by_id", sa.String(length=36), nullable=False),
            _created_at(),
            _updated_at(),
            _company_fk(),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
            sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("company_id", "order_number", name="uq_orders_company_order_number"),
        )

    if not _table_exists(inspector, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
            sa.Column("total", sa.Numeric(12, 2), nullable=False),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "invoices"):
        op.create_table(
            "invoices",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=True),
            sa.Column("invoice_number", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("issued_date", sa.Date(), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("notes", sa.String(length=255), nullable=True),
            _created_at(),
            _updated_at(),
            _company_fk(),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("company_id", "invoice_number", name="uq_invoices_company_invoice_number"),
        )

    if not _table_exists(inspector, "payments"):
        op.create_table(
            "payments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("invoice_id", sa.String(length=36), nullable=True),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("payment_method", sa.String(length=30), nullable=False),
            sa.Column("payment_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("reference", sa.String(length=120), nullable=True),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.Column("created_by_id", sa.String(length=36), nullable=False),
            _created_at(),
            _company_fk(),
            sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=True),
            sa.Column("actor_user_id", sa.String(length=36), nullable=True),
            sa.Column("action", sa.String(length=20), nullable=False),
            sa.Column("entity_type", sa.String(length=100), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("old_values", sa.JSON(), nullable=True),
            sa.Column("new_values", sa.JSON(), nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("user_agent", sa.String(length=255), nullable=True),
            _created_at(),
            _company_fk(),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )


# (table, index name, columns, unique)
_INDEXES: list[tuple[str, str, list, bool]] = [
    ("users", "ix_users_email", ["email"], True),
    ("company_memberships", "ix_company_memberships_company_id", ["company_id"], False),
    ("company_memberships", "ix_company_memberships_user_id", ["user_id"], False),
    ("company_memberships", "ux_company_memberships_company_user", ["company_id", "user_id"], True),
    (
        "company_memberships",
        "ix_company_memberships_user_active_created_at",
        ["user_id", "is_active", "created_at"],
        False,
    ),
    ("warehouses", "ix_warehouses_company_id", ["company_id"], False),
    ("warehouses", "ix_warehouses_company_active_created_at", ["company_id", "is_active", "created_at"], False),
    ("categories", "ix_categories_company_id", ["company_id"], False),
    ("categories", "ix_categories_parent_id", ["parent_id"], False),
    ("categories", "ix_categories_company_name", ["company_id", "name"], False),
    ("products", "ix_products_company_id", ["company_id"], False),
    ("products", "ix_products_category_id", ["category_id"], False),
    ("products", "ix_products_company_created_at", ["company_id", "created_at"], False),
    ("customers", "ix_customers_company_id", ["company_id"], False),
    ("customers", "ix_customers_company_created_at", ["company_id", "created_at"], False),
    ("suppliers", "ix_suppliers_company_id", ["company_id"], False),
    ("suppliers", "ix_suppliers_company_created_at", ["company_id", "created_at"], False),
    ("stock_movements", "ix_stock_movements_company_id", ["company_id"], False),
    ("stock_movements", "ix_stock_movements_warehouse_id", ["warehouse_id"], False),
    ("stock_movements", "ix_stock_movements_product_id", ["product_id"], False),
    ("stock_movements", "ix_stock_movements_created_by_id", ["created_by_id"], False),
    ("stock_movements", "ix_stock_movements_company_created_at", ["company_id", "created_at"], False),
    (
        "stock_movements",
        "ix_stock_movements_company_warehouse_product_created_at",
        ["company_id", "warehouse_id", "product_id", "created_at"],
        False,
    ),
    (
        "stock_movements",
        "ix_stock_movements_company_reference",
        ["company_id", "reference_type", "reference_id"],
        False,
    ),
    ("stock_levels", "ix_stock_levels_company_id", ["company_id"], False),
    ("stock_levels", "ix_stock_levels_warehouse_id", ["warehouse_id"], False),
    ("stock_levels", "ix_stock_levels_product_id", ["product_id"], False),
    ("orders", "ix_orders_company_id", ["company_id"], False),
    ("orders", "ix_orders_customer_id", ["customer_id"], False),
    ("orders", "ix_orders_supplier_id", ["supplier_id"], False),
    ("orders", "ix_orders_company_created_at", ["company_id", "created_at"], False),
    ("orders", "ix_orders_company_status_created_at", ["company_id", "status", "created_at"], False),
    ("order_items", "ix_order_items_order_id", ["order_id"], False),
    ("order_items", "ix_order_items_product_id", ["product_id"], False),
    ("invoices", "ix_invoices_company_id", ["company_id"], False),
    ("invoices", "ix_invoices_order_id", ["order_id"], True),
    ("invoices", "ix_invoices_due_date", ["due_date"], False),
    ("invoices", "ix_invoices_company_status_created_at", ["company_id", "status", "created_at"], False),
    ("invoices", "ix_invoices_company_due_date", ["company_id", "due_date"], False),
    ("payments", "ix_payments_company_id", ["company_id"], False),
    ("payments", "ix_payments_invoice_id", ["invoice_id"], False),
    ("payments", "ix_payments_company_payment_date", ["company_id", "payment_date"], False),
    ("payments", "ix_payments_invoice_created_at", ["invoice_id", "created_at"], False),
    ("audit_logs", "ix_audit_logs_company_id", ["company_id"], False),
    ("audit_logs", "ix_audit_logs_actor_user_id", ["actor_user_id"], False),
    ("audit_logs", "ix_audit_logs_entity_id", ["entity_id"], False),
    ("audit_logs", "ix_audit_logs_company_created_at", ["company_id", "created_at"], False),
    ("audit_logs", "ix_audit_logs_company_entity", ["company_id", "entity_type", "entity_id"], False),
    (
        "audit_logs",
        "ix_audit_logs_company_actor_created_at",
        ["company_id", "actor_user_id", "created_at"],
        False,
    ),
]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    _create_tables(inspector)

    inspector = sa.inspect(bind)
    for table_name, index_name, columns, unique in _INDEXES:
        if not _index_exists(inspector, table_name, index_name):
            op.create_index(index_name, table_name, columns, unique=unique)

    if not _index_exists(inspector, "users", "ux_users_email_lower"):
        op.create_index("ux_users_email_lower", "users", [sa.text("lower(email)")], unique=True)
    if not _index_exists(inspector, "products", "ux_products_company_sku_lower"):
        op.create_index(
            "ux_products_company_sku_lower",
            "products",
            ["company_id", sa.text("lower(sku)")],
            unique=True,
            postgresql_where=sa.text("sku IS NOT NULL"),
            sqlite_where=sa.text("sku IS NOT NULL"),
        )


def downgrade() -> None:
    for table_name in (
        "audit_logs",
        "payments",
        "invoices",
        "order_items",
        "orders",
        "stock_levels",
        "stock_movements",
        "suppliers",
        "customers",
        "products",
        "categories",
        "warehouses",
        "company_memberships",
        "users",
        "companies",
    ):
        op.drop_table(table_name)
