"""Initial StockLedger schema

Branches, products, users and sessions; stock records, movements and
transfers; sales and service orders; transaction ledger; document sequences.

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True):
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return cols


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.UniqueConstraint("code", name="uq_branches_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("default_cost_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("default_selling_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_active_name", "products", ["is_active", "name"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("role IN ('admin', 'salesperson', 'mechanic')", name="ck_users_role"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_username", "users", ["username"])
    op.create_index("ix_users_branch_id", "users", ["branch_id"])

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(255), nullable=True),
        sa.Column("user_agent", sa.String(255), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.UniqueConstraint("token_hash", name="uq_session_tokens_hash"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"])
    op.create_index("ix_session_tokens_user_revoked", "session_tokens", ["user_id", "is_revoked"])

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("period", sa.String(8), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("document_type", "period", name="uq_document_sequences_type_period"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "stock_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("selling_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reorder_point", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("reorder_quantity", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("location", sa.String(100), nullable=True),
        sa.Column("last_restocked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_restocked_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("product_id", "branch_id", name="uq_stock_records_product_branch"),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_nonneg"),
        sa.CheckConstraint("reserved_quantity >= 0", name="ck_stock_records_reserved_nonneg"),
        sa.CheckConstraint("reserved_quantity <= quantity", name="ck_stock_records_reserved_le_quantity"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_records_product_id", "stock_records", ["product_id"])
    op.create_index("ix_stock_records_branch_id", "stock_records", ["branch_id"])
    op.create_index("ix_stock_records_branch_product", "stock_records", ["branch_id", "product_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("movement_number", sa.String(32), nullable=False),
        sa.Column("stock_record_id", sa.Integer(), sa.ForeignKey("stock_records.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("movement_type", sa.String(32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("quantity_before", sa.Integer(), nullable=False),
        sa.Column("quantity_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(200), nullable=True),
        sa.Column("reference_type", sa.String(32), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("performed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("notes", sa.String(500), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("movement_number", name="uq_stock_movements_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_movements_stock_record_id", "stock_movements", ["stock_record_id"])
    op.create_index("ix_stock_movements_movement_type", "stock_movements", ["movement_type"])
    op.create_index("ix_stock_movements_created_at", "stock_movements", ["created_at"])
    op.create_index("ix_stock_movements_branch_created", "stock_movements", ["branch_id", "created_at"])
    op.create_index("ix_stock_movements_product_created", "stock_movements", ["product_id", "created_at"])
    op.create_index("ix_stock_movements_reference", "stock_movements", ["reference_type", "reference_id"])

    op.create_table(
        "stock_transfers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transfer_number", sa.String(32), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("from_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("to_branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("initiated_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("received_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("transfer_number", name="uq_stock_transfers_number"),
        sa.CheckConstraint("from_branch_id <> to_branch_id", name="ck_stock_transfers_distinct_branches"),
        sa.CheckConstraint("quantity >= 1", name="ck_stock_transfers_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_transfers_product_id", "stock_transfers", ["product_id"])
    op.create_index("ix_stock_transfers_from_branch_id", "stock_transfers", ["from_branch_id"])
    op.create_index("ix_stock_transfers_to_branch_id", "stock_transfers", ["to_branch_id"])
    op.create_index("ix_stock_transfers_status_created", "stock_transfers", ["status", "created_at"])

    op.create_table(
        "sales_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("customer_name", sa.String(100), nullable=False),
        sa.Column("customer_phone", sa.String(20), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_address", sa.String(500), nullable=True),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(32), nullable=False),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("change_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("processed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(1000), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("order_number", name="uq_sales_orders_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_orders_branch_id", "sales_orders", ["branch_id"])
    op.create_index("ix_sales_orders_status", "sales_orders", ["status"])
    op.create_index("ix_sales_orders_created_at", "sales_orders", ["created_at"])
    op.create_index("ix_sales_orders_branch_status_created", "sales_orders", ["branch_id", "status", "created_at"])

    op.create_table(
        "sales_order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("sales_orders.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity >= 1", name="ck_sales_order_items_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_order_items_order_id", "sales_order_items", ["order_id"])
    op.create_index("ix_sales_order_items_product_id", "sales_order_items", ["product_id"])

    op.create_table(
        "service_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_number", sa.String(32), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("customer_name", sa.String(100), nullable=False),
        sa.Column("customer_phone", sa.String(20), nullable=False),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_address", sa.String(500), nullable=True),
        sa.Column("vehicle_make", sa.String(64), nullable=True),
        sa.Column("vehicle_model", sa.String(64), nullable=True),
        sa.Column("vehicle_year", sa.Integer(), nullable=True),
        sa.Column("vehicle_plate_number", sa.String(32), nullable=True),
        sa.Column("vehicle_vin", sa.String(17), nullable=True),
        sa.Column("vehicle_mileage", sa.Integer(), nullable=True),
        sa.Column("assigned_to_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("diagnosis", sa.Text(), nullable=True),
        sa.Column("labor_cost_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("other_charges_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_parts_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="normal"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("notes", sa.String(1000), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("job_number", name="uq_service_orders_job_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_service_orders_branch_id", "service_orders", ["branch_id"])
    op.create_index("ix_service_orders_status", "service_orders", ["status"])
    op.create_index("ix_service_orders_created_at", "service_orders", ["created_at"])
    op.create_index("ix_service_orders_branch_status_created", "service_orders", ["branch_id", "status", "created_at"])
    op.create_index("ix_service_orders_assignee_status", "service_orders", ["assigned_to_user_id", "status"])

    op.create_table(
        "service_order_parts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("service_order_id", sa.Integer(), sa.ForeignKey("service_orders.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity >= 1", name="ck_service_order_parts_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_service_order_parts_service_order_id", "service_order_parts", ["service_order_id"])
    op.create_index("ix_service_order_parts_product_id", "service_order_parts", ["product_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_number", sa.String(32), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("reference_type", sa.String(32), nullable=False),
        sa.Column("reference_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("processed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint("transaction_number", name="uq_transactions_number"),
        sa.UniqueConstraint("type", "reference_type", "reference_id", name="uq_transactions_type_reference"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transactions_type", "transactions", ["type"])
    op.create_index("ix_transactions_branch_id", "transactions", ["branch_id"])
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"])
    op.create_index("ix_transactions_branch_created", "transactions", ["branch_id", "created_at"])


def downgrade():
    for table in (
        "transactions",
        "service_order_parts",
        "service_orders",
        "sales_order_items",
        "sales_orders",
        "stock_transfers",
        "stock_movements",
        "stock_records",
        "document_sequences",
        "session_tokens",
        "users",
        "products",
        "branches",
    ):
        op.drop_table(table)
