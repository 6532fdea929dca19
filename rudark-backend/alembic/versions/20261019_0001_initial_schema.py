"""initial schema

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


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _money(name: str, *, nullable: bool = False, default: str | None = None) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable, server_default=default)


def _flag(name: str, default: str) -> sa.Column:
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=default)


def _line_item_columns() -> list[sa.Column]:
    return [
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("variant_sku", sa.String(length=100), nullable=True),
        sa.Column("variant_label", sa.String(length=120), nullable=True),
    ]


def _movement_columns() -> list[sa.Column]:
    return [
        sa.Column("variant_id", sa.String(length=36), nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("variant_sku", sa.String(length=100), nullable=True),
        sa.Column("variant_label", sa.String(length=120), nullable=True),
        sa.Column("movement_type", sa.String(length=20), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("previous_quantity", sa.Integer(), nullable=False),
        sa.Column("new_quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("reference", sa.String(length=64), nullable=True),
        sa.Column("store_id", sa.String(length=36), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
    ]


# table -> (index name, columns, unique), created after the table exists.
INDEXES: dict[str, list[tuple[str, list, bool]]] = {
    "admin_users": [
        ("ix_admin_users_email", ["email"], True),
        ("ux_admin_users_email_lower", [sa.text("lower(email)")], True),
    ],
    "audit_logs": [
        ("ix_audit_logs_actor_admin_id", ["actor_admin_id"], False),
        ("ix_audit_logs_target_id", ["target_id"], False),
        ("ix_audit_logs_action_created_at", ["action", "created_at"], False),
        ("ix_audit_logs_target", ["target_type", "target_id"], False),
    ],
    "categories": [("ix_categories_slug", ["slug"], True)],
    "products": [
        ("ix_products_sku", ["sku"], True),
        ("ix_products_category_slug", ["category_slug"], False),
        ("ix_products_loyverse_variant_id", ["loyverse_variant_id"], False),
        ("ix_products_category_created_at", ["category_slug", "created_at"], False),
    ],
    "product_variants": [
        ("ix_product_variants_product_id", ["product_id"], False),
        ("ix_product_variants_sku", ["sku"], True),
        ("ix_product_variants_loyverse_variant_id", ["loyverse_variant_id"], False),
    ],
    "promos": [("ix_promos_code", ["code"], True)],
    "orders": [
        ("ix_orders_customer_email", ["customer_email"], False),
        ("ix_orders_customer_phone", ["customer_phone"], False),
        ("ix_orders_payment_reference", ["payment_reference"], False),
        ("ix_orders_shipping_status", ["shipping_status"], False),
        ("ix_orders_tracking_no", ["tracking_no"], False),
        ("ix_orders_status_created_at", ["status", "created_at"], False),
        ("ix_orders_delivery_method_shipping_status", ["delivery_method", "shipping_status"], False),
    ],
    "order_items": [
        ("ix_order_items_order_id", ["order_id"], False),
        ("ix_order_items_product_id", ["product_id"], False),
    ],
    "order_refunds": [("ix_order_refunds_order_id", ["order_id"], False)],
    "payment_webhook_events": [
        ("ix_payment_webhook_events_event_id", ["event_id"], True),
        ("ix_payment_webhook_events_order_id", ["order_id"], False),
    ],
    "stock_movements": [
        ("ix_stock_movements_product_id", ["product_id"], False),
        ("ix_stock_movements_variant_id", ["variant_id"], False),
        ("ix_stock_movements_reference", ["reference"], False),
        ("ix_stock_movements_created_at", ["created_at"], False),
        ("ix_stock_movements_product_created_at", ["product_id", "created_at"], False),
        ("ix_stock_movements_type_created_at", ["movement_type", "created_at"], False),
    ],
    "stock_movement_archives": [
        ("ix_stock_movement_archives_product_id", ["product_id"], False),
        ("ix_stock_movement_archives_created_at", ["created_at"], False),
    ],
    "consignment_items": [("ix_consignment_items_consignment_id", ["consignment_id"], False)],
    "stock_transfers": [
        ("ix_stock_transfers_from_store_id", ["from_store_id"], False),
        ("ix_stock_transfers_to_store_id", ["to_store_id"], False),
    ],
    "stock_transfer_items": [("ix_stock_transfer_items_transfer_id", ["transfer_id"], False)],
    "stock_audit_items": [("ix_stock_audit_items_audit_id", ["audit_id"], False)],
}


def _tables() -> list[tuple[str, list]]:
    """Table definitions in foreign-key order."""
    return [
        (
            "admin_users",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("email", sa.String(length=255), nullable=False),
                sa.Column("full_name", sa.String(length=100), nullable=True),
                sa.Column("hashed_password", sa.String(length=255), nullable=False),
                sa.Column("role", sa.String(length=20), nullable=False, server_default="staff"),
                _flag("is_active", "1"),
                *_timestamps(),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "audit_logs",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("actor_admin_id", sa.String(length=36), nullable=True),
                sa.Column("action", sa.String(length=100), nullable=False),
                sa.Column("target_type", sa.String(length=100), nullable=False),
                sa.Column("target_id", sa.String(length=64), nullable=True),
                sa.Column("metadata_json", sa.JSON(), nullable=True),
                _created_at(),
                sa.ForeignKeyConstraint(["actor_admin_id"], ["admin_users.id"]),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "stores",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("name", sa.String(length=120), nullable=False),
                sa.Column("loyverse_store_id", sa.String(length=64), nullable=False),
                sa.Column("loyverse_payment_type_id", sa.String(length=64), nullable=True),
                sa.Column("address", sa.String(length=255), nullable=True),
                sa.Column("phone", sa.String(length=30), nullable=True),
                _flag("is_default", "0"),
                _flag("is_active", "1"),
                *_timestamps(),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "categories",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("name", sa.String(length=120), nullable=False),
                sa.Column("slug", sa.String(length=100), nullable=False),
                sa.Column("description", sa.String(length=500), nullable=True),
                sa.Column("image_url", sa.String(length=500), nullable=True),
                sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
                sa.Column("subcategories", sa.JSON(), nullable=True),
                _flag("is_active", "1"),
                *_timestamps(),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "collection_points",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("name", sa.String(length=120), nullable=False),
                sa.Column("address", sa.String(length=255), nullable=False),
                sa.Column("postcode", sa.String(length=10), nullable=True),
                sa.Column("state", sa.String(length=120), nullable=True),
                _money("collection_fee", default="0"),
                sa.Column("operating_hours", sa.String(length=255), nullable=True),
                sa.Column("contact_phone", sa.String(length=30), nullable=True),
                _flag("is_active", "1"),
                *_timestamps(),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "products",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("sku", sa.String(length=100), nullable=False),
                sa.Column("name", sa.String(length=255), nullable=False),
                sa.Column("description", sa.Text(), nullable=True),
                _money("web_price"),
                _money("promo_price", nullable=True),
                sa.Column("category_slug", sa.String(length=100), nullable=True),
                sa.Column("images", sa.JSON(), nullable=True),
                sa.Column("tags", sa.JSON(), nullable=True),
                sa.Column("stock_status", sa.String(length=20), nullable=False, server_default="OUT_OF_STOCK"),
                _flag("is_featured", "0"),
                _flag("is_active", "1"),
                sa.Column("loyverse_item_id", sa.String(length=64), nullable=True),
                sa.Column("loyverse_variant_id", sa.String(length=64), nullable=True),
                sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
                sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
                sa.Column("last_stock_sync", sa.DateTime(timezone=True), nullable=True),
                sa.Column("weight_kg", sa.Numeric(8, 3), nullable=True),
                sa.Column("parcel_size", sa.String(length=20), nullable=True),
                sa.Column("length_cm", sa.Integer(), nullable=True),
                sa.Column("width_cm", sa.Integer(), nullable=True),
                sa.Column("height_cm", sa.Integer(), nullable=True),
                *_timestamps(),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "product_variants",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("product_id", sa.String(length=36), nullable=False),
                sa.Column("sku", sa.String(length=100), nullable=False),
                sa.Column("options", sa.JSON(), nullable=False),
                _money("price_override", nullable=True),
                sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
                sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
                sa.Column("loyverse_variant_id", sa.String(length=64), nullable=True),
                _created_at(),
                sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "promos",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("code", sa.String(length=40), nullable=False),
                sa.Column("promo_type", sa.String(length=12), nullable=False),
                _money("value"),
                _money("min_spend", default="0"),
                sa.Column("usage_limit", sa.Integer(), nullable=True),
                sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
                _flag("active", "1"),
                *_timestamps(),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "shop_settings",
            [
                sa.Column("key", sa.String(length=40), nullable=False),
                sa.Column("value_json", sa.JSON(), nullable=False),
                *_timestamps(),
                sa.PrimaryKeyConstraint("key"),
            ],
        ),
        (
            "orders",
            [
                sa.Column("id", sa.String(length=32), nullable=False),
                sa.Column("status", sa.String(length=30), nullable=False, server_default="PENDING"),
                sa.Column("customer_name", sa.String(length=120), nullable=False),
                sa.Column("customer_email", sa.String(length=255), nullable=False),
                sa.Column("customer_phone", sa.String(length=30), nullable=False),
                sa.Column("address", sa.String(length=255), nullable=True),
                sa.Column("postcode", sa.String(length=10), nullable=True),
                sa.Column("city", sa.String(length=120), nullable=True),
                sa.Column("state", sa.String(length=120), nullable=True),
                sa.Column("delivery_method", sa.String(length=20), nullable=False, server_default="delivery"),
                sa.Column("shipping_provider", sa.String(length=40), nullable=True),
                sa.Column("shipping_service", sa.String(length=80), nullable=True),
                sa.Column("collection_point_id", sa.String(length=36), nullable=True),
                sa.Column("collection_point_name", sa.String(length=120), nullable=True),
                sa.Column("collection_point_address", sa.String(length=255), nullable=True),
                _money("subtotal"),
                _money("shipping_cost", default="0"),
                _money("collection_fee", default="0"),
                _money("discount_amount", default="0"),
                _money("total_amount"),
                _money("refunded_amount", default="0"),
                sa.Column("promo_code", sa.String(length=40), nullable=True),
                _flag("free_shipping", "0"),
                sa.Column("payment_gateway", sa.String(length=20), nullable=True),
                sa.Column("payment_status", sa.String(length=20), nullable=True),
                sa.Column("payment_reference", sa.String(length=120), nullable=True),
                sa.Column("payment_environment", sa.String(length=10), nullable=True),
                sa.Column("checkout_url", sa.String(length=500), nullable=True),
                sa.Column("payment_instructions", sa.Text(), nullable=True),
                _flag("requires_approval", "0"),
                sa.Column("payment_data", sa.JSON(), nullable=True),
                sa.Column("payment_reviewed_by", sa.String(length=36), nullable=True),
                sa.Column("payment_rejection_reason", sa.String(length=255), nullable=True),
                sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
                _flag("stock_reserved", "0"),
                _flag("stock_deducted", "0"),
                sa.Column("stock_deducted_error", sa.String(length=500), nullable=True),
                sa.Column("loyverse_status", sa.String(length=30), nullable=True),
                sa.Column("loyverse_error", sa.String(length=500), nullable=True),
                sa.Column("loyverse_receipt_number", sa.String(length=64), nullable=True),
                sa.Column("shipping_status", sa.String(length=30), nullable=True),
                sa.Column("parcel_shipment_key", sa.String(length=120), nullable=True),
                sa.Column("tracking_no", sa.String(length=64), nullable=True),
                _flag("tracking_synced", "0"),
                sa.Column("tracking_synced_at", sa.DateTime(timezone=True), nullable=True),
                sa.Column("shipping_error", sa.String(length=500), nullable=True),
                sa.Column("note", sa.String(length=255), nullable=True),
                sa.Column("status_reason", sa.String(length=255), nullable=True),
                *[
                    sa.Column(name, sa.DateTime(timezone=True), nullable=True)
                    for name in (
                        "shipped_at",
                        "delivered_at",
                        "collected_at",
                        "cancelled_at",
                        "returned_at",
                        "refunded_at",
                        "expired_at",
                    )
                ],
                *_timestamps(),
                sa.ForeignKeyConstraint(["collection_point_id"], ["collection_points.id"]),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "order_items",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("order_id", sa.String(length=32), nullable=False),
                sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
                sa.Column("product_id", sa.String(length=36), nullable=False),
                sa.Column("variant_id", sa.String(length=36), nullable=True),
                sa.Column("name", sa.String(length=255), nullable=False),
                sa.Column("sku", sa.String(length=100), nullable=False),
                sa.Column("variant_sku", sa.String(length=100), nullable=True),
                sa.Column("selected_options", sa.JSON(), nullable=True),
                sa.Column("quantity", sa.Integer(), nullable=False),
                _money("unit_price"),
                _money("line_total"),
                sa.Column("loyverse_variant_id", sa.String(length=64), nullable=True),
                sa.Column("category_slug", sa.String(length=100), nullable=True),
                sa.Column("weight_kg", sa.Numeric(8, 3), nullable=True),
                sa.Column("parcel_size", sa.String(length=20), nullable=True),
                sa.Column("length_cm", sa.Integer(), nullable=True),
                sa.Column("width_cm", sa.Integer(), nullable=True),
                sa.Column("height_cm", sa.Integer(), nullable=True),
                sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
                sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
                sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"]),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "order_refunds",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("order_id", sa.String(length=32), nullable=False),
                sa.Column("refund_type", sa.String(length=10), nullable=False),
                _money("amount"),
                sa.Column("reason", sa.String(length=255), nullable=True),
                sa.Column("items_json", sa.JSON(), nullable=True),
                sa.Column("created_by", sa.String(length=36), nullable=True),
                _created_at(),
                sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "payment_webhook_events",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("gateway", sa.String(length=20), nullable=False),
                sa.Column("event_id", sa.String(length=160), nullable=False),
                sa.Column("event_type", sa.String(length=60), nullable=False),
                sa.Column("order_id", sa.String(length=32), nullable=True),
                sa.Column("outcome", sa.String(length=30), nullable=False),
                sa.Column("payload_json", sa.JSON(), nullable=True),
                _created_at(),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "stock_movements",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("product_id", sa.String(length=36), nullable=False),
                *_movement_columns(),
                _created_at(),
                sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "stock_movement_archives",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("product_id", sa.String(length=36), nullable=False),
                *_movement_columns(),
                sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
                sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "consignments",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("consignment_number", sa.String(length=20), nullable=False),
                sa.Column("partner_name", sa.String(length=120), nullable=False),
                sa.Column("partner_contact", sa.String(length=120), nullable=True),
                sa.Column("partner_phone", sa.String(length=30), nullable=True),
                sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
                sa.Column("notes", sa.Text(), nullable=True),
                sa.Column("created_by", sa.String(length=36), nullable=True),
                sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
                sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
                sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
                *_timestamps(),
                sa.PrimaryKeyConstraint("id"),
                sa.UniqueConstraint("consignment_number"),
            ],
        ),
        (
            "consignment_items",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("consignment_id", sa.String(length=36), nullable=False),
                *_line_item_columns(),
                _money("unit_price"),
                sa.Column("quantity_sent", sa.Integer(), nullable=False),
                sa.Column("quantity_sold", sa.Integer(), nullable=False, server_default="0"),
                sa.Column("quantity_returned", sa.Integer(), nullable=False, server_default="0"),
                sa.Column("quantity_lost", sa.Integer(), nullable=False, server_default="0"),
                sa.ForeignKeyConstraint(["consignment_id"], ["consignments.id"]),
                sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "stock_transfers",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("transfer_number", sa.String(length=24), nullable=False),
                sa.Column("from_store_id", sa.String(length=36), nullable=False),
                sa.Column("to_store_id", sa.String(length=36), nullable=False),
                sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
                sa.Column("notes", sa.String(length=255), nullable=True),
                sa.Column("cancelled_reason", sa.String(length=255), nullable=True),
                sa.Column("created_by", sa.String(length=36), nullable=True),
                sa.Column("approved_by", sa.String(length=36), nullable=True),
                sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
                sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
                _created_at(),
                sa.ForeignKeyConstraint(["from_store_id"], ["stores.id"]),
                sa.ForeignKeyConstraint(["to_store_id"], ["stores.id"]),
                sa.PrimaryKeyConstraint("id"),
                sa.UniqueConstraint("transfer_number"),
            ],
        ),
        (
            "stock_transfer_items",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("transfer_id", sa.String(length=36), nullable=False),
                *_line_item_columns(),
                sa.Column("quantity", sa.Integer(), nullable=False),
                sa.Column("received_quantity", sa.Integer(), nullable=True),
                sa.ForeignKeyConstraint(["transfer_id"], ["stock_transfers.id"]),
                sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
        (
            "stock_audits",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("audit_number", sa.String(length=24), nullable=False),
                sa.Column("store_id", sa.String(length=36), nullable=True),
                sa.Column("status", sa.String(length=20), nullable=False, server_default="IN_PROGRESS"),
                sa.Column("notes", sa.Text(), nullable=True),
                sa.Column("created_by", sa.String(length=36), nullable=True),
                sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
                _created_at(),
                sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
                sa.PrimaryKeyConstraint("id"),
                sa.UniqueConstraint("audit_number"),
            ],
        ),
        (
            "stock_audit_items",
            [
                sa.Column("id", sa.String(length=36), nullable=False),
                sa.Column("audit_id", sa.String(length=36), nullable=False),
                *_line_item_columns(),
                sa.Column("system_quantity", sa.Integer(), nullable=False),
                sa.Column("counted_quantity", sa.Integer(), nullable=True),
                sa.Column("discrepancy", sa.Integer(), nullable=True),
                _flag("applied", "0"),
                sa.ForeignKeyConstraint(["audit_id"], ["stock_audits.id"]),
                sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
                sa.PrimaryKeyConstraint("id"),
            ],
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for table_name, columns in _tables():
        inspector = sa.inspect(bind)
        if not _table_exists(inspector, table_name):
            op.create_table(table_name, *columns)

        inspector = sa.inspect(bind)
        for index_name, index_columns, unique in INDEXES.get(table_name, []):
            if not _index_exists(inspector, table_name, index_name):
                op.create_index(index_name, table_name, index_columns, unique=unique)


def downgrade() -> None:
    bind = op.get_bind()
    for table_name, _ in reversed(_tables()):
        inspector = sa.inspect(bind)
        if not _table_exists(inspector, table_name):
            continue
        for index_name, _, _ in INDEXES.get(table_name, []):
            if _index_exists(inspector, table_name, index_name):
                op.drop_index(index_name, table_name=table_name)
        op.drop_table(table_name)
