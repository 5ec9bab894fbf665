"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "machines",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("item_type", sa.String(length=12), nullable=False, server_default="PRIMARY"),
        sa.Column("charge_model", sa.String(length=20), nullable=False, server_default="PER_BOOKING"),
        sa.Column("time_unit", sa.String(length=10), nullable=False, server_default="DAY"),
        sa.Column("daily_rate_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deposit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delivery_charge_cents", sa.Integer(), nullable=True),
        sa.Column("pickup_charge_cents", sa.Integer(), nullable=True),
        sa.Column("min_days", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_machines_code", "machines", ["code"], unique=True)

    op.create_table(
        "company_discounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("nif", sa.String(length=9), nullable=False),
        sa.Column("company_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_company_discounts_nif", "company_discounts", ["nif"], unique=True)

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_ref", sa.String(length=20), nullable=False),
        sa.Column("machine_id", sa.String(length=36), sa.ForeignKey("machines.id"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("customer_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("customer_email", sa.String(length=320), nullable=False),
        sa.Column("customer_phone", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("site_address_line1", sa.String(length=200), nullable=True),
        sa.Column("site_postal_code", sa.String(length=20), nullable=True),
        sa.Column("site_city", sa.String(length=100), nullable=True),
        sa.Column("billing_is_business", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("billing_company_name", sa.String(length=200), nullable=True),
        sa.Column("billing_tax_id", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=12), nullable=False, server_default="PENDING"),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("flow", sa.String(length=30), nullable=False, server_default="full_upfront"),
        sa.Column("cancel_reason", sa.String(length=60), nullable=True),
        sa.Column("stripe_checkout_session_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("delivery_selected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pickup_selected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("insurance_selected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("operator_selected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("quoted_total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("settled_subtotal_cents", sa.Integer(), nullable=True),
        sa.Column("settled_tax_cents", sa.Integer(), nullable=True),
        sa.Column("settled_total_cents", sa.Integer(), nullable=True),
        sa.Column("original_subtotal_cents", sa.Integer(), nullable=True),
        sa.Column("discounted_subtotal_cents", sa.Integer(), nullable=True),
        sa.Column("authorized_payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("authorized_amount_cents", sa.Integer(), nullable=True),
        sa.Column("stripe_charge_id", sa.String(length=255), nullable=True),
        sa.Column("refund_status", sa.String(length=10), nullable=False, server_default="NONE"),
        sa.Column("refunded_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refund_ids", sa.JSON(), nullable=True),
        sa.Column("dispute_status", sa.String(length=10), nullable=False, server_default="NONE"),
        sa.Column("dispute_id", sa.String(length=255), nullable=True),
        sa.Column("dispute_reason", sa.String(length=80), nullable=True),
        sa.Column("dispute_closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_provider", sa.String(length=30), nullable=True),
        sa.Column("invoice_provider_id", sa.String(length=80), nullable=True),
        sa.Column("invoice_number", sa.String(length=80), nullable=True),
        sa.Column("invoice_pdf_url", sa.String(length=1024), nullable=True),
        sa.Column("invoice_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmation_email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("internal_email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("start_date <= end_date", name="ck_bookings_date_order"),
        sa.CheckConstraint(
            "(status = 'PENDING' AND hold_expires_at IS NOT NULL) OR (status <> 'PENDING' AND hold_expires_at IS NULL)",
            name="ck_bookings_hold_only_pending",
        ),
        sa.CheckConstraint(
            "(status = 'CONFIRMED' AND paid) OR (status <> 'CONFIRMED' AND NOT paid)",
            name="ck_bookings_paid_iff_confirmed",
        ),
    )
    op.create_index("ix_bookings_booking_ref", "bookings", ["booking_ref"], unique=True)
    op.create_index("ix_bookings_machine_id", "bookings", ["machine_id"])
    op.create_index("ix_bookings_start_date", "bookings", ["start_date"])
    op.create_index("ix_bookings_end_date", "bookings", ["end_date"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_stripe_checkout_session_id", "bookings", ["stripe_checkout_session_id"])

    # Authoritative double-booking guard: no two active bookings of one machine share a day.
    if op.get_bind().dialect.name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE bookings ADD CONSTRAINT no_overlapping_active_bookings "
            "EXCLUDE USING gist (machine_id WITH =, daterange(start_date, end_date, '[]') WITH &&) "
            "WHERE (status IN ('PENDING', 'CONFIRMED'))"
        )

    op.create_table(
        "booking_items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("machine_id", sa.String(length=36), sa.ForeignKey("machines.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("item_type", sa.String(length=12), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("charge_model", sa.String(length=20), nullable=False),
        sa.Column("time_unit", sa.String(length=10), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity >= 1", name="ck_booking_items_quantity"),
        sa.CheckConstraint("unit_price_cents >= 0", name="ck_booking_items_price"),
    )
    op.create_index("ix_booking_items_booking_id", "booking_items", ["booking_id"])
    op.create_index("ix_booking_items_machine_id", "booking_items", ["machine_id"])

    op.create_table(
        "processed_payment_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("event_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("booking_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_processed_payment_events_event_type", "processed_payment_events", ["event_type"])
    op.create_index("ix_processed_payment_events_booking_id", "processed_payment_events", ["booking_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor", sa.String(length=80), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor", "audit_logs", ["actor"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("processed_payment_events")
    op.drop_table("booking_items")
    op.drop_table("bookings")
    op.drop_table("company_discounts")
    op.drop_table("machines")
