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
        "time_slots",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("slot_date", sa.String(length=10), nullable=False),
        sa.Column("slot_time", sa.String(length=5), nullable=False),
        sa.Column("service_type", sa.String(length=20), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("booked_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("slot_date", "slot_time", "service_type", name="uq_time_slot_date_time_service"),
        sa.CheckConstraint("booked_count >= 0", name="ck_time_slot_booked_nonnegative"),
    )
    op.create_index("ix_time_slots_slot_date", "time_slots", ["slot_date"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_ref", sa.String(length=20), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("customer_name", sa.String(length=200), nullable=False),
        sa.Column("customer_email", sa.String(length=320), nullable=False),
        sa.Column("customer_phone", sa.String(length=40), nullable=True),
        sa.Column("time_slot_id", sa.String(length=36), nullable=False),
        sa.Column("slot_date", sa.String(length=10), nullable=False),
        sa.Column("slot_time", sa.String(length=5), nullable=False),
        sa.Column("service_type", sa.String(length=20), nullable=False),
        sa.Column("booking_type", sa.String(length=12), nullable=False, server_default="communal"),
        sa.Column("guest_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("price_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("final_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="GBP"),
        sa.Column("payment_method", sa.String(length=12), nullable=False, server_default="card"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("booking_status", sa.String(length=20), nullable=False, server_default="confirmed"),
        sa.Column("special_requests", sa.Text(), nullable=True),
        sa.Column("gift_card_code", sa.String(length=40), nullable=True),
        sa.Column("stripe_session_id", sa.String(length=255), nullable=True),
        sa.Column("created_by_role", sa.String(length=12), nullable=False, server_default="customer"),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bookings_booking_ref", "bookings", ["booking_ref"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_customer_email", "bookings", ["customer_email"])
    op.create_index("ix_bookings_time_slot_id", "bookings", ["time_slot_id"])
    op.create_index("ix_bookings_slot_date", "bookings", ["slot_date"])
    op.create_index("ix_bookings_stripe_session_id", "bookings", ["stripe_session_id"])

    op.create_table(
        "customer_tokens",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_email", sa.String(length=320), nullable=False),
        sa.Column("tokens_remaining", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("tokens_remaining >= 0", name="ck_customer_tokens_nonnegative"),
    )
    op.create_index("ix_customer_tokens_customer_email", "customer_tokens", ["customer_email"])

    op.create_table(
        "token_allocations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("token_balance_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_token_allocations_booking_id", "token_allocations", ["booking_id"])
    op.create_index("ix_token_allocations_token_balance_id", "token_allocations", ["token_balance_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("provider", sa.String(length=40), nullable=False, server_default="stripe"),
        sa.Column("kind", sa.String(length=12), nullable=False, server_default="charge"),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default="GBP"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("provider_ref", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor_user_id", sa.String(length=320), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])

    op.create_table(
        "operator_alerts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("operation", sa.String(length=80), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("message", sa.Text(), nullable=False, server_default=""),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_operator_alerts_operation", "operator_alerts", ["operation"])
    op.create_index("ix_operator_alerts_entity_id", "operator_alerts", ["entity_id"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=80), primary_key=True),
        sa.Column("int_value", sa.Integer(), nullable=True),
        sa.Column("str_value", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("settings")
    op.drop_index("ix_operator_alerts_entity_id", table_name="operator_alerts")
    op.drop_index("ix_operator_alerts_operation", table_name="operator_alerts")
    op.drop_table("operator_alerts")
    op.drop_index("ix_audit_logs_entity_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity_type", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_user_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_payments_booking_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_token_allocations_token_balance_id", table_name="token_allocations")
    op.drop_index("ix_token_allocations_booking_id", table_name="token_allocations")
    op.drop_table("token_allocations")
    op.drop_index("ix_customer_tokens_customer_email", table_name="customer_tokens")
    op.drop_table("customer_tokens")
    op.drop_index("ix_bookings_stripe_session_id", table_name="bookings")
    op.drop_index("ix_bookings_slot_date", table_name="bookings")
    op.drop_index("ix_bookings_time_slot_id", table_name="bookings")
    op.drop_index("ix_bookings_customer_email", table_name="bookings")
    op.drop_index("ix_bookings_user_id", table_name="bookings")
    op.drop_index("ix_bookings_booking_ref", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_time_slots_slot_date", table_name="time_slots")
    op.drop_table("time_slots")
