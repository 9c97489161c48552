"""gift cards, customer credit and memberships

Revision ID: 0002_credits_memberships
Revises: 0001_initial
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0002_credits_memberships"
down_revision = "0001_initial"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.add_column("bookings", sa.Column("credit_amount", sa.Integer(), nullable=False, server_default="0"))
    op.add_column("bookings", sa.Column("membership_id", sa.String(length=36), nullable=True))
    op.create_index("ix_bookings_membership_id", "bookings", ["membership_id"])

    op.create_table(
        "gift_cards",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("gift_code", sa.String(length=40), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("purchaser_email", sa.String(length=320), nullable=True),
        sa.Column("recipient_name", sa.String(length=200), nullable=True),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="paid"),
        sa.Column("is_redeemed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("redeemed_by", sa.String(length=320), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_gift_cards_gift_code", "gift_cards", ["gift_code"], unique=True)

    op.create_table(
        "customer_credits",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_email", sa.String(length=320), nullable=False),
        sa.Column("credit_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("gift_card_id", sa.String(length=36), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("credit_balance >= 0", name="ck_customer_credits_nonnegative"),
    )
    op.create_index("ix_customer_credits_customer_email", "customer_credits", ["customer_email"])
    op.create_index("ix_customer_credits_gift_card_id", "customer_credits", ["gift_card_id"])

    op.create_table(
        "credit_allocations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("credit_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_credit_allocations_booking_id", "credit_allocations", ["booking_id"])
    op.create_index("ix_credit_allocations_credit_id", "credit_allocations", ["credit_id"])

    op.create_table(
        "memberships",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_email", sa.String(length=320), nullable=False),
        sa.Column("customer_name", sa.String(length=200), nullable=True),
        sa.Column("membership_type", sa.String(length=20), nullable=False, server_default="weekly"),
        sa.Column("sessions_per_week", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("sessions_remaining", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_date", sa.String(length=10), nullable=False),
        sa.Column("end_date", sa.String(length=10), nullable=False),
        sa.Column("last_session_reset", sa.String(length=10), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("sessions_remaining >= 0", name="ck_memberships_sessions_nonnegative"),
    )
    op.create_index("ix_memberships_customer_email", "memberships", ["customer_email"])


def downgrade() -> None:
    op.drop_index("ix_memberships_customer_email", table_name="memberships")
    op.drop_table("memberships")
    op.drop_index("ix_credit_allocations_credit_id", table_name="credit_allocations")
    op.drop_index("ix_credit_allocations_booking_id", table_name="credit_allocations")
    op.drop_table("credit_allocations")
    op.drop_index("ix_customer_credits_gift_card_id", table_name="customer_credits")
    op.drop_index("ix_customer_credits_customer_email", table_name="customer_credits")
    op.drop_table("customer_credits")
    op.drop_index("ix_gift_cards_gift_code", table_name="gift_cards")
    op.drop_table("gift_cards")
    op.drop_index("ix_bookings_membership_id", table_name="bookings")
    op.drop_column("bookings", "membership_id")
    op.drop_column("bookings", "credit_amount")
