"""Create hosts, availability rules, booking requests and bookings.

Revision ID: 20260302_0001
Revises:
Create Date: 2026-03-02 00:00:01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20260302_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "hosts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column(
            "booking_horizon_days",
            sa.Integer(),
            server_default=sa.text("30"),
            nullable=False,
        ),
        sa.Column("calendar_provider", sa.String(length=32), nullable=True),
        sa.Column("calendar_id", sa.String(length=255), nullable=True),
        sa.Column(
            "calendar_oauth_status",
            sa.String(length=64),
            server_default="not_connected",
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_hosts_external_id", "hosts", ["external_id"], unique=True)

    op.create_table(
        "availability_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column(
            "buffer_minutes",
            sa.SmallInteger(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column("max_bookings_per_day", sa.SmallInteger(), nullable=True),
        sa.ForeignKeyConstraint(["host_id"], ["hosts.id"], ondelete="CASCADE"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_rules_day_of_week"),
        sa.CheckConstraint("start_time < end_time", name="ck_availability_rules_window"),
        sa.CheckConstraint("buffer_minutes >= 0", name="ck_availability_rules_buffer"),
        sa.CheckConstraint(
            "max_bookings_per_day IS NULL OR max_bookings_per_day >= 1",
            name="ck_availability_rules_daily_cap",
        ),
    )
    op.create_index(
        "ix_availability_rules_host_id", "availability_rules", ["host_id"], unique=False
    )

    op.create_table(
        "booking_requests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("customer_name", sa.String(length=100), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=False),
        sa.Column("customer_phone", sa.String(length=25), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("confirmation_token", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), server_default="pending", nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["host_id"], ["hosts.id"], ondelete="CASCADE"),
        sa.CheckConstraint("start_time < end_time", name="ck_booking_requests_interval"),
    )
    op.create_index("ix_booking_requests_host_id", "booking_requests", ["host_id"], unique=False)
    op.create_index(
        "ix_booking_requests_confirmation_token",
        "booking_requests",
        ["confirmation_token"],
        unique=True,
    )
    op.create_index("ix_booking_requests_status", "booking_requests", ["status"], unique=False)
    op.create_index(
        "ix_booking_requests_expires_at", "booking_requests", ["expires_at"], unique=False
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("booking_request_id", sa.String(length=36), nullable=True),
        sa.Column("customer_name", sa.String(length=100), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=False),
        sa.Column("customer_phone", sa.String(length=25), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("external_event_id", sa.String(length=255), nullable=True),
        sa.Column("external_event_provider", sa.String(length=64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["host_id"], ["hosts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["booking_request_id"], ["booking_requests.id"], ondelete="SET NULL"
        ),
        sa.UniqueConstraint("booking_request_id", name="uq_bookings_booking_request_id"),
        sa.CheckConstraint("start_time < end_time", name="ck_bookings_interval"),
    )
    op.create_index("ix_bookings_host_id", "bookings", ["host_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_source", "bookings", ["source"], unique=False)
    op.create_index(
        "ix_bookings_external_event_id", "bookings", ["external_event_id"], unique=False
    )

    op.create_table(
        "google_oauth_credentials",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("token_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["host_id"], ["hosts.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_google_oauth_credentials_host_id",
        "google_oauth_credentials",
        ["host_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_google_oauth_credentials_host_id", table_name="google_oauth_credentials")
    op.drop_table("google_oauth_credentials")

    op.drop_index("ix_bookings_external_event_id", table_name="bookings")
    op.drop_index("ix_bookings_source", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_host_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_booking_requests_expires_at", table_name="booking_requests")
    op.drop_index("ix_booking_requests_status", table_name="booking_requests")
    op.drop_index("ix_booking_requests_confirmation_token", table_name="booking_requests")
    op.drop_index("ix_booking_requests_host_id", table_name="booking_requests")
    op.drop_table("booking_requests")

    op.drop_index("ix_availability_rules_host_id", table_name="availability_rules")
    op.drop_table("availability_rules")

    op.drop_index("ix_hosts_external_id", table_name="hosts")
    op.drop_table("hosts")
