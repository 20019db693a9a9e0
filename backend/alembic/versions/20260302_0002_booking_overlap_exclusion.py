"""Reject overlapping confirmed bookings per host.

Revision ID: 20260302_0002
Revises: 20260302_0001
Create Date: 2026-03-02 00:00:02
"""

from typing import Sequence, Union

from alembic import op


revision: str = "20260302_0002"
down_revision: Union[str, None] = "20260302_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # gist needs btree_gist for the integer equality on host_id.
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    op.execute(
        """
        ALTER TABLE bookings
        ADD CONSTRAINT ex_bookings_host_no_overlap
        EXCLUDE USING gist (
            host_id WITH =,
            tstzrange(start_time, end_time, '[)') WITH &&
        )
        WHERE (status = 'confirmed')
        """
    )


def downgrade() -> None:
    op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_bookings_host_no_overlap")
