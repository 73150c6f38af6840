"""Create profiles and proposals tables.

``proposals`` is owner-scoped and gets a row-level security policy keyed on
the ``app.user_id`` session variable, which the API sets per transaction via
``set_config('app.user_id', ..., true)``.  An unset variable yields NULL, so
sessions that never bind a user see no proposals at all.

``profiles`` is deliberately left without RLS: the Stripe webhook handler has
to resolve the owning user from a customer id before any user is known.

Revision ID: 001
Revises:
Create Date: 2026-03-02 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # profiles
    # -----------------------------------------------------------------------
    op.create_table(
        "profiles",
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("plan", sa.String(16), nullable=False, server_default="free"),
        sa.Column("stripe_customer_id", sa.String(256), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(256), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("user_id"),
        sa.CheckConstraint("plan IN ('free', 'pro')", name="ck_profiles_plan"),
    )
    op.create_index("ix_profiles_stripe_customer", "profiles", ["stripe_customer_id"])

    # -----------------------------------------------------------------------
    # proposals
    # -----------------------------------------------------------------------
    op.create_table(
        "proposals",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("client_name", sa.String(512), nullable=False),
        sa.Column("notes", sa.Text(), nullable=False),
        sa.Column("proposal", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_proposals_user_created", "proposals", ["user_id", "created_at"])

    op.execute("ALTER TABLE proposals ENABLE ROW LEVEL SECURITY")
    op.execute("ALTER TABLE proposals FORCE ROW LEVEL SECURITY")
    op.execute(
        "CREATE POLICY owner_isolation_proposals ON proposals "
        "USING (user_id = current_setting('app.user_id', true)) "
        "WITH CHECK (user_id = current_setting('app.user_id', true))"
    )


def downgrade() -> None:
    op.execute("DROP POLICY IF EXISTS owner_isolation_proposals ON proposals")
    op.execute("ALTER TABLE proposals NO FORCE ROW LEVEL SECURITY")
    op.execute("ALTER TABLE proposals DISABLE ROW LEVEL SECURITY")
    op.drop_index("ix_proposals_user_created", table_name="proposals")
    op.drop_table("proposals")
    op.drop_index("ix_profiles_stripe_customer", table_name="profiles")
    op.drop_table("profiles")
