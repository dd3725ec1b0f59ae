"""Users, teams with composition counters, membership ledger and registrations.

Revision ID: 0001_teamup_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_teamup_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DEFAULT_TEAM_IDS = [f"T{i:02d}" for i in range(1, 31)]


def upgrade() -> None:
    # -- Users -------------------------------------------------------------
    op.create_table(
        "teamup_users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("identifier", sa.String(128), nullable=False),
        sa.Column("role_category", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_teamup_users_identifier", "teamup_users", ["identifier"], unique=True)

    # -- Teams -------------------------------------------------------------
    op.create_table(
        "teamup_teams",
        sa.Column("id", sa.String(16), primary_key=True),
        sa.Column("name", sa.String(32), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="forming"),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rnd_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("product_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("growth_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("root_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("root_count BETWEEN 0 AND 1", name="teamup_teams_root_count_range"),
        sa.CheckConstraint("status IN ('forming', 'locked')", name="teamup_teams_status_valid"),
    )
    op.create_index("ix_teamup_teams_status", "teamup_teams", ["status"])

    # -- Membership ledger -------------------------------------------------
    op.create_table(
        "teamup_team_members",
        sa.Column(
            "team_id",
            sa.String(16),
            sa.ForeignKey("teamup_teams.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("teamup_users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role_category", sa.String(16), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", name="teamup_team_members_user_id_uniq"),
    )
    op.create_index("ix_teamup_team_members_team_id", "teamup_team_members", ["team_id"])

    # -- Registrations -----------------------------------------------------
    op.create_table(
        "teamup_gathering_registrations",
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("teamup_users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("attending", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "teamup_contest_registrations",
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("teamup_users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("status", sa.String(24), nullable=False, server_default="registered"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # -- Seed the team pool ------------------------------------------------
    teams = sa.table("teamup_teams", sa.column("id", sa.String))
    op.bulk_insert(teams, [{"id": tid} for tid in DEFAULT_TEAM_IDS])


def downgrade() -> None:
    op.drop_table("teamup_contest_registrations")
    op.drop_table("teamup_gathering_registrations")
    op.drop_index("ix_teamup_team_members_team_id", table_name="teamup_team_members")
    op.drop_table("teamup_team_members")
    op.drop_index("ix_teamup_teams_status", table_name="teamup_teams")
    op.drop_table("teamup_teams")
    op.drop_index("ix_teamup_users_identifier", table_name="teamup_users")
    op.drop_table("teamup_users")
