"""Console schema: organizations, memberships, branches, invitations, with RLS.

Revision ID: 0001_console_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_console_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

RLS_TABLES = [
    "organizations",
    "organization_members",
    "branches",
    "branch_members",
    "invitations",
]

MANAGING = "('owner', 'admin', 'manager')"

# Caller bound by the application with set_config('app.current_user_id', ...).
# SECURITY DEFINER lets policies on organization_members consult that table
# without recursing into its own policies.
HELPER_FUNCTIONS = [
    """
    CREATE OR REPLACE FUNCTION app_caller() RETURNS uuid
    LANGUAGE sql STABLE AS $$
        SELECT nullif(current_setting('app.current_user_id', true), '')::uuid
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION app_caller_email() RETURNS text
    LANGUAGE sql STABLE SECURITY DEFINER AS $$
        SELECT email FROM users WHERE id = app_caller()
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION app_org_role(org uuid) RETURNS text
    LANGUAGE sql STABLE SECURITY DEFINER AS $$
        SELECT role FROM organization_members
        WHERE organization_id = org AND user_id = app_caller()
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION app_org_has_members(org uuid) RETURNS boolean
    LANGUAGE sql STABLE SECURITY DEFINER AS $$
        SELECT EXISTS (SELECT 1 FROM organization_members WHERE organization_id = org)
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION app_has_pending_invitation(org uuid) RETURNS boolean
    LANGUAGE sql STABLE SECURITY DEFINER AS $$
        SELECT EXISTS (
            SELECT 1 FROM invitations
            WHERE organization_id = org AND email = app_caller_email() AND status = 'pending'
        )
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION app_may_manage_branch(branch uuid) RETURNS boolean
    LANGUAGE sql STABLE SECURITY DEFINER AS $$
        SELECT EXISTS (
            SELECT 1 FROM branches b
            WHERE b.id = branch AND app_org_role(b.organization_id) IS NOT NULL
              AND (
                app_org_role(b.organization_id) IN ('owner', 'admin', 'manager')
                OR EXISTS (
                    SELECT 1 FROM branch_members bm
                    WHERE bm.branch_id = b.id AND bm.user_id = app_caller()
                )
              )
        )
    $$
    """,
]

HELPER_NAMES = [
    "app_may_manage_branch(uuid)",
    "app_has_pending_invitation(uuid)",
    "app_org_has_members(uuid)",
    "app_org_role(uuid)",
    "app_caller_email()",
    "app_caller()",
]

POLICIES = [
    # organizations
    ("organizations", "org_select", "SELECT", "USING (app_org_role(id) IS NOT NULL)"),
    ("organizations", "org_insert", "INSERT", "WITH CHECK (app_caller() IS NOT NULL)"),
    ("organizations", "org_update", "UPDATE", "USING (app_org_role(id) IN ('owner', 'admin'))"),
    (
        "organizations",
        "org_delete",
        "DELETE",
        "USING (app_org_role(id) = 'owner' OR NOT app_org_has_members(id))",
    ),
    # organization_members
    (
        "organization_members",
        "members_select",
        "SELECT",
        "USING (app_org_role(organization_id) IS NOT NULL)",
    ),
    (
        "organization_members",
        "members_insert",
        "INSERT",
        f"""WITH CHECK (
            app_org_role(organization_id) IN {MANAGING}
            OR (
                user_id = app_caller()
                AND (
                    (role = 'owner' AND NOT app_org_has_members(organization_id))
                    OR app_has_pending_invitation(organization_id)
                )
            )
        )""",
    ),
    (
        "organization_members",
        "members_update",
        "UPDATE",
        f"USING (app_org_role(organization_id) IN {MANAGING})",
    ),
    (
        "organization_members",
        "members_delete",
        "DELETE",
        f"USING (app_org_role(organization_id) IN {MANAGING})",
    ),
    # branches
    ("branches", "branches_select", "SELECT", "USING (app_org_role(organization_id) IS NOT NULL)"),
    ("branches", "branches_insert", "INSERT", f"WITH CHECK (app_org_role(organization_id) IN {MANAGING})"),
    ("branches", "branches_update", "UPDATE", f"USING (app_org_role(organization_id) IN {MANAGING})"),
    ("branches", "branches_delete", "DELETE", f"USING (app_org_role(organization_id) IN {MANAGING})"),
    # branch_members
    (
        "branch_members",
        "branch_members_select",
        "SELECT",
        """USING (EXISTS (
            SELECT 1 FROM branches b
            WHERE b.id = branch_id AND app_org_role(b.organization_id) IS NOT NULL
        ))""",
    ),
    ("branch_members", "branch_members_insert", "INSERT", "WITH CHECK (app_may_manage_branch(branch_id))"),
    ("branch_members", "branch_members_delete", "DELETE", "USING (app_may_manage_branch(branch_id))"),
    # invitations
    (
        "invitations",
        "invitations_select",
        "SELECT",
        f"USING (app_org_role(organization_id) IN {MANAGING} OR email = app_caller_email())",
    ),
    (
        "invitations",
        "invitations_insert",
        "INSERT",
        f"WITH CHECK (app_org_role(organization_id) IN {MANAGING})",
    ),
    (
        "invitations",
        "invitations_update",
        "UPDATE",
        f"USING (app_org_role(organization_id) IN {MANAGING} OR email = app_caller_email())",
    ),
    (
        "invitations",
        "invitations_delete",
        "DELETE",
        f"USING (app_org_role(organization_id) IN {MANAGING})",
    ),
]


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # 1. Tables
    # -----------------------------------------------------------------------

    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False, unique=True),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("plan", sa.Text(), nullable=False, server_default="free"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"])

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("invited_metadata", postgresql.JSONB(), nullable=True),
        sa.Column("setup_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "organization_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.Text(), nullable=False, server_default="member"),
        sa.Column("invited_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
        sa.CheckConstraint("role IN ('owner', 'admin', 'manager', 'member')", name="ck_organization_members_role"),
    )
    op.create_index("ix_organization_members_organization_id", "organization_members", ["organization_id"])
    op.create_index("ix_organization_members_user_id", "organization_members", ["user_id"])

    op.create_table(
        "branches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("geohash", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("organization_id", "code", name="uq_branches_org_code"),
    )
    op.create_index("ix_branches_organization_id", "branches", ["organization_id"])

    op.create_table(
        "branch_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "branch_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("branches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.Text(), nullable=False, server_default="staff"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("branch_id", "user_id", name="uq_branch_members_branch_user"),
        sa.CheckConstraint("role IN ('manager', 'staff', 'viewer')", name="ck_branch_members_role"),
    )
    op.create_index("ix_branch_members_branch_id", "branch_members", ["branch_id"])
    op.create_index("ix_branch_members_user_id", "branch_members", ["user_id"])

    op.create_table(
        "invitations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "organization_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False, server_default="member"),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("invited_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('pending', 'resolved', 'cancelled')", name="ck_invitations_status"),
    )
    op.create_index("ix_invitations_organization_id", "invitations", ["organization_id"])
    op.create_index("ix_invitations_email", "invitations", ["email"])
    # At most one pending invitation per (organization, email)
    op.create_index(
        "uq_invitations_pending_org_email",
        "invitations",
        ["organization_id", "email"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # -----------------------------------------------------------------------
    # 2. Row Level Security (RLS) policies
    # -----------------------------------------------------------------------

    for ddl in HELPER_FUNCTIONS:
        op.execute(ddl)

    for table in RLS_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")

    for table, name, command, clause in POLICIES:
        op.execute(f"CREATE POLICY {name} ON {table} FOR {command} {clause}")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    for table, name, _command, _clause in reversed(POLICIES):
        op.execute(f"DROP POLICY IF EXISTS {name} ON {table}")
    for table in reversed(RLS_TABLES):
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
    for name in HELPER_NAMES:
        op.execute(f"DROP FUNCTION IF EXISTS {name}")

    op.drop_table("invitations")
    op.drop_table("branch_members")
    op.drop_table("branches")
    op.drop_table("organization_members")
    op.drop_table("users")
    op.drop_table("organizations")
