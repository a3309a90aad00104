"""init access control tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "roles",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("full_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("default_dashboards", sa.JSON(), nullable=False),
        sa.Column("dashboard_permissions", sa.JSON(), nullable=False),
        sa.Column("page_permissions", sa.JSON(), nullable=False),
        sa.Column("feature_permissions", sa.JSON(), nullable=False),
        sa.Column("crud_permissions", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_roles_name", "roles", ["name"], unique=True)
    op.create_index("ix_roles_created_at", "roles", ["created_at"])
    op.create_index("ix_roles_updated_at", "roles", ["updated_at"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("primary_role_id", sa.String(), nullable=True),
        sa.Column("additional_role_ids", sa.JSON(), nullable=False),
        sa.Column("extra_permissions", sa.JSON(), nullable=False),
        sa.Column("department_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_primary_role_id", "users", ["primary_role_id"])
    op.create_index("ix_users_department_id", "users", ["department_id"])
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "policies",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_policies_name", "policies", ["name"])
    op.create_index("ix_policies_is_active", "policies", ["is_active"])
    op.create_index("ix_policies_created_by", "policies", ["created_by"])
    op.create_index("ix_policies_created_at", "policies", ["created_at"])
    op.create_index("ix_policies_updated_at", "policies", ["updated_at"])

    op.create_table(
        "policy_versions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("policy_id", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("content", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["policy_id"], ["policies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("policy_id", "version", name="uq_policy_versions_policy_version"),
    )
    op.create_index("ix_policy_versions_policy_id", "policy_versions", ["policy_id"])
    op.create_index("ix_policy_versions_created_at", "policy_versions", ["created_at"])

    op.create_table(
        "policy_permissions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("policy_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("can_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_write", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_delete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("granted_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "(user_id IS NULL AND role IS NOT NULL) OR (user_id IS NOT NULL AND role IS NULL)",
            name="ck_policy_permissions_user_or_role",
        ),
        sa.ForeignKeyConstraint(["policy_id"], ["policies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("policy_id", "user_id", name="uq_policy_permissions_policy_user"),
        sa.UniqueConstraint("policy_id", "role", name="uq_policy_permissions_policy_role"),
    )
    op.create_index("ix_policy_permissions_policy_id", "policy_permissions", ["policy_id"])
    op.create_index("ix_policy_permissions_user_id", "policy_permissions", ["user_id"])
    op.create_index("ix_policy_permissions_role", "policy_permissions", ["role"])
    op.create_index("ix_policy_permissions_created_at", "policy_permissions", ["created_at"])
    op.create_index("ix_policy_permissions_updated_at", "policy_permissions", ["updated_at"])

    op.create_table(
        "policy_dashboard_permissions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("can_view_policies", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_create_policies", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_edit_policies", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_delete_policies", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_manage_permissions", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_view_analytics", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("granted_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "(user_id IS NULL AND role IS NOT NULL) OR (user_id IS NOT NULL AND role IS NULL)",
            name="ck_policy_dashboard_permissions_user_or_role",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_policy_dashboard_permissions_user_id", "policy_dashboard_permissions", ["user_id"], unique=True)
    op.create_index("ix_policy_dashboard_permissions_role", "policy_dashboard_permissions", ["role"], unique=True)
    op.create_index("ix_policy_dashboard_permissions_is_active", "policy_dashboard_permissions", ["is_active"])
    op.create_index("ix_policy_dashboard_permissions_created_at", "policy_dashboard_permissions", ["created_at"])
    op.create_index("ix_policy_dashboard_permissions_updated_at", "policy_dashboard_permissions", ["updated_at"])


def downgrade() -> None:
    op.drop_table("policy_dashboard_permissions")
    op.drop_table("policy_permissions")
    op.drop_table("policy_versions")
    op.drop_table("policies")
    op.drop_table("users")
    op.drop_table("roles")
    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
