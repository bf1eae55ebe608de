"""build pipeline

Revision ID: 0001_build_pipeline
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_build_pipeline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "owners",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("project_type", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "themes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("theme_json", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "currencies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("symbol", sa.String(), nullable=True),
    )

    op.create_table(
        "app_links",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        # Avoid index=True here because we create explicit indexes below.
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("owners.id"), nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("app_name", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="ACTIVE"),
        sa.Column("license_id", sa.String(), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("theme_id", sa.Integer(), sa.ForeignKey("themes.id"), nullable=True),
        sa.Column("currency_id", sa.Integer(), sa.ForeignKey("currencies.id"), nullable=True),
        sa.Column("logo_url", sa.String(), nullable=True),
        sa.Column("android_package_name", sa.String(), nullable=True),
        sa.Column("android_version_code", sa.Integer(), nullable=True),
        sa.Column("android_version_name", sa.String(), nullable=True),
        sa.Column("ios_bundle_id", sa.String(), nullable=True),
        sa.Column("ios_build_number", sa.Integer(), nullable=True),
        sa.Column("ios_version_name", sa.String(), nullable=True),
        sa.Column("apk_url", sa.String(), nullable=True),
        sa.Column("bundle_url", sa.String(), nullable=True),
        sa.Column("ipa_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("owner_id", "project_id", "slug", name="uq_app_links_owner_project_slug"),
    )
    op.create_index("ix_app_links_owner_id", "app_links", ["owner_id"])
    op.create_index("ix_app_links_project_id", "app_links", ["project_id"])
    op.create_index("ix_app_links_owner_status", "app_links", ["owner_id", "status"])

    op.create_table(
        "app_runtime_configs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("app_link_id", sa.Integer(), sa.ForeignKey("app_links.id"), nullable=False),
        sa.Column("nav_json", sa.Text(), nullable=True),
        sa.Column("home_json", sa.Text(), nullable=True),
        sa.Column("enabled_features_json", sa.Text(), nullable=True),
        sa.Column("branding_json", sa.Text(), nullable=True),
        sa.Column("api_base_url_override", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # One runtime config per app link.
    op.create_index(
        "ix_app_runtime_configs_app_link_id", "app_runtime_configs", ["app_link_id"], unique=True
    )

    op.create_table(
        "app_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("owners.id"), nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("app_name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("logo_url", sa.String(), nullable=True),
        sa.Column("theme_id", sa.Integer(), sa.ForeignKey("themes.id"), nullable=True),
        sa.Column("currency_id", sa.Integer(), sa.ForeignKey("currencies.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="PENDING"),
        sa.Column("app_link_id", sa.Integer(), sa.ForeignKey("app_links.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_app_requests_owner_id", "app_requests", ["owner_id"])
    op.create_index("ix_app_requests_status", "app_requests", ["status"])

    op.create_table(
        "build_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("app_link_id", sa.Integer(), sa.ForeignKey("app_links.id"), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="QUEUED"),
        sa.Column("ci_build_id", sa.String(), nullable=True),
        sa.Column("version_code", sa.Integer(), nullable=True),
        sa.Column("version_name", sa.String(), nullable=True),
        sa.Column("apk_url", sa.String(), nullable=True),
        sa.Column("bundle_url", sa.String(), nullable=True),
        sa.Column("ipa_url", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        # Callbacks address jobs by this id; it must resolve to at most one row.
        sa.UniqueConstraint("ci_build_id", name="uq_build_jobs_ci_build_id"),
    )
    op.create_index("ix_build_jobs_app_link_id", "build_jobs", ["app_link_id"])
    op.create_index(
        "ix_build_jobs_link_platform_created",
        "build_jobs",
        ["app_link_id", "platform", "created_at"],
    )
    # Partial index keeps the stuck-job sweep cheap as terminal history grows.
    op.create_index(
        "ix_build_jobs_active_created",
        "build_jobs",
        ["created_at"],
        postgresql_where=sa.text("status IN ('QUEUED', 'RUNNING')"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=True),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("actor_role", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
    op.create_index("ix_audit_events_owner_id", "audit_events", ["owner_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_request_id", "audit_events", ["request_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_request_id", table_name="audit_events")
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_owner_id", table_name="audit_events")
    op.drop_index("ix_audit_events_occurred_at", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_build_jobs_active_created", table_name="build_jobs")
    op.drop_index("ix_build_jobs_link_platform_created", table_name="build_jobs")
    op.drop_index("ix_build_jobs_app_link_id", table_name="build_jobs")
    op.drop_table("build_jobs")
    op.drop_index("ix_app_requests_status", table_name="app_requests")
    op.drop_index("ix_app_requests_owner_id", table_name="app_requests")
    op.drop_table("app_requests")
    op.drop_index("ix_app_runtime_configs_app_link_id", table_name="app_runtime_configs")
    op.drop_table("app_runtime_configs")
    op.drop_index("ix_app_links_owner_status", table_name="app_links")
    op.drop_index("ix_app_links_project_id", table_name="app_links")
    op.drop_index("ix_app_links_owner_id", table_name="app_links")
    op.drop_table("app_links")
    op.drop_table("currencies")
    op.drop_table("themes")
    op.drop_table("projects")
    op.drop_table("owners")
