from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    # Stamp rows in Python so ordering keeps sub-second precision on every backend.
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Owner(Base):
    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)
    # Identity hints forwarded to iOS signing steps on the CI side.
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String)
    # Sent to CI as APP_TYPE so the workflow can pick the right template.
    project_type: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Theme(Base):
    __tablename__ = "themes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String)
    theme_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    # At most one theme is flagged active; it backs links without an explicit theme.
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Currency(Base):
    __tablename__ = "currencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String)
    symbol: Mapped[str | None] = mapped_column(String, nullable=True)


class AppLink(Base):
    __tablename__ = "app_links"
    __table_args__ = (
        UniqueConstraint("owner_id", "project_id", "slug", name="uq_app_links_owner_project_slug"),
        Index("ix_app_links_owner_status", "owner_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.id"), index=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id"), index=True)
    slug: Mapped[str] = mapped_column(String)
    app_name: Mapped[str | None] = mapped_column(String, nullable=True)
    # Soft lifecycle owned upstream: ACTIVE | DELETED | EXPIRED.
    status: Mapped[str] = mapped_column(String, default="ACTIVE", nullable=False)
    license_id: Mapped[str | None] = mapped_column(String, nullable=True)
    valid_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    theme_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("themes.id"), nullable=True)
    currency_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("currencies.id"), nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String, nullable=True)
    android_package_name: Mapped[str | None] = mapped_column(String, nullable=True)
    # Version counters only ever move forward; updates use column arithmetic.
    android_version_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    android_version_name: Mapped[str | None] = mapped_column(String, nullable=True)
    ios_bundle_id: Mapped[str | None] = mapped_column(String, nullable=True)
    ios_build_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ios_version_name: Mapped[str | None] = mapped_column(String, nullable=True)
    # Denormalized latest artifacts, written by callbacks and manifest pulls.
    apk_url: Mapped[str | None] = mapped_column(String, nullable=True)
    bundle_url: Mapped[str | None] = mapped_column(String, nullable=True)
    ipa_url: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class AppRuntimeConfig(Base):
    __tablename__ = "app_runtime_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    app_link_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("app_links.id"), unique=True, index=True
    )
    nav_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    home_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    enabled_features_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    branding_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    api_base_url_override: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class AppRequest(Base):
    __tablename__ = "app_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.id"), index=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id"))
    app_name: Mapped[str] = mapped_column(String)
    slug: Mapped[str] = mapped_column(String)
    logo_url: Mapped[str | None] = mapped_column(String, nullable=True)
    theme_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("themes.id"), nullable=True)
    currency_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("currencies.id"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # PENDING until a super admin (or the auto flow) decides.
    status: Mapped[str] = mapped_column(String, default="PENDING", nullable=False, index=True)
    app_link_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("app_links.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class BuildJob(Base):
    __tablename__ = "build_jobs"
    __table_args__ = (
        Index("ix_build_jobs_link_platform_created", "app_link_id", "platform", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    app_link_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_links.id"), index=True)
    platform: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="QUEUED", nullable=False)
    # Secondary lookup key: CI only ever reports back with the id it was dispatched with.
    ci_build_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    version_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version_name: Mapped[str | None] = mapped_column(String, nullable=True)
    apk_url: Mapped[str | None] = mapped_column(String, nullable=True)
    bundle_url: Mapped[str | None] = mapped_column(String, nullable=True)
    ipa_url: Mapped[str | None] = mapped_column(String, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    # Null owner_id covers machine callers and pre-auth failures.
    owner_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    actor_type: Mapped[str] = mapped_column(String)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String, nullable=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    outcome: Mapped[str] = mapped_column(String)
    resource_type: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), default=dict
    )
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
