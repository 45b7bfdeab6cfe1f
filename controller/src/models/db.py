"""
Database models for the PaaStel control plane (sync version).

Mirrors the relational schema table for table. Administrative tables
(organizations, users, teams, memberships, secrets, tokens) are declared so
that the schema is complete; the orchestrator only reads ``apps`` from them.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from controller.src.models.status import (
    AppRole,
    BuildStatus,
    BuildTrigger,
    DeployStatus,
    OrgRole,
    ReleaseStatus,
    TeamRole,
)

Base = declarative_base()

# BIGSERIAL on Postgres, rowid alias on SQLite
BigId = BigInteger().with_variant(Integer, "sqlite")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value):
    """SQLite hands timestamps back without tzinfo; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def _pg_enum(enum_cls, name):
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])

build_status_enum = _pg_enum(BuildStatus, "build_status")

def _created_at():
    return Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

class Organization(Base):
    __tablename__ = "organizations"

    id = Column(BigId, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False, unique=True)
    description = Column(Text)
    created_at = _created_at()
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True))

class User(Base):
    __tablename__ = "users"

    id = Column(BigId, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = _created_at()
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)
    last_login_at = Column(DateTime(timezone=True))
    deleted_at = Column(DateTime(timezone=True))

class OrganizationMembership(Base):
    __tablename__ = "organization_memberships"
    __table_args__ = (
        Index("idx_org_memberships_user_id", "user_id"),
        Index("idx_org_memberships_org_id", "organization_id"),
    )

    organization_id = Column(BigId, ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(BigId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role = Column(_pg_enum(OrgRole, "org_role"), nullable=False, default=OrgRole.MEMBER)
    created_at = _created_at()

class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (UniqueConstraint("organization_id", "slug", name="teams_org_slug_unique"),)

    id = Column(BigId, primary_key=True, autoincrement=True)
    organization_id = Column(BigId, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False)
    description = Column(Text)
    created_at = _created_at()
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True))

class TeamMembership(Base):
    __tablename__ = "team_memberships"
    __table_args__ = (
        Index("idx_team_memberships_user_id", "user_id"),
        Index("idx_team_memberships_team_id", "team_id"),
    )

    team_id = Column(BigId, ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(BigId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role = Column(_pg_enum(TeamRole, "team_role"), nullable=False, default=TeamRole.MEMBER)
    created_at = _created_at()

class App(Base):
    __tablename__ = "apps"
    __table_args__ = (
        UniqueConstraint("organization_id", "slug", name="apps_org_slug_unique"),
        Index("idx_apps_organization_id", "organization_id"),
        Index("idx_apps_team_id", "team_id"),
        Index("idx_apps_created_by", "created_by"),
    )

    id = Column(BigId, primary_key=True, autoincrement=True)
    organization_id = Column(BigId, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(BigId, ForeignKey("teams.id", ondelete="SET NULL"))
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False)
    repo_url = Column(Text)
    created_by = Column(BigId, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = _created_at()
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True))

class AppMembership(Base):
    __tablename__ = "app_memberships"
    __table_args__ = (
        Index("idx_app_memberships_user_id", "user_id"),
        Index("idx_app_memberships_app_id", "app_id"),
    )

    app_id = Column(BigId, ForeignKey("apps.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(BigId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role = Column(_pg_enum(AppRole, "app_role"), nullable=False, default=AppRole.VIEWER)
    created_at = _created_at()

class AppSecret(Base):
    __tablename__ = "app_secrets"
    __table_args__ = (
        UniqueConstraint("app_id", "environment", "key", name="app_secrets_unique_key_per_env"),
        Index("idx_app_secrets_app_id", "app_id"),
        Index("idx_app_secrets_app_env", "app_id", "environment"),
    )

    id = Column(BigId, primary_key=True, autoincrement=True)
    app_id = Column(BigId, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    environment = Column(Text, nullable=False, default="default", server_default="default")
    key = Column(Text, nullable=False)
    value = Column(Text, nullable=False)
    created_by = Column(BigId, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = _created_at()
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

class AuthToken(Base):
    __tablename__ = "auth_tokens"
    __table_args__ = (Index("idx_auth_tokens_user_id", "user_id"),)

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(BigId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(Text, nullable=False, unique=True)
    description = Column(Text)
    created_at = _created_at()
    last_used_at = Column(DateTime(timezone=True))
    revoked_at = Column(DateTime(timezone=True))

class Release(Base):
    __tablename__ = "releases"
    __table_args__ = (
        UniqueConstraint("app_id", "version", name="releases_app_version_unique"),
        Index("idx_releases_app_id", "app_id"),
        Index("idx_releases_status", "status"),
    )

    id = Column(BigId, primary_key=True, autoincrement=True)
    app_id = Column(BigId, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    version = Column(Text, nullable=False)
    commit_sha = Column(Text)
    branch = Column(Text)
    tag = Column(Text)
    image_ref = Column(Text)
    status = Column(_pg_enum(ReleaseStatus, "release_status"), nullable=False, default=ReleaseStatus.PENDING)
    created_by = Column(BigId, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = _created_at()
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)
    changelog = Column(Text)

class Deploy(Base):
    __tablename__ = "deploys"
    __table_args__ = (
        Index("idx_deploys_app_env", "app_id", "environment"),
        Index("idx_deploys_release_id", "release_id"),
        Index("idx_deploys_status_created_at", "status", "created_at"),
    )

    id = Column(BigId, primary_key=True, autoincrement=True)
    app_id = Column(BigId, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    release_id = Column(BigId, ForeignKey("releases.id", ondelete="RESTRICT"), nullable=False)
    environment = Column(Text, nullable=False)
    status = Column(_pg_enum(DeployStatus, "deploy_status"), nullable=False, default=DeployStatus.PENDING)
    triggered_by = Column(BigId, ForeignKey("users.id", ondelete="SET NULL"))
    target_cluster = Column(Text)
    target_region = Column(Text)
    created_at = _created_at()
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    pipeline_url = Column(Text)
    logs_url = Column(Text)
    error_message = Column(Text)

class BuildJob(Base):
    __tablename__ = "build_jobs"
    __table_args__ = (
        Index("idx_build_jobs_app_id", "app_id"),
        Index("idx_build_jobs_status_created_at", "status", "created_at"),
        Index("idx_build_jobs_release_id", "release_id"),
    )

    id = Column(BigId, primary_key=True, autoincrement=True)
    app_id = Column(BigId, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False)
    release_id = Column(BigId, ForeignKey("releases.id", ondelete="SET NULL"))
    status = Column(build_status_enum, nullable=False, default=BuildStatus.PENDING)
    trigger = Column(_pg_enum(BuildTrigger, "build_trigger"), nullable=False, default=BuildTrigger.MANUAL)
    triggered_by = Column(BigId, ForeignKey("users.id", ondelete="SET NULL"))
    commit_sha = Column(Text)
    branch = Column(Text)
    tag = Column(Text)
    image_ref = Column(Text)
    runner_name = Column(Text)
    runner_type = Column(Text)
    created_at = _created_at()
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    logs_url = Column(Text)
    pipeline_url = Column(Text)
    error_message = Column(Text)

    steps = relationship("BuildStep", order_by="BuildStep.position", back_populates="build")

class BuildStep(Base):
    __tablename__ = "build_steps"
    __table_args__ = (
        CheckConstraint("position > 0", name="build_steps_position_positive"),
        Index("idx_build_steps_build_id", "build_id"),
        Index("idx_build_steps_build_id_position", "build_id", "position"),
    )

    id = Column(BigId, primary_key=True, autoincrement=True)
    build_id = Column(BigId, ForeignKey("build_jobs.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    name = Column(Text, nullable=False)
    status = Column(build_status_enum, nullable=False, default=BuildStatus.PENDING)
    created_at = _created_at()
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    logs_url = Column(Text)
    error_message = Column(Text)

    build = relationship("BuildJob", back_populates="steps")

class BuildLog(Base):
    __tablename__ = "build_logs"
    __table_args__ = (
        UniqueConstraint("build_id", "step_id", "chunk_index", name="build_logs_chunk_unique"),
        Index("idx_build_logs_build_id", "build_id"),
        Index("idx_build_logs_step_id", "step_id"),
    )

    id = Column(BigId, primary_key=True, autoincrement=True)
    build_id = Column(BigId, ForeignKey("build_jobs.id", ondelete="CASCADE"), nullable=False)
    step_id = Column(BigId, ForeignKey("build_steps.id", ondelete="CASCADE"))
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    created_at = _created_at()
