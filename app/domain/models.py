from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, CheckConstraint, Column, ForeignKeyConstraint, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.domain.permissions import Operation, PermissionSource


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Role(SQLModel, table=True):
    __tablename__ = "roles"

    id: str = Field(primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    full_access: bool = Field(default=False)
    default_dashboards: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    dashboard_permissions: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    page_permissions: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    feature_permissions: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    crud_permissions: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    is_active: bool = Field(default=True)
    primary_role_id: str | None = Field(default=None, index=True)
    additional_role_ids: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    extra_permissions: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    department_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Policy(SQLModel, table=True):
    __tablename__ = "policies"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    content: str = ""
    is_active: bool = Field(default=True, index=True)
    version: int = Field(default=1)
    created_by: str | None = Field(default=None, index=True)
    updated_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class PolicyVersion(SQLModel, table=True):
    __tablename__ = "policy_versions"
    __table_args__ = (
        UniqueConstraint("policy_id", "version", name="uq_policy_versions_policy_version"),
        ForeignKeyConstraint(["policy_id"], ["policies.id"], ondelete="CASCADE"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    policy_id: str = Field(index=True)
    version: int
    name: str
    content: str = ""
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class PolicyPermission(SQLModel, table=True):
    __tablename__ = "policy_permissions"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL AND role IS NOT NULL) OR (user_id IS NOT NULL AND role IS NULL)",
            name="ck_policy_permissions_user_or_role",
        ),
        UniqueConstraint("policy_id", "user_id", name="uq_policy_permissions_policy_user"),
        UniqueConstraint("policy_id", "role", name="uq_policy_permissions_policy_role"),
        ForeignKeyConstraint(["policy_id"], ["policies.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    policy_id: str = Field(index=True)
    user_id: str | None = Field(default=None, index=True)
    role: str | None = Field(default=None, index=True)
    can_read: bool = False
    can_write: bool = False
    can_delete: bool = False
    granted_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class PolicyDashboardPermission(SQLModel, table=True):
    __tablename__ = "policy_dashboard_permissions"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL AND role IS NOT NULL) OR (user_id IS NOT NULL AND role IS NULL)",
            name="ck_policy_dashboard_permissions_user_or_role",
        ),
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str | None = Field(default=None, index=True, unique=True)
    role: str | None = Field(default=None, index=True, unique=True)
    can_view_policies: bool = True
    can_create_policies: bool = False
    can_edit_policies: bool = False
    can_delete_policies: bool = False
    can_manage_permissions: bool = False
    can_view_analytics: bool = False
    is_active: bool = Field(default=True, index=True)
    granted_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class QuadPayload(BaseModel):
    read: bool = False
    write: bool = False
    view: bool = False
    delete: bool = False


class RoleCreate(BaseModel):
    id: str = PydanticField(min_length=1, max_length=100)
    name: str
    description: str | None = None
    full_access: bool = False
    default_dashboards: list[str] = PydanticField(default_factory=list)
    dashboard_permissions: dict[str, QuadPayload] = PydanticField(default_factory=dict)
    page_permissions: dict[str, dict[str, QuadPayload]] = PydanticField(default_factory=dict)
    feature_permissions: dict[str, dict[str, bool]] = PydanticField(default_factory=dict)
    crud_permissions: dict[str, dict[str, bool]] = PydanticField(default_factory=dict)


class RoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    full_access: bool | None = None
    default_dashboards: list[str] | None = None
    dashboard_permissions: dict[str, QuadPayload] | None = None
    page_permissions: dict[str, dict[str, QuadPayload]] | None = None
    feature_permissions: dict[str, dict[str, bool]] | None = None
    crud_permissions: dict[str, dict[str, bool]] | None = None


class RoleRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    full_access: bool
    default_dashboards: list[str]
    dashboard_permissions: dict[str, Any]
    page_permissions: dict[str, Any]
    feature_permissions: dict[str, Any]
    crud_permissions: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class UserCreate(BaseModel):
    username: str
    password: str
    is_active: bool = True
    primary_role_id: str | None = None
    additional_role_ids: list[str] = PydanticField(default_factory=list)
    department_id: str | None = None


class UserUpdate(BaseModel):
    password: str | None = None
    is_active: bool | None = None
    department_id: str | None = None


class UserRolesUpdate(BaseModel):
    primary_role_id: str
    additional_role_ids: list[str] = PydanticField(default_factory=list)


class UserRead(ORMReadModel):
    id: str
    username: str
    is_active: bool
    primary_role_id: str | None = None
    additional_role_ids: list[str]
    department_id: str | None = None
    created_at: datetime


class OverridesPayload(BaseModel):
    dashboards: dict[str, bool] = PydanticField(default_factory=dict)
    pages: dict[str, dict[str, bool]] = PydanticField(default_factory=dict)
    department_dashboards: dict[str, bool] = PydanticField(default_factory=dict)
    department_pages: dict[str, dict[str, bool]] = PydanticField(default_factory=dict)
    features: dict[str, dict[str, bool]] = PydanticField(default_factory=dict)
    crud: dict[str, dict[str, bool]] = PydanticField(default_factory=dict)
    department_crud: dict[str, dict[str, bool]] = PydanticField(default_factory=dict)


class OverrideValueRequest(BaseModel):
    value: bool | None = None


class DevLoginRequest(BaseModel):
    username: str
    password: str


class BootstrapAdminRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AccessQueryRequest(BaseModel):
    dashboard_id: str
    page_id: str | None = None
    feature_key: str | None = None
    action_key: str | None = None
    crud_resource: str | None = None
    operation: Operation | None = None
    department_id: str | None = None


class AccessDecisionRead(BaseModel):
    allowed: bool
    query: AccessQueryRequest


class NavigationDecisionRead(BaseModel):
    path: str
    allowed: bool
    dashboard_id: str | None = None
    page_id: str | None = None


class PageRead(BaseModel):
    id: str
    name: str
    path: str


class NavigationItemRead(BaseModel):
    dashboard_id: str
    name: str
    slug: str
    pages: list[PageRead]


class PolicyCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    content: str = ""
    is_active: bool = True


class PolicyUpdate(BaseModel):
    name: str | None = None
    content: str | None = None
    is_active: bool | None = None


class PolicyRead(ORMReadModel):
    id: str
    name: str
    content: str
    is_active: bool
    version: int
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime
    updated_at: datetime


class PolicyVersionRead(ORMReadModel):
    id: str
    policy_id: str
    version: int
    name: str
    content: str
    created_by: str | None = None
    created_at: datetime


class PolicyPermissionWrite(BaseModel):
    user_id: str | None = None
    role: str | None = None
    can_read: bool | None = None
    can_write: bool | None = None
    can_delete: bool | None = None


class PolicyPermissionRead(ORMReadModel):
    id: str
    policy_id: str
    user_id: str | None = None
    role: str | None = None
    can_read: bool
    can_write: bool
    can_delete: bool
    granted_by: str | None = None
    created_at: datetime
    updated_at: datetime


class EffectivePermissionRead(BaseModel):
    policy_id: str
    user_id: str
    can_read: bool
    can_write: bool
    can_delete: bool
    source: PermissionSource


class PolicyDashboardPermissionWrite(BaseModel):
    user_id: str | None = None
    role: str | None = None
    can_view_policies: bool | None = None
    can_create_policies: bool | None = None
    can_edit_policies: bool | None = None
    can_delete_policies: bool | None = None
    can_manage_permissions: bool | None = None
    can_view_analytics: bool | None = None
    is_active: bool | None = None


class PolicyDashboardPermissionRead(ORMReadModel):
    id: str
    user_id: str | None = None
    role: str | None = None
    can_view_policies: bool
    can_create_policies: bool
    can_edit_policies: bool
    can_delete_policies: bool
    can_manage_permissions: bool
    can_view_analytics: bool
    is_active: bool
    updated_at: datetime


class PolicyDashboardAccessRead(BaseModel):
    can_view_policies: bool
    can_create_policies: bool
    can_edit_policies: bool
    can_delete_policies: bool
    can_manage_permissions: bool
    can_view_analytics: bool
    source: PermissionSource
