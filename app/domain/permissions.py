from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

CRUD_CREATE = "create"
CRUD_READ = "read"
CRUD_UPDATE = "update"
CRUD_DELETE = "delete"

CRUD_ACTIONS = (CRUD_CREATE, CRUD_READ, CRUD_UPDATE, CRUD_DELETE)

CRUD_RESOURCE_ROLES = "roles"
CRUD_RESOURCE_USERS = "users"

FEATURE_ASSET_MANAGEMENT = "asset_management"
FEATURE_LEAVE_APPROVAL = "leave_approval"
FEATURE_PERFORMANCE_REVIEWS = "performance_reviews"
FEATURE_BILLING_MANAGEMENT = "billing_management"
FEATURE_EXPORT_DATA = "export_data"
FEATURE_BULK_OPERATIONS = "bulk_operations"


class Operation(StrEnum):
    VIEW = "view"
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class PermissionSource(StrEnum):
    INDIVIDUAL = "individual"
    ROLE = "role"
    NONE = "none"


def coerce_bool(value: Any) -> bool | None:
    """Return a boolean for explicit decisions and None for anything else.

    Stored JSON occasionally carries "true"/"false" strings; those count as
    explicit decisions. Every other shape is treated as absent.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def _bool_map(raw: Any) -> dict[str, bool]:
    if not isinstance(raw, Mapping):
        return {}
    result: dict[str, bool] = {}
    for key, value in raw.items():
        decision = coerce_bool(value)
        if isinstance(key, str) and decision is not None:
            result[key] = decision
    return result


def _nested_bool_map(raw: Any) -> dict[str, dict[str, bool]]:
    if not isinstance(raw, Mapping):
        return {}
    result: dict[str, dict[str, bool]] = {}
    for key, value in raw.items():
        inner = _bool_map(value)
        if isinstance(key, str) and inner:
            result[key] = inner
    return result


@dataclass(frozen=True)
class PermissionQuad:
    read: bool = False
    write: bool = False
    view: bool = False
    delete: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> PermissionQuad:
        if isinstance(raw, PermissionQuad):
            return raw
        if not isinstance(raw, Mapping):
            return cls()
        return cls(
            read=coerce_bool(raw.get("read")) is True,
            write=coerce_bool(raw.get("write")) is True,
            view=coerce_bool(raw.get("view")) is True,
            delete=coerce_bool(raw.get("delete")) is True,
        )

    def __or__(self, other: PermissionQuad) -> PermissionQuad:
        return PermissionQuad(
            read=self.read or other.read,
            write=self.write or other.write,
            view=self.view or other.view,
            delete=self.delete or other.delete,
        )

    def grants_access(self) -> bool:
        return self.view or self.read

    def allows(self, operation: Operation | None) -> bool:
        if operation is None:
            return self.grants_access()
        return bool(getattr(self, operation.value))

    def as_dict(self) -> dict[str, bool]:
        return {"read": self.read, "write": self.write, "view": self.view, "delete": self.delete}


def parse_quad_map(raw: Any) -> dict[str, PermissionQuad]:
    if not isinstance(raw, Mapping):
        return {}
    return {key: PermissionQuad.from_raw(value) for key, value in raw.items() if isinstance(key, str)}


def parse_nested_quad_map(raw: Any) -> dict[str, dict[str, PermissionQuad]]:
    if not isinstance(raw, Mapping):
        return {}
    result: dict[str, dict[str, PermissionQuad]] = {}
    for key, value in raw.items():
        if isinstance(key, str):
            result[key] = parse_quad_map(value)
    return result


def parse_action_map(raw: Any) -> dict[str, dict[str, bool]]:
    return _nested_bool_map(raw)


@dataclass(frozen=True)
class Overrides:
    """Per-user explicit decisions.

    A key that is present is an explicit allow or deny; a missing key defers
    to the role-derived value. Lookups return None for "not mentioned".
    """

    dashboards: dict[str, bool] = field(default_factory=dict)
    pages: dict[str, dict[str, bool]] = field(default_factory=dict)
    department_dashboards: dict[str, bool] = field(default_factory=dict)
    department_pages: dict[str, dict[str, bool]] = field(default_factory=dict)
    features: dict[str, dict[str, bool]] = field(default_factory=dict)
    crud: dict[str, dict[str, bool]] = field(default_factory=dict)
    department_crud: dict[str, dict[str, bool]] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> Overrides:
        if isinstance(raw, Overrides):
            return raw
        if not isinstance(raw, Mapping):
            if raw is not None:
                logger.debug("ignoring malformed override blob of type %s", type(raw).__name__)
            return cls()
        return cls(
            dashboards=_bool_map(raw.get("dashboards")),
            pages=_nested_bool_map(raw.get("pages")),
            department_dashboards=_bool_map(raw.get("department_dashboards")),
            department_pages=_nested_bool_map(raw.get("department_pages")),
            features=_nested_bool_map(raw.get("features")),
            crud=_nested_bool_map(raw.get("crud")),
            department_crud=_nested_bool_map(raw.get("department_crud")),
        )

    def dashboard(self, dashboard_id: str, *, department: bool = False) -> bool | None:
        source = self.department_dashboards if department else self.dashboards
        return source.get(dashboard_id)

    def page(self, dashboard_id: str, page_id: str, *, department: bool = False) -> bool | None:
        source = self.department_pages if department else self.pages
        return source.get(dashboard_id, {}).get(page_id)

    def feature(self, feature_key: str, action_key: str) -> bool | None:
        return self.features.get(feature_key, {}).get(action_key)

    def crud_action(self, resource: str, action_key: str, *, department: bool = False) -> bool | None:
        source = self.department_crud if department else self.crud
        return source.get(resource, {}).get(action_key)

    def is_empty(self) -> bool:
        return not any(
            (
                self.dashboards,
                self.pages,
                self.department_dashboards,
                self.department_pages,
                self.features,
                self.crud,
                self.department_crud,
            )
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "dashboards": dict(self.dashboards),
            "pages": {key: dict(value) for key, value in self.pages.items()},
            "department_dashboards": dict(self.department_dashboards),
            "department_pages": {key: dict(value) for key, value in self.department_pages.items()},
            "features": {key: dict(value) for key, value in self.features.items()},
            "crud": {key: dict(value) for key, value in self.crud.items()},
            "department_crud": {key: dict(value) for key, value in self.department_crud.items()},
        }


@dataclass(frozen=True)
class UserContext:
    id: str
    primary_role_id: str | None = None
    additional_role_ids: tuple[str, ...] = ()
    overrides: Overrides = field(default_factory=Overrides)
    department_id: str | None = None

    @classmethod
    def from_user(cls, user: Any) -> UserContext:
        raw_additional = getattr(user, "additional_role_ids", None)
        additional: tuple[str, ...] = ()
        if isinstance(raw_additional, list | tuple):
            additional = tuple(item for item in raw_additional if isinstance(item, str) and item)
        primary = getattr(user, "primary_role_id", None)
        department = getattr(user, "department_id", None)
        return cls(
            id=str(getattr(user, "id", "")),
            primary_role_id=primary if isinstance(primary, str) and primary else None,
            additional_role_ids=additional,
            overrides=Overrides.from_raw(getattr(user, "extra_permissions", None)),
            department_id=department if isinstance(department, str) and department else None,
        )


@dataclass(frozen=True)
class AccessQuery:
    dashboard_id: str
    page_id: str | None = None
    feature_key: str | None = None
    action_key: str | None = None
    crud_resource: str | None = None
    operation: Operation | None = None
    department_id: str | None = None


@dataclass(frozen=True)
class EffectivePermission:
    can_read: bool = False
    can_write: bool = False
    can_delete: bool = False
    source: PermissionSource = PermissionSource.NONE

    def as_dict(self) -> dict[str, Any]:
        return {
            "can_read": self.can_read,
            "can_write": self.can_write,
            "can_delete": self.can_delete,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class GrantUpdate:
    can_read: bool | None = None
    can_write: bool | None = None
    can_delete: bool | None = None


@dataclass(frozen=True)
class PolicyDashboardAccess:
    can_view_policies: bool = False
    can_create_policies: bool = False
    can_edit_policies: bool = False
    can_delete_policies: bool = False
    can_manage_permissions: bool = False
    can_view_analytics: bool = False
    source: PermissionSource = PermissionSource.NONE
