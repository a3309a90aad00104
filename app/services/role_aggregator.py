from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from app.domain.catalog import RoleCatalog, RoleDefinition
from app.domain.permissions import PermissionQuad, UserContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregatedView:
    role_ids: tuple[str, ...] = ()
    dashboards: frozenset[str] = frozenset()
    dashboard_permissions: dict[str, PermissionQuad] = field(default_factory=dict)
    page_permissions: dict[str, dict[str, PermissionQuad]] = field(default_factory=dict)
    feature_permissions: dict[str, dict[str, bool]] = field(default_factory=dict)
    crud_permissions: dict[str, dict[str, bool]] = field(default_factory=dict)
    full_access: bool = False

    def dashboard_quad(self, dashboard_id: str) -> PermissionQuad | None:
        return self.dashboard_permissions.get(dashboard_id)

    def page_quad(self, dashboard_id: str, page_id: str) -> PermissionQuad | None:
        return self.page_permissions.get(dashboard_id, {}).get(page_id)

    def feature(self, feature_key: str, action_key: str) -> bool | None:
        return self.feature_permissions.get(feature_key, {}).get(action_key)

    def crud_action(self, resource: str, action_key: str) -> bool | None:
        return self.crud_permissions.get(resource, {}).get(action_key)

    def as_dict(self) -> dict[str, Any]:
        return {
            "role_ids": list(self.role_ids),
            "dashboards": sorted(self.dashboards),
            "dashboard_permissions": {
                key: quad.as_dict() for key, quad in sorted(self.dashboard_permissions.items())
            },
            "page_permissions": {
                dashboard_id: {page_id: quad.as_dict() for page_id, quad in sorted(pages.items())}
                for dashboard_id, pages in sorted(self.page_permissions.items())
            },
            "feature_permissions": {key: dict(value) for key, value in sorted(self.feature_permissions.items())},
            "crud_permissions": {key: dict(value) for key, value in sorted(self.crud_permissions.items())},
            "full_access": self.full_access,
        }


EMPTY_VIEW = AggregatedView()


def _merge_actions(target: dict[str, dict[str, bool]], source: dict[str, dict[str, bool]]) -> None:
    for key, actions in source.items():
        merged = target.setdefault(key, {})
        for action_key, allowed in actions.items():
            merged[action_key] = merged.get(action_key, False) or allowed


def aggregate(
    primary_role: RoleDefinition | None,
    additional_roles: Iterable[RoleDefinition | None] = (),
) -> AggregatedView:
    """Union every capability held by the primary and additional roles.

    Each boolean is OR-ed across roles, so the result does not depend on the
    order of ``additional_roles``. ``None`` entries stand for unresolved role
    ids and contribute nothing. A missing primary role yields an empty view.
    """
    if primary_role is None:
        return EMPTY_VIEW

    roles: dict[str, RoleDefinition] = {primary_role.id: primary_role}
    for role in additional_roles:
        if role is not None:
            roles.setdefault(role.id, role)

    dashboards: set[str] = set()
    dashboard_permissions: dict[str, PermissionQuad] = {}
    page_permissions: dict[str, dict[str, PermissionQuad]] = {}
    feature_permissions: dict[str, dict[str, bool]] = {}
    crud_permissions: dict[str, dict[str, bool]] = {}
    full_access = False

    for role_id in sorted(roles):
        role = roles[role_id]
        dashboards.update(role.default_dashboards)
        full_access = full_access or role.full_access
        for dashboard_id, quad in role.dashboard_permissions.items():
            dashboard_permissions[dashboard_id] = dashboard_permissions.get(dashboard_id, PermissionQuad()) | quad
        for dashboard_id, pages in role.page_permissions.items():
            merged_pages = page_permissions.setdefault(dashboard_id, {})
            for page_id, quad in pages.items():
                merged_pages[page_id] = merged_pages.get(page_id, PermissionQuad()) | quad
        _merge_actions(feature_permissions, role.feature_permissions)
        _merge_actions(crud_permissions, role.crud_permissions)

    return AggregatedView(
        role_ids=tuple(sorted(roles)),
        dashboards=frozenset(dashboards),
        dashboard_permissions=dashboard_permissions,
        page_permissions=page_permissions,
        feature_permissions=feature_permissions,
        crud_permissions=crud_permissions,
        full_access=full_access,
    )


def aggregate_for_user(catalog: RoleCatalog, user: UserContext) -> AggregatedView:
    primary = catalog.get(user.primary_role_id)
    if primary is None:
        logger.warning(
            "user %s references unknown primary role %r; no role-derived access",
            user.id,
            user.primary_role_id,
        )
        return EMPTY_VIEW

    additional: list[RoleDefinition | None] = []
    for role_id in user.additional_role_ids:
        role = catalog.get(role_id)
        if role is None:
            logger.warning("user %s references unknown additional role %r; skipped", user.id, role_id)
        additional.append(role)
    return aggregate(primary, additional)
