from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from app.domain.permissions import (
    EffectivePermission,
    GrantUpdate,
    PermissionSource,
    PolicyDashboardAccess,
    UserContext,
)

logger = logging.getLogger(__name__)

DASHBOARD_GRANT_FIELDS = (
    "can_view_policies",
    "can_create_policies",
    "can_edit_policies",
    "can_delete_policies",
    "can_manage_permissions",
    "can_view_analytics",
)


def is_well_formed_grant(row: Any) -> bool:
    user_id = getattr(row, "user_id", None)
    role = getattr(row, "role", None)
    return (user_id is None) != (role is None)


def _find_grants(rows: Iterable[Any], user: UserContext) -> tuple[Any | None, Any | None]:
    individual: Any | None = None
    role_row: Any | None = None
    for row in rows:
        if not is_well_formed_grant(row):
            logger.warning(
                "skipping ambiguous grant row %s (user_id=%r, role=%r)",
                getattr(row, "id", None),
                getattr(row, "user_id", None),
                getattr(row, "role", None),
            )
            continue
        if individual is None and row.user_id is not None and row.user_id == user.id:
            individual = row
        elif role_row is None and row.role is not None and row.role == user.primary_role_id:
            role_row = row
    return individual, role_row


class ResourcePermissionResolver:
    """Effective read/write/delete on one policy for one user.

    An individual row wins over the primary-role row, even when all of its
    flags are false. Additional roles are not consulted. Stored values are
    reported as-is; dependency rules are applied on the write path by
    :func:`normalize_grant`.
    """

    def resolve(self, policy: Any, user: UserContext, grants: Iterable[Any]) -> EffectivePermission:
        policy_id = getattr(policy, "id", None)
        rows = [row for row in grants if getattr(row, "policy_id", None) == policy_id]
        individual, role_row = _find_grants(rows, user)
        if individual is not None:
            return EffectivePermission(
                can_read=bool(individual.can_read),
                can_write=bool(individual.can_write),
                can_delete=bool(individual.can_delete),
                source=PermissionSource.INDIVIDUAL,
            )
        if role_row is not None:
            return EffectivePermission(
                can_read=bool(role_row.can_read),
                can_write=bool(role_row.can_write),
                can_delete=bool(role_row.can_delete),
                source=PermissionSource.ROLE,
            )
        return EffectivePermission()

    def resolve_dashboard_access(self, user: UserContext, grants: Iterable[Any]) -> PolicyDashboardAccess:
        active_rows = [row for row in grants if getattr(row, "is_active", True)]
        individual, role_row = _find_grants(active_rows, user)
        row = individual if individual is not None else role_row
        if row is None:
            return PolicyDashboardAccess()
        values = {name: bool(getattr(row, name, False)) for name in DASHBOARD_GRANT_FIELDS}
        source = PermissionSource.INDIVIDUAL if row is individual else PermissionSource.ROLE
        return PolicyDashboardAccess(source=source, **values)


def normalize_grant(
    update: GrantUpdate,
    existing: tuple[bool, bool, bool] | None = None,
) -> tuple[bool, bool, bool]:
    """Merge ``update`` onto ``existing`` so that write and delete imply read.

    Enabling write or delete forces read on. Disabling read, when the same
    update does not enable write or delete, clears both.
    """
    can_read, can_write, can_delete = existing if existing is not None else (False, False, False)
    if update.can_read is not None:
        can_read = update.can_read
    if update.can_write is not None:
        can_write = update.can_write
    if update.can_delete is not None:
        can_delete = update.can_delete

    enables_dependent = update.can_write is True or update.can_delete is True
    if enables_dependent:
        can_read = True
    elif update.can_read is False:
        can_write = False
        can_delete = False
    elif (can_write or can_delete) and not can_read:
        can_read = True
    return can_read, can_write, can_delete
