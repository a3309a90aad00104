from __future__ import annotations

import logging
from dataclasses import dataclass

import pytest

from app.domain.permissions import EffectivePermission, GrantUpdate, PermissionSource, UserContext
from app.services.resource_permission_resolver import ResourcePermissionResolver, normalize_grant


@dataclass
class _Policy:
    id: str


@dataclass
class _Grant:
    policy_id: str
    user_id: str | None = None
    role: str | None = None
    can_read: bool = False
    can_write: bool = False
    can_delete: bool = False
    id: str = "grant"


@dataclass
class _DashboardGrant:
    user_id: str | None = None
    role: str | None = None
    can_view_policies: bool = True
    can_create_policies: bool = False
    can_edit_policies: bool = False
    can_delete_policies: bool = False
    can_manage_permissions: bool = False
    can_view_analytics: bool = False
    is_active: bool = True


POLICY = _Policy(id="policy-1")
HR_USER = UserContext(id="user-1", primary_role_id="hr", additional_role_ids=("finance",))


@pytest.fixture()
def resolver() -> ResourcePermissionResolver:
    return ResourcePermissionResolver()


def test_role_row_applies_without_individual_row(resolver: ResourcePermissionResolver) -> None:
    grants = [_Grant(policy_id="policy-1", role="hr", can_read=True, can_write=True)]

    result = resolver.resolve(POLICY, HR_USER, grants)

    assert result == EffectivePermission(can_read=True, can_write=True, can_delete=False, source=PermissionSource.ROLE)


def test_individual_denial_beats_role_grant(resolver: ResourcePermissionResolver) -> None:
    grants = [
        _Grant(policy_id="policy-1", role="hr", can_read=True, can_write=True, can_delete=True),
        _Grant(policy_id="policy-1", user_id="user-1"),
    ]

    result = resolver.resolve(POLICY, HR_USER, grants)

    assert result.source is PermissionSource.INDIVIDUAL
    assert (result.can_read, result.can_write, result.can_delete) == (False, False, False)


def test_additional_roles_are_not_consulted(resolver: ResourcePermissionResolver) -> None:
    grants = [_Grant(policy_id="policy-1", role="finance", can_read=True)]

    assert resolver.resolve(POLICY, HR_USER, grants) == EffectivePermission()


def test_rows_for_other_policies_are_ignored(resolver: ResourcePermissionResolver) -> None:
    grants = [
        _Grant(policy_id="policy-2", user_id="user-1", can_read=True),
        _Grant(policy_id="policy-2", role="hr", can_read=True),
    ]

    assert resolver.resolve(POLICY, HR_USER, grants).source is PermissionSource.NONE


def test_ambiguous_rows_are_skipped(resolver: ResourcePermissionResolver, caplog: pytest.LogCaptureFixture) -> None:
    grants = [
        _Grant(policy_id="policy-1", user_id="user-1", role="hr", can_read=True, id="both"),
        _Grant(policy_id="policy-1", can_read=True, id="neither"),
        _Grant(policy_id="policy-1", role="hr", can_read=True, id="valid"),
    ]

    with caplog.at_level(logging.WARNING):
        result = resolver.resolve(POLICY, HR_USER, grants)

    assert result.source is PermissionSource.ROLE
    messages = " ".join(record.getMessage() for record in caplog.records)
    assert "both" in messages
    assert "neither" in messages


def test_admin_has_no_hardcoded_bypass(resolver: ResourcePermissionResolver) -> None:
    admin = UserContext(id="admin-1", primary_role_id="admin")

    assert resolver.resolve(POLICY, admin, []).source is PermissionSource.NONE


def test_dashboard_access_prefers_individual_row(resolver: ResourcePermissionResolver) -> None:
    rows = [
        _DashboardGrant(role="hr", can_create_policies=True, can_manage_permissions=True),
        _DashboardGrant(user_id="user-1", can_view_policies=True),
    ]

    access = resolver.resolve_dashboard_access(HR_USER, rows)

    assert access.source is PermissionSource.INDIVIDUAL
    assert access.can_view_policies is True
    assert access.can_manage_permissions is False


def test_dashboard_access_falls_back_to_role_and_respects_inactive(resolver: ResourcePermissionResolver) -> None:
    active = [_DashboardGrant(role="hr", can_manage_permissions=True)]
    inactive = [_DashboardGrant(role="hr", can_manage_permissions=True, is_active=False)]

    assert resolver.resolve_dashboard_access(HR_USER, active).can_manage_permissions is True
    assert resolver.resolve_dashboard_access(HR_USER, inactive).source is PermissionSource.NONE
    assert resolver.resolve_dashboard_access(HR_USER, []).can_view_policies is False


def test_inactive_individual_dashboard_row_falls_through_to_role(resolver: ResourcePermissionResolver) -> None:
    rows = [
        _DashboardGrant(user_id="user-1", can_view_policies=False, is_active=False),
        _DashboardGrant(role="hr", can_manage_permissions=True),
    ]

    access = resolver.resolve_dashboard_access(HR_USER, rows)

    assert access.source is PermissionSource.ROLE
    assert access.can_view_policies is True
    assert access.can_manage_permissions is True


@pytest.mark.parametrize(
    ("update", "existing", "expected"),
    [
        (GrantUpdate(can_write=True), (False, False, False), (True, True, False)),
        (GrantUpdate(can_delete=True), None, (True, False, True)),
        (GrantUpdate(can_read=False), (True, True, True), (False, False, False)),
        (GrantUpdate(can_read=False, can_write=True), (True, False, False), (True, True, False)),
        (GrantUpdate(can_write=False), (True, True, True), (True, False, True)),
        (GrantUpdate(), (False, True, False), (True, True, False)),
        (GrantUpdate(can_read=True), None, (True, False, False)),
    ],
)
def test_normalize_grant_keeps_read_dependency(
    update: GrantUpdate,
    existing: tuple[bool, bool, bool] | None,
    expected: tuple[bool, bool, bool],
) -> None:
    result = normalize_grant(update, existing)

    assert result == expected
    can_read, can_write, can_delete = result
    assert can_read or not (can_write or can_delete)
