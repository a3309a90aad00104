from __future__ import annotations

import pytest

from app.domain.catalog import DEFAULT_ROLE_CATALOG, RoleCatalog, RoleDefinition
from app.domain.permissions import AccessQuery, Operation, Overrides, PermissionQuad, UserContext
from app.services.permission_resolver import PermissionResolver


@pytest.fixture()
def resolver() -> PermissionResolver:
    return PermissionResolver()


def _user(primary: str | None, *additional: str, overrides: object = None, department: str | None = None) -> UserContext:
    return UserContext(
        id="user-1",
        primary_role_id=primary,
        additional_role_ids=tuple(additional),
        overrides=Overrides.from_raw(overrides),
        department_id=department,
    )


def test_employee_with_hr_additional_role(resolver: PermissionResolver) -> None:
    user = _user("employee", "hr")

    assert resolver.resolve(user, AccessQuery(dashboard_id="employee_management")) is True
    assert resolver.resolve(user, AccessQuery(dashboard_id="finance")) is False
    assert resolver.resolve(user, AccessQuery(dashboard_id="ats")) is False


def test_individual_deny_beats_role_grant(resolver: PermissionResolver) -> None:
    user = _user("hr", overrides={"dashboards": {"employee_management": False}})

    assert resolver.resolve(user, AccessQuery(dashboard_id="employee_management")) is False


def test_individual_allow_beats_missing_role_grant(resolver: PermissionResolver) -> None:
    user = _user("employee", overrides={"dashboards": {"finance": True}})

    assert resolver.resolve(user, AccessQuery(dashboard_id="finance")) is True


def test_unknown_dashboard_and_empty_query_are_denied(resolver: PermissionResolver) -> None:
    user = _user("hr")

    assert resolver.resolve(user, AccessQuery(dashboard_id="nonexistent")) is False
    assert resolver.resolve(user, AccessQuery(dashboard_id="")) is False


def test_user_without_roles_is_denied_everywhere(resolver: PermissionResolver) -> None:
    user = _user(None)

    assert resolver.accessible_dashboards(user) == []
    assert resolver.resolve(user, AccessQuery(dashboard_id="self")) is False


def test_unknown_primary_role_ignores_additional_roles(resolver: PermissionResolver) -> None:
    user = _user("deleted_role", "hr")

    assert resolver.resolve(user, AccessQuery(dashboard_id="employee_management")) is False


def test_unknown_primary_role_still_honours_overrides(resolver: PermissionResolver) -> None:
    user = _user("deleted_role", overrides={"dashboards": {"self": True}})

    assert resolver.resolve(user, AccessQuery(dashboard_id="self")) is True


def test_admin_short_circuits_dashboard_page_and_crud(resolver: PermissionResolver) -> None:
    user = _user("admin", overrides={"dashboards": {"finance": False}})

    assert resolver.resolve(user, AccessQuery(dashboard_id="finance")) is True
    assert resolver.resolve(user, AccessQuery(dashboard_id="finance", page_id="payroll")) is True
    assert (
        resolver.resolve(
            user,
            AccessQuery(dashboard_id="employee_management", crud_resource="roles", action_key="delete"),
        )
        is True
    )


def test_admin_does_not_bypass_feature_queries(resolver: PermissionResolver) -> None:
    user = _user("admin")

    query = AccessQuery(dashboard_id="finance", feature_key="billing_management", action_key="approve")
    assert resolver.resolve(user, query) is False


def test_feature_query_uses_override_then_role() -> None:
    role = RoleDefinition(
        id="biller",
        default_dashboards=frozenset({"finance"}),
        feature_permissions={"billing_management": {"approve": True}},
    )
    resolver = PermissionResolver(role_catalog=RoleCatalog([role]))

    plain = _user("biller")
    denied = _user("biller", overrides={"features": {"billing_management": {"approve": False}}})

    approve = AccessQuery(dashboard_id="finance", feature_key="billing_management", action_key="approve")
    assert resolver.resolve(plain, approve) is True
    assert resolver.resolve(denied, approve) is False
    assert resolver.resolve(plain, AccessQuery(dashboard_id="finance", feature_key="billing_management")) is False
    assert (
        resolver.resolve(plain, AccessQuery(dashboard_id="finance", feature_key="billing_management", action_key="x"))
        is False
    )


def test_crud_query_defaults_to_read(resolver: PermissionResolver) -> None:
    user = _user("hr")

    assert resolver.resolve(user, AccessQuery(dashboard_id="employee_management", crud_resource="users")) is True
    assert (
        resolver.resolve(
            user,
            AccessQuery(dashboard_id="employee_management", crud_resource="users", action_key="delete"),
        )
        is False
    )
    assert resolver.resolve(_user("employee"), AccessQuery(dashboard_id="self", crud_resource="users")) is False


def test_department_override_only_applies_to_matching_department(resolver: PermissionResolver) -> None:
    user = _user(
        "employee",
        overrides={"department_dashboards": {"performance": True}},
        department="engineering",
    )

    scoped = AccessQuery(dashboard_id="performance", department_id="engineering")
    other = AccessQuery(dashboard_id="performance", department_id="sales")
    unscoped = AccessQuery(dashboard_id="performance")

    assert resolver.resolve(user, scoped) is True
    assert resolver.resolve(user, other) is False
    assert resolver.resolve(user, unscoped) is False


def test_individual_override_beats_department_override(resolver: PermissionResolver) -> None:
    user = _user(
        "employee",
        overrides={
            "dashboards": {"performance": False},
            "department_dashboards": {"performance": True},
        },
        department="engineering",
    )

    assert resolver.resolve(user, AccessQuery(dashboard_id="performance", department_id="engineering")) is False


def test_department_crud_override(resolver: PermissionResolver) -> None:
    user = _user("employee", overrides={"department_crud": {"users": {"update": True}}}, department="ops")

    query = AccessQuery(dashboard_id="employee_management", crud_resource="users", action_key="update", department_id="ops")
    assert resolver.resolve(user, query) is True


def test_page_override_and_inheritance(resolver: PermissionResolver) -> None:
    user = _user("finance", overrides={"pages": {"finance": {"payroll": False}}})

    assert resolver.resolve(user, AccessQuery(dashboard_id="finance", page_id="payroll")) is False
    assert resolver.resolve(user, AccessQuery(dashboard_id="finance", page_id="billing")) is True
    assert resolver.resolve(user, AccessQuery(dashboard_id="finance", page_id="unknown-page")) is False


def test_page_quad_from_role_decides_even_when_false() -> None:
    role = RoleDefinition(
        id="viewer",
        default_dashboards=frozenset({"finance"}),
        page_permissions={"finance": {"payroll": PermissionQuad()}},
    )
    resolver = PermissionResolver(role_catalog=RoleCatalog([role]))
    user = _user("viewer")

    assert resolver.resolve(user, AccessQuery(dashboard_id="finance", page_id="payroll")) is False
    assert resolver.resolve(user, AccessQuery(dashboard_id="finance", page_id="billing")) is True


def test_operations_follow_the_dashboard_quad() -> None:
    role = RoleDefinition(id="auditor", dashboard_permissions={"finance": PermissionQuad(read=True)})
    resolver = PermissionResolver(role_catalog=RoleCatalog([role]))
    user = _user("auditor")

    assert resolver.resolve(user, AccessQuery(dashboard_id="finance")) is True
    assert resolver.resolve(user, AccessQuery(dashboard_id="finance", operation=Operation.READ)) is True
    assert resolver.resolve(user, AccessQuery(dashboard_id="finance", operation=Operation.WRITE)) is False


def test_default_dashboard_membership_grants_view_only(resolver: PermissionResolver) -> None:
    user = _user("employee")

    assert resolver.resolve(user, AccessQuery(dashboard_id="self", operation=Operation.VIEW)) is True
    assert resolver.resolve(user, AccessQuery(dashboard_id="self", operation=Operation.DELETE)) is False


def test_malformed_override_blob_falls_back_to_roles(resolver: PermissionResolver) -> None:
    for blob in ("not-a-dict", ["dashboards"], {"dashboards": "broken"}, {"dashboards": {"self": "maybe"}}):
        user = _user("employee", overrides=blob)
        assert resolver.resolve(user, AccessQuery(dashboard_id="self")) is True
        assert resolver.resolve(user, AccessQuery(dashboard_id="finance")) is False


def test_string_booleans_in_overrides_are_explicit(resolver: PermissionResolver) -> None:
    user = _user("employee", overrides={"dashboards": {"self": "false", "finance": "true"}})

    assert resolver.resolve(user, AccessQuery(dashboard_id="self")) is False
    assert resolver.resolve(user, AccessQuery(dashboard_id="finance")) is True


def test_resolution_is_repeatable(resolver: PermissionResolver) -> None:
    user = _user("sdm", "finance", overrides={"pages": {"performance": {"KRA": False}}})
    query = AccessQuery(dashboard_id="performance", page_id="KRA")

    assert {resolver.resolve(user, query) for _ in range(5)} == {False}


def test_bulk_views_match_single_queries(resolver: PermissionResolver) -> None:
    user = _user("finance", overrides={"pages": {"finance": {"logs": False}}})

    assert resolver.accessible_dashboards(user) == ["self", "employee_management", "finance"]
    assert resolver.accessible_pages(user, "finance") == ["overview", "payroll", "billing"]
    assert resolver.accessible_pages(user, "policies") == []
    assert resolver.accessible_pages(user, "missing") == []

    effective = resolver.effective_permissions(user)
    assert effective["dashboards"]["finance"] is True
    assert effective["dashboards"]["policies"] is False
    assert effective["pages"]["finance"]["logs"] is False


def test_default_role_catalog_never_exposes_unlisted_areas() -> None:
    for role_id in DEFAULT_ROLE_CATALOG.role_ids():
        role = DEFAULT_ROLE_CATALOG.get(role_id)
        assert role is not None
        assert not role.default_dashboards & {"grievance", "bd_team", "ats", "lms", "exit"}
