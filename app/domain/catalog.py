from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from app.domain.permissions import (
    CRUD_ACTIONS,
    CRUD_RESOURCE_USERS,
    PermissionQuad,
    parse_action_map,
    parse_nested_quad_map,
    parse_quad_map,
)

DASHBOARD_SELF = "self"
DASHBOARD_EMPLOYEE_MANAGEMENT = "employee_management"
DASHBOARD_PERFORMANCE = "performance"
DASHBOARD_GRIEVANCE = "grievance"
DASHBOARD_BD_TEAM = "bd_team"
DASHBOARD_FINANCE = "finance"
DASHBOARD_ATS = "ats"
DASHBOARD_LMS = "lms"
DASHBOARD_EXIT = "exit"
DASHBOARD_POLICIES = "policies"

ROLE_ADMIN = "admin"
ROLE_HR = "hr"
ROLE_HRM = "hrm"
ROLE_SDM = "sdm"
ROLE_BDM = "bdm"
ROLE_QAM = "qam"
ROLE_FINANCE = "finance"
ROLE_FINANCE_MANAGER = "finance_manager"
ROLE_EMPLOYEE = "employee"
ROLE_EX_EMPLOYEE = "ex_employee"
ROLE_CANDIDATE = "candidate"


@dataclass(frozen=True)
class PageDefinition:
    id: str
    name: str
    path: str


@dataclass(frozen=True)
class DashboardDefinition:
    id: str
    name: str
    slug: str
    pages: tuple[PageDefinition, ...] = ()

    @property
    def root_path(self) -> str:
        return f"/{self.slug}"

    def page(self, page_id: str) -> PageDefinition | None:
        for page in self.pages:
            if page.id == page_id:
                return page
        return None


class DashboardCatalog:
    def __init__(self, dashboards: Iterable[DashboardDefinition]) -> None:
        self._dashboards: tuple[DashboardDefinition, ...] = tuple(dashboards)
        self._by_id = {item.id: item for item in self._dashboards}

    def __iter__(self):
        return iter(self._dashboards)

    def __len__(self) -> int:
        return len(self._dashboards)

    @property
    def dashboard_ids(self) -> list[str]:
        return [item.id for item in self._dashboards]

    def get(self, dashboard_id: str) -> DashboardDefinition | None:
        return self._by_id.get(dashboard_id)

    def has_page(self, dashboard_id: str, page_id: str) -> bool:
        dashboard = self._by_id.get(dashboard_id)
        return dashboard is not None and dashboard.page(page_id) is not None


def _pages(*items: tuple[str, str, str]) -> tuple[PageDefinition, ...]:
    return tuple(PageDefinition(id=page_id, name=name, path=path) for page_id, name, path in items)


DEFAULT_DASHBOARD_CATALOG = DashboardCatalog(
    [
        DashboardDefinition(
            id=DASHBOARD_SELF,
            name="My Dashboard",
            slug="dashboard",
            pages=_pages(
                ("overview", "Overview", "/dashboard"),
                ("leave", "Leave Application", "/dashboard/leave"),
                ("assets", "My Assets", "/dashboard/assets"),
                ("documents", "Documents", "/dashboard/documents"),
                ("policies", "Policies", "/dashboard/policies"),
                ("performance", "Performance", "/dashboard/performance"),
                ("feedback", "HRMS Feedback", "/dashboard/feedback"),
                ("settings", "Settings", "/dashboard/settings"),
            ),
        ),
        DashboardDefinition(
            id=DASHBOARD_EMPLOYEE_MANAGEMENT,
            name="Employee Management",
            slug="employees",
            pages=_pages(
                ("overview", "All Employees", "/employees"),
                ("assets", "Asset Management", "/employees/assets"),
                ("leave", "Leave Management", "/employees/leave"),
                ("feedback", "HRMS Feedback", "/employees/feedback"),
            ),
        ),
        DashboardDefinition(
            id=DASHBOARD_PERFORMANCE,
            name="Performance Management",
            slug="performance",
            pages=_pages(
                ("overview", "Performance Overview", "/performance"),
                ("KRA", "KRA", "/performance/kra"),
            ),
        ),
        DashboardDefinition(
            id=DASHBOARD_FINANCE,
            name="Finance",
            slug="finance",
            pages=_pages(
                ("overview", "Finance Dashboard", "/finance"),
                ("payroll", "All Payroll", "/finance/payroll"),
                ("billing", "All Billing", "/finance/billing"),
                ("logs", "Payroll Logs", "/finance/logs"),
            ),
        ),
        DashboardDefinition(
            id=DASHBOARD_POLICIES,
            name="Policies",
            slug="policies",
            pages=_pages(
                ("all-policies", "All Policies", "/policies"),
                ("assign", "Assign Policies", "/policies/assign"),
                ("history", "History", "/policies/history"),
                ("logs", "Activity Logs", "/policies/logs"),
            ),
        ),
    ]
)


@dataclass(frozen=True)
class RoleDefinition:
    id: str
    default_dashboards: frozenset[str] = frozenset()
    dashboard_permissions: dict[str, PermissionQuad] = field(default_factory=dict)
    page_permissions: dict[str, dict[str, PermissionQuad]] = field(default_factory=dict)
    feature_permissions: dict[str, dict[str, bool]] = field(default_factory=dict)
    crud_permissions: dict[str, dict[str, bool]] = field(default_factory=dict)
    full_access: bool = False

    @classmethod
    def from_record(cls, record: Any) -> RoleDefinition:
        raw_dashboards = getattr(record, "default_dashboards", None)
        dashboards: frozenset[str] = frozenset()
        if isinstance(raw_dashboards, list | tuple | set | frozenset):
            dashboards = frozenset(item for item in raw_dashboards if isinstance(item, str) and item)
        return cls(
            id=str(record.id),
            default_dashboards=dashboards,
            dashboard_permissions=parse_quad_map(getattr(record, "dashboard_permissions", None)),
            page_permissions=parse_nested_quad_map(getattr(record, "page_permissions", None)),
            feature_permissions=parse_action_map(getattr(record, "feature_permissions", None)),
            crud_permissions=parse_action_map(getattr(record, "crud_permissions", None)),
            full_access=bool(getattr(record, "full_access", False)),
        )


class RoleCatalog:
    def __init__(self, roles: Iterable[RoleDefinition] = ()) -> None:
        self._roles: dict[str, RoleDefinition] = {role.id: role for role in roles}

    def __contains__(self, role_id: object) -> bool:
        return role_id in self._roles

    def __len__(self) -> int:
        return len(self._roles)

    def get(self, role_id: str | None) -> RoleDefinition | None:
        if role_id is None:
            return None
        return self._roles.get(role_id)

    def role_ids(self) -> list[str]:
        return sorted(self._roles)

    @classmethod
    def from_records(cls, records: Iterable[Any]) -> RoleCatalog:
        return cls(RoleDefinition.from_record(record) for record in records)


_FULL_CRUD = {action: True for action in CRUD_ACTIONS}

ROLE_TEMPLATES: tuple[dict[str, Any], ...] = (
    {
        "key": ROLE_ADMIN,
        "name": "Admin",
        "full_access": True,
        "default_dashboards": [item.id for item in DEFAULT_DASHBOARD_CATALOG],
    },
    {
        "key": ROLE_HR,
        "name": "HR",
        "default_dashboards": [
            DASHBOARD_SELF,
            DASHBOARD_EMPLOYEE_MANAGEMENT,
            DASHBOARD_GRIEVANCE,
            DASHBOARD_ATS,
            DASHBOARD_LMS,
            DASHBOARD_EXIT,
            DASHBOARD_POLICIES,
        ],
        "crud_permissions": {CRUD_RESOURCE_USERS: dict(_FULL_CRUD, delete=False)},
    },
    {
        "key": ROLE_HRM,
        "name": "HR Manager",
        "default_dashboards": [
            DASHBOARD_SELF,
            DASHBOARD_EMPLOYEE_MANAGEMENT,
            DASHBOARD_GRIEVANCE,
            DASHBOARD_ATS,
            DASHBOARD_LMS,
            DASHBOARD_EXIT,
            DASHBOARD_POLICIES,
        ],
        "crud_permissions": {CRUD_RESOURCE_USERS: dict(_FULL_CRUD, delete=False)},
    },
    {
        "key": ROLE_SDM,
        "name": "SD Manager",
        "default_dashboards": [
            DASHBOARD_SELF,
            DASHBOARD_EMPLOYEE_MANAGEMENT,
            DASHBOARD_PERFORMANCE,
            DASHBOARD_GRIEVANCE,
        ],
    },
    {
        "key": ROLE_BDM,
        "name": "BD Manager",
        "default_dashboards": [DASHBOARD_SELF, DASHBOARD_BD_TEAM, DASHBOARD_GRIEVANCE],
    },
    {
        "key": ROLE_QAM,
        "name": "QA Manager",
        "default_dashboards": [
            DASHBOARD_SELF,
            DASHBOARD_EMPLOYEE_MANAGEMENT,
            DASHBOARD_PERFORMANCE,
            DASHBOARD_GRIEVANCE,
        ],
    },
    {
        "key": ROLE_FINANCE,
        "name": "Finance",
        "default_dashboards": [DASHBOARD_SELF, DASHBOARD_FINANCE, DASHBOARD_EMPLOYEE_MANAGEMENT],
    },
    {
        "key": ROLE_FINANCE_MANAGER,
        "name": "Finance Manager",
        "default_dashboards": [DASHBOARD_SELF, DASHBOARD_FINANCE, DASHBOARD_EMPLOYEE_MANAGEMENT],
    },
    {
        "key": ROLE_EMPLOYEE,
        "name": "Employee",
        "default_dashboards": [DASHBOARD_SELF],
    },
    {
        "key": ROLE_EX_EMPLOYEE,
        "name": "Ex-Employee",
        "default_dashboards": [DASHBOARD_SELF, DASHBOARD_EXIT],
    },
    {
        "key": ROLE_CANDIDATE,
        "name": "Candidate",
        "default_dashboards": [DASHBOARD_SELF, DASHBOARD_ATS, DASHBOARD_LMS],
    },
)


def template_dashboards(template: Mapping[str, Any], catalog: DashboardCatalog = DEFAULT_DASHBOARD_CATALOG) -> list[str]:
    return [item for item in template.get("default_dashboards", []) if catalog.get(item) is not None]


def _template_definition(template: Mapping[str, Any]) -> RoleDefinition:
    return RoleDefinition(
        id=template["key"],
        default_dashboards=frozenset(template_dashboards(template)),
        crud_permissions=parse_action_map(template.get("crud_permissions")),
        full_access=bool(template.get("full_access", False)),
    )


DEFAULT_ROLE_CATALOG = RoleCatalog(_template_definition(item) for item in ROLE_TEMPLATES)
