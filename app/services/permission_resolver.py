from __future__ import annotations

from typing import Any

from app.domain.catalog import DEFAULT_DASHBOARD_CATALOG, DEFAULT_ROLE_CATALOG, DashboardCatalog, RoleCatalog
from app.domain.permissions import CRUD_READ, AccessQuery, Operation, UserContext
from app.services.role_aggregator import AggregatedView, aggregate_for_user


class PermissionResolver:
    """Answers dashboard, page, feature and CRUD questions for one user.

    Tiers are evaluated top to bottom and the first tier with an entry wins:
    individual override, department override (only for queries tagged with
    the user's department), aggregated role value, default deny. Roles
    flagged ``full_access`` answer ``True`` for dashboard, page and CRUD
    queries before any tier is consulted.
    """

    def __init__(
        self,
        role_catalog: RoleCatalog = DEFAULT_ROLE_CATALOG,
        dashboard_catalog: DashboardCatalog = DEFAULT_DASHBOARD_CATALOG,
    ) -> None:
        self.role_catalog = role_catalog
        self.dashboard_catalog = dashboard_catalog

    def aggregate(self, user: UserContext) -> AggregatedView:
        return aggregate_for_user(self.role_catalog, user)

    def resolve(self, user: UserContext, query: AccessQuery) -> bool:
        view = self.aggregate(user)
        return self._resolve_with_view(user, view, query)

    def _resolve_with_view(self, user: UserContext, view: AggregatedView, query: AccessQuery) -> bool:
        if not query.dashboard_id:
            return False
        department_scoped = query.department_id is not None and query.department_id == user.department_id

        if query.crud_resource:
            if view.full_access:
                return True
            return self._resolve_crud(user, view, query.crud_resource, query.action_key or CRUD_READ, department_scoped)
        if query.feature_key:
            return self._resolve_feature(user, view, query.feature_key, query.action_key)
        if view.full_access:
            return True
        if query.page_id:
            return self._resolve_page(user, view, query.dashboard_id, query.page_id, query.operation, department_scoped)
        return self._resolve_dashboard(user, view, query.dashboard_id, query.operation, department_scoped)

    def _resolve_dashboard(
        self,
        user: UserContext,
        view: AggregatedView,
        dashboard_id: str,
        operation: Operation | None,
        department_scoped: bool,
    ) -> bool:
        explicit = user.overrides.dashboard(dashboard_id)
        if explicit is not None:
            return explicit
        if department_scoped:
            explicit = user.overrides.dashboard(dashboard_id, department=True)
            if explicit is not None:
                return explicit

        quad = view.dashboard_quad(dashboard_id)
        if quad is not None and quad.allows(operation):
            return True
        return dashboard_id in view.dashboards and operation in (None, Operation.VIEW, Operation.READ)

    def _resolve_page(
        self,
        user: UserContext,
        view: AggregatedView,
        dashboard_id: str,
        page_id: str,
        operation: Operation | None,
        department_scoped: bool,
    ) -> bool:
        explicit = user.overrides.page(dashboard_id, page_id)
        if explicit is not None:
            return explicit
        if department_scoped:
            explicit = user.overrides.page(dashboard_id, page_id, department=True)
            if explicit is not None:
                return explicit

        quad = view.page_quad(dashboard_id, page_id)
        if quad is not None:
            return quad.allows(operation)

        # Unmentioned pages inherit the dashboard decision, but only for pages the catalog knows.
        if not self.dashboard_catalog.has_page(dashboard_id, page_id):
            return False
        return self._resolve_dashboard(user, view, dashboard_id, operation, department_scoped)

    def _resolve_feature(
        self,
        user: UserContext,
        view: AggregatedView,
        feature_key: str,
        action_key: str | None,
    ) -> bool:
        if not action_key:
            return False
        explicit = user.overrides.feature(feature_key, action_key)
        if explicit is not None:
            return explicit
        return view.feature(feature_key, action_key) is True

    def _resolve_crud(
        self,
        user: UserContext,
        view: AggregatedView,
        resource: str,
        action_key: str,
        department_scoped: bool,
    ) -> bool:
        explicit = user.overrides.crud_action(resource, action_key)
        if explicit is not None:
            return explicit
        if department_scoped:
            explicit = user.overrides.crud_action(resource, action_key, department=True)
            if explicit is not None:
                return explicit
        return view.crud_action(resource, action_key) is True

    def accessible_dashboards(self, user: UserContext) -> list[str]:
        view = self.aggregate(user)
        return [
            dashboard.id
            for dashboard in self.dashboard_catalog
            if self._resolve_with_view(user, view, AccessQuery(dashboard_id=dashboard.id))
        ]

    def accessible_pages(self, user: UserContext, dashboard_id: str) -> list[str]:
        dashboard = self.dashboard_catalog.get(dashboard_id)
        if dashboard is None:
            return []
        view = self.aggregate(user)
        if not self._resolve_with_view(user, view, AccessQuery(dashboard_id=dashboard_id)):
            return []
        return [
            page.id
            for page in dashboard.pages
            if self._resolve_with_view(user, view, AccessQuery(dashboard_id=dashboard_id, page_id=page.id))
        ]

    def effective_permissions(self, user: UserContext) -> dict[str, Any]:
        view = self.aggregate(user)
        dashboards: dict[str, bool] = {}
        pages: dict[str, dict[str, bool]] = {}
        for dashboard in self.dashboard_catalog:
            dashboards[dashboard.id] = self._resolve_with_view(user, view, AccessQuery(dashboard_id=dashboard.id))
            pages[dashboard.id] = {
                page.id: self._resolve_with_view(user, view, AccessQuery(dashboard_id=dashboard.id, page_id=page.id))
                for page in dashboard.pages
            }
        return {"dashboards": dashboards, "pages": pages}
