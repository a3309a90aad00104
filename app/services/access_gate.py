from __future__ import annotations

from dataclasses import dataclass

from app.domain.catalog import DashboardDefinition, PageDefinition
from app.domain.permissions import AccessQuery, UserContext
from app.services.permission_resolver import PermissionResolver


@dataclass(frozen=True)
class RouteTarget:
    dashboard_id: str
    page_id: str | None = None


@dataclass(frozen=True)
class NavigationItem:
    dashboard: DashboardDefinition
    pages: tuple[PageDefinition, ...]


def normalize_path(path: str) -> str:
    cleaned = path.strip()
    if not cleaned.startswith("/"):
        cleaned = f"/{cleaned}"
    if len(cleaned) > 1 and cleaned.endswith("/"):
        cleaned = cleaned[:-1]
    return cleaned


class AccessGate:
    def __init__(self, resolver: PermissionResolver) -> None:
        self.resolver = resolver

    def route_target(self, path: str) -> RouteTarget | None:
        if not path or not path.strip():
            return None
        clean_path = normalize_path(path)
        catalog = self.resolver.dashboard_catalog

        for dashboard in catalog:
            for page in dashboard.pages:
                if page.path == clean_path:
                    return RouteTarget(dashboard_id=dashboard.id, page_id=page.id)

        for dashboard in catalog:
            for page in sorted(dashboard.pages, key=lambda item: len(item.path), reverse=True):
                if clean_path.startswith(f"{page.path}/"):
                    return RouteTarget(dashboard_id=dashboard.id, page_id=page.id)

        for dashboard in catalog:
            root = dashboard.root_path
            if clean_path == root or clean_path.startswith(f"{root}/"):
                return RouteTarget(dashboard_id=dashboard.id)
        return None

    def can_navigate(self, user: UserContext, path: str) -> bool:
        target = self.route_target(path)
        if target is None:
            return False
        return self.resolver.resolve(
            user,
            AccessQuery(dashboard_id=target.dashboard_id, page_id=target.page_id),
        )

    def navigation(self, user: UserContext) -> list[NavigationItem]:
        items: list[NavigationItem] = []
        for dashboard_id in self.resolver.accessible_dashboards(user):
            dashboard = self.resolver.dashboard_catalog.get(dashboard_id)
            if dashboard is None:
                continue
            allowed = set(self.resolver.accessible_pages(user, dashboard_id))
            pages = tuple(page for page in dashboard.pages if page.id in allowed)
            if pages:
                items.append(NavigationItem(dashboard=dashboard, pages=pages))
        return items
