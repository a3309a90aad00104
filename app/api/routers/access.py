from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_current_user, require_crud
from app.domain.models import (
    AccessDecisionRead,
    AccessQueryRequest,
    NavigationDecisionRead,
    NavigationItemRead,
    PageRead,
)
from app.domain.permissions import CRUD_READ, CRUD_RESOURCE_USERS, AccessQuery, UserContext
from app.services.access_gate import AccessGate
from app.services.identity_service import IdentityService, NotFoundError
from app.services.permission_resolver import PermissionResolver

router = APIRouter()


def get_permission_resolver() -> PermissionResolver:
    return IdentityService().resolver()


CurrentUser = Annotated[UserContext, Depends(get_current_user)]
Resolver = Annotated[PermissionResolver, Depends(get_permission_resolver)]


@router.get("/me/aggregate")
def get_my_aggregate(user: CurrentUser, resolver: Resolver) -> dict[str, Any]:
    return resolver.aggregate(user).as_dict()


@router.post("/me/resolve", response_model=AccessDecisionRead)
def resolve_my_access(payload: AccessQueryRequest, user: CurrentUser, resolver: Resolver) -> AccessDecisionRead:
    query = AccessQuery(**payload.model_dump())
    return AccessDecisionRead(allowed=resolver.resolve(user, query), query=payload)


@router.get("/me/navigate", response_model=NavigationDecisionRead)
def check_navigation(
    user: CurrentUser,
    resolver: Resolver,
    path: Annotated[str, Query(min_length=1)],
) -> NavigationDecisionRead:
    gate = AccessGate(resolver)
    target = gate.route_target(path)
    return NavigationDecisionRead(
        path=path,
        allowed=gate.can_navigate(user, path),
        dashboard_id=target.dashboard_id if target is not None else None,
        page_id=target.page_id if target is not None else None,
    )


@router.get("/me/dashboards", response_model=list[str])
def list_my_dashboards(user: CurrentUser, resolver: Resolver) -> list[str]:
    return resolver.accessible_dashboards(user)


@router.get("/me/navigation", response_model=list[NavigationItemRead])
def get_my_navigation(user: CurrentUser, resolver: Resolver) -> list[NavigationItemRead]:
    return [
        NavigationItemRead(
            dashboard_id=item.dashboard.id,
            name=item.dashboard.name,
            slug=item.dashboard.slug,
            pages=[PageRead(id=page.id, name=page.name, path=page.path) for page in item.pages],
        )
        for item in AccessGate(resolver).navigation(user)
    ]


@router.get("/me/effective")
def get_my_effective_permissions(user: CurrentUser, resolver: Resolver) -> dict[str, Any]:
    return resolver.effective_permissions(user)


@router.get(
    "/users/{user_id}/effective",
    dependencies=[Depends(require_crud(CRUD_RESOURCE_USERS, CRUD_READ))],
)
def get_user_effective_permissions(user_id: str, resolver: Resolver) -> dict[str, Any]:
    try:
        target = IdentityService().get_user(user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return resolver.effective_permissions(UserContext.from_user(target))
