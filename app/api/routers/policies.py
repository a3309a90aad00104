from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from app.api.deps import get_current_user, require_navigation, require_policy_capability
from app.domain.models import (
    EffectivePermissionRead,
    PolicyCreate,
    PolicyDashboardAccessRead,
    PolicyDashboardPermissionRead,
    PolicyDashboardPermissionWrite,
    PolicyPermissionRead,
    PolicyPermissionWrite,
    PolicyRead,
    PolicyUpdate,
    PolicyVersionRead,
)
from app.domain.permissions import Operation, UserContext
from app.infra.audit import set_audit_context
from app.services import identity_service
from app.services.identity_service import IdentityService
from app.services.policy_service import (
    ConflictError,
    GrantValidationError,
    NotFoundError,
    PermissionDeniedError,
    PolicyService,
)

router = APIRouter()


def get_policy_service() -> PolicyService:
    return PolicyService()


CurrentUser = Annotated[UserContext, Depends(get_current_user)]
Service = Annotated[PolicyService, Depends(get_policy_service)]

CanView = Annotated[UserContext, Depends(require_policy_capability("can_view_policies"))]
CanManage = Annotated[UserContext, Depends(require_policy_capability("can_manage_permissions"))]

PolicyErrors = (NotFoundError, ConflictError, GrantValidationError, PermissionDeniedError)


def _handle_policy_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, GrantValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, PermissionDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    raise exc


def _user_context(user_id: str) -> UserContext:
    try:
        return UserContext.from_user(IdentityService().get_user(user_id))
    except identity_service.NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("", response_model=list[PolicyRead])
def list_policies(user: CanView, service: Service) -> list[PolicyRead]:
    viewer: UserContext | None = user
    if service.dashboard_access(user).can_manage_permissions:
        viewer = None
    return [PolicyRead.model_validate(item) for item in service.list_policies(viewer)]


@router.post(
    "",
    response_model=PolicyRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_navigation("/policies"))],
)
def create_policy(
    payload: PolicyCreate,
    request: Request,
    user: Annotated[UserContext, Depends(require_policy_capability("can_create_policies"))],
    service: Service,
) -> PolicyRead:
    set_audit_context(request, action="policy.create", detail={"what": {"name": payload.name}})
    try:
        return PolicyRead.model_validate(service.create_policy(payload, actor_id=user.id))
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise


@router.get("/summary")
def get_policy_summary(
    _user: Annotated[UserContext, Depends(require_policy_capability("can_view_analytics"))],
    service: Service,
) -> dict[str, Any]:
    return service.summary()


@router.get("/dashboard-permissions/me", response_model=PolicyDashboardAccessRead)
def get_my_dashboard_access(user: CurrentUser, service: Service) -> PolicyDashboardAccessRead:
    access = service.dashboard_access(user)
    return PolicyDashboardAccessRead(
        can_view_policies=access.can_view_policies,
        can_create_policies=access.can_create_policies,
        can_edit_policies=access.can_edit_policies,
        can_delete_policies=access.can_delete_policies,
        can_manage_permissions=access.can_manage_permissions,
        can_view_analytics=access.can_view_analytics,
        source=access.source,
    )


@router.get("/dashboard-permissions", response_model=list[PolicyDashboardPermissionRead])
def list_dashboard_permissions(_user: CanManage, service: Service) -> list[PolicyDashboardPermissionRead]:
    return [PolicyDashboardPermissionRead.model_validate(item) for item in service.list_dashboard_grants()]


@router.put("/dashboard-permissions", response_model=PolicyDashboardPermissionRead)
def upsert_dashboard_permission(
    payload: PolicyDashboardPermissionWrite,
    request: Request,
    user: CanManage,
    service: Service,
) -> PolicyDashboardPermissionRead:
    set_audit_context(
        request,
        action="policy.dashboard_grant.upsert",
        detail={"what": {"user_id": payload.user_id, "role": payload.role}},
    )
    try:
        row = service.upsert_dashboard_grant(payload, actor_id=user.id)
        return PolicyDashboardPermissionRead.model_validate(row)
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise


@router.get("/{policy_id}", response_model=PolicyRead)
def get_policy(policy_id: str, user: CanView, service: Service) -> PolicyRead:
    try:
        return PolicyRead.model_validate(service.require_policy_operation(policy_id, user, Operation.READ))
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise


@router.patch(
    "/{policy_id}",
    response_model=PolicyRead,
    dependencies=[Depends(require_navigation("/policies"))],
)
def update_policy(
    policy_id: str,
    payload: PolicyUpdate,
    request: Request,
    user: Annotated[UserContext, Depends(require_policy_capability("can_edit_policies"))],
    service: Service,
) -> PolicyRead:
    set_audit_context(request, action="policy.update", detail={"what": {"policy_id": policy_id}})
    try:
        service.require_policy_operation(policy_id, user, Operation.WRITE)
        return PolicyRead.model_validate(service.update_policy(policy_id, payload, actor_id=user.id))
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise


@router.delete(
    "/{policy_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_navigation("/policies"))],
)
def delete_policy(
    policy_id: str,
    request: Request,
    user: Annotated[UserContext, Depends(require_policy_capability("can_delete_policies"))],
    service: Service,
) -> Response:
    set_audit_context(request, action="policy.delete", detail={"what": {"policy_id": policy_id}})
    try:
        service.require_policy_operation(policy_id, user, Operation.DELETE)
        service.delete_policy(policy_id, actor_id=user.id)
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{policy_id}/versions", response_model=list[PolicyVersionRead])
def list_policy_versions(policy_id: str, user: CanView, service: Service) -> list[PolicyVersionRead]:
    try:
        service.require_policy_operation(policy_id, user, Operation.READ)
        return [PolicyVersionRead.model_validate(item) for item in service.list_versions(policy_id)]
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise


@router.get("/{policy_id}/grants", response_model=list[PolicyPermissionRead])
def list_policy_grants(policy_id: str, _user: CanManage, service: Service) -> list[PolicyPermissionRead]:
    try:
        return [PolicyPermissionRead.model_validate(item) for item in service.list_grants(policy_id)]
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise


@router.put(
    "/{policy_id}/grants",
    response_model=PolicyPermissionRead,
    dependencies=[Depends(require_navigation("/policies/assign"))],
)
def upsert_policy_grant(
    policy_id: str,
    payload: PolicyPermissionWrite,
    request: Request,
    user: CanManage,
    service: Service,
) -> PolicyPermissionRead:
    set_audit_context(
        request,
        action="policy.grant.upsert",
        detail={
            "what": {
                "policy_id": policy_id,
                "user_id": payload.user_id,
                "role": payload.role,
                "can_read": payload.can_read,
                "can_write": payload.can_write,
                "can_delete": payload.can_delete,
            }
        },
    )
    try:
        return PolicyPermissionRead.model_validate(service.upsert_grant(policy_id, payload, actor_id=user.id))
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise


@router.delete(
    "/{policy_id}/grants/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_navigation("/policies/assign"))],
)
def reset_user_grant(
    policy_id: str,
    user_id: str,
    request: Request,
    user: CanManage,
    service: Service,
) -> Response:
    set_audit_context(
        request,
        action="policy.grant.reset_user",
        detail={"what": {"policy_id": policy_id, "user_id": user_id}},
    )
    try:
        service.reset_user_grant(policy_id, user_id, actor_id=user.id)
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/{policy_id}/grants/roles/{role}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_navigation("/policies/assign"))],
)
def delete_role_grant(
    policy_id: str,
    role: str,
    request: Request,
    user: CanManage,
    service: Service,
) -> Response:
    set_audit_context(
        request,
        action="policy.grant.delete_role",
        detail={"what": {"policy_id": policy_id, "role": role}},
    )
    try:
        service.delete_role_grant(policy_id, role, actor_id=user.id)
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{policy_id}/effective", response_model=EffectivePermissionRead)
def get_my_effective_permission(policy_id: str, user: CurrentUser, service: Service) -> EffectivePermissionRead:
    try:
        effective = service.effective_permission(policy_id, user)
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise
    return EffectivePermissionRead(policy_id=policy_id, user_id=user.id, **effective.as_dict())


@router.get("/{policy_id}/effective/{user_id}", response_model=EffectivePermissionRead)
def get_user_effective_permission(
    policy_id: str,
    user_id: str,
    _user: CanManage,
    service: Service,
) -> EffectivePermissionRead:
    target = _user_context(user_id)
    try:
        effective = service.effective_permission(policy_id, target)
    except PolicyErrors as exc:
        _handle_policy_error(exc)
        raise
    return EffectivePermissionRead(policy_id=policy_id, user_id=user_id, **effective.as_dict())
