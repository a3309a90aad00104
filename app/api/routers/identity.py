from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from app.api.deps import get_current_user, require_crud
from app.domain.models import (
    BootstrapAdminRequest,
    DevLoginRequest,
    OverridesPayload,
    OverrideValueRequest,
    RoleCreate,
    RoleRead,
    RoleUpdate,
    TokenResponse,
    UserCreate,
    UserRead,
    UserRolesUpdate,
    UserUpdate,
)
from app.domain.permissions import (
    CRUD_CREATE,
    CRUD_DELETE,
    CRUD_READ,
    CRUD_RESOURCE_ROLES,
    CRUD_RESOURCE_USERS,
    CRUD_UPDATE,
    UserContext,
)
from app.infra.audit import set_audit_context
from app.infra.auth import create_access_token
from app.services.identity_service import (
    AuthError,
    ConflictError,
    IdentityService,
    NotFoundError,
    PermissionDeniedError,
)
from app.services.override_store import OverrideStore

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


def get_override_store() -> OverrideStore:
    return OverrideStore()


CurrentUser = Annotated[UserContext, Depends(get_current_user)]
Service = Annotated[IdentityService, Depends(get_identity_service)]
Store = Annotated[OverrideStore, Depends(get_override_store)]

IdentityErrors = (NotFoundError, ConflictError, AuthError, PermissionDeniedError)


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    if isinstance(exc, PermissionDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    raise exc


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> UserRead:
    try:
        user = service.bootstrap_admin(payload)
        return UserRead.model_validate(user)
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        user = service.authenticate(payload.username, payload.password)
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise
    return TokenResponse(access_token=create_access_token(user_id=user.id))


@router.post(
    "/roles",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_ROLES, CRUD_CREATE))],
)
def create_role(payload: RoleCreate, request: Request, user: CurrentUser, service: Service) -> RoleRead:
    set_audit_context(request, action="identity.role.create", detail={"what": {"role_id": payload.id}})
    try:
        service.ensure_can_change_role(user, None, grants_full_access=payload.full_access)
        role = service.create_role(payload, actor_id=user.id)
        return RoleRead.model_validate(role)
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/roles",
    response_model=list[RoleRead],
    dependencies=[Depends(require_crud(CRUD_RESOURCE_ROLES, CRUD_READ))],
)
def list_roles(service: Service) -> list[RoleRead]:
    return [RoleRead.model_validate(item) for item in service.list_roles()]


@router.get(
    "/roles/{role_id}",
    response_model=RoleRead,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_ROLES, CRUD_READ))],
)
def get_role(role_id: str, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.get_role(role_id))
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.patch(
    "/roles/{role_id}",
    response_model=RoleRead,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_ROLES, CRUD_UPDATE))],
)
def update_role(role_id: str, payload: RoleUpdate, request: Request, user: CurrentUser, service: Service) -> RoleRead:
    set_audit_context(request, action="identity.role.update", detail={"what": {"role_id": role_id}})
    try:
        service.ensure_can_change_role(user, role_id, grants_full_access=payload.full_access is True)
        role = service.update_role(role_id, payload, actor_id=user.id)
        return RoleRead.model_validate(role)
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.delete(
    "/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_ROLES, CRUD_DELETE))],
)
def delete_role(role_id: str, request: Request, user: CurrentUser, service: Service) -> Response:
    set_audit_context(request, action="identity.role.delete", detail={"what": {"role_id": role_id}})
    try:
        service.ensure_can_change_role(user, role_id)
        service.delete_role(role_id, actor_id=user.id)
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/users",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_USERS, CRUD_CREATE))],
)
def create_user(payload: UserCreate, user: CurrentUser, service: Service) -> UserRead:
    try:
        service.ensure_can_assign_roles(user, [payload.primary_role_id or "", *payload.additional_role_ids])
        return UserRead.model_validate(service.create_user(payload))
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/users",
    response_model=list[UserRead],
    dependencies=[Depends(require_crud(CRUD_RESOURCE_USERS, CRUD_READ))],
)
def list_users(service: Service) -> list[UserRead]:
    return [UserRead.model_validate(item) for item in service.list_users()]


@router.get(
    "/users/{user_id}",
    response_model=UserRead,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_USERS, CRUD_READ))],
)
def get_user(user_id: str, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.get_user(user_id))
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.patch(
    "/users/{user_id}",
    response_model=UserRead,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_USERS, CRUD_UPDATE))],
)
def update_user(user_id: str, payload: UserUpdate, user: CurrentUser, service: Service) -> UserRead:
    try:
        service.ensure_can_update_user(user, user_id, payload)
        return UserRead.model_validate(service.update_user(user_id, payload))
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.delete(
    "/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_USERS, CRUD_DELETE))],
)
def delete_user(user_id: str, user: CurrentUser, service: Service) -> Response:
    if user_id == user.id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="cannot delete yourself")
    try:
        service.ensure_can_manage_user(user, user_id)
        service.delete_user(user_id)
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put(
    "/users/{user_id}/roles",
    response_model=UserRead,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_ROLES, CRUD_UPDATE))],
)
def set_user_roles(
    user_id: str,
    payload: UserRolesUpdate,
    request: Request,
    user: CurrentUser,
    service: Service,
) -> UserRead:
    set_audit_context(
        request,
        action="identity.user.roles.update",
        detail={
            "what": {
                "user_id": user_id,
                "primary_role_id": payload.primary_role_id,
                "additional_role_ids": payload.additional_role_ids,
            }
        },
    )
    try:
        service.ensure_can_manage_user(user, user_id)
        service.ensure_can_assign_roles(user, [payload.primary_role_id, *payload.additional_role_ids])
        return UserRead.model_validate(service.set_user_roles(user_id, payload, actor_id=user.id))
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/users/{user_id}/overrides",
    response_model=OverridesPayload,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_USERS, CRUD_READ))],
)
def get_user_overrides(user_id: str, store: Store) -> OverridesPayload:
    try:
        return OverridesPayload.model_validate(store.get_overrides(user_id).as_dict())
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.put(
    "/users/{user_id}/overrides",
    response_model=OverridesPayload,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_ROLES, CRUD_UPDATE))],
)
def replace_user_overrides(
    user_id: str,
    payload: OverridesPayload,
    request: Request,
    user: CurrentUser,
    service: Service,
    store: Store,
) -> OverridesPayload:
    set_audit_context(request, action="identity.user.overrides.replace", detail={"what": {"user_id": user_id}})
    try:
        service.ensure_can_manage_user(user, user_id)
        overrides = store.replace_overrides(user_id, payload.model_dump(), actor_id=user.id)
        return OverridesPayload.model_validate(overrides.as_dict())
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.put(
    "/users/{user_id}/overrides/dashboards/{dashboard_id}",
    response_model=OverridesPayload,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_ROLES, CRUD_UPDATE))],
)
def set_dashboard_override(
    user_id: str,
    dashboard_id: str,
    payload: OverrideValueRequest,
    request: Request,
    user: CurrentUser,
    service: Service,
    store: Store,
    department: bool = False,
) -> OverridesPayload:
    set_audit_context(
        request,
        action="identity.user.overrides.dashboard",
        detail={"what": {"user_id": user_id, "dashboard_id": dashboard_id, "value": payload.value}},
    )
    try:
        service.ensure_can_manage_user(user, user_id)
        overrides = store.set_dashboard_override(
            user_id,
            dashboard_id,
            payload.value,
            department=department,
            actor_id=user.id,
        )
        return OverridesPayload.model_validate(overrides.as_dict())
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise


@router.put(
    "/users/{user_id}/overrides/pages/{dashboard_id}/{page_id}",
    response_model=OverridesPayload,
    dependencies=[Depends(require_crud(CRUD_RESOURCE_ROLES, CRUD_UPDATE))],
)
def set_page_override(
    user_id: str,
    dashboard_id: str,
    page_id: str,
    payload: OverrideValueRequest,
    request: Request,
    user: CurrentUser,
    service: Service,
    store: Store,
    department: bool = False,
) -> OverridesPayload:
    set_audit_context(
        request,
        action="identity.user.overrides.page",
        detail={"what": {"user_id": user_id, "dashboard_id": dashboard_id, "page_id": page_id, "value": payload.value}},
    )
    try:
        service.ensure_can_manage_user(user, user_id)
        overrides = store.set_page_override(
            user_id,
            dashboard_id,
            page_id,
            payload.value,
            department=department,
            actor_id=user.id,
        )
        return OverridesPayload.model_validate(overrides.as_dict())
    except IdentityErrors as exc:
        _handle_identity_error(exc)
        raise
