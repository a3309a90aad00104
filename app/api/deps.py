from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.domain.catalog import DASHBOARD_EMPLOYEE_MANAGEMENT
from app.domain.permissions import AccessQuery, UserContext
from app.infra.audit import USER_CONTEXT_STATE_KEY
from app.infra.auth import decode_access_token
from app.services.access_gate import AccessGate
from app.services.identity_service import AuthError, IdentityService, NotFoundError
from app.services.policy_service import PermissionDeniedError, PolicyService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/identity/dev-login")

CRUD_DASHBOARD = DASHBOARD_EMPLOYEE_MANAGEMENT


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except (jwt.PyJWTError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def get_current_user(
    request: Request,
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> UserContext:
    try:
        user = IdentityService().user_context(claims["sub"])
    except (NotFoundError, AuthError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    setattr(request.state, USER_CONTEXT_STATE_KEY, user)
    return user


def require_crud(resource: str, action: str) -> Callable[[UserContext], UserContext]:
    def _checker(
        user: Annotated[UserContext, Depends(get_current_user)],
    ) -> UserContext:
        query = AccessQuery(dashboard_id=CRUD_DASHBOARD, crud_resource=resource, action_key=action)
        if not IdentityService().resolver().resolve(user, query):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {resource}:{action}",
            )
        return user

    return _checker


def require_navigation(path: str) -> Callable[[UserContext], UserContext]:
    def _checker(
        user: Annotated[UserContext, Depends(get_current_user)],
    ) -> UserContext:
        gate = AccessGate(IdentityService().resolver())
        if not gate.can_navigate(user, path):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Navigation denied: {path}",
            )
        return user

    return _checker


def require_policy_capability(capability: str) -> Callable[[UserContext], UserContext]:
    def _checker(
        user: Annotated[UserContext, Depends(get_current_user)],
    ) -> UserContext:
        try:
            PolicyService().require_capability(user, capability)
        except PermissionDeniedError as exc:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=str(exc),
            ) from exc
        return user

    return _checker
