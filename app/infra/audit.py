from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.domain.models import AuditLog, now_utc
from app.infra.db import engine

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
AUDITED_READ_PATH_KEYWORDS = ("/effective",)
UNAUDITED_PATHS = {"/healthz", "/readyz", "/docs", "/openapi.json"}
AUDIT_CONTEXT_STATE_KEY = "_audit_context"
USER_CONTEXT_STATE_KEY = "user_context"


def write_audit_log(
    *,
    actor_id: str | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> None:
    with Session(engine) as session:
        session.add(
            AuditLog(
                actor_id=actor_id,
                action=action,
                resource=resource,
                method=method,
                status_code=status_code,
                detail=detail or {},
            )
        )
        session.commit()


def _deep_merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def audit_outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


def should_audit_request(method: str, path: str) -> bool:
    if path in UNAUDITED_PATHS:
        return False
    if method in WRITE_METHODS:
        return True
    return any(keyword in path for keyword in AUDITED_READ_PATH_KEYWORDS)


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    """Attach an explicit action, resource or detail to the request's audit row."""
    current = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
    context = dict(current) if isinstance(current, dict) else {}
    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource
    if detail:
        previous = context.get("detail")
        context["detail"] = _deep_merge(previous, detail) if isinstance(previous, dict) else detail
    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


def _actor_detail(request: Request) -> dict[str, Any]:
    user = getattr(request.state, USER_CONTEXT_STATE_KEY, None)
    if user is not None:
        return {
            "actor_id": user.id,
            "primary_role_id": user.primary_role_id,
            "additional_role_ids": list(user.additional_role_ids),
            "department_id": user.department_id,
        }
    claims = getattr(request.state, "claims", None)
    return {"actor_id": claims.get("sub") if isinstance(claims, dict) else None}


def build_audit_detail(
    request: Request,
    *,
    action: str,
    resource: str,
    status_code: int,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    route = request.scope.get("route")
    detail: dict[str, Any] = {
        "who": _actor_detail(request),
        "when": {"request_ts": now_utc().isoformat()},
        "where": {
            "path": request.url.path,
            "route": getattr(route, "path", request.url.path),
            "query": request.url.query,
            "client_ip": request.client.host if request.client is not None else None,
        },
        "what": {"action": action, "resource": resource, "method": request.method},
        "result": {"status_code": status_code, "outcome": audit_outcome(status_code)},
    }
    return _deep_merge(detail, extra) if extra else detail


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        path = request.url.path
        method = request.method

        raw_context = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
        context = raw_context if isinstance(raw_context, dict) else {}
        if path in UNAUDITED_PATHS or (not context and not should_audit_request(method, path)):
            return response

        action = context.get("action") if isinstance(context.get("action"), str) else f"{method}:{path}"
        resource = context.get("resource") if isinstance(context.get("resource"), str) else path
        extra = context.get("detail") if isinstance(context.get("detail"), dict) else None
        detail = build_audit_detail(
            request,
            action=action,
            resource=resource,
            status_code=response.status_code,
            extra=extra,
        )
        try:
            write_audit_log(
                actor_id=detail["who"]["actor_id"],
                action=action,
                resource=resource,
                method=method,
                status_code=response.status_code,
                detail=detail,
            )
        except Exception:
            logger.exception("failed to write audit log for %s %s", method, path)
        return response
