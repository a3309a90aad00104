from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.catalog import (
    ROLE_ADMIN,
    ROLE_BDM,
    ROLE_FINANCE_MANAGER,
    ROLE_HR,
    ROLE_HRM,
    ROLE_QAM,
    ROLE_SDM,
    ROLE_TEMPLATES,
)
from app.domain.models import (
    Policy,
    PolicyCreate,
    PolicyDashboardPermission,
    PolicyDashboardPermissionWrite,
    PolicyPermission,
    PolicyPermissionWrite,
    PolicyUpdate,
    PolicyVersion,
    Role,
    User,
    now_utc,
)
from app.domain.permissions import (
    EffectivePermission,
    GrantUpdate,
    Operation,
    PolicyDashboardAccess,
    UserContext,
)
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.services.resource_permission_resolver import (
    DASHBOARD_GRANT_FIELDS,
    ResourcePermissionResolver,
    normalize_grant,
)

logger = logging.getLogger(__name__)

FULL_POLICY_ROLES = (ROLE_ADMIN, ROLE_HR, ROLE_HRM)
ANALYTICS_POLICY_ROLES = (ROLE_SDM, ROLE_BDM, ROLE_QAM, ROLE_FINANCE_MANAGER)


class PolicyError(Exception):
    pass


class NotFoundError(PolicyError):
    pass


class ConflictError(PolicyError):
    pass


class GrantValidationError(PolicyError):
    pass


class PermissionDeniedError(PolicyError):
    pass


def default_dashboard_grant(role: str) -> dict[str, bool]:
    if role in FULL_POLICY_ROLES:
        return {name: True for name in DASHBOARD_GRANT_FIELDS}
    values = {name: False for name in DASHBOARD_GRANT_FIELDS}
    values["can_view_policies"] = True
    if role in ANALYTICS_POLICY_ROLES:
        values["can_view_analytics"] = True
    return values


def seed_policy_dashboard_defaults(session: Session) -> int:
    existing = set(
        session.exec(
            select(PolicyDashboardPermission.role).where(col(PolicyDashboardPermission.role).is_not(None))
        ).all()
    )
    created = 0
    for template in ROLE_TEMPLATES:
        role = template["key"]
        if role in existing:
            continue
        session.add(PolicyDashboardPermission(role=role, **default_dashboard_grant(role)))
        created += 1
    return created


def _check_grant_target(user_id: str | None, role: str | None) -> None:
    if (user_id is None) == (role is None):
        raise GrantValidationError("exactly one of user_id or role must be set")


class PolicyService:
    def __init__(self) -> None:
        self._resolver = ResourcePermissionResolver()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_policy(self, session: Session, policy_id: str) -> Policy:
        policy = session.get(Policy, policy_id)
        if policy is None:
            raise NotFoundError("policy not found")
        return policy

    def _policy_grants(self, session: Session, policy_id: str) -> list[PolicyPermission]:
        statement = select(PolicyPermission).where(PolicyPermission.policy_id == policy_id)
        return list(session.exec(statement).all())

    # Dashboard-level grants

    def dashboard_access(self, user: UserContext) -> PolicyDashboardAccess:
        with self._session() as session:
            rows = session.exec(select(PolicyDashboardPermission)).all()
            return self._resolver.resolve_dashboard_access(user, rows)

    def require_capability(self, user: UserContext, capability: str) -> PolicyDashboardAccess:
        access = self.dashboard_access(user)
        if not getattr(access, capability, False):
            raise PermissionDeniedError(f"missing policy capability: {capability}")
        return access

    def list_dashboard_grants(self) -> list[PolicyDashboardPermission]:
        with self._session() as session:
            statement = select(PolicyDashboardPermission).order_by(
                col(PolicyDashboardPermission.role),
                col(PolicyDashboardPermission.user_id),
            )
            return list(session.exec(statement).all())

    def upsert_dashboard_grant(
        self,
        payload: PolicyDashboardPermissionWrite,
        actor_id: str | None = None,
    ) -> PolicyDashboardPermission:
        _check_grant_target(payload.user_id, payload.role)
        updates = payload.model_dump(exclude={"user_id", "role"}, exclude_none=True)
        with self._session() as session:
            if payload.user_id is not None and session.get(User, payload.user_id) is None:
                raise NotFoundError("user not found")
            statement = select(PolicyDashboardPermission)
            if payload.user_id is not None:
                statement = statement.where(PolicyDashboardPermission.user_id == payload.user_id)
            else:
                statement = statement.where(PolicyDashboardPermission.role == payload.role)
            row = session.exec(statement).first()
            if row is None:
                base = default_dashboard_grant(payload.role) if payload.role is not None else {}
                row = PolicyDashboardPermission(user_id=payload.user_id, role=payload.role, **base)
            for key, value in updates.items():
                setattr(row, key, value)
            row.granted_by = actor_id
            row.updated_at = now_utc()
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("dashboard grant conflict") from exc
            session.refresh(row)

        event_bus.publish_dict(
            "policy.dashboard_grant.updated",
            {"grant_id": row.id, "user_id": row.user_id, "role": row.role, **updates},
            actor_id=actor_id,
        )
        return row

    # Policies

    def create_policy(self, payload: PolicyCreate, actor_id: str | None = None) -> Policy:
        with self._session() as session:
            policy = Policy(
                name=payload.name,
                content=payload.content,
                is_active=payload.is_active,
                created_by=actor_id,
                updated_by=actor_id,
            )
            session.add(policy)
            session.flush()
            for role in FULL_POLICY_ROLES:
                session.add(
                    PolicyPermission(
                        policy_id=policy.id,
                        role=role,
                        can_read=True,
                        can_write=True,
                        can_delete=True,
                        granted_by=actor_id,
                    )
                )
            session.commit()
            session.refresh(policy)

        event_bus.publish_dict("policy.created", {"policy_id": policy.id, "name": policy.name}, actor_id=actor_id)
        return policy

    def list_policies(self, viewer: UserContext | None = None) -> list[Policy]:
        with self._session() as session:
            rows = list(session.exec(select(Policy).order_by(col(Policy.name))).all())
            if viewer is None:
                return rows
            grants = list(session.exec(select(PolicyPermission)).all())
        return [item for item in rows if self._resolver.resolve(item, viewer, grants).can_read]

    def get_policy(self, policy_id: str) -> Policy:
        with self._session() as session:
            return self._get_policy(session, policy_id)

    def update_policy(self, policy_id: str, payload: PolicyUpdate, actor_id: str | None = None) -> Policy:
        with self._session() as session:
            policy = self._get_policy(session, policy_id)
            new_name = payload.name if payload.name is not None else policy.name
            new_content = payload.content if payload.content is not None else policy.content
            content_changed = new_name != policy.name or new_content != policy.content
            if content_changed:
                session.add(
                    PolicyVersion(
                        policy_id=policy.id,
                        version=policy.version,
                        name=policy.name,
                        content=policy.content,
                        created_by=actor_id,
                    )
                )
                policy.version += 1
                policy.name = new_name
                policy.content = new_content
            if payload.is_active is not None:
                policy.is_active = payload.is_active
            policy.updated_by = actor_id
            policy.updated_at = now_utc()
            session.add(policy)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("policy version conflict") from exc
            session.refresh(policy)

        event_bus.publish_dict(
            "policy.updated",
            {"policy_id": policy.id, "version": policy.version, "content_changed": content_changed},
            actor_id=actor_id,
        )
        return policy

    def delete_policy(self, policy_id: str, actor_id: str | None = None) -> None:
        with self._session() as session:
            policy = self._get_policy(session, policy_id)
            for grant in self._policy_grants(session, policy_id):
                session.delete(grant)
            versions = session.exec(select(PolicyVersion).where(PolicyVersion.policy_id == policy_id)).all()
            for version in versions:
                session.delete(version)
            session.delete(policy)
            session.commit()

        event_bus.publish_dict("policy.deleted", {"policy_id": policy_id}, actor_id=actor_id)

    def list_versions(self, policy_id: str) -> list[PolicyVersion]:
        with self._session() as session:
            self._get_policy(session, policy_id)
            statement = (
                select(PolicyVersion)
                .where(PolicyVersion.policy_id == policy_id)
                .order_by(col(PolicyVersion.version).desc())
            )
            return list(session.exec(statement).all())

    # Per-policy grants

    def list_grants(self, policy_id: str) -> list[PolicyPermission]:
        with self._session() as session:
            self._get_policy(session, policy_id)
            return self._policy_grants(session, policy_id)

    def upsert_grant(
        self,
        policy_id: str,
        payload: PolicyPermissionWrite,
        actor_id: str | None = None,
    ) -> PolicyPermission:
        update = GrantUpdate(can_read=payload.can_read, can_write=payload.can_write, can_delete=payload.can_delete)
        return self._write_grant(policy_id, update, actor_id, user_id=payload.user_id, role=payload.role)

    def set_user_grant(
        self,
        policy_id: str,
        user_id: str,
        update: GrantUpdate,
        actor_id: str | None = None,
    ) -> PolicyPermission:
        return self._write_grant(policy_id, update, actor_id, user_id=user_id)

    def set_role_grant(
        self,
        policy_id: str,
        role: str,
        update: GrantUpdate,
        actor_id: str | None = None,
    ) -> PolicyPermission:
        return self._write_grant(policy_id, update, actor_id, role=role)

    def _write_grant(
        self,
        policy_id: str,
        update: GrantUpdate,
        actor_id: str | None,
        *,
        user_id: str | None = None,
        role: str | None = None,
    ) -> PolicyPermission:
        _check_grant_target(user_id, role)
        with self._session() as session:
            self._get_policy(session, policy_id)
            statement = select(PolicyPermission).where(PolicyPermission.policy_id == policy_id)
            if user_id is not None:
                if session.get(User, user_id) is None:
                    raise NotFoundError("user not found")
                statement = statement.where(PolicyPermission.user_id == user_id)
            else:
                if session.get(Role, role) is None:
                    raise NotFoundError("role not found")
                statement = statement.where(PolicyPermission.role == role)
            row = session.exec(statement).first()

            existing: tuple[bool, bool, bool] | None = None
            if row is not None:
                existing = (row.can_read, row.can_write, row.can_delete)
            elif user_id is not None:
                # A new individual row starts from what the user currently gets through the role.
                inherited = self._role_default(session, policy_id, user_id)
                existing = (inherited.can_read, inherited.can_write, inherited.can_delete)
            can_read, can_write, can_delete = normalize_grant(update, existing)

            if row is None:
                row = PolicyPermission(policy_id=policy_id, user_id=user_id, role=role)
            row.can_read = can_read
            row.can_write = can_write
            row.can_delete = can_delete
            row.granted_by = actor_id
            row.updated_at = now_utc()
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("grant already exists") from exc
            session.refresh(row)

        event_bus.publish_dict(
            "policy.grant.updated",
            {
                "policy_id": policy_id,
                "user_id": row.user_id,
                "role": row.role,
                "can_read": row.can_read,
                "can_write": row.can_write,
                "can_delete": row.can_delete,
            },
            actor_id=actor_id,
        )
        return row

    def _role_default(self, session: Session, policy_id: str, user_id: str) -> EffectivePermission:
        user = session.get(User, user_id)
        if user is None or user.primary_role_id is None:
            return EffectivePermission()
        row = session.exec(
            select(PolicyPermission)
            .where(PolicyPermission.policy_id == policy_id)
            .where(PolicyPermission.role == user.primary_role_id)
        ).first()
        if row is None:
            return EffectivePermission()
        return EffectivePermission(can_read=row.can_read, can_write=row.can_write, can_delete=row.can_delete)

    def reset_user_grant(self, policy_id: str, user_id: str, actor_id: str | None = None) -> None:
        self._delete_grant(policy_id, actor_id, user_id=user_id)

    def delete_role_grant(self, policy_id: str, role: str, actor_id: str | None = None) -> None:
        self._delete_grant(policy_id, actor_id, role=role)

    def _delete_grant(
        self,
        policy_id: str,
        actor_id: str | None,
        *,
        user_id: str | None = None,
        role: str | None = None,
    ) -> None:
        with self._session() as session:
            self._get_policy(session, policy_id)
            statement = select(PolicyPermission).where(PolicyPermission.policy_id == policy_id)
            if user_id is not None:
                statement = statement.where(PolicyPermission.user_id == user_id)
            else:
                statement = statement.where(PolicyPermission.role == role)
            row = session.exec(statement).first()
            if row is None:
                raise NotFoundError("grant not found")
            session.delete(row)
            session.commit()

        event_bus.publish_dict(
            "policy.grant.deleted",
            {"policy_id": policy_id, "user_id": user_id, "role": role},
            actor_id=actor_id,
        )

    def effective_permission(self, policy_id: str, user: UserContext) -> EffectivePermission:
        with self._session() as session:
            policy = self._get_policy(session, policy_id)
            grants = self._policy_grants(session, policy_id)
        return self._resolver.resolve(policy, user, grants)

    def require_policy_operation(self, policy_id: str, user: UserContext, operation: Operation) -> Policy:
        with self._session() as session:
            policy = self._get_policy(session, policy_id)
            grants = self._policy_grants(session, policy_id)
        effective = self._resolver.resolve(policy, user, grants)
        allowed: dict[Operation, bool] = {
            Operation.READ: effective.can_read,
            Operation.WRITE: effective.can_write,
            Operation.DELETE: effective.can_delete,
        }
        if not allowed.get(operation, False):
            logger.info("user %s denied %s on policy %s (source=%s)", user.id, operation, policy_id, effective.source)
            raise PermissionDeniedError(f"policy {operation} not permitted")
        return policy

    def summary(self) -> dict[str, Any]:
        with self._session() as session:
            policies = session.exec(select(Policy)).all()
        return {
            "total": len(policies),
            "active": sum(1 for item in policies if item.is_active),
            "inactive": sum(1 for item in policies if not item.is_active),
        }
