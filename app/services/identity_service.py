from __future__ import annotations

import hashlib
import logging
import os
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, select

from app.domain.catalog import DEFAULT_DASHBOARD_CATALOG, ROLE_ADMIN, ROLE_TEMPLATES, RoleCatalog, template_dashboards
from app.domain.models import (
    BootstrapAdminRequest,
    Role,
    RoleCreate,
    RoleUpdate,
    User,
    UserCreate,
    UserRolesUpdate,
    UserUpdate,
    now_utc,
)
from app.domain.permissions import UserContext
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.services.permission_resolver import PermissionResolver
from app.services.policy_service import seed_policy_dashboard_defaults

logger = logging.getLogger(__name__)

ROLE_CATALOG_CACHE = os.getenv("ROLE_CATALOG_CACHE", "1") != "0"
ROLE_EVENTS_TOPIC = "role.*"

# Entries are keyed by database URL and tagged with the role table version they were loaded at.
_role_catalog_cache: dict[str, tuple[tuple[int, Any], RoleCatalog]] = {}


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class AuthError(IdentityError):
    pass


class PermissionDeniedError(IdentityError):
    pass


def invalidate_role_catalog(_event: Any = None) -> None:
    _role_catalog_cache.clear()


event_bus.subscribe(ROLE_EVENTS_TOPIC, invalidate_role_catalog)


def _role_values(payload: RoleCreate | RoleUpdate) -> dict[str, Any]:
    if isinstance(payload, RoleUpdate):
        return payload.model_dump(exclude_unset=True, exclude_none=True)
    return payload.model_dump(exclude={"id"})


class IdentityService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "access-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def _ensure_role_ids(self, session: Session, role_ids: list[str]) -> None:
        wanted = {item for item in role_ids if item}
        if not wanted:
            return
        found = set(session.exec(select(Role.id).where(col(Role.id).in_(wanted))).all())
        missing = sorted(wanted - found)
        if missing:
            raise NotFoundError(f"role not found: {', '.join(missing)}")

    def _seed_roles(self, session: Session) -> list[Role]:
        existing = {item.id for item in session.exec(select(Role)).all()}
        created: list[Role] = []
        for template in ROLE_TEMPLATES:
            if template["key"] in existing:
                continue
            role = Role(
                id=template["key"],
                name=template["name"],
                description=f"default {template['name']} role",
                full_access=bool(template.get("full_access", False)),
                default_dashboards=template_dashboards(template, DEFAULT_DASHBOARD_CATALOG),
                crud_permissions=dict(template.get("crud_permissions", {})),
            )
            session.add(role)
            created.append(role)
        return created

    def count_users(self) -> int:
        with self._session() as session:
            return len(session.exec(select(User.id)).all())

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        with self._session() as session:
            if session.exec(select(User.id)).first() is not None:
                raise ConflictError("already initialized")

            created_roles = self._seed_roles(session)
            seed_policy_dashboard_defaults(session)

            admin_user = User(
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=True,
                primary_role_id=ROLE_ADMIN,
            )
            session.add(admin_user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists") from exc
            session.refresh(admin_user)

        invalidate_role_catalog()
        logger.info("bootstrapped admin %s with %d seeded role(s)", admin_user.id, len(created_roles))
        return admin_user

    def authenticate(self, username: str, password: str) -> User:
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username)).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if user.password_hash != self._hash_password(password):
                raise AuthError("invalid credentials")
            return user

    def _role_table_version(self, session: Session) -> tuple[int, Any]:
        count, latest = session.exec(select(func.count(col(Role.id)), func.max(Role.updated_at))).one()
        return int(count), latest

    def role_catalog(self) -> RoleCatalog:
        """Current role catalog.

        A cached catalog is reused only while the role count and the newest
        ``updated_at`` are unchanged, so writes from other processes are seen
        on the next call.
        """
        key = str(get_engine().url)
        with self._session() as session:
            version = self._role_table_version(session)
            cached = _role_catalog_cache.get(key) if ROLE_CATALOG_CACHE else None
            if cached is not None and cached[0] == version:
                return cached[1]
            catalog = RoleCatalog.from_records(session.exec(select(Role)).all())
        if ROLE_CATALOG_CACHE:
            _role_catalog_cache[key] = (version, catalog)
        return catalog

    def resolver(self) -> PermissionResolver:
        return PermissionResolver(role_catalog=self.role_catalog())

    def user_context(self, user_id: str) -> UserContext:
        user = self.get_user(user_id)
        if not user.is_active:
            raise AuthError("user disabled")
        return UserContext.from_user(user)

    def is_full_access(self, user: UserContext) -> bool:
        return self.resolver().aggregate(user).full_access

    def ensure_can_manage_user(self, actor: UserContext, target_user_id: str) -> None:
        """Roles and overrides are never self-service, and full-access users are managed only by their peers."""
        if actor.id == target_user_id:
            raise PermissionDeniedError("cannot change your own roles or overrides")
        target = UserContext.from_user(self.get_user(target_user_id))
        if self.is_full_access(target) and not self.is_full_access(actor):
            raise PermissionDeniedError("only full-access users may change a full-access user")

    def ensure_can_assign_roles(self, actor: UserContext, role_ids: list[str]) -> None:
        if self.is_full_access(actor):
            return
        catalog = self.role_catalog()
        elevated = sorted(
            {role_id for role_id in role_ids if (role := catalog.get(role_id)) is not None and role.full_access}
        )
        if elevated:
            raise PermissionDeniedError(f"only full-access users may assign role: {', '.join(elevated)}")

    def ensure_can_change_role(
        self,
        actor: UserContext,
        role_id: str | None,
        *,
        grants_full_access: bool = False,
    ) -> None:
        if self.is_full_access(actor):
            return
        if grants_full_access:
            raise PermissionDeniedError("only full-access users may grant full access")
        if role_id is None:
            return
        if role_id == actor.primary_role_id or role_id in actor.additional_role_ids:
            raise PermissionDeniedError("cannot change a role you hold")
        role = self.role_catalog().get(role_id)
        if role is not None and role.full_access:
            raise PermissionDeniedError("only full-access users may change a full-access role")

    def ensure_can_update_user(self, actor: UserContext, target_user_id: str, payload: UserUpdate) -> None:
        if actor.id == target_user_id:
            changed = set(payload.model_dump(exclude_unset=True)) - {"password"}
            if changed:
                raise PermissionDeniedError(f"cannot change your own {', '.join(sorted(changed))}")
            return
        self.ensure_can_manage_user(actor, target_user_id)

    def create_role(self, payload: RoleCreate, actor_id: str | None = None) -> Role:
        with self._session() as session:
            if session.get(Role, payload.id) is not None:
                raise ConflictError("role already exists")
            role = Role(id=payload.id, **_role_values(payload))
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists") from exc
            session.refresh(role)

        event_bus.publish_dict("role.created", {"role_id": role.id}, actor_id=actor_id)
        return role

    def list_roles(self) -> list[Role]:
        with self._session() as session:
            return list(session.exec(select(Role).order_by(col(Role.id))).all())

    def get_role(self, role_id: str) -> Role:
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            return role

    def update_role(self, role_id: str, payload: RoleUpdate, actor_id: str | None = None) -> Role:
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            for key, value in _role_values(payload).items():
                setattr(role, key, value)
            role.updated_at = now_utc()
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists") from exc
            session.refresh(role)

        event_bus.publish_dict("role.updated", {"role_id": role.id}, actor_id=actor_id)
        return role

    def delete_role(self, role_id: str, actor_id: str | None = None) -> None:
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            holder = session.exec(select(User.id).where(User.primary_role_id == role_id)).first()
            if holder is not None:
                raise ConflictError("role is the primary role of existing users")
            session.delete(role)
            session.commit()

        event_bus.publish_dict("role.deleted", {"role_id": role_id}, actor_id=actor_id)

    def create_user(self, payload: UserCreate) -> User:
        with self._session() as session:
            self._ensure_role_ids(session, [payload.primary_role_id or "", *payload.additional_role_ids])
            user = User(
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=payload.is_active,
                primary_role_id=payload.primary_role_id,
                additional_role_ids=list(dict.fromkeys(payload.additional_role_ids)),
                department_id=payload.department_id,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists") from exc
            session.refresh(user)
            return user

    def list_users(self) -> list[User]:
        with self._session() as session:
            return list(session.exec(select(User).order_by(col(User.username))).all())

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def update_user(self, user_id: str, payload: UserUpdate) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            updates = payload.model_dump(exclude_unset=True)
            if "password" in updates:
                password = updates.pop("password")
                if password is not None:
                    user.password_hash = self._hash_password(password)
            for key, value in updates.items():
                if key == "is_active" and value is None:
                    continue
                setattr(user, key, value)
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def delete_user(self, user_id: str) -> None:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            session.delete(user)
            session.commit()

    def set_user_roles(self, user_id: str, payload: UserRolesUpdate, actor_id: str | None = None) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            self._ensure_role_ids(session, [payload.primary_role_id, *payload.additional_role_ids])
            user.primary_role_id = payload.primary_role_id
            user.additional_role_ids = [
                item for item in dict.fromkeys(payload.additional_role_ids) if item != payload.primary_role_id
            ]
            session.add(user)
            session.commit()
            session.refresh(user)

        event_bus.publish_dict(
            "user.roles.updated",
            {
                "user_id": user.id,
                "primary_role_id": user.primary_role_id,
                "additional_role_ids": list(user.additional_role_ids),
            },
            actor_id=actor_id,
        )
        return user
