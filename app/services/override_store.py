from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlalchemy.orm.attributes import flag_modified
from sqlmodel import Session

from app.domain.models import User
from app.domain.permissions import Overrides
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.services.identity_service import NotFoundError


class OverrideStore:
    """Reads and writes the per-user override blob stored on ``users.extra_permissions``."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_user(self, session: Session, user_id: str) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def get_overrides(self, user_id: str) -> Overrides:
        with self._session() as session:
            user = self._get_user(session, user_id)
            return Overrides.from_raw(user.extra_permissions)

    def _write(self, user_id: str, mutate: Callable[[dict[str, Any]], dict[str, Any]], actor_id: str | None) -> Overrides:
        with self._session() as session:
            user = self._get_user(session, user_id)
            parsed = Overrides.from_raw(mutate(Overrides.from_raw(user.extra_permissions).as_dict()))
            user.extra_permissions = parsed.as_dict()
            flag_modified(user, "extra_permissions")
            session.add(user)
            session.commit()

        event_bus.publish_dict(
            "user.overrides.updated",
            {"user_id": user_id, "overrides": parsed.as_dict()},
            actor_id=actor_id,
        )
        return parsed

    def replace_overrides(
        self,
        user_id: str,
        overrides: Overrides | dict[str, Any],
        actor_id: str | None = None,
    ) -> Overrides:
        replacement = Overrides.from_raw(overrides).as_dict()
        return self._write(user_id, lambda _current: replacement, actor_id)

    def set_dashboard_override(
        self,
        user_id: str,
        dashboard_id: str,
        value: bool | None,
        *,
        department: bool = False,
        actor_id: str | None = None,
    ) -> Overrides:
        key = "department_dashboards" if department else "dashboards"

        def mutate(current: dict[str, Any]) -> dict[str, Any]:
            if value is None:
                current[key].pop(dashboard_id, None)
            else:
                current[key][dashboard_id] = value
            return current

        return self._write(user_id, mutate, actor_id)

    def set_page_override(
        self,
        user_id: str,
        dashboard_id: str,
        page_id: str,
        value: bool | None,
        *,
        department: bool = False,
        actor_id: str | None = None,
    ) -> Overrides:
        key = "department_pages" if department else "pages"

        def mutate(current: dict[str, Any]) -> dict[str, Any]:
            pages = current[key].setdefault(dashboard_id, {})
            if value is None:
                pages.pop(page_id, None)
                if not pages:
                    current[key].pop(dashboard_id, None)
            else:
                pages[page_id] = value
            return current

        return self._write(user_id, mutate, actor_id)
