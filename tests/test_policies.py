from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, create_engine, select

from app import main as app_main
from app.domain.models import AuditLog, Policy, PolicyPermission
from app.infra import audit, db, events


@pytest.fixture()
def policy_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "policy_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient, username: str, password: str) -> str:
    response = client.post(
        "/api/identity/dev-login",
        json={"username": username, "password": password},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def _setup(client: TestClient) -> dict[str, str]:
    bootstrap = client.post("/api/identity/bootstrap-admin", json={"username": "admin", "password": "admin-pass"})
    assert bootstrap.status_code == 201
    admin_token = _login(client, "admin", "admin-pass")
    ids: dict[str, str] = {"admin_token": admin_token}
    for username, role in (("harry", "hr"), ("emma", "employee")):
        response = client.post(
            "/api/identity/users",
            json={"username": username, "password": f"{username}-pass", "primary_role_id": role},
            headers=_auth_header(admin_token),
        )
        assert response.status_code == 201
        ids[f"{username}_id"] = response.json()["id"]
        ids[f"{username}_token"] = _login(client, username, f"{username}-pass")

    created = client.post(
        "/api/policies",
        json={"name": "Leave Policy", "content": "v1 text"},
        headers=_auth_header(admin_token),
    )
    assert created.status_code == 201
    assert created.json()["version"] == 1
    ids["policy_id"] = created.json()["id"]
    return ids


def _grant(client: TestClient, token: str, policy_id: str, payload: dict[str, object]) -> dict[str, object]:
    response = client.put(f"/api/policies/{policy_id}/grants", json=payload, headers=_auth_header(token))
    assert response.status_code == 200, response.text
    return response.json()


def _effective(client: TestClient, token: str, policy_id: str) -> dict[str, object]:
    response = client.get(f"/api/policies/{policy_id}/effective", headers=_auth_header(token))
    assert response.status_code == 200
    return response.json()


def test_new_policy_grants_full_access_to_admin_roles(policy_client: TestClient) -> None:
    ids = _setup(policy_client)

    admin_view = _effective(policy_client, ids["admin_token"], ids["policy_id"])
    assert admin_view["source"] == "role"
    assert (admin_view["can_read"], admin_view["can_write"], admin_view["can_delete"]) == (True, True, True)

    emma_view = _effective(policy_client, ids["emma_token"], ids["policy_id"])
    assert emma_view["source"] == "none"
    assert emma_view["can_read"] is False


def test_employee_sees_only_granted_policies(policy_client: TestClient) -> None:
    ids = _setup(policy_client)
    emma = _auth_header(ids["emma_token"])

    assert policy_client.get("/api/policies", headers=emma).json() == []
    assert policy_client.get(f"/api/policies/{ids['policy_id']}", headers=emma).status_code == 403

    created = policy_client.post("/api/policies", json={"name": "Mine"}, headers=emma)
    assert created.status_code == 403

    _grant(policy_client, ids["admin_token"], ids["policy_id"], {"role": "employee", "can_read": True})

    listed = policy_client.get("/api/policies", headers=emma)
    assert [item["id"] for item in listed.json()] == [ids["policy_id"]]
    assert policy_client.get(f"/api/policies/{ids['policy_id']}", headers=emma).status_code == 200
    assert _effective(policy_client, ids["emma_token"], ids["policy_id"])["source"] == "role"


def test_grant_cascade_and_individual_provenance(policy_client: TestClient) -> None:
    ids = _setup(policy_client)
    admin = ids["admin_token"]

    written = _grant(policy_client, admin, ids["policy_id"], {"user_id": ids["emma_id"], "can_write": True})
    assert (written["can_read"], written["can_write"], written["can_delete"]) == (True, True, False)

    view = _effective(policy_client, ids["emma_token"], ids["policy_id"])
    assert view["source"] == "individual"
    assert view["can_write"] is True

    revoked = _grant(policy_client, admin, ids["policy_id"], {"user_id": ids["emma_id"], "can_read": False})
    assert (revoked["can_read"], revoked["can_write"], revoked["can_delete"]) == (False, False, False)

    view = _effective(policy_client, ids["emma_token"], ids["policy_id"])
    assert view["source"] == "individual"
    assert view["can_read"] is False

    with Session(db.get_engine()) as session:
        rows = session.exec(
            select(PolicyPermission)
            .where(PolicyPermission.policy_id == ids["policy_id"])
            .where(PolicyPermission.user_id == ids["emma_id"])
        ).all()
    assert len(rows) == 1


def test_individual_denial_overrides_hr_role_grant(policy_client: TestClient) -> None:
    ids = _setup(policy_client)

    assert policy_client.get(f"/api/policies/{ids['policy_id']}", headers=_auth_header(ids["harry_token"])).status_code == 200

    _grant(
        policy_client,
        ids["admin_token"],
        ids["policy_id"],
        {"user_id": ids["harry_id"], "can_read": False},
    )

    response = policy_client.get(f"/api/policies/{ids['policy_id']}", headers=_auth_header(ids["harry_token"]))
    assert response.status_code == 403

    by_admin = policy_client.get(
        f"/api/policies/{ids['policy_id']}/effective/{ids['harry_id']}",
        headers=_auth_header(ids["admin_token"]),
    )
    assert by_admin.json()["source"] == "individual"
    assert by_admin.json()["can_read"] is False

    reset = policy_client.delete(
        f"/api/policies/{ids['policy_id']}/grants/users/{ids['harry_id']}",
        headers=_auth_header(ids["admin_token"]),
    )
    assert reset.status_code == 204
    assert _effective(policy_client, ids["harry_token"], ids["policy_id"])["source"] == "role"


def test_partial_individual_grant_starts_from_role_value(policy_client: TestClient) -> None:
    ids = _setup(policy_client)

    row = _grant(
        policy_client,
        ids["admin_token"],
        ids["policy_id"],
        {"user_id": ids["harry_id"], "can_delete": False},
    )

    assert (row["can_read"], row["can_write"], row["can_delete"]) == (True, True, False)


def test_malformed_grants_are_rejected(policy_client: TestClient) -> None:
    ids = _setup(policy_client)
    admin = _auth_header(ids["admin_token"])
    url = f"/api/policies/{ids['policy_id']}/grants"

    both = policy_client.put(url, json={"user_id": ids["emma_id"], "role": "employee", "can_read": True}, headers=admin)
    assert both.status_code == 422

    neither = policy_client.put(url, json={"can_read": True}, headers=admin)
    assert neither.status_code == 422

    unknown_user = policy_client.put(url, json={"user_id": "ghost", "can_read": True}, headers=admin)
    assert unknown_user.status_code == 404

    unknown_policy = policy_client.put(
        "/api/policies/missing/grants",
        json={"role": "employee", "can_read": True},
        headers=admin,
    )
    assert unknown_policy.status_code == 404


def test_grant_rows_enforce_exactly_one_target_in_storage(policy_client: TestClient) -> None:
    ids = _setup(policy_client)

    with Session(db.get_engine()) as session:
        session.add(PolicyPermission(policy_id=ids["policy_id"], user_id=ids["emma_id"], role="employee"))
        with pytest.raises(IntegrityError):
            session.commit()


def test_manage_permissions_capability_is_required(policy_client: TestClient) -> None:
    ids = _setup(policy_client)
    url = f"/api/policies/{ids['policy_id']}/grants"

    emma_attempt = policy_client.put(
        url,
        json={"user_id": ids["emma_id"], "can_read": True},
        headers=_auth_header(ids["emma_token"]),
    )
    assert emma_attempt.status_code == 403

    restricted = policy_client.put(
        "/api/policies/dashboard-permissions",
        json={"user_id": ids["harry_id"], "can_manage_permissions": False},
        headers=_auth_header(ids["admin_token"]),
    )
    assert restricted.status_code == 200
    assert restricted.json()["can_view_policies"] is True
    assert restricted.json()["can_manage_permissions"] is False

    harry_attempt = policy_client.put(
        url,
        json={"user_id": ids["emma_id"], "can_read": True},
        headers=_auth_header(ids["harry_token"]),
    )
    assert harry_attempt.status_code == 403

    me = policy_client.get("/api/policies/dashboard-permissions/me", headers=_auth_header(ids["harry_token"]))
    assert me.json()["source"] == "individual"

    emma_me = policy_client.get("/api/policies/dashboard-permissions/me", headers=_auth_header(ids["emma_token"]))
    assert emma_me.json()["source"] == "role"
    assert emma_me.json()["can_view_policies"] is True
    assert emma_me.json()["can_create_policies"] is False

    bad_target = policy_client.put(
        "/api/policies/dashboard-permissions",
        json={"can_view_policies": True},
        headers=_auth_header(ids["admin_token"]),
    )
    assert bad_target.status_code == 422


def test_content_change_bumps_version_and_keeps_history(policy_client: TestClient) -> None:
    ids = _setup(policy_client)
    admin = _auth_header(ids["admin_token"])
    policy_url = f"/api/policies/{ids['policy_id']}"

    _grant(policy_client, ids["admin_token"], ids["policy_id"], {"user_id": ids["emma_id"], "can_read": True})

    updated = policy_client.patch(policy_url, json={"content": "v2 text"}, headers=admin)
    assert updated.status_code == 200
    assert updated.json()["version"] == 2

    toggled = policy_client.patch(policy_url, json={"is_active": False}, headers=admin)
    assert toggled.json()["version"] == 2
    assert toggled.json()["is_active"] is False

    same = policy_client.patch(policy_url, json={"content": "v2 text"}, headers=admin)
    assert same.json()["version"] == 2

    versions = policy_client.get(f"{policy_url}/versions", headers=admin).json()
    assert [(item["version"], item["content"]) for item in versions] == [(1, "v1 text")]

    grants = policy_client.get(f"{policy_url}/grants", headers=admin).json()
    assert any(item["user_id"] == ids["emma_id"] and item["can_read"] for item in grants)

    audit_row = _latest_audit("policy.update")
    assert audit_row.status_code == 200


def test_write_and_delete_require_resource_grants(policy_client: TestClient) -> None:
    ids = _setup(policy_client)
    policy_url = f"/api/policies/{ids['policy_id']}"

    _grant(
        policy_client,
        ids["admin_token"],
        ids["policy_id"],
        {"user_id": ids["harry_id"], "can_write": False, "can_delete": False},
    )
    harry = _auth_header(ids["harry_token"])

    assert policy_client.patch(policy_url, json={"content": "edit"}, headers=harry).status_code == 403
    assert policy_client.delete(policy_url, headers=harry).status_code == 403

    admin = _auth_header(ids["admin_token"])
    assert policy_client.delete(policy_url, headers=admin).status_code == 204
    assert policy_client.get(policy_url, headers=admin).status_code == 404

    with Session(db.get_engine()) as session:
        assert session.get(Policy, ids["policy_id"]) is None
        assert session.exec(select(PolicyPermission).where(PolicyPermission.policy_id == ids["policy_id"])).all() == []


def test_summary_requires_analytics(policy_client: TestClient) -> None:
    ids = _setup(policy_client)

    summary = policy_client.get("/api/policies/summary", headers=_auth_header(ids["admin_token"]))
    assert summary.json() == {"total": 1, "active": 1, "inactive": 0}

    denied = policy_client.get("/api/policies/summary", headers=_auth_header(ids["emma_token"]))
    assert denied.status_code == 403


def _latest_audit(action: str) -> AuditLog:
    with Session(db.get_engine(), expire_on_commit=False) as session:
        rows = list(session.exec(select(AuditLog).where(AuditLog.action == action)).all())
    assert rows
    return sorted(rows, key=lambda item: item.ts)[-1]
