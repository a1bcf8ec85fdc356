from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine, select

from app import main as app_main
from app.domain.models import AuditLog, Department, Equipment, Site, Tenant
from app.domain.permissions import PERM_FARM_DELETE, PERM_FARM_READ, PERM_FARM_WRITE
from app.infra import db
from app.infra.auth import create_access_token
from app.infra.farm_store import FarmStore


@pytest.fixture()
def farm_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "farm_api_test.db"
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
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def farm_client(farm_engine: Engine) -> Generator[TestClient, None, None]:
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(permissions: list[str], tenant_id: str = "t1", user_id: str = "user-1") -> dict[str, str]:
    token = create_access_token(user_id=user_id, tenant_id=tenant_id, permissions=permissions)
    return {"Authorization": f"Bearer {token}"}


def _seed(engine: Engine, biomass: float) -> None:
    rows: list[SQLModel] = [
        Tenant(id="t1", name="tenant-1"),
        Site(id="site-1", tenant_id="t1", name="North Bay", code="NB"),
        Department(id="dep-1", tenant_id="t1", site_id="site-1", name="Hatchery", code="D1"),
        Equipment(
            id="tank-1",
            tenant_id="t1",
            department_id="dep-1",
            name="Tank 1",
            code="T1",
            is_tank=True,
            current_biomass=biomass,
        ),
        Equipment(id="rack-1", tenant_id="t1", name="Rack", code="R1"),
    ]
    with Session(engine) as session:
        for row in rows:
            session.add(row)
            session.commit()


def test_preview_returns_affected_summary(farm_client: TestClient, farm_engine: Engine) -> None:
    _seed(farm_engine, 12.5)

    response = farm_client.get(
        "/api/farm/sites/site-1/delete-preview",
        headers=_auth_header([PERM_FARM_READ]),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["entity_kind"] == "SITE"
    assert body["can_delete"] is False
    assert body["blockers"][0].startswith("1 tank(s) contain 12.50 kg")
    assert body["affected"]["total_count"] == 2
    assert body["affected"]["departments"][0]["action"] == "ORPHAN"


def test_delete_blocked_returns_conflict(farm_client: TestClient, farm_engine: Engine) -> None:
    _seed(farm_engine, 12.5)

    response = farm_client.delete(
        "/api/farm/departments/dep-1",
        params={"cascade": "true"},
        headers=_auth_header([PERM_FARM_DELETE]),
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "blocked"


def test_delete_without_cascade_reports_dependents(farm_client: TestClient, farm_engine: Engine) -> None:
    _seed(farm_engine, 0.0)

    response = farm_client.delete("/api/farm/departments/dep-1", headers=_auth_header([PERM_FARM_DELETE]))

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "has_dependents"
    assert detail["dependents"] == {"tanks": 1}


def test_cascade_delete_succeeds_and_is_audited(farm_client: TestClient, farm_engine: Engine) -> None:
    _seed(farm_engine, 0.0)

    response = farm_client.delete(
        "/api/farm/sites/site-1",
        params={"cascade": "true"},
        headers=_auth_header(["*"]),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["deleted"] is True
    assert body["counts"] == {"delete:equipment": 1, "delete:site": 1, "orphan:department": 1}

    again = farm_client.delete(
        "/api/farm/sites/site-1",
        params={"cascade": "true"},
        headers=_auth_header(["*"]),
    )
    assert again.status_code == 404

    with Session(farm_engine) as session:
        statement = select(AuditLog).where(AuditLog.action == "farm.site.delete").order_by(AuditLog.ts)
        logs = session.exec(statement).all()
        assert [log.status_code for log in logs] == [200, 404]
        assert logs[0].actor_id == "user-1"
        assert logs[0].resource == "sites/site-1"
        assert logs[0].detail["cascade"] is True
        assert logs[0].detail["counts"]["delete:site"] == 1
        assert logs[1].detail["outcome"] == "denied"


def test_other_tenant_cannot_delete(farm_client: TestClient, farm_engine: Engine) -> None:
    _seed(farm_engine, 0.0)

    response = farm_client.delete(
        "/api/farm/equipment/rack-1",
        headers=_auth_header([PERM_FARM_DELETE], tenant_id="t2"),
    )

    assert response.status_code == 404


def test_permissions_and_authentication_are_enforced(farm_client: TestClient, farm_engine: Engine) -> None:
    _seed(farm_engine, 0.0)

    assert farm_client.delete("/api/farm/equipment/rack-1").status_code == 401
    assert (
        farm_client.delete("/api/farm/equipment/rack-1", headers={"Authorization": "Bearer nope"}).status_code
        == 401
    )
    forbidden = farm_client.delete("/api/farm/equipment/rack-1", headers=_auth_header([PERM_FARM_READ]))
    assert forbidden.status_code == 403
    unknown = farm_client.delete("/api/farm/tanks/rack-1", headers=_auth_header([PERM_FARM_DELETE]))
    assert unknown.status_code == 422


def test_reparent_endpoint_validates_parent(farm_client: TestClient, farm_engine: Engine) -> None:
    _seed(farm_engine, 0.0)

    cycle = farm_client.post(
        "/api/farm/equipment/rack-1/reparent",
        json={"parent_equipment_id": "rack-1"},
        headers=_auth_header([PERM_FARM_WRITE]),
    )
    assert cycle.status_code == 400

    moved = farm_client.post(
        "/api/farm/equipment/tank-1/reparent",
        json={"parent_equipment_id": "rack-1"},
        headers=_auth_header([PERM_FARM_WRITE]),
    )
    assert moved.status_code == 200
    assert moved.json()["parent_equipment_id"] == "rack-1"
    assert moved.json()["lifecycle_state"] == "ACTIVE"

    reconcile = farm_client.post(
        "/api/farm/equipment:reconcile-counters",
        headers=_auth_header([PERM_FARM_WRITE]),
    )
    assert reconcile.status_code == 200
    assert reconcile.json() == []


def test_persistence_failure_maps_to_server_error(
    farm_client: TestClient,
    farm_engine: Engine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _seed(farm_engine, 0.0)

    def _broken_lookup(self: FarmStore, kind: object, entity_id: str) -> None:
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(FarmStore, "find_by_id", _broken_lookup)

    response = farm_client.delete("/api/farm/equipment/rack-1", headers=_auth_header([PERM_FARM_DELETE]))

    assert response.status_code == 500
    assert response.json()["detail"] == {"code": "store_failure", "step": "load_affected"}
