from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.domain.models import (
    Department,
    EntityKind,
    Equipment,
    EquipmentSystem,
    FarmSystem,
    RelationAction,
    Site,
    SubEquipment,
    Tenant,
)
from app.infra import db
from app.services.delete_service import DeleteService
from app.services.integrity_errors import NotFoundError


@pytest.fixture()
def preview_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "preview_test.db"
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


def _add(engine: Engine, *rows: SQLModel) -> None:
    with Session(engine) as session:
        for row in rows:
            session.add(row)
            session.commit()


def _seed_site_with_tank(engine: Engine, biomass: float) -> None:
    _add(
        engine,
        Tenant(id="t1", name="tenant-1"),
        Site(id="site-1", tenant_id="t1", name="North Bay", code="NB"),
        Department(id="dep-1", tenant_id="t1", site_id="site-1", name="Hatchery", code="D1"),
        Department(id="dep-2", tenant_id="t1", site_id="site-1", name="Quarantine", code="D2"),
        Equipment(
            id="tank-1",
            tenant_id="t1",
            department_id="dep-1",
            name="Tank 1",
            code="T1",
            is_tank=True,
            current_biomass=biomass,
        ),
    )


def test_site_preview_reports_biomass_blocker(preview_engine: Engine) -> None:
    _seed_site_with_tank(preview_engine, 12.5)

    preview = DeleteService().preview_site("site-1", "t1")

    assert preview.entity_kind == EntityKind.SITE
    assert preview.entity_name == "North Bay"
    assert preview.can_delete is False
    assert preview.blockers == [
        "1 tank(s) contain 12.50 kg of active biomass. Please harvest or transfer fish before deleting."
    ]
    assert preview.requires_cascade is True
    assert [item.id for item in preview.affected.departments] == ["dep-1", "dep-2"]
    assert all(item.action == RelationAction.ORPHAN for item in preview.affected.departments)
    assert [item.id for item in preview.affected.tanks] == ["tank-1"]
    assert preview.affected.tanks[0].has_active_biomass is True
    assert preview.affected.tanks[0].current_biomass == 12.5
    assert preview.affected.equipment == []
    assert preview.affected.total_count == 3


def test_preview_never_writes(preview_engine: Engine) -> None:
    _seed_site_with_tank(preview_engine, 12.5)

    DeleteService().preview_site("site-1", "t1")

    with Session(preview_engine) as session:
        site = session.get(Site, "site-1")
        department = session.get(Department, "dep-1")
        tank = session.get(Equipment, "tank-1")
        assert site is not None and site.is_deleted is False
        assert department is not None and department.site_id == "site-1"
        assert tank is not None and tank.is_active is True


def test_site_preview_without_biomass_can_delete(preview_engine: Engine) -> None:
    _seed_site_with_tank(preview_engine, 0.0)

    preview = DeleteService().preview_site("site-1", "t1")

    assert preview.can_delete is True
    assert preview.blockers == []
    assert preview.affected.tanks[0].has_active_biomass is False


def test_system_preview_lists_child_systems_and_connected_equipment(preview_engine: Engine) -> None:
    _add(
        preview_engine,
        Tenant(id="t1", name="tenant-1"),
        Site(id="site-1", tenant_id="t1", name="North Bay", code="NB"),
        FarmSystem(id="sys-root", tenant_id="t1", site_id="site-1", name="RAS 1", code="RAS1"),
        FarmSystem(
            id="sys-child",
            tenant_id="t1",
            site_id="site-1",
            parent_system_id="sys-root",
            name="Filtration",
            code="RAS1-F",
        ),
        Equipment(id="pump-1", tenant_id="t1", name="Pump", code="P1"),
        Equipment(id="tank-9", tenant_id="t1", name="Tank 9", code="T9", is_tank=True, current_biomass=3.0),
        EquipmentSystem(tenant_id="t1", equipment_id="pump-1", system_id="sys-child"),
        EquipmentSystem(tenant_id="t1", equipment_id="tank-9", system_id="sys-root"),
    )

    preview = DeleteService().preview_system("sys-root", "t1")

    assert [item.id for item in preview.affected.child_systems] == ["sys-child"]
    assert {item.id for item in preview.affected.equipment} == {"pump-1", "tank-9"}
    assert all(item.action == RelationAction.DEACTIVATE for item in preview.affected.equipment)
    assert preview.requires_cascade is True
    assert preview.can_delete is False
    assert preview.blockers[0].startswith("1 tank(s) contain 3.00 kg")
    assert preview.affected.total_count == 3


def test_equipment_preview_lists_children_and_active_sub_equipment(preview_engine: Engine) -> None:
    _add(
        preview_engine,
        Tenant(id="t1", name="tenant-1"),
        Equipment(id="eq-root", tenant_id="t1", name="Feeder", code="F1", sub_equipment_count=1),
        Equipment(id="eq-child", tenant_id="t1", parent_equipment_id="eq-root", name="Hopper", code="F1-H"),
        SubEquipment(id="sub-1", tenant_id="t1", parent_equipment_id="eq-root", name="Motor", code="M1"),
        SubEquipment(id="sub-2", tenant_id="t1", parent_equipment_id="eq-child", name="Sensor", code="S1"),
        SubEquipment(
            id="sub-3",
            tenant_id="t1",
            parent_equipment_id="eq-child",
            name="Old sensor",
            code="S0",
            is_active=False,
        ),
    )

    preview = DeleteService().preview_equipment("eq-root", "t1")

    assert [item.id for item in preview.affected.child_equipment] == ["eq-child"]
    assert {item.id for item in preview.affected.sub_equipment} == {"sub-1", "sub-2"}
    assert preview.requires_cascade is True
    assert preview.can_delete is True
    assert preview.affected.total_count == 3


def test_leaf_equipment_does_not_require_cascade(preview_engine: Engine) -> None:
    _add(
        preview_engine,
        Tenant(id="t1", name="tenant-1"),
        Equipment(id="eq-1", tenant_id="t1", name="Blower", code="B1"),
    )

    preview = DeleteService().preview_equipment("eq-1", "t1")

    assert preview.can_delete is True
    assert preview.requires_cascade is False
    assert preview.affected.total_count == 0


def test_preview_of_unknown_or_foreign_entity_is_not_found(preview_engine: Engine) -> None:
    _seed_site_with_tank(preview_engine, 0.0)
    _add(preview_engine, Tenant(id="t2", name="tenant-2"))
    service = DeleteService()

    with pytest.raises(NotFoundError):
        service.preview_site("missing", "t1")
    with pytest.raises(NotFoundError):
        service.preview_site("site-1", "t2")


def test_preview_rejects_non_deletable_kinds(preview_engine: Engine) -> None:
    with pytest.raises(ValueError):
        DeleteService().preview(EntityKind.SUB_EQUIPMENT, "sub-1", "t1")
