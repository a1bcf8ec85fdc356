from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class EntityKind(StrEnum):
    SITE = "SITE"
    DEPARTMENT = "DEPARTMENT"
    SYSTEM = "SYSTEM"
    EQUIPMENT = "EQUIPMENT"
    SUB_EQUIPMENT = "SUB_EQUIPMENT"
    EQUIPMENT_SYSTEM = "EQUIPMENT_SYSTEM"


class LifecycleState(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"


def soft_delete_values(user_id: str | None, at: datetime | None = None) -> dict[str, Any]:
    """Field set applied whenever an entity is soft deleted.

    Every write path goes through this function so that ``is_deleted`` never
    changes without ``is_active``, ``deleted_at`` and ``deleted_by``.
    """
    stamp = at or now_utc()
    return {
        "is_deleted": True,
        "is_active": False,
        "deleted_at": stamp,
        "deleted_by": user_id,
        "updated_at": stamp,
        "updated_by": user_id,
    }


def deactivate_values(user_id: str | None, at: datetime | None = None) -> dict[str, Any]:
    stamp = at or now_utc()
    return {"is_active": False, "updated_at": stamp, "updated_by": user_id}


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class SoftDeleteFields(SQLModel):
    is_active: bool = Field(default=True, index=True)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = None
    deleted_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    updated_by: str | None = None

    @property
    def lifecycle_state(self) -> LifecycleState:
        if self.is_deleted:
            return LifecycleState.DELETED
        if not self.is_active:
            return LifecycleState.INACTIVE
        return LifecycleState.ACTIVE


class Site(SoftDeleteFields, table=True):
    __tablename__ = "sites"
    __table_args__ = (UniqueConstraint("tenant_id", "code", name="uq_sites_tenant_code"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    name: str = Field(index=True)
    code: str
    status: str = Field(default="active")


class Department(SoftDeleteFields, table=True):
    __tablename__ = "departments"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_departments_tenant_code"),
        Index("ix_departments_tenant_site", "tenant_id", "site_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    site_id: str | None = Field(default=None, foreign_key="sites.id", index=True)
    name: str = Field(index=True)
    code: str
    status: str = Field(default="active")


class FarmSystem(SoftDeleteFields, table=True):
    __tablename__ = "systems"
    __table_args__ = (
        UniqueConstraint("tenant_id", "site_id", "code", name="uq_systems_tenant_site_code"),
        Index("ix_systems_tenant_parent", "tenant_id", "parent_system_id"),
        Index("ix_systems_tenant_department", "tenant_id", "department_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    site_id: str = Field(foreign_key="sites.id", index=True)
    department_id: str | None = Field(default=None, foreign_key="departments.id")
    parent_system_id: str | None = Field(default=None, foreign_key="systems.id")
    name: str = Field(index=True)
    code: str
    status: str = Field(default="active")
    sub_system_count: int = Field(default=0)
    equipment_count: int = Field(default=0)


class Equipment(SoftDeleteFields, table=True):
    __tablename__ = "equipment"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_equipment_tenant_code"),
        Index("ix_equipment_tenant_parent", "tenant_id", "parent_equipment_id"),
        Index("ix_equipment_tenant_department", "tenant_id", "department_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    department_id: str | None = Field(default=None, foreign_key="departments.id")
    parent_equipment_id: str | None = Field(default=None, foreign_key="equipment.id")
    name: str = Field(index=True)
    code: str
    status: str = Field(default="operational")
    sub_equipment_count: int = Field(default=0)
    is_tank: bool = Field(default=False, index=True)
    current_biomass: float = Field(default=0.0)


class SubEquipment(SQLModel, table=True):
    __tablename__ = "sub_equipment"
    __table_args__ = (Index("ix_sub_equipment_tenant_parent", "tenant_id", "parent_equipment_id"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    parent_equipment_id: str = Field(foreign_key="equipment.id")
    name: str
    code: str
    status: str = Field(default="operational")
    is_active: bool = Field(default=True, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    updated_by: str | None = None


class EquipmentSystem(SQLModel, table=True):
    __tablename__ = "equipment_systems"
    __table_args__ = (Index("ix_equipment_systems_tenant_system", "tenant_id", "system_id"),)

    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    equipment_id: str = Field(foreign_key="equipment.id", primary_key=True)
    system_id: str = Field(foreign_key="systems.id", primary_key=True)
    is_primary: bool = Field(default=False)
    criticality_level: str | None = None
    created_at: datetime = Field(default_factory=now_utc)


class RelationAction(StrEnum):
    DELETE = "DELETE"
    DEACTIVATE = "DEACTIVATE"
    ORPHAN = "ORPHAN"
    UNLINK = "UNLINK"


class AffectedItem(BaseModel):
    id: str
    name: str
    code: str
    status: str | None = None
    action: RelationAction
    current_biomass: float | None = None
    has_active_biomass: bool = False


class AffectedItems(BaseModel):
    departments: list[AffectedItem] = PydanticField(default_factory=list)
    systems: list[AffectedItem] = PydanticField(default_factory=list)
    child_systems: list[AffectedItem] = PydanticField(default_factory=list)
    equipment: list[AffectedItem] = PydanticField(default_factory=list)
    child_equipment: list[AffectedItem] = PydanticField(default_factory=list)
    sub_equipment: list[AffectedItem] = PydanticField(default_factory=list)
    tanks: list[AffectedItem] = PydanticField(default_factory=list)
    total_count: int = 0


class DeletePreview(BaseModel):
    entity_kind: EntityKind
    entity_id: str
    entity_name: str
    can_delete: bool
    blockers: list[str] = PydanticField(default_factory=list)
    requires_cascade: bool = False
    affected: AffectedItems


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class EquipmentRead(ORMReadModel):
    id: str
    tenant_id: str
    department_id: str | None
    parent_equipment_id: str | None
    name: str
    code: str
    status: str
    sub_equipment_count: int
    is_tank: bool
    current_biomass: float
    is_active: bool
    is_deleted: bool
    lifecycle_state: LifecycleState


class EquipmentReparentRequest(BaseModel):
    parent_equipment_id: str | None = None


class CounterCorrection(BaseModel):
    entity_kind: EntityKind
    entity_id: str
    field: str
    previous: int
    current: int


class DeleteResult(BaseModel):
    entity_kind: EntityKind
    entity_id: str
    deleted: bool
    cascade: bool
    counts: dict[str, int] = PydanticField(default_factory=dict)
    counter_updates: int = 0
