from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from app.domain.delete_policy import dependent_relations, relation_action
from app.domain.models import (
    AffectedItem,
    AffectedItems,
    Department,
    EntityKind,
    Equipment,
    FarmSystem,
    RelationAction,
    SubEquipment,
)
from app.infra.farm_store import FarmStore
from app.services.blocker_evaluator import has_active_biomass
from app.services.hierarchy_resolver import HierarchyResolver

SUMMARY_FIELDS = (
    "departments",
    "systems",
    "child_systems",
    "equipment",
    "child_equipment",
    "sub_equipment",
    "tanks",
)


@dataclass
class AffectedSet:
    """Closure of a delete request.

    ``items`` is the display summary. The id lists drive the cascade and are
    ordered parents first; ``system_order`` and ``equipment_order`` never
    contain the root itself.
    """

    kind: EntityKind
    root: Any
    items: AffectedItems
    system_order: list[str] = field(default_factory=list)
    equipment_order: list[str] = field(default_factory=list)
    deactivate_equipment_ids: list[str] = field(default_factory=list)
    sub_equipment_by_parent: dict[str, list[str]] = field(default_factory=dict)
    orphan_department_ids: list[str] = field(default_factory=list)
    orphan_system_ids: list[str] = field(default_factory=list)
    system_parents: dict[str, str | None] = field(default_factory=dict)
    equipment_parents: dict[str, str | None] = field(default_factory=dict)
    tanks: list[Equipment] = field(default_factory=list)

    @property
    def root_id(self) -> str:
        return str(self.root.id)

    @property
    def deleted_system_ids(self) -> set[str]:
        ids = set(self.system_order)
        if self.kind == EntityKind.SYSTEM:
            ids.add(self.root_id)
        return ids

    @property
    def deleted_equipment_ids(self) -> set[str]:
        ids = set(self.equipment_order)
        if self.kind == EntityKind.EQUIPMENT:
            ids.add(self.root_id)
        return ids

    def dependent_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for name in dependent_relations(self.kind):
            size = len(getattr(self.items, name))
            if size > 0:
                counts[name] = size
        return counts


def summary_item(row: Any, action: RelationAction) -> AffectedItem:
    biomass: float | None = None
    active = False
    if isinstance(row, Equipment) and row.is_tank:
        biomass = float(row.current_biomass or 0.0)
        active = has_active_biomass(row)
    return AffectedItem(
        id=row.id,
        name=row.name,
        code=row.code,
        status=row.status,
        action=action,
        current_biomass=biomass,
        has_active_biomass=active,
    )


class AffectedSetAggregator:
    def __init__(self, resolver: HierarchyResolver | None = None) -> None:
        self._resolver = resolver or HierarchyResolver()

    def build(self, store: FarmStore, kind: EntityKind, root: Any) -> AffectedSet:
        match kind:
            case EntityKind.SITE:
                affected = self._build_site(store, root)
            case EntityKind.DEPARTMENT:
                affected = self._build_department(store, root)
            case EntityKind.SYSTEM:
                affected = self._build_system(store, root)
            case EntityKind.EQUIPMENT:
                affected = self._build_equipment(store, root)
            case _:
                raise ValueError(f"{kind} cannot be deleted through the cascade engine")
        affected.items.total_count = sum(len(getattr(affected.items, name)) for name in SUMMARY_FIELDS)
        return affected

    def _build_equipment(self, store: FarmStore, root: Equipment) -> AffectedSet:
        affected = AffectedSet(kind=EntityKind.EQUIPMENT, root=root, items=AffectedItems())
        descendant_ids = self._resolver.resolve_descendants(store, root.id, EntityKind.EQUIPMENT)
        rows = self._load_ordered(store, EntityKind.EQUIPMENT, descendant_ids)
        affected.equipment_order = [row.id for row in rows]
        affected.equipment_parents = {row.id: row.parent_equipment_id for row in [root, *rows]}
        affected.items.child_equipment = [
            summary_item(row, relation_action(EntityKind.EQUIPMENT, "child_equipment")) for row in rows
        ]
        closure = [root.id, *affected.equipment_order]
        affected.items.sub_equipment = self._collect_sub_equipment(store, affected, closure)
        affected.tanks = [row for row in [root, *rows] if row.is_tank]
        return affected

    def _build_system(self, store: FarmStore, root: FarmSystem) -> AffectedSet:
        affected = AffectedSet(kind=EntityKind.SYSTEM, root=root, items=AffectedItems())
        descendant_ids = self._resolver.resolve_descendants(store, root.id, EntityKind.SYSTEM)
        rows = self._load_ordered(store, EntityKind.SYSTEM, descendant_ids)
        affected.system_order = [row.id for row in rows]
        affected.system_parents = {row.id: row.parent_system_id for row in [root, *rows]}
        affected.items.child_systems = [
            summary_item(row, relation_action(EntityKind.SYSTEM, "child_systems")) for row in rows
        ]
        connected = self._connected_equipment(store, [root.id, *affected.system_order], excluded=set())
        affected.deactivate_equipment_ids = [row.id for row in connected]
        affected.items.equipment = [
            summary_item(row, relation_action(EntityKind.SYSTEM, "equipment")) for row in connected
        ]
        affected.tanks = [row for row in connected if row.is_tank]
        return affected

    def _build_department(self, store: FarmStore, root: Department) -> AffectedSet:
        affected = AffectedSet(kind=EntityKind.DEPARTMENT, root=root, items=AffectedItems())
        equipment_rows = self._department_equipment(store, [root.id], affected)
        deleted = relation_action(EntityKind.DEPARTMENT, "equipment")
        affected.items.equipment = [summary_item(row, deleted) for row in equipment_rows if not row.is_tank]
        affected.items.tanks = [summary_item(row, deleted) for row in equipment_rows if row.is_tank]
        affected.items.sub_equipment = self._collect_sub_equipment(store, affected, affected.equipment_order)
        affected.tanks = [row for row in equipment_rows if row.is_tank]

        systems: list[FarmSystem] = store.find_where(EntityKind.SYSTEM, department_id=root.id)
        affected.orphan_system_ids = [row.id for row in systems]
        affected.items.systems = [
            summary_item(row, relation_action(EntityKind.DEPARTMENT, "systems")) for row in systems
        ]
        return affected

    def _build_site(self, store: FarmStore, root: Any) -> AffectedSet:
        affected = AffectedSet(kind=EntityKind.SITE, root=root, items=AffectedItems())
        departments: list[Department] = store.find_where(EntityKind.DEPARTMENT, site_id=root.id)
        affected.orphan_department_ids = [row.id for row in departments]
        affected.items.departments = [
            summary_item(row, relation_action(EntityKind.SITE, "departments")) for row in departments
        ]

        site_systems: list[FarmSystem] = store.find_where(EntityKind.SYSTEM, site_id=root.id)
        site_system_ids = {row.id for row in site_systems}
        system_roots = [row.id for row in site_systems if row.parent_system_id not in site_system_ids]
        system_ids = self._resolver.resolve_forest(store, system_roots, EntityKind.SYSTEM)
        system_rows = self._load_ordered(store, EntityKind.SYSTEM, system_ids)
        affected.system_order = [row.id for row in system_rows]
        affected.system_parents = {row.id: row.parent_system_id for row in system_rows}
        affected.items.systems = [
            summary_item(row, relation_action(EntityKind.SITE, "systems")) for row in system_rows
        ]

        equipment_rows = self._department_equipment(store, affected.orphan_department_ids, affected)
        deleted = relation_action(EntityKind.DEPARTMENT, "equipment")
        connected = self._connected_equipment(
            store,
            affected.system_order,
            excluded=set(affected.equipment_order),
        )
        affected.deactivate_equipment_ids = [row.id for row in connected]
        deactivated = relation_action(EntityKind.SYSTEM, "equipment")

        affected.items.equipment = [summary_item(row, deleted) for row in equipment_rows if not row.is_tank]
        affected.items.equipment.extend(summary_item(row, deactivated) for row in connected if not row.is_tank)
        affected.items.tanks = [summary_item(row, deleted) for row in equipment_rows if row.is_tank]
        affected.items.tanks.extend(summary_item(row, deactivated) for row in connected if row.is_tank)
        affected.items.sub_equipment = self._collect_sub_equipment(store, affected, affected.equipment_order)
        affected.tanks = [row for row in [*equipment_rows, *connected] if row.is_tank]
        return affected

    def _department_equipment(
        self,
        store: FarmStore,
        department_ids: list[str],
        affected: AffectedSet,
    ) -> list[Equipment]:
        if not department_ids:
            return []
        owned: list[Equipment] = store.find_where(EntityKind.EQUIPMENT, department_id=department_ids)
        owned_ids = {row.id for row in owned}
        roots = [row.id for row in owned if row.parent_equipment_id not in owned_ids]
        ordered_ids = self._resolver.resolve_forest(store, roots, EntityKind.EQUIPMENT)
        rows = self._load_ordered(store, EntityKind.EQUIPMENT, ordered_ids)
        affected.equipment_order = [row.id for row in rows]
        affected.equipment_parents = {row.id: row.parent_equipment_id for row in rows}
        return rows

    def _connected_equipment(
        self,
        store: FarmStore,
        system_ids: list[str],
        *,
        excluded: set[str],
    ) -> list[Equipment]:
        if not system_ids:
            return []
        links = store.find_junction_rows(system_ids=system_ids)
        equipment_ids: list[str] = []
        for link in links:
            if link.equipment_id in excluded or link.equipment_id in equipment_ids:
                continue
            equipment_ids.append(link.equipment_id)
        return self._load_ordered(store, EntityKind.EQUIPMENT, equipment_ids)

    def _collect_sub_equipment(
        self,
        store: FarmStore,
        affected: AffectedSet,
        parent_ids: list[str],
    ) -> list[AffectedItem]:
        if not parent_ids:
            return []
        rows: list[SubEquipment] = store.find_where(
            EntityKind.SUB_EQUIPMENT,
            parent_equipment_id=parent_ids,
            is_active=True,
        )
        action = relation_action(EntityKind.EQUIPMENT, "sub_equipment")
        for row in rows:
            affected.sub_equipment_by_parent.setdefault(row.parent_equipment_id, []).append(row.id)
        return [summary_item(row, action) for row in rows]

    def _load_ordered(self, store: FarmStore, kind: EntityKind, ids: Iterable[str]) -> list[Any]:
        ordered_ids = list(ids)
        if not ordered_ids:
            return []
        by_id = {row.id: row for row in store.find_where(kind, id=ordered_ids)}
        return [by_id[entity_id] for entity_id in ordered_ids if entity_id in by_id]
