from __future__ import annotations

import logging

from sqlmodel import Session

from app.domain.models import (
    CounterCorrection,
    EntityKind,
    Equipment,
    FarmSystem,
    now_utc,
)
from app.infra.db import get_engine
from app.infra.farm_store import FarmStore
from app.services.hierarchy_resolver import HierarchyResolver
from app.services.integrity_errors import NotFoundError, ValidationConflictError

logger = logging.getLogger(__name__)


class EquipmentHierarchyService:
    def __init__(self, resolver: HierarchyResolver | None = None) -> None:
        self._resolver = resolver or HierarchyResolver()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def reparent_equipment(
        self,
        tenant_id: str,
        equipment_id: str,
        new_parent_id: str | None,
        user_id: str | None,
    ) -> Equipment:
        """Move equipment under ``new_parent_id`` (or to the top level).

        The old and new parents' ``sub_equipment_count`` change in the same
        transaction as the pointer itself.
        """
        with self._session() as session:
            store = FarmStore(session, tenant_id)
            equipment: Equipment | None = store.find_by_id(EntityKind.EQUIPMENT, equipment_id)
            if equipment is None:
                raise NotFoundError("equipment not found")
            old_parent_id = equipment.parent_equipment_id
            if old_parent_id == new_parent_id:
                return equipment

            if new_parent_id is not None:
                if new_parent_id == equipment_id:
                    raise ValidationConflictError("equipment cannot be its own parent")
                if store.find_by_id(EntityKind.EQUIPMENT, new_parent_id) is None:
                    raise ValidationConflictError("parent equipment not found")
                descendants = self._resolver.resolve_descendants(store, equipment_id, EntityKind.EQUIPMENT)
                if new_parent_id in descendants:
                    raise ValidationConflictError("parent equipment is a descendant of this equipment")

            store.update_fields(
                EntityKind.EQUIPMENT,
                equipment_id,
                {"parent_equipment_id": new_parent_id, "updated_at": now_utc(), "updated_by": user_id},
            )
            if old_parent_id is not None:
                store.decrement_counter(EntityKind.EQUIPMENT, old_parent_id, "sub_equipment_count")
            if new_parent_id is not None:
                store.increment_counter(EntityKind.EQUIPMENT, new_parent_id, "sub_equipment_count")
            session.commit()
            session.refresh(equipment)

        logger.info(
            "equipment reparented tenant=%s id=%s from=%s to=%s",
            tenant_id,
            equipment_id,
            old_parent_id,
            new_parent_id,
        )
        return equipment

    def reconcile_counters(self, tenant_id: str) -> list[CounterCorrection]:
        """Recompute denormalized counters from live rows and fix drift."""
        corrections: list[CounterCorrection] = []
        with self._session() as session:
            store = FarmStore(session, tenant_id)
            equipment_rows: list[Equipment] = store.find_where(EntityKind.EQUIPMENT)
            for equipment in equipment_rows:
                actual = store.count_where(EntityKind.EQUIPMENT, parent_equipment_id=equipment.id)
                if actual != equipment.sub_equipment_count:
                    corrections.append(
                        CounterCorrection(
                            entity_kind=EntityKind.EQUIPMENT,
                            entity_id=equipment.id,
                            field="sub_equipment_count",
                            previous=equipment.sub_equipment_count,
                            current=actual,
                        )
                    )
            system_rows: list[FarmSystem] = store.find_where(EntityKind.SYSTEM)
            for system in system_rows:
                children = store.count_where(EntityKind.SYSTEM, parent_system_id=system.id)
                if children != system.sub_system_count:
                    corrections.append(
                        CounterCorrection(
                            entity_kind=EntityKind.SYSTEM,
                            entity_id=system.id,
                            field="sub_system_count",
                            previous=system.sub_system_count,
                            current=children,
                        )
                    )
                links = store.count_junction_rows(system.id)
                if links != system.equipment_count:
                    corrections.append(
                        CounterCorrection(
                            entity_kind=EntityKind.SYSTEM,
                            entity_id=system.id,
                            field="equipment_count",
                            previous=system.equipment_count,
                            current=links,
                        )
                    )
            for item in corrections:
                store.update_fields(item.entity_kind, item.entity_id, {item.field: item.current})
            session.commit()

        if corrections:
            logger.warning("counter drift corrected tenant=%s rows=%s", tenant_id, len(corrections))
        return corrections
