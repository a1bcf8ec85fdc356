from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from app.domain.models import (
    EntityKind,
    RelationAction,
    deactivate_values,
    now_utc,
    soft_delete_values,
)
from app.infra.farm_store import FarmStore
from app.services.affected_set import AffectedSet
from app.services.blocker_evaluator import find_blockers
from app.services.integrity_errors import (
    BlockedError,
    HasDependentsError,
    NotFoundError,
    StoreFailureError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Mutation:
    kind: EntityKind
    entity_id: str
    action: RelationAction
    step: str


MutationObserver = Callable[[Mutation], None]


@dataclass
class CascadeReport:
    root_kind: EntityKind
    root_id: str
    at: datetime = field(default_factory=now_utc)
    mutations: list[Mutation] = field(default_factory=list)
    counter_updates: int = 0

    def counts(self) -> dict[str, int]:
        tally = Counter(f"{item.action.value.lower()}:{item.kind.value.lower()}" for item in self.mutations)
        return dict(sorted(tally.items()))

    def deleted_ids(self, kind: EntityKind) -> set[str]:
        """Ids of ``kind`` this cascade soft-deleted itself."""
        return {
            item.entity_id for item in self.mutations if item.kind == kind and item.action == RelationAction.DELETE
        }


@contextmanager
def store_step(step: str, kind: EntityKind, entity_id: str | None) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("store step failed step=%s kind=%s id=%s", step, kind, entity_id)
        raise StoreFailureError(step=step, entity_kind=kind, entity_id=entity_id, cause=exc) from exc


class CascadeExecutor:
    """Applies a checked delete to the store, leaves before parents.

    The caller owns the transaction: nothing here commits. Every update is
    guarded on the current state, so running the same cascade again after a
    partial failure only touches what is still left. Counters follow the rows
    this run actually changed, never the closure read beforehand.
    """

    def __init__(self, observer: MutationObserver | None = None) -> None:
        self._observer = observer

    def check(self, affected: AffectedSet, *, cascade: bool) -> None:
        blockers = find_blockers(affected.tanks)
        if blockers:
            raise BlockedError(blockers)
        dependents = affected.dependent_counts()
        if dependents and not cascade:
            raise HasDependentsError(affected.kind, dependents)

    def execute(
        self,
        store: FarmStore,
        affected: AffectedSet,
        *,
        user_id: str | None,
        cascade: bool,
    ) -> CascadeReport:
        self.check(affected, cascade=cascade)
        report = CascadeReport(root_kind=affected.kind, root_id=affected.root_id)

        self._unlink_junction(store, affected, report)
        self._deactivate_connected_equipment(store, affected, report, user_id)
        self._delete_systems(store, affected, report, user_id)
        self._delete_equipment(store, affected, report, user_id)
        self._orphan_children(store, affected, report, user_id)
        self._delete_root(store, affected, report, user_id)
        self._decrement_parent_counters(store, affected, report)
        return report

    def _record(self, report: CascadeReport, mutation: Mutation) -> None:
        report.mutations.append(mutation)
        if self._observer is not None:
            self._observer(mutation)

    def _unlink_junction(self, store: FarmStore, affected: AffectedSet, report: CascadeReport) -> None:
        deleted_systems = affected.deleted_system_ids
        deleted_equipment = affected.deleted_equipment_ids
        if not deleted_systems and not deleted_equipment:
            return
        with store_step("unlink_junction", EntityKind.EQUIPMENT_SYSTEM, None):
            removed = store.delete_junction_where(
                equipment_ids=sorted(deleted_equipment),
                system_ids=sorted(deleted_systems),
            )
        surviving = Counter(system_id for _, system_id in removed if system_id not in deleted_systems)
        for equipment_id, system_id in removed:
            self._record(
                report,
                Mutation(
                    EntityKind.EQUIPMENT_SYSTEM,
                    f"{equipment_id}:{system_id}",
                    RelationAction.UNLINK,
                    "unlink_junction",
                ),
            )
        for system_id, lost in sorted(surviving.items()):
            with store_step("system_equipment_count", EntityKind.SYSTEM, system_id):
                report.counter_updates += store.decrement_counter(
                    EntityKind.SYSTEM, system_id, "equipment_count", lost
                )

    def _deactivate_connected_equipment(
        self,
        store: FarmStore,
        affected: AffectedSet,
        report: CascadeReport,
        user_id: str | None,
    ) -> None:
        for equipment_id in affected.deactivate_equipment_ids:
            with store_step("deactivate_equipment", EntityKind.EQUIPMENT, equipment_id):
                changed = store.update_fields(
                    EntityKind.EQUIPMENT,
                    equipment_id,
                    deactivate_values(user_id, report.at),
                    is_active=True,
                )
            if changed:
                self._record(
                    report,
                    Mutation(EntityKind.EQUIPMENT, equipment_id, RelationAction.DEACTIVATE, "deactivate_equipment"),
                )

    def _delete_systems(
        self,
        store: FarmStore,
        affected: AffectedSet,
        report: CascadeReport,
        user_id: str | None,
    ) -> None:
        for system_id in reversed(affected.system_order):
            self._soft_delete(store, report, EntityKind.SYSTEM, system_id, user_id, "delete_systems")

    def _delete_equipment(
        self,
        store: FarmStore,
        affected: AffectedSet,
        report: CascadeReport,
        user_id: str | None,
    ) -> None:
        for equipment_id in reversed(affected.equipment_order):
            self._deactivate_sub_equipment(store, affected, report, equipment_id, user_id)
            self._soft_delete(store, report, EntityKind.EQUIPMENT, equipment_id, user_id, "delete_equipment")

    def _deactivate_sub_equipment(
        self,
        store: FarmStore,
        affected: AffectedSet,
        report: CascadeReport,
        parent_id: str,
        user_id: str | None,
    ) -> None:
        for sub_id in affected.sub_equipment_by_parent.get(parent_id, []):
            with store_step("deactivate_sub_equipment", EntityKind.SUB_EQUIPMENT, sub_id):
                changed = store.update_fields(
                    EntityKind.SUB_EQUIPMENT,
                    sub_id,
                    deactivate_values(user_id, report.at),
                    is_active=True,
                )
            if changed:
                self._record(
                    report,
                    Mutation(EntityKind.SUB_EQUIPMENT, sub_id, RelationAction.DEACTIVATE, "deactivate_sub_equipment"),
                )

    def _orphan_children(
        self,
        store: FarmStore,
        affected: AffectedSet,
        report: CascadeReport,
        user_id: str | None,
    ) -> None:
        targets = [
            (EntityKind.DEPARTMENT, "site_id", affected.orphan_department_ids),
            (EntityKind.SYSTEM, "department_id", affected.orphan_system_ids),
        ]
        for kind, fk_column, entity_ids in targets:
            for entity_id in entity_ids:
                with store_step("orphan", kind, entity_id):
                    changed = store.update_fields(
                        kind,
                        entity_id,
                        {fk_column: None, "updated_at": report.at, "updated_by": user_id},
                        **{fk_column: affected.root_id},
                    )
                if changed:
                    self._record(report, Mutation(kind, entity_id, RelationAction.ORPHAN, "orphan"))

    def _delete_root(
        self,
        store: FarmStore,
        affected: AffectedSet,
        report: CascadeReport,
        user_id: str | None,
    ) -> None:
        if affected.kind == EntityKind.EQUIPMENT:
            self._deactivate_sub_equipment(store, affected, report, affected.root_id, user_id)
        deleted = self._soft_delete(store, report, affected.kind, affected.root_id, user_id, "delete_root")
        if not deleted:
            raise NotFoundError(f"{affected.kind.value.lower()} not found")

    def _soft_delete(
        self,
        store: FarmStore,
        report: CascadeReport,
        kind: EntityKind,
        entity_id: str,
        user_id: str | None,
        step: str,
    ) -> bool:
        with store_step(step, kind, entity_id):
            changed = store.update_fields(kind, entity_id, soft_delete_values(user_id, report.at))
        if changed:
            self._record(report, Mutation(kind, entity_id, RelationAction.DELETE, step))
        return bool(changed)

    def _decrement_parent_counters(self, store: FarmStore, affected: AffectedSet, report: CascadeReport) -> None:
        trees = [
            (EntityKind.EQUIPMENT, "sub_equipment_count", affected.equipment_parents, affected.deleted_equipment_ids),
            (EntityKind.SYSTEM, "sub_system_count", affected.system_parents, affected.deleted_system_ids),
        ]
        for kind, counter, parents, closure_ids in trees:
            lost: Counter[str] = Counter()
            # A row deleted by a concurrent transaction already decremented its parent.
            for entity_id in report.deleted_ids(kind):
                parent_id = parents.get(entity_id)
                if parent_id is not None and parent_id not in closure_ids:
                    lost[parent_id] += 1
            for parent_id, count in sorted(lost.items()):
                with store_step("decrement_parent_counter", kind, parent_id):
                    report.counter_updates += store.decrement_counter(kind, parent_id, counter, count)
