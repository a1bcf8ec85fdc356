from __future__ import annotations

import logging

from sqlmodel import Session

from app.domain.delete_policy import DELETABLE_KINDS
from app.domain.models import DeletePreview, EntityKind
from app.infra.db import get_engine
from app.infra.farm_store import FarmStore
from app.services.affected_set import AffectedSet, AffectedSetAggregator
from app.services.blocker_evaluator import find_blockers
from app.services.cascade_executor import CascadeExecutor, CascadeReport, MutationObserver, store_step
from app.services.hierarchy_resolver import HierarchyResolver
from app.services.integrity_errors import (
    BlockedError,
    FarmIntegrityError,
    HasDependentsError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


class DeleteService:
    """Entry point for deleting Sites, Departments, Systems and Equipment.

    ``preview`` never writes. ``delete`` re-reads the closure and re-checks
    blockers inside its own transaction, whatever an earlier preview said.
    """

    def __init__(
        self,
        resolver: HierarchyResolver | None = None,
        observer: MutationObserver | None = None,
    ) -> None:
        self._aggregator = AffectedSetAggregator(resolver or HierarchyResolver())
        self._executor = CascadeExecutor(observer)

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _ensure_deletable(self, kind: EntityKind) -> None:
        if kind not in DELETABLE_KINDS:
            raise ValueError(f"unsupported delete target: {kind}")

    def _load_affected(self, store: FarmStore, kind: EntityKind, entity_id: str) -> AffectedSet:
        with store_step("load_affected", kind, entity_id):
            root = store.find_by_id(kind, entity_id)
            if root is None:
                raise NotFoundError(f"{kind.value.lower()} not found")
            return self._aggregator.build(store, kind, root)

    def preview(self, kind: EntityKind, entity_id: str, tenant_id: str) -> DeletePreview:
        self._ensure_deletable(kind)
        with self._session() as session:
            store = FarmStore(session, tenant_id)
            affected = self._load_affected(store, kind, entity_id)

        blockers = find_blockers(affected.tanks)
        dependents = affected.dependent_counts()
        logger.info(
            "delete preview tenant=%s kind=%s id=%s total=%s blockers=%s",
            tenant_id,
            kind,
            entity_id,
            affected.items.total_count,
            len(blockers),
        )
        return DeletePreview(
            entity_kind=kind,
            entity_id=entity_id,
            entity_name=affected.root.name,
            can_delete=not blockers,
            blockers=blockers,
            requires_cascade=bool(dependents),
            affected=affected.items,
        )

    def delete(
        self,
        kind: EntityKind,
        entity_id: str,
        tenant_id: str,
        user_id: str | None,
        cascade: bool = False,
    ) -> bool:
        self.delete_with_report(kind, entity_id, tenant_id, user_id, cascade=cascade)
        return True

    def delete_with_report(
        self,
        kind: EntityKind,
        entity_id: str,
        tenant_id: str,
        user_id: str | None,
        *,
        cascade: bool = False,
    ) -> CascadeReport:
        self._ensure_deletable(kind)
        with self._session() as session:
            store = FarmStore(session, tenant_id)
            try:
                affected = self._load_affected(store, kind, entity_id)
                report = self._executor.execute(store, affected, user_id=user_id, cascade=cascade)
                with store_step("commit", kind, entity_id):
                    session.commit()
            except BlockedError as exc:
                session.rollback()
                logger.warning(
                    "delete blocked tenant=%s kind=%s id=%s blockers=%s",
                    tenant_id,
                    kind,
                    entity_id,
                    exc.blockers,
                )
                raise
            except HasDependentsError as exc:
                session.rollback()
                logger.warning(
                    "delete rejected tenant=%s kind=%s id=%s dependents=%s",
                    tenant_id,
                    kind,
                    entity_id,
                    exc.dependents,
                )
                raise
            except FarmIntegrityError:
                session.rollback()
                raise

        logger.info(
            "delete applied tenant=%s kind=%s id=%s cascade=%s user=%s counts=%s",
            tenant_id,
            kind,
            entity_id,
            cascade,
            user_id,
            report.counts(),
        )
        return report

    def preview_site(self, site_id: str, tenant_id: str) -> DeletePreview:
        return self.preview(EntityKind.SITE, site_id, tenant_id)

    def delete_site(self, site_id: str, tenant_id: str, user_id: str | None, cascade: bool = False) -> bool:
        return self.delete(EntityKind.SITE, site_id, tenant_id, user_id, cascade)

    def preview_department(self, department_id: str, tenant_id: str) -> DeletePreview:
        return self.preview(EntityKind.DEPARTMENT, department_id, tenant_id)

    def delete_department(
        self,
        department_id: str,
        tenant_id: str,
        user_id: str | None,
        cascade: bool = False,
    ) -> bool:
        return self.delete(EntityKind.DEPARTMENT, department_id, tenant_id, user_id, cascade)

    def preview_system(self, system_id: str, tenant_id: str) -> DeletePreview:
        return self.preview(EntityKind.SYSTEM, system_id, tenant_id)

    def delete_system(self, system_id: str, tenant_id: str, user_id: str | None, cascade: bool = False) -> bool:
        return self.delete(EntityKind.SYSTEM, system_id, tenant_id, user_id, cascade)

    def preview_equipment(self, equipment_id: str, tenant_id: str) -> DeletePreview:
        return self.preview(EntityKind.EQUIPMENT, equipment_id, tenant_id)

    def delete_equipment(
        self,
        equipment_id: str,
        tenant_id: str,
        user_id: str | None,
        cascade: bool = False,
    ) -> bool:
        return self.delete(EntityKind.EQUIPMENT, equipment_id, tenant_id, user_id, cascade)
