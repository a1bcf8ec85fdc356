from __future__ import annotations

from enum import StrEnum
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.api.deps import require_perm
from app.domain.models import (
    CounterCorrection,
    DeletePreview,
    DeleteResult,
    EntityKind,
    EquipmentRead,
    EquipmentReparentRequest,
)
from app.domain.permissions import PERM_FARM_DELETE, PERM_FARM_READ, PERM_FARM_WRITE
from app.infra.audit import set_audit_context
from app.infra.auth import Principal
from app.services.delete_service import DeleteService
from app.services.equipment_hierarchy_service import EquipmentHierarchyService
from app.services.integrity_errors import (
    BlockedError,
    FarmIntegrityError,
    HasDependentsError,
    NotFoundError,
    StoreFailureError,
    ValidationConflictError,
)

router = APIRouter()


class FarmResource(StrEnum):
    SITES = "sites"
    DEPARTMENTS = "departments"
    SYSTEMS = "systems"
    EQUIPMENT = "equipment"

    @property
    def kind(self) -> EntityKind:
        return RESOURCE_KINDS[self]


RESOURCE_KINDS: dict[FarmResource, EntityKind] = {
    FarmResource.SITES: EntityKind.SITE,
    FarmResource.DEPARTMENTS: EntityKind.DEPARTMENT,
    FarmResource.SYSTEMS: EntityKind.SYSTEM,
    FarmResource.EQUIPMENT: EntityKind.EQUIPMENT,
}


def get_delete_service() -> DeleteService:
    return DeleteService()


def get_equipment_hierarchy_service() -> EquipmentHierarchyService:
    return EquipmentHierarchyService()


DeleteSvc = Annotated[DeleteService, Depends(get_delete_service)]
HierarchySvc = Annotated[EquipmentHierarchyService, Depends(get_equipment_hierarchy_service)]
Reader = Annotated[Principal, Depends(require_perm(PERM_FARM_READ))]
Deleter = Annotated[Principal, Depends(require_perm(PERM_FARM_DELETE))]
Writer = Annotated[Principal, Depends(require_perm(PERM_FARM_WRITE))]


def _handle_integrity_error(exc: FarmIntegrityError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, BlockedError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "blocked", "blockers": exc.blockers},
        ) from exc
    if isinstance(exc, HasDependentsError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "has_dependents", "message": str(exc), "dependents": exc.dependents},
        ) from exc
    if isinstance(exc, ValidationConflictError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, StoreFailureError):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "store_failure", "step": exc.step},
        ) from exc
    raise exc


@router.post("/equipment:reconcile-counters", response_model=list[CounterCorrection])
def reconcile_equipment_counters(
    request: Request,
    principal: Writer,
    service: HierarchySvc,
) -> list[CounterCorrection]:
    corrections = service.reconcile_counters(principal.tenant_id)
    set_audit_context(
        request,
        action="farm.reconcile_counters",
        resource="farm/counters",
        detail={"corrections": len(corrections)},
    )
    return corrections


@router.post("/equipment/{equipment_id}/reparent", response_model=EquipmentRead)
def reparent_equipment(
    equipment_id: str,
    payload: EquipmentReparentRequest,
    request: Request,
    principal: Writer,
    service: HierarchySvc,
) -> EquipmentRead:
    set_audit_context(
        request,
        action="farm.equipment.reparent",
        resource=f"equipment/{equipment_id}",
        detail={"parent_equipment_id": payload.parent_equipment_id},
    )
    try:
        equipment = service.reparent_equipment(
            principal.tenant_id,
            equipment_id,
            payload.parent_equipment_id,
            principal.user_id,
        )
    except FarmIntegrityError as exc:
        _handle_integrity_error(exc)
        raise
    return EquipmentRead.model_validate(equipment)


@router.get("/{resource}/{entity_id}/delete-preview", response_model=DeletePreview)
def preview_delete(
    resource: FarmResource,
    entity_id: str,
    principal: Reader,
    service: DeleteSvc,
) -> DeletePreview:
    try:
        return service.preview(resource.kind, entity_id, principal.tenant_id)
    except FarmIntegrityError as exc:
        _handle_integrity_error(exc)
        raise


@router.delete("/{resource}/{entity_id}", response_model=DeleteResult)
def delete_entity(
    resource: FarmResource,
    entity_id: str,
    request: Request,
    principal: Deleter,
    service: DeleteSvc,
    cascade: Annotated[bool, Query()] = False,
) -> DeleteResult:
    set_audit_context(
        request,
        action=f"farm.{resource.kind.value.lower()}.delete",
        resource=f"{resource.value}/{entity_id}",
        detail={"cascade": cascade},
    )
    try:
        report = service.delete_with_report(
            resource.kind,
            entity_id,
            principal.tenant_id,
            principal.user_id,
            cascade=cascade,
        )
    except FarmIntegrityError as exc:
        _handle_integrity_error(exc)
        raise
    counts = report.counts()
    set_audit_context(request, detail={"counts": counts})
    return DeleteResult(
        entity_kind=resource.kind,
        entity_id=entity_id,
        deleted=True,
        cascade=cascade,
        counts=counts,
        counter_updates=report.counter_updates,
    )
