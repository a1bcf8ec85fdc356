from __future__ import annotations

from app.domain.models import EntityKind


class FarmIntegrityError(Exception):
    pass


class NotFoundError(FarmIntegrityError):
    pass


class BlockedError(FarmIntegrityError):
    def __init__(self, blockers: list[str]) -> None:
        super().__init__("; ".join(blockers) or "delete blocked")
        self.blockers = list(blockers)


class HasDependentsError(FarmIntegrityError):
    def __init__(self, kind: EntityKind, dependents: dict[str, int]) -> None:
        summary = ", ".join(f"{count} {name}" for name, count in dependents.items())
        super().__init__(f"{kind.value.lower()} has dependents ({summary}); use cascade=true to delete them")
        self.kind = kind
        self.dependents = dict(dependents)


class ValidationConflictError(FarmIntegrityError):
    pass


class StoreFailureError(FarmIntegrityError):
    def __init__(self, *, step: str, entity_kind: EntityKind, entity_id: str | None, cause: Exception) -> None:
        target = f"{entity_kind.value}:{entity_id}" if entity_id else entity_kind.value
        super().__init__(f"store failure during {step} on {target}: {cause}")
        self.step = step
        self.entity_kind = entity_kind
        self.entity_id = entity_id
