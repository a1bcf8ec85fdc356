from __future__ import annotations

from app.domain.models import EntityKind, RelationAction

# (parent kind, relation) -> what happens to the related rows when the parent is removed.
RELATION_POLICIES: dict[tuple[EntityKind, str], RelationAction] = {
    (EntityKind.SITE, "departments"): RelationAction.ORPHAN,
    (EntityKind.SITE, "systems"): RelationAction.DELETE,
    (EntityKind.DEPARTMENT, "equipment"): RelationAction.DELETE,
    (EntityKind.DEPARTMENT, "tanks"): RelationAction.DELETE,
    (EntityKind.DEPARTMENT, "systems"): RelationAction.ORPHAN,
    (EntityKind.SYSTEM, "child_systems"): RelationAction.DELETE,
    (EntityKind.SYSTEM, "equipment"): RelationAction.DEACTIVATE,
    (EntityKind.SYSTEM, "equipment_systems"): RelationAction.UNLINK,
    (EntityKind.EQUIPMENT, "child_equipment"): RelationAction.DELETE,
    (EntityKind.EQUIPMENT, "sub_equipment"): RelationAction.DEACTIVATE,
    (EntityKind.EQUIPMENT, "equipment_systems"): RelationAction.UNLINK,
}

# Affected-set lists that make a non-cascade delete fail with HasDependents.
# Coverage differs per kind on purpose: a System only counts its child systems,
# connected equipment does not block it.
DEPENDENT_RELATIONS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.SITE: ("departments", "systems"),
    EntityKind.DEPARTMENT: ("equipment", "tanks"),
    EntityKind.SYSTEM: ("child_systems",),
    EntityKind.EQUIPMENT: ("child_equipment", "sub_equipment"),
}

DELETABLE_KINDS: tuple[EntityKind, ...] = tuple(DEPENDENT_RELATIONS)

HIERARCHICAL_KINDS: frozenset[EntityKind] = frozenset({EntityKind.SYSTEM, EntityKind.EQUIPMENT})


def relation_action(kind: EntityKind, relation: str) -> RelationAction:
    try:
        return RELATION_POLICIES[(kind, relation)]
    except KeyError as exc:
        raise ValueError(f"no delete policy for {kind}.{relation}") from exc


def dependent_relations(kind: EntityKind) -> tuple[str, ...]:
    return DEPENDENT_RELATIONS.get(kind, ())
