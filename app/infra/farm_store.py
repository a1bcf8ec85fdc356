from __future__ import annotations

from collections.abc import Iterable
from typing import Any, cast

import sqlalchemy as sa
from sqlalchemy import Table
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, SQLModel, select

from app.domain.models import (
    Department,
    EntityKind,
    Equipment,
    EquipmentSystem,
    FarmSystem,
    Site,
    SubEquipment,
)

RECURSIVE_CTE_DIALECTS = frozenset({"postgresql", "sqlite", "mysql", "mariadb"})


class FarmStore:
    """Tenant-scoped data access for the farm hierarchy.

    Every statement built here is filtered by the store's tenant id. Soft
    deleted rows are invisible to reads and untouched by writes.
    """

    def __init__(self, session: Session, tenant_id: str) -> None:
        self.session = session
        self.tenant_id = tenant_id

    @property
    def supports_recursive_cte(self) -> bool:
        bind = self.session.get_bind()
        return bind.dialect.name in RECURSIVE_CTE_DIALECTS

    def _model(self, kind: EntityKind) -> type[SQLModel]:
        match kind:
            case EntityKind.SITE:
                return Site
            case EntityKind.DEPARTMENT:
                return Department
            case EntityKind.SYSTEM:
                return FarmSystem
            case EntityKind.EQUIPMENT:
                return Equipment
            case EntityKind.SUB_EQUIPMENT:
                return SubEquipment
            case EntityKind.EQUIPMENT_SYSTEM:
                return EquipmentSystem
        raise ValueError(f"unsupported entity kind: {kind}")

    def _table(self, kind: EntityKind) -> Table:
        return cast(Table, self._model(kind).__table__)  # type: ignore[attr-defined]

    def parent_column(self, kind: EntityKind) -> str:
        match kind:
            case EntityKind.SYSTEM:
                return "parent_system_id"
            case EntityKind.EQUIPMENT | EntityKind.SUB_EQUIPMENT:
                return "parent_equipment_id"
        raise ValueError(f"{kind} has no parent pointer")

    def _scope(self, table: Table, filters: dict[str, Any]) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = [table.c.tenant_id == self.tenant_id]
        if "is_deleted" in table.c:
            clauses.append(table.c.is_deleted.is_(False))
        for name, value in filters.items():
            column = table.c[name]
            if value is None:
                clauses.append(column.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        return clauses

    def find_by_id(self, kind: EntityKind, entity_id: str) -> Any | None:
        model = self._model(kind)
        table = self._table(kind)
        statement = select(model).where(*self._scope(table, {"id": entity_id}))
        return self.session.exec(statement).first()

    def find_where(self, kind: EntityKind, **filters: Any) -> list[Any]:
        model = self._model(kind)
        table = self._table(kind)
        statement = select(model).where(*self._scope(table, filters)).order_by(table.c.name, table.c.id)
        return list(self.session.exec(statement).all())

    def find_children(self, kind: EntityKind, parent_ids: Iterable[str]) -> list[Any]:
        """Live rows of ``kind`` whose parent pointer is in ``parent_ids``, ordered by id."""
        ids = list(parent_ids)
        if not ids:
            return []
        model = self._model(kind)
        table = self._table(kind)
        statement = (
            select(model)
            .where(*self._scope(table, {self.parent_column(kind): ids}))
            .order_by(table.c.id)
        )
        return list(self.session.exec(statement).all())

    def descendant_ids_cte(self, kind: EntityKind, root_id: str, max_depth: int) -> list[tuple[str, int]]:
        table = self._table(kind)
        parent = table.c[self.parent_column(kind)]
        base = (
            sa.select(table.c.id.label("id"), sa.literal(1, type_=sa.Integer).label("depth"))
            .where(*self._scope(table, {}))
            .where(parent == root_id)
            .cte("descendants", recursive=True)
        )
        previous = base.alias("previous")
        step = (
            sa.select(table.c.id, sa.cast(previous.c.depth + 1, sa.Integer).label("depth"))
            .join(previous, parent == previous.c.id)
            .where(*self._scope(table, {}))
            .where(previous.c.depth < max_depth)
        )
        tree = base.union_all(step)
        statement = sa.select(tree.c.id, tree.c.depth).order_by(tree.c.depth, tree.c.id)
        return [(str(row.id), int(row.depth)) for row in self.session.execute(statement).all()]

    def update_fields(self, kind: EntityKind, entity_id: str, values: dict[str, Any], **guards: Any) -> int:
        return self.bulk_update_where(kind, values, id=entity_id, **guards)

    def bulk_update_where(self, kind: EntityKind, values: dict[str, Any], **filters: Any) -> int:
        table = self._table(kind)
        statement = sa.update(table).where(*self._scope(table, filters)).values(**values)
        result = self.session.execute(statement)
        return int(getattr(result, "rowcount", 0) or 0)

    def find_junction_rows(
        self,
        *,
        equipment_ids: Iterable[str] = (),
        system_ids: Iterable[str] = (),
    ) -> list[EquipmentSystem]:
        clause = self._junction_clause(list(equipment_ids), list(system_ids))
        if clause is None:
            return []
        statement = (
            select(EquipmentSystem)
            .where(EquipmentSystem.tenant_id == self.tenant_id)
            .where(clause)
            .order_by(EquipmentSystem.system_id, EquipmentSystem.equipment_id)
        )
        return list(self.session.exec(statement).all())

    def delete_junction_where(
        self,
        *,
        equipment_ids: Iterable[str] = (),
        system_ids: Iterable[str] = (),
    ) -> list[tuple[str, str]]:
        """Hard-delete matching junction rows and return the pairs this statement removed.

        Rows already removed by a concurrent transaction are not reported.
        """
        equipment_list = list(equipment_ids)
        system_list = list(system_ids)
        clause = self._junction_clause(equipment_list, system_list)
        if clause is None:
            return []
        table = self._table(EntityKind.EQUIPMENT_SYSTEM)
        statement = sa.delete(table).where(table.c.tenant_id == self.tenant_id).where(clause)
        if self.session.get_bind().dialect.delete_returning:
            result = self.session.execute(statement.returning(table.c.equipment_id, table.c.system_id))
            removed = [(str(row.equipment_id), str(row.system_id)) for row in result.all()]
        else:
            locked = (
                sa.select(table.c.equipment_id, table.c.system_id)
                .where(table.c.tenant_id == self.tenant_id)
                .where(clause)
                .with_for_update()
            )
            removed = [(str(row.equipment_id), str(row.system_id)) for row in self.session.execute(locked).all()]
            self.session.execute(statement)
        return sorted(removed, key=lambda pair: (pair[1], pair[0]))

    def _junction_clause(self, equipment_ids: list[str], system_ids: list[str]) -> ColumnElement[bool] | None:
        table = self._table(EntityKind.EQUIPMENT_SYSTEM)
        clauses: list[ColumnElement[bool]] = []
        if equipment_ids:
            clauses.append(table.c.equipment_id.in_(equipment_ids))
        if system_ids:
            clauses.append(table.c.system_id.in_(system_ids))
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return sa.or_(*clauses)

    def increment_counter(self, kind: EntityKind, entity_id: str, field: str, delta: int = 1) -> int:
        table = self._table(kind)
        column = table.c[field]
        return self.bulk_update_where(kind, {field: column + delta}, id=entity_id)

    def decrement_counter(self, kind: EntityKind, entity_id: str, field: str, delta: int = 1) -> int:
        table = self._table(kind)
        column = table.c[field]
        floored = sa.case((column - delta < 0, 0), else_=column - delta)
        return self.bulk_update_where(kind, {field: floored}, id=entity_id)

    def count_where(self, kind: EntityKind, **filters: Any) -> int:
        table = self._table(kind)
        statement = sa.select(sa.func.count()).select_from(table).where(*self._scope(table, filters))
        return int(self.session.execute(statement).scalar_one())

    def count_junction_rows(self, system_id: str) -> int:
        table = self._table(EntityKind.EQUIPMENT_SYSTEM)
        statement = (
            sa.select(sa.func.count())
            .select_from(table)
            .where(table.c.tenant_id == self.tenant_id)
            .where(table.c.system_id == system_id)
        )
        return int(self.session.execute(statement).scalar_one())
