from __future__ import annotations

import logging
import os

from app.domain.delete_policy import HIERARCHICAL_KINDS
from app.domain.models import EntityKind
from app.infra.farm_store import FarmStore

logger = logging.getLogger(__name__)

FARM_HIERARCHY_STRATEGY = os.getenv("FARM_HIERARCHY_STRATEGY", "auto")
FARM_HIERARCHY_MAX_DEPTH = int(os.getenv("FARM_HIERARCHY_MAX_DEPTH", "64"))

HIERARCHY_STRATEGIES = ("auto", "cte", "levels")


class HierarchyResolver:
    """Walks the self-referencing System and Equipment trees.

    ``resolve_descendants`` returns ids breadth-first, parents before their
    children, excluding the root. Consumers that mutate must iterate the
    result in reverse so leaves are handled before their parents.
    """

    def __init__(self, strategy: str | None = None, max_depth: int | None = None) -> None:
        self.strategy = (strategy or FARM_HIERARCHY_STRATEGY).lower()
        if self.strategy not in HIERARCHY_STRATEGIES:
            raise ValueError(f"unsupported hierarchy strategy: {self.strategy}")
        self.max_depth = max_depth or FARM_HIERARCHY_MAX_DEPTH

    def resolve_descendants(self, store: FarmStore, root_id: str, kind: EntityKind) -> list[str]:
        if kind not in HIERARCHICAL_KINDS:
            raise ValueError(f"{kind} is not a self-referencing hierarchy")
        if self._use_cte(store):
            return self._resolve_with_cte(store, root_id, kind)
        return self._resolve_by_levels(store, root_id, kind)

    def resolve_forest(self, store: FarmStore, root_ids: list[str], kind: EntityKind) -> list[str]:
        """Roots followed by their descendants, each id once, parents first."""
        ordered: list[str] = []
        seen: set[str] = set()
        for root_id in root_ids:
            if root_id in seen:
                continue
            seen.add(root_id)
            ordered.append(root_id)
            for descendant_id in self.resolve_descendants(store, root_id, kind):
                if descendant_id in seen:
                    continue
                seen.add(descendant_id)
                ordered.append(descendant_id)
        return ordered

    def _use_cte(self, store: FarmStore) -> bool:
        if self.strategy == "levels":
            return False
        if self.strategy == "cte":
            return True
        return store.supports_recursive_cte

    def _resolve_with_cte(self, store: FarmStore, root_id: str, kind: EntityKind) -> list[str]:
        rows = store.descendant_ids_cte(kind, root_id, self.max_depth)
        visited: set[str] = {root_id}
        ordered: list[str] = []
        for entity_id, _depth in rows:
            if entity_id in visited:
                continue
            visited.add(entity_id)
            ordered.append(entity_id)
        if rows and rows[-1][1] >= self.max_depth:
            logger.warning(
                "hierarchy traversal hit max depth tenant=%s kind=%s root=%s depth=%s",
                store.tenant_id,
                kind,
                root_id,
                self.max_depth,
            )
        return ordered

    def _resolve_by_levels(self, store: FarmStore, root_id: str, kind: EntityKind) -> list[str]:
        visited: set[str] = {root_id}
        ordered: list[str] = []
        frontier = [root_id]
        while frontier:
            next_level: list[str] = []
            for child in store.find_children(kind, frontier):
                child_id = str(child.id)
                if child_id in visited:
                    continue
                visited.add(child_id)
                next_level.append(child_id)
            ordered.extend(next_level)
            frontier = next_level
        return ordered
