from __future__ import annotations

from collections.abc import Iterable

from app.domain.models import Equipment

BIOMASS_BLOCKER_TEMPLATE = (
    "{count} tank(s) contain {biomass:.2f} kg of active biomass. "
    "Please harvest or transfer fish before deleting."
)


def has_active_biomass(tank: Equipment) -> bool:
    return tank.is_tank and (tank.current_biomass or 0.0) > 0


def find_blockers(tanks: Iterable[Equipment]) -> list[str]:
    """Return the absolute vetoes for deleting a closure containing ``tanks``.

    Live biomass cannot be cascaded away: at most one message is produced,
    summarising how many tanks still hold fish and how much.
    """
    loaded: dict[str, Equipment] = {}
    for tank in tanks:
        if has_active_biomass(tank):
            loaded.setdefault(tank.id, tank)
    if not loaded:
        return []
    total_biomass = sum(float(tank.current_biomass) for tank in loaded.values())
    return [BIOMASS_BLOCKER_TEMPLATE.format(count=len(loaded), biomass=total_biomass)]
