from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..schemas.fleet import FleetUnit, UnitStatus
from ..schemas.inference import FleetUnitContext
from .observer import Channel

logger = logging.getLogger(__name__)


def default_fleet() -> list[FleetUnit]:
    return [
        FleetUnit(id="drone1", name="Eagle Eye Alpha", status=UnitStatus.ON_STATION, battery=95,
                  signal_strength=98, location="Sector A - Perimeter", role="Surveillance"),
        FleetUnit(id="drone2", name="Shadow Hawk Beta", status=UnitStatus.MAINTENANCE, battery=45,
                  signal_strength=0, location="Hangar Bay 2", role="Reconnaissance"),
        FleetUnit(id="drone3", name="Stealth Raven Gamma", status=UnitStatus.MAINTENANCE, battery=32,
                  signal_strength=0, location="Maintenance Bay", role="Stealth"),
        FleetUnit(id="drone4", name="Thunder Bird Delta", status=UnitStatus.MAINTENANCE, battery=18,
                  signal_strength=0, location="Repair Station", role="Combat"),
    ]


class FleetRoster:
    """Local status of the responding units. Every change goes out on ``changed``."""

    def __init__(self, units: Optional[Iterable[FleetUnit]] = None) -> None:
        self._units: dict[str, FleetUnit] = {u.id: u for u in (units if units is not None else default_fleet())}
        self.changed: Channel[FleetUnit] = Channel("fleet")

    def units(self) -> list[FleetUnit]:
        return list(self._units.values())

    def get(self, unit_id: str) -> FleetUnit:
        return self._units[unit_id]

    def set_status(self, unit_id: str, status: UnitStatus) -> FleetUnit:
        """Returns the unit as it was before the change."""
        previous = self._units[unit_id]
        if previous.status is status:
            return previous
        updated = previous.model_copy(update={"status": status})
        self._units[unit_id] = updated
        logger.info("[fleet] %s: %s -> %s", unit_id, previous.status.value, status.value)
        self.changed.publish(updated)
        return previous

    def available_units(self) -> list[FleetUnit]:
        return [u for u in self._units.values() if u.status is UnitStatus.ON_STATION]

    def contexts(self) -> list[FleetUnitContext]:
        return [FleetUnitContext(id=u.id, status=u.status.value, battery=u.battery) for u in self._units.values()]
