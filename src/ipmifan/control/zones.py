"""
Zone State Tracking Module

Remembers the last duty confirmed on each fan zone so the control loop only
talks to the BMC when a zone actually needs a new duty.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


class ZoneStateTracker:
    """Tracks last-applied duty per fan zone.

    A zone starts out unknown (None), which never equals a real duty, so the
    first cycle always writes every zone. Records are only updated after a
    confirmed write; a failed write leaves the previous value in place.
    """

    def __init__(self, zones: Iterable[str]):
        """Initialize tracker

        Args:
            zones: Zone names, fixed for the lifetime of the tracker
        """
        self._duties: Dict[str, Optional[int]] = {zone: None for zone in zones}
        if not self._duties:
            raise ValueError("At least one zone is required")

    @property
    def zones(self) -> Tuple[str, ...]:
        return tuple(self._duties)

    def current(self, zone: str) -> Optional[int]:
        """Get last confirmed duty for a zone

        Args:
            zone: Zone name

        Returns:
            Duty percentage, or None if the zone was never written

        Raises:
            KeyError: If the zone is not tracked
        """
        return self._duties[zone]

    def should_write(self, zone: str, duty: int) -> bool:
        """Check whether a zone needs a write to reach a duty

        Args:
            zone: Zone name
            duty: Target duty percentage

        Returns:
            True if the zone is unknown or holds a different duty
        """
        last = self._duties[zone]
        return last is None or last != duty

    def record_written(self, zone: str, duty: int) -> None:
        """Record a confirmed successful write"""
        if zone not in self._duties:
            raise KeyError(zone)
        previous = self._duties[zone]
        self._duties[zone] = duty
        logger.debug(f"Zone {zone}: {previous}% -> {duty}%")

    def snapshot(self) -> Dict[str, Optional[int]]:
        return dict(self._duties)
