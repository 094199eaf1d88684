"""
Safety Supervisor Module

Decides when the controller can no longer be trusted with the fans and
runs the one exit sequence that hands them back to the BMC.
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional, Sequence

from ..ipmi import IPMICommander

logger = logging.getLogger(__name__)

FULL_DUTY = 100


class SafetyState(Enum):
    """Safety states. Every state but NOMINAL is terminal."""
    NOMINAL = "nominal"
    EMERGENCY_TEMPERATURE = "emergency_temperature"
    SENSOR_FAILURE = "sensor_failure"
    ACTUATOR_FAILURE = "actuator_failure"
    CONTROLLER_FAULT = "controller_fault"


class FailsafeTriggered(Exception):
    """Raised after the failsafe sequence has run"""

    def __init__(self, state: SafetyState, reason: str):
        super().__init__(f"{state.value}: {reason}")
        self.state = state
        self.reason = reason


class SafetySupervisor:
    """Evaluates danger conditions and drives failsafe escalation.

    Escalation always runs the same steps in the same order:
    1. Attempt 100% duty on every zone
    2. Attempt to return fan control to the BMC
    3. Raise FailsafeTriggered

    Each step is best effort. A failed write or mode change is logged and the
    sequence carries on.
    """

    def __init__(self, commander: IPMICommander, zones: Sequence[str], emergency_temp: int,
                 restore_auto: Callable[[], bool], settle_delay: float = 2.0):
        """Initialize supervisor

        Args:
            commander: Actuator gateway used to force full speed
            zones: Zone names to force
            emergency_temp: Temperature at or above which the controller trips
            restore_auto: Callback performing the auto mode transition
            settle_delay: Seconds between forcing full speed and the mode change
        """
        self.commander = commander
        self.zones = tuple(zones)
        self.emergency_temp = emergency_temp
        self.settle_delay = settle_delay
        self._restore_auto = restore_auto
        self.state = SafetyState.NOMINAL

    @property
    def tripped(self) -> bool:
        return self.state is not SafetyState.NOMINAL

    def evaluate(self, temperature: Optional[int]) -> SafetyState:
        """Classify a cycle's danger signal

        Args:
            temperature: Highest valid reading, or None if none was valid

        Returns:
            SENSOR_FAILURE, EMERGENCY_TEMPERATURE or NOMINAL
        """
        if temperature is None:
            return SafetyState.SENSOR_FAILURE
        if temperature >= self.emergency_temp:
            return SafetyState.EMERGENCY_TEMPERATURE
        return SafetyState.NOMINAL

    def _force_full_speed(self) -> None:
        for zone in self.zones:
            try:
                ok = self.commander.set_zone_duty(zone, FULL_DUTY)
            except Exception as e:
                logger.error(f"Failsafe: error forcing zone {zone} to {FULL_DUTY}%: {e}")
                continue
            if not ok:
                logger.error(f"Failsafe: could not force zone {zone} to {FULL_DUTY}%")

    def escalate(self, state: SafetyState, reason: str) -> None:
        """Run the failsafe sequence and terminate control

        Args:
            state: Terminal state being entered
            reason: Human readable cause

        Raises:
            FailsafeTriggered: Always, once the sequence has run
        """
        if state is SafetyState.NOMINAL:
            raise ValueError("Cannot escalate to the nominal state")
        if not self.tripped:
            self.state = state

        logger.critical(f"Safety trip ({state.value}): {reason}")
        logger.critical(f"Setting fans to {FULL_DUTY}% and reverting to automatic mode")
        self._force_full_speed()

        if self.settle_delay:
            time.sleep(self.settle_delay)

        try:
            restored = self._restore_auto()
        except Exception as e:
            logger.critical(f"Failed to restore automatic fan control: {e}")
            restored = False
        if not restored:
            logger.critical("Automatic fan control could not be confirmed; fans were last commanded to full speed")

        raise FailsafeTriggered(state, reason)
