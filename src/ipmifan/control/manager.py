"""
Fan Control Manager Module

This module provides the main control loop: it polls the primary
temperature sensors, maps the hottest reading onto the fan curve and keeps
every zone at that duty while holding manual fan mode.
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import StartupHandshakeError
from ..ipmi import IPMICommander, IPMISensorReader, get_highest_temperature
from .safety import FULL_DUTY, FailsafeTriggered, SafetyState, SafetySupervisor
from .zones import ZoneStateTracker

logger = logging.getLogger(__name__)


class ControlMode(Enum):
    """Who owns the fans: the BMC firmware or this controller"""
    AUTO = "auto"
    MANUAL = "manual"


class LoopState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class ControlManager:
    """Manages fan control loop and safety features"""

    def __init__(self, config, commander: Optional[IPMICommander] = None,
                 sensor_reader: Optional[IPMISensorReader] = None):
        """Initialize control manager

        Args:
            config: Validated ipmifan.config.ControllerConfig
            commander: Actuator gateway (built from config if omitted)
            sensor_reader: Sensor gateway (built on the commander if omitted)
        """
        self.config = config
        self.commander = commander or IPMICommander.from_config(config.ipmi, config.zone_ids)
        self.sensor_reader = sensor_reader or IPMISensorReader(self.commander)
        self.curve = config.curve
        self.zones = ZoneStateTracker(config.zone_names)
        self.supervisor = SafetySupervisor(
            self.commander,
            config.zone_names,
            config.emergency_temp,
            restore_auto=lambda: self.restore_auto_mode(force_full_speed=False),
            settle_delay=config.settle_delay
        )

        self.mode = ControlMode.AUTO
        self.state = LoopState.STOPPED
        self.last_temperature: Optional[int] = None
        self.target_duty: Optional[int] = None

        self._shutdown = threading.Event()
        self._auto_restore_attempted = False
        self._last_heartbeat: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self.state is LoopState.RUNNING

    def request_shutdown(self) -> None:
        """Ask the loop to stop; interrupts the wait between cycles"""
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
        self._shutdown.set()

    def read_temperature(self) -> Optional[int]:
        """Read the primary sensors and return the hottest valid reading

        Returns:
            Danger signal in °C, or None if every sensor missed
        """
        readings = self.sensor_reader.read_sensors(self.config.primary_sensors)
        for reading in readings:
            if not reading.valid:
                logger.warning(f"Unable to read sensor {reading.name}, excluding it this cycle")
        return get_highest_temperature(readings)

    def restore_auto_mode(self, force_full_speed: bool = True) -> bool:
        """Hand fan control back to the BMC (best effort)

        Args:
            force_full_speed: Drive every zone to 100% if the BMC refuses

        Returns:
            True if automatic mode was restored
        """
        self._auto_restore_attempted = True
        logger.info("Attempting to return to automatic fan control mode")
        try:
            restored = self.commander.enable_auto_mode()
        except Exception as e:
            logger.error(f"Error restoring automatic fan control: {e}")
            restored = False

        if restored:
            self.mode = ControlMode.AUTO
            logger.info("Automatic fan control mode restored")
            return True

        logger.error("Could not restore automatic fan control mode")
        if force_full_speed:
            logger.warning(f"Setting fans to {FULL_DUTY}% for safety")
            for zone in self.zones.zones:
                try:
                    if self.commander.set_zone_duty(zone, FULL_DUTY):
                        self.zones.record_written(zone, FULL_DUTY)
                except Exception as e:
                    logger.error(f"Failed to force zone {zone} to {FULL_DUTY}%: {e}")
        return False

    def startup(self) -> None:
        """Run pre-flight checks and take manual control of the fans

        Raises:
            StartupHandshakeError: If no sensor is readable, manual mode is
                refused or a zone rejects its test duty
        """
        self.state = LoopState.STARTING
        logger.info("Starting pre-flight checks")

        logger.info("Checking sensor availability")
        readings = self.sensor_reader.read_sensors(self.config.primary_sensors)
        for reading in readings:
            if reading.valid:
                logger.info(f"  {reading.name}: {reading.celsius}°C")
            else:
                logger.warning(f"  {reading.name}: Unable to read")
        if get_highest_temperature(readings) is None:
            self.state = LoopState.STOPPED
            raise StartupHandshakeError("Unable to read any primary temperature sensors")

        if not self.commander.enable_manual_mode():
            self.state = LoopState.STOPPED
            raise StartupHandshakeError("Unable to enable manual fan control mode")
        self.mode = ControlMode.MANUAL
        logger.info("Manual fan control mode active")

        tests = ", ".join(f"{z.name} to {z.test_duty}%" for z in self.config.zones)
        logger.info(f"Testing fan control (setting {tests})")
        for zone in self.config.zones:
            if not self.commander.set_zone_duty(zone.name, zone.test_duty):
                logger.error(f"Unable to set fan duty cycle for zone {zone.name}")
                self.restore_auto_mode()
                self.state = LoopState.STOPPED
                raise StartupHandshakeError(f"Fan zone {zone.name} rejected its test duty")
            self.zones.record_written(zone.name, zone.test_duty)

        if self.config.settle_delay:
            self._shutdown.wait(self.config.settle_delay)

        self.state = LoopState.RUNNING
        logger.info("Pre-flight checks completed successfully")

    def _log_status(self, temperature: int, target: int, changed: bool) -> None:
        if changed:
            return
        now = time.monotonic()
        message = f"Temperature: {temperature}°C | All zones: {target}% (stable)"
        if self._last_heartbeat is None or now - self._last_heartbeat >= self.config.heartbeat_interval:
            self._last_heartbeat = now
            logger.info(message)
        else:
            logger.debug(message)

    def run_cycle(self) -> bool:
        """Run one sample -> decide -> act cycle

        Returns:
            True if any zone was written

        Raises:
            FailsafeTriggered: If the cycle tripped the safety supervisor
        """
        temperature = self.read_temperature()

        state = self.supervisor.evaluate(temperature)
        if state is SafetyState.SENSOR_FAILURE:
            self.supervisor.escalate(state, "Unable to read any primary temperature sensor")
        elif state is SafetyState.EMERGENCY_TEMPERATURE:
            self.supervisor.escalate(
                state,
                f"Emergency temperature threshold exceeded: {temperature}°C "
                f"(threshold: {self.config.emergency_temp}°C)"
            )

        self.last_temperature = temperature
        target = self.curve.resolve(temperature)
        self.target_duty = target

        pending = [zone for zone in self.zones.zones if self.zones.should_write(zone, target)]
        if pending:
            logger.info(f"Temperature: {temperature}°C | Setting zones {', '.join(pending)}: {target}%")

        for zone in pending:
            if not self.commander.set_zone_duty(zone, target):
                self.supervisor.escalate(
                    SafetyState.ACTUATOR_FAILURE,
                    f"Failed to set zone {zone} to {target}%"
                )
            self.zones.record_written(zone, target)

        self._log_status(temperature, target, bool(pending))
        return bool(pending)

    def run(self) -> None:
        """Run the controller until shutdown or a safety trip

        Automatic fan control is always requested back before this returns or
        raises, unless an earlier path already attempted it.

        Raises:
            StartupHandshakeError: If pre-flight checks fail
            FailsafeTriggered: If the safety supervisor ended the run
        """
        logger.info("Fan controller starting")
        try:
            self.startup()
            logger.info(f"Starting main control loop (polling every {self.config.polling_interval} seconds)")
            logger.info(f"Controlling zones {', '.join(self.zones.zones)} with a shared curve")

            while not self._shutdown.is_set():
                try:
                    self.run_cycle()
                except FailsafeTriggered:
                    raise
                except Exception as e:
                    logger.error(f"Control loop error: {e}")
                    self.supervisor.escalate(SafetyState.CONTROLLER_FAULT, f"Control loop error: {e}")
                self._shutdown.wait(self.config.polling_interval)

            logger.info("Fan controller shutting down")
        finally:
            self.state = LoopState.STOPPED
            if self.mode is ControlMode.MANUAL and not self._auto_restore_attempted:
                logger.info("Restoring automatic fan control mode")
                self.restore_auto_mode()
            logger.info("Fan controller stopped")

    def get_status(self) -> Dict[str, Any]:
        """Get current control status

        Returns:
            Dictionary with current status information
        """
        return {
            "running": self.is_running,
            "state": self.state.value,
            "mode": self.mode.value,
            "safety": self.supervisor.state.value,
            "temperature": self.last_temperature,
            "target_duty": self.target_duty,
            "zones": self.zones.snapshot(),
        }
