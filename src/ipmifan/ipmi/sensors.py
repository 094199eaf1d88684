"""
Temperature Sensor Module

This module reads named temperature sensors through IPMI and reduces
a polling cycle's readings to the single value the controller acts on.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .commander import IPMICommander, IPMIError

logger = logging.getLogger(__name__)

# " Sensor Reading        : 45 (+/- 0) degrees C"
_READING_RE = re.compile(r"Sensor Reading\s*:\s*(\S+)")
_NUMBER_RE = re.compile(r"^(\d+)(?:\.\d+)?$")


@dataclass
class SensorReading:
    """Represents one temperature sensor reading.

    Attributes:
        name: Sensor identifier (e.g., "CPU1 Temp")
        celsius: Whole degrees Celsius, or None when unreadable
        timestamp: Unix timestamp when reading was taken
        valid: False if the value could not be obtained or parsed

    Examples:
        >>> reading = SensorReading("CPU1 Temp", 45, time.time(), True)
        >>> print(f"{reading.name}: {reading.celsius}°C")
        CPU1 Temp: 45°C
    """
    name: str
    celsius: Optional[int]
    timestamp: float
    valid: bool

    @property
    def age(self) -> float:
        """Get age of reading in seconds."""
        return time.time() - self.timestamp


def parse_sensor_record(output: str) -> Optional[int]:
    """Extract the temperature from `ipmitool sensor get` output.

    Decimals are truncated. "No Reading", "Not Available" and anything else
    that is not a plain number gives None.

    Args:
        output: Raw ipmitool output

    Returns:
        Temperature in whole degrees Celsius, or None
    """
    match = _READING_RE.search(output)
    if not match:
        return None
    number = _NUMBER_RE.match(match.group(1))
    if not number:
        return None
    return int(number.group(1))


def get_highest_temperature(readings: Iterable[SensorReading]) -> Optional[int]:
    """Get the highest valid temperature of a polling cycle.

    Args:
        readings: Readings taken in one cycle

    Returns:
        Highest valid temperature, or None if no reading is valid
    """
    temps = [r.celsius for r in readings if r.valid]
    if not temps:
        return None
    return max(temps)


class IPMISensorReader:
    """Reads named temperature sensors via IPMI.

    Reading never raises for device or parse problems: failures come back as
    readings with valid=False so a single missing sensor is only excluded
    from the cycle.
    """

    def __init__(self, commander: IPMICommander):
        """Initialize sensor reader

        Args:
            commander: IPMI commander instance
        """
        self.commander = commander

    def read_sensor(self, name: str) -> SensorReading:
        """Read one named temperature sensor

        Args:
            name: Sensor name

        Returns:
            SensorReading, with valid=False on any failure
        """
        timestamp = time.time()
        try:
            output = self.commander.get_sensor_record(name)
        except IPMIError as e:
            logger.debug(f"Failed to query sensor {name}: {e}")
            return SensorReading(name, None, timestamp, False)

        celsius = parse_sensor_record(output)
        if celsius is None:
            logger.debug(f"Could not parse reading for sensor {name}")
            return SensorReading(name, None, timestamp, False)
        return SensorReading(name, celsius, timestamp, True)

    def read_sensors(self, names: Iterable[str]) -> List[SensorReading]:
        """Read every named sensor once

        Args:
            names: Sensor names

        Returns:
            One reading per name, in order
        """
        return [self.read_sensor(name) for name in names]
