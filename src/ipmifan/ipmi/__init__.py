"""
IPMI Communication Package for ipmifan

This package wraps ipmitool for reading temperature sensors and driving
Supermicro fan zones.

Key Components:
- IPMICommander: Actuator gateway (manual/auto mode, per-zone duty)
- IPMISensorReader: Sensor gateway (named temperature readings)

Example Usage:
    >>> from ipmifan.ipmi import IPMICommander, IPMISensorReader
    >>>
    >>> commander = IPMICommander({"cpu": 0, "peripheral": 1})
    >>> reader = IPMISensorReader(commander)
    >>> reader.read_sensor("CPU1 Temp")
    >>>
    >>> commander.enable_manual_mode()
    >>> commander.set_zone_duty("cpu", 40)
    >>> commander.enable_auto_mode()  # Return to automatic control

Note:
    This package requires ipmitool and, for in-band access, root.
"""

from .commander import IPMICommander, IPMIError, IPMIConnectionError, IPMICommandError, FanMode
from .sensors import IPMISensorReader, SensorReading, get_highest_temperature

__all__ = [
    'IPMICommander',
    'IPMIError',
    'IPMIConnectionError',
    'IPMICommandError',
    'FanMode',
    'IPMISensorReader',
    'SensorReading',
    'get_highest_temperature'
]
