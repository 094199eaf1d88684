"""
IPMI Command Execution Module

This module provides a wrapper around ipmitool for executing IPMI commands
and driving the fan zones of Supermicro servers.
"""

import subprocess
import logging
import shutil
import time
from typing import Dict, List, Optional, Sequence, Union
from enum import Enum

logger = logging.getLogger(__name__)

class FanMode(Enum):
    """Supermicro fan control modes"""
    STANDARD = 0x00  # BMC control, target 50% both zones
    FULL = 0x01      # Manual control enabled
    OPTIMAL = 0x02   # BMC control, CPU 30%, Peripheral low
    HEAVY_IO = 0x04  # BMC control, CPU 50%, Peripheral 75%

class IPMIError(Exception):
    """Base exception for IPMI-related errors"""
    pass

class IPMIConnectionError(IPMIError):
    """Raised when IPMI connection fails"""
    pass

class IPMICommandError(IPMIError):
    """Raised when an IPMI command fails"""
    pass


def percent_to_hex(percent: int, scale: int = 255) -> str:
    """Encode a duty percentage as the raw byte the BMC expects.

    Args:
        percent: Duty cycle percentage (0-100)
        scale: Raw value that means 100%

    Returns:
        Hex byte string, e.g. "0x26" for 15% on a 0-255 scale
    """
    return f"0x{(percent * scale) // 100:02x}"


class IPMICommander:
    """Handles IPMI command execution and fan zone control"""

    # Known dangerous commands that should never be executed
    BLACKLISTED_COMMANDS = {
        # Commands that affect fan/sensor behavior
        (0x06, 0x01),  # Get supported commands - causes fans to drop speed
        (0x06, 0x02),  # Get OEM commands - may affect sensor readings
    }

    # Supermicro OEM raw commands (X10 and later)
    SET_MODE = "raw 0x30 0x45 0x01"
    SET_ZONE_DUTY = "raw 0x30 0x70 0x66 0x01"

    # The fan mode command is the fallback for boards that reject the
    # standard mode reset
    DEFAULT_AUTO_MODE_COMMANDS = (
        "raw 0x30 0x45 0x01 0x00",
        "raw 0x30 0x01 0x01",
    )

    def __init__(self, zones: Dict[str, int], host: str = "localhost", username: str = "ADMIN",
                 password: str = "ADMIN", interface: str = "lanplus", sudo: bool = False,
                 timeout: float = 10.0, retries: int = 3, retry_delay: float = 1.0,
                 command_delay: float = 0.0, duty_scale: int = 255,
                 auto_mode_commands: Optional[Sequence[str]] = None):
        """Initialize IPMI commander with connection details

        Args:
            zones: Zone name to IPMI zone id mapping
            host: IPMI host address ("localhost" for the in-band interface)
            username: IPMI username
            password: IPMI password
            interface: IPMI interface type for remote hosts
            sudo: Prefix local ipmitool calls with sudo
            timeout: Seconds before a single ipmitool call is abandoned
            retries: Number of attempts per command
            retry_delay: Delay between retries in seconds
            command_delay: Delay after each successful command in seconds
            duty_scale: Raw duty value that represents 100%
            auto_mode_commands: Commands tried in order to restore BMC control
        """
        if not zones:
            raise ValueError("At least one fan zone is required")
        self.zones = dict(zones)
        self.host = host
        self.username = username
        self.password = password
        self.interface = interface
        self.sudo = sudo
        self.timeout = timeout
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self.command_delay = command_delay
        self.duty_scale = duty_scale
        self.auto_mode_commands = tuple(auto_mode_commands or self.DEFAULT_AUTO_MODE_COMMANDS)

    @classmethod
    def from_config(cls, ipmi_config, zones: Dict[str, int]) -> "IPMICommander":
        """Build a commander from an IPMIConfig

        Args:
            ipmi_config: ipmifan.config.IPMIConfig instance
            zones: Zone name to IPMI zone id mapping
        """
        return cls(
            zones,
            host=ipmi_config.host,
            username=ipmi_config.username,
            password=ipmi_config.password,
            interface=ipmi_config.interface,
            sudo=ipmi_config.sudo,
            timeout=ipmi_config.timeout,
            retries=ipmi_config.retries,
            retry_delay=ipmi_config.retry_delay,
            command_delay=ipmi_config.command_delay,
            duty_scale=ipmi_config.duty_scale,
            auto_mode_commands=ipmi_config.auto_mode_commands,
        )

    @staticmethod
    def is_available() -> bool:
        """Check whether ipmitool is installed"""
        return shutil.which("ipmitool") is not None

    def _base_command(self) -> List[str]:
        if self.host == "localhost":
            return ["sudo", "ipmitool"] if self.sudo else ["ipmitool"]
        # For remote access, include connection parameters
        return [
            "ipmitool", "-I", self.interface,
            "-H", self.host,
            "-U", self.username,
            "-P", self.password
        ]

    def _validate_raw_command(self, args: Sequence[str]) -> None:
        """Validate a raw IPMI command for safety and format.

        This method checks IPMI commands for:
        1. Valid hex format in every command byte
        2. Blacklisted commands that could affect system stability
        3. Valid mode control values

        Args:
            args: Command arguments (e.g., ["raw", "0x30", "0x45", "0x01", "0x01"])

        Raises:
            IPMIError: If command is blacklisted or invalid:
                - "Invalid command format: malformed hex value {value}"
                - "Command {hex(netfn)} {hex(cmd)} is blacklisted for safety"
                - "Invalid fan mode: {hex(mode)}"

        Examples:
            >>> commander._validate_raw_command(["raw", "0x30", "0x45", "0x01", "0x01"])
            >>> commander._validate_raw_command(["raw", "0x06", "0x01"])  # Raises IPMIError
        """
        if len(args) < 3 or args[0] != "raw":
            return  # Not a raw command, skip validation

        values = []
        for p in args[1:]:
            hex_val = p[2:] if p.lower().startswith('0x') else p
            if not hex_val or not all(c in '0123456789abcdefABCDEF' for c in hex_val):
                raise IPMIError(f"Invalid command format: malformed hex value {p}")
            value = int(hex_val, 16)
            if value > 0xff:
                raise IPMIError(f"Invalid command format: {p} is not a byte")
            values.append(value)

        netfn, cmd = values[0], values[1]
        if (netfn, cmd) in self.BLACKLISTED_COMMANDS:
            raise IPMIError(f"Command {hex(netfn)} {hex(cmd)} is blacklisted for safety")

        # Mode set: 0x30 0x45 0x01 <mode>
        if netfn == 0x30 and cmd == 0x45 and len(values) >= 4 and values[2] == 0x01:
            valid_modes = [m.value for m in FanMode]
            if values[3] not in valid_modes:
                raise IPMIError(f"Invalid fan mode: {hex(values[3])}")

    def _execute_ipmi_command(self, command: Union[str, Sequence[str]]) -> str:
        """Execute an IPMI command and return its output

        Args:
            command: ipmitool arguments, as a string or a list when an
                argument contains spaces (sensor names)

        Returns:
            Command output as string

        Raises:
            IPMIConnectionError: If connection fails
            IPMICommandError: If command execution fails
            IPMIError: If command is invalid or unsafe
        """
        args = command.split() if isinstance(command, str) else list(command)
        self._validate_raw_command(args)
        full_cmd = self._base_command() + args

        last_error = None
        for attempt in range(self.retries):
            if attempt > 0:
                time.sleep(self.retry_delay)
                logger.debug(f"Retrying IPMI command (attempt {attempt + 1}/{self.retries})")

            try:
                result = subprocess.run(
                    full_cmd,
                    capture_output=True,
                    text=True,
                    check=True,
                    timeout=self.timeout
                )
                if self.command_delay:
                    time.sleep(self.command_delay)
                return result.stdout.strip()
            except FileNotFoundError as e:
                raise IPMIConnectionError(f"ipmitool not found: {e}")
            except subprocess.TimeoutExpired as e:
                last_error = e
                logger.debug(f"IPMI command timed out after {self.timeout}s ({attempt + 1}/{self.retries})")
            except subprocess.CalledProcessError as e:
                last_error = e
                stderr = e.stderr or ""
                if "Device or resource busy" in stderr:
                    logger.debug(f"IPMI device busy, retrying... ({attempt + 1}/{self.retries})")
                    continue
                if "Error in open session" in stderr:
                    raise IPMIConnectionError(f"Failed to connect to IPMI: {stderr.strip()}")
                logger.debug(f"IPMI command failed: {stderr.strip()}")

        detail = last_error.stderr.strip() if isinstance(last_error, subprocess.CalledProcessError) and last_error.stderr else str(last_error)
        raise IPMICommandError(f"Command failed after {self.retries} attempts: {detail}")

    def enable_manual_mode(self) -> bool:
        """Switch fan control to manual (software owned) mode.

        Returns:
            True if the BMC accepted the mode change
        """
        try:
            self._execute_ipmi_command(f"{self.SET_MODE} 0x{FanMode.FULL.value:02x}")
        except IPMIError as e:
            logger.error(f"Failed to enable manual fan control mode: {e}")
            return False
        logger.info("Manual fan control mode enabled")
        return True

    def enable_auto_mode(self) -> bool:
        """Return fan control to the BMC.

        Each configured command is tried in order until one succeeds.

        Returns:
            True if any command was accepted
        """
        for command in self.auto_mode_commands:
            try:
                self._execute_ipmi_command(command)
            except IPMIError as e:
                logger.warning(f"Auto mode command '{command}' failed: {e}")
                continue
            logger.info(f"Automatic fan control mode restored ({command})")
            return True
        logger.error("Failed to restore automatic fan control mode")
        return False

    def set_zone_duty(self, zone: str, percent: int) -> bool:
        """Set the duty cycle of one fan zone.

        Args:
            zone: Zone name
            percent: Duty cycle percentage (0-100)

        Returns:
            True if the BMC accepted the write

        Raises:
            ValueError: If the zone is unknown or percent is out of range
        """
        if zone not in self.zones:
            raise ValueError(f"Unknown fan zone '{zone}'")
        if not 0 <= percent <= 100:
            raise ValueError("Fan duty must be between 0 and 100")

        zone_id = self.zones[zone]
        command = f"{self.SET_ZONE_DUTY} 0x{zone_id:02x} {percent_to_hex(percent, self.duty_scale)}"
        try:
            self._execute_ipmi_command(command)
        except IPMIError as e:
            logger.error(f"Failed to set fan duty for zone {zone} to {percent}%: {e}")
            return False
        logger.debug(f"Zone {zone} (0x{zone_id:02x}) duty set to {percent}%")
        return True

    def get_sensor_record(self, name: str) -> str:
        """Get the full `sensor get` record for one sensor

        Args:
            name: Sensor name (e.g., "CPU1 Temp")

        Returns:
            Raw ipmitool output

        Raises:
            IPMIError: If the sensor cannot be queried
        """
        return self._execute_ipmi_command(["sensor", "get", name])
