"""
Configuration Module

Loads the YAML configuration file and validates it into immutable settings
before the controller starts.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import yaml

from .control.curve import StepCurve
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/ipmifan/config.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "ipmi": {
        "host": "localhost",
        "timeout": 10,
        "retries": 3,
        "retry_delay": 1.0,
    },
    "sensors": {
        "primary": ["CPU1 Temp", "CPU2 Temp"],
    },
    "fans": {
        "polling_interval": 10,
        # Zone 0: CPU fans, zone 1: peripheral/system fans
        "zones": {
            "cpu": {"id": 0, "test_duty": 30},
            "peripheral": {"id": 1, "test_duty": 25},
        },
        # Shared by both zones
        "curve": [
            [0, 15],
            [70, 60],
            [75, 70],
            [80, 80],
            [85, 90],
            [90, 100],
        ],
    },
    "safety": {
        # Well below the 102°C high critical threshold
        "emergency_temp": 95,
        "settle_delay": 2,
        "heartbeat_interval": 60,
    },
    "logging": {
        "file": "/var/log/ipmifan.log",
        "max_bytes": 10485760,
        "backup_count": 1,
        "level": "INFO",
    },
}


@dataclass(frozen=True)
class ZoneConfig:
    name: str
    zone_id: int
    test_duty: int = 30


@dataclass(frozen=True)
class IPMIConfig:
    host: str = "localhost"
    username: str = "ADMIN"
    password: str = "ADMIN"
    interface: str = "lanplus"
    sudo: bool = False
    timeout: float = 10.0
    retries: int = 3
    retry_delay: float = 1.0
    command_delay: float = 0.0
    duty_scale: int = 255
    auto_mode_commands: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class LoggingConfig:
    file: Optional[str] = None
    max_bytes: int = 10485760
    backup_count: int = 1
    level: str = "INFO"


@dataclass(frozen=True)
class ControllerConfig:
    """Validated controller settings"""
    primary_sensors: Tuple[str, ...]
    zones: Tuple[ZoneConfig, ...]
    curve: StepCurve
    emergency_temp: int
    polling_interval: float = 10.0
    settle_delay: float = 2.0
    heartbeat_interval: float = 60.0
    ipmi: IPMIConfig = field(default_factory=IPMIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def zone_names(self) -> Tuple[str, ...]:
        return tuple(z.name for z in self.zones)

    @property
    def zone_ids(self) -> Dict[str, int]:
        return {z.name: z.zone_id for z in self.zones}


def _section(data: Dict[str, Any], name: str, required: bool = True) -> Dict[str, Any]:
    section = data.get(name)
    if section is None:
        if required:
            raise ConfigurationError(f"Missing required configuration: {name}")
        return {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Invalid configuration section '{name}': expected a mapping")
    return section


def _require(section: Dict[str, Any], key: str, path: str) -> Any:
    if section.get(key) is None:
        raise ConfigurationError(f"Missing required configuration: {path}.{key}")
    return section[key]


def _number(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"Invalid {what}: {value!r}")
    return value


def _parse_zones(fans: Dict[str, Any]) -> Tuple[ZoneConfig, ...]:
    raw = _require(fans, "zones", "fans")
    if not isinstance(raw, dict) or not raw:
        raise ConfigurationError("Invalid fan zones: at least one zone is required")

    zones = []
    seen_ids = set()
    for name, zone in raw.items():
        if isinstance(zone, int) and not isinstance(zone, bool):
            zone = {"id": zone}
        if not isinstance(zone, dict):
            raise ConfigurationError(f"Invalid zone '{name}': expected a mapping")
        zone_id = _require(zone, "id", f"fans.zones.{name}")
        if isinstance(zone_id, bool) or not isinstance(zone_id, int) or not 0 <= zone_id <= 0xff:
            raise ConfigurationError(f"Invalid zone id for '{name}': {zone_id!r}")
        if zone_id in seen_ids:
            raise ConfigurationError(f"Invalid zone id for '{name}': {zone_id} is used twice")
        seen_ids.add(zone_id)

        test_duty = zone.get("test_duty", 30)
        if isinstance(test_duty, bool) or not isinstance(test_duty, int) or not 1 <= test_duty <= 100:
            raise ConfigurationError(f"Invalid test duty for '{name}': {test_duty!r}, must be 1-100")
        zones.append(ZoneConfig(str(name), zone_id, test_duty))
    return tuple(zones)


def _parse_ipmi(data: Dict[str, Any]) -> IPMIConfig:
    ipmi = _section(data, "ipmi", required=False)
    defaults = IPMIConfig()
    commands = ipmi.get("auto_mode_commands")
    if commands is not None:
        if isinstance(commands, str):
            commands = [commands]
        if not commands or not all(isinstance(c, str) and c.strip() for c in commands):
            raise ConfigurationError(f"Invalid auto mode commands: {commands!r}")
        commands = tuple(commands)

    retries = ipmi.get("retries", defaults.retries)
    if isinstance(retries, bool) or not isinstance(retries, int) or retries < 1:
        raise ConfigurationError(f"Invalid IPMI retries: {retries!r}")
    timeout = _number(ipmi.get("timeout", defaults.timeout), "IPMI timeout")
    if timeout <= 0:
        raise ConfigurationError(f"Invalid IPMI timeout: {timeout}")
    duty_scale = ipmi.get("duty_scale", defaults.duty_scale)
    if duty_scale not in (100, 255):
        raise ConfigurationError(f"Invalid duty scale: {duty_scale!r}, must be 100 or 255")
    retry_delay = _number(ipmi.get("retry_delay", defaults.retry_delay), "IPMI retry delay")
    if retry_delay < 0:
        raise ConfigurationError(f"Invalid IPMI retry delay: {retry_delay}, must not be negative")
    command_delay = _number(ipmi.get("command_delay", defaults.command_delay), "IPMI command delay")
    if command_delay < 0:
        raise ConfigurationError(f"Invalid IPMI command delay: {command_delay}, must not be negative")

    return IPMIConfig(
        host=str(ipmi.get("host", defaults.host)),
        username=str(ipmi.get("username", defaults.username)),
        password=str(ipmi.get("password", defaults.password)),
        interface=str(ipmi.get("interface", defaults.interface)),
        sudo=bool(ipmi.get("sudo", defaults.sudo)),
        timeout=timeout,
        retries=retries,
        retry_delay=retry_delay,
        command_delay=command_delay,
        duty_scale=duty_scale,
        auto_mode_commands=commands,
    )


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    section = _section(data, "logging", required=False)
    defaults = LoggingConfig()
    level = str(section.get("level", defaults.level)).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigurationError(f"Invalid log level: {level}")
    max_bytes = section.get("max_bytes", defaults.max_bytes)
    if isinstance(max_bytes, bool) or not isinstance(max_bytes, int) or max_bytes < 0:
        raise ConfigurationError(f"Invalid log max_bytes: {max_bytes!r}")
    backup_count = section.get("backup_count", defaults.backup_count)
    if isinstance(backup_count, bool) or not isinstance(backup_count, int) or backup_count < 0:
        raise ConfigurationError(f"Invalid log backup_count: {backup_count!r}")
    return LoggingConfig(
        file=section.get("file", defaults.file),
        max_bytes=max_bytes,
        backup_count=backup_count,
        level=level,
    )


def parse_config(data: Dict[str, Any]) -> ControllerConfig:
    """Validate a configuration mapping

    Args:
        data: Parsed YAML document

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If anything is missing or inconsistent
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Invalid configuration: expected a mapping at the top level")

    sensors = _section(data, "sensors")
    primary = _require(sensors, "primary", "sensors")
    if isinstance(primary, str):
        primary = [primary]
    if not isinstance(primary, list) or not primary or not all(isinstance(s, str) and s for s in primary):
        raise ConfigurationError("Invalid primary sensors: at least one sensor name is required")

    fans = _section(data, "fans")
    zones = _parse_zones(fans)
    curve = StepCurve.from_config(_require(fans, "curve", "fans"), floor_duty=fans.get("floor_duty"))

    polling_interval = _number(fans.get("polling_interval", 10), "polling interval")
    if polling_interval <= 0:
        raise ConfigurationError(f"Invalid polling interval: {polling_interval}, must be positive")

    safety = _section(data, "safety")
    emergency_temp = _require(safety, "emergency_temp", "safety")
    if isinstance(emergency_temp, bool) or not isinstance(emergency_temp, int):
        raise ConfigurationError(f"Invalid emergency temperature: {emergency_temp!r}, must be whole degrees")
    if emergency_temp <= curve.max_threshold:
        raise ConfigurationError(
            f"Invalid emergency temperature: {emergency_temp}°C must be above the highest "
            f"curve threshold ({curve.max_threshold}°C)")

    settle_delay = _number(safety.get("settle_delay", 2), "settle delay")
    if settle_delay < 0:
        raise ConfigurationError(f"Invalid settle delay: {settle_delay}")
    heartbeat_interval = _number(safety.get("heartbeat_interval", 60), "heartbeat interval")
    if heartbeat_interval <= 0:
        raise ConfigurationError(f"Invalid heartbeat interval: {heartbeat_interval}")

    return ControllerConfig(
        primary_sensors=tuple(primary),
        zones=zones,
        curve=curve,
        emergency_temp=emergency_temp,
        polling_interval=polling_interval,
        settle_delay=settle_delay,
        heartbeat_interval=heartbeat_interval,
        ipmi=_parse_ipmi(data),
        logging=_parse_logging(data),
    )


def load_config(config_path: str) -> ControllerConfig:
    """Load and validate a YAML configuration file

    Args:
        config_path: Path to configuration file

    Returns:
        Validated configuration
    """
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration {config_path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    config = parse_config(data or {})
    logger.debug(f"Loaded configuration from {config_path}")
    return config


def write_default_config(config_path: str) -> None:
    """Write the built-in defaults to a new configuration file"""
    directory = os.path.dirname(config_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.safe_dump(DEFAULT_CONFIG, f, sort_keys=False)
    logger.info(f"Created default configuration at {config_path}")
