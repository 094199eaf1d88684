"""
Command Line Interface Module

This module provides the command-line interface for running the fan
controller and for one-shot recovery and diagnostics.
"""

import argparse
import logging
import logging.handlers
import os
import signal
import sys
from typing import List, Optional

from ..config import DEFAULT_CONFIG_PATH, ControllerConfig, load_config, write_default_config
from ..control import ControlManager, FailsafeTriggered
from ..errors import ConfigurationError, StartupHandshakeError
from ..ipmi import IPMICommander, IPMISensorReader, get_highest_temperature

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


class CLI:
    """Command-line interface handler"""

    def __init__(self):
        """Initialize CLI handler"""
        self.parser = self._create_parser()
        self.manager: Optional[ControlManager] = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create command-line argument parser

        Returns:
            Configured argument parser
        """
        parser = argparse.ArgumentParser(
            prog="ipmifan",
            description="ipmifan - temperature driven Supermicro fan zone control"
        )

        parser.add_argument(
            "-c", "--config",
            help="Path to configuration file",
            default=DEFAULT_CONFIG_PATH
        )

        parser.add_argument(
            "--debug",
            action="store_true",
            help="Enable debug logging"
        )

        action = parser.add_mutually_exclusive_group()
        action.add_argument(
            "--check",
            action="store_true",
            help="Read sensors and show the duty the curve would apply, without touching the fans"
        )
        action.add_argument(
            "--auto",
            action="store_true",
            help="Return fan control to the BMC and exit"
        )

        return parser

    def _setup_config(self, config_path: str) -> str:
        """Setup configuration file

        Args:
            config_path: Path to configuration file

        Returns:
            Path to active configuration file
        """
        if not os.path.exists(config_path):
            write_default_config(config_path)
        return config_path

    def _setup_logging(self, config: Optional[ControllerConfig], debug: bool) -> None:
        """Configure the root logger from the logging section

        Args:
            config: Loaded configuration, or None before it is available
            debug: Force DEBUG level
        """
        level = logging.DEBUG if debug else logging.INFO
        handlers: List[logging.Handler] = [logging.StreamHandler()]
        file_error = None

        if config is not None:
            log_config = config.logging
            if not debug:
                level = getattr(logging, log_config.level)
            if log_config.file:
                try:
                    handlers.append(logging.handlers.RotatingFileHandler(
                        log_config.file,
                        maxBytes=log_config.max_bytes,
                        backupCount=log_config.backup_count
                    ))
                except OSError as e:
                    file_error = e

        root = logging.getLogger()
        for handler in handlers:
            handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
            root.addHandler(handler)
        root.setLevel(level)
        logging.getLogger("ipmifan").setLevel(level)

        if file_error is not None:
            logger.warning(f"Cannot open log file {config.logging.file}: {file_error}; logging to stderr only")

    def _install_signal_handlers(self) -> None:
        def signal_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}")
            if self.manager:
                self.manager.request_shutdown()

        for sig in SHUTDOWN_SIGNALS:
            signal.signal(sig, signal_handler)

    def _preflight_environment(self, config: ControllerConfig) -> None:
        if not IPMICommander.is_available():
            logger.warning("ipmitool was not found on PATH. Install it with: apt-get install ipmitool")
        if config.ipmi.host == "localhost" and not config.ipmi.sudo and os.geteuid() != 0:
            logger.warning("Local IPMI access normally requires root")

    def _check(self, config: ControllerConfig) -> int:
        """Print sensor readings and the resolved duty"""
        commander = IPMICommander.from_config(config.ipmi, config.zone_ids)
        reader = IPMISensorReader(commander)
        readings = reader.read_sensors(config.primary_sensors)
        for reading in readings:
            value = f"{reading.celsius}°C" if reading.valid else "Unable to read"
            print(f"{reading.name}: {value}")

        temperature = get_highest_temperature(readings)
        if temperature is None:
            print("No valid primary sensor readings")
            return 1

        print(f"Danger signal: {temperature}°C (emergency at {config.emergency_temp}°C)")
        print(f"Curve duty: {config.curve.resolve(temperature)}%")
        return 0

    def _restore_auto(self, config: ControllerConfig) -> int:
        commander = IPMICommander.from_config(config.ipmi, config.zone_ids)
        if commander.enable_auto_mode():
            print("Automatic fan control restored")
            return 0
        print("Failed to restore automatic fan control")
        return 1

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run the CLI interface

        Args:
            argv: Arguments (defaults to sys.argv)

        Returns:
            Process exit status
        """
        args = self.parser.parse_args(argv)

        try:
            config_path = self._setup_config(args.config)
            config = load_config(config_path)
        except (ConfigurationError, OSError) as e:
            self._setup_logging(None, args.debug)
            logger.error(f"Configuration error: {e}")
            return 1

        self._setup_logging(config, args.debug)

        if args.check:
            return self._check(config)
        if args.auto:
            return self._restore_auto(config)

        logger.info("==========================================")
        logger.info("ipmifan fan control starting")
        logger.info("==========================================")
        self._preflight_environment(config)

        self.manager = ControlManager(config)
        self._install_signal_handlers()

        try:
            self.manager.run()
        except StartupHandshakeError as e:
            logger.error(f"Startup failed: {e}")
            return 1
        except FailsafeTriggered as e:
            logger.critical(f"Fan control terminated by failsafe: {e}")
            return 1
        except Exception as e:
            logger.error(f"Error: {e}")
            return 1

        return 0


def main() -> None:
    """Main entry point"""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
