"""
Command Line Interface Tests

This module contains tests for the command-line interface functionality.
"""

import copy
import logging
import logging.handlers
import signal
import pytest
import yaml
from unittest.mock import patch, MagicMock, Mock

from ipmifan.cli.interface import CLI, SHUTDOWN_SIGNALS
from ipmifan.config import DEFAULT_CONFIG, parse_config
from ipmifan.control import ControlManager, FailsafeTriggered, SafetyState
from ipmifan.errors import StartupHandshakeError
from ipmifan.ipmi import IPMICommander, IPMIError

# Test configuration
TEST_CONFIG = copy.deepcopy(DEFAULT_CONFIG)
TEST_CONFIG["fans"]["polling_interval"] = 0.01
TEST_CONFIG["safety"]["settle_delay"] = 0
TEST_CONFIG["logging"]["file"] = None

SENSOR_RECORDS = {
    "CPU1 Temp": " Sensor Reading        : 45 (+/- 0) degrees C",
    "CPU2 Temp": " Sensor Reading        : 72 (+/- 0) degrees C",
}

# Fixtures

@pytest.fixture
def config_file(tmp_path):
    """Write the test configuration to disk"""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(TEST_CONFIG))
    return str(path)

@pytest.fixture
def cli():
    """Create a CLI instance with logging setup stubbed out"""
    cli = CLI()
    with patch.object(cli, "_setup_logging"), \
         patch.object(cli, "_preflight_environment"):
        yield cli

@pytest.fixture
def mock_manager():
    """Create a mock control manager"""
    return MagicMock(spec=ControlManager)

@pytest.fixture
def mock_commander():
    """Patch the commander the CLI builds for one-shot commands"""
    with patch("ipmifan.cli.interface.IPMICommander") as mock_class:
        commander = Mock(spec=IPMICommander)
        commander.get_sensor_record.side_effect = lambda name: SENSOR_RECORDS[name]
        commander.enable_auto_mode.return_value = True
        mock_class.from_config.return_value = commander
        yield commander

# Argument Parsing Tests

def test_cli_default_arguments(cli):
    """Test default CLI arguments"""
    args = cli.parser.parse_args([])
    assert args.config == "/etc/ipmifan/config.yaml"
    assert not args.debug
    assert not args.check
    assert not args.auto

def test_cli_config_argument(cli):
    """Test custom config file argument"""
    args = cli.parser.parse_args(["-c", "custom_config.yaml"])
    assert args.config == "custom_config.yaml"
    args = cli.parser.parse_args(["--config", "other.yaml", "--debug"])
    assert args.config == "other.yaml"
    assert args.debug

def test_cli_exclusive_actions(cli):
    """Test --check and --auto cannot be combined"""
    with pytest.raises(SystemExit):
        cli.parser.parse_args(["--check", "--auto"])

# Configuration Tests

def test_setup_config_existing(cli, config_file):
    """Test an existing config file is left alone"""
    with open(config_file) as f:
        before = f.read()
    assert cli._setup_config(config_file) == config_file
    with open(config_file) as f:
        assert f.read() == before

def test_setup_config_create_default(cli, tmp_path):
    """Test the default config is written when missing"""
    path = tmp_path / "ipmifan" / "config.yaml"
    assert cli._setup_config(str(path)) == str(path)
    assert yaml.safe_load(path.read_text()) == DEFAULT_CONFIG

def test_invalid_config_exits(cli, tmp_path):
    """Test configuration errors exit non-zero before touching the fans"""
    path = tmp_path / "config.yaml"
    broken = copy.deepcopy(TEST_CONFIG)
    del broken["safety"]
    path.write_text(yaml.safe_dump(broken))

    with patch("ipmifan.cli.interface.ControlManager") as mock_class:
        assert cli.run(["-c", str(path)]) == 1
    mock_class.assert_not_called()

def test_malformed_logging_config_exits(cli, tmp_path):
    """Test a malformed logging value is reported, not raised"""
    path = tmp_path / "config.yaml"
    broken = copy.deepcopy(TEST_CONFIG)
    broken["logging"]["backup_count"] = "one"
    path.write_text(yaml.safe_dump(broken))

    with patch("ipmifan.cli.interface.ControlManager") as mock_class:
        assert cli.run(["-c", str(path)]) == 1
    mock_class.assert_not_called()

# Run Tests

def test_run_clean_shutdown(cli, config_file, mock_manager):
    """Test a clean shutdown exits zero"""
    with patch("ipmifan.cli.interface.ControlManager", return_value=mock_manager) as mock_class, \
         patch("signal.signal"):
        assert cli.run(["-c", config_file]) == 0

    config = mock_class.call_args.args[0]
    assert config == parse_config(TEST_CONFIG)
    mock_manager.run.assert_called_once()

@pytest.mark.parametrize("error", [
    StartupHandshakeError("Unable to enable manual fan control mode"),
    FailsafeTriggered(SafetyState.EMERGENCY_TEMPERATURE, "96°C"),
    RuntimeError("unexpected"),
])
def test_run_failure_exits_nonzero(cli, config_file, mock_manager, error):
    """Test startup failures and safety trips exit non-zero"""
    mock_manager.run.side_effect = error
    with patch("ipmifan.cli.interface.ControlManager", return_value=mock_manager), \
         patch("signal.signal"):
        assert cli.run(["-c", config_file]) == 1

def test_signal_handlers(cli, config_file, mock_manager):
    """Test termination signals request a graceful shutdown"""
    with patch("ipmifan.cli.interface.ControlManager", return_value=mock_manager), \
         patch("signal.signal") as mock_signal:
        cli.run(["-c", config_file])

    handled = [c.args[0] for c in mock_signal.call_args_list]
    assert set(handled) == set(SHUTDOWN_SIGNALS)
    assert signal.SIGTERM in handled

    handler = mock_signal.call_args_list[0].args[1]
    handler(signal.SIGTERM, None)
    mock_manager.request_shutdown.assert_called_once()

# One-shot Command Tests

def test_check(cli, config_file, mock_commander, capsys):
    """Test --check prints readings and the resolved duty"""
    assert cli.run(["-c", config_file, "--check"]) == 0
    out = capsys.readouterr().out
    assert "CPU1 Temp: 45°C" in out
    assert "CPU2 Temp: 72°C" in out
    assert "Danger signal: 72°C" in out
    assert "Curve duty: 60%" in out
    mock_commander.set_zone_duty.assert_not_called()
    mock_commander.enable_manual_mode.assert_not_called()

def test_check_no_readings(cli, config_file, mock_commander, capsys):
    """Test --check fails when no sensor can be read"""
    mock_commander.get_sensor_record.side_effect = IPMIError("timeout")
    assert cli.run(["-c", config_file, "--check"]) == 1
    out = capsys.readouterr().out
    assert "CPU1 Temp: Unable to read" in out
    assert "No valid primary sensor readings" in out

def test_auto(cli, config_file, mock_commander):
    """Test --auto hands control back to the BMC"""
    assert cli.run(["-c", config_file, "--auto"]) == 0
    mock_commander.enable_auto_mode.assert_called_once()

def test_auto_refused(cli, config_file, mock_commander):
    """Test --auto reports a refused mode change"""
    mock_commander.enable_auto_mode.return_value = False
    assert cli.run(["-c", config_file, "--auto"]) == 1

# Environment Tests

def test_preflight_warnings(caplog):
    """Test missing ipmitool and missing privileges are reported"""
    cli = CLI()
    config = parse_config(TEST_CONFIG)
    with patch.object(IPMICommander, "is_available", return_value=False), \
         patch("os.geteuid", return_value=1000), \
         caplog.at_level(logging.WARNING):
        cli._preflight_environment(config)
    assert "ipmitool was not found" in caplog.text
    assert "requires root" in caplog.text

def test_setup_logging(tmp_path):
    """Test log level and rotating file handler come from config"""
    cli = CLI()
    data = copy.deepcopy(TEST_CONFIG)
    data["logging"].update({"file": str(tmp_path / "ipmifan.log"), "level": "WARNING"})
    config = parse_config(data)

    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        cli._setup_logging(config, debug=False)
        added = [h for h in root.handlers if h not in saved_handlers]
        assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in added)
        assert logging.getLogger("ipmifan").level == logging.WARNING

        cli._setup_logging(config, debug=True)
        assert logging.getLogger("ipmifan").level == logging.DEBUG
    finally:
        for handler in root.handlers[:]:
            if handler not in saved_handlers:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(saved_level)
        logging.getLogger("ipmifan").setLevel(logging.NOTSET)
