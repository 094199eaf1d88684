"""
Controller Error Types

Errors raised before the control loop is running. Both are fatal and
never retried.
"""


class ConfigurationError(ValueError):
    """Raised when the configuration is malformed or inconsistent"""
    pass


class StartupHandshakeError(Exception):
    """Raised when the sensor or actuator path is unusable at startup"""
    pass
