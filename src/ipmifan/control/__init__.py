"""
Control package for ipmifan

This package provides the fan curve, zone state tracking, the safety
supervisor and the control loop that ties them together.
"""

from .curve import StepCurve
from .zones import ZoneStateTracker
from .safety import SafetySupervisor, SafetyState, FailsafeTriggered
from .manager import ControlManager, ControlMode, LoopState

__all__ = [
    'StepCurve',
    'ZoneStateTracker',
    'SafetySupervisor',
    'SafetyState',
    'FailsafeTriggered',
    'ControlManager',
    'ControlMode',
    'LoopState'
]
