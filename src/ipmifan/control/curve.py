"""Fan curve implementation."""

from typing import List, Tuple, Dict, Optional, Sequence, Union
import bisect
import logging

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

CurveSpec = Union[Sequence[Sequence[int]], Dict[int, int]]


class StepCurve:
    """Step function between temperature/duty points.

    The duty for a temperature is the duty of the greatest threshold that is
    less than or equal to it. Temperatures below the first threshold get the
    floor duty.
    """

    def __init__(self, steps: Sequence[Tuple[int, int]], floor_duty: Optional[int] = None):
        """Initialize with temperature/duty points.

        Args:
            steps: (threshold, duty) tuples with strictly increasing thresholds
            floor_duty: Duty below the first threshold (defaults to its duty)

        Raises:
            ConfigurationError: If the table is empty, unsorted, has duplicate
                thresholds, out of range duties or duties that decrease
        """
        if not steps:
            raise ConfigurationError("Must provide at least one step")

        points: List[Tuple[int, int]] = []
        for step in steps:
            try:
                temp, duty = step
                temp, duty = int(temp), int(duty)
            except (TypeError, ValueError):
                raise ConfigurationError(f"Invalid curve point {step!r}, expected (threshold, duty)")

            if not 0 <= duty <= 100:
                raise ConfigurationError(f"Invalid duty {duty}% at {temp}°C, must be 0-100")
            if points:
                last_temp, last_duty = points[-1]
                if temp == last_temp:
                    raise ConfigurationError(f"Duplicate threshold {temp}°C")
                if temp < last_temp:
                    raise ConfigurationError(
                        f"Thresholds must be increasing: {temp}°C follows {last_temp}°C")
                if duty < last_duty:
                    raise ConfigurationError(
                        f"Duty must not decrease: {duty}% at {temp}°C follows {last_duty}% at {last_temp}°C")
            points.append((temp, duty))

        if floor_duty is None:
            floor_duty = points[0][1]
        elif isinstance(floor_duty, bool) or not isinstance(floor_duty, int) or not 0 <= floor_duty <= 100:
            raise ConfigurationError(f"Invalid floor duty {floor_duty}%, must be 0-100")

        self._points = tuple(points)
        self._thresholds = [p[0] for p in points]
        self._floor_duty = int(floor_duty)
        logger.debug(f"Fan curve: {self.describe()}")

    @classmethod
    def from_config(cls, curve: CurveSpec, floor_duty: Optional[int] = None) -> "StepCurve":
        """Build a curve from its configuration form.

        Args:
            curve: List of [threshold, duty] pairs, or a {threshold: duty} mapping
            floor_duty: Optional duty below the first threshold

        Returns:
            Validated StepCurve
        """
        if isinstance(curve, dict):
            try:
                steps = sorted((int(t), d) for t, d in curve.items())
            except (TypeError, ValueError):
                raise ConfigurationError(f"Invalid curve thresholds: {list(curve)}")
        elif isinstance(curve, (list, tuple)):
            steps = list(curve)
        else:
            raise ConfigurationError(f"Invalid curve definition: {curve!r}")
        return cls(steps, floor_duty=floor_duty)

    @property
    def points(self) -> Tuple[Tuple[int, int], ...]:
        return self._points

    @property
    def floor_duty(self) -> int:
        return self._floor_duty

    @property
    def max_threshold(self) -> int:
        return self._thresholds[-1]

    def resolve(self, temperature: int) -> int:
        """Get stepped fan duty for a temperature.

        Args:
            temperature: Temperature in Celsius

        Returns:
            Duty cycle percentage (0-100)
        """
        idx = bisect.bisect_right(self._thresholds, temperature)
        if idx == 0:
            return self._floor_duty
        return self._points[idx - 1][1]

    def describe(self) -> str:
        return ", ".join(f"{t}°C:{d}%" for t, d in self._points)

    def __eq__(self, other) -> bool:
        if not isinstance(other, StepCurve):
            return NotImplemented
        return self._points == other._points and self._floor_duty == other._floor_duty

    def __hash__(self) -> int:
        return hash((self._points, self._floor_duty))

    def __repr__(self) -> str:
        return f"StepCurve({list(self._points)!r}, floor_duty={self._floor_duty})"
