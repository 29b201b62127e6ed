"""
Angular velocity estimation between consecutive tracking frames.

Normalized screen displacements are converted to visual degrees using the
screen size and field of view, then divided by the frame interval.
Velocities are computed per eye to check binocular consistency, and on the
cyclopean (averaged) gaze for the value used in detection.
"""

import math
import logging
from dataclasses import dataclass
from typing import Optional

from ..config import SaccadeConfig, ScreenConfig
from ..core.reason_codes import ReasonCode
from .calibration import Point

logger = logging.getLogger(__name__)


@dataclass
class VelocityResult:
    """Velocity between two frames and how trustworthy it is."""
    velocity: float = 0.0  # deg/s, cyclopean
    left_velocity: Optional[float] = None
    right_velocity: Optional[float] = None
    disparity: float = 0.0
    is_valid: bool = False
    reason: Optional[ReasonCode] = None
    excessive_disparity: bool = False
    is_raw_data: bool = False
    time_delta_ms: float = 0.0


class VelocityEstimator:
    """
    Computes angular gaze velocity in degrees per second.

    Frames are any objects exposing ``timestamp`` (ms) and ``calibrated``
    with optional ``left``, ``right`` and ``avg`` points; the raw fallback
    reads ``left_iris`` and ``right_iris``.
    """

    def __init__(self, screen: Optional[ScreenConfig] = None,
                 config: Optional[SaccadeConfig] = None):
        self.screen = screen or ScreenConfig()
        self.config = config or SaccadeConfig()
        self._ppd_h, self._ppd_v = self.screen.pixels_per_degree

    def is_valid_time_delta(self, delta_sec: float) -> bool:
        return 0 < delta_sec <= self.config.max_time_delta_sec

    def angular_distance(self, p1: Point, p2: Point) -> float:
        """Distance between two normalized points in visual degrees."""
        dx_deg = (p2[0] - p1[0]) * self.screen.width_px / self._ppd_h
        dy_deg = (p2[1] - p1[1]) * self.screen.height_px / self._ppd_v
        return math.sqrt(dx_deg ** 2 + dy_deg ** 2)

    def _eye_velocity(self, prev: Optional[Point], curr: Optional[Point], dt: float) -> Optional[float]:
        if prev is None or curr is None:
            return None
        return self.angular_distance(prev, curr) / dt

    def estimate(self, prev, curr) -> VelocityResult:
        """
        Estimate cyclopean velocity from prev to curr.

        Returns:
            VelocityResult. Invalid results carry velocity 0 and a reason:
            invalid_time_delta, no_calibration_data or no_data. Excessive
            binocular disparity keeps the result valid and sets
            excessive_disparity.
        """
        dt = (curr.timestamp - prev.timestamp) / 1000.0

        if not self.is_valid_time_delta(dt):
            return VelocityResult(reason=ReasonCode.INVALID_TIME_DELTA, time_delta_ms=dt * 1000.0)

        prev_cal = prev.calibrated
        curr_cal = curr.calibrated
        if prev_cal is None or curr_cal is None or prev_cal.avg is None or curr_cal.avg is None:
            return VelocityResult(reason=ReasonCode.NO_CALIBRATION_DATA, time_delta_ms=dt * 1000.0)

        left_v = self._eye_velocity(prev_cal.left, curr_cal.left, dt)
        right_v = self._eye_velocity(prev_cal.right, curr_cal.right, dt)

        if left_v is None and right_v is None:
            return VelocityResult(reason=ReasonCode.NO_DATA, time_delta_ms=dt * 1000.0)

        disparity = 0.0
        excessive = False
        if left_v is not None and right_v is not None:
            disparity = abs(left_v - right_v)
            excessive = disparity > self.config.max_binocular_disparity
            if excessive:
                logger.debug(f"Binocular disparity {disparity:.1f} deg/s at t={curr.timestamp}")

        velocity = self.angular_distance(prev_cal.avg, curr_cal.avg) / dt

        return VelocityResult(
            velocity=velocity,
            left_velocity=left_v,
            right_velocity=right_v,
            disparity=disparity,
            is_valid=True,
            reason=ReasonCode.EXCESSIVE_DISPARITY if excessive else None,
            excessive_disparity=excessive,
            time_delta_ms=dt * 1000.0,
        )

    def _raw_distance(self, prev: Optional[Point], curr: Optional[Point]) -> Optional[float]:
        if prev is None or curr is None:
            return None
        gain = self.config.raw_iris_gain
        dx = (curr[0] - prev[0]) * self.screen.horizontal_fov_degrees * gain
        dy = (curr[1] - prev[1]) * self.screen.vertical_fov_degrees * gain
        return math.sqrt(dx ** 2 + dy ** 2)

    def estimate_raw(self, prev, curr) -> VelocityResult:
        """
        Fallback velocity from raw iris movement when no calibration exists.

        Iris displacement is scaled by the field of view and a fixed gain,
        then the available eyes are averaged.
        """
        dt = (curr.timestamp - prev.timestamp) / 1000.0
        if not self.is_valid_time_delta(dt):
            return VelocityResult(reason=ReasonCode.INVALID_TIME_DELTA, is_raw_data=True,
                                  time_delta_ms=dt * 1000.0)

        distances = [d for d in (self._raw_distance(prev.left_iris, curr.left_iris),
                                 self._raw_distance(prev.right_iris, curr.right_iris))
                     if d is not None]
        if not distances:
            return VelocityResult(reason=ReasonCode.NO_DATA, is_raw_data=True,
                                  time_delta_ms=dt * 1000.0)

        velocity = sum(distances) / len(distances) / dt
        return VelocityResult(velocity=velocity, is_valid=True, is_raw_data=True,
                              time_delta_ms=dt * 1000.0)

