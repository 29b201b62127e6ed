"""
Velocity-threshold (I-VT) saccade detection.

Implements:
- Per-frame classification of gaze velocity against a static or adaptive
  threshold
- Adaptive thresholds derived from fixation noise (mean + k*SD)
- Post-stimulus scanning for the first saccade (onset, offset, peak)
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..config import AdaptiveThresholdConfig, SaccadeConfig, ScreenConfig
from ..core.reason_codes import ReasonCode
from .velocity import VelocityEstimator, VelocityResult

logger = logging.getLogger(__name__)


@dataclass
class ThresholdEstimate:
    """Adaptive threshold together with the statistics it came from."""
    threshold: float
    is_adaptive: bool
    mean: Optional[float] = None
    sd: Optional[float] = None
    sample_count: int = 0


class AdaptiveThresholdEstimator:
    """
    Derives a saccade velocity threshold from fixation-period velocities.

    Samples outside [0, max_fixation_velocity) are discarded. With too few
    remaining samples the static threshold is returned unchanged.
    """

    def __init__(self, config: Optional[AdaptiveThresholdConfig] = None,
                 static_threshold: float = 30.0):
        self.config = config or AdaptiveThresholdConfig.session()
        self.static_threshold = static_threshold

    def estimate(self, velocities: Sequence[float]) -> float:
        return self.estimate_detailed(velocities).threshold

    def estimate_detailed(self, velocities: Sequence[float]) -> ThresholdEstimate:
        """
        Args:
            velocities: Velocities (deg/s) recorded while the subject fixated

        Returns:
            ThresholdEstimate; is_adaptive is False when the static
            threshold was used
        """
        config = self.config
        clean = np.array([v for v in velocities
                          if v is not None and 0 <= v < config.max_fixation_velocity], dtype=float)

        if not config.enabled or len(clean) < config.min_fixation_samples:
            if config.enabled:
                logger.warning(f"Insufficient fixation samples ({len(clean)}/{config.min_fixation_samples}). "
                               f"Using static threshold.")
            return ThresholdEstimate(threshold=self.static_threshold, is_adaptive=False,
                                     sample_count=len(clean))

        mean = float(np.mean(clean))
        sd = float(np.std(clean))  # population SD
        threshold = mean + config.sd_multiplier * sd
        threshold = max(threshold, self.static_threshold * config.floor_fraction)

        if config.bounds is not None:
            low, high = config.bounds
            threshold = max(low, min(high, threshold))

        logger.debug(f"Adaptive threshold: {threshold:.2f} deg/s (mean={mean:.2f}, sd={sd:.2f}, n={len(clean)})")
        return ThresholdEstimate(threshold=threshold, is_adaptive=True, mean=mean, sd=sd,
                                 sample_count=len(clean))


@dataclass
class SaccadeClassification:
    """Per-frame detector output."""
    velocity: float
    is_saccade: bool
    is_valid: bool
    reason: Optional[ReasonCode] = None
    excessive_disparity: bool = False
    threshold: Optional[float] = None
    threshold_type: Optional[str] = None  # "static" or "adaptive"
    left_velocity: Optional[float] = None
    right_velocity: Optional[float] = None
    disparity: float = 0.0
    is_raw_data: bool = False


@dataclass
class SaccadeInfo:
    """First saccade after a stimulus."""
    onset_time: float  # ms
    offset_time: Optional[float]  # ms
    peak_velocity: float  # deg/s

    @property
    def duration(self) -> Optional[float]:
        if self.offset_time is None:
            return None
        return self.offset_time - self.onset_time

    def latency(self, stimulus_time: float) -> float:
        return self.onset_time - stimulus_time


class SaccadeDetector:
    """
    Classifies frame-to-frame velocity as saccade or not.

    Frames passed to classify() expose timestamp and calibrated gaze (see
    VelocityEstimator). Frames passed to find_saccade() expose timestamp and
    an already computed velocity.
    """

    def __init__(self, config: Optional[SaccadeConfig] = None,
                 screen: Optional[ScreenConfig] = None):
        self.config = config or SaccadeConfig()
        self.velocity_estimator = VelocityEstimator(screen, self.config)
        self.threshold_estimator = AdaptiveThresholdEstimator(self.config.adaptive,
                                                              self.config.static_threshold)
        logger.info(f"SaccadeDetector initialized (static threshold {self.config.static_threshold} deg/s)")

    def classify(self, prev, curr, threshold: Optional[float] = None) -> SaccadeClassification:
        """
        Classify the movement from prev to curr.

        Args:
            prev: Previous frame
            curr: Current frame
            threshold: Adaptive threshold; the static threshold is used when None

        Returns:
            SaccadeClassification; invalid frames are never saccades
        """
        result = self.velocity_estimator.estimate(prev, curr)
        return self._apply_threshold(result, threshold)

    def classify_raw(self, prev, curr) -> SaccadeClassification:
        """Classification from raw iris movement, always against the static threshold."""
        result = self.velocity_estimator.estimate_raw(prev, curr)
        return self._apply_threshold(result, None)

    def _apply_threshold(self, result: VelocityResult, threshold: Optional[float]) -> SaccadeClassification:
        threshold_type = "static" if threshold is None else "adaptive"
        if threshold is None:
            threshold = self.config.static_threshold

        return SaccadeClassification(
            velocity=result.velocity,
            is_saccade=result.is_valid and result.velocity > threshold,
            is_valid=result.is_valid,
            reason=result.reason,
            excessive_disparity=result.excessive_disparity,
            threshold=threshold,
            threshold_type=threshold_type,
            left_velocity=result.left_velocity,
            right_velocity=result.right_velocity,
            disparity=result.disparity,
            is_raw_data=result.is_raw_data,
        )

    def find_saccade(self, frames: Sequence, stimulus_time: float,
                     threshold: Optional[float] = None) -> Optional[SaccadeInfo]:
        """
        Locate the first saccade at or after the stimulus.

        Onset is the first suprathreshold frame. The saccade ends at the
        first subthreshold frame after onset, whose timestamp is the offset.
        A run still open at the end of the recording closes at its last frame.

        Args:
            frames: Frames in timestamp order with ``velocity`` set
            stimulus_time: Stimulus onset (ms)
            threshold: Velocity threshold; static threshold when None

        Returns:
            SaccadeInfo, or None if no frame exceeded the threshold
        """
        if threshold is None:
            threshold = self.config.static_threshold

        onset = None
        peak = 0.0
        last_time = None

        for frame in frames:
            if frame.timestamp < stimulus_time:
                continue
            velocity = frame.velocity or 0.0

            if onset is None:
                if velocity > threshold:
                    onset = frame.timestamp
                    peak = velocity
                    last_time = frame.timestamp
                continue

            if velocity > threshold:
                peak = max(peak, velocity)
                last_time = frame.timestamp
            else:
                return SaccadeInfo(onset_time=onset, offset_time=frame.timestamp, peak_velocity=peak)

        if onset is None:
            return None
        return SaccadeInfo(onset_time=onset, offset_time=last_time, peak_velocity=peak)

    def estimate_threshold(self, velocities: Sequence[float]) -> float:
        return self.threshold_estimator.estimate(velocities)


def fixation_velocities(frames: Sequence, start_time: float, end_time: float) -> List[float]:
    """Velocities of valid frames in [start_time, end_time)."""
    return [f.velocity for f in frames
            if start_time <= f.timestamp < end_time and getattr(f, 'is_valid', True)
            and f.velocity is not None]
