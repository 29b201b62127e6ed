"""
Spatial accuracy of a single saccade trial.

Computes saccadic gain (actual / required amplitude), landing accuracy,
sustained fixation stability inside a region of interest around the
target, a weighted composite accuracy score and ADHD marker flags.

Two scoring profiles are supported (see AccuracyProfile):
- webcam: adaptive ROI, quality-weighted landing and stability,
  relaxed thresholds for low-fps noisy tracking
- research: fixed ROI, landing sampled at offset + 67 ms, unweighted
  stability and reorientation counting
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import AccuracyProfile
from ..core.reason_codes import ReasonCode

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

BASE_ROI = 0.10  # ~3 degrees visual angle
MIN_ADAPTIVE_ROI = 0.12
MAX_ADAPTIVE_ROI = 0.25

BASELINE_WINDOW_START_MS = 1000.0
BASELINE_WINDOW_END_MS = 500.0
DEFAULT_BASELINE = (0.5, 0.5)

# Research profile: stop searching once frames are this far past the landing time
LANDING_SEARCH_SLACK_MS = 50.0

FALLBACK_LANDING_QUALITY = 0.5
FIXATION_VELOCITY_LIMIT = 20.0  # deg/s


def calculate_adaptive_roi(calibration_accuracy: float, tracker_fps: float) -> float:
    """
    ROI radius scaled for calibration quality and frame rate.

    95% accuracy at 60 fps gives the base radius; poorer calibration and
    lower frame rates widen it. Clamped to [0.12, 0.25] (5-8 degrees).
    """
    quality_multiplier = 1 + (0.95 - calibration_accuracy) * 2
    fps_multiplier = max(1.0, 60.0 / tracker_fps)
    roi = BASE_ROI * quality_multiplier * fps_multiplier
    return max(MIN_ADAPTIVE_ROI, min(MAX_ADAPTIVE_ROI, roi))


def distance(p1: Point, p2: Point) -> float:
    return math.hypot(p1[0] - p2[0], p1[1] - p2[1])


def is_within_roi(point: Point, target: Point, radius: float) -> bool:
    """True when point lies inside or on the circle of radius around target."""
    return distance(point, target) <= radius


def assess_frame_quality(frame) -> float:
    """
    Per-frame tracking confidence in [0, 1].

    Monocular frames, binocular disagreement and high velocity outside a
    saccade each reduce the score.
    """
    quality = 1.0
    calibrated = frame.calibrated
    left = calibrated.left if calibrated is not None else None
    right = calibrated.right if calibrated is not None else None

    if left is None or right is None:
        quality *= 0.5
    else:
        disparity = distance(left, right)
        # Expect < 0.05 disparity in screen space
        if disparity > 0.10:
            quality *= 0.3
        elif disparity > 0.05:
            quality *= 0.7

    velocity = frame.velocity or 0.0
    if velocity > FIXATION_VELOCITY_LIMIT and not frame.is_saccade:
        quality *= 0.5

    return quality


def calculate_saccadic_gain(landing: Point, baseline: Point, target: Point) -> float:
    """Actual amplitude over required amplitude; 1.0 when no movement was required."""
    required = distance(target, baseline)
    if required == 0:
        return 1.0
    return distance(landing, baseline) / required


def _avg(frame) -> Optional[Point]:
    calibrated = frame.calibrated
    return calibrated.avg if calibrated is not None else None


@dataclass
class LandingPoint:
    x: float
    y: float
    timestamp: float
    quality: float = 1.0

    @property
    def point(self) -> Point:
        return (self.x, self.y)


@dataclass
class AccuracyResult:
    """Accuracy metrics of one trial. Failed analyses carry a reason and score 0."""
    accuracy_score: float = 0.0
    reason: Optional[ReasonCode] = None
    saccadic_gain: Optional[float] = None
    sustained_fixation: bool = False
    initial_landing_accurate: bool = False
    is_hypometric: bool = False
    is_hypermetric: bool = False
    fixation_stability: float = 0.0
    frames_in_roi: int = 0
    total_frames_analyzed: int = 0
    number_of_reorientations: int = 0
    max_consecutive_fixation: int = 0
    component_scores: Dict[str, float] = field(default_factory=dict)
    adhd_markers: Dict[str, bool] = field(default_factory=dict)
    tracking_quality: Dict[str, Any] = field(default_factory=dict)
    debug: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.reason is None

    def to_dict(self) -> Dict[str, Any]:
        if self.reason is not None:
            return {
                'accuracyScore': 0,
                'reason': str(self.reason),
                'saccadicGain': None,
                'sustainedFixation': False,
            }
        return {
            'accuracyScore': self.accuracy_score,
            'initialLandingAccurate': self.initial_landing_accurate,
            'sustainedFixation': self.sustained_fixation,
            'saccadicGain': self.saccadic_gain,
            'isHypometric': self.is_hypometric,
            'isHypermetric': self.is_hypermetric,
            'fixationStability': self.fixation_stability,
            'framesInROI': self.frames_in_roi,
            'totalFramesAnalyzed': self.total_frames_analyzed,
            'numberOfReorientations': self.number_of_reorientations,
            'maxConsecutiveFixation': self.max_consecutive_fixation,
            'componentScores': dict(self.component_scores),
            'adhdMarkers': dict(self.adhd_markers),
            'trackingQuality': dict(self.tracking_quality),
            'debug': dict(self.debug),
        }


class AccuracyAnalyzer:
    """
    Scores the spatial accuracy of a trial's primary saccade.

    Frames expose ``timestamp``, ``calibrated`` (left/right/avg points),
    ``velocity``, ``is_saccade``, ``target_x`` and ``target_y``.
    """

    def __init__(self, profile: Optional[AccuracyProfile] = None):
        self.profile = profile or AccuracyProfile.webcam()

    def roi_radius(self) -> float:
        profile = self.profile
        if profile.roi_radius:
            return profile.roi_radius
        return calculate_adaptive_roi(profile.calibration_accuracy, profile.tracker_fps)

    def score(self, frames: Sequence, stimulus_time: float,
              offset_time: Optional[float]) -> AccuracyResult:
        """
        Score one trial.

        Args:
            frames: Recorded frames in timestamp order
            stimulus_time: Stimulus onset (ms)
            offset_time: Saccade offset (ms), None if no saccade was found

        Returns:
            AccuracyResult; no_saccade_detected, no_target_data and
            no_landing_data short-circuit with score 0
        """
        profile = self.profile

        if offset_time is None:
            return AccuracyResult(reason=ReasonCode.NO_SACCADE_DETECTED)

        target = self._find_target(frames, stimulus_time)
        if target is None:
            return AccuracyResult(reason=ReasonCode.NO_TARGET_DATA)

        roi = self.roi_radius()
        baseline = self._find_baseline(frames, stimulus_time)

        if profile.quality_weighted:
            landing = self._best_quality_landing(frames, offset_time)
        else:
            landing = self._timed_landing(frames, offset_time)
        if landing is None:
            landing = self._first_frame_after(frames, offset_time)
        if landing is None:
            return AccuracyResult(reason=ReasonCode.NO_LANDING_DATA)

        gain = calculate_saccadic_gain(landing.point, baseline, target)
        is_hypometric = gain < profile.hypometric_gain
        is_hypermetric = gain > profile.hypermetric_gain

        logger.debug(f"Landing: pos=({landing.x:.3f}, {landing.y:.3f}), "
                     f"quality={landing.quality:.2f}, gain={gain:.3f}")

        stability = self._fixation_stability(frames, landing.timestamp, target, roi)
        fixation_stability = stability['stability']
        sustained = fixation_stability >= profile.stability_threshold

        landing_distance = distance(landing.point, target)
        initial_accurate = is_within_roi(landing.point, target, roi)

        gain_score = max(0.0, 1.0 - abs(gain - 1.0))
        if initial_accurate:
            landing_score = 1.0
        elif profile.binary_landing_score:
            landing_score = 0.0
        else:
            landing_score = max(0.0, 1.0 - landing_distance / roi)

        accuracy_score = (profile.landing_weight * landing_score
                          + profile.gain_weight * gain_score
                          + profile.stability_weight * fixation_stability)

        reorientations = stability['reorientations']
        markers = {
            'hypometricSaccade': is_hypometric,
            'poorFixationStability': fixation_stability < profile.poor_stability_threshold,
        }
        if profile.quality_weighted:
            markers['excessiveReorientations'] = False
            markers['unstableTracking'] = landing.quality < profile.unstable_tracking_quality
        else:
            markers['excessiveReorientations'] = reorientations > 2
            markers['correctiveRefixations'] = reorientations >= 1 and sustained

        logger.debug(f"Components: landing={landing_score:.3f}, gain={gain_score:.3f}, "
                     f"stability={fixation_stability:.3f} -> {accuracy_score:.3f}")

        return AccuracyResult(
            accuracy_score=accuracy_score,
            saccadic_gain=gain,
            sustained_fixation=sustained,
            initial_landing_accurate=initial_accurate,
            is_hypometric=is_hypometric,
            is_hypermetric=is_hypermetric,
            fixation_stability=fixation_stability,
            frames_in_roi=int(round(stability['weighted_in_roi'])),
            total_frames_analyzed=stability['frame_count'],
            number_of_reorientations=reorientations,
            max_consecutive_fixation=stability['max_consecutive'],
            component_scores={
                'landing': landing_score,
                'gain': gain_score,
                'stability': fixation_stability,
            },
            adhd_markers=markers,
            tracking_quality={
                'landingPointQuality': landing.quality,
                'adaptiveROI': roi,
                'landingWindow': profile.gain_window_ms,
                'stabilityThreshold': profile.stability_threshold,
                'profile': profile.name,
            },
            debug={
                'fixationPoint': {'x': baseline[0], 'y': baseline[1]},
                'landingPoint': {'x': landing.x, 'y': landing.y,
                                 'timestamp': landing.timestamp, 'quality': landing.quality},
                'target': {'x': target[0], 'y': target[1]},
                'landingDistance': landing_distance,
                'roiRadius': roi,
            },
        )

    @staticmethod
    def _find_target(frames: Sequence, stimulus_time: float) -> Optional[Point]:
        for frame in frames:
            if frame.timestamp >= stimulus_time and frame.target_x is not None:
                target_y = frame.target_y if frame.target_y is not None else 0.5
                return (frame.target_x, target_y)
        return None

    def _find_baseline(self, frames: Sequence, stimulus_time: float) -> Point:
        """Gaze position while fixating center, before the stimulus."""
        start = stimulus_time - BASELINE_WINDOW_START_MS
        end = stimulus_time - BASELINE_WINDOW_END_MS
        points: List[Point] = []

        for frame in frames:
            point = _avg(frame)
            if point is None or not (start < frame.timestamp < end):
                continue
            if not self.profile.quality_weighted:
                return point
            points.append(point)

        if not points:
            return DEFAULT_BASELINE
        mean = np.mean(np.array(points), axis=0)
        return (float(mean[0]), float(mean[1]))

    def _best_quality_landing(self, frames: Sequence, offset_time: float) -> Optional[LandingPoint]:
        start = offset_time + self.profile.landing_delay_ms
        end = start + self.profile.gain_window_ms
        best = None

        for frame in frames:
            if frame.timestamp < start or frame.timestamp > end:
                continue
            point = _avg(frame)
            if point is None:
                continue
            quality = assess_frame_quality(frame)
            if best is None or quality > best.quality:
                best = LandingPoint(point[0], point[1], frame.timestamp, quality)

        return best

    def _timed_landing(self, frames: Sequence, offset_time: float) -> Optional[LandingPoint]:
        landing_time = offset_time + self.profile.gain_window_ms
        closest = None
        min_diff = float('inf')

        for frame in frames:
            point = _avg(frame)
            if frame.timestamp < landing_time or point is None:
                continue
            diff = frame.timestamp - landing_time
            if diff < min_diff:
                min_diff = diff
                closest = LandingPoint(point[0], point[1], frame.timestamp)
            if diff > LANDING_SEARCH_SLACK_MS:
                break

        return closest

    @staticmethod
    def _first_frame_after(frames: Sequence, offset_time: float) -> Optional[LandingPoint]:
        for frame in frames:
            point = _avg(frame)
            if frame.timestamp > offset_time and point is not None:
                return LandingPoint(point[0], point[1], frame.timestamp, FALLBACK_LANDING_QUALITY)
        return None

    def _fixation_stability(self, frames: Sequence, landing_time: float,
                            target: Point, roi: float) -> Dict[str, Any]:
        """Fraction of the post-landing window spent inside the ROI."""
        end = landing_time + self.profile.fixation_duration_ms
        weighted_in_roi = 0.0
        total_weight = 0.0
        frame_count = 0
        consecutive = 0
        max_consecutive = 0
        reorientations = 0

        for frame in frames:
            if frame.timestamp < landing_time or frame.timestamp > end:
                continue
            point = _avg(frame)
            if point is None:
                continue

            weight = assess_frame_quality(frame) if self.profile.quality_weighted else 1.0
            in_roi = is_within_roi(point, target, roi)

            frame_count += 1
            total_weight += weight
            if in_roi:
                weighted_in_roi += weight
                consecutive += 1
                max_consecutive = max(max_consecutive, consecutive)
            else:
                if consecutive > 0:
                    reorientations += 1
                consecutive = 0

        return {
            'stability': weighted_in_roi / total_weight if total_weight > 0 else 0.0,
            'weighted_in_roi': weighted_in_roi,
            'frame_count': frame_count,
            'max_consecutive': max_consecutive,
            'reorientations': reorientations,
        }
