"""
Per-trial saccade analysis.

Combines saccade detection on the recorded frame stream with latency
classification, data quality accounting, physiological plausibility
checks and accuracy scoring into one TrialAnalysis per trial.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from ..config import LatencyBounds, PipelineConfig, PHASE_PRO
from ..core.reason_codes import ReasonCode
from ..gaze_tracking.saccade_detector import (
    AdaptiveThresholdEstimator, SaccadeDetector, SaccadeInfo, fixation_velocities
)
from ..utils.validation import ValidationUtils
from .accuracy import AccuracyAnalyzer, AccuracyResult

logger = logging.getLogger(__name__)

# Center fixation period used for the per-trial threshold
FIXATION_WINDOW_MS = 1000.0


class LatencyClass(Enum):
    """Latency categories of a detected saccade."""
    EXPRESS = "express"
    NORMAL = "normal"
    DELAYED = "delayed"
    INVALID = "invalid"


def classify_latency(latency: Optional[float], bounds: LatencyBounds) -> LatencyClass:
    """
    Classify a saccade latency against the phase bounds.

    Express takes precedence over the normal range, so with the default
    bounds a 100 ms pro-saccade is express.
    """
    if latency is None:
        return LatencyClass.INVALID
    if latency < bounds.express_threshold_ms:
        return LatencyClass.EXPRESS
    if bounds.min_ms <= latency <= bounds.max_ms:
        return LatencyClass.NORMAL
    if latency > bounds.max_ms:
        return LatencyClass.DELAYED
    return LatencyClass.INVALID


@dataclass
class TrialQuality:
    """Frame-level data quality of a trial."""
    total_frames: int = 0
    invalid_frames: int = 0
    binocular_disparity_events: int = 0

    @property
    def data_quality(self) -> float:
        if self.total_frames == 0:
            return 0.0
        return (self.total_frames - self.invalid_frames) / self.total_frames

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalFrames': self.total_frames,
            'invalidFrames': self.invalid_frames,
            'binocularDisparityEvents': self.binocular_disparity_events,
            'dataQuality': self.data_quality,
        }


@dataclass
class TrialAnalysis:
    """Everything measured for one trial."""
    phase: str
    is_saccade: bool = False
    latency: Optional[float] = None
    latency_class: LatencyClass = LatencyClass.INVALID
    peak_velocity: float = 0.0
    duration: Optional[float] = None
    onset_time: Optional[float] = None
    offset_time: Optional[float] = None
    threshold: Optional[float] = None
    threshold_type: str = "static"
    quality: TrialQuality = field(default_factory=TrialQuality)
    is_plausible: bool = False
    plausibility: Dict[str, bool] = field(default_factory=dict)
    accuracy: AccuracyResult = field(default_factory=lambda: AccuracyResult(
        reason=ReasonCode.NO_SACCADE_DETECTED))

    @property
    def accuracy_score(self) -> float:
        return self.accuracy.accuracy_score

    @property
    def saccadic_gain(self) -> Optional[float]:
        return self.accuracy.saccadic_gain

    def to_dict(self) -> Dict[str, Any]:
        return {
            'phase': self.phase,
            'isSaccade': self.is_saccade,
            'latency': self.latency,
            'latencyClassification': self.latency_class.value,
            'peakVelocity': self.peak_velocity,
            'duration': self.duration,
            'saccadeOnsetTime': self.onset_time,
            'saccadeOffsetTime': self.offset_time,
            'threshold': self.threshold,
            'thresholdType': self.threshold_type,
            'quality': self.quality.to_dict(),
            'isPhysiologicallyPlausible': self.is_plausible,
            'plausibility': dict(self.plausibility),
            'accuracy': self.accuracy_score,
            'saccadicGain': self.saccadic_gain,
            'accuracyDetails': self.accuracy.to_dict(),
        }


def assess_quality(frames: Sequence) -> TrialQuality:
    """Count invalid frames and binocular disparity events."""
    quality = TrialQuality(total_frames=len(frames))
    for frame in frames:
        if not getattr(frame, 'is_valid', True):
            quality.invalid_frames += 1
        if getattr(frame, 'reason', None) == ReasonCode.EXCESSIVE_DISPARITY:
            quality.binocular_disparity_events += 1
    return quality


class TrialAnalyzer:
    """
    Analyzes recorded trials of the pro- and anti-saccade task.

    The velocity threshold is estimated per trial from the center fixation
    preceding the stimulus when enough samples exist; otherwise the static
    threshold applies.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.detector = SaccadeDetector(self.config.saccade, self.config.screen)
        self.threshold_estimator = AdaptiveThresholdEstimator(self.config.per_trial_threshold,
                                                              self.config.saccade.static_threshold)
        self.accuracy_analyzer = AccuracyAnalyzer(self.config.accuracy)

    def analyze_trial(self, frames: Sequence, stimulus_time: float, phase: str = PHASE_PRO,
                      threshold: Optional[float] = None) -> TrialAnalysis:
        """
        Analyze one trial.

        Args:
            frames: Recorded frames in timestamp order, each with velocity,
                is_valid and reason set
            stimulus_time: Stimulus onset (ms)
            phase: "pro" or "anti"
            threshold: Fixed velocity threshold; estimated per trial when None

        Returns:
            TrialAnalysis
        """
        bounds = LatencyBounds.for_phase(phase)
        plausibility_config = self.config.plausibility

        ordered, message = ValidationUtils.validate_frame_order([f.timestamp for f in frames], "analyze_trial")
        if not ordered:
            logger.warning(message)
            frames = sorted(frames, key=lambda f: f.timestamp)

        analysis = TrialAnalysis(phase=phase, quality=assess_quality(frames))

        threshold_type = "static"
        if threshold is None:
            velocities = fixation_velocities(frames, stimulus_time - FIXATION_WINDOW_MS, stimulus_time)
            estimate = self.threshold_estimator.estimate_detailed(velocities)
            threshold = estimate.threshold
            if estimate.is_adaptive:
                threshold_type = "adaptive"
        else:
            threshold_type = "adaptive"
        analysis.threshold = threshold
        analysis.threshold_type = threshold_type

        saccade: Optional[SaccadeInfo] = self.detector.find_saccade(frames, stimulus_time, threshold)
        if saccade is None:
            logger.debug(f"No saccade detected after stimulus at {stimulus_time}")
            return analysis

        analysis.is_saccade = True
        analysis.onset_time = saccade.onset_time
        analysis.offset_time = saccade.offset_time
        analysis.latency = saccade.latency(stimulus_time)
        analysis.latency_class = classify_latency(analysis.latency, bounds)
        analysis.peak_velocity = saccade.peak_velocity
        analysis.duration = saccade.duration

        duration = analysis.duration if analysis.duration is not None else 0.0
        analysis.plausibility = {
            'latencyInRange': bounds.min_ms <= analysis.latency <= bounds.max_ms,
            'durationInRange': (plausibility_config.min_duration_ms <= duration
                                <= plausibility_config.max_duration_ms),
            'peakVelocitySufficient': analysis.peak_velocity >= plausibility_config.min_peak_velocity,
        }
        analysis.is_plausible = all(analysis.plausibility.values())

        analysis.accuracy = self.accuracy_analyzer.score(frames, stimulus_time, saccade.offset_time)

        logger.info(f"Trial ({phase}): latency={analysis.latency:.0f}ms "
                    f"({analysis.latency_class.value}), peak={analysis.peak_velocity:.1f}deg/s, "
                    f"plausible={analysis.is_plausible}")
        return analysis
