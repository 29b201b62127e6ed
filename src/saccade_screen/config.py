"""
Saccade Screening Configuration Module
Contains all configuration structures and constants for calibration,
saccade detection and trial scoring.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


# Application constants
APP_NAME = "Saccade Screening Pipeline"
APP_VERSION = "1.0.0"

# Coefficient layout of the quadratic calibration polynomial
POLYNOMIAL_TERMS = ("1", "x", "y", "x^2", "y^2", "xy")
NUM_COEFFICIENTS = len(POLYNOMIAL_TERMS)

DEFAULT_LAMBDA_GRID = (0.001, 0.01, 0.1, 1.0, 10.0)
SINGULAR_PIVOT_EPSILON = 1e-10

PHASE_PRO = "pro"
PHASE_ANTI = "anti"


@dataclass
class ScreenConfig:
    """Screen geometry and visual field used for angular conversions."""
    width_px: int = 1920
    height_px: int = 1080
    # Typical viewing distance: 60cm, screen width: ~50cm
    horizontal_fov_degrees: float = 40.0
    vertical_fov_degrees: float = 30.0

    def __post_init__(self):
        if self.width_px <= 0 or self.height_px <= 0:
            raise ValueError(f"Screen dimensions must be positive, got {self.width_px}x{self.height_px}")
        if self.horizontal_fov_degrees <= 0 or self.vertical_fov_degrees <= 0:
            raise ValueError("Field of view must be positive")

    @property
    def pixels_per_degree(self) -> Tuple[float, float]:
        """Pixels per visual degree as (horizontal, vertical)."""
        return (self.width_px / self.horizontal_fov_degrees,
                self.height_px / self.vertical_fov_degrees)


@dataclass
class AdaptiveThresholdConfig:
    """Parameters for deriving a velocity threshold from fixation noise."""
    enabled: bool = True
    sd_multiplier: float = 3.0
    min_fixation_samples: int = 10
    max_fixation_velocity: float = 100.0  # deg/s, filters spurious spikes
    floor_fraction: float = 0.5  # fraction of the static threshold
    bounds: Optional[Tuple[float, float]] = None  # (low, high) deg/s

    @classmethod
    def session(cls) -> "AdaptiveThresholdConfig":
        """Session-wide estimate: mean + 3*SD, no hard bounds."""
        return cls()

    @classmethod
    def per_trial(cls) -> "AdaptiveThresholdConfig":
        """Per-trial estimate during the center fixation (Engbert & Kliegl, 2003)."""
        return cls(sd_multiplier=2.5, min_fixation_samples=20, bounds=(25.0, 100.0))


@dataclass
class SaccadeConfig:
    """Configuration parameters for velocity based saccade detection."""
    static_threshold: float = 30.0  # deg/s
    max_binocular_disparity: float = 100.0  # deg/s
    max_time_delta_sec: float = 0.5
    raw_iris_gain: float = 30.0
    adaptive: AdaptiveThresholdConfig = field(default_factory=AdaptiveThresholdConfig.session)

    def __post_init__(self):
        if self.static_threshold <= 0:
            raise ValueError(f"Static threshold must be positive, got {self.static_threshold}")
        if self.max_time_delta_sec <= 0:
            raise ValueError("Maximum frame interval must be positive")


@dataclass
class LatencyBounds:
    """Latency validation window for one phase (milliseconds)."""
    min_ms: float
    max_ms: float
    express_threshold_ms: float

    @classmethod
    def for_phase(cls, phase: str) -> "LatencyBounds":
        if phase == PHASE_ANTI:
            # Inhibition takes longer
            return cls(min_ms=90.0, max_ms=800.0, express_threshold_ms=180.0)
        if phase == PHASE_PRO:
            # 80ms is too aggressive for webcam tracking
            return cls(min_ms=90.0, max_ms=600.0, express_threshold_ms=120.0)
        raise ValueError(f"Unknown phase: {phase!r}")


@dataclass
class PlausibilityConfig:
    """Physiological plausibility limits for a detected saccade."""
    min_duration_ms: float = 30.0  # 1 frame at 30fps
    max_duration_ms: float = 150.0  # typical max for a 40 degree saccade
    min_peak_velocity: float = 40.0  # deg/s
    min_data_quality: float = 0.7  # aggregation filter


@dataclass
class AccuracyProfile:
    """
    Scoring profile for landing accuracy and fixation stability.

    Two profiles exist: ``webcam`` (relaxed thresholds for low-fps noisy
    tracking, used by the live trial pipeline) and ``research`` (desktop
    eye-tracker methodology).
    """
    name: str = "webcam"
    roi_radius: Optional[float] = None  # None -> adaptive radius
    calibration_accuracy: float = 0.91
    tracker_fps: float = 30.0
    fixation_duration_ms: float = 300.0
    gain_window_ms: float = 100.0
    landing_delay_ms: float = 50.0
    quality_weighted: bool = True
    stability_threshold: float = 0.70
    poor_stability_threshold: float = 0.60
    hypometric_gain: float = 0.75
    hypermetric_gain: float = 1.10
    landing_weight: float = 0.20
    gain_weight: float = 0.20
    stability_weight: float = 0.60
    binary_landing_score: bool = False
    unstable_tracking_quality: float = 0.7

    def __post_init__(self):
        total = self.landing_weight + self.gain_weight + self.stability_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Accuracy weights must sum to 1.0, got {total:.3f}")
        if self.tracker_fps <= 0:
            raise ValueError("Tracker FPS must be positive")
        if not 0.0 <= self.calibration_accuracy <= 1.0:
            raise ValueError(f"Calibration accuracy must be in [0, 1], got {self.calibration_accuracy}")

    @classmethod
    def webcam(cls, **overrides) -> "AccuracyProfile":
        return cls(**overrides)

    @classmethod
    def research(cls, **overrides) -> "AccuracyProfile":
        params = dict(
            name="research",
            roi_radius=0.10,  # ~3 degrees visual angle
            gain_window_ms=67.0,
            landing_delay_ms=0.0,
            quality_weighted=False,
            stability_threshold=0.80,
            poor_stability_threshold=0.70,
            hypometric_gain=0.85,
            hypermetric_gain=1.15,
            landing_weight=0.30,
            gain_weight=0.30,
            stability_weight=0.40,
            binary_landing_score=True,
        )
        params.update(overrides)
        return cls(**params)


@dataclass
class CalibrationConfig:
    """Parameters for calibration collection and fitting."""
    samples_per_point: int = 15
    skip_first_samples: int = 3
    grid_margin: float = 0.05
    method: str = "ridge"  # "ridge" or "ols"
    lambda_grid: Tuple[float, ...] = DEFAULT_LAMBDA_GRID
    cv_folds: int = 5
    parallel_folds: bool = False
    accuracy_threshold: float = 0.85
    max_attempts_per_point: int = 200

    def __post_init__(self):
        if self.method not in ("ridge", "ols"):
            raise ValueError(f"Unknown calibration method: {self.method!r}")
        if self.cv_folds < 2:
            raise ValueError("Cross-validation needs at least 2 folds")
        if not self.lambda_grid:
            raise ValueError("Lambda grid must not be empty")


@dataclass
class PipelineConfig:
    """Top-level configuration for one screening session."""
    screen: ScreenConfig = field(default_factory=ScreenConfig)
    saccade: SaccadeConfig = field(default_factory=SaccadeConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    plausibility: PlausibilityConfig = field(default_factory=PlausibilityConfig)
    accuracy: AccuracyProfile = field(default_factory=AccuracyProfile.webcam)
    per_trial_threshold: AdaptiveThresholdConfig = field(default_factory=AdaptiveThresholdConfig.per_trial)
    frame_budget_ms: float = 1000.0 / 60.0

    def with_calibration_accuracy(self, calibration_accuracy: Optional[float]) -> "PipelineConfig":
        """
        Copy of this config whose adaptive ROI is sized by a measured
        calibration accuracy (e.g. ``CalibrationResult.best_accuracy``).

        Returns self unchanged when no accuracy is available.
        """
        if calibration_accuracy is None:
            return self
        accuracy = replace(self.accuracy, calibration_accuracy=calibration_accuracy)
        return replace(self, accuracy=accuracy)
