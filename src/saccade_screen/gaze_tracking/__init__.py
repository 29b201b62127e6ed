"""
Gaze tracking module for the saccade screening pipeline.
Provides calibration, gaze prediction and real-time saccade detection.

Calibration: dot calibration flow and per-eye polynomial fitting
Tracking: calibrated frame stream, velocity estimation and I-VT detection
"""

from .calibration import (
    CalibrationFitter, CalibrationModel, CalibrationResult, CalibrationSession,
    CancellationToken, EyeFitResult, GazeSample, run_dot_calibration
)
from .gaze_predictor import GazePredictor, CalibratedGaze
from .iris_features import relative_iris_position, mirrored_iris_positions
from .velocity import VelocityEstimator, VelocityResult
from .saccade_detector import (
    AdaptiveThresholdEstimator, SaccadeClassification, SaccadeDetector, SaccadeInfo
)
from .frame_tracker import FrameInput, FrameTracker, TrackingFrame, target_for_position

__all__ = [
    # Calibration
    'CalibrationFitter', 'CalibrationModel', 'CalibrationResult', 'CalibrationSession',
    'CancellationToken', 'EyeFitResult', 'GazeSample', 'run_dot_calibration',
    'GazePredictor', 'CalibratedGaze',
    'relative_iris_position', 'mirrored_iris_positions',
    # Tracking
    'VelocityEstimator', 'VelocityResult',
    'AdaptiveThresholdEstimator', 'SaccadeClassification', 'SaccadeDetector', 'SaccadeInfo',
    'FrameInput', 'FrameTracker', 'TrackingFrame', 'target_for_position'
]
