"""
Frame stream tracking for the saccade task.

Turns incoming iris readings into TrackingFrame records: applies the
calibration model, tags each frame with the current trial context and
classifies its velocity against the previous frame as it arrives. The
recorded stream can be exported as flat records or a pandas DataFrame.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from ..config import PipelineConfig
from ..core.reason_codes import ReasonCode
from ..utils.performance import FrameTimingMonitor
from ..utils.validation import ValidationUtils
from .calibration import CalibrationModel, Point
from .gaze_predictor import CalibratedGaze, GazePredictor, average_points
from .saccade_detector import SaccadeDetector

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    'timestamp',
    'leftIris_x', 'leftIris_y', 'rightIris_x', 'rightIris_y', 'avgIris_x', 'avgIris_y',
    'cal_left_x', 'cal_left_y', 'cal_right_x', 'cal_right_y', 'cal_avg_x', 'cal_avg_y',
    'isSaccade', 'velocity', 'trial', 'dotPosition', 'targetX', 'targetY',
]


@dataclass
class FrameInput:
    """Raw reading handed over by the frame source."""
    timestamp: float  # ms
    left_iris: Optional[Point] = None
    right_iris: Optional[Point] = None


@dataclass
class TrialContext:
    """Trial the subject is currently performing."""
    trial: Optional[int] = None
    dot_position: Optional[str] = None
    target_x: Optional[float] = None
    target_y: Optional[float] = None


@dataclass
class TrackingFrame:
    """One recorded frame with calibrated gaze and detector output."""
    timestamp: float
    left_iris: Optional[Point] = None
    right_iris: Optional[Point] = None
    avg_iris: Optional[Point] = None
    calibrated: CalibratedGaze = field(default_factory=CalibratedGaze)
    velocity: float = 0.0
    is_saccade: bool = False
    is_valid: bool = True
    reason: Optional[ReasonCode] = None
    trial: Optional[int] = None
    dot_position: Optional[str] = None
    target_x: Optional[float] = None
    target_y: Optional[float] = None

    def apply_context(self, context: TrialContext):
        self.trial = context.trial
        self.dot_position = context.dot_position
        self.target_x = context.target_x
        self.target_y = context.target_y

    def to_record(self) -> Dict[str, Any]:
        """Flat record using the export column names."""
        record = {'timestamp': self.timestamp}
        for prefix, point in (('leftIris', self.left_iris), ('rightIris', self.right_iris),
                              ('avgIris', self.avg_iris), ('cal_left', self.calibrated.left),
                              ('cal_right', self.calibrated.right), ('cal_avg', self.calibrated.avg)):
            record[f'{prefix}_x'] = point[0] if point is not None else None
            record[f'{prefix}_y'] = point[1] if point is not None else None
        record.update({
            'isSaccade': self.is_saccade,
            'velocity': self.velocity,
            'trial': self.trial,
            'dotPosition': self.dot_position,
            'targetX': self.target_x,
            'targetY': self.target_y,
        })
        return record


def target_for_position(dot_position: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
    """
    Expected gaze target for a dot label.

    Labels containing "anti" mirror the horizontal target, since the
    subject must look away from the stimulus. Labels without a position
    (gap, interval) have no target.
    """
    if not isinstance(dot_position, str):
        return None, None

    label = dot_position.lower()
    is_anti = 'anti' in label

    if 'center' in label:
        return 0.5, 0.5
    if 'left' in label:
        return (0.8 if is_anti else 0.2), 0.5
    if 'right' in label:
        return (0.2 if is_anti else 0.8), 0.5
    return None, None


class FrameTracker:
    """
    Records the frame stream of a screening session.

    Velocity and saccade status are computed once, when a frame arrives,
    against the previous frame. Without a valid calibration model the raw
    iris movement is used instead.
    """

    def __init__(self, config: Optional[PipelineConfig] = None,
                 model: Optional[CalibrationModel] = None):
        self.config = config or PipelineConfig()
        self.predictor = GazePredictor(self.config.screen)
        self.detector = SaccadeDetector(self.config.saccade, self.config.screen)
        self.timing = FrameTimingMonitor(self.config.frame_budget_ms)
        self.model = model
        self.frames: List[TrackingFrame] = []
        self.context = TrialContext()
        self.threshold: Optional[float] = None

        logger.info(f"FrameTracker initialized (calibrated={self.has_calibration})")

    @property
    def has_calibration(self) -> bool:
        return self.model is not None and self.model.is_valid()

    def set_model(self, model: Optional[CalibrationModel]):
        """Replace the calibration model as a whole."""
        self.model = model
        logger.info(f"Calibration model replaced (valid={self.has_calibration})")

    def set_threshold(self, threshold: Optional[float]):
        """Use an adaptive velocity threshold for subsequent frames (None = static)."""
        self.threshold = threshold

    def set_trial_context(self, trial: Optional[int], dot_position: Optional[str]):
        """
        Set the trial context for subsequent frames.

        The most recent frame is updated too, so a context change that
        lands between two frames is not lost.
        """
        target_x, target_y = target_for_position(dot_position)
        self.context = TrialContext(trial=trial, dot_position=dot_position,
                                    target_x=target_x, target_y=target_y)
        if self.frames:
            self.frames[-1].apply_context(self.context)

    def process_frame(self, reading: FrameInput) -> TrackingFrame:
        """
        Record one reading.

        Args:
            reading: Timestamped iris positions

        Returns:
            The recorded TrackingFrame
        """
        start = time.perf_counter()

        left_iris = reading.left_iris if ValidationUtils.validate_point(reading.left_iris, "process_frame") else None
        right_iris = reading.right_iris if ValidationUtils.validate_point(reading.right_iris, "process_frame") else None

        calibrated = self.predictor.predict_cyclopean(left_iris, right_iris, self.model)
        frame = TrackingFrame(
            timestamp=reading.timestamp,
            left_iris=left_iris,
            right_iris=right_iris,
            avg_iris=average_points(left_iris, right_iris),
            calibrated=calibrated,
        )
        frame.apply_context(self.context)

        if self.frames:
            prev = self.frames[-1]
            if self.has_calibration:
                result = self.detector.classify(prev, frame, self.threshold)
            else:
                result = self.detector.classify_raw(prev, frame)

            frame.velocity = result.velocity
            frame.is_saccade = result.is_saccade
            frame.is_valid = result.is_valid
            frame.reason = result.reason

        self.frames.append(frame)
        self.timing.record_frame((time.perf_counter() - start) * 1000.0)
        return frame

    def reset(self):
        self.frames = []
        self.context = TrialContext()
        self.timing.reset()

    def frames_between(self, start_time: float, end_time: float) -> List[TrackingFrame]:
        return [f for f in self.frames if start_time <= f.timestamp <= end_time]

    def export_records(self) -> List[Dict[str, Any]]:
        return [frame.to_record() for frame in self.frames]

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.export_records(), columns=EXPORT_COLUMNS)

    def export_csv(self, path) -> int:
        """Write the recorded frames to CSV. Returns the number of rows written."""
        df = self.to_dataframe()
        df.to_csv(path, index=False)
        logger.info(f"Exported {len(df)} frames to {path}")
        return len(df)

    def get_statistics(self) -> Dict[str, Any]:
        total = len(self.frames)
        invalid = sum(1 for f in self.frames if not f.is_valid)
        return {
            'total_frames': total,
            'invalid_frames': invalid,
            'saccade_frames': sum(1 for f in self.frames if f.is_saccade),
            'calibrated': self.has_calibration,
            'timing': self.timing.get_summary(),
        }
