"""
Gaze Calibration for webcam iris tracking.

Fits a per-eye quadratic polynomial mapping iris position (relative to the
eye corners) to normalized screen coordinates. Ridge regression with a
cross-validated regularization strength keeps the fit stable with the small
number of noisy samples a 9-point webcam calibration produces.

The calibration flow itself is driven through an explicit session object:
a sample provider is polled for iris positions while the caller shows each
calibration dot, and the result comes back as a CalibrationResult value.
"""

import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import CalibrationConfig, NUM_COEFFICIENTS, ScreenConfig
from ..core.linear_solver import least_squares, ridge_regression
from ..core.reason_codes import ReasonCode
from ..core.regression import build_design_matrix, find_optimal_lambda
from ..utils.validation import ErrorHandlingUtils

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

EYE_LEFT = "left"
EYE_RIGHT = "right"

# Returned by a sample provider when the flow must start over
# (face lost or viewing distance out of range)
RESTART = "restart"


@dataclass(frozen=True)
class GazeSample:
    """One calibration sample: iris positions recorded while fixating a target."""
    point_index: int
    target_x: float  # normalized screen coordinate (0-1)
    target_y: float
    iris_left: Optional[Point] = None
    iris_right: Optional[Point] = None

    def iris(self, eye: str) -> Optional[Point]:
        return self.iris_left if eye == EYE_LEFT else self.iris_right


@dataclass
class EyeCoefficients:
    """Polynomial coefficients [1, x, y, x², y², xy] for each screen axis."""
    coef_x: List[float] = field(default_factory=lambda: [0.0] * NUM_COEFFICIENTS)
    coef_y: List[float] = field(default_factory=lambda: [0.0] * NUM_COEFFICIENTS)

    def is_fitted(self) -> bool:
        return any(c != 0 for c in self.coef_x)

    def to_dict(self) -> Dict[str, List[float]]:
        return {'coefX': list(self.coef_x), 'coefY': list(self.coef_y)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EyeCoefficients":
        if not data:
            return cls()
        return cls(coef_x=[float(c) for c in data.get('coefX', [])],
                   coef_y=[float(c) for c in data.get('coefY', [])])


@dataclass
class CalibrationMetadata:
    """How a calibration model was produced and which output space it uses."""
    method: str = "ridge"
    coordinate_system: str = "normalized"
    timestamp: float = 0.0  # epoch milliseconds
    screen_width: int = 1920
    screen_height: int = 1080


@dataclass
class CalibrationModel:
    """
    Per-eye calibration polynomials.

    A model is replaced as a whole on recalibration; it is never partially
    updated. An eye that failed to fit keeps all-zero coefficients.
    """
    left: EyeCoefficients = field(default_factory=EyeCoefficients)
    right: EyeCoefficients = field(default_factory=EyeCoefficients)
    metadata: CalibrationMetadata = field(default_factory=CalibrationMetadata)

    def eye(self, eye: str) -> EyeCoefficients:
        return self.left if eye == EYE_LEFT else self.right

    def is_valid(self) -> bool:
        """True if at least one eye carries a fitted polynomial."""
        return self.left.is_fitted() or self.right.is_fitted()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'left': self.left.to_dict(),
            'right': self.right.to_dict(),
            'metadata': {
                'method': self.metadata.method,
                'coordinateSystem': self.metadata.coordinate_system,
                'timestamp': self.metadata.timestamp,
                'screenDimensions': {
                    'width': self.metadata.screen_width,
                    'height': self.metadata.screen_height,
                },
            },
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CalibrationModel":
        """Rebuild a model from its stored JSON form. Missing parts default to unfitted."""
        data = data or {}
        meta = data.get('metadata') or {}
        defaults = CalibrationMetadata()
        # Older stores kept the screen size as flat keys
        dimensions = meta.get('screenDimensions') or {}
        return cls(
            left=EyeCoefficients.from_dict(data.get('left')),
            right=EyeCoefficients.from_dict(data.get('right')),
            metadata=CalibrationMetadata(
                method=meta.get('method', defaults.method),
                # Models without the tag predate normalized output
                coordinate_system=meta.get('coordinateSystem', 'unknown'),
                timestamp=meta.get('timestamp', defaults.timestamp),
                screen_width=int(dimensions.get('width', meta.get('screenWidth', defaults.screen_width))),
                screen_height=int(dimensions.get('height', meta.get('screenHeight', defaults.screen_height))),
            ),
        )


@dataclass
class EyeFitResult:
    """Outcome of fitting one eye."""
    eye: str
    success: bool
    coef_x: List[float] = field(default_factory=list)
    coef_y: List[float] = field(default_factory=list)
    rmse: Optional[float] = None
    accuracy: Optional[float] = None
    lambda_x: Optional[float] = None
    lambda_y: Optional[float] = None
    sample_count: int = 0
    reason: Optional[ReasonCode] = None


@dataclass
class CalibrationResult:
    """Result of a calibration fit or of a full calibration run."""
    success: bool
    model: Optional[CalibrationModel] = None
    left: Optional[EyeFitResult] = None
    right: Optional[EyeFitResult] = None
    is_usable: bool = False
    needs_recalibration: bool = True
    sample_count: int = 0
    cancelled: bool = False
    reason: Optional[ReasonCode] = None

    @property
    def best_accuracy(self) -> Optional[float]:
        values = [r.accuracy for r in (self.left, self.right)
                  if r is not None and r.success and r.accuracy is not None]
        return max(values) if values else None


class CalibrationFitter:
    """
    Fits calibration polynomials from collected gaze samples.

    For each eye the design matrix rows are the quadratic features of the
    iris position, and each screen axis is fitted independently with its
    own cross-validated ridge lambda.
    """

    def __init__(self, config: Optional[CalibrationConfig] = None,
                 screen: Optional[ScreenConfig] = None):
        self.config = config or CalibrationConfig()
        self.screen = screen or ScreenConfig()
        logger.info(f"CalibrationFitter initialized (method={self.config.method})")

    def fit(self, samples: Sequence[GazeSample], eye: str) -> EyeFitResult:
        """
        Fit one eye.

        Args:
            samples: Calibration samples; those without this eye's iris are skipped
            eye: "left" or "right"

        Returns:
            EyeFitResult with coefficients and training error, or a failure
            reason (insufficient_samples, matrix_failure)
        """
        usable = [s for s in samples if s.iris(eye) is not None]

        if len(usable) < NUM_COEFFICIENTS:
            logger.warning(f"Calibration {eye}: only {len(usable)} samples, need {NUM_COEFFICIENTS}")
            return EyeFitResult(eye=eye, success=False, sample_count=len(usable),
                                reason=ReasonCode.INSUFFICIENT_SAMPLES)

        A = build_design_matrix(s.iris(eye) for s in usable)
        bx = np.array([s.target_x for s in usable])
        by = np.array([s.target_y for s in usable])

        lambda_x = lambda_y = None
        if self.config.method == "ridge":
            lambda_x, lambda_y = self._select_lambdas(A, bx, by)
            coef_x = ridge_regression(A, bx, lambda_x)
            coef_y = ridge_regression(A, by, lambda_y)
        else:
            coef_x = least_squares(A, bx)
            coef_y = least_squares(A, by)

        if coef_x is None or coef_y is None:
            logger.error(f"Calibration {eye}: matrix solve failed")
            return EyeFitResult(eye=eye, success=False, sample_count=len(usable),
                                lambda_x=lambda_x, lambda_y=lambda_y,
                                reason=ReasonCode.MATRIX_FAILURE)

        dx = A @ coef_x - bx
        dy = A @ coef_y - by
        rmse = float(np.sqrt(np.mean(dx ** 2 + dy ** 2)))
        accuracy = max(0.0, 1.0 - rmse)

        logger.info(f"Calibration {eye}: RMSE={rmse:.4f}, accuracy={accuracy * 100:.1f}%, "
                    f"lambda=({lambda_x}, {lambda_y}), n={len(usable)}")

        return EyeFitResult(
            eye=eye,
            success=True,
            coef_x=coef_x.tolist(),
            coef_y=coef_y.tolist(),
            rmse=rmse,
            accuracy=accuracy,
            lambda_x=lambda_x,
            lambda_y=lambda_y,
            sample_count=len(usable),
        )

    def _select_lambdas(self, A: np.ndarray, bx: np.ndarray, by: np.ndarray) -> Tuple[float, float]:
        grid = self.config.lambda_grid
        k = self.config.cv_folds

        if not self.config.parallel_folds:
            return (find_optimal_lambda(A, bx, grid, k),
                    find_optimal_lambda(A, by, grid, k))

        with ThreadPoolExecutor(max_workers=k) as executor:
            return (find_optimal_lambda(A, bx, grid, k, executor=executor),
                    find_optimal_lambda(A, by, grid, k, executor=executor))

    def fit_model(self, samples: Sequence[GazeSample]) -> CalibrationResult:
        """
        Fit both eyes and assemble a CalibrationModel.

        A model where only one eye fitted is still returned. The result is
        usable only if some fitted eye reaches the accuracy threshold;
        otherwise recalibration is requested.
        """
        start = time.perf_counter()
        left = self.fit(samples, EYE_LEFT)
        right = self.fit(samples, EYE_RIGHT)
        ErrorHandlingUtils.log_performance_warning("calibration fit", time.perf_counter() - start)

        if not left.success and not right.success:
            reason = left.reason or right.reason
            logger.error(f"Calibration failed for both eyes ({reason})")
            return CalibrationResult(success=False, left=left, right=right,
                                     sample_count=len(samples), reason=reason)

        model = CalibrationModel(
            left=self._coefficients(left),
            right=self._coefficients(right),
            metadata=CalibrationMetadata(
                method=self.config.method,
                coordinate_system="normalized",
                timestamp=time.time() * 1000.0,
                screen_width=self.screen.width_px,
                screen_height=self.screen.height_px,
            ),
        )

        threshold = self.config.accuracy_threshold
        is_usable = any(r.success and r.accuracy >= threshold for r in (left, right))
        if not is_usable:
            logger.warning(f"Calibration accuracy below {threshold * 100:.0f}%, recalibration needed")

        return CalibrationResult(
            success=True,
            model=model,
            left=left,
            right=right,
            is_usable=is_usable,
            needs_recalibration=not is_usable,
            sample_count=len(samples),
        )

    @staticmethod
    def _coefficients(result: EyeFitResult) -> EyeCoefficients:
        if not result.success:
            return EyeCoefficients()
        return EyeCoefficients(coef_x=list(result.coef_x), coef_y=list(result.coef_y))


def calibration_grid(margin: float = 0.05) -> List[Point]:
    """Nine calibration targets in row-major order with the given edge margin."""
    steps = (margin, 0.5, 1.0 - margin)
    return [(x, y) for y in steps for x in steps]


class CancellationToken:
    """Caller-owned flag used to abort a calibration run between samples."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class CalibrationSession:
    """Owns the samples collected during one calibration run."""

    def __init__(self, config: Optional[CalibrationConfig] = None,
                 screen: Optional[ScreenConfig] = None):
        self.config = config or CalibrationConfig()
        self.screen = screen or ScreenConfig()
        self.samples: List[GazeSample] = []
        self.restarts = 0

    def reset(self):
        self.samples = []

    def add_sample(self, point_index: int, target: Point,
                   iris_left: Optional[Point], iris_right: Optional[Point]):
        self.samples.append(GazeSample(point_index, target[0], target[1], iris_left, iris_right))

    @property
    def sample_count(self) -> int:
        return len(self.samples)


SampleProvider = Callable[[int, float, float], Union[None, str, Tuple[Optional[Point], Optional[Point]]]]


def _flip_x(point: Optional[Point]) -> Optional[Point]:
    # Camera image is mirrored relative to the screen
    if point is None:
        return None
    return (1.0 - point[0], point[1])


def _collect_point(session: CalibrationSession, provider: SampleProvider, index: int,
                   target: Point, cancel_token: CancellationToken) -> Union[bool, str]:
    config = session.config
    accepted = 0
    skipped = 0
    attempts = 0

    while accepted < config.samples_per_point:
        if cancel_token.cancelled:
            return False
        if attempts >= config.max_attempts_per_point:
            logger.warning(f"Calibration point {index}: gave up after {attempts} attempts")
            return False
        attempts += 1

        reading = provider(index, target[0], target[1])
        if reading == RESTART:
            return RESTART
        if reading is None:
            continue

        left, right = reading
        if left is None and right is None:
            continue

        # First readings after the dot moves are still in flight
        if skipped < config.skip_first_samples:
            skipped += 1
            continue

        session.add_sample(index, target, _flip_x(left), _flip_x(right))
        accepted += 1

    return True


def run_dot_calibration(session: CalibrationSession, sample_provider: SampleProvider,
                        cancel_token: Optional[CancellationToken] = None,
                        max_restarts: int = 3) -> CalibrationResult:
    """
    Run the 9-point dot calibration and fit the model.

    Args:
        session: Session that receives the collected samples
        sample_provider: Called as provider(point_index, target_x, target_y);
            returns (left_iris, right_iris) relative positions, None when no
            face was detected, or RESTART to start the grid over
        cancel_token: Optional token checked between samples
        max_restarts: How many times the grid may be restarted

    Returns:
        CalibrationResult; cancelled runs and failed collections return
        success=False
    """
    cancel_token = cancel_token or CancellationToken()
    fitter = CalibrationFitter(session.config, session.screen)
    points = calibration_grid(session.config.grid_margin)

    while True:
        session.reset()
        outcome: Union[bool, str] = True

        for index, target in enumerate(points):
            outcome = _collect_point(session, sample_provider, index, target, cancel_token)
            if outcome is not True:
                break

        if cancel_token.cancelled:
            logger.info("Calibration cancelled")
            return CalibrationResult(success=False, cancelled=True, sample_count=session.sample_count)

        if outcome == RESTART:
            session.restarts += 1
            if session.restarts > max_restarts:
                logger.error(f"Calibration restarted {session.restarts} times, giving up")
                return CalibrationResult(success=False, sample_count=session.sample_count,
                                         reason=ReasonCode.INSUFFICIENT_SAMPLES)
            logger.info(f"Calibration restarting (attempt {session.restarts + 1})")
            continue

        if outcome is False:
            return CalibrationResult(success=False, sample_count=session.sample_count,
                                     reason=ReasonCode.INSUFFICIENT_SAMPLES)

        logger.info(f"Calibration collected {session.sample_count} samples, fitting model")
        return fitter.fit_model(session.samples)
