"""
Gaze prediction from calibrated iris positions.

Evaluates a CalibrationModel's quadratic polynomials to map iris
coordinates to normalized screen coordinates, per eye and as a cyclopean
(two-eye average) estimate.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import NUM_COEFFICIENTS, ScreenConfig
from ..core.regression import evaluate_polynomial
from .calibration import CalibrationModel, EYE_LEFT, EYE_RIGHT, Point

logger = logging.getLogger(__name__)

# Intercepts beyond this magnitude can only come from a pixel-space model
PIXEL_INTERCEPT_THRESHOLD = 10.0


@dataclass
class CalibratedGaze:
    """Calibrated gaze for one frame. Any field may be None."""
    left: Optional[Point] = None
    right: Optional[Point] = None
    avg: Optional[Point] = None


def average_points(left: Optional[Point], right: Optional[Point]) -> Optional[Point]:
    """Mean of two points, or whichever one exists."""
    if left is not None and right is not None:
        return ((left[0] + right[0]) / 2.0, (left[1] + right[1]) / 2.0)
    return left if left is not None else right


class GazePredictor:
    """Maps iris positions to normalized screen coordinates."""

    def __init__(self, screen: Optional[ScreenConfig] = None):
        self.screen = screen or ScreenConfig()

    def predict(self, iris: Optional[Point], model: Optional[CalibrationModel],
                eye: str) -> Optional[Point]:
        """
        Predict the gaze point of one eye.

        Args:
            iris: Iris position relative to the eye corners
            model: Calibration model
            eye: "left" or "right"

        Returns:
            Normalized (x, y) screen coordinates, or None if the eye has no
            usable polynomial
        """
        if iris is None or model is None:
            return None

        coefficients = model.eye(eye)
        if len(coefficients.coef_x) < NUM_COEFFICIENTS or len(coefficients.coef_y) < NUM_COEFFICIENTS:
            return None
        if not coefficients.is_fitted():
            return None

        x = evaluate_polynomial(coefficients.coef_x, iris[0], iris[1])
        y = evaluate_polynomial(coefficients.coef_y, iris[0], iris[1])

        if model.metadata.coordinate_system == "normalized":
            return (x, y)

        # Older models may predict in pixels
        if (abs(coefficients.coef_x[0]) > PIXEL_INTERCEPT_THRESHOLD
                or abs(coefficients.coef_y[0]) > PIXEL_INTERCEPT_THRESHOLD):
            return (x / self.screen.width_px, y / self.screen.height_px)

        return (x, y)

    def predict_cyclopean(self, left_iris: Optional[Point], right_iris: Optional[Point],
                          model: Optional[CalibrationModel]) -> CalibratedGaze:
        """
        Predict both eyes and their average.

        Without a valid model the raw iris positions are passed through so
        downstream velocity estimation still has coordinates to work with.
        """
        if model is None or not model.is_valid():
            return CalibratedGaze(left=left_iris, right=right_iris,
                                  avg=average_points(left_iris, right_iris))

        left = self.predict(left_iris, model, EYE_LEFT)
        right = self.predict(right_iris, model, EYE_RIGHT)
        return CalibratedGaze(left=left, right=right, avg=average_points(left, right))

