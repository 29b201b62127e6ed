"""Reason codes attached to structured (non-exception) results."""

from enum import Enum


class ReasonCode(str, Enum):
    """Why a computation produced no usable value."""
    SINGULAR_MATRIX = "singular_matrix"
    INSUFFICIENT_SAMPLES = "insufficient_samples"
    MATRIX_FAILURE = "matrix_failure"
    INVALID_TIME_DELTA = "invalid_time_delta"
    NO_CALIBRATION_DATA = "no_calibration_data"
    NO_DATA = "no_data"
    EXCESSIVE_DISPARITY = "excessive_disparity"
    NO_SACCADE_DETECTED = "no_saccade_detected"
    NO_TARGET_DATA = "no_target_data"
    NO_LANDING_DATA = "no_landing_data"

    def __str__(self) -> str:
        return self.value
