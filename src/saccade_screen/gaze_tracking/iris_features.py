"""
Iris position features from face-mesh landmarks.

The iris centre is expressed in an eye-local frame spanned by the eye
corners, which makes the feature insensitive to head translation.
"""

import math
from typing import Any, Optional, Sequence, Tuple

# Face-mesh landmark indices (478-point model with iris refinement)
EYE_INDICES = {
    'left': {'inner': 33, 'outer': 133, 'iris': 468},
    'right': {'inner': 362, 'outer': 263, 'iris': 473},
}

# Amplifies the small vertical iris excursion
VERTICAL_GAIN = 4.0


def _xy(landmark: Any) -> Tuple[float, float]:
    if hasattr(landmark, 'x'):
        return float(landmark.x), float(landmark.y)
    return float(landmark[0]), float(landmark[1])


def _landmark(landmarks: Sequence[Any], index: int) -> Optional[Tuple[float, float]]:
    if index >= len(landmarks) or landmarks[index] is None:
        return None
    return _xy(landmarks[index])


def relative_iris_position(landmarks: Sequence[Any], eye: str) -> Optional[Tuple[float, float]]:
    """
    Iris position relative to the eye corners.

    x is the scalar projection of the iris onto the inner->outer corner
    axis (0 at the inner corner, 1 at the outer corner). y is 0.5 plus the
    signed perpendicular offset from that axis, scaled by the eye width.

    Args:
        landmarks: Indexable landmarks, either objects with x/y attributes
            or (x, y) pairs
        eye: "left" or "right"

    Returns:
        (x, y), or None if a landmark is missing or the corners coincide
    """
    indices = EYE_INDICES[eye]
    inner = _landmark(landmarks, indices['inner'])
    outer = _landmark(landmarks, indices['outer'])
    iris = _landmark(landmarks, indices['iris'])

    if inner is None or outer is None or iris is None:
        return None

    eye_x, eye_y = outer[0] - inner[0], outer[1] - inner[1]
    iris_x, iris_y = iris[0] - inner[0], iris[1] - inner[1]

    width_sq = eye_x * eye_x + eye_y * eye_y
    if width_sq == 0:
        return None
    width = math.sqrt(width_sq)

    norm_x = (iris_x * eye_x + iris_y * eye_y) / width_sq
    cross = iris_x * eye_y - iris_y * eye_x
    norm_y = 0.5 + (cross / width) * VERTICAL_GAIN

    return (norm_x, norm_y)


def mirrored_iris_positions(landmarks: Sequence[Any]) -> Tuple[Optional[Tuple[float, float]],
                                                                Optional[Tuple[float, float]]]:
    """Both eyes' relative positions with x flipped to screen direction."""
    result = []
    for eye in ('left', 'right'):
        pos = relative_iris_position(landmarks, eye)
        result.append(None if pos is None else (1.0 - pos[0], pos[1]))
    return result[0], result[1]
