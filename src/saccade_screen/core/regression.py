"""
Quadratic calibration regression.

Builds the second-order polynomial design matrix used to map iris
coordinates to screen coordinates, and selects the ridge regularization
strength with k-fold cross-validation.
"""

import logging
from concurrent.futures import Executor
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ..config import DEFAULT_LAMBDA_GRID
from .linear_solver import ridge_regression

logger = logging.getLogger(__name__)


def quadratic_features(x: float, y: float) -> np.ndarray:
    """Feature row [1, x, y, x², y², xy]."""
    return np.array([1.0, x, y, x * x, y * y, x * y])


def build_design_matrix(points: Iterable[Tuple[float, float]]) -> np.ndarray:
    """Stack quadratic feature rows for a sequence of (x, y) points."""
    rows = [quadratic_features(x, y) for x, y in points]
    if not rows:
        return np.empty((0, 6))
    return np.vstack(rows)


def evaluate_polynomial(coef: Sequence[float], x: float, y: float) -> float:
    """Evaluate the quadratic polynomial at (x, y)."""
    return float(np.dot(np.asarray(coef[:6], dtype=float), quadratic_features(x, y)))


def fold_bounds(m: int, k: int) -> List[Tuple[int, int]]:
    """
    Contiguous fold boundaries for k-fold cross-validation.

    Each fold holds floor(m/k) rows; the last fold also takes the remainder.
    """
    fold_size = m // k
    bounds = []
    for fold in range(k):
        start = fold * fold_size
        end = m if fold == k - 1 else start + fold_size
        bounds.append((start, end))
    return bounds


def _fold_error(A: np.ndarray, b: np.ndarray, start: int, end: int, lam: float) -> Optional[float]:
    """Squared held-out error for one fold, or None if training failed."""
    mask = np.ones(len(b), dtype=bool)
    mask[start:end] = False

    coef = ridge_regression(A[mask], b[mask], lam)
    if coef is None:
        return None

    residuals = A[start:end] @ coef - b[start:end]
    return float(np.sum(residuals ** 2))


def find_optimal_lambda(A, b, lambdas: Sequence[float] = DEFAULT_LAMBDA_GRID, k: int = 5,
                        executor: Optional[Executor] = None) -> float:
    """
    Select the ridge lambda with the lowest cross-validated error.

    Args:
        A: Design matrix (m x 6)
        b: Target vector (m)
        lambdas: Candidate regularization strengths, in priority order
        k: Number of contiguous folds
        executor: Optional executor used to evaluate folds concurrently

    Returns:
        Lambda with the lowest mean squared held-out error. Ties keep the
        earlier candidate; folds whose fit fails are skipped.
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    m = len(b)

    best_lambda = lambdas[0]
    best_error = float("inf")
    folds = fold_bounds(m, k)

    for lam in lambdas:
        if executor is not None:
            futures = [executor.submit(_fold_error, A, b, start, end, lam) for start, end in folds]
            # Combined in fold order so the result does not depend on scheduling
            errors = [future.result() for future in futures]
        else:
            errors = [_fold_error(A, b, start, end, lam) for start, end in folds]

        total_error = sum(err for err in errors if err is not None)
        mean_error = total_error / m if m else float("inf")
        logger.debug(f"Lambda {lam}: CV error {mean_error:.6f}")

        if mean_error < best_error:
            best_error = mean_error
            best_lambda = lam

    return best_lambda
