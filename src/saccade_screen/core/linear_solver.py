"""
Linear algebra core for calibration fitting.

Solves the symmetric normal-equation systems produced by ordinary least
squares and ridge regression with Gaussian elimination and partial pivoting.
"""

import logging
from typing import Optional

import numpy as np

from ..config import SINGULAR_PIVOT_EPSILON

logger = logging.getLogger(__name__)


def solve_linear_system(A, b, epsilon: float = SINGULAR_PIVOT_EPSILON) -> Optional[np.ndarray]:
    """
    Solve Ax = b using Gaussian elimination with partial pivoting.

    Args:
        A: Coefficient matrix (n x n)
        b: Constant vector (n)
        epsilon: Smallest pivot magnitude accepted

    Returns:
        Solution vector, or None if the matrix is singular or near-singular
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    n = A.shape[0]

    if A.shape != (n, n) or b.shape != (n,):
        raise ValueError(f"Incompatible system shapes: A{A.shape}, b{b.shape}")

    # Augmented matrix [A|b]; inputs are left untouched
    aug = np.column_stack([A, b])

    for i in range(n):
        pivot_row = i + int(np.argmax(np.abs(aug[i:, i])))
        if pivot_row != i:
            aug[[i, pivot_row]] = aug[[pivot_row, i]]

        if abs(aug[i, i]) < epsilon:
            logger.debug(f"Singular matrix: pivot {i} = {aug[i, i]:.3e}")
            return None

        factors = aug[i + 1:, i] / aug[i, i]
        aug[i + 1:, i:] -= np.outer(factors, aug[i, i:])

    # Back substitution
    x = np.zeros(n)
    for i in range(n - 1, -1, -1):
        x[i] = (aug[i, n] - np.dot(aug[i, i + 1:n], x[i + 1:])) / aug[i, i]

    return x


def _normal_equations(A: np.ndarray, b: np.ndarray):
    return A.T @ A, A.T @ b


def least_squares(A, b) -> Optional[np.ndarray]:
    """Ordinary least squares: solves (XᵗX)β = Xᵗy."""
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    XtX, Xty = _normal_equations(A, b)
    return solve_linear_system(XtX, Xty)


def ridge_regression(A, b, lam: float = 0.01) -> Optional[np.ndarray]:
    """
    Ridge regression: solves (XᵗX + λI)β = Xᵗy.

    The intercept (column 0) is not penalized. With fewer samples than
    features λ is raised to at least 0.1.

    Args:
        A: Design matrix (m samples x n features)
        b: Target vector (m)
        lam: Regularization strength

    Returns:
        Coefficient vector, or None if the system could not be solved
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    m, n = A.shape

    if m < n:
        logger.warning("Ridge: fewer samples than features, increasing lambda")
        lam = max(lam, 0.1)

    XtX, Xty = _normal_equations(A, b)
    penalty = np.full(n, lam)
    penalty[0] = 0.0
    XtX = XtX + np.diag(penalty)

    return solve_linear_system(XtX, Xty)
