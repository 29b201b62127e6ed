"""
Core numeric routines: linear solver and calibration regression.
"""

from .linear_solver import solve_linear_system, least_squares, ridge_regression
from .reason_codes import ReasonCode
from .regression import build_design_matrix, evaluate_polynomial, find_optimal_lambda, quadratic_features

__all__ = [
    'solve_linear_system', 'least_squares', 'ridge_regression',
    'ReasonCode',
    'build_design_matrix', 'evaluate_polynomial', 'find_optimal_lambda', 'quadratic_features'
]
