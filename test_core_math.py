#!/usr/bin/env python3
"""
Test script for the calibration math core.

Tests:
- Gaussian elimination with partial pivoting
- Ordinary least squares and ridge regression
- Quadratic design matrix and k-fold lambda selection
- Calibration fitting for one and both eyes
"""

import sys
import os
from concurrent.futures import ThreadPoolExecutor

import numpy as np

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from saccade_screen.config import CalibrationConfig, DEFAULT_LAMBDA_GRID
from saccade_screen.core.linear_solver import least_squares, ridge_regression, solve_linear_system
from saccade_screen.core.reason_codes import ReasonCode
from saccade_screen.core.regression import (
    build_design_matrix, evaluate_polynomial, find_optimal_lambda, fold_bounds, quadratic_features
)
from saccade_screen.gaze_tracking.calibration import (
    CalibrationFitter, CalibrationModel, GazeSample, calibration_grid
)


def linear_iris(gx, gy):
    """Iris position that a subject looking at (gx, gy) produces."""
    return (0.2 + 0.6 * gx, 0.3 + 0.4 * gy)


def make_samples(per_point=5, left=True, right=True):
    samples = []
    for index, (tx, ty) in enumerate(calibration_grid()):
        for _ in range(per_point):
            iris = linear_iris(tx, ty)
            samples.append(GazeSample(index, tx, ty,
                                      iris if left else None,
                                      iris if right else None))
    return samples


def test_solve_identity_system():
    """Solving a well-conditioned system recovers the exact solution."""
    print("Testing linear solver on a known system...")
    A = np.array([[4.0, 1.0, 2.0], [1.0, 5.0, 1.0], [2.0, 1.0, 6.0]])
    expected = np.array([1.0, -2.0, 3.0])
    x = solve_linear_system(A, A @ expected)
    assert x is not None
    np.testing.assert_allclose(x, expected, atol=1e-10)
    print("✓ Solution matches")


def test_solve_requires_pivoting():
    """A zero leading entry is handled by row exchange."""
    print("Testing partial pivoting...")
    x = solve_linear_system([[0.0, 1.0], [1.0, 0.0]], [2.0, 3.0])
    np.testing.assert_allclose(x, [3.0, 2.0])
    print("✓ Pivoting handled zero leading entry")


def test_solve_singular_returns_none():
    """Singular and near-singular matrices produce no solution."""
    print("Testing singular matrix detection...")
    assert solve_linear_system([[1.0, 2.0], [2.0, 4.0]], [1.0, 2.0]) is None
    assert solve_linear_system([[1e-12, 0.0], [0.0, 1e-12]], [1.0, 1.0]) is None
    print("✓ Singular matrices rejected")


def test_solver_leaves_inputs_untouched():
    print("Testing solver purity...")
    A = np.array([[2.0, 1.0], [1.0, 3.0]])
    b = np.array([1.0, 2.0])
    A_copy, b_copy = A.copy(), b.copy()
    solve_linear_system(A, b)
    np.testing.assert_array_equal(A, A_copy)
    np.testing.assert_array_equal(b, b_copy)
    print("✓ Inputs unchanged")


def test_least_squares_recovers_quadratic():
    """OLS on noise-free quadratic data recovers the generating coefficients."""
    print("Testing least squares on exact quadratic data...")
    coef = np.array([0.1, 0.5, -0.2, 0.3, 0.05, -0.4])
    points = [(x, y) for x in np.linspace(0, 1, 4) for y in np.linspace(0, 1, 4)]
    A = build_design_matrix(points)
    beta = least_squares(A, A @ coef)
    np.testing.assert_allclose(beta, coef, atol=1e-8)
    print("✓ Coefficients recovered")


def test_ridge_does_not_penalize_intercept():
    """With only an intercept column, any lambda returns the mean."""
    print("Testing ridge intercept handling...")
    beta = ridge_regression([[1.0], [1.0], [1.0]], [4.0, 5.0, 6.0], lam=10.0)
    np.testing.assert_allclose(beta, [5.0])
    print("✓ Intercept unpenalized")


def test_ridge_raises_lambda_when_underdetermined():
    """Fewer rows than columns forces lambda to at least 0.1."""
    print("Testing ridge lambda floor for underdetermined systems...")
    A = build_design_matrix([(0.2, 0.3), (0.6, 0.7), (0.4, 0.9)])
    b = np.array([0.1, 0.5, 0.8])
    small = ridge_regression(A, b, lam=0.001)
    floor = ridge_regression(A, b, lam=0.1)
    assert small is not None
    np.testing.assert_allclose(small, floor)
    print("✓ Lambda raised to 0.1")


def test_quadratic_features_order():
    print("Testing feature order [1, x, y, x², y², xy]...")
    np.testing.assert_allclose(quadratic_features(2.0, 3.0), [1, 2, 3, 4, 9, 6])
    assert evaluate_polynomial([1, 1, 1, 1, 1, 1], 2.0, 3.0) == 25.0
    assert build_design_matrix([]).shape == (0, 6)
    print("✓ Feature order correct")


def test_fold_bounds_last_fold_takes_remainder():
    print("Testing contiguous fold boundaries...")
    assert fold_bounds(12, 5) == [(0, 2), (2, 4), (4, 6), (6, 8), (8, 12)]
    assert fold_bounds(10, 5) == [(0, 2), (2, 4), (4, 6), (6, 8), (8, 10)]
    print("✓ Folds contiguous, remainder in last fold")


def test_find_optimal_lambda_prefers_small_lambda_on_clean_data():
    """Noise-free data is best fitted with the weakest regularization."""
    print("Testing lambda selection on noise-free data...")
    rng = np.random.default_rng(42)
    points = rng.uniform(0.0, 1.0, size=(60, 2))
    A = build_design_matrix(points)
    b = A @ np.array([0.2, 0.8, -0.1, 0.3, 0.2, -0.5])
    assert find_optimal_lambda(A, b) == DEFAULT_LAMBDA_GRID[0]
    print("✓ Smallest lambda selected")


def test_find_optimal_lambda_parallel_matches_serial():
    print("Testing deterministic parallel fold evaluation...")
    rng = np.random.default_rng(7)
    points = rng.uniform(0.0, 1.0, size=(45, 2))
    A = build_design_matrix(points)
    b = points[:, 0] + rng.normal(0, 0.2, size=45)
    serial = find_optimal_lambda(A, b)
    with ThreadPoolExecutor(max_workers=5) as executor:
        parallel = find_optimal_lambda(A, b, executor=executor)
    assert serial == parallel
    print(f"✓ Both paths selected lambda={serial}")


def test_fit_recovers_accurate_mapping():
    print("Testing calibration fit on consistent samples...")
    fitter = CalibrationFitter()
    result = fitter.fit(make_samples(), "left")
    assert result.success
    assert result.sample_count == 45
    assert result.rmse < 0.05
    assert result.accuracy == max(0.0, 1.0 - result.rmse)
    assert result.lambda_x in DEFAULT_LAMBDA_GRID and result.lambda_y in DEFAULT_LAMBDA_GRID
    assert len(result.coef_x) == 6 and len(result.coef_y) == 6
    print(f"✓ RMSE={result.rmse:.4f}, accuracy={result.accuracy:.3f}")


def test_fit_insufficient_samples():
    print("Testing insufficient sample handling...")
    samples = make_samples(per_point=1)[:5]
    result = CalibrationFitter().fit(samples, "right")
    assert not result.success
    assert result.reason == ReasonCode.INSUFFICIENT_SAMPLES
    print("✓ insufficient_samples reported")


def test_fit_ols_method():
    print("Testing OLS calibration method...")
    fitter = CalibrationFitter(CalibrationConfig(method="ols"))
    result = fitter.fit(make_samples(), "left")
    assert result.success
    assert result.lambda_x is None
    assert result.rmse < 1e-6
    print("✓ OLS fit exact on linear mapping")


def test_fit_model_partial_eye_is_valid():
    """A model with only one fitted eye is valid and usable."""
    print("Testing partial calibration model...")
    result = CalibrationFitter().fit_model(make_samples(right=False))
    assert result.success
    assert result.left.success and not result.right.success
    assert result.model.is_valid()
    assert not result.model.right.is_fitted()
    assert result.is_usable and not result.needs_recalibration
    print("✓ Left-only model accepted")


def test_fit_model_low_accuracy_requests_recalibration():
    print("Testing low accuracy calibration...")
    rng = np.random.default_rng(3)
    samples = [GazeSample(i, float(rng.uniform()), float(rng.uniform()),
                          (float(rng.uniform()), float(rng.uniform())),
                          (float(rng.uniform()), float(rng.uniform())))
               for i in range(40)]
    result = CalibrationFitter().fit_model(samples)
    assert result.success
    assert not result.is_usable
    assert result.needs_recalibration
    print(f"✓ Recalibration requested (best accuracy {result.best_accuracy:.2f})")


def test_fit_model_both_eyes_fail():
    print("Testing total calibration failure...")
    result = CalibrationFitter().fit_model([])
    assert not result.success
    assert result.model is None
    assert result.reason == ReasonCode.INSUFFICIENT_SAMPLES
    print("✓ Failure reported without a model")


def test_model_serialization_schema():
    print("Testing calibration model JSON schema...")
    model = CalibrationFitter().fit_model(make_samples()).model
    data = model.to_dict()
    assert set(data) == {'left', 'right', 'metadata'}
    assert set(data['left']) == {'coefX', 'coefY'}
    assert set(data['metadata']) == {'method', 'coordinateSystem', 'timestamp', 'screenDimensions'}
    assert data['metadata']['coordinateSystem'] == "normalized"
    assert data['metadata']['screenDimensions'] == {'width': 1920, 'height': 1080}
    restored = CalibrationModel.from_dict(data)
    assert restored.left.coef_x == model.left.coef_x
    assert restored.metadata.coordinate_system == "normalized"
    assert not CalibrationModel.from_dict({}).is_valid()

    stored = CalibrationModel.from_dict({'metadata': {'screenDimensions': {'width': 2560, 'height': 1440}}})
    assert (stored.metadata.screen_width, stored.metadata.screen_height) == (2560, 1440)
    legacy = CalibrationModel.from_dict({'metadata': {'screenWidth': 1280, 'screenHeight': 720}})
    assert (legacy.metadata.screen_width, legacy.metadata.screen_height) == (1280, 720)
    print("✓ Schema uses camelCase keys and nested screen dimensions")


def test_ridge_converges_to_ols():
    """Vanishing regularization reproduces the least squares solution."""
    print("Testing ridge limit as lambda approaches zero...")
    rng = np.random.default_rng(5)
    points = rng.uniform(0.0, 1.0, size=(40, 2))
    A = build_design_matrix(points)
    b = points[:, 0] - 0.5 * points[:, 1] + rng.normal(0, 0.05, size=40)
    ols = least_squares(A, b)
    ridge = ridge_regression(A, b, lam=1e-9)
    np.testing.assert_allclose(ridge, ols, atol=1e-5)
    print("✓ Ridge with lambda=1e-9 matches OLS")


def test_ridge_shrinks_with_lambda():
    """Stronger regularization shrinks the penalized coefficients."""
    print("Testing ridge shrinkage over the lambda grid...")
    rng = np.random.default_rng(9)
    points = rng.uniform(0.0, 1.0, size=(40, 2))
    A = build_design_matrix(points)
    b = 0.3 + 0.8 * points[:, 0] - 0.4 * points[:, 1] + rng.normal(0, 0.05, size=40)
    norms = [float(np.linalg.norm(ridge_regression(A, b, lam)[1:])) for lam in DEFAULT_LAMBDA_GRID]
    assert all(later < earlier for earlier, later in zip(norms, norms[1:])), norms
    print(f"✓ Non-intercept norms {', '.join(f'{n:.3f}' for n in norms)}")


def run_all_tests():
    """Run all core math tests."""
    print("=" * 50)
    print("CALIBRATION MATH CORE TESTS")
    print("=" * 50)

    tests = [
        test_solve_identity_system,
        test_solve_requires_pivoting,
        test_solve_singular_returns_none,
        test_solver_leaves_inputs_untouched,
        test_least_squares_recovers_quadratic,
        test_ridge_does_not_penalize_intercept,
        test_ridge_raises_lambda_when_underdetermined,
        test_quadratic_features_order,
        test_fold_bounds_last_fold_takes_remainder,
        test_find_optimal_lambda_prefers_small_lambda_on_clean_data,
        test_find_optimal_lambda_parallel_matches_serial,
        test_fit_recovers_accurate_mapping,
        test_fit_insufficient_samples,
        test_fit_ols_method,
        test_fit_model_partial_eye_is_valid,
        test_fit_model_low_accuracy_requests_recalibration,
        test_fit_model_both_eyes_fail,
        test_model_serialization_schema,
        test_ridge_converges_to_ols,
        test_ridge_shrinks_with_lambda,
    ]

    passed = 0
    for test_func in tests:
        print(f"\n{test_func.__name__}:")
        try:
            test_func()
            passed += 1
        except AssertionError as e:
            print(f"✗ Test failed: {e}")

    print("\n" + "=" * 50)
    print(f"RESULTS: {passed}/{len(tests)} tests passed")
    print("=" * 50)
    return passed == len(tests)


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
