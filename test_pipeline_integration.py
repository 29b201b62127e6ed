#!/usr/bin/env python3
"""
End-to-end test of a screening session.

Simulates a subject whose iris position follows gaze linearly, runs the dot
calibration, records pro- and anti-saccade trials through the frame
tracker and checks the per-trial analysis and the phase comparison.
"""

import sys
import os
import tempfile

import numpy as np
import pandas as pd

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from saccade_screen.analysis import TrialAnalyzer, analyze_session, calculate_adaptive_roi
from saccade_screen.config import PipelineConfig
from saccade_screen.analysis.saccade_analysis import LatencyClass
from saccade_screen.gaze_tracking import (
    CalibrationSession, FrameInput, FrameTracker, run_dot_calibration, target_for_position
)
from saccade_screen.utils import setup_logging

FRAME_MS = 10
FIXATION_MS = 1200
RESPONSE_MS = 800
SACCADE_MS = 50
GAZE_NOISE = 0.0005

PRO_LATENCIES = [190, 200, 210, 220, 230]
ANTI_LATENCIES = [320, 330, 340, 350, 360]


def iris_for_gaze(gx, gy):
    """Iris position (screen direction) of the simulated subject."""
    return (0.2 + 0.6 * gx, 0.3 + 0.4 * gy)


def calibration_provider(index, tx, ty):
    iris = iris_for_gaze(tx, ty)
    # Camera image is mirrored
    raw = (1.0 - iris[0], iris[1])
    return raw, raw


def calibrate():
    session = CalibrationSession()
    result = run_dot_calibration(session, calibration_provider)
    assert result.success and result.is_usable, "calibration failed"
    return result.model


def gaze_at(t, stimulus, latency, target_x):
    onset = stimulus + latency
    if t <= onset:
        return 0.5
    fraction = min(1.0, (t - onset) / SACCADE_MS)
    return 0.5 + (target_x - 0.5) * fraction


def run_trial(tracker, rng, trial, t0, dot_position, target_x, latency):
    """Record one trial starting at t0. Returns the stimulus time."""
    stimulus = t0 + FIXATION_MS
    tracker.set_trial_context(trial, "center")

    t = t0
    while t <= stimulus + RESPONSE_MS:
        if t == stimulus:
            tracker.set_trial_context(trial, dot_position)
        gx = gaze_at(t, stimulus, latency, target_x) + rng.normal(0, GAZE_NOISE)
        gy = 0.5 + rng.normal(0, GAZE_NOISE)
        iris = iris_for_gaze(gx, gy)
        tracker.process_frame(FrameInput(float(t), iris, iris))
        t += FRAME_MS
    return stimulus


def record_session(tracker):
    rng = np.random.default_rng(11)
    trials = []
    t0 = 0
    number = 0
    for phase, latencies, positions in (("pro", PRO_LATENCIES, ("right", "left")),
                                        ("anti", ANTI_LATENCIES, ("anti_left", "anti_right"))):
        for i, latency in enumerate(latencies):
            number += 1
            dot_position = positions[i % 2]
            target_x = target_for_position(dot_position)[0]
            stimulus = run_trial(tracker, rng, number, t0, dot_position, target_x, latency)
            trials.append((phase, stimulus, latency, target_x))
            t0 = stimulus + RESPONSE_MS + FRAME_MS
    return trials


def analyze(tracker, trials):
    analyzer = TrialAnalyzer()
    results = {'pro': [], 'anti': []}
    for phase, stimulus, latency, target_x in trials:
        frames = tracker.frames_between(stimulus - 1000, stimulus + RESPONSE_MS)
        results[phase].append((latency, analyzer.analyze_trial(frames, stimulus, phase)))
    return results


def test_calibrated_session_end_to_end():
    print("Testing full screening session...")
    model = calibrate()
    tracker = FrameTracker(model=model)
    assert tracker.has_calibration

    trials = record_session(tracker)
    results = analyze(tracker, trials)

    for phase, analyses in results.items():
        for latency, analysis in analyses:
            assert analysis.is_saccade, f"{phase} trial without saccade"
            # First suprathreshold frame is one frame after movement starts
            assert analysis.latency == latency + FRAME_MS
            assert analysis.duration == SACCADE_MS
            assert analysis.latency_class == LatencyClass.NORMAL
            assert analysis.is_plausible
            assert analysis.quality.data_quality == 1.0
            assert analysis.accuracy.is_valid
            assert abs(analysis.saccadic_gain - 1.0) < 0.05
            assert analysis.accuracy_score > 0.9

    session = analyze_session({phase: [a for _, a in analyses] for phase, analyses in results.items()})
    pro, anti, comparison = session['pro'], session['anti'], session['comparison']

    assert pro.valid_trial_count == 5 and anti.valid_trial_count == 5
    assert abs(pro.latency.mean - 220.0) < 1e-9
    assert abs(anti.latency.mean - 350.0) < 1e-9
    assert comparison.latency.interpretation == "Normal anti-saccade cost"
    assert comparison.overall_diagnosis == "No significant indicators"
    assert comparison.latency_test.significant
    print(f"✓ Pro {pro.latency.mean:.0f}ms, anti {anti.latency.mean:.0f}ms: {comparison.overall_diagnosis}")


def test_calibration_accuracy_reaches_trial_analysis():
    print("Testing calibration accuracy in trial scoring...")
    result = run_dot_calibration(CalibrationSession(), calibration_provider)
    accuracy = result.best_accuracy
    assert accuracy is not None and accuracy > 0.95

    analyzer = TrialAnalyzer(PipelineConfig().with_calibration_accuracy(accuracy))
    roi = analyzer.accuracy_analyzer.roi_radius()
    assert abs(roi - calculate_adaptive_roi(accuracy, 30.0)) < 1e-12
    assert roi < TrialAnalyzer().accuracy_analyzer.roi_radius()
    print(f"✓ Calibration accuracy {accuracy:.3f} gives ROI {roi:.3f}")


def test_anti_targets_are_mirrored():
    print("Testing anti-saccade target placement...")
    tracker = FrameTracker(model=calibrate())
    tracker.set_trial_context(1, "anti_left")
    frame = tracker.process_frame(FrameInput(0.0, iris_for_gaze(0.8, 0.5), iris_for_gaze(0.8, 0.5)))
    assert frame.target_x == 0.8
    assert abs(frame.calibrated.avg[0] - 0.8) < 0.01
    print("✓ Gaze away from the stimulus lands on the target")


def test_setup_logging_writes_log_file():
    print("Testing logging setup...")
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "session.log")
        root = setup_logging(log_file=path)
        try:
            calibrate()
            for handler in root.handlers:
                handler.flush()
            with open(path) as f:
                content = f.read()
        finally:
            for handler in root.handlers[:]:
                handler.close()
                root.removeHandler(handler)
    assert "Logging system initialized" in content
    assert "Calibration left: RMSE=" in content
    print("✓ File handler receives pipeline logs")


def test_session_export():
    print("Testing session export...")
    tracker = FrameTracker(model=calibrate())
    trials = record_session(tracker)
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "session.csv")
        rows = tracker.export_csv(path)
        df = pd.read_csv(path)
    assert rows == len(tracker.frames) == len(df)
    assert df['trial'].nunique() == len(trials)
    # Five saccade frames per trial plus the return to center between trials
    assert df['isSaccade'].sum() == 5 * len(trials) + len(trials) - 1
    stats = tracker.get_statistics()
    assert stats['invalid_frames'] == 0
    print(f"✓ {rows} frames exported")


def run_all_tests():
    """Run all integration tests."""
    print("=" * 50)
    print("SCREENING PIPELINE INTEGRATION TESTS")
    print("=" * 50)

    tests = [
        test_calibrated_session_end_to_end,
        test_calibration_accuracy_reaches_trial_analysis,
        test_anti_targets_are_mirrored,
        test_setup_logging_writes_log_file,
        test_session_export,
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
