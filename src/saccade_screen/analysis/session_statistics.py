"""
Session-level statistics for the pro/anti-saccade screening.

Aggregates valid trials of a phase into summary statistics and compares
the pro-saccade and anti-saccade phases. The comparison reports the
anti-saccade latency cost, velocity ratio, accuracy and gain differences,
with a Welch t-test on latency as supplementary evidence.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from scipy import stats

from ..config import PHASE_ANTI, PHASE_PRO, PlausibilityConfig
from ..utils.validation import ErrorHandlingUtils
from .saccade_analysis import LatencyClass, TrialAnalysis

logger = logging.getLogger(__name__)

NO_VALID_TRIALS_WARNING = "No valid trials found"

NORMAL_LATENCY_COST_MS = 100.0
REDUCED_VELOCITY_RATIO = 0.85
SIGNIFICANT_ACCURACY_DROP = 0.15
HYPOMETRIC_ANTI_GAIN = 0.8
T_TEST_ALPHA = 0.05


@dataclass
class MetricSummary:
    """Descriptive statistics of one metric across trials."""
    mean: Optional[float] = None
    std: Optional[float] = None  # sample SD, 0 for a single trial
    median: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    count: int = 0

    @classmethod
    def from_values(cls, values: Sequence[Optional[float]]) -> "MetricSummary":
        data = np.array([v for v in values if v is not None], dtype=float)
        if data.size == 0:
            return cls()
        return cls(
            mean=float(np.mean(data)),
            std=float(np.std(data, ddof=1)) if data.size > 1 else 0.0,
            median=float(np.median(data)),
            min=float(np.min(data)),
            max=float(np.max(data)),
            count=int(data.size),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'mean': self.mean, 'std': self.std, 'median': self.median,
                'min': self.min, 'max': self.max, 'count': self.count}


@dataclass
class PhaseStatistics:
    """Aggregated statistics of one phase."""
    phase: str
    valid_trial_count: int = 0
    total_trial_count: int = 0
    latency: MetricSummary = field(default_factory=MetricSummary)
    peak_velocity: MetricSummary = field(default_factory=MetricSummary)
    accuracy: MetricSummary = field(default_factory=MetricSummary)
    gain: MetricSummary = field(default_factory=MetricSummary)
    duration: MetricSummary = field(default_factory=MetricSummary)
    total_binocular_disparity_events: int = 0
    average_data_quality: Optional[float] = None
    classification_counts: Dict[str, int] = field(default_factory=dict)
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.valid_trial_count == 0:
            return {'phase': self.phase, 'validTrialCount': 0,
                    'totalTrialCount': self.total_trial_count, 'warning': self.warning}
        return {
            'phase': self.phase,
            'validTrialCount': self.valid_trial_count,
            'totalTrialCount': self.total_trial_count,
            'latency': self.latency.to_dict(),
            'peakVelocity': self.peak_velocity.to_dict(),
            'accuracy': self.accuracy.to_dict(),
            'gain': self.gain.to_dict(),
            'duration': self.duration.to_dict(),
            'totalBinocularDisparityEvents': self.total_binocular_disparity_events,
            'averageDataQuality': self.average_data_quality,
            'classificationCounts': dict(self.classification_counts),
        }


class TrialAggregator:
    """Aggregates analyzed trials of one phase."""

    def __init__(self, plausibility: Optional[PlausibilityConfig] = None):
        self.plausibility = plausibility or PlausibilityConfig()

    def is_valid_trial(self, trial: TrialAnalysis) -> bool:
        return (trial.is_saccade and trial.is_plausible
                and trial.quality.data_quality > self.plausibility.min_data_quality)

    def aggregate(self, trials: Sequence[TrialAnalysis], phase: str) -> PhaseStatistics:
        """
        Aggregate the valid trials of a phase.

        A trial is valid when a saccade was detected, it is physiologically
        plausible and its data quality exceeds the minimum.
        """
        valid = [t for t in trials if self.is_valid_trial(t)]

        if not valid:
            logger.warning(f"{phase}: no valid trials out of {len(trials)}")
            return PhaseStatistics(phase=phase, total_trial_count=len(trials),
                                   warning=NO_VALID_TRIALS_WARNING)

        counts = {cls.value: 0 for cls in LatencyClass}
        for trial in valid:
            counts[trial.latency_class.value] += 1

        result = PhaseStatistics(
            phase=phase,
            valid_trial_count=len(valid),
            total_trial_count=len(trials),
            latency=MetricSummary.from_values([t.latency for t in valid]),
            peak_velocity=MetricSummary.from_values([t.peak_velocity for t in valid]),
            accuracy=MetricSummary.from_values([t.accuracy_score for t in valid]),
            gain=MetricSummary.from_values([t.saccadic_gain for t in valid]),
            duration=MetricSummary.from_values([t.duration for t in valid]),
            total_binocular_disparity_events=sum(t.quality.binocular_disparity_events for t in valid),
            average_data_quality=float(np.mean([t.quality.data_quality for t in valid])),
            classification_counts=counts,
        )

        logger.info(f"{phase}: {len(valid)}/{len(trials)} valid trials, "
                    f"mean latency {result.latency.mean:.1f}ms")
        return result


@dataclass
class MetricComparison:
    """Pro vs anti comparison of one metric."""
    pro: Optional[float] = None
    anti: Optional[float] = None
    difference: Optional[float] = None
    ratio: Optional[float] = None
    interpretation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {'pro': self.pro, 'anti': self.anti, 'difference': self.difference,
                'ratio': self.ratio, 'interpretation': self.interpretation}


@dataclass
class LatencyTest:
    """Welch t-test on latency from summary statistics."""
    statistic: float
    p_value: float
    significant: bool

    def to_dict(self) -> Dict[str, Any]:
        return {'statistic': self.statistic, 'pValue': self.p_value, 'significant': self.significant}


@dataclass
class ComparisonReport:
    """Pro-saccade vs anti-saccade comparison."""
    latency: MetricComparison = field(default_factory=MetricComparison)
    peak_velocity: MetricComparison = field(default_factory=MetricComparison)
    accuracy: MetricComparison = field(default_factory=MetricComparison)
    gain: MetricComparison = field(default_factory=MetricComparison)
    latency_test: Optional[LatencyTest] = None
    findings: List[str] = field(default_factory=list)
    overall_diagnosis: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'latency': self.latency.to_dict(),
            'peakVelocity': self.peak_velocity.to_dict(),
            'accuracy': self.accuracy.to_dict(),
            'gain': self.gain.to_dict(),
            'latencyTest': self.latency_test.to_dict() if self.latency_test else None,
            'findings': list(self.findings),
            'overallDiagnosis': self.overall_diagnosis,
        }


def welch_latency_test(pro: PhaseStatistics, anti: PhaseStatistics) -> Optional[LatencyTest]:
    """Welch's t-test on latency; None when either phase lacks spread or samples."""
    a, b = pro.latency, anti.latency
    if a.count < 2 or b.count < 2 or (not a.std and not b.std):
        return None
    statistic, p_value = stats.ttest_ind_from_stats(
        a.mean, a.std, a.count, b.mean, b.std, b.count, equal_var=False
    )
    return LatencyTest(statistic=float(statistic), p_value=float(p_value),
                       significant=bool(p_value < T_TEST_ALPHA))


class PhaseComparator:
    """Compares pro-saccade and anti-saccade phase statistics."""

    def compare(self, pro: PhaseStatistics, anti: PhaseStatistics) -> ComparisonReport:
        """
        Compare the two phases.

        Returns:
            ComparisonReport; "Inconclusive" when either phase has no valid
            trials or the comparison could not be computed
        """
        if pro.valid_trial_count == 0 or anti.valid_trial_count == 0:
            logger.warning("Comparison skipped: a phase has no valid trials")
            return ComparisonReport(overall_diagnosis="Inconclusive - insufficient valid trials")

        context = ErrorHandlingUtils.create_error_context(
            "compare phases", pro_trials=pro.valid_trial_count, anti_trials=anti.valid_trial_count)
        report = ErrorHandlingUtils.safe_execute(self._compare, context, None, pro, anti)
        if report is None:
            return ComparisonReport(overall_diagnosis="Inconclusive - comparison failed")
        return report

    def _compare(self, pro: PhaseStatistics, anti: PhaseStatistics) -> ComparisonReport:
        report = ComparisonReport()

        latency_diff = anti.latency.mean - pro.latency.mean
        report.latency = MetricComparison(
            pro=pro.latency.mean, anti=anti.latency.mean, difference=latency_diff,
            interpretation=("Normal anti-saccade cost" if latency_diff > NORMAL_LATENCY_COST_MS
                            else "Reduced anti-saccade cost"),
        )

        velocity_ratio = anti.peak_velocity.mean / pro.peak_velocity.mean if pro.peak_velocity.mean else None
        report.peak_velocity = MetricComparison(
            pro=pro.peak_velocity.mean, anti=anti.peak_velocity.mean,
            difference=anti.peak_velocity.mean - pro.peak_velocity.mean, ratio=velocity_ratio,
            interpretation=("Reduced anti-saccade velocity"
                            if velocity_ratio is not None and velocity_ratio < REDUCED_VELOCITY_RATIO
                            else "Comparable peak velocity"),
        )

        accuracy_diff = pro.accuracy.mean - anti.accuracy.mean
        report.accuracy = MetricComparison(
            pro=pro.accuracy.mean, anti=anti.accuracy.mean, difference=accuracy_diff,
            interpretation=("Significant accuracy reduction in anti-saccades"
                            if accuracy_diff > SIGNIFICANT_ACCURACY_DROP else "Comparable accuracy"),
        )

        if pro.gain.mean is not None and anti.gain.mean is not None:
            report.gain = MetricComparison(
                pro=pro.gain.mean, anti=anti.gain.mean, difference=pro.gain.mean - anti.gain.mean,
                interpretation=("Hypometric anti-saccades" if anti.gain.mean < HYPOMETRIC_ANTI_GAIN
                                else "Normal anti-saccade gain"),
            )

        report.latency_test = welch_latency_test(pro, anti)

        if latency_diff <= NORMAL_LATENCY_COST_MS:
            report.findings.append(report.latency.interpretation)
        if velocity_ratio is not None and velocity_ratio < REDUCED_VELOCITY_RATIO:
            report.findings.append(report.peak_velocity.interpretation)
        if accuracy_diff > SIGNIFICANT_ACCURACY_DROP:
            report.findings.append(report.accuracy.interpretation)
        if report.gain.anti is not None and report.gain.anti < HYPOMETRIC_ANTI_GAIN:
            report.findings.append(report.gain.interpretation)

        if len(report.findings) >= 2:
            report.overall_diagnosis = "Multiple indicators of impaired inhibitory control"
        elif report.findings:
            report.overall_diagnosis = "Single indicator observed - follow-up recommended"
        else:
            report.overall_diagnosis = "No significant indicators"

        logger.info(f"Phase comparison: {report.overall_diagnosis} "
                    f"(latency cost {latency_diff:.0f}ms, findings={len(report.findings)})")
        return report


def analyze_session(trials_by_phase: Dict[str, Sequence[TrialAnalysis]],
                    plausibility: Optional[PlausibilityConfig] = None) -> Dict[str, Any]:
    """Aggregate both phases and compare them."""
    aggregator = TrialAggregator(plausibility)
    pro = aggregator.aggregate(trials_by_phase.get(PHASE_PRO, []), PHASE_PRO)
    anti = aggregator.aggregate(trials_by_phase.get(PHASE_ANTI, []), PHASE_ANTI)
    comparison = PhaseComparator().compare(pro, anti)
    return {'pro': pro, 'anti': anti, 'comparison': comparison}
