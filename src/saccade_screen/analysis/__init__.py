"""
Trial and session analysis for the pro/anti-saccade task.
"""

from .accuracy import AccuracyAnalyzer, AccuracyResult, calculate_adaptive_roi, is_within_roi
from .saccade_analysis import LatencyClass, TrialAnalysis, TrialAnalyzer, classify_latency
from .session_statistics import (
    ComparisonReport, PhaseComparator, PhaseStatistics, TrialAggregator, analyze_session
)

__all__ = [
    'AccuracyAnalyzer', 'AccuracyResult', 'calculate_adaptive_roi', 'is_within_roi',
    'LatencyClass', 'TrialAnalysis', 'TrialAnalyzer', 'classify_latency',
    'ComparisonReport', 'PhaseComparator', 'PhaseStatistics', 'TrialAggregator', 'analyze_session'
]
