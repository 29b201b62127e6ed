"""
Performance Monitoring Utilities
Per-frame timing against the real-time processing budget.
"""

import logging
from typing import Any, Dict, List

import numpy as np

logger = logging.getLogger(__name__)

# Keep only the most recent samples to prevent memory growth
MAX_TIMING_SAMPLES = 100


class FrameTimingMonitor:
    """Tracks per-frame processing time and flags budget overruns"""

    def __init__(self, budget_ms: float = 1000.0 / 60.0):
        self.budget_ms = budget_ms
        self.stats = {
            'frame_times': [],
            'frame_count': 0,
            'overruns': 0,
        }

    def record_frame(self, duration_ms: float):
        """Record processing time of one frame"""
        times: List[float] = self.stats['frame_times']
        times.append(duration_ms)
        self.stats['frame_count'] += 1

        if len(times) > MAX_TIMING_SAMPLES:
            self.stats['frame_times'] = times[-MAX_TIMING_SAMPLES:]

        if duration_ms > self.budget_ms:
            self.stats['overruns'] += 1
            logger.warning(f"Performance warning: frame took {duration_ms:.2f}ms "
                           f"(budget: {self.budget_ms:.2f}ms)")

    def reset(self):
        self.stats = {'frame_times': [], 'frame_count': 0, 'overruns': 0}

    def get_summary(self) -> Dict[str, Any]:
        """Get timing summary"""
        summary = {
            'avg_frame_time': 0.0,
            'max_frame_time': 0.0,
            'frame_count': self.stats['frame_count'],
            'overruns': self.stats['overruns'],
            'budget_ms': self.budget_ms,
        }

        if self.stats['frame_times']:
            summary['avg_frame_time'] = float(np.mean(self.stats['frame_times']))
            summary['max_frame_time'] = float(np.max(self.stats['frame_times']))

        return summary
