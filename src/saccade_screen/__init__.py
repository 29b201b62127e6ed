"""
Saccade screening pipeline.
Webcam eye-tracking analysis for the pro/anti-saccade task.

Calibration: per-eye quadratic ridge regression from iris to screen
Detection: real-time angular velocity saccade detection
Analysis: trial scoring, phase aggregation and pro vs anti comparison
"""

from .config import APP_NAME, APP_VERSION, PipelineConfig

__version__ = APP_VERSION

__all__ = ['APP_NAME', 'APP_VERSION', 'PipelineConfig', '__version__']
