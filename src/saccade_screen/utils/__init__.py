"""
Utility modules: validation, error handling, logging setup and frame timing.
"""

from .validation import ValidationUtils, ErrorHandlingUtils, setup_logging
from .performance import FrameTimingMonitor

__all__ = ['ValidationUtils', 'ErrorHandlingUtils', 'setup_logging', 'FrameTimingMonitor']
