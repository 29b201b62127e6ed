"""
Validation and Error Handling Utilities
Centralized validation, error handling and logging setup for the screening pipeline.
"""

import math
import logging
from typing import Any, Optional, Sequence, Tuple


class ValidationUtils:
    """Centralized validation utilities to reduce code duplication"""

    @staticmethod
    def is_finite_number(value: Any) -> bool:
        """True for real, finite numbers (booleans excluded)"""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return math.isfinite(value)

    @staticmethod
    def validate_point(point: Any, context="operation") -> bool:
        """Check an (x, y) gaze or iris point"""
        if point is None:
            return False
        try:
            x, y = point
        except (TypeError, ValueError):
            logging.debug(f"{context}: Malformed point {point!r}")
            return False
        return ValidationUtils.is_finite_number(x) and ValidationUtils.is_finite_number(y)

    @staticmethod
    def validate_frame_order(timestamps: Sequence[float], context="operation") -> Tuple[bool, str]:
        """Frames must arrive in non-decreasing timestamp order"""
        for i in range(1, len(timestamps)):
            if timestamps[i] < timestamps[i - 1]:
                return False, f"{context}: timestamp {timestamps[i]} precedes {timestamps[i - 1]} at index {i}"
        return True, "Frame order is valid"


class ErrorHandlingUtils:
    """Centralized error handling utilities"""

    @staticmethod
    def safe_execute(func, context="operation", default_return=None, *args, **kwargs):
        """Safely execute function with comprehensive error handling"""
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logging.error(f"Error in {context}: {e}", exc_info=True)
            return default_return

    @staticmethod
    def log_performance_warning(operation: str, duration: float, threshold: float = 1.0):
        """Log performance warnings for slow operations"""
        if duration > threshold:
            logging.warning(f"Performance warning: {operation} took {duration:.2f}s (threshold: {threshold:.2f}s)")

    @staticmethod
    def create_error_context(operation: str, **kwargs) -> str:
        """Create detailed error context for logging"""
        context_parts = [operation]
        for key, value in kwargs.items():
            context_parts.append(f"{key}={value}")
        return " | ".join(context_parts)


# Logging configuration with file and console handlers
def setup_logging(log_file: Optional[str] = 'saccade_screen.log', console_level: int = logging.WARNING):
    """Configure logging with file and console handlers"""
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers to prevent duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    simple_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    )

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(simple_formatter)
    logger.addHandler(console_handler)

    logging.info("Logging system initialized")
    return logger
