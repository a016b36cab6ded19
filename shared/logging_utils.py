"""
Logging utilities for the processing service.
"""
import logging
import os

DEFAULT_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def setup_logging(service_name: str, log_level: str | None = None) -> logging.Logger:
    """
    Setup logging configuration for a pipeline component.

    Args:
        service_name: Name of the component for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Falls back to the LOG_LEVEL environment variable.

    Returns:
        Configured logger instance
    """
    level_name = (log_level or DEFAULT_LOG_LEVEL).upper()
    logger = logging.getLogger(service_name)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            f'%(asctime)s - {service_name} - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
