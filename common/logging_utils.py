#!/usr/bin/env python3
"""
Logging Setup
All diagnostics go to standard output
"""
import logging
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the root logger with a single stdout handler"""
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    # Replace handlers so repeated CLI invocations in one process do not duplicate lines
    for handler in list(logger.handlers):
        if getattr(handler, "_npu_seg", False):
            logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler._npu_seg = True
    logger.addHandler(console_handler)
    return logger
