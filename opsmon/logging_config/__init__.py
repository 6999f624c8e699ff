"""Structured Logging & Invocation Tracing.

Provides structured JSON logging, invocation ID propagation,
and performance timing for opsmon commands and checks.
"""

from opsmon.logging_config.config import LogFormat, LoggingConfig, LogLevel
from opsmon.logging_config.context import InvocationContext, generate_invocation_id
from opsmon.logging_config.performance import PerformanceTimer, log_performance
from opsmon.logging_config.setup import configure_logging

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "InvocationContext",
    "PerformanceTimer",
    "configure_logging",
    "generate_invocation_id",
    "log_performance",
]
