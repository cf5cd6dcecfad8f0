# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Stateless services
# PURPOSE: Error classification and status event delivery
# CREATED: 18 OCT 2026
# ============================================================================
"""
Services Module

Usage:
    from services import classify, build_status_sink

    classified = classify(error)
    sink = build_status_sink(config.status)
"""

from .error_classifier import (
    ErrorContext,
    ClassifiedError,
    classify,
    retry_delay_ms,
)
from .status_sink import (
    StatusSink,
    LoggingStatusSink,
    WebhookStatusSink,
    CompositeStatusSink,
    build_status_sink,
)

__all__ = [
    "ErrorContext",
    "ClassifiedError",
    "classify",
    "retry_delay_ms",
    "StatusSink",
    "LoggingStatusSink",
    "WebhookStatusSink",
    "CompositeStatusSink",
    "build_status_sink",
]
