"""Prometheus metrics for Knowledge Chat.

Cardinality rule: user_id and session_id are NOT Prometheus labels (unbounded).
status, reason and upload kind are labels (bounded).
"""

import logging
from typing import Optional

import prometheus_client

logger = logging.getLogger(__name__)

# --- Metric singletons (created on first access) ---

_metrics = {}


def _metric(name, metric_type, description, labelnames=()):
    """Get or create a Prometheus metric."""
    if name in _metrics:
        return _metrics[name]
    cls = getattr(prometheus_client, metric_type)
    m = cls(name, description, labelnames=labelnames)
    _metrics[name] = m
    return m


def messages_total():
    return _metric(
        "knowledge_chat_messages_total",
        "Counter",
        "Total chat messages sent through the pipeline",
        labelnames=["status"],
    )


def quota_denials_total():
    return _metric(
        "knowledge_chat_quota_denials_total",
        "Counter",
        "Total actions denied by the quota tracker",
        labelnames=["reason"],
    )


def tokens_consumed_total():
    return _metric(
        "knowledge_chat_tokens_consumed_total",
        "Counter",
        "Total completion tokens reported by the completion service",
    )


def completion_duration():
    return _metric(
        "knowledge_chat_completion_duration_seconds",
        "Histogram",
        "Completion call duration in seconds",
        labelnames=["status"],
    )


def uploads_total():
    return _metric(
        "knowledge_chat_uploads_total",
        "Counter",
        "Total attachment uploads",
        labelnames=["kind", "status"],
    )


def active_controllers():
    return _metric(
        "knowledge_chat_active_controllers",
        "Gauge",
        "Number of live per-user chat controllers",
    )


# --- Helper functions for recording metrics ---

def record_message(status: str, duration: Optional[float] = None):
    messages_total().labels(status=status).inc()
    if duration is not None:
        completion_duration().labels(status=status).observe(duration)


def record_denial(reason: str):
    quota_denials_total().labels(reason=reason).inc()


def record_tokens(tokens: int):
    if tokens > 0:
        tokens_consumed_total().inc(tokens)


def record_upload(kind: str, status: str):
    uploads_total().labels(kind=kind, status=status).inc()


def set_active_controllers(count: int):
    active_controllers().set(count)


def generate_metrics_text() -> str:
    """Generate Prometheus metrics text output."""
    return prometheus_client.generate_latest().decode("utf-8")
