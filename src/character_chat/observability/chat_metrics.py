"""
Prometheus metrics for the chat pipeline.

Tracks provider calls, exchanges by outcome and memory subsystem activity
for operational monitoring and alerting.
"""

import logging
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class ChatMetrics:
    """Prometheus metrics for providers, the ledger and memory."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        """Initialize chat metrics on the given (or default) registry."""
        self.registry = registry or REGISTRY

        # Provider metrics
        self.provider_calls = Counter(
            "chat_provider_calls_total",
            "Total LLM provider calls",
            ["provider", "model"],
            registry=self.registry,
        )

        self.provider_errors = Counter(
            "chat_provider_errors_total",
            "Total LLM provider failures",
            ["provider", "model"],
            registry=self.registry,
        )

        self.provider_latency = Histogram(
            "chat_provider_latency_seconds",
            "LLM provider call duration",
            ["provider"],
            buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry,
        )

        # Ledger metrics
        self.exchanges = Counter(
            "chat_exchanges_total",
            "Ledger operations by kind and outcome",
            ["operation", "outcome"],
            registry=self.registry,
        )

        self.tokens_used = Counter(
            "chat_tokens_used_total",
            "Tokens reported by providers",
            ["model"],
            registry=self.registry,
        )

        self.background_tasks = Gauge(
            "chat_background_memory_tasks",
            "Detached memory tasks currently running",
            registry=self.registry,
        )

        # Memory metrics
        self.memories_saved = Counter(
            "chat_memories_saved_total",
            "Memories inserted",
            ["memory_type"],
            registry=self.registry,
        )

        self.memories_deduplicated = Counter(
            "chat_memories_deduplicated_total",
            "Memories skipped as near-duplicates",
            registry=self.registry,
        )

        self.memory_failures = Counter(
            "chat_memory_failures_total",
            "Swallowed memory subsystem failures",
            ["operation"],
            registry=self.registry,
        )

    def record_provider_call(self, provider: str, model: str, duration: float) -> None:
        """Record a successful provider call."""
        self.provider_calls.labels(provider=provider, model=model).inc()
        self.provider_latency.labels(provider=provider).observe(duration)

    def record_provider_error(self, provider: str, model: str) -> None:
        """Record a failed provider call."""
        self.provider_calls.labels(provider=provider, model=model).inc()
        self.provider_errors.labels(provider=provider, model=model).inc()

    def record_exchange(self, operation: str, outcome: str) -> None:
        """Record a ledger operation (send, regenerate, rollback)."""
        self.exchanges.labels(operation=operation, outcome=outcome).inc()

    def record_tokens(self, model: str, tokens: int) -> None:
        """Record provider token usage."""
        if tokens > 0:
            self.tokens_used.labels(model=model).inc(tokens)

    def record_memory_saved(self, memory_type: str) -> None:
        """Record a memory insert."""
        self.memories_saved.labels(memory_type=memory_type).inc()

    def record_memory_deduplicated(self) -> None:
        """Record a duplicate memory suppressed at write time."""
        self.memories_deduplicated.inc()

    def record_memory_failure(self, operation: str) -> None:
        """Record a memory subsystem failure that was logged and swallowed."""
        self.memory_failures.labels(operation=operation).inc()

    def export(self) -> bytes:
        """Render metrics in the Prometheus text format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# Global metrics instance - use lazy initialization to avoid duplicate registration
_chat_metrics_instance: Optional[ChatMetrics] = None


def get_chat_metrics() -> ChatMetrics:
    """Get the global chat metrics instance."""
    global _chat_metrics_instance
    if _chat_metrics_instance is None:
        _chat_metrics_instance = ChatMetrics()
    return _chat_metrics_instance
