"""
Observability package for metrics.

Structured logging lives in character_chat.core.logging.
"""

from .chat_metrics import ChatMetrics, get_chat_metrics

__all__ = ["ChatMetrics", "get_chat_metrics"]
