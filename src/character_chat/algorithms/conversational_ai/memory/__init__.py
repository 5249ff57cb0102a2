"""Memory system components."""
from .conversation_summarizer import ConversationSummarizer
from .fact_extractor import FactExtractor
from .memory_store import MemoryStore

__all__ = ["ConversationSummarizer", "FactExtractor", "MemoryStore"]
