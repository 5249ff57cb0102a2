"""
Character Chat.

Persona-consistent chat orchestration over interchangeable LLM providers,
with branchable message history and per-room semantic memory.
"""

__version__ = "0.1.0"
