"""Core building blocks: configuration, data model, storage, LLM access."""
