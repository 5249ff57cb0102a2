"""
Conversational AI algorithms.

Organized into:
- embeddings: Text to vector generation
- memory: Semantic memory, fact extraction and summarization
- text_normalizer: Provider reply sanitization
"""
