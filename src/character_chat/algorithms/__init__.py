"""Conversation algorithms: embeddings, memory and text normalization."""
