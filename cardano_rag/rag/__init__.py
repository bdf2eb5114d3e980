"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document loading and markdown parsing
- Structure-aware chunking and keyword categorization
- Embedding generation with retries
- Per-category FAISS collections
- Query routing, retrieval and answer composition
"""
