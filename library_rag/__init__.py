"""
Library RAG

Context preparation and retrieval over a user's private document library:
- Sentence-aware chunking with citation metadata
- LangChain embeddings with per-chunk caching
- Qdrant vector store with per-resource index markers
- Short-lived search result caching
- Gemini context caches with self-healing and fallback to retrieval
"""

__version__ = "1.0.0"
