"""
Core modules of the library RAG pipeline.

This package contains the fundamental components:
- Text chunking and citation metadata
- Embedding gateway and per-chunk caching
- Result cache backends
- Vector store operations
- The RAG service, its LangChain retriever and the context-cache manager
"""
