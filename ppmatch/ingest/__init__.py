"""
PPMatch - Ingestion Layer
=========================

Components:
- unifier.py: document ordering, unified text and extractive summary
- chunker.py: project-level and capability-level chunks
- embeddings.py: embedding providers and the bounded embedding pool
- pipeline.py: per-record single-writer ingestion

Quick Start:
    from ppmatch.ingest.pipeline import IngestionPipeline

    ack = await pipeline.ingest("pp-1", unified_text, documents)
    print(ack.status, ack.chunk_count)
"""

from .chunker import Chunker
from .embeddings import EmbeddingPool, TextEmbedder, create_text_embedder
from .unifier import ContentUnifier

__all__ = [
    'Chunker',
    'EmbeddingPool',
    'TextEmbedder',
    'create_text_embedder',
    'ContentUnifier',
]
