"""
PPMatch - Retrieval Layer
=========================

Components:
- vector_index.py: partitioned in-memory index with atomic snapshots
- ranking.py: multi-factor ranking and explanations
- requirements.py: solicitation text -> structured requirements
- project_context.py: project solicitation documents
- search_service.py: search entry points and named configurations

Architecture:
    Query -> Embed (cached) -> Rank (facets x weights) -> Primary / Related
"""

from .cache import LRUCache, QueryEmbeddingCache
from .vector_index import ChunkHit, IndexSnapshot, VectorIndex

__all__ = [
    'LRUCache',
    'QueryEmbeddingCache',
    'ChunkHit',
    'IndexSnapshot',
    'VectorIndex',
]
