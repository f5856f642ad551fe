"""
PPMatch - Core Module
=====================

Configuration, logging, the technology taxonomy and term extraction.
"""

from .config import (
    ChunkingConfig,
    CompletionConfig,
    EmbeddingConfig,
    RankingConfig,
    ServiceConfig,
    TaxonomyConfig,
)
from .taxonomy import TechnologyTaxonomy, TransitionResult
from .tech_extractor import ExtractionReport, TechMatch, TechnologyExtractor
from .versioning import VersionRequirement, format_version, parse_version

__all__ = [
    'ChunkingConfig',
    'CompletionConfig',
    'EmbeddingConfig',
    'RankingConfig',
    'ServiceConfig',
    'TaxonomyConfig',
    'TechnologyTaxonomy',
    'TransitionResult',
    'ExtractionReport',
    'TechMatch',
    'TechnologyExtractor',
    'VersionRequirement',
    'format_version',
    'parse_version',
]
