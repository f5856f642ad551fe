"""
PPMatch - Past-Performance Recommendation Core

Recommends past-performance (PP) records for a government solicitation:
- Technology taxonomy with approval workflow and self-growing vocabulary
- Dual-granularity embeddings (project-level and capability-level chunks)
- Multi-factor ranking with deterministic explanations
- Cross-portfolio capability rollups and token-budget context selection
"""

__version__ = "1.0.0"
__author__ = "PPMatch Team"
