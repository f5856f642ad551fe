"""
PPMatch - Ranking Engine
========================

Rank(query, config) -> ordered SearchResults.

    score = w_tech   * techOverlapScore
          + w_domain * max(cos(query, project chunk), max_i cos(query, capability chunk_i))
          + w_size   * sizeProximity
          + w_type   * (1.0 if customer types match else 0.3)

A facet the query does not supply contributes 0; weights are never
renormalised. Scores are clamped to [0, 1]. Ties break by most recent
period_end, then higher resource_count, then record id.

Explanations are built from the concrete evidence behind every facet whose
contribution is at least 15% of the total, largest first, followed by a
period-of-performance line. No randomness: identical inputs give identical
text.

Ranking reads one index snapshot and the current store mappings and takes
no locks. Any unexpected failure raises RankingError; a partial ranking is
never returned.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ppmatch.core.config import RankingConfig
from ppmatch.core.taxonomy import TechnologyTaxonomy
from ppmatch.core.versioning import VersionRequirement
from ppmatch.database.store import RecordFilter, RecordStore
from ppmatch.retrieval.vector_index import VectorIndex
from ppmatch.shared.enums import ChunkType, CustomerType
from ppmatch.shared.exceptions import PPMatchException, RankingError
from ppmatch.shared.models import (
    PastPerformanceRecord,
    PPTechnologyAssociation,
    SearchConfiguration,
    SearchResult,
)

logger = logging.getLogger(__name__)

FACETS = ("technology", "domain", "contract_size", "customer_type")

# Yield to the event loop every N scored records so cancellation is prompt
_YIELD_EVERY = 64


# =============================================================================
# Query model
# =============================================================================

@dataclass(frozen=True)
class TechnologyRequirement:
    """One required technology, optionally with a version requirement."""
    technology_id: str
    name: str
    version: Optional[VersionRequirement] = None
    required: bool = False

    @property
    def label(self) -> str:
        return f"{self.name} {self.version.label()}" if self.version else self.name


@dataclass(frozen=True)
class ContractRange:
    """Requested contract value range; a point range has low == high."""
    low: float
    high: float

    @property
    def mid(self) -> float:
        return (self.low + self.high) / 2.0

    def label(self) -> str:
        if self.low == self.high:
            return f"~{format_money(self.low)}"
        return f"{format_money(self.low)} to {format_money(self.high)}"


@dataclass
class RankQuery:
    """Structured solicitation requirements, or a free-text query vector."""
    technologies: Tuple[TechnologyRequirement, ...] = ()
    vector: Optional[np.ndarray] = None
    contract_range: Optional[ContractRange] = None
    customer_type: Optional[CustomerType] = None
    record_filter: Optional[RecordFilter] = None
    text: str = ""


@dataclass
class RankedResults:
    """Primary window plus the related window after it."""
    primary: List[SearchResult] = field(default_factory=list)
    related: List[SearchResult] = field(default_factory=list)
    total_found: int = 0
    offset: int = 0

    @property
    def results(self) -> List[SearchResult]:
        return self.primary + self.related

    def to_dict(self) -> Dict:
        return {
            "primary": [r.to_dict() for r in self.primary],
            "related": [r.to_dict() for r in self.related],
            "total_found": self.total_found,
            "offset": self.offset,
        }


# =============================================================================
# Facet scores
# =============================================================================

def format_money(value: float) -> str:
    """2500000 -> "$2.5M"."""
    for threshold, suffix in ((1e9, "B"), (1e6, "M"), (1e3, "K")):
        if value >= threshold:
            number = f"{value / threshold:.1f}".rstrip("0").rstrip(".")
            return f"${number}{suffix}"
    return f"${value:,.0f}"


@dataclass(frozen=True)
class TechEvidence:
    """How one required technology was matched for one record."""
    requirement: TechnologyRequirement
    score: float
    record_version: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.score > 0

    @property
    def exact(self) -> bool:
        return self.score >= 1.0


def tech_overlap_score(
    requirements: Sequence[TechnologyRequirement],
    associations: Dict[str, PPTechnologyAssociation],
    version_mismatch_score: float = 0.5,
) -> Tuple[float, List[TechEvidence]]:
    """
    Version-aware share of required technologies the record evidences.

    A satisfied version (or no version requirement) scores 1.0; a
    same-family mismatch, including unversioned evidence, scores
    `version_mismatch_score`; an absent technology scores 0.
    """
    if not requirements:
        return 0.0, []
    evidence = []
    for requirement in requirements:
        association = associations.get(requirement.technology_id)
        if association is None:
            evidence.append(TechEvidence(requirement, 0.0))
        elif requirement.version is None:
            evidence.append(TechEvidence(requirement, 1.0, association.version))
        elif requirement.version.is_satisfied_by(association.version):
            evidence.append(TechEvidence(requirement, 1.0, association.version))
        else:
            evidence.append(TechEvidence(requirement, version_mismatch_score, association.version))
    return sum(e.score for e in evidence) / len(requirements), evidence


def size_proximity(contract_range: Optional[ContractRange], value: Optional[float]) -> float:
    """1 - min(1, |log(mid) - log(value)| / log(10)); 0 without evidence."""
    if contract_range is None or value is None:
        return 0.0
    mid = contract_range.mid
    if mid <= 0 or value <= 0:
        return 0.0
    return 1.0 - min(1.0, abs(math.log(mid) - math.log(value)) / math.log(10))


def customer_type_score(
    requested: Optional[CustomerType],
    actual: Optional[CustomerType],
    mismatch_score: float = 0.3,
) -> float:
    if requested is None:
        return 0.0
    return 1.0 if requested == actual else mismatch_score


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


# =============================================================================
# Engine
# =============================================================================

@dataclass
class _Scored:
    result: SearchResult
    sort_key: Tuple


class RankingEngine:
    """
    Combines vector similarity with structured facet scores.

    Usage:
        engine = RankingEngine(store, index, taxonomy)
        ranked = await engine.rank(query, configuration, offset=0)
    """

    def __init__(
        self,
        store: RecordStore,
        index: VectorIndex,
        taxonomy: TechnologyTaxonomy,
        config: Optional[RankingConfig] = None,
    ):
        self.store = store
        self.index = index
        self.taxonomy = taxonomy
        self.config = config or RankingConfig()

    def default_configuration(self) -> SearchConfiguration:
        return SearchConfiguration(
            name="default",
            technology=self.config.technology_weight,
            domain=self.config.domain_weight,
            contract_size=self.config.contract_size_weight,
            customer_type=self.config.customer_type_weight,
            is_default=True,
        ).validate()

    async def rank(
        self,
        query: RankQuery,
        configuration: Optional[SearchConfiguration] = None,
        offset: int = 0,
    ) -> RankedResults:
        """
        Rank(query, config) -> primary and related windows starting at `offset`.

        Raises:
            InvalidWeightsError: configuration weights do not sum to 1
            RankingError: any other failure
        """
        configuration = (configuration or self.default_configuration()).validate()
        try:
            scored = await self.score_all(query, configuration)
        except PPMatchException:
            raise
        except Exception as e:
            logger.error(f"Ranking failed: {e}")
            raise RankingError(f"Ranking failed: {e}") from e

        offset = max(0, offset)
        primary_end = offset + self.config.primary_window
        related_end = primary_end + self.config.related_window
        return RankedResults(
            primary=scored[offset:primary_end],
            related=scored[primary_end:related_end],
            total_found=len(scored),
            offset=offset,
        )

    async def score_all(
        self,
        query: RankQuery,
        configuration: SearchConfiguration,
    ) -> List[SearchResult]:
        """Every record with a non-zero score, in final order."""
        snapshot = self.index.snapshot()
        associations = self.store.associations_snapshot()
        records = self.store.records(query.record_filter or RecordFilter())

        project_sims: Dict[str, float] = {}
        capability_sims: Dict[str, float] = {}
        if query.vector is not None:
            project_sims, capability_sims = await asyncio.gather(
                asyncio.to_thread(
                    self.index.max_similarity_by_record,
                    query.vector, (ChunkType.PROJECT_LEVEL,), snapshot,
                ),
                asyncio.to_thread(
                    self.index.max_similarity_by_record,
                    query.vector, (ChunkType.CAPABILITY_LEVEL,), snapshot,
                ),
            )

        scored: List[_Scored] = []
        for i, record in enumerate(records):
            if i % _YIELD_EVERY == 0:
                await asyncio.sleep(0)
            item = self._score_record(
                record,
                query,
                configuration,
                {a.technology_id: a for a in associations.get(record.record_id, ())},
                project_sims.get(record.record_id),
                capability_sims.get(record.record_id),
            )
            if item.result.relevance_score > 0:
                scored.append(item)

        scored.sort(key=lambda s: s.sort_key)
        return [s.result for s in scored]

    def _score_record(
        self,
        record: PastPerformanceRecord,
        query: RankQuery,
        configuration: SearchConfiguration,
        associations: Dict[str, PPTechnologyAssociation],
        project_sim: Optional[float],
        capability_sim: Optional[float],
    ) -> _Scored:
        tech_score, evidence = tech_overlap_score(
            query.technologies, associations, self.config.version_mismatch_score
        )
        sims = [s for s in (project_sim, capability_sim) if s is not None]
        domain_score = _clamp(max(sims)) if sims else 0.0
        size_score = size_proximity(query.contract_range, record.contract_value)
        type_score = customer_type_score(
            query.customer_type, record.customer_type, self.config.customer_mismatch_score
        )

        components = {
            "technology": configuration.technology * tech_score,
            "domain": configuration.domain * domain_score,
            "contract_size": configuration.contract_size * size_score,
            "customer_type": configuration.customer_type * type_score,
        }
        score = _clamp(sum(components.values()))

        explanation = self._explain(
            record, query, components, evidence,
            domain_score, size_score,
            capability_sim is not None and (project_sim is None or capability_sim > project_sim),
        )
        profile = self.store.get_profile(record.record_id)
        result = SearchResult(
            record_id=record.record_id,
            name=record.name,
            relevance_score=score,
            explanation=explanation,
            key_capabilities=self.key_capabilities(associations),
            summary=profile.summary if profile else "",
            components=components,
            period_end=record.period_end,
            resource_count=record.resource_count,
        )
        period = record.period_end.toordinal() if record.period_end else 0
        return _Scored(
            result=result,
            sort_key=(-score, -period, -record.resource_count, record.record_id),
        )

    # -------------------------------------------------------------------------
    # Presentation
    # -------------------------------------------------------------------------

    def key_capabilities(self, associations: Dict[str, PPTechnologyAssociation]) -> List[str]:
        """Approved technologies by confidence; pending ones stay internal."""
        labels = []
        for association in sorted(
            associations.values(), key=lambda a: (-a.confidence, a.technology_id)
        ):
            tech = self.taxonomy.get(association.technology_id)
            if tech is None or not tech.is_approved:
                continue
            labels.append(f"{tech.name} {association.version}" if association.version else tech.name)
            if len(labels) >= self.config.key_capability_limit:
                break
        return labels

    def _explain(
        self,
        record: PastPerformanceRecord,
        query: RankQuery,
        components: Dict[str, float],
        evidence: List[TechEvidence],
        domain_score: float,
        size_score: float,
        capability_best: bool,
    ) -> List[str]:
        total = sum(components.values())
        bullets = []
        if total > 0:
            threshold = self.config.explanation_share * total
            contributing = sorted(
                (f for f in FACETS if components[f] > 0 and components[f] >= threshold),
                key=lambda f: (-components[f], FACETS.index(f)),
            )
            for facet in contributing:
                if facet == "technology":
                    bullets.append(self._technology_bullet(evidence))
                elif facet == "domain":
                    where = "capability section" if capability_best else "project overview"
                    bullets.append(
                        f"Domain alignment: {round(domain_score * 100)}% semantic similarity ({where})"
                    )
                elif facet == "contract_size":
                    bullets.append(
                        f"Contract size: {format_money(record.contract_value)} vs requested "
                        f"{query.contract_range.label()} ({round(size_score * 100)}% proximity)"
                    )
                elif facet == "customer_type":
                    bullets.append(self._customer_bullet(record, query))

        if record.period_end:
            role = record.role.value
            bullets.append(
                f"Recent performance: period ended {record.period_end.isoformat()} ({role} contractor)"
            )
        return bullets

    @staticmethod
    def _technology_bullet(evidence: List[TechEvidence]) -> str:
        matched = [e for e in evidence if e.matched]
        parts = []
        for e in matched:
            requirement = e.requirement
            if e.exact:
                parts.append(f"{requirement.name} {e.record_version}" if e.record_version else requirement.name)
            elif e.record_version:
                parts.append(
                    f"{requirement.name} {e.record_version} "
                    f"(version gap: {requirement.version.label()} required)"
                )
            else:
                parts.append(
                    f"{requirement.name} (version gap: version not stated, "
                    f"{requirement.version.label()} required)"
                )
        text = f"Technology match ({len(matched)}/{len(evidence)}): " + ", ".join(parts)
        missing = [e.requirement.label for e in evidence if not e.matched]
        if missing:
            text += f"; missing {', '.join(missing)}"
        return text

    @staticmethod
    def _customer_bullet(record: PastPerformanceRecord, query: RankQuery) -> str:
        requested = query.customer_type.value.title()
        if record.customer_type == query.customer_type:
            customer = f" ({record.customer})" if record.customer else ""
            return f"Customer type match: {requested}{customer}"
        actual = record.customer_type.value.title() if record.customer_type else "Unknown"
        return f"Customer type: {actual} (requested {requested})"

