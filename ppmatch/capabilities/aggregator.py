"""
PPMatch - Unified Capability Aggregator
=======================================

Per-technology rollups across the PP portfolio: project count, total
experience years, most recent usage and a generated narrative.

A record change updates that record's contributions and then rebuilds,
from scratch, the rollup of every technology it touches. The new rollup
is swapped into a fresh mapping; readers never see a half-updated value.

The narrative is regenerated through complete(prompt) only when the
rollup's facts hash differs from the hash the current narrative was
written for. Only approved technologies get narratives. When generation
fails a template narrative is used and generation is retried on the next
recompute or refresh.

Usage:
    aggregator = CapabilityAggregator(store, taxonomy, completer)
    await aggregator.on_record_changed("pp-1")
    rollups = aggregator.unified_capabilities()
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Set

from ppmatch.core.taxonomy import TechnologyTaxonomy
from ppmatch.database.store import RecordStore
from ppmatch.rag.completion import TextCompleter
from ppmatch.shared.exceptions import TransientError
from ppmatch.shared.models import Technology, UnifiedCapability

logger = logging.getLogger(__name__)

NARRATIVE_PROMPT = """Write a capability statement for the technology below, based only on these facts.

Technology: {name} ({category})
Past performance projects: {project_count}
Total experience: {years:.1f} years
Most recent use: {recent}
Projects:
{projects}
"""


@dataclass(frozen=True)
class Contribution:
    """What one active record contributes to one technology."""
    record_id: str
    years: float
    period_end: Optional[date]


def facts_hash(
    name: str,
    project_count: int,
    total_years: float,
    most_recent: Optional[date],
    record_ids: Iterable[str],
) -> str:
    payload = "|".join([
        name,
        str(project_count),
        f"{total_years:.2f}",
        most_recent.isoformat() if most_recent else "",
        ",".join(sorted(record_ids)),
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def template_narrative(rollup: UnifiedCapability) -> str:
    recent = (
        f", most recently through {rollup.most_recent_usage_date.isoformat()}"
        if rollup.most_recent_usage_date else ""
    )
    plural = "project" if rollup.project_count == 1 else "projects"
    return (
        f"{rollup.name}: applied on {rollup.project_count} past performance {plural} "
        f"totaling {rollup.total_experience_years:.1f} years of experience{recent}."
    )


class CapabilityAggregator:
    """Incrementally maintained technology rollups."""

    def __init__(
        self,
        store: RecordStore,
        taxonomy: TechnologyTaxonomy,
        completer: Optional[TextCompleter] = None,
    ):
        self.store = store
        self.taxonomy = taxonomy
        self.completer = completer

        # technology_id -> record_id -> contribution; replaced, never mutated
        self._contributions: Dict[str, Dict[str, Contribution]] = {}
        self._rollups: Dict[str, UnifiedCapability] = {}
        self._tech_locks: Dict[str, asyncio.Lock] = {}
        self._narrative_calls = 0

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, technology_id: str) -> Optional[UnifiedCapability]:
        return self._rollups.get(technology_id)

    def snapshot(self) -> Dict[str, UnifiedCapability]:
        """Every rollup, including those of pending technologies."""
        return self._rollups

    def unified_capabilities(self) -> Dict[str, UnifiedCapability]:
        """Approved technologies only."""
        rollups = self._rollups
        return {
            tid: rollup for tid, rollup in sorted(rollups.items())
            if (tech := self.taxonomy.get(tid)) is not None and tech.is_approved
        }

    @property
    def narrative_calls(self) -> int:
        return self._narrative_calls

    # =========================================================================
    # Updates
    # =========================================================================

    async def on_record_changed(self, record_id: str) -> List[str]:
        """
        Refresh a record's contributions and recompute affected rollups.

        Returns:
            technology ids that were recomputed
        """
        affected = self._update_contributions(record_id)
        for technology_id in sorted(affected):
            await self.recompute(technology_id)
        return sorted(affected)

    async def on_technology_approved(self, technology_ids: Iterable[str]) -> None:
        for technology_id in technology_ids:
            await self.recompute(technology_id)

    async def rebuild(self) -> None:
        """Recompute every rollup from the store."""
        affected: Set[str] = set()
        for record in self.store.records():
            affected |= self._update_contributions(record.record_id)
        for technology_id in sorted(affected):
            await self.recompute(technology_id)

    async def refresh_narratives(self) -> int:
        """Retry narratives that are missing or stale. Returns the number regenerated."""
        regenerated = 0
        for technology_id, rollup in sorted(self.unified_capabilities().items()):
            if not rollup.narrative_current:
                updated = await self.recompute(technology_id)
                if updated is not None and updated.narrative_current:
                    regenerated += 1
        return regenerated

    def _update_contributions(self, record_id: str) -> Set[str]:
        """Swap in the record's current contributions; return touched technology ids."""
        record = self.store.get_record(record_id)
        new_ids: Set[str] = set()
        contribution = None
        if record is not None and record.is_active:
            new_ids = {a.technology_id for a in self.store.get_associations(record_id)}
            contribution = Contribution(
                record_id=record_id,
                years=record.period_years,
                period_end=record.period_end,
            )

        old_ids = {tid for tid, by_record in self._contributions.items() if record_id in by_record}
        contributions = dict(self._contributions)
        for technology_id in old_ids | new_ids:
            by_record = dict(contributions.get(technology_id, {}))
            by_record.pop(record_id, None)
            if technology_id in new_ids:
                by_record[record_id] = contribution
            if by_record:
                contributions[technology_id] = by_record
            else:
                contributions.pop(technology_id, None)
        self._contributions = contributions
        return old_ids | new_ids

    async def recompute(self, technology_id: str) -> Optional[UnifiedCapability]:
        """Build one technology's rollup from scratch and swap it in."""
        lock = self._tech_locks.setdefault(technology_id, asyncio.Lock())
        async with lock:
            tech = self.taxonomy.get(technology_id)
            by_record = self._contributions.get(technology_id, {})
            previous = self._rollups.get(technology_id)

            if tech is None or not by_record:
                if previous is not None:
                    self._publish(technology_id, None)
                return None

            rollup = self._build(tech, by_record, previous)
            if tech.is_approved:
                rollup = await self._with_narrative(tech, rollup, previous)
            self._publish(technology_id, rollup)
            return rollup

    def _build(
        self,
        tech: Technology,
        by_record: Dict[str, Contribution],
        previous: Optional[UnifiedCapability],
    ) -> UnifiedCapability:
        record_ids = tuple(sorted(by_record))
        # One period per record: several mentions in a record never add up
        total_years = sum(c.years for c in by_record.values())
        dates = [c.period_end for c in by_record.values() if c.period_end]
        most_recent = max(dates) if dates else None
        return UnifiedCapability(
            technology_id=tech.technology_id,
            name=tech.name,
            category=tech.category,
            project_count=len(record_ids),
            total_experience_years=total_years,
            most_recent_usage_date=most_recent,
            record_ids=record_ids,
            narrative=previous.narrative if previous else "",
            version=(previous.version + 1) if previous else 1,
            facts_hash=facts_hash(tech.name, len(record_ids), total_years, most_recent, record_ids),
            narrative_hash=previous.narrative_hash if previous else "",
        )

    async def _with_narrative(
        self,
        tech: Technology,
        rollup: UnifiedCapability,
        previous: Optional[UnifiedCapability],
    ) -> UnifiedCapability:
        if rollup.narrative_current:
            logger.debug(f"Narrative for {tech.technology_id} unchanged; facts hash matches")
            return rollup

        if self.completer is None:
            return _replace_narrative(rollup, template_narrative(rollup), rollup.facts_hash)

        self._narrative_calls += 1
        try:
            text = await self.completer.complete(self._prompt(tech, rollup))
        except TransientError as e:
            logger.warning(f"Narrative generation failed for {tech.technology_id}: {e}")
            return _replace_narrative(rollup, template_narrative(rollup), "")
        if not text or not text.strip():
            return _replace_narrative(rollup, template_narrative(rollup), "")
        return _replace_narrative(rollup, text.strip(), rollup.facts_hash)

    def _prompt(self, tech: Technology, rollup: UnifiedCapability) -> str:
        lines = []
        for record_id in rollup.record_ids:
            record = self.store.get_record(record_id)
            if record is None:
                continue
            customer = f" for {record.customer}" if record.customer else ""
            lines.append(f"- {record.name}{customer} ({record.period_years:.1f} years)")
        return NARRATIVE_PROMPT.format(
            name=tech.name,
            category=tech.category.value,
            project_count=rollup.project_count,
            years=rollup.total_experience_years,
            recent=rollup.most_recent_usage_date.isoformat() if rollup.most_recent_usage_date else "unknown",
            projects="\n".join(lines),
        )

    def _publish(self, technology_id: str, rollup: Optional[UnifiedCapability]) -> None:
        rollups = dict(self._rollups)
        if rollup is None:
            rollups.pop(technology_id, None)
        else:
            rollups[technology_id] = rollup
        self._rollups = rollups


def _replace_narrative(rollup: UnifiedCapability, narrative: str, narrative_hash: str) -> UnifiedCapability:
    return replace(rollup, narrative=narrative, narrative_hash=narrative_hash)
