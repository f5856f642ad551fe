"""
PPMatch - Ingestion Pipeline
============================

Ingest(recordID, unifiedText, documents[]) -> ack

The sole write entry point into unification, extraction, chunking and
embedding for a PP record.

Pipeline stages:
1. Issue a generation ticket (under the record lock)
2. Build the UnifiedContentProfile
3. Extract technologies (unknown terms proposed as pending)
4. Rechunk under the new generation
5. Embed chunks through the bounded pool (no lock held)
6. Commit: index generation swap, profile + associations, usage counts
   (under the record lock; a newer ticket supersedes this one)
7. Recompute affected capability rollups

Each ingestion runs as its own task behind asyncio.shield: cancelling the
caller never interrupts a commit in progress. A DataError for one record
is logged and reported as SKIPPED; other records are unaffected.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from ppmatch.capabilities.aggregator import CapabilityAggregator
from ppmatch.core.logging_config import bind_record
from ppmatch.core.taxonomy import TechnologyTaxonomy
from ppmatch.core.tech_extractor import TechnologyExtractor
from ppmatch.database.store import RecordStore
from ppmatch.ingest.chunker import Chunker
from ppmatch.ingest.embeddings import EmbeddingPool
from ppmatch.ingest.unifier import ContentUnifier
from ppmatch.retrieval.vector_index import VectorIndex
from ppmatch.shared.enums import IngestStatus, RecordStatus
from ppmatch.shared.exceptions import DataError, EmbeddingError, StaleGenerationError
from ppmatch.shared.models import PastPerformanceRecord, PPDocument, normalize_term

logger = logging.getLogger(__name__)


@dataclass
class IngestAck:
    """Result of one Ingest call."""
    record_id: str
    status: IngestStatus
    generation: Optional[int] = None
    chunk_count: int = 0
    pending_chunks: int = 0
    technologies: List[str] = field(default_factory=list)
    new_technologies: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "status": self.status.value,
            "generation": self.generation,
            "chunk_count": self.chunk_count,
            "pending_chunks": self.pending_chunks,
            "technologies": list(self.technologies),
            "new_technologies": list(self.new_technologies),
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
        }


@dataclass
class RetryReport:
    """Outcome of a pending re-embed pass."""
    attempted: int = 0
    embedded: int = 0
    still_pending: int = 0
    stale: int = 0
    narratives_regenerated: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class IngestionPipeline:
    """
    Per-record single-writer ingestion.

    Usage:
        pipeline = IngestionPipeline(store, taxonomy, extractor, chunker, pool, index, aggregator)
        ack = await pipeline.ingest("pp-1", unified_text, documents)
    """

    def __init__(
        self,
        store: RecordStore,
        taxonomy: TechnologyTaxonomy,
        extractor: TechnologyExtractor,
        chunker: Chunker,
        pool: EmbeddingPool,
        index: VectorIndex,
        aggregator: CapabilityAggregator,
        unifier: Optional[ContentUnifier] = None,
    ):
        self.store = store
        self.taxonomy = taxonomy
        self.extractor = extractor
        self.chunker = chunker
        self.pool = pool
        self.index = index
        self.aggregator = aggregator
        self.unifier = unifier or ContentUnifier()

        self._record_locks: Dict[str, asyncio.Lock] = {}
        self._latest_ticket: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _lock(self, record_id: str) -> asyncio.Lock:
        return self._record_locks.setdefault(record_id, asyncio.Lock())

    def _issue_ticket(self, record_id: str) -> int:
        """Next generation for a record. Caller holds the record lock."""
        current = max(
            self._latest_ticket.get(record_id, 0),
            self.index.generation(record_id) or 0,
        )
        ticket = current + 1
        self._latest_ticket[record_id] = ticket
        return ticket

    async def _run_shielded(self, coro):
        """Run to completion even if the awaiting caller is cancelled."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return await asyncio.shield(task)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait for every running ingestion task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Records
    # =========================================================================

    async def register_record(self, record: PastPerformanceRecord) -> PastPerformanceRecord:
        """Insert or update record metadata and refresh derived state."""
        return await self._run_shielded(self._register(record))

    async def _register(self, record: PastPerformanceRecord) -> PastPerformanceRecord:
        async with self._lock(record.record_id):
            self.store.upsert_record(record)
            self.index.set_period_end(record.record_id, record.period_end)
        if self.store.get_associations(record.record_id):
            await self.aggregator.on_record_changed(record.record_id)
        return record

    async def archive(self, record_id: str) -> PastPerformanceRecord:
        """
        Archive a record: never hard-deleted, but gone from search and rollups.

        Raises:
            RecordNotFoundError: unknown record id
        """
        return await self._run_shielded(self._archive(record_id))

    async def _archive(self, record_id: str) -> PastPerformanceRecord:
        bind_record(record_id)
        async with self._lock(record_id):
            record = self.store.set_status(record_id, RecordStatus.ARCHIVED)
            # Supersede any ingestion still embedding for this record
            self._issue_ticket(record_id)
            removed = self.index.delete_by_record(record_id)
        await self.aggregator.on_record_changed(record_id)
        logger.info(f"Record {record_id} archived ({removed} chunks removed from index)")
        return record

    # =========================================================================
    # Ingest
    # =========================================================================

    async def ingest(
        self,
        record_id: str,
        unified_text: Optional[str],
        documents: Sequence[PPDocument] = (),
        record: Optional[PastPerformanceRecord] = None,
    ) -> IngestAck:
        """
        Ingest(recordID, unifiedText, documents[]) -> ack.

        `record` updates the record metadata in the same call. An archived
        record is acknowledged as SKIPPED and left untouched.

        Raises:
            RecordNotFoundError: record unknown and no metadata supplied
        """
        return await self._run_shielded(
            self._ingest(record_id, unified_text, list(documents), record)
        )

    async def _ingest(
        self,
        record_id: str,
        unified_text: Optional[str],
        documents: List[PPDocument],
        record: Optional[PastPerformanceRecord],
    ) -> IngestAck:
        start_time = time.time()
        bind_record(record_id)

        async with self._lock(record_id):
            current = self.store.get_record(record_id)
            # Archived records stay archived; metadata in the same call is ignored
            if record is not None and (current is None or current.is_active):
                self.store.upsert_record(record)
            stored = self.store.require_record(record_id)
            if not stored.is_active:
                logger.warning(f"Skipping record {record_id}: archived")
                return IngestAck(
                    record_id=record_id,
                    status=IngestStatus.SKIPPED,
                    duration_seconds=time.time() - start_time,
                    error=f"Record {record_id} is archived",
                )
            generation = self._issue_ticket(record_id)

        try:
            profile = self.unifier.unify(record_id, unified_text, documents, version=generation)
            report = self.extractor.extract_with_report(profile.unified_text)
        except DataError as e:
            logger.warning(f"Skipping record {record_id}: {e}")
            return IngestAck(
                record_id=record_id,
                status=IngestStatus.SKIPPED,
                generation=generation,
                duration_seconds=time.time() - start_time,
                error=str(e),
            )

        associations = [m.to_association(record_id) for m in report.matches]
        term_keys = {
            normalize_term(term)
            for m in report.matches
            if (tech := self.taxonomy.get(m.technology_id)) is not None
            for term in tech.terms
        }
        chunks = self.chunker.rechunk(
            profile, term_keys, generation, keywords=self.taxonomy.keyword_processor()
        )

        # Slow external calls happen with no record lock held
        chunks = await self.pool.embed_chunks(chunks)
        pending = sum(1 for c in chunks if c.embedding_pending)

        async with self._lock(record_id):
            if self._latest_ticket.get(record_id) != generation:
                logger.info(
                    f"Ingestion of {record_id} generation {generation} superseded "
                    f"by generation {self._latest_ticket.get(record_id)}; discarded"
                )
                return IngestAck(
                    record_id=record_id,
                    status=IngestStatus.SUPERSEDED,
                    generation=generation,
                    duration_seconds=time.time() - start_time,
                )
            current = self.store.require_record(record_id)
            self.index.replace_record(record_id, chunks, generation, current.period_end)
            deltas = self.store.commit_profile(profile, associations)
            self.taxonomy.adjust_usage(deltas)

        await self.aggregator.on_record_changed(record_id)

        ack = IngestAck(
            record_id=record_id,
            status=IngestStatus.COMMITTED,
            generation=generation,
            chunk_count=len(chunks),
            pending_chunks=pending,
            technologies=[a.technology_id for a in associations],
            new_technologies=[t.technology_id for t in report.new_technologies],
            duration_seconds=time.time() - start_time,
        )
        logger.info(
            f"Ingested {record_id} generation {generation}: {ack.chunk_count} chunks "
            f"({pending} pending), {len(ack.technologies)} technologies"
        )
        return ack

    # =========================================================================
    # Pending re-embed
    # =========================================================================

    async def retry_pending(self) -> RetryReport:
        """Re-embed embedding_pending chunks of current generations."""
        return await self._run_shielded(self._retry_pending())

    async def _retry_pending(self) -> RetryReport:
        report = RetryReport()
        pending = self.index.pending_chunks()
        report.attempted = len(pending)

        for chunk in pending:
            try:
                vector = await self.pool.embed_text(chunk.text)
            except EmbeddingError as e:
                report.still_pending += 1
                logger.warning(f"Chunk {chunk.chunk_id} still embedding_pending: {e}")
                continue
            # Record re-ingested or archived meanwhile
            if self.index.generation(chunk.record_id) != chunk.generation:
                report.stale += 1
                continue
            try:
                self.index.upsert(chunk.with_vector(vector))
            except StaleGenerationError:
                report.stale += 1
                continue
            report.embedded += 1

        report.narratives_regenerated = await self.aggregator.refresh_narratives()
        logger.info(
            f"Pending re-embed: {report.embedded}/{report.attempted} embedded, "
            f"{report.still_pending} still pending, {report.stale} stale"
        )
        return report
