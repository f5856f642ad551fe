"""
PPMatch - Vector Index
======================

Exact cosine search over chunk embeddings, one partition per chunk type.

Each record owns a chunk set tagged with a generation id. All state lives
in an immutable `IndexSnapshot`; writers build a new snapshot and swap the
single `_snapshot` attribute, so a query resolves against one snapshot for
its whole duration and never sees old and new chunks of a record together.

Usage:
    index = VectorIndex(dimension=1536)
    index.replace_record("pp-1", chunks, generation=2, period_end=date(2023, 9, 30))
    hits = index.query(query_vector, ChunkType.PROJECT_LEVEL, k=10)
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from ppmatch.shared.enums import ChunkType
from ppmatch.shared.exceptions import StaleGenerationError
from ppmatch.shared.models import EmbeddingChunk
from ppmatch.shared.similarity import normalize, normalize_rows

logger = logging.getLogger(__name__)

# Records without a period end sort after every dated record on ties
_NO_PERIOD_END = 0


@dataclass(frozen=True)
class ChunkHit:
    """One query hit."""
    chunk_id: str
    record_id: str
    chunk_type: ChunkType
    similarity: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "chunk_id": self.chunk_id,
            "record_id": self.record_id,
            "chunk_type": self.chunk_type.value,
            "similarity": round(self.similarity, 6),
        }


@dataclass(frozen=True)
class _Partition:
    """Embedded chunks of one type, rows sorted by chunk id."""
    matrix: np.ndarray
    chunk_ids: Tuple[str, ...] = ()
    record_ids: Tuple[str, ...] = ()

    @property
    def size(self) -> int:
        return len(self.chunk_ids)


@dataclass(frozen=True)
class IndexSnapshot:
    """Everything a reader needs, published as one value."""
    partitions: Dict[ChunkType, _Partition]
    chunks: Dict[str, EmbeddingChunk] = field(default_factory=dict)
    record_chunks: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    generations: Dict[str, int] = field(default_factory=dict)
    period_ends: Dict[str, int] = field(default_factory=dict)
    version: int = 0

    def chunks_for(self, record_id: str) -> List[EmbeddingChunk]:
        return [self.chunks[cid] for cid in self.record_chunks.get(record_id, ())]


def _empty_partition(dimension: int) -> _Partition:
    return _Partition(matrix=np.zeros((0, dimension), dtype=np.float32))


class VectorIndex:
    """
    Partitioned cosine index with per-record generations.

    Writes are serialized by a lock; reads take no lock.
    """

    def __init__(self, dimension: int):
        self.dimension = dimension
        self._write_lock = threading.Lock()
        self._snapshot = IndexSnapshot(
            partitions={ct: _empty_partition(dimension) for ct in ChunkType},
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def snapshot(self) -> IndexSnapshot:
        """The last committed state."""
        return self._snapshot

    def generation(self, record_id: str) -> Optional[int]:
        return self._snapshot.generations.get(record_id)

    def get_record_chunks(self, record_id: str) -> List[EmbeddingChunk]:
        return self._snapshot.chunks_for(record_id)

    def pending_chunks(self) -> List[EmbeddingChunk]:
        """Chunks of current generations still waiting for a vector."""
        snap = self._snapshot
        return sorted(
            (c for c in snap.chunks.values() if c.embedding_pending),
            key=lambda c: c.chunk_id,
        )

    def query(
        self,
        vector: np.ndarray,
        chunk_type: ChunkType,
        k: int = 10,
        record_ids: Optional[Set[str]] = None,
        snapshot: Optional[IndexSnapshot] = None,
    ) -> List[ChunkHit]:
        """
        Query(vector, chunkType, k) -> hits by descending cosine similarity.

        Ties break by most recent record period_end, then chunk id.
        Pending chunks are never returned.
        """
        if k <= 0:
            return []
        snap = snapshot or self._snapshot
        partition = snap.partitions[chunk_type]
        if partition.size == 0:
            return []

        sims = self._similarities(partition, vector)
        period = np.array(
            [snap.period_ends.get(rid, _NO_PERIOD_END) for rid in partition.record_ids],
            dtype=np.int64,
        )
        if record_ids is not None:
            allowed = np.array([rid in record_ids for rid in partition.record_ids], dtype=bool)
            sims = np.where(allowed, sims, -np.inf)

        order = np.lexsort((np.arange(partition.size), -period, -sims))
        hits = []
        for row in order:
            if not np.isfinite(sims[row]):
                break
            hits.append(ChunkHit(
                chunk_id=partition.chunk_ids[row],
                record_id=partition.record_ids[row],
                chunk_type=chunk_type,
                similarity=float(sims[row]),
            ))
            if len(hits) >= k:
                break
        return hits

    def max_similarity_by_record(
        self,
        vector: np.ndarray,
        chunk_types: Sequence[ChunkType] = (ChunkType.PROJECT_LEVEL, ChunkType.CAPABILITY_LEVEL),
        snapshot: Optional[IndexSnapshot] = None,
    ) -> Dict[str, float]:
        """Best cosine similarity per record across the given partitions."""
        snap = snapshot or self._snapshot
        best: Dict[str, float] = {}
        for chunk_type in chunk_types:
            partition = snap.partitions[chunk_type]
            if partition.size == 0:
                continue
            sims = self._similarities(partition, vector)
            for rid, sim in zip(partition.record_ids, sims.tolist()):
                if sim > best.get(rid, -np.inf):
                    best[rid] = sim
        return best

    def _similarities(self, partition: _Partition, vector: np.ndarray) -> np.ndarray:
        query = normalize(np.asarray(vector, dtype=np.float32).reshape(-1))
        if query.shape[0] != self.dimension:
            raise ValueError(
                f"Query vector has {query.shape[0]} dimensions, index expects {self.dimension}"
            )
        return partition.matrix @ query

    def stats(self) -> Dict[str, object]:
        snap = self._snapshot
        return {
            "dimension": self.dimension,
            "records": len(snap.record_chunks),
            "partitions": {ct.value: snap.partitions[ct].size for ct in ChunkType},
            "pending": sum(1 for c in snap.chunks.values() if c.embedding_pending),
            "version": snap.version,
        }

    # =========================================================================
    # Writes
    # =========================================================================

    def replace_record(
        self,
        record_id: str,
        chunks: Sequence[EmbeddingChunk],
        generation: int,
        period_end: Optional[date] = None,
    ) -> IndexSnapshot:
        """
        Swap a record's whole chunk set for a new generation.

        Raises:
            StaleGenerationError: `generation` is not newer than the current one
        """
        for chunk in chunks:
            if chunk.record_id != record_id or chunk.generation != generation:
                raise ValueError(
                    f"Chunk {chunk.chunk_id} does not belong to {record_id} generation {generation}"
                )
        with self._write_lock:
            snap = self._snapshot
            current = snap.generations.get(record_id)
            if current is not None and generation <= current:
                raise StaleGenerationError(
                    f"Record {record_id}: generation {generation} is not newer than {current}"
                )
            self._publish(
                snap,
                remove={record_id},
                add=list(chunks),
                generations={record_id: generation},
                period_ends={record_id: period_end},
            )
        logger.debug(f"Record {record_id}: generation {generation} live ({len(chunks)} chunks)")
        return self._snapshot

    def upsert(self, chunk: EmbeddingChunk) -> None:
        """
        Upsert(chunk): add or replace one chunk in its record's current generation.

        A record without chunks adopts the chunk's generation.

        Raises:
            StaleGenerationError: chunk belongs to another generation
        """
        with self._write_lock:
            snap = self._snapshot
            current = snap.generations.get(chunk.record_id)
            if current is not None and chunk.generation != current:
                raise StaleGenerationError(
                    f"Chunk {chunk.chunk_id} is generation {chunk.generation}, "
                    f"record {chunk.record_id} is at {current}"
                )
            kept = [
                c for c in snap.chunks_for(chunk.record_id)
                if c.chunk_id != chunk.chunk_id
            ]
            self._publish(
                snap,
                remove={chunk.record_id},
                add=kept + [chunk],
                generations={chunk.record_id: chunk.generation},
            )

    def delete_by_record(self, record_id: str) -> int:
        """DeleteByRecord(recordID). Returns the number of chunks removed."""
        with self._write_lock:
            snap = self._snapshot
            removed = len(snap.record_chunks.get(record_id, ()))
            if record_id not in snap.generations:
                return 0
            self._publish(snap, remove={record_id}, add=[], drop_generations={record_id})
        logger.debug(f"Record {record_id}: {removed} chunks removed from index")
        return removed

    def set_period_end(self, record_id: str, period_end: Optional[date]) -> None:
        """Update the tie-break date for a record already in the index."""
        with self._write_lock:
            snap = self._snapshot
            if record_id not in snap.generations:
                return
            self._publish(snap, remove=set(), add=[], period_ends={record_id: period_end})

    def _publish(
        self,
        snap: IndexSnapshot,
        remove: Set[str],
        add: Iterable[EmbeddingChunk],
        generations: Optional[Dict[str, int]] = None,
        period_ends: Optional[Dict[str, Optional[date]]] = None,
        drop_generations: Iterable[str] = (),
    ) -> None:
        """Build the next snapshot and swap it in. Caller holds the write lock."""
        chunks = {cid: c for cid, c in snap.chunks.items() if c.record_id not in remove}
        record_chunks = {rid: ids for rid, ids in snap.record_chunks.items() if rid not in remove}
        new_ids: Dict[str, List[str]] = {}
        for chunk in add:
            if chunk.vector is not None and chunk.vector.shape[-1] != self.dimension:
                raise ValueError(
                    f"Chunk {chunk.chunk_id} has {chunk.vector.shape[-1]} dimensions, "
                    f"index expects {self.dimension}"
                )
            chunks[chunk.chunk_id] = chunk
            new_ids.setdefault(chunk.record_id, []).append(chunk.chunk_id)
        for rid, ids in new_ids.items():
            record_chunks[rid] = tuple(sorted(ids))

        all_generations = dict(snap.generations)
        all_generations.update(generations or {})
        all_period_ends = dict(snap.period_ends)
        for rid, value in (period_ends or {}).items():
            all_period_ends[rid] = value.toordinal() if value else _NO_PERIOD_END
        for rid in drop_generations:
            all_generations.pop(rid, None)
            all_period_ends.pop(rid, None)

        partitions = dict(snap.partitions)
        touched = set(remove) | set(new_ids)
        if touched:
            for chunk_type in ChunkType:
                partitions[chunk_type] = self._build_partition(chunks, chunk_type)

        self._snapshot = IndexSnapshot(
            partitions=partitions,
            chunks=chunks,
            record_chunks=record_chunks,
            generations=all_generations,
            period_ends=all_period_ends,
            version=snap.version + 1,
        )

    def _build_partition(
        self,
        chunks: Dict[str, EmbeddingChunk],
        chunk_type: ChunkType,
    ) -> _Partition:
        embedded = sorted(
            (c for c in chunks.values() if c.chunk_type == chunk_type and not c.embedding_pending),
            key=lambda c: c.chunk_id,
        )
        if not embedded:
            return _empty_partition(self.dimension)
        matrix = normalize_rows(np.vstack([c.vector for c in embedded]))
        matrix.setflags(write=False)
        return _Partition(
            matrix=matrix,
            chunk_ids=tuple(c.chunk_id for c in embedded),
            record_ids=tuple(c.record_id for c in embedded),
        )
