"""
PPMatch - Dual-Granularity Chunker
==================================

Rechunk(profile) -> chunks, a pure function of the UnifiedContentProfile
(and the technology terms detected in it):

- exactly one project_level chunk: the full unified text, truncated to the
  embedding backend's input ceiling with narrative text kept first
- zero or more capability_level chunks: a sliding word window over the
  sentences that carry a technology term or an outcome keyword

Window rule (defaults): 500 words max, 50 min, 25 overlap. A short tail is
never emitted on its own; it is folded back into the preceding window.
"""

import logging
import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from flashtext import KeywordProcessor

from ppmatch.core.config import ChunkingConfig
from ppmatch.core.taxonomy import build_keyword_processor
from ppmatch.ingest.unifier import order_documents
from ppmatch.shared.enums import ChunkType
from ppmatch.shared.models import EmbeddingChunk, UnifiedContentProfile

logger = logging.getLogger(__name__)

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+|\n\s*\n+|\n(?==== )")
_WORD = re.compile(r"[a-z]+")


@dataclass(frozen=True)
class Span:
    """Half-open word range [start, end) within the bearing-sentence stream."""
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_BOUNDARY.split(text) if s and s.strip()]


def window_spans(
    n_words: int,
    max_words: int,
    min_words: int,
    overlap: int,
    offset: int = 0,
) -> List[Span]:
    """
    Sliding windows over `n_words` words.

    Every span holds between min_words and max_words words and consecutive
    spans share `overlap` words. When the window after the current one would
    be shorter than min_words, the current window ends early so that the
    final window holds exactly min_words.
    """
    if n_words < min_words:
        return []
    if n_words <= max_words:
        return [Span(offset, offset + n_words)]

    spans = []
    start = 0
    while True:
        if n_words - start <= max_words:
            spans.append(Span(offset + start, offset + n_words))
            break
        end = start + max_words
        tail = n_words - (end - overlap)
        if tail < min_words:
            end = n_words - min_words + overlap
            spans.append(Span(offset + start, offset + end))
            spans.append(Span(offset + end - overlap, offset + n_words))
            break
        spans.append(Span(offset + start, offset + end))
        start = end - overlap
    return spans


class Chunker:
    """
    Splits unified profiles into project- and capability-level chunks.

    Usage:
        chunker = Chunker(ChunkingConfig())
        chunks = chunker.rechunk(profile, term_keys, generation=3)
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()
        self._outcome_words = frozenset(k.lower() for k in self.config.outcome_keywords)

    def rechunk(
        self,
        profile: UnifiedContentProfile,
        term_keys: Iterable[str] = (),
        generation: int = 0,
        keywords: Optional[KeywordProcessor] = None,
    ) -> List[EmbeddingChunk]:
        """
        Deterministic chunk set for a profile.

        `keywords` is the taxonomy matcher; only hits whose key is in
        `term_keys` make a sentence bearing.
        """
        term_keys = frozenset(term_keys)
        if keywords is None and term_keys:
            keywords = build_keyword_processor(term_keys)
        chunks = [self._project_chunk(profile, generation)]

        stream, sections = self._bearing_sections(profile.unified_text, term_keys, keywords)
        ordinal = 0
        for section in sections:
            for span in window_spans(
                section.length,
                self.config.max_words,
                self.config.min_words,
                self.config.overlap_words,
                offset=section.start,
            ):
                chunks.append(EmbeddingChunk(
                    chunk_id=f"{profile.record_id}:g{generation}:c{ordinal}",
                    record_id=profile.record_id,
                    chunk_type=ChunkType.CAPABILITY_LEVEL,
                    text=" ".join(stream[span.start:span.end]),
                    ordinal=ordinal,
                    generation=generation,
                    start_word=span.start,
                    end_word=span.end,
                    metadata={"profile_version": profile.version},
                ))
                ordinal += 1

        logger.debug(
            f"Record {profile.record_id}: 1 project chunk, {ordinal} capability chunks"
        )
        return chunks

    # -------------------------------------------------------------------------
    # Project-level
    # -------------------------------------------------------------------------

    def project_text(self, profile: UnifiedContentProfile) -> Tuple[str, bool]:
        """Full unified text, or a word-truncated version preferring heavy documents."""
        limit = self.config.project_max_words
        words = profile.unified_text.split()
        if len(words) <= limit:
            return profile.unified_text, False

        documents = [d for d in order_documents(profile.documents) if d.text.strip()]
        if documents:
            words = [w for d in documents for w in d.text.split()]
        return " ".join(words[:limit]), True

    def _project_chunk(self, profile: UnifiedContentProfile, generation: int) -> EmbeddingChunk:
        text, truncated = self.project_text(profile)
        words = len(text.split())
        return EmbeddingChunk(
            chunk_id=f"{profile.record_id}:g{generation}:p0",
            record_id=profile.record_id,
            chunk_type=ChunkType.PROJECT_LEVEL,
            text=text,
            ordinal=0,
            generation=generation,
            start_word=0,
            end_word=words,
            metadata={"profile_version": profile.version, "truncated": truncated},
        )

    # -------------------------------------------------------------------------
    # Capability-level
    # -------------------------------------------------------------------------

    def is_bearing(
        self,
        sentence: str,
        term_keys: FrozenSet[str],
        keywords: Optional[KeywordProcessor] = None,
    ) -> bool:
        """Sentence mentions a detected technology or an outcome keyword."""
        words = _WORD.findall(sentence.lower())
        for word in words:
            if word in self._outcome_words or word.rstrip("s") in self._outcome_words:
                return True
        if not term_keys:
            return False
        if keywords is None:
            keywords = build_keyword_processor(term_keys)
        return any(key in term_keys for key in keywords.extract_keywords(sentence))

    def _bearing_sections(
        self,
        text: str,
        term_keys: FrozenSet[str],
        keywords: Optional[KeywordProcessor],
    ) -> Tuple[List[str], List[Span]]:
        """
        Word stream of bearing sentences plus section spans over it.

        Runs of consecutive bearing sentences form sections; sections shorter
        than min_words are merged forward, and a short final section is merged
        into the one before it.
        """
        stream: List[str] = []
        raw_sections: List[Span] = []
        current_start: Optional[int] = None

        for sentence in split_sentences(text):
            if self.is_bearing(sentence, term_keys, keywords):
                if current_start is None:
                    current_start = len(stream)
                stream.extend(sentence.split())
            elif current_start is not None:
                raw_sections.append(Span(current_start, len(stream)))
                current_start = None
        if current_start is not None:
            raw_sections.append(Span(current_start, len(stream)))

        return stream, self._merge_short(raw_sections)

    def _merge_short(self, sections: Sequence[Span]) -> List[Span]:
        merged: List[Span] = []
        pending: Optional[Span] = None
        for section in sections:
            if pending is not None:
                section = Span(pending.start, section.end)
                pending = None
            if section.length < self.config.min_words:
                pending = section
            else:
                merged.append(section)
        if pending is not None:
            if merged:
                merged[-1] = Span(merged[-1].start, pending.end)
        return merged
