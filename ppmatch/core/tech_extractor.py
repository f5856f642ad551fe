"""
PPMatch - Technology Extractor
==============================

Scans PP text for taxonomy terms (canonical names and aliases, with
adjacent version strings), scores each detection, and proposes unknown
terms to the taxonomy as pending entries.

Confidence model:
    base (keyword match)                     0.60
    + mention frequency per 1,000 chars x0.1 (max +0.20)
    + repeated mention                       +0.10
    + context keywords near a mention        +0.02 each (max +0.15)
    + category adjustment                    language +0.05, framework +0.03,
                                             methodology -0.05
    + version string adjacent                +0.10
    clamped to [0, 1]

Extraction is idempotent: unknown terms are proposed first, then matching
runs against the updated taxonomy, so a second pass over the same text
yields the same associations.
"""

import logging
import re
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ppmatch.core.config import TaxonomyConfig
from ppmatch.core.taxonomy import TechnologyTaxonomy, build_keyword_processor
from ppmatch.core.versioning import format_version, parse_version
from ppmatch.shared.enums import ApprovalState, TechnologyCategory
from ppmatch.shared.models import (
    PPTechnologyAssociation,
    Technology,
    normalize_term,
    tokenize,
)

logger = logging.getLogger(__name__)


# =============================================================================
# SCORING CONSTANTS
# =============================================================================

KEYWORD_MATCH_CONFIDENCE = 0.6

CONTEXT_KEYWORDS = {
    "technical": ("implementation", "development", "using", "with", "built", "developed"),
    "experience": ("experience", "expertise", "worked", "utilized", "employed"),
    "framework": ("framework", "platform", "technology", "stack", "environment"),
    "project": ("project", "system", "application", "solution", "software"),
}
_CONTEXT_WORDS = frozenset(w for group in CONTEXT_KEYWORDS.values() for w in group)

CATEGORY_ADJUSTMENT = {
    TechnologyCategory.LANGUAGE: 0.05,
    TechnologyCategory.FRAMEWORK: 0.03,
    TechnologyCategory.METHODOLOGY: -0.05,
}

VERSION_BOOST = 0.1
REPEAT_BOOST = 0.1
MAX_FREQUENCY_BOOST = 0.2
CONTEXT_BOOST_EACH = 0.02
MAX_CONTEXT_BOOST = 0.15

# Unknown-term candidates
CANDIDATE_BASE = 0.4
DESCRIPTOR_BOOST = 0.15
CANDIDATE_VERSION_BOOST = 0.15
EXTRA_MENTION_BOOST = 0.05
MAX_EXTRA_MENTION_BOOST = 0.15

DESCRIPTOR_CATEGORY = {
    "framework": TechnologyCategory.FRAMEWORK,
    "library": TechnologyCategory.FRAMEWORK,
    "platform": TechnologyCategory.PLATFORM,
    "database": TechnologyCategory.DATABASE,
    "language": TechnologyCategory.LANGUAGE,
    "tool": TechnologyCategory.TOOL,
    "toolkit": TechnologyCategory.TOOL,
    "engine": TechnologyCategory.TOOL,
    "methodology": TechnologyCategory.METHODOLOGY,
}

_NAME = r"[A-Z][A-Za-z0-9+#]*(?:\.[A-Za-z0-9]+)*"
DESCRIPTOR_PATTERN = re.compile(
    rf"\b({_NAME}(?:\s+{_NAME})?)\s+({'|'.join(DESCRIPTOR_CATEGORY)})\b"
)
VERSIONED_PATTERN = re.compile(
    rf"\b({_NAME})\s+(v\d+(?:\.\d+)*|\d+\.\d+(?:\.\d+)*)(?![\w.])"
)

CANDIDATE_STOPWORDS = frozenset(
    w.lower() for w in (
        "The", "This", "That", "These", "Our", "Their", "Its", "A", "An", "Each",
        "Section", "Phase", "Task", "Version", "Release", "Figure", "Table",
        "Contract", "Government", "Federal", "Agency", "Department", "Project",
        "Team", "System", "Program", "Office", "Level", "Option", "Year",
        "Data", "Web", "Mobile", "Cloud", "New", "Legacy", "Custom", "Open",
        "January", "February", "March", "April", "May", "June", "July",
        "August", "September", "October", "November", "December",
    )
)

YEAR_RANGE = range(1900, 2100)
VERSION_CONNECTORS = frozenset({"version", "v", "se", "ee", "release"})


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class TechMatch:
    """One detected technology in a text."""
    technology_id: str
    name: str
    confidence: float
    version: Optional[str] = None
    context_snippet: str = ""
    mentions: int = 1
    is_new: bool = False

    @property
    def label(self) -> str:
        return f"{self.name} {self.version}" if self.version else self.name

    def to_association(self, record_id: str) -> PPTechnologyAssociation:
        return PPTechnologyAssociation(
            record_id=record_id,
            technology_id=self.technology_id,
            confidence=self.confidence,
            version=self.version,
            context_snippet=self.context_snippet,
            mentions=self.mentions,
        )


@dataclass
class ExtractionReport:
    matches: List[TechMatch] = field(default_factory=list)
    new_technologies: List[Technology] = field(default_factory=list)


@dataclass
class TermHit:
    """All mentions of one technology in a text."""
    technology: Technology
    spans: List[Tuple[int, int]] = field(default_factory=list)
    versions: List[Tuple[int, ...]] = field(default_factory=list)
    # Character offset where each detected version string starts
    version_starts: List[int] = field(default_factory=list)


# =============================================================================
# EXTRACTOR
# =============================================================================

class TechnologyExtractor:
    """
    Detects taxonomy terms in free text.

    Usage:
        extractor = TechnologyExtractor(taxonomy)
        matches = extractor.extract(unified_text)
    """

    def __init__(
        self,
        taxonomy: TechnologyTaxonomy,
        config: Optional[TaxonomyConfig] = None,
    ):
        self.taxonomy = taxonomy
        self.config = config or taxonomy.config

    def extract(self, text: str, propose_new: bool = True) -> List[TechMatch]:
        """ExtractTechnologies(text) -> matches sorted by confidence, then id."""
        return self.extract_with_report(text, propose_new=propose_new).matches

    def extract_with_report(self, text: str, propose_new: bool = True) -> ExtractionReport:
        report = ExtractionReport()
        if not text or not text.strip():
            return report

        if propose_new:
            report.new_technologies = self._propose_new_terms(text)
        new_ids = {t.technology_id for t in report.new_technologies}

        for hit in self.find_hits(text).values():
            confidence = self._score(hit, text)
            if confidence < self.config.min_association_confidence:
                continue
            start, end = hit.spans[0]
            report.matches.append(TechMatch(
                technology_id=hit.technology.technology_id,
                name=hit.technology.name,
                confidence=confidence,
                version=format_version(max(hit.versions)) if hit.versions else None,
                context_snippet=self._snippet(text, start, end),
                mentions=len(hit.spans),
                is_new=hit.technology.technology_id in new_ids,
            ))

        report.matches.sort(key=lambda m: (-m.confidence, m.technology_id))
        return report

    # -------------------------------------------------------------------------
    # Known-term matching
    # -------------------------------------------------------------------------

    def find_hits(self, text: str) -> Dict[str, TermHit]:
        """Known terms via the taxonomy's FlashText processor; longest match wins."""
        tokens = tokenize(text)
        token_starts = [start for _, start, _ in tokens]
        hits: Dict[str, TermHit] = {}

        keywords = self.taxonomy.keyword_processor()
        for key, start, end in keywords.extract_keywords(text, span_info=True):
            tech = self.taxonomy.resolve_normalized(key)
            if tech is None or tech.state == ApprovalState.REJECTED:
                continue
            hit = hits.setdefault(tech.technology_id, TermHit(technology=tech))
            hit.spans.append((start, end))
            found = self._version_after(tokens, bisect_left(token_starts, end), text)
            if found:
                hit.versions.append(found[0])
                hit.version_starts.append(found[1])
        return hits

    @staticmethod
    def _version_after(
        tokens: Sequence[Tuple[str, int, int]],
        position: int,
        text: str
    ) -> Optional[Tuple[Tuple[int, ...], int]]:
        """Version right after a term (optionally behind "version"/"v"/"SE") and its offset."""
        for offset in range(2):
            idx = position + offset
            if idx >= len(tokens):
                return None
            raw = text[tokens[idx][1]:tokens[idx][2]]
            if tokens[idx][1] > 0 and text[tokens[idx][1] - 1] == "$":
                return None
            version = parse_version(raw) if re.match(r"^v?\d", raw, re.IGNORECASE) else None
            if version:
                if len(version) == 1 and version[0] in YEAR_RANGE:
                    return None
                return version, tokens[idx][1]
            if tokens[idx][0] not in VERSION_CONNECTORS:
                return None
        return None

    def _score(self, hit: TermHit, text: str) -> float:
        base = KEYWORD_MATCH_CONFIDENCE
        mentions = len(hit.spans)

        frequency = mentions / max(len(text) / 1000.0, 1e-9)
        confidence = base + min(frequency * 0.1, MAX_FREQUENCY_BOOST)
        if mentions > 1:
            confidence += REPEAT_BOOST
        confidence += self._context_boost(text, hit.spans)
        confidence += CATEGORY_ADJUSTMENT.get(hit.technology.category, 0.0)
        if hit.versions:
            confidence += VERSION_BOOST
        return round(max(0.0, min(1.0, confidence)), 4)

    def _context_boost(self, text: str, spans: Sequence[Tuple[int, int]]) -> float:
        window = self.config.context_window_chars
        found = set()
        for start, end in spans:
            context = text[max(0, start - window):end + window].lower()
            found.update(w for w in re.findall(r"[a-z]+", context) if w in _CONTEXT_WORDS)
        return min(len(found) * CONTEXT_BOOST_EACH, MAX_CONTEXT_BOOST)

    def _snippet(self, text: str, start: int, end: int) -> str:
        window = self.config.context_window_chars
        snippet = text[max(0, start - window):end + window]
        return re.sub(r"\s+", " ", snippet).strip()

    # -------------------------------------------------------------------------
    # Unknown-term proposals
    # -------------------------------------------------------------------------

    def score_candidate(
        self,
        term: str,
        text: str,
        has_descriptor: bool,
        has_version: bool,
    ) -> float:
        """Confidence that an unrecognized capitalised term is a technology."""
        mentions = build_keyword_processor([term]).extract_keywords(text, span_info=True)
        extra_mentions = max(0, len(mentions) - 1)
        positions = [(start, end) for _, start, end in mentions]
        confidence = CANDIDATE_BASE
        if has_descriptor:
            confidence += DESCRIPTOR_BOOST
        if has_version:
            confidence += CANDIDATE_VERSION_BOOST
        confidence += min(extra_mentions * EXTRA_MENTION_BOOST, MAX_EXTRA_MENTION_BOOST)
        confidence += self._context_boost(text, positions)
        return round(max(0.0, min(1.0, confidence)), 4)

    def _candidates(self, text: str) -> Dict[str, Tuple[str, TechnologyCategory, bool, bool]]:
        """normalized term -> (display name, category, has_descriptor, has_version)"""
        found: Dict[str, Tuple[str, TechnologyCategory, bool, bool]] = {}

        def _clean(name: str) -> Optional[str]:
            words = name.split()
            while words and words[0].lower() in CANDIDATE_STOPWORDS:
                words = words[1:]
            if not words:
                return None
            return " ".join(words)

        for match in DESCRIPTOR_PATTERN.finditer(text):
            name = _clean(match.group(1))
            if not name:
                continue
            key = normalize_term(name)
            category = DESCRIPTOR_CATEGORY[match.group(2)]
            prev = found.get(key)
            found[key] = (name, category, True, prev[3] if prev else False)

        for match in VERSIONED_PATTERN.finditer(text):
            name = _clean(match.group(1))
            if not name:
                continue
            key = normalize_term(name)
            prev = found.get(key)
            if prev:
                found[key] = (prev[0], prev[1], prev[2], True)
            else:
                found[key] = (name, TechnologyCategory.TOOL, False, True)
        return found

    def _propose_new_terms(self, text: str) -> List[Technology]:
        created = []
        index = self.taxonomy.alias_index()
        for key, (name, category, has_descriptor, has_version) in sorted(self._candidates(text).items()):
            if not key or key in index:
                continue
            confidence = self.score_candidate(name, text, has_descriptor, has_version)
            tech = self.taxonomy.propose(name, category, confidence)
            if tech is not None:
                created.append(tech)
        return created
