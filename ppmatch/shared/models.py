"""
PPMatch Domain Models
=====================

Dataclasses for past-performance records, documents, derived profiles,
taxonomy entries, embedding chunks, capability rollups and search output.

Key design principles:
1. Derived state (profiles, chunks, rollups) is immutable and replaced, never edited
2. Per-document metadata is a tagged union keyed by document class
3. Serialization through to_dict / from_dict for the API and storage layers
"""

import logging
import math
import re
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

import numpy as np

from ppmatch.shared.enums import (
    ApprovalState,
    ChunkType,
    ContractRole,
    CustomerType,
    DEFAULT_WEIGHT_FACTORS,
    DocumentClass,
    MAX_WEIGHT_FACTOR,
    MIN_WEIGHT_FACTOR,
    RecordStatus,
    TechnologyCategory,
)
from ppmatch.shared.exceptions import InvalidWeightsError

logger = logging.getLogger(__name__)

WEIGHT_EPSILON = 1e-6
DAYS_PER_YEAR = 365.25


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# PARSING HELPERS
# =============================================================================

def parse_date(value: Any) -> Optional[date]:
    """Parse ISO date/datetime strings; pass through date objects."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_contract_value(value: Any) -> Optional[float]:
    """
    Parse a contract value such as 2500000, "2,500,000" or "$2.5M".

    Returns None for missing or non-numeric values; callers treat None as
    "no size evidence" rather than failing the whole record.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().lower().replace("$", "").replace(",", "")
        multiplier = 1.0
        if text.endswith("million"):
            multiplier, text = 1_000_000.0, text[: -len("million")].strip()
        elif text.endswith("m"):
            multiplier, text = 1_000_000.0, text[:-1].strip()
        elif text.endswith("k"):
            multiplier, text = 1_000.0, text[:-1].strip()
        try:
            number = float(text) * multiplier
        except ValueError:
            logger.warning(f"Non-numeric contract value ignored: {value!r}")
            return None
    if math.isnan(number) or number < 0:
        logger.warning(f"Invalid contract value ignored: {value!r}")
        return None
    return number


def clamp_weight_factor(weight: Optional[float], document_class: DocumentClass) -> float:
    if weight is None:
        return DEFAULT_WEIGHT_FACTORS[document_class]
    return max(MIN_WEIGHT_FACTOR, min(MAX_WEIGHT_FACTOR, float(weight)))


# =============================================================================
# PAST PERFORMANCE RECORD
# =============================================================================

@dataclass
class PastPerformanceRecord:
    """A historical contract used as matching evidence."""
    record_id: str
    name: str
    customer: str = ""
    customer_type: Optional[CustomerType] = None
    contract_value: Optional[float] = None
    role: ContractRole = ContractRole.PRIME
    work_percentage: Optional[float] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    resource_count: int = 0
    status: RecordStatus = RecordStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == RecordStatus.ACTIVE

    @property
    def period_years(self) -> float:
        """Length of the period of performance in years (0 when unknown)."""
        if not self.period_start or not self.period_end:
            return 0.0
        days = (self.period_end - self.period_start).days
        return max(0.0, days / DAYS_PER_YEAR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "name": self.name,
            "customer": self.customer,
            "customer_type": self.customer_type.value if self.customer_type else None,
            "contract_value": self.contract_value,
            "role": self.role.value,
            "work_percentage": self.work_percentage,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "resource_count": self.resource_count,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PastPerformanceRecord":
        customer_type = data.get("customer_type")
        return cls(
            record_id=str(data["record_id"]),
            name=data.get("name", ""),
            customer=data.get("customer", ""),
            customer_type=CustomerType(customer_type.lower()) if customer_type else None,
            contract_value=parse_contract_value(data.get("contract_value")),
            role=ContractRole(data.get("role", "prime")),
            work_percentage=data.get("work_percentage"),
            period_start=parse_date(data.get("period_start")),
            period_end=parse_date(data.get("period_end")),
            resource_count=int(data.get("resource_count") or 0),
            status=RecordStatus(data.get("status", "active")),
        )


# =============================================================================
# DOCUMENT METADATA (tagged union keyed by document class)
# =============================================================================

@dataclass(frozen=True)
class DocumentMetadata:
    """Base variant. `extra` keeps keys the variant does not model."""
    kind: ClassVar[DocumentClass] = DocumentClass.OTHER
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra"
        }
        data.update(self.extra)
        data["kind"] = self.kind.value
        return data


@dataclass(frozen=True)
class NarrativeMetadata(DocumentMetadata):
    kind: ClassVar[DocumentClass] = DocumentClass.NARRATIVE
    author: Optional[str] = None
    sections: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StatementOfWorkMetadata(DocumentMetadata):
    kind: ClassVar[DocumentClass] = DocumentClass.PWS_SOW
    contract_number: Optional[str] = None
    task_areas: Tuple[str, ...] = ()


@dataclass(frozen=True)
class QASPMetadata(DocumentMetadata):
    kind: ClassVar[DocumentClass] = DocumentClass.QASP
    performance_standards: Tuple[str, ...] = ()


@dataclass(frozen=True)
class GovernmentReviewMetadata(DocumentMetadata):
    kind: ClassVar[DocumentClass] = DocumentClass.GOVT_REVIEW
    reviewer: Optional[str] = None
    rating: Optional[str] = None
    review_date: Optional[str] = None


@dataclass(frozen=True)
class CPARSMetadata(DocumentMetadata):
    kind: ClassVar[DocumentClass] = DocumentClass.CPARS
    evaluation_period: Optional[str] = None
    ratings: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ContractHistoryMetadata(DocumentMetadata):
    kind: ClassVar[DocumentClass] = DocumentClass.CONTRACT_HISTORY
    modifications: int = 0
    option_years_exercised: int = 0


@dataclass(frozen=True)
class OtherMetadata(DocumentMetadata):
    """Unknown document class: generic key-value map in `extra`."""
    kind: ClassVar[DocumentClass] = DocumentClass.OTHER


METADATA_TYPES: Dict[DocumentClass, Type[DocumentMetadata]] = {
    cls.kind: cls
    for cls in (
        NarrativeMetadata,
        StatementOfWorkMetadata,
        QASPMetadata,
        GovernmentReviewMetadata,
        CPARSMetadata,
        ContractHistoryMetadata,
        OtherMetadata,
    )
}


def metadata_from_dict(
    document_class: DocumentClass,
    data: Optional[Dict[str, Any]]
) -> DocumentMetadata:
    """Build the metadata variant for a document class."""
    data = dict(data or {})
    data.pop("kind", None)
    meta_cls = METADATA_TYPES.get(document_class, OtherMetadata)
    known = {}
    for f in fields(meta_cls):
        if f.name == "extra" or f.name not in data:
            continue
        value = data.pop(f.name)
        if isinstance(value, list):
            value = tuple(value)
        known[f.name] = value
    return meta_cls(extra=data, **known)


# =============================================================================
# DOCUMENTS AND UNIFIED PROFILE
# =============================================================================

@dataclass(frozen=True)
class PPDocument:
    """One source document attached to a PP record."""
    document_id: str
    document_class: DocumentClass
    filename: str = ""
    text: str = ""
    weight_factor: float = 1.0
    metadata: DocumentMetadata = field(default_factory=OtherMetadata)

    @classmethod
    def create(
        cls,
        document_id: str,
        document_class: DocumentClass,
        filename: str = "",
        text: str = "",
        weight_factor: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "PPDocument":
        """Build a document applying the class default weight and clamping."""
        return cls(
            document_id=document_id,
            document_class=document_class,
            filename=filename,
            text=text or "",
            weight_factor=clamp_weight_factor(weight_factor, document_class),
            metadata=metadata_from_dict(document_class, metadata),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "document_class": self.document_class.value,
            "filename": self.filename,
            "weight_factor": self.weight_factor,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PPDocument":
        return cls.create(
            document_id=str(data["document_id"]),
            document_class=DocumentClass(data.get("document_class", "other")),
            filename=data.get("filename", ""),
            text=data.get("text", ""),
            weight_factor=data.get("weight_factor"),
            metadata=data.get("metadata"),
        )


@dataclass(frozen=True)
class UnifiedContentProfile:
    """Versioned merge of all documents' text for one record."""
    record_id: str
    version: int
    unified_text: str
    narrative_text: str
    summary: str
    word_count: int
    content_hash: str
    document_ids: Tuple[str, ...] = ()
    documents: Tuple[PPDocument, ...] = ()
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "version": self.version,
            "summary": self.summary,
            "word_count": self.word_count,
            "content_hash": self.content_hash,
            "document_ids": list(self.document_ids),
            "created_at": self.created_at.isoformat(),
        }


# =============================================================================
# TAXONOMY
# =============================================================================

TOKEN_PATTERN = re.compile(r"\.?[A-Za-z0-9][A-Za-z0-9+#]*(?:\.[A-Za-z0-9][A-Za-z0-9+#]*)*")


def normalize_token(token: str) -> str:
    """".NET" -> "dotnet", "Node.js" -> "nodejs", "C#" -> "c#"."""
    token = token.lower()
    if token.startswith("."):
        token = "dot" + token[1:]
    return token.replace(".", "")


def tokenize(text: str) -> List[Tuple[str, int, int]]:
    """Split text into (normalized token, start, end) triples."""
    return [
        (normalize_token(m.group(0)), m.start(), m.end())
        for m in TOKEN_PATTERN.finditer(text)
    ]


def normalize_term(term: str) -> str:
    """
    Case-insensitive, punctuation-normalized form used by the alias index.

    "Node.js" -> "nodejs", "Spring-Boot" -> "spring boot", "C#" -> "c#".
    """
    return " ".join(token for token, _, _ in tokenize(term))


def slugify(term: str) -> str:
    """Stable technology key derived from a canonical name."""
    text = term.lower().strip()
    if text.startswith("."):
        text = "dot" + text[1:]
    text = text.replace("+", "plus").replace("#", "sharp").replace(".", "")
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


@dataclass(frozen=True)
class Technology:
    """Canonical taxonomy entry. Replaced, never mutated."""
    technology_id: str
    name: str
    category: TechnologyCategory
    aliases: Tuple[str, ...] = ()
    state: ApprovalState = ApprovalState.PENDING
    usage_count: int = 0
    description: str = ""
    created_at: datetime = field(default_factory=utcnow)
    decided_at: Optional[datetime] = None

    @property
    def is_approved(self) -> bool:
        return self.state == ApprovalState.APPROVED

    @property
    def terms(self) -> Tuple[str, ...]:
        """Canonical name followed by aliases."""
        return (self.name,) + tuple(self.aliases)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "technology_id": self.technology_id,
            "name": self.name,
            "category": self.category.value,
            "aliases": list(self.aliases),
            "state": self.state.value,
            "usage_count": self.usage_count,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }


@dataclass(frozen=True)
class PPTechnologyAssociation:
    """(record, technology) evidence with confidence and audit snippet."""
    record_id: str
    technology_id: str
    confidence: float
    version: Optional[str] = None
    context_snippet: str = ""
    mentions: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "technology_id": self.technology_id,
            "confidence": round(self.confidence, 4),
            "version": self.version,
            "context_snippet": self.context_snippet,
            "mentions": self.mentions,
        }


# =============================================================================
# EMBEDDING CHUNKS
# =============================================================================

@dataclass(frozen=True, eq=False)
class EmbeddingChunk:
    """
    One embedded span of a record's text.

    A chunk without a vector is `embedding_pending`: it stays out of vector
    search until re-embedded but its text still feeds extraction.
    """
    chunk_id: str
    record_id: str
    chunk_type: ChunkType
    text: str
    ordinal: int = 0
    generation: int = 0
    start_word: int = 0
    end_word: int = 0
    vector: Optional[np.ndarray] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def embedding_pending(self) -> bool:
        return self.vector is None

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def with_vector(self, vector: Optional[np.ndarray]) -> "EmbeddingChunk":
        return replace(
            self,
            vector=None if vector is None else np.asarray(vector, dtype=np.float32),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "record_id": self.record_id,
            "chunk_type": self.chunk_type.value,
            "ordinal": self.ordinal,
            "generation": self.generation,
            "start_word": self.start_word,
            "end_word": self.end_word,
            "word_count": self.word_count,
            "embedding_pending": self.embedding_pending,
            "metadata": dict(self.metadata),
        }


# =============================================================================
# CAPABILITY ROLLUP
# =============================================================================

@dataclass(frozen=True)
class UnifiedCapability:
    """Per-technology aggregate across the portfolio. Swapped, never mutated."""
    technology_id: str
    name: str
    category: TechnologyCategory
    project_count: int
    total_experience_years: float
    most_recent_usage_date: Optional[date]
    record_ids: Tuple[str, ...] = ()
    narrative: str = ""
    version: int = 1
    facts_hash: str = ""
    narrative_hash: str = ""

    @property
    def narrative_current(self) -> bool:
        return bool(self.narrative) and self.narrative_hash == self.facts_hash

    def to_dict(self) -> Dict[str, Any]:
        return {
            "technology_id": self.technology_id,
            "name": self.name,
            "category": self.category.value,
            "project_count": self.project_count,
            "total_experience_years": round(self.total_experience_years, 2),
            "most_recent_usage_date": (
                self.most_recent_usage_date.isoformat()
                if self.most_recent_usage_date else None
            ),
            "narrative": self.narrative,
            "version": self.version,
        }


# =============================================================================
# SEARCH CONFIGURATION AND RESULTS
# =============================================================================

@dataclass(frozen=True)
class SearchConfiguration:
    """Named weight set; weights must sum to 1.0 within WEIGHT_EPSILON."""
    name: str = "default"
    technology: float = 0.40
    domain: float = 0.30
    contract_size: float = 0.20
    customer_type: float = 0.10
    owner: Optional[str] = None
    is_default: bool = False

    @property
    def weights(self) -> Dict[str, float]:
        return {
            "technology": self.technology,
            "domain": self.domain,
            "contract_size": self.contract_size,
            "customer_type": self.customer_type,
        }

    def validate(self) -> "SearchConfiguration":
        """Raise InvalidWeightsError unless every weight is in [0, 1] and they sum to 1."""
        for name, value in self.weights.items():
            if value is None or not (0.0 <= value <= 1.0):
                raise InvalidWeightsError(f"Weight '{name}' must be within [0, 1], got {value}")
        total = sum(self.weights.values())
        if abs(total - 1.0) > WEIGHT_EPSILON:
            raise InvalidWeightsError(
                f"Search weights must sum to 1.0 (±{WEIGHT_EPSILON}), got {total:.6f}"
            )
        return self

    @classmethod
    def from_weights(
        cls,
        weights: Dict[str, float],
        name: str = "custom",
        owner: Optional[str] = None,
        is_default: bool = False,
    ) -> "SearchConfiguration":
        unknown = set(weights) - {"technology", "domain", "contract_size", "customer_type"}
        if unknown:
            raise InvalidWeightsError(f"Unknown weight keys: {sorted(unknown)}")
        missing = {"technology", "domain", "contract_size", "customer_type"} - set(weights)
        if missing:
            raise InvalidWeightsError(f"Missing weight keys: {sorted(missing)}")
        return cls(
            name=name,
            owner=owner,
            is_default=is_default,
            **{k: float(v) for k, v in weights.items()},
        ).validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "owner": self.owner,
            "is_default": self.is_default,
            "weights": self.weights,
        }


@dataclass
class SearchResult:
    """Ephemeral, per-query ranking output for one record."""
    record_id: str
    name: str
    relevance_score: float
    explanation: List[str] = field(default_factory=list)
    key_capabilities: List[str] = field(default_factory=list)
    summary: str = ""
    components: Dict[str, float] = field(default_factory=dict)
    period_end: Optional[date] = None
    resource_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "name": self.name,
            "relevance_score": round(self.relevance_score, 4),
            "explanation": list(self.explanation),
            "key_capabilities": list(self.key_capabilities),
            "summary": self.summary,
        }
