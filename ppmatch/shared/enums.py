"""Shared enumerations for ingestion, taxonomy and ranking."""

from enum import Enum


class DocumentClass(Enum):
    """Source document class attached to a PP record."""
    NARRATIVE = "narrative"
    PWS_SOW = "pws_sow"
    QASP = "qasp"
    GOVT_REVIEW = "govt_review"
    CPARS = "cpars"
    CONTRACT_HISTORY = "contract_history"
    OTHER = "other"


# Narrative is weighted highest; explicit weights are clamped to [0.1, 2.0]
DEFAULT_WEIGHT_FACTORS = {
    DocumentClass.NARRATIVE: 2.0,
    DocumentClass.PWS_SOW: 1.5,
    DocumentClass.QASP: 1.3,
    DocumentClass.CPARS: 1.2,
    DocumentClass.GOVT_REVIEW: 1.1,
    DocumentClass.CONTRACT_HISTORY: 1.0,
    DocumentClass.OTHER: 1.0,
}

MIN_WEIGHT_FACTOR = 0.1
MAX_WEIGHT_FACTOR = 2.0


class TechnologyCategory(Enum):
    """Taxonomy category."""
    PLATFORM = "platform"
    LANGUAGE = "language"
    FRAMEWORK = "framework"
    TOOL = "tool"
    DATABASE = "database"
    CLOUD = "cloud"
    METHODOLOGY = "methodology"


class ApprovalState(Enum):
    """Technology approval state machine: pending -> approved | rejected."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChunkType(Enum):
    """Embedding granularity; each value is its own index partition."""
    PROJECT_LEVEL = "project_level"
    CAPABILITY_LEVEL = "capability_level"


class ContractRole(Enum):
    """Role the company held on the contract."""
    PRIME = "prime"
    SUB = "sub"


class CustomerType(Enum):
    """Customer segment used by the customer-type facet."""
    FEDERAL = "federal"
    STATE = "state"
    LOCAL = "local"
    COMMERCIAL = "commercial"


class RecordStatus(Enum):
    """PP records are never hard-deleted; they are archived."""
    ACTIVE = "active"
    ARCHIVED = "archived"


class IngestStatus(Enum):
    """Outcome reported in an ingestion ack."""
    COMMITTED = "committed"
    SUPERSEDED = "superseded"
    SKIPPED = "skipped"
