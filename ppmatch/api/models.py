"""
PPMatch - API Models
====================

Pydantic models for request/response validation.
JSON field names are camelCase; Python attributes stay snake_case.
"""

from datetime import date
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ppmatch.database.store import RecordFilter
from ppmatch.shared.enums import ContractRole, CustomerType, DocumentClass, RecordStatus
from ppmatch.shared.models import PastPerformanceRecord, PPDocument, parse_contract_value


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Shared
# =============================================================================

class WeightsModel(CamelModel):
    """Facet weights; must sum to 1.0."""
    technology: float = Field(..., ge=0.0, le=1.0)
    domain: float = Field(..., ge=0.0, le=1.0)
    contract_size: float = Field(..., ge=0.0, le=1.0)
    customer_type: float = Field(..., ge=0.0, le=1.0)

    def to_dict(self) -> Dict[str, float]:
        return {
            "technology": self.technology,
            "domain": self.domain,
            "contract_size": self.contract_size,
            "customer_type": self.customer_type,
        }


class SearchFiltersModel(CamelModel):
    """Structured record filters."""
    customer: Optional[str] = Field(None, description="Customer name substring")
    customer_type: Optional[CustomerType] = None
    role: Optional[ContractRole] = None
    min_contract_value: Optional[float] = Field(None, ge=0)
    max_contract_value: Optional[float] = Field(None, ge=0)
    min_period_end: Optional[date] = None
    include_subcontractor: bool = True

    def to_record_filter(self) -> RecordFilter:
        return RecordFilter(
            customer=self.customer,
            customer_type=self.customer_type,
            role=self.role,
            min_contract_value=self.min_contract_value,
            max_contract_value=self.max_contract_value,
            min_period_end=self.min_period_end,
            include_subcontractor=self.include_subcontractor,
        )


class ErrorResponse(CamelModel):
    """Error response."""
    error: str
    detail: Optional[Any] = None
    code: Optional[str] = None
    retryable: bool = False


# =============================================================================
# Search Models
# =============================================================================

class ProjectContextSearchRequest(CamelModel):
    project_id: str = Field(..., alias="projectID", min_length=1)
    weights: Optional[WeightsModel] = None
    include_subcontractor: bool = True
    offset: int = Field(0, ge=0)
    owner: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {"projectID": "proj-42", "includeSubcontractor": True}
        },
    )


class FreetextSearchRequest(CamelModel):
    query: str = Field(..., min_length=1, max_length=4000)
    weights: Optional[WeightsModel] = None
    filters: Optional[SearchFiltersModel] = None
    offset: int = Field(0, ge=0)
    owner: Optional[str] = None


class ResearchSearchRequest(CamelModel):
    query: str = Field(..., min_length=1, max_length=4000)
    return_summary_only: bool = True


class ContextSelectionRequest(CamelModel):
    query: str = Field(..., min_length=1, max_length=4000)
    budget_tokens: int = Field(..., ge=1)
    filters: Optional[SearchFiltersModel] = None
    weights: Optional[WeightsModel] = None


class SearchResultItem(CamelModel):
    """Single ranked PP record."""
    record_id: str = Field(..., alias="recordID")
    name: str
    relevance_score: float
    explanation: List[str] = Field(default_factory=list)
    key_capabilities: List[str] = Field(default_factory=list)
    summary: str = ""


class SearchResponse(CamelModel):
    results: List[SearchResultItem]
    primary: List[SearchResultItem] = Field(default_factory=list)
    related: List[SearchResultItem] = Field(default_factory=list)
    total_found: int
    search_time_ms: int
    offset: int = 0
    configuration: str = "default"
    requirements: Optional[Dict[str, Any]] = None


class ResearchResultItem(CamelModel):
    record_id: str = Field(..., alias="recordID")
    name: str
    similarity: float
    summary: str = ""
    bullets: List[str] = Field(default_factory=list)


class ResearchResponse(CamelModel):
    results: List[ResearchResultItem]


class ContextItem(CamelModel):
    record_id: str = Field(..., alias="recordID")
    name: str
    score: float
    text: str
    estimated_tokens: int
    truncated: bool = False
    chunk_id: Optional[str] = Field(None, alias="chunkID")


class ContextSelectionResponse(CamelModel):
    selected: List[ContextItem]
    budget_tokens: int
    total_tokens: int
    skipped: List[str] = Field(default_factory=list)
    total_found: int = 0
    search_time_ms: int = 0


class ConfigurationRequest(CamelModel):
    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    weights: WeightsModel
    make_default: bool = False


class ConfigurationItem(CamelModel):
    name: str
    owner: Optional[str] = None
    is_default: bool = False
    weights: Dict[str, float]


class ConfigurationListResponse(CamelModel):
    configurations: List[ConfigurationItem]
    active: ConfigurationItem


# =============================================================================
# Technology Models
# =============================================================================

class TechnologyItem(CamelModel):
    technology_id: str = Field(..., alias="technologyID")
    name: str
    category: str
    aliases: List[str] = Field(default_factory=list)
    state: str
    usage_count: int = 0


class TechnologyListResponse(CamelModel):
    approved: List[TechnologyItem]
    pending_approval: List[TechnologyItem]
    categories: Dict[str, List[TechnologyItem]]


class TechnologyIdsRequest(CamelModel):
    technology_ids: List[str] = Field(..., alias="technologyIDs", min_length=1)


class TransitionResponse(CamelModel):
    changed: List[str] = Field(default_factory=list)
    unchanged: List[str] = Field(default_factory=list)
    invalid: List[str] = Field(default_factory=list)
    not_found: List[str] = Field(default_factory=list)


class TechnologySearchResponse(CamelModel):
    results: List[TechnologyItem]


# =============================================================================
# Capability Models
# =============================================================================

class UnifiedCapabilityItem(CamelModel):
    project_count: int
    total_years: float
    recent_usage: Optional[date] = None
    narrative_text: str = ""


# =============================================================================
# Ingestion Models
# =============================================================================

class DocumentInput(CamelModel):
    document_id: str = Field(..., alias="documentID", min_length=1)
    document_class: DocumentClass = DocumentClass.OTHER
    filename: str = ""
    text: str = ""
    weight_factor: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_document(self) -> PPDocument:
        return PPDocument.create(
            document_id=self.document_id,
            document_class=self.document_class,
            filename=self.filename,
            text=self.text,
            weight_factor=self.weight_factor,
            metadata=self.metadata,
        )


class RecordInput(CamelModel):
    name: str = Field(..., min_length=1)
    customer: str = ""
    customer_type: Optional[CustomerType] = None
    contract_value: Optional[Union[float, str]] = None
    role: ContractRole = ContractRole.PRIME
    work_percentage: Optional[float] = Field(None, ge=0, le=100)
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    resource_count: int = Field(0, ge=0)

    def to_record(self, record_id: str) -> PastPerformanceRecord:
        return PastPerformanceRecord(
            record_id=record_id,
            name=self.name,
            customer=self.customer,
            customer_type=self.customer_type,
            contract_value=parse_contract_value(self.contract_value),
            role=self.role,
            work_percentage=self.work_percentage,
            period_start=self.period_start,
            period_end=self.period_end,
            resource_count=self.resource_count,
        )


class IngestRequest(CamelModel):
    unified_text: Optional[str] = None
    documents: List[DocumentInput] = Field(default_factory=list)
    record: Optional[RecordInput] = None


class IngestResponse(CamelModel):
    record_id: str = Field(..., alias="recordID")
    status: str
    generation: Optional[int] = None
    chunk_count: int = 0
    pending_chunks: int = 0
    technologies: List[str] = Field(default_factory=list)
    new_technologies: List[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    error: Optional[str] = None


class RetryPendingResponse(CamelModel):
    attempted: int
    embedded: int
    still_pending: int
    stale: int
    narratives_regenerated: int


class ArchiveResponse(CamelModel):
    record_id: str = Field(..., alias="recordID")
    status: RecordStatus


# =============================================================================
# Health Models
# =============================================================================

class ComponentStatus(CamelModel):
    status: str
    details: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(CamelModel):
    status: str
    version: str
    components: Dict[str, ComponentStatus]
