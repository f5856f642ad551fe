"""
PPMatch - Solicitation Requirement Parser
=========================================

Turns the past-performance section of a solicitation into a structured
RankQuery:

- technologies: taxonomy terms with version requirements ("Java 17+",
  "Java 17 or higher") and a `required` flag when "required", "must",
  "shall" or "mandatory" appears within 100 characters
- contract values: "$2.5 million", "$2.5M", "$2,500,000"; two values form
  a range, one value a point range, "minimum"/"at least" a lower bound
- timeframes: "within the last 5 years", "past 3 years" -> min_period_end
- customer type: federal / state / commercial keyword groups
- domains and years-of-experience requirements (reported, not scored)
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from ppmatch.core.tech_extractor import TechnologyExtractor
from ppmatch.core.versioning import VersionRequirement
from ppmatch.database.store import RecordFilter
from ppmatch.retrieval.ranking import ContractRange, RankQuery, TechnologyRequirement
from ppmatch.shared.enums import ApprovalState, CustomerType
from ppmatch.shared.models import DAYS_PER_YEAR

logger = logging.getLogger(__name__)

REQUIRED_KEYWORDS = ("required", "must", "shall", "mandatory")
REQUIRED_WINDOW = 100
MINIMUM_WINDOW = 50

# Open-ended marker may follow the version by a few characters ("17 or higher")
_VERSION_LOOKAHEAD = 40

MONEY_PATTERNS = (
    re.compile(r"\$\s?(\d+(?:,\d{3})*(?:\.\d+)?)\s*(million|m|mm)\b", re.IGNORECASE),
    re.compile(r"\$\s?(\d+(?:,\d{3})*(?:\.\d+)?)\s*(billion|b)\b", re.IGNORECASE),
    re.compile(r"\$\s?(\d+(?:,\d{3})*(?:\.\d+)?)\s*(thousand|k)\b", re.IGNORECASE),
    re.compile(r"\$\s?(\d{1,3}(?:,\d{3})+|\d{4,})(?:\.\d{2})?"),
    re.compile(r"\b(\d+(?:\.\d+)?)\s*(million)\s+dollars?\b", re.IGNORECASE),
)
MULTIPLIERS = {
    "million": 1e6, "m": 1e6, "mm": 1e6,
    "billion": 1e9, "b": 1e9,
    "thousand": 1e3, "k": 1e3,
}

TIMEFRAME_PATTERNS = (
    re.compile(r"within\s+(?:the\s+)?(?:last|past)\s+(\d+)\s+(years?|months?)", re.IGNORECASE),
    re.compile(r"(?:past|previous|last)\s+(\d+)\s+(years?|months?)", re.IGNORECASE),
    re.compile(r"recent\s+(\d+)\s+(years?|months?)", re.IGNORECASE),
)

EXPERIENCE_PATTERNS = (
    re.compile(r"(\d+)\s+years?\s+of\s+experience", re.IGNORECASE),
    re.compile(r"minimum\s+of\s+(\d+)\s+years?", re.IGNORECASE),
    re.compile(r"at\s+least\s+(\d+)\s+years?", re.IGNORECASE),
)

# Checked in this order; the first group with a hit wins
CUSTOMER_KEYWORDS: Tuple[Tuple[CustomerType, Tuple[str, ...]], ...] = (
    (CustomerType.FEDERAL, ("federal", "u.s. government", "department of defense", "dod")),
    (CustomerType.STATE, ("state government", "state agency", "state and local", "municipal", "local government", "county")),
    (CustomerType.COMMERCIAL, ("commercial", "private sector", "private industry")),
)

DOMAIN_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "healthcare": ("healthcare", "medical", "hospital", "patient"),
    "financial": ("financial", "banking", "finance", "payment"),
    "defense": ("defense", "military", "security", "classified"),
    "education": ("education", "school", "university", "student"),
}


# =============================================================================
# Models
# =============================================================================

@dataclass
class ValueMention:
    amount: float
    minimum: bool
    context: str


@dataclass
class Timeframe:
    value: int
    unit: str  # "years" | "months"

    @property
    def days(self) -> int:
        if self.unit == "years":
            return int(round(self.value * DAYS_PER_YEAR))
        return int(round(self.value * DAYS_PER_YEAR / 12))


@dataclass
class SolicitationRequirements:
    """Structured view of a requirements text."""
    technologies: List[TechnologyRequirement] = field(default_factory=list)
    contract_values: List[ValueMention] = field(default_factory=list)
    timeframes: List[Timeframe] = field(default_factory=list)
    customer_type: Optional[CustomerType] = None
    customer_required: bool = False
    domains: Dict[str, float] = field(default_factory=dict)
    experience_years: List[int] = field(default_factory=list)
    raw_text: str = ""

    @property
    def contract_range(self) -> Optional[ContractRange]:
        if not self.contract_values:
            return None
        amounts = [v.amount for v in self.contract_values[:2]]
        return ContractRange(low=min(amounts), high=max(amounts))

    @property
    def minimum_contract_value(self) -> Optional[float]:
        minimums = [v.amount for v in self.contract_values if v.minimum]
        return max(minimums) if minimums else None

    def min_period_end(self, today: Optional[date] = None) -> Optional[date]:
        """Oldest acceptable period end implied by the tightest timeframe."""
        if not self.timeframes:
            return None
        today = today or date.today()
        return date.fromordinal(today.toordinal() - min(t.days for t in self.timeframes))

    def to_query(
        self,
        vector=None,
        include_subcontractor: bool = True,
        today: Optional[date] = None,
    ) -> RankQuery:
        return RankQuery(
            technologies=tuple(self.technologies),
            vector=vector,
            contract_range=self.contract_range,
            customer_type=self.customer_type,
            record_filter=RecordFilter(
                min_contract_value=self.minimum_contract_value,
                min_period_end=self.min_period_end(today),
                include_subcontractor=include_subcontractor,
            ),
            text=self.raw_text,
        )

    def to_dict(self) -> Dict:
        contract_range = self.contract_range
        return {
            "technologies": [
                {
                    "technology_id": t.technology_id,
                    "name": t.name,
                    "version": t.version.label() if t.version else None,
                    "required": t.required,
                }
                for t in self.technologies
            ],
            "contract_range": (
                {"low": contract_range.low, "high": contract_range.high}
                if contract_range else None
            ),
            "minimum_contract_value": self.minimum_contract_value,
            "timeframes": [{"value": t.value, "unit": t.unit} for t in self.timeframes],
            "customer_type": self.customer_type.value if self.customer_type else None,
            "customer_required": self.customer_required,
            "domains": dict(self.domains),
            "experience_years": list(self.experience_years),
        }


# =============================================================================
# Parser
# =============================================================================

def is_required(text: str, start: int, end: int) -> bool:
    """A requirement keyword within 100 characters of the mention."""
    surrounding = text[max(0, start - REQUIRED_WINDOW):end + REQUIRED_WINDOW].lower()
    return any(re.search(rf"\b{k}\b", surrounding) for k in REQUIRED_KEYWORDS)


def _context(text: str, position: int, length: int = 100) -> str:
    return text[max(0, position - length):position + length].strip()


class RequirementParser:
    """
    Usage:
        parser = RequirementParser(extractor)
        requirements = parser.parse(solicitation_text)
        query = requirements.to_query(vector)
    """

    def __init__(self, extractor: TechnologyExtractor):
        self.extractor = extractor

    def parse(self, text: str) -> SolicitationRequirements:
        text = text or ""
        requirements = SolicitationRequirements(
            technologies=self.parse_technologies(text),
            contract_values=self.parse_contract_values(text),
            timeframes=self.parse_timeframes(text),
            domains=self.parse_domains(text),
            experience_years=self.parse_experience(text),
            raw_text=text,
        )
        requirements.customer_type, requirements.customer_required = self.parse_customer_type(text)
        logger.info(
            f"Parsed solicitation requirements: {len(requirements.technologies)} technologies, "
            f"{len(requirements.contract_values)} contract values"
        )
        return requirements

    def parse_technologies(self, text: str) -> List[TechnologyRequirement]:
        """Known, non-rejected taxonomy terms in order of first mention."""
        hits = sorted(self.extractor.find_hits(text).values(), key=lambda h: h.spans[0][0])
        technologies = []
        for hit in hits:
            if hit.technology.state == ApprovalState.REJECTED:
                continue
            version = None
            if hit.version_starts:
                # Highest stated requirement wins
                parsed = [
                    VersionRequirement.parse(text[start:start + _VERSION_LOOKAHEAD])
                    for start in hit.version_starts
                ]
                parsed = [p for p in parsed if p is not None]
                if parsed:
                    version = max(parsed, key=lambda p: (p.version, p.open_ended))
            start, end = hit.spans[0]
            technologies.append(TechnologyRequirement(
                technology_id=hit.technology.technology_id,
                name=hit.technology.name,
                version=version,
                required=is_required(text, start, end),
            ))
        return technologies

    def parse_contract_values(self, text: str) -> List[ValueMention]:
        """Dollar amounts in order of appearance; overlapping matches count once."""
        spans: List[Tuple[int, int]] = []
        found: Dict[int, ValueMention] = {}
        for pattern in MONEY_PATTERNS:
            for match in pattern.finditer(text):
                if any(match.start() < end and start < match.end() for start, end in spans):
                    continue
                spans.append((match.start(), match.end()))
                unit = match.group(2).lower() if pattern.groups >= 2 else ""
                amount = float(match.group(1).replace(",", "")) * MULTIPLIERS.get(unit, 1.0)
                window = text[max(0, match.start() - MINIMUM_WINDOW):match.end() + MINIMUM_WINDOW].lower()
                found[match.start()] = ValueMention(
                    amount=amount,
                    minimum="minimum" in window or "at least" in window,
                    context=_context(text, match.start()),
                )
        return [found[k] for k in sorted(found)]

    def parse_timeframes(self, text: str) -> List[Timeframe]:
        seen = set()
        timeframes = []
        for pattern in TIMEFRAME_PATTERNS:
            for match in pattern.finditer(text):
                value = int(match.group(1))
                unit = "years" if match.group(2).lower().startswith("year") else "months"
                # Patterns overlap ("within the last 5 years" / "last 5 years")
                key = (match.end(), value, unit)
                if key in seen:
                    continue
                seen.add(key)
                timeframes.append(Timeframe(value=value, unit=unit))
        return timeframes

    def parse_customer_type(self, text: str) -> Tuple[Optional[CustomerType], bool]:
        lower = text.lower()
        for customer_type, keywords in CUSTOMER_KEYWORDS:
            for keyword in keywords:
                match = re.search(rf"\b{re.escape(keyword)}\b", lower)
                if match:
                    return customer_type, is_required(text, match.start(), match.end())
        return None, False

    def parse_domains(self, text: str) -> Dict[str, float]:
        lower = text.lower()
        domains = {}
        for domain, keywords in DOMAIN_KEYWORDS.items():
            hits = [k for k in keywords if re.search(rf"\b{k}\b", lower)]
            if hits:
                domains[domain] = round(len(hits) / len(keywords), 4)
        return domains

    def parse_experience(self, text: str) -> List[int]:
        years = set()
        for pattern in EXPERIENCE_PATTERNS:
            for match in pattern.finditer(text):
                years.add(int(match.group(1)))
        return sorted(years)
