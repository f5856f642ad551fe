"""
PPMatch - Technology Taxonomy
=============================

Canonical vocabulary of technologies and methodologies with aliases and an
approval state machine (pending -> approved | rejected).

Entries are immutable `Technology` values. Every write builds new
dictionaries and swaps them in under a lock, so readers (extraction,
scoring) never see a half-applied change and never need the lock.

Scoring code treats a technology as an opaque id whatever its state;
visibility filtering (approved only) happens at presentation boundaries.

Usage:
    taxonomy = TechnologyTaxonomy()
    tech = taxonomy.resolve("springboot")
    taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, confidence=0.72)
    taxonomy.approve(["quarkus"])
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from flashtext import KeywordProcessor

from ppmatch.core.config import TaxonomyConfig
from ppmatch.shared.enums import ApprovalState, TechnologyCategory
from ppmatch.shared.exceptions import InvalidTransitionError, UnknownTechnologyError
from ppmatch.shared.models import Technology, normalize_term, slugify, utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# SEED VOCABULARY
# =============================================================================

_C = TechnologyCategory

SEED_TECHNOLOGIES: Tuple[Tuple[str, TechnologyCategory, Tuple[str, ...]], ...] = (
    # Languages
    ("Java", _C.LANGUAGE, ("jdk", "openjdk")),
    ("Python", _C.LANGUAGE, ()),
    ("JavaScript", _C.LANGUAGE, ("js", "ecmascript")),
    ("TypeScript", _C.LANGUAGE, ()),
    ("C#", _C.LANGUAGE, ("csharp",)),
    ("C++", _C.LANGUAGE, ("cpp",)),
    ("Golang", _C.LANGUAGE, ("go lang",)),
    ("SQL", _C.LANGUAGE, ()),
    # Frameworks
    ("Spring", _C.FRAMEWORK, ("spring framework",)),
    ("Spring Boot", _C.FRAMEWORK, ("springboot",)),
    ("React", _C.FRAMEWORK, ("reactjs", "react.js")),
    ("Angular", _C.FRAMEWORK, ("angularjs",)),
    ("Vue.js", _C.FRAMEWORK, ("vue", "vuejs")),
    ("Node.js", _C.FRAMEWORK, ("nodejs", "node js")),
    (".NET", _C.FRAMEWORK, ("dotnet", ".net core")),
    ("ASP.NET", _C.FRAMEWORK, ()),
    ("Django", _C.FRAMEWORK, ()),
    ("Flask", _C.FRAMEWORK, ()),
    ("Hibernate", _C.FRAMEWORK, ()),
    # Cloud
    ("AWS", _C.CLOUD, ("amazon web services", "aws govcloud")),
    ("Azure", _C.CLOUD, ("microsoft azure", "azure government")),
    ("Google Cloud", _C.CLOUD, ("gcp", "google cloud platform")),
    # Platforms
    ("Kubernetes", _C.PLATFORM, ("k8s", "openshift")),
    ("Docker", _C.PLATFORM, ()),
    ("Linux", _C.PLATFORM, ("rhel", "red hat enterprise linux")),
    ("ServiceNow", _C.PLATFORM, ()),
    ("Salesforce", _C.PLATFORM, ()),
    ("SharePoint", _C.PLATFORM, ()),
    ("Pega", _C.PLATFORM, ("pegasystems",)),
    ("Appian", _C.PLATFORM, ()),
    # Databases
    ("PostgreSQL", _C.DATABASE, ("postgres",)),
    ("Oracle Database", _C.DATABASE, ("oracle", "oracle db")),
    ("MySQL", _C.DATABASE, ()),
    ("Microsoft SQL Server", _C.DATABASE, ("sql server", "mssql")),
    ("MongoDB", _C.DATABASE, ("mongo",)),
    ("Elasticsearch", _C.DATABASE, ("elastic search",)),
    # Tools
    ("Terraform", _C.TOOL, ()),
    ("Ansible", _C.TOOL, ()),
    ("Jenkins", _C.TOOL, ()),
    ("Git", _C.TOOL, ("github", "gitlab")),
    ("Jira", _C.TOOL, ()),
    ("Kafka", _C.TOOL, ("apache kafka",)),
    ("Apache Spark", _C.TOOL, ("spark", "pyspark")),
    ("Tableau", _C.TOOL, ()),
    ("Power BI", _C.TOOL, ("powerbi",)),
    # Methodologies
    ("Agile", _C.METHODOLOGY, ()),
    ("Scrum", _C.METHODOLOGY, ()),
    ("SAFe", _C.METHODOLOGY, ("scaled agile framework",)),
    ("DevSecOps", _C.METHODOLOGY, ()),
    ("DevOps", _C.METHODOLOGY, ()),
    ("ITIL", _C.METHODOLOGY, ()),
    ("CMMI", _C.METHODOLOGY, ()),
)


# =============================================================================
# KEYWORD MATCHING
# =============================================================================

def surface_forms(term: str) -> List[str]:
    """Spellings matched in text: as written, normalized, and hyphenated."""
    key = normalize_term(term)
    if not key:
        return []
    forms = {term.strip().lower(), key}
    if " " in key:
        forms.add(key.replace(" ", "-"))
    return sorted(forms)


def build_keyword_processor(terms: Iterable[str]) -> KeywordProcessor:
    """Case-insensitive, longest-match processor mapping each spelling to its alias key."""
    processor = KeywordProcessor(case_sensitive=False)
    for term in terms:
        key = normalize_term(term)
        for form in surface_forms(term):
            processor.add_keyword(form, key)
    return processor


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class TransitionResult:
    """Outcome of a bulk approve / reject."""
    changed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "changed": self.changed,
            "unchanged": self.unchanged,
            "invalid": self.invalid,
            "not_found": self.not_found,
        }


# =============================================================================
# TAXONOMY
# =============================================================================

class TechnologyTaxonomy:
    """
    Controlled vocabulary with alias index and approval workflow.

    Alias collisions (one normalized term shared by several technologies)
    resolve to the technology with the higher usage_count, ties by id, and
    are recorded for manual review.
    """

    def __init__(
        self,
        config: Optional[TaxonomyConfig] = None,
        seed: Optional[bool] = None,
    ):
        self.config = config or TaxonomyConfig()
        self._lock = threading.RLock()
        self._technologies: Dict[str, Technology] = {}
        self._alias_index: Dict[str, Tuple[str, ...]] = {}
        self._ambiguous: Dict[str, Tuple[str, ...]] = {}
        self._version = 0
        self._terms_version = 0
        self._processor: Optional[Tuple[int, KeywordProcessor]] = None

        if self.config.seed_vocabulary if seed is None else seed:
            self._load_seed()

    def _load_seed(self) -> None:
        for name, category, aliases in SEED_TECHNOLOGIES:
            self.add(name, category, aliases=aliases, state=ApprovalState.APPROVED)

    # -------------------------------------------------------------------------
    # Reads (lock-free; attributes are replaced wholesale)
    # -------------------------------------------------------------------------

    @property
    def version(self) -> int:
        """Bumped on every write; lets readers cache derived matchers."""
        return self._version

    def __len__(self) -> int:
        return len(self._technologies)

    def __contains__(self, technology_id: str) -> bool:
        return technology_id in self._technologies

    def get(self, technology_id: str) -> Optional[Technology]:
        return self._technologies.get(technology_id)

    def alias_index(self) -> Dict[str, Tuple[str, ...]]:
        """Current normalized-term -> technology ids mapping."""
        return self._alias_index

    def keyword_processor(self) -> KeywordProcessor:
        """
        FlashText matcher over every name and alias, rebuilt only when the
        set of terms changes (usage and approval updates keep it).

        Clean names are alias-index keys; callers resolve them with
        `resolve_normalized` so collisions go through one policy.
        """
        cached = self._processor
        version = self._terms_version
        if cached is not None and cached[0] == version:
            return cached[1]
        technologies = self._technologies
        processor = build_keyword_processor(
            term for tech in technologies.values() for term in tech.terms
        )
        self._processor = (version, processor)
        logger.debug(f"Keyword processor rebuilt ({len(self._alias_index)} terms)")
        return processor

    def resolve(self, term: str) -> Optional[Technology]:
        """Resolve a term to one technology, applying the collision policy."""
        return self.resolve_normalized(normalize_term(term))

    def resolve_normalized(self, key: str) -> Optional[Technology]:
        technologies = self._technologies
        ids = self._alias_index.get(key)
        if not ids:
            return None
        if len(ids) == 1:
            return technologies.get(ids[0])

        ranked = sorted(
            (technologies[i] for i in ids if i in technologies),
            key=lambda t: (-t.usage_count, t.technology_id),
        )
        chosen = ranked[0]
        if self._ambiguous.get(key) != ids:
            with self._lock:
                ambiguous = dict(self._ambiguous)
                ambiguous[key] = ids
                self._ambiguous = ambiguous
            logger.warning(
                f"Ambiguous alias '{key}' shared by {list(ids)}; "
                f"resolved to '{chosen.technology_id}' (usage_count={chosen.usage_count})"
            )
        return chosen

    def ambiguous_aliases(self) -> Dict[str, List[str]]:
        """Aliases that have hit a collision, for manual review."""
        return {k: list(v) for k, v in sorted(self._ambiguous.items())}

    def list(
        self,
        state: Optional[ApprovalState] = None,
        category: Optional[TechnologyCategory] = None,
    ) -> List[Technology]:
        items = [
            t for t in self._technologies.values()
            if (state is None or t.state == state)
            and (category is None or t.category == category)
        ]
        return sorted(items, key=lambda t: (t.name.lower(), t.technology_id))

    def grouped_by_category(
        self,
        state: Optional[ApprovalState] = ApprovalState.APPROVED
    ) -> Dict[str, List[Technology]]:
        grouped: Dict[str, List[Technology]] = defaultdict(list)
        for tech in self.list(state=state):
            grouped[tech.category.value].append(tech)
        return dict(grouped)

    def search(self, query: str, limit: int = 20) -> List[Technology]:
        """Match by name or alias: exact, then prefix, then substring."""
        key = normalize_term(query)
        if not key:
            return []
        scored = []
        for tech in self._technologies.values():
            best = None
            for term in tech.terms:
                norm = normalize_term(term)
                if norm == key:
                    rank = 0
                elif norm.startswith(key):
                    rank = 1
                elif key in norm:
                    rank = 2
                else:
                    continue
                best = rank if best is None else min(best, rank)
            if best is not None:
                scored.append((best, -tech.usage_count, tech.name.lower(), tech))
        scored.sort(key=lambda item: item[:3])
        return [item[3] for item in scored[:limit]]

    def stats(self) -> Dict[str, object]:
        technologies = list(self._technologies.values())
        by_state = {s.value: 0 for s in ApprovalState}
        by_category = {c.value: 0 for c in TechnologyCategory}
        for tech in technologies:
            by_state[tech.state.value] += 1
            by_category[tech.category.value] += 1
        most_used = sorted(technologies, key=lambda t: (-t.usage_count, t.technology_id))[:10]
        return {
            "total": len(technologies),
            "by_state": by_state,
            "by_category": by_category,
            "most_used": [
                {"technology_id": t.technology_id, "name": t.name, "usage_count": t.usage_count}
                for t in most_used if t.usage_count > 0
            ],
            "ambiguous_aliases": len(self._ambiguous),
        }

    # -------------------------------------------------------------------------
    # Writes (copy-on-write under lock)
    # -------------------------------------------------------------------------

    def add(
        self,
        name: str,
        category: TechnologyCategory,
        aliases: Iterable[str] = (),
        state: ApprovalState = ApprovalState.APPROVED,
        technology_id: Optional[str] = None,
        description: str = "",
    ) -> Technology:
        """Add a technology, or merge aliases into an existing one with the same id."""
        technology_id = technology_id or slugify(name)
        with self._lock:
            existing = self._technologies.get(technology_id)
            if existing is not None:
                merged = tuple(dict.fromkeys(existing.aliases + tuple(aliases)))
                tech = replace(existing, aliases=merged)
            else:
                tech = Technology(
                    technology_id=technology_id,
                    name=name,
                    category=category,
                    aliases=tuple(dict.fromkeys(aliases)),
                    state=state,
                    description=description,
                    decided_at=None if state == ApprovalState.PENDING else utcnow(),
                )
            self._commit({technology_id: tech})
        return tech

    def propose(
        self,
        name: str,
        category: TechnologyCategory,
        confidence: float,
        description: str = "",
    ) -> Optional[Technology]:
        """
        Create a pending technology for an unrecognized term.

        Returns the new entry when `confidence` exceeds the threshold, None
        when the term is already known or the confidence is too low.
        """
        key = normalize_term(name)
        if not key:
            return None
        with self._lock:
            if key in self._alias_index:
                return None
            if confidence <= self.config.new_term_threshold:
                logger.debug(
                    f"Term '{name}' below new-term threshold "
                    f"({confidence:.2f} <= {self.config.new_term_threshold})"
                )
                return None
            technology_id = slugify(name)
            if technology_id in self._technologies:
                technology_id = f"{technology_id}-{len(self._technologies)}"
            tech = self.add(
                name,
                category,
                state=ApprovalState.PENDING,
                technology_id=technology_id,
                description=description,
            )
        logger.info(
            f"New pending technology '{tech.name}' ({tech.category.value}) "
            f"at confidence {confidence:.2f}"
        )
        return tech

    def transition(self, technology_id: str, target: ApprovalState) -> Technology:
        """Move one technology pending -> approved | rejected."""
        result = self._bulk_transition([technology_id], target)
        if result.not_found:
            raise UnknownTechnologyError(f"Unknown technology: {technology_id}")
        if result.invalid:
            current = self._technologies[technology_id].state.value
            raise InvalidTransitionError(
                f"Cannot move '{technology_id}' from {current} to {target.value}"
            )
        return self._technologies[technology_id]

    def approve(self, technology_ids: Sequence[str]) -> TransitionResult:
        return self._bulk_transition(technology_ids, ApprovalState.APPROVED)

    def reject(self, technology_ids: Sequence[str]) -> TransitionResult:
        return self._bulk_transition(technology_ids, ApprovalState.REJECTED)

    def _bulk_transition(
        self,
        technology_ids: Sequence[str],
        target: ApprovalState
    ) -> TransitionResult:
        result = TransitionResult()
        with self._lock:
            updates: Dict[str, Technology] = {}
            for technology_id in dict.fromkeys(technology_ids):
                tech = self._technologies.get(technology_id)
                if tech is None:
                    result.not_found.append(technology_id)
                elif tech.state == target:
                    result.unchanged.append(technology_id)
                elif tech.state != ApprovalState.PENDING:
                    result.invalid.append(technology_id)
                else:
                    updates[technology_id] = replace(tech, state=target, decided_at=utcnow())
                    result.changed.append(technology_id)
            if updates:
                self._commit(updates)
        if result.changed:
            logger.info(f"Technologies {target.value}: {result.changed}")
        return result

    def adjust_usage(self, deltas: Dict[str, int]) -> None:
        """Apply usage_count deltas (association added / removed)."""
        with self._lock:
            updates = {}
            for technology_id, delta in deltas.items():
                tech = self._technologies.get(technology_id)
                if tech is None or delta == 0:
                    continue
                updates[technology_id] = replace(
                    tech, usage_count=max(0, tech.usage_count + delta)
                )
            if updates:
                self._commit(updates)

    def _commit(self, updates: Dict[str, Technology]) -> None:
        """Swap in new technology and alias maps. Caller holds the lock."""
        technologies = dict(self._technologies)
        technologies.update(updates)

        alias_index: Dict[str, List[str]] = defaultdict(list)
        for technology_id in sorted(technologies):
            for term in technologies[technology_id].terms:
                key = normalize_term(term)
                if not key:
                    continue
                if technology_id not in alias_index[key]:
                    alias_index[key].append(technology_id)

        frozen = {k: tuple(v) for k, v in alias_index.items()}
        self._technologies = technologies
        if frozen != self._alias_index:
            self._alias_index = frozen
            self._terms_version += 1
        self._version += 1
