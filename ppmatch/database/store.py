"""
PPMatch - Record Store
======================

In-memory system of record for PP records, their current unified profile
and technology associations.

Every write replaces whole values; the read side hands out the current
mappings, which are never mutated after publication. A reader therefore
sees either the state before or after a commit, never a mix.
"""

import logging
import threading
from dataclasses import replace
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from ppmatch.shared.enums import ContractRole, CustomerType, RecordStatus
from ppmatch.shared.exceptions import RecordNotFoundError
from ppmatch.shared.models import (
    PastPerformanceRecord,
    PPTechnologyAssociation,
    UnifiedContentProfile,
)

logger = logging.getLogger(__name__)


class RecordFilter:
    """Structured filter applied before ranking. Archived records never pass."""

    def __init__(
        self,
        customer: Optional[str] = None,
        customer_type: Optional[CustomerType] = None,
        role: Optional[ContractRole] = None,
        min_contract_value: Optional[float] = None,
        max_contract_value: Optional[float] = None,
        min_period_end: Optional[date] = None,
        include_subcontractor: bool = True,
    ):
        self.customer = customer
        self.customer_type = customer_type
        self.role = role
        self.min_contract_value = min_contract_value
        self.max_contract_value = max_contract_value
        self.min_period_end = min_period_end
        self.include_subcontractor = include_subcontractor

    def matches(self, record: PastPerformanceRecord) -> bool:
        if not record.is_active:
            return False
        if not self.include_subcontractor and record.role == ContractRole.SUB:
            return False
        if self.role is not None and record.role != self.role:
            return False
        if self.customer and self.customer.lower() not in record.customer.lower():
            return False
        if self.customer_type is not None and record.customer_type != self.customer_type:
            return False
        if self.min_contract_value is not None:
            if record.contract_value is None or record.contract_value < self.min_contract_value:
                return False
        if self.max_contract_value is not None:
            if record.contract_value is None or record.contract_value > self.max_contract_value:
                return False
        if self.min_period_end is not None:
            if record.period_end is None or record.period_end < self.min_period_end:
                return False
        return True


class RecordStore:
    """
    Records, profiles and associations keyed by record id.

    Usage:
        store = RecordStore()
        store.upsert_record(record)
        store.commit_profile(profile, associations)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, PastPerformanceRecord] = {}
        self._profiles: Dict[str, UnifiedContentProfile] = {}
        self._associations: Dict[str, Tuple[PPTechnologyAssociation, ...]] = {}

    # =========================================================================
    # Reads
    # =========================================================================

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    def get_record(self, record_id: str) -> Optional[PastPerformanceRecord]:
        return self._records.get(record_id)

    def require_record(self, record_id: str) -> PastPerformanceRecord:
        record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Unknown PP record: {record_id}")
        return record

    def get_profile(self, record_id: str) -> Optional[UnifiedContentProfile]:
        return self._profiles.get(record_id)

    def get_associations(self, record_id: str) -> Tuple[PPTechnologyAssociation, ...]:
        return self._associations.get(record_id, ())

    def associations_snapshot(self) -> Dict[str, Tuple[PPTechnologyAssociation, ...]]:
        """Current association mapping; treat as read-only."""
        return self._associations

    def records(self, record_filter: Optional[RecordFilter] = None) -> List[PastPerformanceRecord]:
        """Records passing the filter (active only when a filter is given)."""
        items = list(self._records.values())
        if record_filter is not None:
            items = [r for r in items if record_filter.matches(r)]
        return sorted(items, key=lambda r: r.record_id)

    def active_records(self) -> List[PastPerformanceRecord]:
        return [r for r in self.records() if r.is_active]

    # =========================================================================
    # Writes
    # =========================================================================

    def upsert_record(self, record: PastPerformanceRecord) -> PastPerformanceRecord:
        """Insert or replace record metadata."""
        with self._lock:
            records = dict(self._records)
            records[record.record_id] = record
            self._records = records
        return record

    def set_status(self, record_id: str, status: RecordStatus) -> PastPerformanceRecord:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFoundError(f"Unknown PP record: {record_id}")
            updated = replace(record, status=status)
            records = dict(self._records)
            records[record_id] = updated
            self._records = records
        return updated

    def commit_profile(
        self,
        profile: UnifiedContentProfile,
        associations: Sequence[PPTechnologyAssociation],
    ) -> Dict[str, int]:
        """
        Replace a record's profile and its associations in one step.

        Returns:
            usage_count deltas per technology id (+1 added, -1 removed)
        """
        with self._lock:
            old = {a.technology_id for a in self._associations.get(profile.record_id, ())}
            new = {a.technology_id for a in associations}

            profiles = dict(self._profiles)
            profiles[profile.record_id] = profile
            all_associations = dict(self._associations)
            all_associations[profile.record_id] = tuple(
                sorted(associations, key=lambda a: a.technology_id)
            )

            # Associations first: a reader holding the new profile must not
            # pair it with old technology evidence
            self._associations = all_associations
            self._profiles = profiles

        deltas = {tid: 1 for tid in new - old}
        deltas.update({tid: -1 for tid in old - new})
        return deltas
