"""
PPMatch - Context-Budget Selector
=================================

SelectWithinBudget(rankedCandidates, budgetTokens) -> selected[]

Greedy over candidates in descending score order. A candidate costs the
estimated tokens of its narrative (unified text when no narrative). When
it does not fit the remaining budget, its highest-scoring capability chunk
is tried once in its place. The first candidate that fits neither way ends
the selection, and it and every lower-ranked candidate are reported as
skipped, so the selected records are always a prefix of the ranking. The
running total never exceeds the budget.

This is an approximation of a knapsack with estimated item costs, not an
exact optimum.

Usage:
    selector = ContextBudgetSelector()
    selection = selector.select(candidates, budget_tokens=4000)
    prompt_context = selection.format()
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# Token Estimation
# =============================================================================

def estimate_tokens(text: str) -> int:
    """
    Estimate token count for text.

    Words x 1.3 is close enough for budget planning.
    """
    if not text:
        return 0
    words = len(text.split())
    return int(words * 1.3)


# =============================================================================
# Models
# =============================================================================

@dataclass
class BudgetCandidate:
    """A ranked record offered to the selector."""
    record_id: str
    score: float
    text: str
    name: str = ""
    # (score, chunk_id, text) for capability chunks, any order
    chunks: List[Tuple[float, str, str]] = field(default_factory=list)

    def best_chunk(self) -> Optional[Tuple[float, str, str]]:
        if not self.chunks:
            return None
        return min(self.chunks, key=lambda c: (-c[0], c[1]))


@dataclass
class SelectedContext:
    """One included record."""
    record_id: str
    name: str
    score: float
    text: str
    estimated_tokens: int
    truncated: bool = False
    chunk_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'record_id': self.record_id,
            'name': self.name,
            'score': round(self.score, 4),
            'text': self.text,
            'estimated_tokens': self.estimated_tokens,
            'truncated': self.truncated,
            'chunk_id': self.chunk_id,
        }


@dataclass
class ContextSelection:
    """Selector output."""
    selected: List[SelectedContext]
    budget_tokens: int
    total_tokens: int
    skipped: List[str] = field(default_factory=list)

    def format(self) -> str:
        """Numbered context block for a completion prompt."""
        parts = []
        for i, item in enumerate(self.selected, 1):
            label = f"[{i}] {item.name or item.record_id}"
            if item.truncated:
                label += " (excerpt)"
            parts.append(f"{label}\n{item.text}")
        return "\n\n---\n\n".join(parts)

    def to_dict(self) -> Dict:
        return {
            'selected': [s.to_dict() for s in self.selected],
            'budget_tokens': self.budget_tokens,
            'total_tokens': self.total_tokens,
            'skipped': list(self.skipped),
        }


# =============================================================================
# Selector
# =============================================================================

class ContextBudgetSelector:
    """Greedy token-budget selection over ranked candidates."""

    def select(
        self,
        candidates: Sequence[BudgetCandidate],
        budget_tokens: int,
    ) -> ContextSelection:
        ordered = sorted(candidates, key=lambda c: -c.score)
        selected: List[SelectedContext] = []
        skipped: List[str] = []
        total = 0

        for position, candidate in enumerate(ordered):
            remaining = budget_tokens - total
            cost = estimate_tokens(candidate.text)
            if candidate.text and cost <= remaining:
                selected.append(SelectedContext(
                    record_id=candidate.record_id,
                    name=candidate.name,
                    score=candidate.score,
                    text=candidate.text,
                    estimated_tokens=cost,
                ))
                total += cost
                continue

            # One truncated attempt: best capability chunk only
            best = candidate.best_chunk()
            if best is not None:
                _, chunk_id, chunk_text = best
                chunk_cost = estimate_tokens(chunk_text)
                if chunk_text and chunk_cost <= remaining:
                    selected.append(SelectedContext(
                        record_id=candidate.record_id,
                        name=candidate.name,
                        score=candidate.score,
                        text=chunk_text,
                        estimated_tokens=chunk_cost,
                        truncated=True,
                        chunk_id=chunk_id,
                    ))
                    total += chunk_cost
                    continue

            # Selection is a score prefix: nothing ranked below a miss is included
            skipped = [c.record_id for c in ordered[position:]]
            break

        logger.debug(
            f"Context selection: {len(selected)} included, {len(skipped)} skipped, "
            f"{total}/{budget_tokens} tokens"
        )
        return ContextSelection(
            selected=selected,
            budget_tokens=budget_tokens,
            total_tokens=total,
            skipped=skipped,
        )
