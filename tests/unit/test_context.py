"""
Unit tests for token-budgeted context selection.
"""

import pytest

from ppmatch.rag.context import BudgetCandidate, ContextBudgetSelector, estimate_tokens


def words(n: int, word: str = "word") -> str:
    return " ".join([word] * n)


@pytest.fixture
def selector():
    return ContextBudgetSelector()


class TestEstimateTokens:

    @pytest.mark.parametrize("text,tokens", [("", 0), ("one", 1), (words(10), 13), (words(100), 130)])
    def test_words_times_factor(self, text, tokens):
        assert estimate_tokens(text) == tokens


class TestContextBudgetSelector:

    def test_greedy_by_score(self, selector):
        candidates = [
            BudgetCandidate("pp-low", 0.2, words(10)),
            BudgetCandidate("pp-high", 0.9, words(10)),
            BudgetCandidate("pp-mid", 0.5, words(10)),
        ]
        selection = selector.select(candidates, budget_tokens=100)
        assert [s.record_id for s in selection.selected] == ["pp-high", "pp-mid", "pp-low"]
        assert selection.total_tokens == 39

    def test_budget_never_exceeded(self, selector):
        candidates = [BudgetCandidate(f"pp-{i}", 1.0 - i / 10, words(7 * (i + 1))) for i in range(8)]
        for budget in (0, 5, 20, 50, 100, 250):
            selection = selector.select(candidates, budget_tokens=budget)
            assert selection.total_tokens <= budget
            assert selection.total_tokens == sum(s.estimated_tokens for s in selection.selected)

    def test_falls_back_to_best_chunk(self, selector):
        candidate = BudgetCandidate(
            "pp-1", 0.9, words(100), name="Claims Modernization",
            chunks=[(0.4, "pp-1:g1:c0", words(10, "low")), (0.8, "pp-1:g1:c1", words(10, "best"))],
        )
        selection = selector.select([candidate], budget_tokens=20)

        item = selection.selected[0]
        assert item.truncated
        assert item.chunk_id == "pp-1:g1:c1"
        assert item.text.startswith("best")
        assert "(excerpt)" in selection.format()

    def test_stops_when_chunk_does_not_fit(self, selector):
        candidates = [
            BudgetCandidate("pp-big", 0.9, words(100), chunks=[(0.8, "pp-big:g1:c0", words(50))]),
            BudgetCandidate("pp-small", 0.5, words(10)),
        ]
        selection = selector.select(candidates, budget_tokens=20)
        assert selection.selected == []
        assert selection.skipped == ["pp-big", "pp-small"]
        assert selection.total_tokens == 0

    def test_selection_is_score_prefix(self, selector):
        candidates = [
            BudgetCandidate("pp-1", 0.9, words(10)),
            BudgetCandidate("pp-2", 0.8, words(100)),
            BudgetCandidate("pp-3", 0.7, words(10)),
            BudgetCandidate("pp-4", 0.6, words(10)),
            BudgetCandidate("pp-5", 0.5, words(10)),
        ]
        selection = selector.select(candidates, budget_tokens=60)

        assert [s.record_id for s in selection.selected] == ["pp-1"]
        assert selection.skipped == ["pp-2", "pp-3", "pp-4", "pp-5"]
        assert selection.total_tokens == 13

    def test_empty_text_uses_chunk(self, selector):
        candidate = BudgetCandidate("pp-1", 0.9, "", chunks=[(0.5, "pp-1:g1:c0", words(5))])
        selection = selector.select([candidate], budget_tokens=10)
        assert selection.selected[0].chunk_id == "pp-1:g1:c0"

    def test_format_numbers_entries(self, selector):
        selection = selector.select(
            [BudgetCandidate("pp-1", 0.9, "First text.", name="Alpha"), BudgetCandidate("pp-2", 0.5, "Second.")],
            budget_tokens=100,
        )
        assert selection.format() == "[1] Alpha\nFirst text.\n\n---\n\n[2] pp-2\nSecond."
        assert selection.to_dict()["budget_tokens"] == 100
