"""
Unit tests for the technology taxonomy and its approval workflow.
"""

import pytest

from ppmatch.core.config import TaxonomyConfig
from ppmatch.core.taxonomy import TechnologyTaxonomy
from ppmatch.shared.enums import ApprovalState, TechnologyCategory
from ppmatch.shared.exceptions import InvalidTransitionError, UnknownTechnologyError


class TestSeedVocabulary:

    def test_seed_loaded_and_approved(self, taxonomy):
        java = taxonomy.get("java")
        assert java is not None
        assert java.state == ApprovalState.APPROVED
        assert java.category == TechnologyCategory.LANGUAGE

    def test_seed_can_be_disabled(self):
        assert len(TechnologyTaxonomy(TaxonomyConfig(seed_vocabulary=False))) == 0
        assert len(TechnologyTaxonomy(seed=False)) == 0

    @pytest.mark.parametrize("term,technology_id", [
        ("JDK", "java"),
        ("springboot", "spring-boot"),
        ("Spring-Boot", "spring-boot"),
        ("node.js", "nodejs"),
        ("K8s", "kubernetes"),
        ("Amazon Web Services", "aws"),
    ])
    def test_resolve_aliases(self, taxonomy, term, technology_id):
        assert taxonomy.resolve(term).technology_id == technology_id

    def test_resolve_unknown(self, taxonomy):
        assert taxonomy.resolve("Quarkus") is None


class TestProposal:
    """New terms become pending only when confidence exceeds 0.6."""

    def test_below_threshold_not_created(self, taxonomy):
        assert taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.55) is None
        assert taxonomy.get("quarkus") is None

    def test_at_threshold_not_created(self, taxonomy):
        assert taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.6) is None

    def test_above_threshold_created_pending(self, taxonomy):
        tech = taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.65)
        assert tech is not None
        assert tech.technology_id == "quarkus"
        assert tech.state == ApprovalState.PENDING
        assert tech.decided_at is None

    def test_known_term_not_proposed(self, taxonomy):
        assert taxonomy.propose("OpenJDK", TechnologyCategory.LANGUAGE, 0.99) is None


class TestApprovalWorkflow:

    def test_approve_pending(self, taxonomy):
        taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)
        result = taxonomy.approve(["quarkus"])
        assert result.changed == ["quarkus"]
        tech = taxonomy.get("quarkus")
        assert tech.state == ApprovalState.APPROVED
        assert tech.decided_at is not None

    def test_bulk_result_partitions(self, taxonomy):
        taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)
        taxonomy.propose("Micronaut", TechnologyCategory.FRAMEWORK, 0.9)
        taxonomy.reject(["micronaut"])

        result = taxonomy.approve(["quarkus", "java", "micronaut", "missing", "quarkus"])

        assert result.changed == ["quarkus"]
        assert result.unchanged == ["java"]
        assert result.invalid == ["micronaut"]
        assert result.not_found == ["missing"]

    def test_rejected_cannot_be_approved(self, taxonomy):
        taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)
        taxonomy.transition("quarkus", ApprovalState.REJECTED)
        with pytest.raises(InvalidTransitionError):
            taxonomy.transition("quarkus", ApprovalState.APPROVED)

    def test_unknown_transition(self, taxonomy):
        with pytest.raises(UnknownTechnologyError):
            taxonomy.transition("nope", ApprovalState.APPROVED)

    def test_version_bumped_on_write(self, taxonomy):
        before = taxonomy.version
        taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)
        assert taxonomy.version > before

    def test_keyword_processor_cached_until_terms_change(self, taxonomy):
        first = taxonomy.keyword_processor()
        taxonomy.adjust_usage({"java": 1})
        taxonomy.approve(["java"])
        assert taxonomy.keyword_processor() is first

        taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)
        rebuilt = taxonomy.keyword_processor()
        assert rebuilt is not first
        assert rebuilt.extract_keywords("Quarkus services") == ["quarkus"]

    def test_keyword_processor_maps_to_alias_keys(self, taxonomy):
        found = taxonomy.keyword_processor().extract_keywords("Spring-Boot on K8s with Node.js")
        assert found == ["spring boot", "k8s", "nodejs"]
        assert all(key in taxonomy.alias_index() for key in found)


class TestAliasCollisions:
    """Shared aliases resolve by usage_count, then id, and are reported."""

    @pytest.fixture
    def colliding(self, empty_taxonomy):
        empty_taxonomy.add("Alpha", TechnologyCategory.TOOL, aliases=("shared",))
        empty_taxonomy.add("Beta", TechnologyCategory.TOOL, aliases=("shared",))
        return empty_taxonomy

    def test_tie_breaks_by_id(self, colliding):
        assert colliding.resolve("shared").technology_id == "alpha"

    def test_higher_usage_wins(self, colliding):
        colliding.adjust_usage({"beta": 3})
        assert colliding.resolve("shared").technology_id == "beta"

    def test_collision_recorded(self, colliding):
        colliding.resolve("shared")
        assert colliding.ambiguous_aliases() == {"shared": ["alpha", "beta"]}
        assert colliding.stats()["ambiguous_aliases"] == 1


class TestUsageAndSearch:

    def test_adjust_usage_never_negative(self, taxonomy):
        taxonomy.adjust_usage({"java": 2})
        taxonomy.adjust_usage({"java": -5})
        assert taxonomy.get("java").usage_count == 0

    def test_search_exact_before_prefix(self, taxonomy):
        results = taxonomy.search("spring")
        ids = [t.technology_id for t in results]
        assert ids[0] == "spring"
        assert "spring-boot" in ids

    def test_search_empty_query(self, taxonomy):
        assert taxonomy.search("   ") == []

    def test_stats(self, taxonomy):
        taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)
        taxonomy.adjust_usage({"java": 4})
        stats = taxonomy.stats()
        assert stats["total"] == len(taxonomy)
        assert stats["by_state"]["pending"] == 1
        assert stats["most_used"][0]["technology_id"] == "java"

    def test_grouped_by_category_approved_only(self, taxonomy):
        taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)
        grouped = taxonomy.grouped_by_category()
        framework_ids = [t.technology_id for t in grouped["framework"]]
        assert "spring-boot" in framework_ids
        assert "quarkus" not in framework_ids
