"""
Unit tests for technology extraction and version handling.
"""

from unittest.mock import patch

import pytest

from ppmatch.core.tech_extractor import TechnologyExtractor
from ppmatch.core.versioning import VersionRequirement, format_version, parse_version
from ppmatch.shared.enums import ApprovalState, TechnologyCategory


# =============================================================================
# Versions
# =============================================================================

class TestVersionParsing:

    @pytest.mark.parametrize("text,expected", [
        ("17", (17,)),
        ("v3.4", (3, 4)),
        ("17.0.2", (17, 0, 2)),
        ("17+", (17,)),
        ("none", None),
        ("", None),
    ])
    def test_parse_version(self, text, expected):
        assert parse_version(text) == expected

    def test_format_version(self):
        assert format_version((17, 0, 2)) == "17.0.2"


class TestVersionRequirement:

    @pytest.mark.parametrize("text", ["17+", "17 or later", "17 or higher", "17 or above"])
    def test_open_ended(self, text):
        requirement = VersionRequirement.parse(text)
        assert requirement.version == (17,)
        assert requirement.open_ended

    def test_exact(self):
        requirement = VersionRequirement.parse("17")
        assert not requirement.open_ended
        assert requirement.label() == "17"

    @pytest.mark.parametrize("have,ok", [("21", True), ("17.0.2", True), ("11", False), (None, False)])
    def test_open_ended_satisfaction(self, have, ok):
        assert VersionRequirement.parse("17+").is_satisfied_by(have) is ok

    @pytest.mark.parametrize("have,ok", [("17", True), ("17.0.2", True), ("21", False)])
    def test_exact_matches_prefix(self, have, ok):
        assert VersionRequirement.parse("17").is_satisfied_by(have) is ok


# =============================================================================
# Known Terms
# =============================================================================

class TestKnownTermExtraction:

    def test_detects_terms_with_versions(self, extractor):
        matches = extractor.extract("Developed using Java 17 and Spring Boot on AWS.")
        by_id = {m.technology_id: m for m in matches}

        assert set(by_id) == {"java", "spring-boot", "aws"}
        assert by_id["java"].version == "17"
        assert by_id["spring-boot"].version is None
        for match in matches:
            assert 0.6 <= match.confidence <= 1.0

    def test_longest_match_wins(self, extractor):
        hits = extractor.find_hits("The Spring Boot services")
        assert set(hits) == {"spring-boot"}

    def test_punctuated_and_hyphenated_aliases(self, extractor):
        hits = extractor.find_hits("Services on Node.js, C# and .NET with Spring-Boot.")
        assert set(hits) == {"nodejs", "csharp", "dotnet", "spring-boot"}

    def test_spans_point_into_original_text(self, extractor):
        text = "Built on NODE.JS 18 and Java 17."
        hits = extractor.find_hits(text)

        start, end = hits["nodejs"].spans[0]
        assert text[start:end] == "NODE.JS"
        assert hits["nodejs"].versions == [(18,)]
        assert text[hits["java"].version_starts[0]:].startswith("17")

    def test_mentions_counted_per_span(self, extractor):
        hits = extractor.find_hits("K8s today, Kubernetes tomorrow, OpenShift later.")
        assert len(hits["kubernetes"].spans) == 3

    def test_ambiguous_alias_resolved_by_usage(self, empty_taxonomy):
        empty_taxonomy.add("Alpha", TechnologyCategory.TOOL, aliases=("shared",))
        empty_taxonomy.add("Beta", TechnologyCategory.TOOL, aliases=("shared",))
        empty_taxonomy.adjust_usage({"beta": 3})

        hits = TechnologyExtractor(empty_taxonomy).find_hits("Deployed with Shared tooling.")
        assert set(hits) == {"beta"}

    def test_year_is_not_a_version(self, extractor):
        matches = extractor.extract("Migrated Java 2019 workloads to the cloud.")
        java = next(m for m in matches if m.technology_id == "java")
        assert java.version is None

    def test_version_behind_connector(self, extractor):
        matches = extractor.extract("The system uses Java version 11 throughout.")
        java = next(m for m in matches if m.technology_id == "java")
        assert java.version == "11"

    def test_version_boost(self, extractor):
        text_plain = "x " * 400 + "Java x"
        text_versioned = "x " * 400 + "Java 8"
        plain = extractor.extract(text_plain)[0]
        versioned = extractor.extract(text_versioned)[0]
        assert versioned.confidence == pytest.approx(plain.confidence + 0.1)

    def test_results_sorted(self, extractor):
        matches = extractor.extract("Java, Scrum and Docker. Java again with Docker.")
        keys = [(-m.confidence, m.technology_id) for m in matches]
        assert keys == sorted(keys)

    def test_idempotent(self, extractor):
        text = "We built services with the Quarkus framework on Kubernetes."
        first = extractor.extract(text)
        second = extractor.extract(text)
        assert [(m.technology_id, m.confidence, m.version) for m in first] == \
            [(m.technology_id, m.confidence, m.version) for m in second]

    def test_rejected_terms_ignored(self, extractor, taxonomy):
        taxonomy.propose("Quarkus", TechnologyCategory.FRAMEWORK, 0.9)
        taxonomy.reject(["quarkus"])
        matches = extractor.extract("Quarkus services", propose_new=False)
        assert "quarkus" not in {m.technology_id for m in matches}

    def test_empty_text(self, extractor):
        assert extractor.extract("   ") == []

    def test_association_carries_snippet(self, extractor):
        match = extractor.extract("Developed using Java 17 for the agency.")[0]
        association = match.to_association("pp-1")
        assert association.record_id == "pp-1"
        assert "Java 17" in association.context_snippet


# =============================================================================
# Unknown Terms
# =============================================================================

class TestNewTermProposal:
    """Unknown capitalised terms become pending above the threshold only."""

    TEXT = "Our team adopted the Quarkus framework."

    def test_low_confidence_candidate_not_created(self, taxonomy):
        extractor = TechnologyExtractor(taxonomy)
        with patch.object(extractor, "score_candidate", return_value=0.55):
            report = extractor.extract_with_report(self.TEXT)
        assert report.new_technologies == []
        assert taxonomy.get("quarkus") is None

    def test_high_confidence_candidate_created_pending(self, taxonomy):
        extractor = TechnologyExtractor(taxonomy)
        with patch.object(extractor, "score_candidate", return_value=0.65):
            report = extractor.extract_with_report(self.TEXT)

        assert [t.technology_id for t in report.new_technologies] == ["quarkus"]
        tech = taxonomy.get("quarkus")
        assert tech.state == ApprovalState.PENDING
        assert tech.category == TechnologyCategory.FRAMEWORK
        match = next(m for m in report.matches if m.technology_id == "quarkus")
        assert match.is_new

    def test_candidate_score_components(self, extractor):
        text = "z " * 200 + "Zephyr"
        base = extractor.score_candidate("Zephyr", text, has_descriptor=False, has_version=False)
        with_descriptor = extractor.score_candidate("Zephyr", text, has_descriptor=True, has_version=False)
        with_both = extractor.score_candidate("Zephyr", text, has_descriptor=True, has_version=True)
        assert base == pytest.approx(0.4)
        assert with_descriptor == pytest.approx(0.55)
        assert with_both == pytest.approx(0.7)

    def test_stopword_prefix_stripped(self, taxonomy):
        extractor = TechnologyExtractor(taxonomy)
        with patch.object(extractor, "score_candidate", return_value=0.9):
            report = extractor.extract_with_report("The Micronaut framework was used.")
        assert [t.name for t in report.new_technologies] == ["Micronaut"]
