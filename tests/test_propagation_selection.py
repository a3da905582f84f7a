"""Tests for cross-domain propagation, critical domain selection, compliance and narrative."""

import pytest

from scalemap.core import SelectionInvariantViolation
from scalemap.triage.domain import (
    CORRELATED_DOMAIN_PAIRS, BaseScore, CrossDomainPropagator, CriticalDomainSelector,
    DomainScore, IndustryComplianceChecker, IndustryContext, TriageResultAssembler, classify_score
)


def scored(domain: str, score: float, confidence: float = 0.8, factors=None, reasoning="reason") -> DomainScore:
    band = classify_score(score)
    return DomainScore(
        domain=domain,
        score=score,
        confidence=confidence,
        severity=band.severity,
        priority_level=band.priority_level,
        agent_activation=band.agent_activation,
        reasoning=reasoning,
        critical_factors=list(factors or [])
    )


@pytest.fixture
def propagator():
    return CrossDomainPropagator(CORRELATED_DOMAIN_PAIRS, boost=0.2, trigger=4.0)


class TestCrossDomainPropagator:
    """Tests for the single-pass correlated boost."""

    def test_partner_boosted_and_recorded(self, propagator):
        scores = {
            "strategic-alignment": scored("strategic-alignment", 4.2),
            "financial-management": scored("financial-management", 3.0),
        }
        original = scores["financial-management"]
        propagator.propagate(scores)

        assert scores["financial-management"].score == 3.2
        assert scores["financial-management"].cross_domain_impacts == ["strategic-alignment"]
        assert original.score == 3.0
        assert original.cross_domain_impacts == []
        assert scores["strategic-alignment"].score == 4.2
        assert scores["strategic-alignment"].cross_domain_impacts == []

    def test_severity_recomputed_after_boost(self, propagator):
        scores = {
            "revenue-engine": scored("revenue-engine", 4.6),
            "customer-experience": scored("customer-experience", 3.9),
        }
        propagator.propagate(scores)

        boosted = scores["customer-experience"]
        assert boosted.score == 4.1
        assert boosted.severity == "high"
        assert boosted.agent_activation == "REQUIRED"

    def test_no_cascade_from_boosted_domain(self, propagator):
        # financial-management crosses 4.0 only after its boost; it must not boost risk-compliance
        scores = {
            "strategic-alignment": scored("strategic-alignment", 4.5),
            "financial-management": scored("financial-management", 3.9),
            "risk-compliance": scored("risk-compliance", 2.0),
        }
        propagator.propagate(scores)

        assert scores["financial-management"].score == 4.1
        assert scores["risk-compliance"].score == 2.0
        assert scores["risk-compliance"].cross_domain_impacts == []

    def test_boost_once_per_triggering_partner(self, propagator):
        scores = {
            "strategic-alignment": scored("strategic-alignment", 4.0),
            "risk-compliance": scored("risk-compliance", 4.4),
            "financial-management": scored("financial-management", 3.0),
        }
        propagator.propagate(scores)

        target = scores["financial-management"]
        assert target.score == 3.4
        assert target.cross_domain_impacts == ["risk-compliance", "strategic-alignment"]
        assert len(target.cross_domain_impacts) <= len(propagator.partners_of("financial-management"))

    def test_boost_capped_at_five(self, propagator):
        scores = {
            "partnerships": scored("partnerships", 4.9),
            "customer-success": scored("customer-success", 4.95),
        }
        propagator.propagate(scores)
        assert scores["partnerships"].score == 5.0
        assert scores["customer-success"].score == 5.0

    def test_unscored_partner_ignored(self, propagator):
        scores = {"strategic-alignment": scored("strategic-alignment", 4.8)}
        propagator.propagate(scores)
        assert scores["strategic-alignment"].cross_domain_impacts == []


class TestCriticalDomainSelector:
    """Tests for top-k selection and the tie-break chain."""

    def test_fewer_than_minimum_selects_all(self):
        scores = {"a": scored("a", 2.0), "b": scored("b", 1.5)}
        assert CriticalDomainSelector(3, 5).select(scores) == ("a", "b")

    def test_minimum_three_when_nothing_required(self):
        scores = {name: scored(name, s) for name, s in [("a", 2.0), ("b", 3.0), ("c", 1.0), ("d", 2.5)]}
        assert CriticalDomainSelector(3, 5).select(scores) == ("b", "d", "a")

    def test_k_follows_required_count(self):
        scores = {name: scored(name, s) for name, s in [
            ("a", 4.1), ("b", 4.6), ("c", 4.0), ("d", 4.2), ("e", 2.0)
        ]}
        assert CriticalDomainSelector(3, 5).select(scores) == ("b", "d", "a", "c")

    def test_capped_at_maximum(self):
        scores = {f"d{i}": scored(f"d{i}", 4.5) for i in range(7)}
        selected = CriticalDomainSelector(3, 5).select(scores)
        assert selected == ("d0", "d1", "d2", "d3", "d4")

    def test_tie_break_chain(self):
        scores = {
            "zeta": scored("zeta", 4.0, confidence=0.9),
            "alpha": scored("alpha", 4.0, confidence=0.7, factors=["x"]),
            "beta": scored("beta", 4.0, confidence=0.7, factors=["x", "y"]),
            "gamma": scored("gamma", 4.0, confidence=0.7, factors=["x"]),
        }
        assert CriticalDomainSelector(3, 5).rank(scores) == ["zeta", "beta", "alpha", "gamma"]

    def test_invariant_violation(self):
        selector = CriticalDomainSelector(3, 5)
        selector.max_domains = 2
        scores = {name: scored(name, 2.0) for name in "abcd"}
        with pytest.raises(SelectionInvariantViolation):
            selector.select(scores)


class TestIndustryComplianceChecker:
    """Tests for the informational compliance report."""

    def test_missing_required_and_preferred(self):
        context = IndustryContext(
            sector="financial-services",
            required_domains=("risk-compliance", "financial-management"),
            preferred_domains=("technology-data",)
        )
        report = IndustryComplianceChecker().check(["risk-compliance", "revenue-engine", "partnerships"], context)

        assert not report.is_compliant
        assert report.violations == ("Missing required domain for financial-services: financial-management",)
        assert report.recommendations == ("Consider including technology-data for financial-services optimization",)

    def test_compliant_selection(self):
        context = IndustryContext(sector="retail", required_domains=("customer-experience",))
        report = IndustryComplianceChecker().check(["customer-experience"], context)
        assert report.is_compliant
        assert report.violations == ()


class TestTriageResultAssembler:
    """Tests for narrative and overall confidence."""

    def test_reasoning_mentions_industry_and_top_two(self, config):
        scores = {
            "a": scored("a", 4.8, reasoning="Severe cash flow gaps"),
            "b": scored("b", 4.2, reasoning="Weak pipeline"),
            "c": scored("c", 4.0, reasoning="Hidden third"),
        }
        context = IndustryContext(sector="retail", regulatory_classification="lightly-regulated",
                                  weighting_multipliers={"a": 1.2, "b": 1.0})
        reasoning = TriageResultAssembler(config).build_reasoning(scores, ("a", "b", "c"), context)

        assert reasoning.startswith("Industry context: retail (lightly-regulated); weighting applied to a.")
        assert "Severe cash flow gaps" in reasoning
        assert "Weak pipeline" in reasoning
        assert "Hidden third" not in reasoning

    def test_reasoning_excerpt_bounded(self):
        from scalemap.triage.domain import TriageConfiguration
        assembler = TriageResultAssembler(TriageConfiguration(reasoning_excerpt_chars=50))
        scores = {"a": scored("a", 4.8, reasoning="word " * 200)}
        reasoning = assembler.build_reasoning(scores, ("a",), IndustryContext())
        assert len(reasoning) < 300
        assert reasoning.endswith("...")

    def test_unknown_industry_sentence(self, config):
        sentence = TriageResultAssembler(config).industry_sentence(IndustryContext())
        assert "without industry weighting" in sentence

    def test_fallback_confidence_capped(self, config):
        scores = {"a": scored("a", 4.0, confidence=1.0)}
        base = {"a": BaseScore("a", 4.0, 1.0, 5, 0, 100.0)}
        assembler = TriageResultAssembler(config)

        assert assembler.overall_confidence(scores, base, 1.0, fallback_mode=False) == 1.0
        assert assembler.overall_confidence(scores, base, 1.0, fallback_mode=True) == 0.5

    def test_overall_confidence_weights(self, config):
        scores = {"a": scored("a", 4.0, confidence=0.8)}
        base = {"a": BaseScore("a", 4.0, 0.8, 4, 0, 80.0, variance=1.0)}
        confidence = TriageResultAssembler(config).overall_confidence(scores, base, 0.8, fallback_mode=False)
        assert confidence == pytest.approx(0.5 * 0.8 + 0.3 * 0.8 + 0.2 * 0.75)
