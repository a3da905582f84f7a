"""
Triage Scoring
==============

Deterministic building blocks of the triage pipeline.

Every class here is pure: it takes value objects in and hands value
objects back, holds nothing between calls and never touches the network.
The analyzer in the application layer wires them together around the
single enrichment call.
"""

from dataclasses import replace
from statistics import pvariance
from typing import Dict, Iterable, List, Optional, Tuple

from scalemap.config import AgentActivation, RegulatoryClassification, UNKNOWN_SECTOR
from scalemap.core import (
    MalformedAssessmentError, InsufficientDataError, SelectionInvariantViolation
)
from scalemap.triage.domain.entities import (
    Assessment, BaseScore, DomainResponse, DomainScore, EnrichmentResult,
    IndustryClassification, IndustryCompliance, IndustryContext
)
from scalemap.triage.domain.value_objects import (
    IndustryRuleTable, TriageConfiguration, ValidationReport, classify_score
)

FALLBACK_REASONING = "fallback: base score used"

# Float slack for completeness comparisons (2/5 must count as 40%)
_EPSILON = 1e-9


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def clamp_score(value: float) -> float:
    """Clamp to [1.0, 5.0] and drop float noise so band edges behave (3.0 * 1.4 == 4.2)."""
    return round(clamp(value, 1.0, 5.0), 4)


class SkipReason(str):
    """Why an input domain is absent from domain_scores."""
    EXCLUDED = "excluded_by_industry_rules"
    NO_ANSWERS = "no_answers"
    BELOW_THRESHOLD = "below_completeness_threshold"


# ========== Completeness & shape ==========

class AssessmentValidator:
    """
    Rejects structurally invalid or under-answered assessments.

    Runs before any external call so unusable input never costs tokens.
    """

    def __init__(self, min_completeness: float = 0.4):
        self.min_completeness = min_completeness

    def validate(
        self,
        assessment: Assessment,
        excluded_domains: Iterable[str] = ()
    ) -> ValidationReport:
        """
        Check shape and per-domain completeness.

        Args:
            assessment: Assessment to check
            excluded_domains: Domains the industry rules remove from scoring

        Returns:
            ValidationReport listing scoreable and skipped domains

        Raises:
            MalformedAssessmentError: domain_responses is missing or empty
            InsufficientDataError: no domain reaches the completeness threshold
        """
        responses = assessment.domain_responses
        if not responses:
            raise MalformedAssessmentError(assessment.id)

        excluded = set(excluded_domains)
        scoreable: List[str] = []
        skipped: Dict[str, str] = {}
        completeness: Dict[str, float] = {}

        for name in sorted(responses):
            response = responses[name]
            completeness[name] = response.completeness

            if name in excluded:
                skipped[name] = SkipReason.EXCLUDED
            elif response.answered_count == 0:
                skipped[name] = SkipReason.NO_ANSWERS
            elif response.completeness / 100 + _EPSILON < self.min_completeness:
                skipped[name] = SkipReason.BELOW_THRESHOLD
            else:
                scoreable.append(name)

        if not scoreable:
            raise InsufficientDataError(self.min_completeness, completeness, assessment.id, skipped)

        return ValidationReport(
            scoreable_domains=tuple(scoreable),
            skipped_domains=skipped,
            completeness=completeness
        )


# ========== Base score ==========

class BaseScoreCalculator:
    """Turns raw answers into a deterministic 1-5 score per domain."""

    def __init__(self, config: TriageConfiguration):
        self._config = config

    def calculate(self, domain: str, response: DomainResponse) -> Optional[BaseScore]:
        """
        Mean of the numeric answers; nulls and free text stay out of the average.

        Returns None when the domain has no usable answers at all. A domain
        with only free text gets the neutral score and a capped confidence.
        """
        numeric = response.numeric_answers
        free_text = response.free_text_answers

        if not numeric:
            if not free_text:
                return None
            return BaseScore(
                domain=domain,
                score=self._config.text_only_score,
                confidence=min(self._config.text_only_confidence_cap, response.completeness / 100),
                numeric_count=0,
                free_text_count=len(free_text),
                completeness=response.completeness
            )

        mean = sum(numeric) / len(numeric)
        variance = pvariance(numeric) if len(numeric) > 1 else 0.0
        numeric_ratio = len(numeric) / max(response.total_questions, 1)
        confidence = clamp(min(numeric_ratio, 1 - variance / 25), 0.1, 1.0)

        return BaseScore(
            domain=domain,
            score=clamp_score(mean),
            confidence=round(confidence, 4),
            numeric_count=len(numeric),
            free_text_count=len(free_text),
            completeness=response.completeness,
            variance=variance
        )

    def calculate_all(
        self,
        assessment: Assessment,
        domains: Iterable[str]
    ) -> Dict[str, BaseScore]:
        """Score each named domain, leaving out domains with nothing to score."""
        responses = assessment.domain_responses or {}
        scores = {}
        for name in domains:
            base = self.calculate(name, responses[name])
            if base is not None:
                scores[name] = base
        return scores


# ========== Industry context ==========

class IndustryContextResolver:
    """
    Maps an industry classification to weighting multipliers and rules.

    Never fails because industry data is missing: unknown input degrades
    to unweighted scoring.
    """

    def __init__(self, rule_table: IndustryRuleTable):
        self._rules = rule_table

    def resolve(
        self,
        classification: Optional[IndustryClassification],
        domains: Iterable[str] = ()
    ) -> IndustryContext:
        """
        Resolve the context for a classification.

        Args:
            classification: Industry classification, or None
            domains: Domains that need an explicit multiplier entry

        Returns:
            IndustryContext with a multiplier for every requested domain
        """
        domains = list(domains)

        if classification is None or not classification.sector:
            return IndustryContext(
                sector=UNKNOWN_SECTOR,
                regulatory_classification=RegulatoryClassification.LIGHTLY,
                weighting_multipliers={d: 1.0 for d in domains}
            )

        rule = self._rules.get(classification.sector)
        if rule is None:
            return IndustryContext(
                sector=classification.sector,
                regulatory_classification=(
                    classification.regulatory_classification or RegulatoryClassification.LIGHTLY
                ),
                weighting_multipliers={d: 1.0 for d in domains}
            )

        multipliers = {d: 1.0 for d in domains}
        multipliers.update(rule.weighting_multipliers)

        return IndustryContext(
            sector=classification.sector,
            regulatory_classification=(
                classification.regulatory_classification or rule.regulatory_classification
            ),
            weighting_multipliers=multipliers,
            required_domains=tuple(rule.required_domains),
            preferred_domains=tuple(rule.preferred_domains),
            excluded_domains=tuple(rule.excluded_domains),
            benchmarks=dict(rule.benchmarks),
            special_considerations=tuple(rule.special_considerations)
        )

    def excluded_domains(self, classification: Optional[IndustryClassification]) -> Tuple[str, ...]:
        """Domains the sector removes from scoring."""
        if classification is None:
            return ()
        rule = self._rules.get(classification.sector)
        return tuple(rule.excluded_domains) if rule else ()


# ========== Combination & severity ==========

class ScoreCombiner:
    """Merges base and enriched scores and applies industry weighting."""

    def __init__(self, config: TriageConfiguration):
        self._config = config

    def combine(
        self,
        base_scores: Dict[str, BaseScore],
        enrichment: Optional[EnrichmentResult],
        industry_context: IndustryContext
    ) -> Dict[str, DomainScore]:
        """
        combined = clamp(adjusted * multiplier, 1, 5); severity from the band table.

        Confidence comes from the enrichment only when that domain was
        genuinely enriched; otherwise the fixed fallback confidence is used.
        """
        combined: Dict[str, DomainScore] = {}

        for name in sorted(base_scores):
            base = base_scores[name]
            enriched = enrichment.domains.get(name) if enrichment else None
            multiplier = industry_context.multiplier_for(name)

            if enriched is not None and not enriched.degraded and not enrichment.degraded:
                adjusted = enriched.adjusted_score
                confidence = enriched.confidence
                reasoning = enriched.reasoning
                factors = list(enriched.critical_factors)
            else:
                adjusted = base.score
                confidence = self._config.fallback_confidence
                reasoning = FALLBACK_REASONING
                factors = []

            if base.text_only:
                confidence = min(confidence, self._config.text_only_confidence_cap)

            score = clamp_score(adjusted * multiplier)
            band = classify_score(score)

            combined[name] = DomainScore(
                domain=name,
                score=score,
                confidence=clamp(confidence, 0.0, 1.0),
                severity=band.severity,
                priority_level=band.priority_level,
                agent_activation=band.agent_activation,
                reasoning=reasoning,
                critical_factors=factors,
                base_score=base.score,
                industry_multiplier=multiplier
            )

        return combined


# ========== Cross-domain propagation ==========

class CrossDomainPropagator:
    """
    Applies fixed boosts between correlated domain pairs.

    Single pass over a pre-propagation snapshot; boosts never cascade.
    """

    def __init__(
        self,
        pairs: Iterable[Tuple[str, str]],
        boost: float = 0.2,
        trigger: float = 4.0
    ):
        self.boost = boost
        self.trigger = trigger
        self._partners: Dict[str, set] = {}
        for left, right in pairs:
            if left == right:
                continue
            self._partners.setdefault(left, set()).add(right)
            self._partners.setdefault(right, set()).add(left)

    def partners_of(self, domain: str) -> set:
        return set(self._partners.get(domain, set()))

    def propagate(self, scores: Dict[str, DomainScore]) -> Dict[str, DomainScore]:
        """Boost every partner of a triggering domain once per pair; boosted entries are replaced in the dict."""
        triggering = {name for name, s in scores.items() if s.score >= self.trigger}

        for name in sorted(scores):
            sources = sorted(p for p in self._partners.get(name, ()) if p in triggering)
            if not sources:
                continue

            target = scores[name]
            new_score = target.score
            for _ in sources:
                new_score = clamp_score(new_score + self.boost)

            band = classify_score(new_score)
            scores[name] = replace(
                target,
                score=new_score,
                severity=band.severity,
                priority_level=band.priority_level,
                agent_activation=band.agent_activation,
                cross_domain_impacts=target.cross_domain_impacts + sources
            )

        return scores


# ========== Critical domain selection ==========

class CriticalDomainSelector:
    """Chooses the domains that get a deep-dive agent pass."""

    def __init__(self, min_domains: int = 3, max_domains: int = 5):
        self.min_domains = min_domains
        self.max_domains = max_domains

    @staticmethod
    def priority_key(score: DomainScore) -> tuple:
        """Score desc, confidence desc, critical factor count desc, domain id asc."""
        return (-score.score, -score.confidence, -len(score.critical_factors), score.domain)

    def rank(self, scores: Dict[str, DomainScore]) -> List[str]:
        return [s.domain for s in sorted(scores.values(), key=self.priority_key)]

    def select(self, scores: Dict[str, DomainScore]) -> Tuple[str, ...]:
        """
        Top k domains where k = max(min, #REQUIRED), capped at max.

        Fewer scored domains than the minimum selects all of them; unscored
        domains are never used as padding.
        """
        ranked = self.rank(scores)
        if len(ranked) < self.min_domains:
            return tuple(ranked)

        required = sum(1 for s in scores.values() if s.agent_activation == AgentActivation.REQUIRED)
        k = min(self.max_domains, max(self.min_domains, required))
        selected = tuple(ranked[:k])

        if len(selected) < self.min_domains:
            raise SelectionInvariantViolation(len(selected), len(ranked), self.min_domains)
        return selected


# ========== Industry compliance ==========

class IndustryComplianceChecker:
    """Informational check of a selection against the sector's rules."""

    def check(
        self,
        selected: Iterable[str],
        industry_context: IndustryContext,
        max_domains: int = 5
    ) -> IndustryCompliance:
        selected = list(selected)
        violations = []
        recommendations = []

        for required in industry_context.required_domains:
            if required not in selected:
                violations.append(f"Missing required domain for {industry_context.sector}: {required}")

        for excluded in industry_context.excluded_domains:
            if excluded in selected:
                violations.append(f"Excluded domain selected for {industry_context.sector}: {excluded}")

        if len(selected) < max_domains:
            for preferred in industry_context.preferred_domains:
                if preferred not in selected:
                    recommendations.append(
                        f"Consider including {preferred} for {industry_context.sector} optimization"
                    )

        return IndustryCompliance(
            is_compliant=not violations,
            violations=tuple(violations),
            recommendations=tuple(recommendations)
        )


# ========== Narrative & overall confidence ==========

class TriageResultAssembler:
    """Builds the reasoning narrative and the aggregate confidence."""

    def __init__(self, config: TriageConfiguration):
        self._config = config

    def _excerpt(self, text: str) -> str:
        limit = self._config.reasoning_excerpt_chars
        text = " ".join(text.split())
        if len(text) <= limit:
            return text
        return text[:limit - 3].rstrip() + "..."

    def industry_sentence(self, industry_context: IndustryContext) -> str:
        if not industry_context.is_known:
            return "No industry classification was supplied; domains were scored without industry weighting."
        weighted = sorted(d for d, m in industry_context.weighting_multipliers.items() if m != 1.0)
        if not weighted:
            return (
                f"Industry context: {industry_context.sector} "
                f"({industry_context.regulatory_classification}); no sector weighting applied."
            )
        return (
            f"Industry context: {industry_context.sector} "
            f"({industry_context.regulatory_classification}); weighting applied to {', '.join(weighted)}."
        )

    def build_reasoning(
        self,
        scores: Dict[str, DomainScore],
        critical_domains: Tuple[str, ...],
        industry_context: IndustryContext
    ) -> str:
        """Industry sentence followed by the top two critical domains' reasoning."""
        parts = [self.industry_sentence(industry_context)]
        if critical_domains:
            parts.append(
                f"Triage identified {len(critical_domains)} critical domains: {', '.join(critical_domains)}."
            )
        for name in critical_domains[:2]:
            score = scores[name]
            parts.append(f"{name} ({score.score:.1f}, {score.severity}): {self._excerpt(score.reasoning)}")
        return " ".join(parts)

    def overall_confidence(
        self,
        scores: Dict[str, DomainScore],
        base_scores: Dict[str, BaseScore],
        mean_completeness: float,
        fallback_mode: bool
    ) -> float:
        """
        0.5 * mean domain confidence + 0.3 * completeness + 0.2 * response quality.

        Capped at the fallback confidence when enrichment was unavailable.
        """
        if not scores:
            return 0.0
        mean_confidence = sum(s.confidence for s in scores.values()) / len(scores)
        quality = sum(clamp(1 - b.variance / 4, 0.0, 1.0) for b in base_scores.values()) / max(len(base_scores), 1)

        confidence = clamp(0.5 * mean_confidence + 0.3 * mean_completeness + 0.2 * quality, 0.0, 1.0)
        if fallback_mode:
            confidence = min(confidence, self._config.fallback_confidence)
        return round(confidence, 4)
