"""Tests for the batched reasoning enrichment client."""

import asyncio
import json
import time

import pytest
from pydantic import ValidationError

from scalemap.core import ConfigurationError
from scalemap.infrastructure.llm import MockLLMClient, OpenAILLMClient
from scalemap.triage.domain import (
    BaseScore, EnrichmentPromptBuilder, FALLBACK_REASONING, IndustryContext, TriageConfiguration
)
from scalemap.triage.infrastructure import ReasoningEnrichmentClient, FallbackReason, DomainAnalysisPayload

from conftest import FakeLLMClient, domain_entry, enrichment_json, make_assessment


@pytest.fixture
def assessment():
    return make_assessment({
        "risk-compliance": [4, 5, 4, "No audit trail for payments"],
        "financial-management": [3, 3, 4],
    })


@pytest.fixture
def base_scores():
    return {
        "risk-compliance": BaseScore("risk-compliance", 4.3333, 0.75, 3, 1, 100.0),
        "financial-management": BaseScore("financial-management", 3.3333, 0.9, 3, 0, 100.0),
    }


@pytest.fixture
def context():
    return IndustryContext()


VALID_RESPONSE = enrichment_json({
    "risk-compliance": domain_entry(4.6, 0.9, "Payments lack audit trail", ["no audit trail"], "critical"),
    "financial-management": domain_entry(3.5, 0.8, "Stable but thin reserves", [], "medium"),
})


class TestConstruction:
    """Tests for construction-time failures."""

    def test_missing_llm_client_is_fatal(self, config):
        with pytest.raises(ConfigurationError):
            ReasoningEnrichmentClient(None, config)

    def test_openai_client_requires_key(self):
        with pytest.raises(ConfigurationError):
            OpenAILLMClient(api_key=None)


class TestSuccessfulEnrichment:
    """Tests for the happy path."""

    async def test_single_batched_call(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(VALID_RESPONSE)
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert len(llm.calls) == 1
        assert llm.calls[0]["model"] == "gpt-4o-mini"
        prompt = llm.calls[0]["messages"][-1]["content"]
        assert "risk-compliance" in prompt and "financial-management" in prompt
        assert "No audit trail for payments" in prompt

        assert not result.degraded
        assert result.fallback_reason is None
        assert result.attempts == 1
        risk = result.domains["risk-compliance"]
        assert risk.adjusted_score == 4.6
        assert risk.critical_factors == ("no audit trail",)
        assert risk.severity_hint == "critical"

    async def test_cost_from_reported_usage(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(VALID_RESPONSE, usage=(1000, 500))
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert result.token_usage.total == 1500
        assert not result.token_usage.estimated
        assert result.cost_estimate == pytest.approx((1000 * 0.00012 + 500 * 0.00048) / 1000)

    async def test_usage_estimated_when_not_reported(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(VALID_RESPONSE, usage=None)
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert result.token_usage.estimated
        assert result.token_usage.completion == len(VALID_RESPONSE) // 4

    async def test_code_fenced_json_accepted(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(f"```json\n{VALID_RESPONSE}\n```")
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)
        assert not result.degraded

    async def test_missing_domain_degrades_only_that_domain(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(enrichment_json({"risk-compliance": domain_entry(4.6)}))
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert not result.degraded
        assert not result.domains["risk-compliance"].degraded
        skipped = result.domains["financial-management"]
        assert skipped.degraded
        assert skipped.adjusted_score == 3.3333
        assert skipped.reasoning == FALLBACK_REASONING

    async def test_mock_client_echoes_base_scores(self, config, assessment, base_scores, context):
        result = await ReasoningEnrichmentClient(MockLLMClient(), config).enrich(assessment, base_scores, context)

        assert not result.degraded
        assert result.domains["risk-compliance"].adjusted_score == 4.33
        assert result.domains["financial-management"].confidence == 0.8


class TestFallback:
    """Tests for the degraded path."""

    def _assert_fallback(self, result, base_scores, reason):
        assert result.degraded
        assert result.fallback_reason == reason
        for name, base in base_scores.items():
            domain = result.domains[name]
            assert domain.adjusted_score == base.score
            assert domain.confidence == 0.5
            assert domain.reasoning == "fallback: base score used"
            assert domain.critical_factors == ()

    async def test_error_retried_once_then_fallback(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(RuntimeError("boom"))
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert len(llm.calls) == 2
        assert result.attempts == 2
        self._assert_fallback(result, base_scores, FallbackReason.ERROR)
        assert result.token_usage.estimated

    async def test_retry_uses_fallback_model(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(RuntimeError("boom"), VALID_RESPONSE)
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert [call["model"] for call in llm.calls] == ["gpt-4o-mini", "gpt-4o"]
        assert not result.degraded
        assert result.model_used == "gpt-4o"
        assert result.attempts == 2

    async def test_backoff_between_attempts(self, assessment, base_scores, context):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        config = TriageConfiguration(enrichment_retry_backoff_seconds=1.5)
        llm = FakeLLMClient(RuntimeError("boom"))
        await ReasoningEnrichmentClient(llm, config, sleep=fake_sleep).enrich(assessment, base_scores, context)

        assert delays == [1.5]

    @pytest.mark.parametrize("content", [
        "not json at all",
        json.dumps({"unexpected": {}}),
        enrichment_json({"risk-compliance": domain_entry(7.5)}),
        enrichment_json({"risk-compliance": domain_entry(4.0, confidence=1.3)}),
        enrichment_json({"risk-compliance": {"adjustedScore": 4.0, "confidence": 0.8}}),
        enrichment_json({"risk-compliance": domain_entry(4.0, severity="extreme")}),
        enrichment_json({"people-organization": domain_entry(4.0)}),
    ])
    async def test_invalid_response_falls_back(self, config, assessment, base_scores, context, content):
        llm = FakeLLMClient(content)
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)
        self._assert_fallback(result, base_scores, FallbackReason.PARSE_ERROR)

    def test_severity_must_be_a_band_name(self):
        with pytest.raises(ValidationError):
            DomainAnalysisPayload.model_validate(domain_entry(4.0, severity="severe"))
        assert DomainAnalysisPayload.model_validate(domain_entry(4.0, severity="medium")).severity == "medium"

    async def test_timeout_falls_back(self, assessment, base_scores, context):
        config = TriageConfiguration(enrichment_timeout_seconds=0.05, enrichment_retry_backoff_seconds=0.0)
        llm = FakeLLMClient(VALID_RESPONSE, delay=1.0)
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert result.attempts == 2
        self._assert_fallback(result, base_scores, FallbackReason.TIMEOUT)

    async def test_expired_deadline_skips_call(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(VALID_RESPONSE)
        result = await ReasoningEnrichmentClient(llm, config).enrich(
            assessment, base_scores, context, deadline=time.monotonic() - 1
        )

        assert llm.calls == []
        assert result.attempts == 0
        self._assert_fallback(result, base_scores, FallbackReason.DEADLINE)

    async def test_circuit_open_skips_call(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(VALID_RESPONSE)
        result = await ReasoningEnrichmentClient(llm, config).enrich(
            assessment, base_scores, context, allow_call=False
        )

        assert llm.calls == []
        assert result.cost_estimate == 0.0
        self._assert_fallback(result, base_scores, FallbackReason.CIRCUIT_OPEN)

    async def test_cancellation_propagates(self, config, assessment, base_scores, context):
        llm = FakeLLMClient(VALID_RESPONSE, delay=5.0)
        task = asyncio.create_task(
            ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)
        )
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestCostGuard:
    """Tests for the pre-call cost and token guards."""

    async def test_ceiling_exceeded_skips_call(self, assessment, base_scores, context):
        config = TriageConfiguration(max_cost_per_triage=0.0)
        llm = FakeLLMClient(VALID_RESPONSE)
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert llm.calls == []
        assert result.degraded
        assert result.fallback_reason == FallbackReason.COST_GUARD
        assert result.cost_estimate == 0.0

    async def test_cost_optimized_model_chosen(self, assessment, base_scores, context):
        config = TriageConfiguration(
            primary_model="gpt-4o",
            cost_optimized_model="gpt-4o-mini",
            max_cost_per_triage=0.01
        )
        llm = FakeLLMClient(VALID_RESPONSE)
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert llm.calls[0]["model"] == "gpt-4o-mini"
        assert not result.degraded

    async def test_prompt_over_token_budget(self, base_scores, context):
        long_text = "x" * 300
        assessment = make_assessment({
            "risk-compliance": [4, 5, 4] + [long_text] * 6,
            "financial-management": [3, 3, 4] + [long_text] * 6,
        })
        config = TriageConfiguration(max_tokens_per_request=500)
        llm = FakeLLMClient(VALID_RESPONSE)
        result = await ReasoningEnrichmentClient(llm, config).enrich(assessment, base_scores, context)

        assert llm.calls == []
        assert result.fallback_reason == FallbackReason.TOKEN_BUDGET

    def test_token_estimate_uses_four_chars(self, config):
        client = ReasoningEnrichmentClient(MockLLMClient(), config)
        assert client.estimate_tokens([{"role": "user", "content": "a" * 400}]) == 100


class TestPromptBuilder:
    """Tests for the enrichment prompt."""

    def test_prompt_lists_every_candidate_domain(self, assessment, base_scores, context):
        prompt = EnrichmentPromptBuilder.build_prompt(assessment, base_scores, context)
        block = prompt.split("Domains:\n", 1)[1].split("\n\nReturn", 1)[0]
        domains = json.loads(block)

        assert [d["domain"] for d in domains] == ["financial-management", "risk-compliance"]
        assert domains[1]["freeText"] == ["No audit trail for payments"]
        assert domains[0]["industryMultiplier"] == 1.0
