"""
Triage External Service Adapters
==================================

Adapters for external services used by the triage module:
- Reasoning enrichment over the LLM client (one batched call per run)
- YAML loader for the industry rule table

Implements the interfaces defined in the application layer.
"""

import asyncio
import json
import time
from pathlib import Path
from typing import Callable, Awaitable, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from scalemap.config import SEVERITY_LEVELS
from scalemap.core import ConfigurationError, EnrichmentUnavailable
from scalemap.infrastructure.llm import ILLMClient, ChatCompletionResult
from scalemap.shared.infrastructure.logging import get_logger, log_latency
from scalemap.triage.application.services import IEnrichmentClient
from scalemap.triage.domain import (
    Assessment, BaseScore, DomainEnrichment, EnrichmentResult, EnrichmentPromptBuilder,
    FALLBACK_REASONING, IndustryContext, IndustryRule, IndustryRuleTable, TokenUsage,
    TriageConfiguration
)

logger = get_logger(__name__)

# Below this completion budget the model cannot answer for a full assessment
MIN_COMPLETION_TOKENS = 256


class FallbackReason(str):
    """Why enrichment degraded to base scores."""
    ERROR = "error"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    COST_GUARD = "cost_guard"
    TOKEN_BUDGET = "token_budget"
    CIRCUIT_OPEN = "circuit_open"
    DEADLINE = "deadline_exceeded"


# ========== Response schema ==========

class DomainAnalysisPayload(BaseModel):
    """One domain's entry in the model response. Every field is required."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    adjusted_score: float = Field(alias="adjustedScore", ge=1.0, le=5.0)
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = Field(min_length=1)
    critical_factors: List[str] = Field(alias="criticalFactors")
    severity: str

    @field_validator("severity")
    @classmethod
    def validate_severity(cls, v: str) -> str:
        """Ensure severity is one of the band names."""
        if v not in SEVERITY_LEVELS:
            raise ValueError(f"severity must be one of {SEVERITY_LEVELS}")
        return v


class EnrichmentPayload(BaseModel):
    """Top-level model response."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    domain_analysis: Dict[str, DomainAnalysisPayload] = Field(alias="domainAnalysis")


def extract_json(content: str) -> str:
    """Strip markdown code fences some models wrap around JSON."""
    if "```json" in content:
        return content.split("```json")[1].split("```")[0].strip()
    if "```" in content:
        return content.split("```")[1].split("```")[0].strip()
    return content.strip()


# ========== Enrichment client ==========

class ReasoningEnrichmentClient(IEnrichmentClient):
    """
    Batched reasoning-model enrichment with retry and fallback.

    Failures of the external call never reach the engine's caller: after
    one retry with backoff the client returns a degraded result built
    from the base scores.
    """

    OPERATION = "triage_enrichment"

    def __init__(
        self,
        llm_client: Optional[ILLMClient],
        config: TriageConfiguration,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if llm_client is None:
            raise ConfigurationError("Reasoning enrichment requires a configured LLM client")
        self._llm = llm_client
        self._config = config
        self._sleep = sleep

    # ----- estimates -----

    def estimate_tokens(self, messages: List[dict]) -> int:
        chars = sum(len(m.get("content", "")) for m in messages)
        return max(1, chars // self._config.chars_per_token)

    def projected_cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        return self._config.pricing_for(model).cost(prompt_tokens, completion_tokens)

    def select_model(self, prompt_tokens: int, completion_budget: int) -> Optional[str]:
        """
        Pick the first model whose projected cost fits under the ceiling.

        Returns None when neither the primary nor the cost-optimized model fits.
        """
        ceiling = self._config.max_cost_per_triage
        for model in (self._config.primary_model, self._config.cost_optimized_model):
            if self.projected_cost(model, prompt_tokens, completion_budget) <= ceiling:
                return model
        return None

    # ----- public API -----

    async def enrich(
        self,
        assessment: Assessment,
        base_scores: Dict[str, BaseScore],
        industry_context: IndustryContext,
        deadline: Optional[float] = None,
        allow_call: bool = True
    ) -> EnrichmentResult:
        """
        Enrich all candidate domains with one external call.

        Args:
            assessment: Assessment being triaged
            base_scores: Deterministic scores of the candidate domains
            industry_context: Resolved industry context
            deadline: time.monotonic() value by which the run must finish
            allow_call: False skips the call (e.g. open circuit breaker)

        Returns:
            EnrichmentResult, degraded when the call was skipped or failed
        """
        messages = [
            {"role": "system", "content": EnrichmentPromptBuilder.get_system_prompt()},
            {"role": "user", "content": EnrichmentPromptBuilder.build_prompt(
                assessment, base_scores, industry_context
            )}
        ]
        prompt_tokens = self.estimate_tokens(messages)

        if not allow_call:
            return self.fallback(base_scores, FallbackReason.CIRCUIT_OPEN, prompt_tokens)

        completion_budget = min(
            self._config.max_completion_tokens,
            self._config.max_tokens_per_request - prompt_tokens
        )
        if completion_budget < MIN_COMPLETION_TOKENS:
            logger.warning(
                "Enrichment prompt exceeds token budget, using base scores",
                extra={"assessment_id": assessment.id, "prompt_tokens": prompt_tokens}
            )
            return self.fallback(base_scores, FallbackReason.TOKEN_BUDGET, prompt_tokens)

        model = self.select_model(prompt_tokens, completion_budget)
        if model is None:
            logger.warning(
                "Projected enrichment cost exceeds ceiling, using base scores",
                extra={
                    "assessment_id": assessment.id,
                    "prompt_tokens": prompt_tokens,
                    "max_cost": self._config.max_cost_per_triage
                }
            )
            return self.fallback(base_scores, FallbackReason.COST_GUARD, prompt_tokens)

        spent = 0.0
        reason = FallbackReason.ERROR
        attempts = 0
        max_attempts = 1 + self._config.enrichment_max_retries

        for attempt in range(max_attempts):
            attempt_model = model if attempt == 0 else self._retry_model(
                model, prompt_tokens, completion_budget, spent
            )
            timeout = self._attempt_timeout(deadline)
            if timeout is None:
                reason = FallbackReason.DEADLINE
                break

            attempts += 1
            try:
                completion = await self._call(messages, attempt_model, completion_budget, timeout)
                domains = self._parse(completion.content, base_scores)
            except EnrichmentUnavailable as e:
                reason = e.reason
                spent += self.projected_cost(attempt_model, prompt_tokens, 0)
                logger.warning(
                    "Enrichment attempt failed",
                    extra={
                        "assessment_id": assessment.id,
                        "attempt": attempt + 1,
                        "model": attempt_model,
                        "reason": e.reason,
                        "error": e.message
                    }
                )
                if attempt < max_attempts - 1:
                    await self._backoff(attempt, deadline)
                continue

            return self._success(completion, attempt_model, domains, prompt_tokens, spent, attempts)

        logger.warning(
            "Enrichment unavailable, falling back to base scores",
            extra={"assessment_id": assessment.id, "reason": reason, "attempts": attempts}
        )
        return self.fallback(base_scores, reason, prompt_tokens, attempts=attempts, spent=spent, model=model)

    def fallback(
        self,
        base_scores: Dict[str, BaseScore],
        reason: str,
        prompt_tokens: int,
        attempts: int = 0,
        spent: float = 0.0,
        model: Optional[str] = None
    ) -> EnrichmentResult:
        """Degraded result: base scores, fixed confidence, no factors."""
        domains = {
            name: self._degraded_domain(name, base)
            for name, base in base_scores.items()
        }
        return EnrichmentResult(
            domains=domains,
            model_used=model or self._config.primary_model,
            token_usage=TokenUsage(prompt=prompt_tokens, completion=0, estimated=True),
            cost_estimate=round(spent, 6),
            attempts=attempts,
            degraded=True,
            fallback_reason=reason
        )

    # ----- internals -----

    def _degraded_domain(self, name: str, base: BaseScore) -> DomainEnrichment:
        return DomainEnrichment(
            domain=name,
            adjusted_score=base.score,
            confidence=self._config.fallback_confidence,
            reasoning=FALLBACK_REASONING,
            critical_factors=(),
            degraded=True
        )

    def _retry_model(self, model: str, prompt_tokens: int, completion_budget: int, spent: float) -> str:
        retry_model = self._config.fallback_model
        projected = spent + self.projected_cost(retry_model, prompt_tokens, completion_budget)
        if projected <= self._config.max_cost_per_triage:
            return retry_model
        return model

    def _attempt_timeout(self, deadline: Optional[float]) -> Optional[float]:
        timeout = self._config.enrichment_timeout_seconds
        if deadline is None:
            return timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        return min(timeout, remaining)

    async def _backoff(self, attempt: int, deadline: Optional[float]) -> None:
        delay = self._config.enrichment_retry_backoff_seconds * (2 ** attempt)
        if deadline is not None:
            delay = min(delay, max(0.0, deadline - time.monotonic()))
        if delay > 0:
            await self._sleep(delay)

    async def _call(
        self,
        messages: List[dict],
        model: str,
        max_tokens: int,
        timeout: float
    ) -> ChatCompletionResult:
        try:
            return await asyncio.wait_for(
                self._llm.chat_completion(
                    messages=messages,
                    model=model,
                    temperature=0.1,
                    max_tokens=max_tokens,
                    json_response=True,
                    operation=self.OPERATION
                ),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise EnrichmentUnavailable(FallbackReason.TIMEOUT, f"Enrichment timed out after {timeout:.1f}s")
        except Exception as e:
            raise EnrichmentUnavailable(FallbackReason.ERROR, f"Enrichment call failed: {e}")

    def _parse(self, content: str, base_scores: Dict[str, BaseScore]) -> Dict[str, DomainEnrichment]:
        """
        Validate the response against the schema.

        Any invalid field rejects the whole response. Candidate domains the
        model skipped are degraded individually; a response covering none
        of them counts as unparsable.
        """
        try:
            payload = EnrichmentPayload.model_validate(json.loads(extract_json(content or "")))
        except (ValueError, ValidationError) as e:
            raise EnrichmentUnavailable(FallbackReason.PARSE_ERROR, f"Unparsable enrichment response: {e}")

        analysis = payload.domain_analysis
        if not any(name in analysis for name in base_scores):
            raise EnrichmentUnavailable(FallbackReason.PARSE_ERROR, "Enrichment response covers no candidate domain")

        domains = {}
        for name, base in base_scores.items():
            entry = analysis.get(name)
            if entry is None:
                domains[name] = self._degraded_domain(name, base)
                continue
            domains[name] = DomainEnrichment(
                domain=name,
                adjusted_score=entry.adjusted_score,
                confidence=entry.confidence,
                reasoning=entry.reasoning.strip(),
                critical_factors=tuple(f.strip() for f in entry.critical_factors if f.strip()),
                severity_hint=entry.severity
            )
        return domains

    def _success(
        self,
        completion: ChatCompletionResult,
        model: str,
        domains: Dict[str, DomainEnrichment],
        prompt_tokens: int,
        spent: float,
        attempts: int
    ) -> EnrichmentResult:
        if completion.has_usage:
            usage = TokenUsage(prompt=completion.prompt_tokens, completion=completion.completion_tokens)
        else:
            usage = TokenUsage(
                prompt=prompt_tokens,
                completion=max(1, len(completion.content) // self._config.chars_per_token),
                estimated=True
            )
        cost = spent + self.projected_cost(model, usage.prompt, usage.completion)

        return EnrichmentResult(
            domains=domains,
            model_used=model,
            token_usage=usage,
            cost_estimate=round(cost, 6),
            attempts=attempts,
            degraded=False,
            latency_ms=completion.latency_ms
        )


# ========== Industry rules ==========

class IndustryRuleLoader:
    """
    Loads the industry rule table from YAML.

    A missing file means the built-in table; a malformed file is a
    configuration error, raised at startup rather than mid-triage.
    """

    def load(self, path: Optional[Path]) -> IndustryRuleTable:
        """Load rules from path, falling back to the built-in table."""
        if path is None or not Path(path).exists():
            logger.info("Industry rules file not found, using built-in table", extra={"path": str(path)})
            return IndustryRuleTable.default()

        with log_latency(logger, "industry_rules_load", path=str(path)):
            try:
                with open(path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid industry rules file {path}: {e}")

            sectors = data.get("sectors", data) if isinstance(data, dict) else None
            if not isinstance(sectors, dict):
                raise ConfigurationError(f"Industry rules file {path} must map sector names to rules")

            try:
                return IndustryRuleTable(
                    sectors={name: IndustryRule(**(rule or {})) for name, rule in sectors.items()}
                )
            except (TypeError, ValidationError) as e:
                raise ConfigurationError(f"Invalid industry rules in {path}: {e}")

    @staticmethod
    def summarize(table: IndustryRuleTable) -> Tuple[str, ...]:
        return tuple(sorted(table.sectors))
