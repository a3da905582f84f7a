"""
LLM Client Infrastructure
==========================

Wrapper for reasoning-model providers providing a clean interface for
chat completions.

This module abstracts the LLM client implementation following the
Dependency Inversion Principle - the triage engine depends on the
ILLMClient abstraction, not on the OpenAI SDK.
"""

import json
import re
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from openai import AsyncOpenAI

from scalemap.config import Settings
from scalemap.core import LLMException, ConfigurationError
from scalemap.shared.infrastructure.grafana import get_grafana_exporter


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: Optional[int],
        completion_tokens: Optional[int],
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.latency_ms = latency_ms

    @property
    def has_usage(self) -> bool:
        """Whether the provider reported token usage."""
        return self.prompt_tokens is not None and self.completion_tokens is not None

    @property
    def total_tokens(self) -> int:
        return (self.prompt_tokens or 0) + (self.completion_tokens or 0)


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Following Interface Segregation Principle - only methods
    actually needed by the application are defined.
    """

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 3000,
        json_response: bool = True,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Generate chat completion."""


class OpenAILLMClient(ILLMClient):
    """
    OpenAI client implementation for GPT models.

    Also serves OpenAI-compatible providers through base_url. The SDK's own
    retries are disabled; the enrichment client owns the retry policy.
    """

    def __init__(
        self,
        api_key: Optional[str],
        organization: Optional[str] = None,
        base_url: Optional[str] = None
    ):
        self._api_key = api_key
        if not self._api_key:
            raise ConfigurationError("OpenAI API key not configured")

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            organization=organization,
            base_url=base_url,
            max_retries=0
        )

    async def chat_completion(
        self,
        messages: List[dict],
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 3000,
        json_response: bool = True,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Generate chat completion using OpenAI GPT.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model identifier
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            json_response: Ask the model for a JSON object
            operation: Operation type for metrics (triage_enrichment, ...)

        Returns:
            ChatCompletionResult with generated text

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()

        kwargs = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_response:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        if not response.choices or not response.choices[0].message.content:
            raise LLMException("No content received from completion API")

        usage = response.usage
        result = ChatCompletionResult(
            content=response.choices[0].message.content,
            model=response.model or model,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            latency_ms=latency_ms
        )

        exporter = get_grafana_exporter()
        if exporter and exporter.is_enabled() and result.has_usage:
            await exporter.export_llm_metrics(
                model=result.model,
                prompt_tokens=result.prompt_tokens,
                completion_tokens=result.completion_tokens,
                latency_ms=latency_ms,
                operation=operation
            )

        return result


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for local runs and testing.

    Returns predictable responses without calling external APIs: every
    domain in the prompt comes back with its base score unchanged.
    """

    _DOMAINS_BLOCK = re.compile(r"Domains:\n(\[.*?\])\n\nReturn", re.DOTALL)

    async def chat_completion(
        self,
        messages: List[dict],
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 3000,
        json_response: bool = True,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Return mock enrichment echoing the base scores found in the prompt."""
        user_content = str(messages[-1].get("content", "")) if messages else ""
        match = self._DOMAINS_BLOCK.search(user_content)
        domains = json.loads(match.group(1)) if match else []

        analysis = {
            item["domain"]: {
                "adjustedScore": item["baseScore"],
                "confidence": 0.8,
                "reasoning": f"Mock: base score {item['baseScore']} confirmed from {item['numericAnswers']} answers.",
                "criticalFactors": [],
                "severity": "medium"
            }
            for item in domains
        }
        content = json.dumps({"domainAnalysis": analysis})

        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=len(user_content) // 4,
            completion_tokens=len(content) // 4,
            latency_ms=0
        )


def create_llm_client(settings: Settings) -> ILLMClient:
    """
    Build the LLM client selected by settings.

    Raises:
        ConfigurationError: real client requested without an API key
    """
    if settings.mock_llm:
        return MockLLMClient()
    return OpenAILLMClient(
        api_key=settings.openai_api_key,
        organization=settings.openai_organization,
        base_url=settings.llm_base_url
    )
