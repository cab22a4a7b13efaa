# src/vidflow/core/llm.py
"""LLM provider abstraction over LiteLLM with per-call cost accounting."""

from __future__ import annotations

import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from pydantic import BaseModel, Field

from vidflow.config import ProviderPricing, config
from vidflow.core.clock import utcnow
from vidflow.core.logs import EventType, LogLevel, Priority, get_event_logger

# Initialize EventLogger for LLM operations
event_logger = get_event_logger()


class LLMRequest(BaseModel):
    prompt: str
    system_prompt: str = ""
    temperature: float = 0.7
    max_tokens: int = 2000
    model: str | None = None
    role: str | None = None


class LLMResponse(BaseModel):
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    tokens_used: int = 0
    cost_usd: Decimal = Decimal("0")
    model: str = ""
    processed_at: datetime = Field(default_factory=utcnow)


class LLMProvider(Protocol):
    name: str

    async def complete(self, request: LLMRequest) -> LLMResponse: ...


def _usage_value(usage: Any, key: str) -> int:
    if usage is None:
        return 0
    value = getattr(usage, key, None)
    if value is None and isinstance(usage, dict):
        value = usage.get(key)
    return int(value or 0)


def compute_cost(
    pricing: ProviderPricing, input_tokens: int, output_tokens: int
) -> Decimal:
    """Price a call from its token counts."""
    return (
        pricing.cost_per_input_token * input_tokens
        + pricing.cost_per_output_token * output_tokens
    )


class LiteLLMProvider:
    """Provider that routes completions through ``litellm.acompletion``."""

    def __init__(
        self,
        name: str | None = None,
        model: str | None = None,
        api_base: str | None = None,
        api_key: str | None = None,
        pricing: ProviderPricing | None = None,
    ) -> None:
        self.name = name or config.llm.provider
        self.model = model or config.llm.model
        self.api_base = api_base if api_base is not None else config.llm.api_base
        self.api_key = api_key if api_key is not None else config.llm.api_key
        self.pricing = pricing or config.llm.pricing_for(self.name)

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Run one chat completion.

        Parameters
        ----------
        request:
            Prompt, sampling settings and an optional model override.

        Returns
        -------
        LLMResponse
            Generated text with token usage and the computed USD cost.
        """
        import litellm

        model = request.model or self.model
        start_time = time.time()
        event_logger.log(
            LogLevel.DEBUG,
            f"Sending request to {model}",
            event_type=EventType.LLM_REQUEST,
            priority=Priority.NORMAL,
            role=request.role,
            model=model,
            prompt_length=len(request.prompt),
            temperature=request.temperature,
        )
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        response: Any = await litellm.acompletion(
            model=model,
            messages=messages,
            api_base=self.api_base or None,
            api_key=self.api_key or None,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )
        content = response["choices"][0]["message"]["content"] or ""
        usage = response.get("usage")
        input_tokens = _usage_value(usage, "prompt_tokens")
        output_tokens = _usage_value(usage, "completion_tokens")
        cost = compute_cost(self.pricing, input_tokens, output_tokens)

        event_logger.log(
            LogLevel.INFO,
            f"Successfully received response from {model}",
            event_type=EventType.LLM_REQUEST,
            priority=Priority.NORMAL,
            role=request.role,
            model=model,
            duration=time.time() - start_time,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=str(cost),
        )
        return LLMResponse(
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            tokens_used=input_tokens + output_tokens,
            cost_usd=cost,
            model=model,
        )


class MockLLMProvider:
    """Offline provider that echoes the prompt back at no cost."""

    name = "mock"

    def __init__(self, model: str = "mock") -> None:
        self.model = model

    async def complete(self, request: LLMRequest) -> LLMResponse:
        first_line = request.prompt.strip().splitlines()[0] if request.prompt.strip() else ""
        content = f"[{request.role or 'agent'}] {first_line}".strip()
        words = len(request.prompt.split())
        return LLMResponse(
            content=content,
            input_tokens=words,
            output_tokens=len(content.split()),
            tokens_used=words + len(content.split()),
            cost_usd=Decimal("0"),
            model=self.model,
        )


def get_provider(name: str | None = None, model: str | None = None) -> LLMProvider:
    """Build the provider called ``name`` (default: the configured one)."""
    name = name or config.llm.provider
    if name == "mock":
        return MockLLMProvider()
    return LiteLLMProvider(name=name, model=model)


__all__ = [
    "LLMRequest",
    "LLMResponse",
    "LLMProvider",
    "LiteLLMProvider",
    "MockLLMProvider",
    "compute_cost",
    "get_provider",
]
