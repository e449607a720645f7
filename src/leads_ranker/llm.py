from __future__ import annotations

import time
from typing import Callable, Literal

from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.models import Model
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.models.openai import OpenAIChatModel, OpenAIChatModelSettings
from pydantic_ai.providers.anthropic import AnthropicProvider
from pydantic_ai.providers.google import GoogleProvider
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from leads_ranker.config import Settings
from leads_ranker.models import AIProvider

DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 4096

JSON_MODE_INSTRUCTIONS = "Respond with a single valid JSON object and nothing else."

# USD per 1M tokens
PRICING: dict[AIProvider, dict[str, tuple[float, float]]] = {
    AIProvider.openai: {
        "gpt-4o": (2.5, 10),
        "gpt-4o-mini": (0.15, 0.6),
        "gpt-4-turbo": (10, 30),
    },
    AIProvider.anthropic: {
        "claude-sonnet-4-20250514": (3, 15),
        "claude-3-5-sonnet-20241022": (3, 15),
        "claude-3-haiku-20240307": (0.25, 1.25),
    },
    AIProvider.gemini: {
        "gemini-2.0-flash": (0.1, 0.4),
        "gemini-1.5-pro": (1.25, 5),
        "gemini-1.5-flash": (0.075, 0.3),
    },
}

DEFAULT_COST_PER_MILLION = (3.0, 15.0)


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatOptions(BaseModel):
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    json_mode: bool = False


class ChatResponse(BaseModel):
    """Provider-agnostic result of one chat call."""

    content: str
    input_tokens: int
    output_tokens: int
    model: str
    provider: AIProvider
    cost: float
    duration_ms: int


ModelFactory = Callable[[AIProvider, str, str], Model]


def calculate_cost(provider: AIProvider, model: str, input_tokens: int, output_tokens: int) -> float:
    """Cost of a call in USD, falling back to a conservative default for unknown models."""
    input_price, output_price = PRICING.get(provider, {}).get(model, DEFAULT_COST_PER_MILLION)
    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000


def build_model(provider: AIProvider, model_name: str, api_key: str) -> Model:
    """Create the pydantic-ai model for a provider."""
    if provider is AIProvider.openai:
        return OpenAIChatModel(model_name=model_name, provider=OpenAIProvider(api_key=api_key))
    if provider is AIProvider.anthropic:
        return AnthropicModel(model_name, provider=AnthropicProvider(api_key=api_key))
    if provider is AIProvider.gemini:
        return GoogleModel(model_name, provider=GoogleProvider(api_key=api_key))
    raise ValueError(f"Unsupported provider: {provider}")


def _model_settings(provider: AIProvider, options: ChatOptions) -> ModelSettings:
    temperature = options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
    max_tokens = options.max_tokens or DEFAULT_MAX_TOKENS
    if provider is AIProvider.openai:
        return OpenAIChatModelSettings(temperature=temperature, max_tokens=max_tokens)
    return ModelSettings(temperature=temperature, max_tokens=max_tokens)


def _split_messages(messages: list[ChatMessage]) -> tuple[str | None, str]:
    """Fold chat messages into (instructions, prompt) for a single agent run."""
    system = [m.content for m in messages if m.role == "system"]
    turns = [m.content for m in messages if m.role != "system"]
    return ("\n\n".join(system) or None), "\n\n".join(turns)


class LLMClient:
    """
    Single entry point for chat calls across providers.

    Ranking and optimization code only ever sees `chat()` and `ChatResponse`;
    provider differences live in `build_model`.
    """

    def __init__(self, settings: Settings, model_factory: ModelFactory | None = None):
        self.settings = settings
        self._model_factory = model_factory or build_model
        self._models: dict[tuple[AIProvider, str], Model] = {}

    def available_providers(self) -> list[AIProvider]:
        return self.settings.available_providers()

    def require(self, provider: AIProvider) -> None:
        """Raise ProviderNotConfiguredError if `provider` has no credential."""
        self.settings.require_provider(provider)

    def _model(self, provider: AIProvider, model_name: str) -> Model:
        key = (provider, model_name)
        if key not in self._models:
            api_key = self.settings.require_provider(provider)
            self._models[key] = self._model_factory(provider, model_name, api_key)
        return self._models[key]

    async def chat(
        self,
        provider: AIProvider,
        messages: list[ChatMessage],
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        options = options or ChatOptions()
        model_name = options.model or self.settings.model_for(provider)
        model = self._model(provider, model_name)

        instructions, prompt = _split_messages(messages)
        if options.json_mode:
            instructions = f"{instructions}\n\n{JSON_MODE_INSTRUCTIONS}" if instructions else JSON_MODE_INSTRUCTIONS

        agent = Agent(model=model, output_type=str, instructions=instructions)

        started = time.perf_counter()
        run = await agent.run(prompt, model_settings=_model_settings(provider, options))
        duration_ms = int((time.perf_counter() - started) * 1000)

        usage = run.usage()
        input_tokens = usage.input_tokens or 0
        output_tokens = usage.output_tokens or 0
        return ChatResponse(
            content=run.output or "",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model_name,
            provider=provider,
            cost=calculate_cost(provider, model_name, input_tokens, output_tokens),
            duration_ms=duration_ms,
        )
