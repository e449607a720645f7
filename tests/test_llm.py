"""Tests for leads_ranker.llm -- the provider-agnostic chat adapter."""
import asyncio

import pytest
from pydantic_ai.messages import ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from leads_ranker.config import ProviderNotConfiguredError
from leads_ranker.llm import (
    DEFAULT_COST_PER_MILLION,
    JSON_MODE_INSTRUCTIONS,
    ChatMessage,
    ChatOptions,
    LLMClient,
    calculate_cost,
)
from leads_ranker.models import AIProvider


class TestCalculateCost:
    def test_known_model(self):
        assert calculate_cost(AIProvider.openai, "gpt-4o-mini", 1_000_000, 1_000_000) == pytest.approx(0.75)

    def test_unknown_model_uses_default_pricing(self):
        input_price, output_price = DEFAULT_COST_PER_MILLION
        cost = calculate_cost(AIProvider.anthropic, "claude-unknown", 2_000_000, 1_000_000)
        assert cost == pytest.approx(2 * input_price + output_price)


@pytest.fixture
def recorded():
    return {}


@pytest.fixture
def client(settings, recorded):
    def reply(messages, info: AgentInfo) -> ModelResponse:
        recorded["instructions"] = messages[-1].instructions
        recorded["model_settings"] = info.model_settings
        return ModelResponse(parts=[TextPart('{"rankings": []}')])

    def factory(provider, model_name, api_key):
        recorded["factory"] = (provider, model_name, api_key)
        return FunctionModel(reply)

    return LLMClient(settings, model_factory=factory)


class TestLLMClient:
    def test_chat_returns_normalized_response(self, client, recorded):
        response = asyncio.run(
            client.chat(AIProvider.openai, [ChatMessage(role="user", content="rank these")], ChatOptions())
        )
        assert response.content == '{"rankings": []}'
        assert response.provider is AIProvider.openai
        assert response.model == "gpt-4o-mini"
        assert response.duration_ms >= 0
        assert response.cost == pytest.approx(
            calculate_cost(AIProvider.openai, "gpt-4o-mini", response.input_tokens, response.output_tokens)
        )
        assert recorded["factory"] == (AIProvider.openai, "gpt-4o-mini", "sk-test")

    def test_options_are_forwarded(self, client, recorded):
        asyncio.run(
            client.chat(
                AIProvider.openai,
                [ChatMessage(role="user", content="x")],
                ChatOptions(temperature=0.7, max_tokens=4000),
            )
        )
        assert recorded["model_settings"]["temperature"] == 0.7
        assert recorded["model_settings"]["max_tokens"] == 4000

    def test_json_mode_adds_instructions(self, client, recorded):
        asyncio.run(
            client.chat(
                AIProvider.openai,
                [ChatMessage(role="system", content="Be precise."), ChatMessage(role="user", content="x")],
                ChatOptions(json_mode=True),
            )
        )
        assert "Be precise." in recorded["instructions"]
        assert JSON_MODE_INSTRUCTIONS in recorded["instructions"]

    def test_model_override(self, client, recorded):
        response = asyncio.run(
            client.chat(AIProvider.openai, [ChatMessage(role="user", content="x")], ChatOptions(model="gpt-4o"))
        )
        assert response.model == "gpt-4o"
        assert recorded["factory"][1] == "gpt-4o"

    def test_unconfigured_provider_raises(self, client):
        with pytest.raises(ProviderNotConfiguredError) as exc_info:
            asyncio.run(client.chat(AIProvider.anthropic, [ChatMessage(role="user", content="x")]))
        assert "anthropic API key not configured" in str(exc_info.value)

    def test_require(self, client):
        client.require(AIProvider.openai)
        with pytest.raises(ProviderNotConfiguredError):
            client.require(AIProvider.gemini)

    def test_available_providers(self, client):
        assert client.available_providers() == [AIProvider.openai]
