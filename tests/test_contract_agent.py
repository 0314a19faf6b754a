"""Tests for ContractAgent and JSON extraction."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from aiguard.ai.agents import ContractAgent, extract_json_object
from aiguard.ai.agents.contract import CONTRACT_SYSTEM_PROMPT, PARAMETERS_SYSTEM_PROMPT
from aiguard.ai.client import DeepSeekClient
from aiguard.services.cache import ResponseCache
from aiguard.services.errors import (
    AuthenticationError,
    InvalidGenerationError,
    MaxRetriesExceededError,
    NetworkError,
    ValidationError,
)
from aiguard.services.retry import RetryConfig
from aiguard.services.stores import MemoryCacheStore
from aiguard.settings import Settings

SOLIDITY = "pragma solidity ^0.8.20;\n\ncontract Token {}"


@pytest.fixture
def client(logger) -> MagicMock:
    mock = MagicMock(spec=DeepSeekClient)
    mock.logger = logger
    mock.settings = Settings(deepseek_api_key="sk-test")
    mock.complete = AsyncMock(return_value=SOLIDITY)
    return mock


@pytest.fixture
def agent(client) -> ContractAgent:
    return ContractAgent(client=client)


class TestExtractJsonObject:
    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"name": "Token", "supply": 1000}\n```\nEnjoy.'
        assert extract_json_object(text) == {"name": "Token", "supply": 1000}

    def test_bare_object(self):
        assert extract_json_object('Params: {"symbol": "TKN"} done') == {"symbol": "TKN"}

    def test_whole_text(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    @pytest.mark.parametrize("text", ["no json here", "[1, 2]", "{broken"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            extract_json_object(text)


class TestGenerateSmartContract:
    @pytest.mark.asyncio
    async def test_prompt_and_options(self, agent, client):
        code = await agent.generate_smart_contract(
            "ERC20-Tax", {"name": "Token", "buyTax": 5}
        )
        assert code == SOLIDITY

        prompt, system_prompt, options, correlation_id = client.complete.await_args.args
        assert "- name: Token" in prompt
        assert "- buyTax: 5" in prompt
        assert "ERC20 compliant" in prompt
        assert "Buy and sell tax mechanisms" in prompt
        assert system_prompt == CONTRACT_SYSTEM_PROMPT
        assert options.temperature == 0.2
        assert options.max_tokens == 4000
        assert options.timeout_ms == 60000
        assert correlation_id.startswith("ai-")

    @pytest.mark.asyncio
    async def test_plain_contract_has_no_erc20_section(self, agent, client):
        await agent.generate_smart_contract("escrow", {"arbiter": "0xabc"})
        prompt = client.complete.await_args.args[0]
        assert "ERC20 compliant" not in prompt

    @pytest.mark.asyncio
    async def test_invalid_parameters(self, agent, client):
        with pytest.raises(ValidationError):
            await agent.generate_smart_contract("erc20", "not a dict")
        client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_api_errors_propagate(self, agent, client, records):
        client.complete.side_effect = MaxRetriesExceededError(3, NetworkError("reset"))
        with pytest.raises(MaxRetriesExceededError):
            await agent.generate_smart_contract("erc20", {"name": "Token"})
        assert records[-1].message.startswith("Contract generation failed")


class TestGenerateDeploymentParameters:
    @pytest.mark.asyncio
    async def test_parses_reply(self, agent, client):
        client.complete.return_value = '```json\n{"name": "Token", "symbol": "TKN"}\n```'
        params = await agent.generate_deployment_parameters(
            "erc20", "A token called Token with symbol TKN"
        )
        assert params == {"name": "Token", "symbol": "TKN"}

        prompt, system_prompt, options, _ = client.complete.await_args.args
        assert 'User input: "A token called Token with symbol TKN"' in prompt
        assert system_prompt == PARAMETERS_SYSTEM_PROMPT
        assert options.temperature == 0.3
        assert options.timeout_ms == 30000

    @pytest.mark.asyncio
    async def test_unparsable_reply_returns_empty(self, agent, client):
        client.complete.return_value = "I could not work that out."
        assert await agent.generate_deployment_parameters("erc20", "something") == {}

    @pytest.mark.asyncio
    async def test_empty_input_raises(self, agent, client):
        with pytest.raises(ValidationError):
            await agent.generate_deployment_parameters("erc20", "")
        client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_api_errors_propagate(self, agent, client):
        client.complete.side_effect = NetworkError("reset")
        with pytest.raises(NetworkError):
            await agent.generate_deployment_parameters("erc20", "Token")

    @pytest.mark.asyncio
    async def test_missing_api_key_returns_empty(self, agent, client, records):
        client.settings = Settings(deepseek_api_key="")
        assert await agent.generate_deployment_parameters("erc20", "Token") == {}
        client.complete.assert_not_awaited()
        assert records[-1].message.startswith("Cannot generate deployment parameters")


class TestMissingApiKey:
    @pytest.mark.asyncio
    async def test_smart_contract_raises_authentication_error(self, agent, client):
        client.settings = Settings(deepseek_api_key="")
        with pytest.raises(AuthenticationError):
            await agent.generate_smart_contract("erc20", {"name": "Token"})
        client.complete.assert_not_awaited()


def deepseek_reply(*contents: str):
    """MockTransport handler answering each request with the next content."""
    queue = list(contents)
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        content = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": content}}]}
        )

    return handler, requests


@pytest.fixture
def make_agent(logger):
    def build(handler) -> ContractAgent:
        client = DeepSeekClient(
            Settings(deepseek_api_key="sk-test", deepseek_base_url="https://api.deepseek.test"),
            cache=ResponseCache(MemoryCacheStore(logger=logger), logger=logger),
            retry_config=RetryConfig(max_retries=0),
            logger=logger,
            transport=httpx.MockTransport(handler),
        )
        return ContractAgent(client=client)

    return build


class TestGeneratedCodeValidation:
    @pytest.mark.asyncio
    async def test_reply_without_contract_is_rejected(self, make_agent):
        handler, requests = deepseek_reply("Sorry, I cannot help with that.")
        agent = make_agent(handler)

        with pytest.raises(InvalidGenerationError) as exc_info:
            await agent.generate_smart_contract("escrow", {"arbiter": "0xabc"})
        assert exc_info.value.generated_content == "Sorry, I cannot help with that."
        assert exc_info.value.retryable is True
        await agent.client.close()

    @pytest.mark.asyncio
    async def test_rejected_reply_is_not_cached(self, make_agent):
        handler, requests = deepseek_reply("no code here", SOLIDITY)
        agent = make_agent(handler)

        with pytest.raises(InvalidGenerationError):
            await agent.generate_smart_contract("escrow", {"arbiter": "0xabc"})
        assert await agent.generate_smart_contract("escrow", {"arbiter": "0xabc"}) == SOLIDITY
        assert await agent.generate_smart_contract("escrow", {"arbiter": "0xabc"}) == SOLIDITY

        assert len(requests) == 2
        body = json.loads(requests[0].content)
        assert body["temperature"] == 0.2
        await agent.client.close()
