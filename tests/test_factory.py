"""Tests for provider resolution."""

import logging

import pytest

from llm_gateway.config import DEFAULT_ZHIPUAI_BASE_URL, Provider, get_api_key, get_settings
from llm_gateway.factory import get_provider, supported_providers
from llm_gateway.providers import (
    AnthropicProvider,
    BedrockProvider,
    OpenAIProvider,
    OpenAIResponsesProvider,
    ZhipuaiProvider,
)


class TestGetProvider:
    @pytest.mark.parametrize(
        "name, expected_cls, interaction_type",
        [
            ("openai", OpenAIProvider, "openai:chatCompletions"),
            ("openai-responses", OpenAIResponsesProvider, "openai:responses"),
            ("anthropic", AnthropicProvider, "anthropic:messages"),
            ("bedrock", BedrockProvider, "bedrock:converse"),
            ("zhipuai", ZhipuaiProvider, "zhipuai:chatCompletions"),
        ],
    )
    def test_every_protocol_resolves(self, name, expected_cls, interaction_type):
        provider = get_provider(name)

        assert type(provider) is expected_cls
        assert provider.provider == name
        assert provider.interaction_type == interaction_type

    def test_enum_and_string_are_equivalent(self):
        assert type(get_provider(Provider.ANTHROPIC)) is type(get_provider("anthropic"))

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unsupported provider: gemini"):
            get_provider("gemini")

    def test_custom_logger_is_used(self, caplog):
        logger = logging.getLogger("tests.factory")

        provider = get_provider("openai", logger=logger)
        with caplog.at_level(logging.INFO, logger="tests.factory"):
            provider._log("hello")

        assert provider.logger is logger
        assert "[OpenAIProvider] hello" in caplog.text

    def test_supported_providers(self):
        assert set(supported_providers()) == set(Provider)

    def test_adapters_carry_provider_label(self):
        provider = get_provider("zhipuai")

        assert provider.create_request_adapter({"model": "glm-4.5"}).provider == "zhipuai"
        assert provider.create_response_adapter({"id": "x", "choices": []}).provider == "zhipuai"
        assert provider.create_stream_adapter().provider == "zhipuai"


class TestSettings:
    @pytest.fixture
    def clean_settings(self, monkeypatch):
        for name in ("ZHIPUAI_BASE_URL", "OPENAI_BASE_URL", "BEDROCK_REGION", "AWS_REGION"):
            monkeypatch.delenv(name, raising=False)
        get_settings.cache_clear()
        yield monkeypatch
        get_settings.cache_clear()

    def test_defaults(self, clean_settings):
        assert get_provider("zhipuai").get_base_url() == DEFAULT_ZHIPUAI_BASE_URL
        assert get_provider("openai").get_base_url() is None
        assert get_settings().bedrock.region == "us-east-1"

    def test_environment_overrides(self, clean_settings):
        clean_settings.setenv("OPENAI_BASE_URL", "http://localhost:4000/v1")
        clean_settings.setenv("AWS_REGION", "eu-west-1")
        get_settings.cache_clear()

        assert get_provider("openai").get_base_url() == "http://localhost:4000/v1"
        assert get_settings().bedrock.region == "eu-west-1"

    def test_get_api_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        monkeypatch.delenv("ZHIPUAI_API_KEY", raising=False)

        assert get_api_key(Provider.ANTHROPIC) == "sk-ant-test"
        with pytest.raises(RuntimeError, match="ZHIPUAI_API_KEY missing"):
            get_api_key(Provider.ZHIPUAI)
        with pytest.raises(RuntimeError, match="No config"):
            get_api_key(Provider.BEDROCK)
