"""Tests for LLMClient provider abstraction."""

import logging
import pytest
from unittest.mock import MagicMock

from knowledge.common.config import LLMConfig
from knowledge.common.errors import ConfigurationError, ProviderError
from knowledge.common.llm_client import LLMClient


class TestLLMClientInit:
    def test_missing_anthropic_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="knowledge.common.llm_client"):
            client = LLMClient(provider="anthropic")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_openai_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="knowledge.common.llm_client"):
            client = LLMClient(provider="openai")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_google_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="knowledge.common.llm_client"):
            client = LLMClient(provider="google")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_auto_provider_raises(self):
        with pytest.raises(ConfigurationError, match="auto"):
            LLMClient(provider="auto")

    def test_unsupported_provider_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="knowledge.common.llm_client"):
            client = LLMClient(provider="unsupported_xyz")
        assert not client.is_available
        assert "Unsupported" in caplog.text

    def test_from_config_picks_provider_model(self):
        cfg = LLMConfig(provider="openai", openai_model="gpt-test")
        client = LLMClient.from_config(cfg)
        assert client.provider == "openai"
        assert client.model == "gpt-test"
        assert not client.is_available


class TestLLMClientGenerate:
    def test_generate_raises_when_unavailable(self):
        client = LLMClient(provider="anthropic")
        with pytest.raises(ProviderError, match="not available"):
            client.generate("test")

    def test_anthropic_generate(self):
        client = LLMClient(provider="anthropic", model="claude-test")
        fake = MagicMock()
        fake.messages.create.return_value.content = [MagicMock(text="  rewritten  ")]
        client._client = fake

        assert client.generate("prompt", system="sys", max_tokens=64, timeout=5.0) == "rewritten"
        kwargs = fake.messages.create.call_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["max_tokens"] == 64
        assert kwargs["timeout"] == 5.0

    def test_openai_generate_prepends_system(self):
        client = LLMClient(provider="openai", model="gpt-test")
        fake = MagicMock()
        fake.chat.completions.create.return_value.choices = [
            MagicMock(message=MagicMock(content="answer"))
        ]
        client._client = fake

        assert client.generate("prompt", system="sys") == "answer"
        messages = fake.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "sys"}
        assert messages[1] == {"role": "user", "content": "prompt"}

    def test_sdk_errors_become_provider_error(self):
        client = LLMClient(provider="anthropic", model="claude-test")
        fake = MagicMock()
        boom = RuntimeError("rate limited")
        fake.messages.create.side_effect = boom
        client._client = fake

        with pytest.raises(ProviderError) as exc_info:
            client.generate("prompt")
        assert exc_info.value.provider == "anthropic"
        assert exc_info.value.__cause__ is boom
