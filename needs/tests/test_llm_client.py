"""Tests for LLMClient provider abstraction."""

import logging
from unittest.mock import MagicMock

import pytest

from needs.common.llm_client import LLMClient


class TestLLMClientInit:
    def test_missing_anthropic_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="needs.common.llm_client"):
            client = LLMClient(provider="anthropic")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_openai_key_is_unavailable(self):
        assert not LLMClient(provider="openai").is_available

    def test_unsupported_provider_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="needs.common.llm_client"):
            client = LLMClient(provider="unsupported_xyz", api_key="k")
        assert not client.is_available
        assert "Unsupported" in caplog.text

    def test_from_config_picks_provider_model(self):
        from needs.common.config import LLMConfig
        cfg = LLMConfig(provider="openai", openai_model="gpt-4o")
        client = LLMClient.from_config(cfg)
        assert client.provider == "openai"
        assert client.model == "gpt-4o"
        assert not client.is_available


class TestLLMClientGenerate:
    def test_generate_raises_when_unavailable(self):
        client = LLMClient(provider="anthropic")
        with pytest.raises(RuntimeError, match="not available"):
            client.generate("test")

    def test_anthropic_generate(self):
        client = LLMClient(provider="anthropic", model="claude-test")
        mock_sdk = MagicMock()
        mock_sdk.messages.create.return_value = MagicMock(content=[MagicMock(text="  answer  ")])
        client._client = mock_sdk

        assert client.generate("prompt", system="be brief", timeout=5.0) == "answer"
        kwargs = mock_sdk.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "be brief"
        assert kwargs["timeout"] == 5.0

    def test_openai_generate_includes_system_message(self):
        client = LLMClient(provider="openai", model="gpt-test")
        mock_sdk = MagicMock()
        message = MagicMock()
        message.content = "ok"
        mock_sdk.chat.completions.create.return_value = MagicMock(choices=[MagicMock(message=message)])
        client._client = mock_sdk

        assert client.generate("prompt", system="sys") == "ok"
        messages = mock_sdk.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "sys"}
        assert messages[1] == {"role": "user", "content": "prompt"}

    def test_generate_json_parses_fenced_output(self):
        client = LLMClient(provider="anthropic")
        client._client = MagicMock()
        client.generate = MagicMock(return_value='```json\n{"proposed_status": "RED"}\n```')
        assert client.generate_json("prompt") == {"proposed_status": "RED"}
