"""
Provider-agnostic LLM client for the extraction and evaluation stages.

Supports Anthropic, OpenAI, and Google Gemini with a shared text-generation
interface. Provider SDKs are imported lazily so that a deployment running
the rule-based stand-ins needs none of them.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Optional

from .config import LLMConfig
from .llm_utils import parse_llm_json

logger = logging.getLogger("needs.common.llm_client")

SUPPORTED_PROVIDERS = ("anthropic", "openai", "google")


class LLMClient:
    """Unified text generation client across LLM providers."""

    def __init__(
        self,
        provider: str = "anthropic",
        model: str = "",
        api_key: Optional[str] = None,
        temperature: float = 0.1,
    ) -> None:
        self.provider = (provider or "anthropic").lower()
        self.model = model
        self.temperature = temperature
        self._client = None
        self._google_models = {}

        if self.provider not in SUPPORTED_PROVIDERS:
            logger.warning("Unsupported LLM provider: %s", self.provider)
            return

        if not api_key:
            logger.info("%s API key not provided, LLM client unavailable", self.provider)
            return

        try:
            if self.provider == "anthropic":
                import anthropic

                self._client = anthropic.Anthropic(api_key=api_key)
            elif self.provider == "openai":
                from openai import OpenAI

                self._client = OpenAI(api_key=api_key)
            else:
                import google.generativeai as genai

                genai.configure(api_key=api_key)
                self._client = genai  # module; models are built per system prompt
        except ImportError:
            logger.warning("%s SDK not installed", self.provider)
        except Exception as e:
            logger.warning("Failed to initialize %s client: %s", self.provider, e)

    @classmethod
    def from_config(cls, llm_config: LLMConfig) -> "LLMClient":
        provider = (llm_config.provider or "anthropic").lower()
        return cls(
            provider=provider,
            model=llm_config.model_for(provider),
            api_key=llm_config.api_key_for(provider),
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        timeout: float = 30.0,
    ) -> str:
        if not self.is_available:
            raise RuntimeError("LLM client is not available")

        if self.provider == "anthropic":
            kwargs = {}
            if system:
                kwargs["system"] = system
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
                **kwargs,
            )
            return response.content[0].text.strip()

        if self.provider == "openai":
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            response = self._client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=self.temperature,
                messages=messages,
                timeout=timeout,
            )
            return (response.choices[0].message.content or "").strip()

        cache_key = hashlib.md5((system or "").encode()).hexdigest()
        if cache_key not in self._google_models:
            kwargs = {"model_name": self.model}
            if system:
                kwargs["system_instruction"] = system
            self._google_models[cache_key] = self._client.GenerativeModel(**kwargs)
        model = self._google_models[cache_key]
        response = model.generate_content(
            prompt,
            generation_config={"max_output_tokens": max_tokens, "temperature": self.temperature},
            request_options={"timeout": timeout},
        )
        return response.text.strip()

    def generate_json(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        timeout: float = 30.0,
    ) -> dict:
        """Generate and parse a JSON object; returns {} when nothing parses."""
        raw = self.generate(prompt, system=system, max_tokens=max_tokens, timeout=timeout)
        return parse_llm_json(raw)
