"""
Provider-agnostic LLM client for the knowledge pipeline.

Supports Anthropic, OpenAI, and Google Gemini with a shared text-generation
interface. Used by the query rewriter; any object with a compatible
``generate`` method can stand in for it.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from .config import LLMConfig
from .errors import ConfigurationError, ProviderError

logger = logging.getLogger("knowledge.common.llm_client")


class TextGenerator(Protocol):
    """Single-completion language-model collaborator."""

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        timeout: float = 30.0,
    ) -> str:
        ...


class LLMClient:
    """Unified text generation client across LLM providers."""

    def __init__(
        self,
        provider: str = "anthropic",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
    ) -> None:
        self.provider = (provider or "anthropic").lower()
        self.model = model
        self._client = None

        if self.provider == "auto":
            raise ConfigurationError(
                '"auto" provider must be resolved before creating LLMClient. '
                "Pick one of anthropic, openai or google."
            )

        connectors = {
            "anthropic": (self._connect_anthropic, anthropic_api_key),
            "openai": (self._connect_openai, openai_api_key),
            "google": (self._connect_google, google_api_key),
        }
        if self.provider not in connectors:
            logger.warning("Unsupported LLM provider: %s", self.provider)
            return

        connect, api_key = connectors[self.provider]
        if not api_key:
            logger.info("%s API key not provided, LLM client unavailable", self.provider)
            return

        try:
            self._client = connect(api_key)
        except ImportError as e:
            logger.warning("SDK for %s not installed: %s", self.provider, e)
        except Exception as e:
            logger.warning("Failed to initialize %s client: %s", self.provider, e)

    @staticmethod
    def _connect_anthropic(api_key: str):
        import anthropic

        return anthropic.Anthropic(api_key=api_key)

    @staticmethod
    def _connect_openai(api_key: str):
        from openai import OpenAI

        return OpenAI(api_key=api_key)

    def _connect_google(self, api_key: str):
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        self._google_models = {}  # GenerativeModel per system prompt
        return genai

    @classmethod
    def from_config(cls, config: LLMConfig) -> "LLMClient":
        """Build a client for the provider selected in ``config``."""
        models = {
            "anthropic": config.anthropic_model,
            "openai": config.openai_model,
            "google": config.google_model,
        }
        provider = (config.provider or "anthropic").lower()
        return cls(
            provider=provider,
            model=models.get(provider, ""),
            anthropic_api_key=config.anthropic_api_key or None,
            openai_api_key=config.openai_api_key or None,
            google_api_key=config.google_api_key or None,
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
            raise ProviderError("LLM client is not available", provider=self.provider)

        try:
            return self._generate(prompt, system=system, max_tokens=max_tokens, timeout=timeout)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{self.provider} completion failed: {e}", provider=self.provider) from e

    def _generate(
        self,
        prompt: str,
        *,
        system: Optional[str],
        max_tokens: int,
        timeout: float,
    ) -> str:
        if self.provider == "anthropic":
            kwargs = {}
            if system:
                kwargs["system"] = system
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
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
                messages=messages,
                timeout=timeout,
            )
            return (response.choices[0].message.content or "").strip()

        if self.provider == "google":
            import hashlib

            cache_key = hashlib.md5((system or "").encode()).hexdigest()
            if cache_key not in self._google_models:
                kwargs = {"model_name": self.model}
                if system:
                    kwargs["system_instruction"] = system
                self._google_models[cache_key] = self._client.GenerativeModel(**kwargs)
            model = self._google_models[cache_key]
            response = model.generate_content(
                prompt,
                generation_config={"max_output_tokens": max_tokens},
                request_options={"timeout": timeout},
            )
            return response.text.strip()

        raise ProviderError(f"Unsupported LLM provider: {self.provider}", provider=self.provider)
