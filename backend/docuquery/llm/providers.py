"""
LLM Providers — Three Interchangeable Completion Backends

Every provider answers the same call::

    completion = await provider.complete(prompt, context)

  prompt   the user-facing instruction or question (human message)
  context  grounding text; sent as the system message when non-empty

and returns a Completion(text, tokens_in, tokens_out, model).

Providers:
  openai     ChatOpenAI (langchain-openai)
  anthropic  Claude via AWS Bedrock (langchain-aws ChatBedrock)
  gemini     google-generativeai GenerativeModel

Static metadata (ProviderSpec) drives the cost / performance orderings in
the fallback chain and the usage ledger's price table.

Adding a provider:
  Implement the LLMProvider protocol, add a ProviderSpec to PROVIDER_SPECS
  and a builder to build_providers().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from docuquery.core.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared types
# ---------------------------------------------------------------------------

@dataclass
class Completion:
    text:       str
    tokens_in:  int = 0
    tokens_out: int = 0
    model:      str = ""


@runtime_checkable
class LLMProvider(Protocol):
    name: str

    @property
    def configured(self) -> bool: ...

    async def complete(self, prompt: str, context: str = "") -> Completion: ...


@dataclass(frozen=True)
class ProviderSpec:
    """
    Static metadata for one provider.

    cost_input_per_1k:   USD per 1 000 input tokens
    cost_output_per_1k:  USD per 1 000 output tokens
    quality_score:       Subjective 0-10 ranking used by the performance strategy
    """
    name:               str
    cost_input_per_1k:  float
    cost_output_per_1k: float
    quality_score:      float

    @property
    def blended_cost_per_1k(self) -> float:
        return self.cost_input_per_1k + self.cost_output_per_1k


PROVIDER_SPECS: dict[str, ProviderSpec] = {
    "openai":    ProviderSpec("openai",    0.01,   0.03,   quality_score=9.0),
    "anthropic": ProviderSpec("anthropic", 0.003,  0.015,  quality_score=9.2),
    "gemini":    ProviderSpec("gemini",    0.0005, 0.0015, quality_score=8.0),
}

_MODEL_PREFIXES = (
    ("gpt",        "openai"),
    ("o1",         "openai"),
    ("text-",      "openai"),
    ("anthropic.", "anthropic"),
    ("claude",     "anthropic"),
    ("gemini",     "gemini"),
)


def provider_for_model(model: str | None) -> str | None:
    """Map a provider name or model identifier to its provider name."""
    if not model:
        return None
    model = model.lower()
    if model in PROVIDER_SPECS:
        return model
    for prefix, provider in _MODEL_PREFIXES:
        if model.startswith(prefix):
            return provider
    return None


def _usage_from_message(message: Any) -> tuple[int, int]:
    """Token counts from a LangChain AIMessage, when the provider reports them."""
    usage = getattr(message, "usage_metadata", None) or {}
    return int(usage.get("input_tokens", 0) or 0), int(usage.get("output_tokens", 0) or 0)


def _langchain_messages(prompt: str, context: str) -> list:
    from langchain_core.messages import HumanMessage, SystemMessage

    messages: list = []
    if context:
        messages.append(SystemMessage(content=context))
    messages.append(HumanMessage(content=prompt))
    return messages


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        # Bedrock may return content blocks
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return str(content or "")


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------

class OpenAIProvider:
    name = "openai"

    def __init__(self, model: str | None = None, api_key: str | None = None, llm: Any = None) -> None:
        self.model   = model or settings.openai_model
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._llm    = llm

    @property
    def configured(self) -> bool:
        return self._llm is not None or bool(self._api_key)

    def _client(self) -> Any:
        if self._llm is None:
            from langchain_openai import ChatOpenAI
            self._llm = ChatOpenAI(
                model=self.model,
                api_key=self._api_key,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            )
        return self._llm

    async def complete(self, prompt: str, context: str = "") -> Completion:
        message = await self._client().ainvoke(_langchain_messages(prompt, context))
        tokens_in, tokens_out = _usage_from_message(message)
        return Completion(_message_text(message), tokens_in, tokens_out, self.model)


class AnthropicProvider:
    """Claude reached through AWS Bedrock; credentials come from the AWS chain."""
    name = "anthropic"

    def __init__(self, model_id: str | None = None, llm: Any = None) -> None:
        self.model = model_id or settings.anthropic_model_id
        self._llm  = llm

    @property
    def configured(self) -> bool:
        return self._llm is not None or bool(self.model)

    def _client(self) -> Any:
        if self._llm is None:
            from langchain_aws import ChatBedrock
            self._llm = ChatBedrock(
                model_id=self.model,
                region_name=settings.aws_region,
                model_kwargs={
                    "temperature": settings.llm_temperature,
                    "max_tokens":  settings.llm_max_tokens,
                },
            )
        return self._llm

    async def complete(self, prompt: str, context: str = "") -> Completion:
        message = await self._client().ainvoke(_langchain_messages(prompt, context))
        tokens_in, tokens_out = _usage_from_message(message)
        return Completion(_message_text(message), tokens_in, tokens_out, self.model)


class GeminiProvider:
    name = "gemini"

    def __init__(self, model: str | None = None, api_key: str | None = None, client: Any = None) -> None:
        self.model    = model or settings.gemini_model
        self._api_key = api_key if api_key is not None else settings.gemini_api_key
        self._client_obj = client

    @property
    def configured(self) -> bool:
        return self._client_obj is not None or bool(self._api_key)

    def _client(self) -> Any:
        if self._client_obj is None:
            import google.generativeai as genai
            genai.configure(api_key=self._api_key)
            self._client_obj = genai.GenerativeModel(self.model)
        return self._client_obj

    async def complete(self, prompt: str, context: str = "") -> Completion:
        import google.generativeai as genai

        full_prompt = f"{context}\n\n{prompt}" if context else prompt
        response = await self._client().generate_content_async(
            full_prompt,
            generation_config=genai.types.GenerationConfig(
                temperature=settings.llm_temperature,
                max_output_tokens=settings.llm_max_tokens,
            ),
        )
        usage = getattr(response, "usage_metadata", None)
        return Completion(
            text=response.text,
            tokens_in=int(getattr(usage, "prompt_token_count", 0) or 0),
            tokens_out=int(getattr(usage, "candidates_token_count", 0) or 0),
            model=self.model,
        )


def build_providers() -> dict[str, LLMProvider]:
    """All providers, keyed by name. Unconfigured ones are skipped by the chain."""
    return {
        "openai":    OpenAIProvider(),
        "anthropic": AnthropicProvider(),
        "gemini":    GeminiProvider(),
    }
