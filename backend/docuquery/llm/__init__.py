"""
LLM Package

Provider-agnostic completion over three interchangeable backends
(OpenAI, Anthropic via Bedrock, Gemini) with ordered failover::

    from docuquery.llm import FallbackChain, build_providers

    chain  = FallbackChain(build_providers())
    result = await chain.complete(question, context, strategy="fallback")
"""

from docuquery.llm.fallback import ChainResult, CircuitBreaker, FallbackChain, Strategy
from docuquery.llm.providers import PROVIDER_SPECS, Completion, LLMProvider, build_providers

__all__ = [
    "ChainResult",
    "CircuitBreaker",
    "Completion",
    "FallbackChain",
    "LLMProvider",
    "PROVIDER_SPECS",
    "Strategy",
    "build_providers",
]
