"""
LLM Provider
=============
Text-completion provider for the generative repair strategy and the
diagnosis helper.  Single fallback chain with live verification; a
:class:`NullLLM` stands in when nothing is reachable so the build loop can
always run offline.
"""

import socket
import logging
from typing import Any, Optional

from llama_index.core.llms import (
    CompletionResponse,
    CompletionResponseGen,
    CustomLLM,
    LLMMetadata,
)

from widget_agent.config import AgentConfig
from widget_agent.resilience import FallbackChain

logger = logging.getLogger("widget_agent.llm_provider")

_NULL_LLM_MESSAGE = (
    "No LLM provider is available. "
    "Set ANTHROPIC_API_KEY or OPENAI_API_KEY, or run Ollama for offline use."
)


class NullLLM(CustomLLM):
    """A no-op LLM that returns a fixed message instead of crashing.

    Callers check ``is_null_llm()`` and treat it as "no model available".
    """

    @property
    def metadata(self) -> LLMMetadata:
        return LLMMetadata(
            model_name="null",
            num_output=256,
        )

    def complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> CompletionResponse:
        return CompletionResponse(text=_NULL_LLM_MESSAGE)

    def stream_complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> CompletionResponseGen:
        def gen():
            yield CompletionResponse(text=_NULL_LLM_MESSAGE, delta=_NULL_LLM_MESSAGE)
        return gen()

    @classmethod
    def class_name(cls) -> str:
        return "null_llm"


def is_null_llm(llm) -> bool:
    """True when ``llm`` is missing or the offline placeholder."""
    return llm is None or isinstance(llm, NullLLM)


def _verified(llm):
    """Return ``llm`` after a live test call, raising if it fails."""
    response = llm.complete("Say OK")
    if not response or not response.text:
        raise RuntimeError("empty verification response")
    return llm


def _anthropic(config: AgentConfig):
    from llama_index.llms.anthropic import Anthropic

    return _verified(Anthropic(
        model=config.llm.fallback_models.get("anthropic", "claude-sonnet-4-5"),
        max_retries=1,
        temperature=config.llm.temperature,
        timeout=config.llm.timeout,
    ))


def _openai(config: AgentConfig):
    from llama_index.llms.openai import OpenAI as OpenAILLM

    return _verified(OpenAILLM(
        model=config.llm.fallback_models.get("openai", "gpt-4o"),
        temperature=config.llm.temperature,
        timeout=config.llm.timeout,
    ))


def _ollama(config: AgentConfig):
    base_url = config.llm.ollama_base_url
    host_port = base_url.split("://", 1)[-1].rstrip("/")
    host, _, port = host_port.partition(":")
    try:
        with socket.create_connection((host, int(port or 11434)), timeout=2.0):
            pass
    except OSError as e:
        raise OSError(f"Ollama server not reachable: {e}") from e

    from llama_index.llms.ollama import Ollama

    return _verified(Ollama(
        model=config.llm.fallback_models.get("ollama", "llama3.2"),
        base_url=base_url,
        request_timeout=float(config.llm.timeout),
    ))


def get_llm(config: Optional[AgentConfig] = None, allow_null: bool = True):
    """Get a verified LLM using the fallback chain.

    The configured primary provider goes first, then Anthropic, OpenAI and
    a local Ollama server.  Cloud providers are only tried when their API
    key is set.  Each candidate is tested with a real call so expired
    credits are caught here rather than mid-repair.

    Args:
        config: AgentConfig instance (optional, uses defaults if None).
        allow_null: If True, return NullLLM instead of raising when all
            providers fail.

    Returns:
        A verified LlamaIndex LLM instance, or NullLLM.

    Raises:
        RuntimeError: If no provider is available and ``allow_null`` is False.
    """
    if config is None:
        from widget_agent.config import get_config
        config = get_config()

    provider_funcs = {"ollama": lambda: _ollama(config)}
    if config.anthropic_api_key:
        provider_funcs["anthropic"] = lambda: _anthropic(config)
    if config.openai_api_key:
        provider_funcs["openai"] = lambda: _openai(config)

    order = [config.llm.primary_provider]
    order += [p for p in ("anthropic", "openai", "ollama") if p not in order]

    try:
        return FallbackChain(order).execute(provider_funcs)
    except RuntimeError as e:
        if allow_null:
            logger.warning("No LLM provider available, using NullLLM: %s", e)
            return NullLLM()
        raise RuntimeError(
            "No LLM provider available! Set ANTHROPIC_API_KEY or "
            "OPENAI_API_KEY, or install Ollama for offline use."
        ) from e
