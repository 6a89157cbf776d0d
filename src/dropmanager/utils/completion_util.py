import os
import time
import logging
import threading
from typing import Optional

from dotenv import load_dotenv
from openai import OpenAI, AzureOpenAI

from dropmanager.common.settings import OPENAI_TIMEOUT_SECONDS

load_dotenv()

logger = logging.getLogger(__name__)

_AZURE_ENDPOINT = os.getenv("AZURE_OPENAI_ENDPOINT")
_AZURE_API_KEY = os.getenv("AZURE_OPENAI_API_KEY")
_AZURE_API_VERSION = os.getenv("AZURE_OPENAI_API_VERSION", "2025-04-01-preview")

_API_KEY = os.getenv("OPENAI_API_KEY")
_DEFAULT_TIMEOUT = OPENAI_TIMEOUT_SECONDS

# Model fallbacks
_MODEL_FALLBACKS = {
    "gpt-4.1-nano": "gpt-4o-mini",
    "gpt-4.1-mini": "gpt-4o-mini",
    "gpt-3.5-turbo": "gpt-4o-mini",
}

# Client cache
_client: Optional[OpenAI] = None
_azure_client: Optional[AzureOpenAI] = None

# Per-process token tally, keyed by model
_token_usage: dict[str, int] = {}
_token_lock = threading.Lock()


def is_configured() -> bool:
    """True when at least one completion provider has credentials."""
    return bool(_API_KEY) or bool(_AZURE_ENDPOINT and _AZURE_API_KEY)


def _record_tokens(tokens: int | None, model: str) -> None:
    if tokens is None or tokens <= 0:
        return
    with _token_lock:
        _token_usage[model] = _token_usage.get(model, 0) + tokens


def get_token_usage() -> dict[str, int]:
    with _token_lock:
        return dict(_token_usage)


def _get_openai_client() -> OpenAI:
    global _client
    if _client is None:
        _client = OpenAI(api_key=_API_KEY, timeout=_DEFAULT_TIMEOUT, max_retries=2)
    return _client


def _get_azure_client() -> AzureOpenAI:
    global _azure_client
    if _azure_client is None:
        if not _AZURE_ENDPOINT or not _AZURE_API_KEY:
            raise RuntimeError("Azure OpenAI not configured (missing AZURE_OPENAI_ENDPOINT or AZURE_OPENAI_API_KEY)")
        _azure_client = AzureOpenAI(
            azure_endpoint=_AZURE_ENDPOINT,
            api_key=_AZURE_API_KEY,
            api_version=_AZURE_API_VERSION,
            timeout=_DEFAULT_TIMEOUT,
            max_retries=2,
        )
    return _azure_client


def _complete(messages: list[dict], model: str):
    # OpenAI key wins when both providers are configured
    if _API_KEY:
        return _get_openai_client().chat.completions.create(model=model, messages=messages, timeout=_DEFAULT_TIMEOUT)
    return _get_azure_client().chat.completions.create(model=model, messages=messages, timeout=_DEFAULT_TIMEOUT)


def generate_text(prompt: list[dict], model: str = "gpt-4o-mini") -> tuple[str, int | None]:
    """
    Run a chat completion and return (text, total_tokens).

    Raises RuntimeError when no provider is configured or the call fails on
    both the requested model and its fallback.
    """
    if not is_configured():
        raise RuntimeError("No API keys configured")

    actual_model = model
    start_time = time.time()
    try:
        response = _complete(prompt, actual_model)
    except Exception as exc:
        fb = _MODEL_FALLBACKS.get(model)
        if not fb:
            raise RuntimeError(f"OpenAI completion failed: {exc}") from exc
        logger.warning(f"Completion on {model} failed ({exc}); retrying with {fb}")
        try:
            response = _complete(prompt, fb)
        except Exception as fb_exc:
            raise RuntimeError(f"OpenAI completion failed: {fb_exc}") from fb_exc
        actual_model = fb

    duration = time.time() - start_time
    if duration > 10:
        logger.warning(f"Slow completion call: {duration:.1f}s for {actual_model}")

    message = response.choices[0].message.content or ""
    tokens = getattr(getattr(response, "usage", None), "total_tokens", None)
    _record_tokens(tokens, actual_model)
    return message, tokens
