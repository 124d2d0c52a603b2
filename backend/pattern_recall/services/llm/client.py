"""
LLM Client for answer grading via LiteLLM.

LiteLLM provides a unified interface to many LLM providers using the
format "provider/model-name" (e.g. "openai/gpt-4o",
"anthropic/claude-3-5-sonnet-20241022"). Key features:
- Single configured grading model (GRADING_MODEL)
- Automatic retries with exponential backoff
- Native async support
- Token usage reported alongside every completion

See: https://docs.litellm.ai/

Usage:
    from pattern_recall.services.llm import build_messages, get_llm_client

    client = get_llm_client()

    result, usage = await client.complete(
        messages=build_messages("Grade this...", system_prompt="You are..."),
        json_mode=True,
    )
    print(result["score"], usage["total_tokens"])
"""

import json
import logging
import os
import time
from typing import Any, Optional, Union

import litellm
from litellm import acompletion
from tenacity import retry, stop_after_attempt, wait_exponential

from pattern_recall.config.settings import settings

logger = logging.getLogger(__name__)

# Configure LiteLLM
litellm.drop_params = True  # Drop unsupported params instead of erroring
if settings.DEBUG:
    os.environ["LITELLM_LOG"] = "DEBUG"


def build_messages(
    prompt: str,
    system_prompt: Optional[str] = None,
) -> list[dict[str, str]]:
    """
    Build messages list from prompt and optional system prompt.

    Args:
        prompt: User prompt text
        system_prompt: Optional system prompt

    Returns:
        List of message dicts for LLM API
    """
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


def extract_usage(response: Any, model: str, latency_ms: int) -> dict[str, Any]:
    """Pull token counts out of a LiteLLM response (missing fields become 0)."""
    usage = getattr(response, "usage", None)
    return {
        "model": model,
        "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
        "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
        "total_tokens": getattr(usage, "total_tokens", 0) or 0,
        "latency_ms": latency_ms,
    }


class LLMClient:
    """
    LLM client used by the answer grader.

    Attributes:
        default_model: LiteLLM model string used when no override is given
    """

    def __init__(self, default_model: Optional[str] = None):
        """Initialize the LLM client and validate API keys."""
        self.default_model = default_model or settings.GRADING_MODEL
        self._validate_api_keys()

    def _validate_api_keys(self):
        """
        Warn when no provider API key is configured.

        Grading calls will fail at request time in that case; the client
        itself can still be constructed (tests, offline development).
        """
        available_keys = []

        if os.getenv("OPENAI_API_KEY") or settings.OPENAI_API_KEY:
            available_keys.append("OpenAI")
        if os.getenv("ANTHROPIC_API_KEY") or settings.ANTHROPIC_API_KEY:
            available_keys.append("Anthropic")

        if not available_keys:
            logger.warning(
                "No LLM API keys configured. Set at least one of: "
                "OPENAI_API_KEY, ANTHROPIC_API_KEY"
            )
        else:
            logger.info(f"LLM client initialized with providers: {available_keys}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def complete(
        self,
        messages: list[dict],
        temperature: float = 0.1,
        max_tokens: int = 2500,
        json_mode: bool = False,
        model: Optional[str] = None,
    ) -> tuple[Union[str, Any], dict[str, Any]]:
        """
        Generate a completion.

        Args:
            messages: Chat messages in OpenAI format
                [{"role": "user", "content": "..."}, ...]
            temperature: Sampling temperature (0-1, lower = more deterministic)
            max_tokens: Maximum tokens in response
            json_mode: Request structured JSON output and parse response as JSON.
                Returns parsed dict/list. JSONDecodeError triggers retry.
            model: Optional model override

        Returns:
            Tuple of (response_text or parsed JSON if json_mode, usage dict)

        Raises:
            json.JSONDecodeError: If json_mode=True and response is not valid JSON
                after all retries
            Exception: If completion fails after retries
        """
        model = model or self.default_model

        kwargs = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        start_time = time.perf_counter()

        try:
            response = await acompletion(**kwargs)
            latency_ms = int((time.perf_counter() - start_time) * 1000)
            usage = extract_usage(response, model, latency_ms)

            logger.debug(
                f"LLM completion [{model}] - Tokens: {usage['total_tokens']}, "
                f"Latency: {latency_ms}ms"
            )

            content = response.choices[0].message.content

            if json_mode:
                # JSONDecodeError will trigger @retry
                content = json.loads(content)

            return content, usage

        except json.JSONDecodeError:
            logger.warning(f"JSON decode error, will retry (model={model})")
            raise
        except Exception as e:
            logger.error(f"LLM completion failed: {e} (model={model})")
            raise


# Singleton instance
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """
    Get or create the LLM client singleton.

    Returns:
        Shared LLMClient instance
    """
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client


def reset_llm_client() -> None:
    """Reset the singleton (used by tests)."""
    global _llm_client
    _llm_client = None
