"""
LLM Service Module

Provides a unified interface to LLM providers via LiteLLM for answer grading.

Usage:
    from pattern_recall.services.llm import get_llm_client, build_messages

    client = get_llm_client()
    response, usage = await client.complete(
        messages=build_messages("Grade this answer..."),
        json_mode=True,
    )
"""

from pattern_recall.services.llm.client import (
    LLMClient,
    build_messages,
    extract_usage,
    get_llm_client,
    reset_llm_client,
)

__all__ = [
    "LLMClient",
    "build_messages",
    "extract_usage",
    "get_llm_client",
    "reset_llm_client",
]
