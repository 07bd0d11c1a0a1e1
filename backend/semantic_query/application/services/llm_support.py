"""Helpers shared by every service that talks to the chat provider."""

import asyncio
import json
import logging
from typing import Any

from semantic_query.application.interfaces import ChatProvider
from semantic_query.domain.entities import ChatMessage, Outcome

logger = logging.getLogger(__name__)


async def complete_text(
    provider: ChatProvider,
    *,
    system_prompt: str,
    user_prompt: str,
    model: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout_s: float | None = None,
    feature: str = "completion",
) -> Outcome[str]:
    """Single-turn completion wrapped in an Outcome.

    Provider errors and timeouts become ``Outcome.failure``; cancellation of
    the calling task still propagates.
    """
    messages = [
        ChatMessage(role="system", content=system_prompt),
        ChatMessage(role="user", content=user_prompt),
    ]
    try:
        call = provider.complete(
            messages,
            model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if timeout_s is not None:
            result = await asyncio.wait_for(call, timeout=timeout_s)
        else:
            result = await call
    except asyncio.TimeoutError:
        logger.warning("%s: LLM call timed out after %.1fs", feature, timeout_s or 0)
        return Outcome.failure(f"LLM request timed out after {timeout_s:g}s")
    except Exception as e:
        logger.warning("%s: LLM call failed: %s", feature, e)
        return Outcome.failure(str(e) or type(e).__name__)

    content = (result.content or "").strip()
    if not content:
        return Outcome.failure("Empty response from LLM")
    return Outcome.success(content)


def parse_llm_json(text: str) -> dict[str, Any] | None:
    """Parse a JSON object out of an LLM reply.

    Strips markdown fences, then falls back to the outermost ``{...}`` span
    for replies wrapped in commentary. Returns None when nothing parses.
    """
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        # Remove first and last lines (the fences)
        text = "\n".join(lines[1:-1] if len(lines) > 2 else lines[1:])
        text = text.strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            return None

    return data if isinstance(data, dict) else None
