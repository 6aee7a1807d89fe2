from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from api.services.config import get_settings
from api.services.errors import LLMError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 409, 425, 429}


class _TransientLLMError(RuntimeError):
    pass


def llm_enabled() -> bool:
    settings = get_settings()
    return bool(settings.use_real_llm and settings.openai_api_key)


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            str(part.get("text", "")) for part in content if isinstance(part, dict) and part.get("type") == "text"
        ).strip()
    return str(content)


@retry(
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError, _TransientLLMError)),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(3),
    reraise=True,
)
async def _chat_completion_request(payload: dict[str, Any]) -> dict[str, Any]:
    settings = get_settings()
    if not settings.openai_api_key:
        raise LLMError("OPENAI_API_KEY is not configured")

    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.llm_timeout_seconds)) as client:
        response = await client.post(
            settings.openai_base_url.rstrip("/") + "/chat/completions",
            headers={"Authorization": f"Bearer {settings.openai_api_key}"},
            json=payload,
        )

    if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS:
        logger.warning("Chat completion temporary error %s, retrying", response.status_code)
        raise _TransientLLMError(f"OpenAI temporary error: {response.status_code}")
    if response.status_code >= 400:
        raise LLMError(f"OpenAI request failed ({response.status_code}): {response.text[:300]}")
    return response.json()


async def llm_chat(
    messages: list[dict[str, str]],
    temperature: float = 0.2,
    max_tokens: int = 1000,
    model: Optional[str] = None,
    json_mode: bool = False,
) -> str:
    """Call the chat-completion endpoint and return the reply text."""
    settings = get_settings()
    if not llm_enabled():
        raise LLMError("Real LLM mode is not enabled")

    payload: dict[str, Any] = {
        "model": model or settings.openai_model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}

    try:
        data = await _chat_completion_request(payload)
    except (httpx.HTTPError, _TransientLLMError) as exc:
        raise LLMError(f"Chat completion failed: {exc}") from exc

    choices = data.get("choices") or []
    if not choices:
        raise LLMError("OpenAI response did not contain choices")
    text = _message_text(choices[0].get("message", {}).get("content", "")).strip()
    if not text:
        raise LLMError("OpenAI response did not contain text content")

    usage = data.get("usage", {})
    logger.debug("Chat completion used %s tokens", usage.get("total_tokens", 0))
    return text


def try_parse_json_object(text: str) -> Optional[dict[str, Any]]:
    """Parse a JSON object, falling back to the outermost ``{...}`` span."""
    text = text.strip()
    candidates = [text]
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


async def llm_json(
    system_prompt: str,
    user_payload: Any,
    *,
    temperature: float = 0.1,
    max_tokens: int = 1500,
) -> dict[str, Any]:
    """Ask for a JSON object; repair once through the model before giving up."""
    user_content = user_payload if isinstance(user_payload, str) else json.dumps(user_payload, default=str)
    text = await llm_chat(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ],
        temperature=temperature,
        max_tokens=max_tokens,
        json_mode=True,
    )
    parsed = try_parse_json_object(text)
    if parsed is not None:
        return parsed

    repaired = await llm_chat(
        [
            {
                "role": "system",
                "content": (
                    "Convert the following content into strict valid JSON only. "
                    "Do not add explanation, markdown, or code fences. Preserve meaning."
                ),
            },
            {"role": "user", "content": text},
        ],
        temperature=0.0,
        max_tokens=max_tokens,
        json_mode=True,
    )
    parsed = try_parse_json_object(repaired)
    if parsed is None:
        preview = repaired[:180].replace("\n", " ")
        raise LLMError(f"Model output was not valid JSON (preview: {preview})")
    return parsed
