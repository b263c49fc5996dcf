"""OpenAI chat-completions client and JSON extraction.

Usage:
    from leadminer.utils.openai_client import OpenAIClient, extract_json
    client = OpenAIClient(api_key, throttle=throttle)
    text = await client.complete("Return JSON ...", max_tokens=300)
    data = extract_json(text)

complete() raises AIRequestError on any non-200 response; extract_json()
raises MalformedResponse. Callers decide how to degrade.
"""

import json
import logging
import re

import httpx

from ..exceptions import AIRequestError, ConfigurationError, MalformedResponse
from ..http_client import http

log = logging.getLogger("leadminer.openai")

API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


class OpenAIClient:
    """Thin wrapper over the structured-completion endpoint."""

    provider = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.1,
        throttle=None,
        client: httpx.AsyncClient | None = None,
        timeout: int = 30,
    ):
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.throttle = throttle
        self.client = client or http
        self.timeout = timeout

    async def complete(self, prompt: str, max_tokens: int = 500, *, system: str = "") -> str:
        """Send one prompt and return the raw message content."""
        if self.throttle is not None:
            await self.throttle.acquire(self.provider)

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        resp = await self.client.post(
            API_URL,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": self.temperature,
            },
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise AIRequestError(f"OpenAI API {resp.status_code}: {resp.text[:200]}")

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AIRequestError(f"OpenAI response missing content: {e}") from e
        if not content:
            raise AIRequestError("OpenAI returned empty content")
        return content

    async def complete_json(self, prompt: str, max_tokens: int = 500, *, system: str = "") -> dict:
        text = await self.complete(prompt, max_tokens, system=system)
        return extract_json(text)


def extract_json(text: str) -> dict:
    """Parse a JSON object out of model output.

    Tries, in order: the whole text, the first fenced code block, and the
    outermost {...} substring.
    """
    if not text or not text.strip():
        raise MalformedResponse("Empty response", raw=text or "")

    candidates = [text.strip()]
    fence = _FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for chunk in candidates:
        try:
            data = json.loads(chunk)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    log.debug("JSON parse failed: %s...", text[:100])
    raise MalformedResponse("No JSON object found in response", raw=text)
