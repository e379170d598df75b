"""Model inference collaborator -- thin wrapper over the Anthropic Messages API."""

from __future__ import annotations

import httpx

from autonomy.config import Settings


class InferenceError(RuntimeError):
    """The inference endpoint returned no usable text."""


def build_anthropic_headers(settings: Settings) -> dict[str, str]:
    """Build auth headers for Anthropic API calls."""
    headers: dict[str, str] = {"anthropic-version": "2023-06-01"}
    api_key = settings.anthropic_auth_token or settings.anthropic_api_key
    if api_key and "sk-ant-oat" in api_key:
        headers["Authorization"] = f"Bearer {api_key}"
        headers["anthropic-beta"] = "oauth-2025-04-20"
    else:
        headers["x-api-key"] = api_key or ""
    return headers


async def generate_text(
    http: httpx.AsyncClient,
    settings: Settings,
    prompt: str,
    max_tokens: int = 1000,
) -> str:
    """Single-turn completion. Raises InferenceError on any unusable response."""
    try:
        response = await http.post(
            f"{settings.api_base_url}/v1/messages",
            json={
                "model": settings.planning_model,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
            headers=build_anthropic_headers(settings),
            timeout=settings.api_timeout,
        )
    except httpx.HTTPError as exc:
        raise InferenceError(f"inference request failed: {exc}") from exc

    if response.status_code != 200:
        raise InferenceError(f"inference returned HTTP {response.status_code}")

    try:
        data = response.json()
    except ValueError as exc:
        raise InferenceError(f"inference returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("content"), list):
        raise InferenceError("inference returned an unexpected payload")

    blocks = [
        b.get("text", "")
        for b in data["content"]
        if isinstance(b, dict) and b.get("type") == "text"
    ]
    text = "".join(blocks).strip()
    if not text:
        raise InferenceError("inference returned no text")
    return text
