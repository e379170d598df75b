"""Decomposition strategies -- map an external state snapshot to subtask drafts.

The planner owns ids, timestamps and validation; a decomposer only says
what the steps are and how they depend on each other.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from autonomy.config import Settings
from autonomy.inference import InferenceError, generate_text
from autonomy.planning.errors import PlanGenerationError
from autonomy.planning.schemas import Decomposition, SubtaskDraft

logger = logging.getLogger(__name__)


class Decomposer(Protocol):
    async def decompose(self, state: dict[str, Any]) -> Decomposition: ...


class TemplateDecomposer:
    """Fixed three-step decomposition: analyse, check for actions, respond."""

    async def decompose(self, state: dict[str, Any]) -> Decomposition:
        who = state.get("agent_name") or "user"
        return Decomposition(
            goal=f"Respond to recent activity from {who}",
            subtasks=[
                SubtaskDraft(description=f"Analyze recent messages from {who}"),
                SubtaskDraft(description="Check for any required actions", depends_on=[0]),
                SubtaskDraft(description="Prepare appropriate response", depends_on=[1]),
            ],
        )


_DECOMPOSE_PROMPT = """You are the planning module of an autonomous agent named {agent_name}.
Given the recent conversation below, decide what the agent should work on next
and break it into at most {max_subtasks} ordered subtasks.

Recent messages:
{messages}

Return ONLY a valid JSON object:
{{
  "goal": "<one sentence goal>",
  "subtasks": [
    {{"description": "<what to do>", "depends_on": [<indices of earlier subtasks>]}}
  ]
}}"""


class LLMDecomposer:
    """Asks the inference collaborator for a goal and its subtasks.

    Any transport failure or malformed answer raises PlanGenerationError;
    the planner never installs a partial plan.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http_client

    async def decompose(self, state: dict[str, Any]) -> Decomposition:
        messages = state.get("recent_messages") or []
        rendered = "\n".join(_render_message(m) for m in messages) or "(no recent messages)"
        prompt = _DECOMPOSE_PROMPT.format(
            agent_name=state.get("agent_name") or self._settings.agent_name,
            max_subtasks=self._settings.max_subtasks,
            messages=rendered,
        )

        try:
            text = await generate_text(self._http, self._settings, prompt)
        except InferenceError as exc:
            raise PlanGenerationError(str(exc)) from exc

        try:
            result = Decomposition.model_validate_json(_strip_fences(text))
        except ValidationError as exc:
            logger.warning("Unusable decomposition from model: %s", text[:200])
            raise PlanGenerationError(f"malformed decomposition: {exc}") from exc

        result.subtasks = result.subtasks[: self._settings.max_subtasks]
        return result


def _render_message(message: Any) -> str:
    if isinstance(message, dict):
        return f"- {message.get('sender', 'unknown')}: {message.get('text', '')}"
    return f"- {message}"


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]
    return text.strip()
