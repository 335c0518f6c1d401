"""
Anthropic Claude adapter for AI focus coaching.
"""

import asyncio
import json
import logging
import random
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

import anthropic

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_MARKERS = (
    "rate_limit",
    "429",
    "500",
    "502",
    "503",
    "504",
    "overloaded",
    "connection",
    "timeout",
)


async def _retry_with_backoff(coro_factory, max_retries=3, base_delay=1.0):
    """Retry an async operation with exponential backoff + jitter."""
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except Exception as e:
            error_str = str(e).lower()
            is_transient = any(k in error_str for k in TRANSIENT_ERROR_MARKERS)
            if not is_transient or attempt == max_retries:
                raise
            delay = base_delay * (2 ** attempt) + random.uniform(0, 1)
            logger.warning(
                "Transient API error (attempt %d/%d), retrying in %.1fs: %s",
                attempt + 1, max_retries, delay, str(e),
            )
            await asyncio.sleep(delay)


class CoachRequestType(StrEnum):
    """Kinds of coaching a user can ask for."""

    TASK_BREAKDOWN = "task-breakdown"
    DOPAMINE_DETOX = "dopamine-detox"
    MOTIVATIONAL_INSIGHT = "motivational-insight"
    SESSION_SUMMARY = "session-summary"


@dataclass
class CoachContext:
    """Everything a coaching prompt may draw on."""

    task_title: str = ""
    task_description: str = ""
    history: list[dict[str, Any]] = field(default_factory=list)
    focus_quality: Optional[int] = None
    focus_depth: Optional[str] = None
    what_distracted: Optional[str] = None
    whats_next: Optional[str] = None


SYSTEM_PROMPTS = {
    CoachRequestType.TASK_BREAKDOWN: (
        "You are an AI Focus Coach specialized in helping users break down tasks into "
        'flow-optimized chunks. Use the "1-90-0" deep work method: 1 minute to prepare, '
        "90 minutes of deep focus, 0 distractions."
    ),
    CoachRequestType.DOPAMINE_DETOX: (
        "You are an AI Focus Coach helping users prepare for distraction-free deep work. "
        "Suggest practical dopamine detox actions."
    ),
    CoachRequestType.MOTIVATIONAL_INSIGHT: (
        "You are an AI Focus Coach providing motivational insights based on the user's "
        "focus history. Be encouraging and specific."
    ),
    CoachRequestType.SESSION_SUMMARY: (
        "You are an AI Focus Coach creating concise session summaries. "
        "Focus on accomplishments and next steps."
    ),
}

# Most recent sessions passed to the motivational prompt
MAX_HISTORY_ITEMS = 10


class FocusCoachService:
    """AI focus coaching using Anthropic Claude."""

    def __init__(self, api_key: Optional[str] = None):
        api_key = api_key or settings.anthropic_api_key
        if api_key:
            self._client = anthropic.AsyncAnthropic(
                api_key=api_key,
                timeout=float(settings.anthropic_timeout),
            )
        else:
            self._client = None
        self._model = settings.anthropic_model
        self._max_tokens = settings.anthropic_max_tokens
        self._temperature = settings.anthropic_temperature

    @staticmethod
    def _sanitize_prompt_input(text: Optional[str], max_length: int) -> str:
        """Strip control characters and limit length to prevent prompt injection."""
        if not text:
            return ""
        text = re.sub(r"[\r\n\t\x00-\x1f\x7f]", " ", str(text))
        text = re.sub(r" +", " ", text).strip()
        return text[:max_length]

    def build_prompts(
        self,
        request_type: CoachRequestType,
        context: CoachContext,
    ) -> tuple[str, str]:
        """
        Build the (system, user) prompt pair for a coaching request.

        Args:
            request_type: Kind of coaching requested
            context: Task, history and reflection inputs

        Returns:
            Tuple of system prompt and user prompt
        """
        title = self._sanitize_prompt_input(context.task_title, 200)
        description = self._sanitize_prompt_input(context.task_description, 2000)

        if request_type == CoachRequestType.TASK_BREAKDOWN:
            user_prompt = (
                f"Task: {title}\nDescription: {description}\n\n"
                "Break this task into actionable steps optimized for deep focus sessions. "
                "Keep it concise and practical."
            )
        elif request_type == CoachRequestType.DOPAMINE_DETOX:
            user_prompt = (
                f'I\'m about to start a focus session for: "{title}"\n\n'
                "Give me 3-5 quick dopamine detox reminders to prepare my environment "
                "and mind for deep work."
            )
        elif request_type == CoachRequestType.MOTIVATIONAL_INSIGHT:
            history = json.dumps(context.history[-MAX_HISTORY_ITEMS:], default=str)
            user_prompt = (
                f"User's recent sessions: {self._sanitize_prompt_input(history, 4000)}\n\n"
                "Provide a motivational insight about their progress and encourage their "
                "next session. Keep it under 50 words."
            )
        elif request_type == CoachRequestType.SESSION_SUMMARY:
            quality = context.focus_quality if context.focus_quality is not None else "?"
            user_prompt = (
                "Session reflection:\n"
                f"Task: {title}\n"
                f"Focus Quality: {quality}/10\n"
                f"Accomplished: {self._sanitize_prompt_input(context.focus_depth, 1000)}\n"
                f"Distractions: {self._sanitize_prompt_input(context.what_distracted, 1000)}\n"
                f"Next Steps: {self._sanitize_prompt_input(context.whats_next, 1000)}\n\n"
                "Create a 3-line summary highlighting: 1) What was achieved, "
                "2) Key insight, 3) Momentum builder for next session."
            )
        else:
            raise ValueError(f"Unsupported coaching request type: {request_type}")

        return SYSTEM_PROMPTS[request_type], user_prompt

    async def coach(self, request_type: CoachRequestType, context: CoachContext) -> str:
        """
        Generate a coaching reply.

        Raises whatever the Anthropic client raises once retries are spent;
        callers turn that into a 500 response.
        """
        system_prompt, user_prompt = self.build_prompts(request_type, context)

        if not self._client:
            # Return mock response for development
            return self._mock_reply(request_type, context)

        try:
            message = await _retry_with_backoff(lambda: self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            ))

            response_text = message.content[0].text if message.content else ""
            logger.debug("Generated %s coaching reply (%d chars)", request_type.value, len(response_text))
            return response_text

        except Exception as e:
            logger.error("Failed to generate %s coaching reply: %s", request_type.value, e)
            raise

    def _mock_reply(self, request_type: CoachRequestType, context: CoachContext) -> str:
        """Generate mock coaching reply for development."""
        title = self._sanitize_prompt_input(context.task_title, 200) or "your task"
        if request_type == CoachRequestType.TASK_BREAKDOWN:
            return (
                f"1. Define the finish line for {title}.\n"
                "2. Spend one minute clearing your desk and closing tabs.\n"
                "3. Work the hardest sub-step first for 90 minutes.\n"
                "4. Capture loose ends in a list instead of switching tasks."
            )
        if request_type == CoachRequestType.DOPAMINE_DETOX:
            return (
                "- Put your phone in another room.\n"
                "- Close chat and email.\n"
                "- Fill a glass of water.\n"
                f"- Write down the single outcome you want from {title}."
            )
        if request_type == CoachRequestType.MOTIVATIONAL_INSIGHT:
            return "You keep showing up. Protect the next 90 minutes and the momentum will carry you."
        return (
            f"Achieved: progress on {title}.\n"
            "Insight: fewer switches meant deeper focus.\n"
            "Next: start the next session with the first item on your list."
        )


# Singleton instance
coach_ai_service = FocusCoachService()
