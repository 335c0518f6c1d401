"""
Unit tests for the AI focus coaching adapter.

Tests:
- Prompt construction per request type
- Prompt input sanitization
- Mock replies without an API key
- Anthropic call parameters and retry behaviour
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from adapters.ai.coach_adapter import (
    MAX_HISTORY_ITEMS,
    SYSTEM_PROMPTS,
    CoachContext,
    CoachRequestType,
    FocusCoachService,
    _retry_with_backoff,
)


@pytest.fixture
def service() -> FocusCoachService:
    svc = FocusCoachService(api_key=None)
    svc._client = None
    return svc


@pytest.fixture
def live_service() -> FocusCoachService:
    svc = FocusCoachService(api_key=None)
    svc._client = MagicMock()
    svc._client.messages.create = AsyncMock(
        return_value=SimpleNamespace(content=[SimpleNamespace(text="Start with the outline.")])
    )
    return svc


class TestBuildPrompts:
    def test_task_breakdown(self, service):
        system, user = service.build_prompts(
            CoachRequestType.TASK_BREAKDOWN,
            CoachContext(task_title="Write report", task_description="Q3 numbers"),
        )

        assert system == SYSTEM_PROMPTS[CoachRequestType.TASK_BREAKDOWN]
        assert "1-90-0" in system
        assert "Task: Write report" in user
        assert "Description: Q3 numbers" in user

    def test_dopamine_detox(self, service):
        _, user = service.build_prompts(
            CoachRequestType.DOPAMINE_DETOX, CoachContext(task_title="Refactor auth")
        )

        assert '"Refactor auth"' in user
        assert "3-5" in user

    def test_motivational_insight_uses_recent_history_only(self, service):
        history = [{"session": i} for i in range(MAX_HISTORY_ITEMS + 5)]

        _, user = service.build_prompts(
            CoachRequestType.MOTIVATIONAL_INSIGHT, CoachContext(history=history)
        )

        assert '{"session": 14}' in user
        assert '{"session": 4}' not in user

    def test_session_summary(self, service):
        _, user = service.build_prompts(
            CoachRequestType.SESSION_SUMMARY,
            CoachContext(
                task_title="Parser",
                focus_quality=8,
                focus_depth="Finished lexer",
                what_distracted="Slack",
                whats_next="Write tests",
            ),
        )

        assert "Focus Quality: 8/10" in user
        assert "Accomplished: Finished lexer" in user
        assert "Distractions: Slack" in user
        assert "Next Steps: Write tests" in user

    def test_session_summary_without_rating(self, service):
        _, user = service.build_prompts(CoachRequestType.SESSION_SUMMARY, CoachContext(task_title="x"))

        assert "Focus Quality: ?/10" in user


class TestSanitize:
    def test_control_characters_and_whitespace(self):
        assert FocusCoachService._sanitize_prompt_input("a\nb\t\x00c   d", 100) == "a b c d"

    def test_truncates(self):
        assert FocusCoachService._sanitize_prompt_input("x" * 300, 200) == "x" * 200

    def test_empty(self):
        assert FocusCoachService._sanitize_prompt_input(None, 10) == ""


class TestCoach:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("request_type", list(CoachRequestType))
    async def test_mock_reply_without_client(self, service, request_type):
        reply = await service.coach(request_type, CoachContext(task_title="Write report"))

        assert reply

    @pytest.mark.asyncio
    async def test_calls_anthropic(self, live_service):
        reply = await live_service.coach(
            CoachRequestType.TASK_BREAKDOWN, CoachContext(task_title="Write report")
        )

        assert reply == "Start with the outline."
        kwargs = live_service._client.messages.create.call_args.kwargs
        assert kwargs["system"] == SYSTEM_PROMPTS[CoachRequestType.TASK_BREAKDOWN]
        assert kwargs["max_tokens"] == 300
        assert kwargs["temperature"] == 0.7
        assert kwargs["messages"][0]["role"] == "user"

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, live_service):
        live_service._client.messages.create = AsyncMock(side_effect=RuntimeError("invalid api key"))

        with pytest.raises(RuntimeError):
            await live_service.coach(CoachRequestType.DOPAMINE_DETOX, CoachContext(task_title="x"))

        assert live_service._client.messages.create.await_count == 1


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        factory = AsyncMock(side_effect=[RuntimeError("529 overloaded"), "ok"])

        with patch("adapters.ai.coach_adapter.asyncio.sleep", AsyncMock()) as sleep:
            result = await _retry_with_backoff(factory, max_retries=2, base_delay=0)

        assert result == "ok"
        assert factory.await_count == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        factory = AsyncMock(side_effect=RuntimeError("timeout"))

        with patch("adapters.ai.coach_adapter.asyncio.sleep", AsyncMock()):
            with pytest.raises(RuntimeError):
                await _retry_with_backoff(factory, max_retries=2, base_delay=0)

        assert factory.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self):
        factory = AsyncMock(side_effect=ValueError("bad request"))

        with pytest.raises(ValueError):
            await _retry_with_backoff(factory)

        assert factory.await_count == 1
