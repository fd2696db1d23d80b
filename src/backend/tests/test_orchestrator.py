"""
End-to-end tests for the AgentOrchestrator with a scripted gateway.

Tests cover:
- Stopping as soon as the target score is reached
- Budget exhaustion, with no feedback after the last attempt
- Feedback flowing into the next thinking prompt
- Gateway failures turning into FAILED results
- Interactive context gathering and follow-up chat
- Progress events
"""

import pytest

from myagent.agent.orchestrator import AgentOrchestrator, MissingInputError
from myagent.agent.turns import ScriptedTurnProvider
from myagent.models.schemas import RunPhase, RunStatus
from myagent.services.gateway import GatewayError


def build(settings, gateway, **kwargs):
    return AgentOrchestrator(settings, gateway=gateway, **kwargs)


class TestNonInteractiveRun:

    @pytest.mark.asyncio
    async def test_target_reached_on_first_attempt(self, settings, scripted_gateway):
        gateway = scripted_gateway({
            "search": ["Duolingo is a language-learning app."],
            "thinking": ["Duolingo makes language learning a daily habit."],
            "evaluation": ['{"score": 9, "rationale": "complete"}'],
            "default": ["Duolingo makes language learning a daily habit."],
        })
        orchestrator = build(settings, gateway, max_attempts=2)

        result = await orchestrator.run(
            "Write a sentence about Duolingo.",
            context="Nothing else. Just the sentence.",
        )

        assert result.status == RunStatus.COMPLETED
        assert result.attempts == 1
        assert result.last_score == 9
        assert result.max_attempts_reached is False
        assert gateway.aliases() == ["search", "thinking", "evaluation", "default"]
        assert result.memory.feedback == []
        assert [s.score for s in result.memory.scores] == [9]
        assert result.task.is_completed
        assert result.task.get_metadata("context") == "Nothing else. Just the sentence."
        assert result.report.markdown == "Duolingo makes language learning a daily habit."
        assert result.report.export_path is not None
        assert result.usage["call_count"] == 4

    @pytest.mark.asyncio
    async def test_perfect_score_stops_after_one_iteration(self, settings, scripted_gateway):
        gateway = scripted_gateway(fallback='{"score": 10}')
        orchestrator = build(settings, gateway, max_attempts=2, target_score=10)

        result = await orchestrator.run("Solve it")

        assert result.attempts == 1
        assert result.last_score == 10
        assert result.max_attempts_reached is False

    @pytest.mark.asyncio
    async def test_context_is_first_search_result(self, settings, scripted_gateway):
        gateway = scripted_gateway({"evaluation": ['{"score": 10}']})
        orchestrator = build(settings, gateway)

        result = await orchestrator.run("Summarize", context="Use bullet points.")

        assert result.memory.search_results[0].content == "Use bullet points."
        _, search_prompt, _, _ = gateway.calls[0]
        assert "Search result 1: Use bullet points." in search_prompt

    @pytest.mark.asyncio
    async def test_single_attempt_budget_gets_no_feedback(self, settings, scripted_gateway):
        gateway = scripted_gateway({"evaluation": ['{"score": 3}']})
        orchestrator = build(settings, gateway, max_attempts=1)

        result = await orchestrator.run("Solve it")

        assert result.status == RunStatus.COMPLETED
        assert result.attempts == 1
        assert result.max_attempts_reached is True
        assert result.memory.feedback == []
        assert gateway.aliases() == ["search", "thinking", "evaluation", "default"]
        assert not result.task.is_completed

    @pytest.mark.asyncio
    async def test_feedback_reaches_next_thinking_prompt(self, settings, scripted_gateway):
        gateway = scripted_gateway({
            "thinking": ["first try", "second try"],
            "evaluation": ['{"score": 3}', "Be more specific.", '{"score": 9}'],
        })
        orchestrator = build(settings, gateway, max_attempts=2)

        result = await orchestrator.run("Solve it")

        assert result.attempts == 2
        # 9 after a 3 is held to the early-attempt cap
        assert [s.score for s in result.memory.scores] == [3, 6]
        assert [f.content for f in result.memory.feedback] == ["Be more specific."]
        thinking_prompts = [prompt for alias, prompt, _, _ in gateway.calls if alias == "thinking"]
        assert "Previous feedback: None" in thinking_prompts[0]
        assert "Previous feedback: Be more specific." in thinking_prompts[1]
        assert result.max_attempts_reached is True

    @pytest.mark.asyncio
    async def test_unparseable_evaluation_keeps_going(self, settings, scripted_gateway):
        gateway = scripted_gateway({"evaluation": ["no idea", "feedback", '{"score": 2}']})
        orchestrator = build(settings, gateway, max_attempts=2)

        result = await orchestrator.run("Solve it")

        assert result.attempts == 2
        assert [s.score for s in result.memory.scores] == [2]
        assert result.last_score == 2

    @pytest.mark.asyncio
    async def test_target_score_override(self, settings, scripted_gateway):
        gateway = scripted_gateway({"evaluation": ['{"score": 4}']})
        orchestrator = build(settings, gateway, target_score=4)

        result = await orchestrator.run("Solve it")

        assert result.attempts == 1
        assert result.task.is_completed


class TestFailures:

    @pytest.mark.asyncio
    async def test_gateway_error_fails_run(self, settings, scripted_gateway):
        gateway = scripted_gateway({"thinking": [GatewayError("backend down", status_code=503)]})
        orchestrator = build(settings, gateway)

        result = await orchestrator.run("Solve it")

        assert result.status == RunStatus.FAILED
        assert "backend down" in result.error
        assert result.report is None
        assert result.attempts == 1
        assert len(result.memory.search_results) == 1
        assert orchestrator.phase == RunPhase.FAILED

    @pytest.mark.asyncio
    async def test_report_failure_fails_run(self, settings, scripted_gateway):
        gateway = scripted_gateway({
            "evaluation": ['{"score": 10}'],
            "default": [GatewayError("no report")],
        })
        result = await build(settings, gateway).run("Solve it")
        assert result.status == RunStatus.FAILED
        assert result.last_score == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize("description", [None, "", "   "])
    async def test_missing_task(self, settings, scripted_gateway, description):
        gateway = scripted_gateway()
        with pytest.raises(MissingInputError):
            await build(settings, gateway).run(description)
        assert gateway.calls == []


class TestInteractiveRun:

    @pytest.mark.asyncio
    async def test_questions_report_and_follow_up(self, settings, scripted_gateway):
        gateway = scripted_gateway({
            "default": ["1. Who is the audience?", "FINAL REPORT", "Roughly 50 euros a day."],
            "evaluation": ['{"score": 10}'],
        })
        turns = ScriptedTurnProvider([
            "Students on a budget",
            "What about costs?",
            "",
            "exit",
            "never asked",
        ])
        orchestrator = build(settings, gateway, turns=turns)

        result = await orchestrator.run("Plan a trip to Rome", interactive=True)

        assert result.status == RunStatus.COMPLETED
        assert result.task.get_metadata("clarifying_questions") == "1. Who is the audience?"
        assert result.task.get_metadata("clarifying_answers") == "Students on a budget"
        assert "1. Who is the audience?" in turns.transcript
        assert "FINAL REPORT" in turns.transcript
        assert "Roughly 50 euros a day." in turns.transcript
        assert result.memory.search_results[-1].content == "Follow-up question: What about costs?"
        assert result.memory.approaches[-1].content == "Roughly 50 euros a day."
        assert gateway.aliases()[-1] == "default"

    @pytest.mark.asyncio
    async def test_task_asked_for_when_missing(self, settings, scripted_gateway):
        gateway = scripted_gateway({"evaluation": ['{"score": 10}']})
        turns = ScriptedTurnProvider(["Write a limerick", "no extra info"])

        result = await build(settings, gateway, turns=turns).run(interactive=True)

        assert result.task.description == "Write a limerick"
        assert result.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_blank_interactive_task(self, settings, scripted_gateway):
        turns = ScriptedTurnProvider(["   "])
        with pytest.raises(MissingInputError):
            await build(settings, scripted_gateway(), turns=turns).run(interactive=True)

    @pytest.mark.asyncio
    async def test_follow_up_error_is_not_fatal(self, settings, scripted_gateway):
        gateway = scripted_gateway({
            "default": ["questions", "report", GatewayError("rate limited"), "second answer"],
            "evaluation": ['{"score": 10}'],
        })
        turns = ScriptedTurnProvider(["answers", "first?", "second?"])

        result = await build(settings, gateway, turns=turns).run("Task", interactive=True)

        assert result.status == RunStatus.COMPLETED
        assert any("rate limited" in line for line in turns.transcript)
        assert [a.content for a in result.memory.approaches][-1] == "second answer"
        assert "Follow-up question: first?" not in [r.content for r in result.memory.search_results]


class TestProgress:

    @pytest.mark.asyncio
    async def test_progress_events(self, settings, scripted_gateway):
        events = []
        gateway = scripted_gateway({"evaluation": ['{"score": 2}', "fb", '{"score": 4}']})
        orchestrator = build(settings, gateway, max_attempts=2, on_progress=events.append)

        await orchestrator.run("Solve it")

        phases = [e.phase for e in events]
        assert phases[0] == RunPhase.ITERATING
        assert events[0].score is None
        assert events[0].percent == 0
        assert RunPhase.FINALIZING in phases
        assert phases[-1] == RunPhase.DONE
        assert events[-1].percent == 100
        scored = [e.score for e in events if e.message.startswith("Current evaluation score")]
        assert scored == [2, 4]


class TestFeedbackPrompt:

    @pytest.mark.asyncio
    async def test_feedback_uses_current_attempt_and_score(self, settings, scripted_gateway):
        gateway = scripted_gateway({
            "evaluation": ['{"score": 4}', "first feedback", "garbled reply", "second feedback", '{"score": 5}'],
        })
        orchestrator = build(settings, gateway, max_attempts=3, target_score=10)

        await orchestrator.run("Solve it")

        feedback_prompts = [
            prompt for alias, prompt, _, _ in gateway.calls
            if alias == "evaluation" and "ATTEMPTS SO FAR" in prompt
        ]
        assert len(feedback_prompts) == 2
        assert "ATTEMPTS SO FAR: 1" in feedback_prompts[0]
        assert "CURRENT SCORE: 4/10" in feedback_prompts[0]
        # the unparseable reply counts as the neutral 5 even though it is not stored
        assert "ATTEMPTS SO FAR: 2" in feedback_prompts[1]
        assert "CURRENT SCORE: 5/10" in feedback_prompts[1]


class TestPrompts:

    @pytest.mark.asyncio
    async def test_search_prompt_carries_context_once(self, settings, scripted_gateway):
        gateway = scripted_gateway({"evaluation": ['{"score": 10}']})

        await build(settings, gateway).run("Summarize", context="Use bullet points.")

        _, search_prompt, _, _ = gateway.calls[0]
        assert search_prompt.startswith("Task: Summarize\n")
        assert search_prompt.count("Use bullet points.") == 1

    @pytest.mark.asyncio
    async def test_rationale_stays_out_of_thinking_prompt(self, settings, scripted_gateway):
        gateway = scripted_gateway({
            "evaluation": ['{"score": 2, "rationale": "SECRET-RATIONALE"}', "feedback", '{"score": 4}'],
        })

        await build(settings, gateway, max_attempts=2).run("Solve it")

        thinking_prompts = [prompt for alias, prompt, _, _ in gateway.calls if alias == "thinking"]
        assert "SECRET-RATIONALE" not in thinking_prompts[1]


class TestLimits:

    @pytest.mark.parametrize("max_attempts", [0, -1])
    def test_non_positive_budget_is_rejected(self, settings, scripted_gateway, max_attempts):
        with pytest.raises(ValueError):
            build(settings, scripted_gateway(), max_attempts=max_attempts)

    @pytest.mark.parametrize("target_score", [-1, 11])
    def test_target_out_of_range_is_rejected(self, settings, scripted_gateway, target_score):
        with pytest.raises(ValueError):
            build(settings, scripted_gateway(), target_score=target_score)

    def test_explicit_values_win_over_settings(self, settings, scripted_gateway):
        orchestrator = build(settings, scripted_gateway(), max_attempts=1, target_score=0)
        assert orchestrator.max_attempts == 1
        assert orchestrator.target_score == 0
