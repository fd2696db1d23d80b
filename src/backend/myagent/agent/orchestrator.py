"""
Agent Orchestrator — drives one task through the refinement loop.

Controls the run:
  1. Await the task description (caller or interactive prompt)
  2. Gather context (clarifying questions, or caller-supplied context)
  3. Iterate: search → think → evaluate → feedback, until the target score
     is reached or the attempt budget is spent
  4. Finalize: synthesize and export the report (always runs)
  5. Follow-up chat (interactive only)

Every step depends on the previous one, so nothing runs in parallel. A
GatewayError ends the run with a FAILED result instead of an exception.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from myagent.agent.evaluator import Evaluator
from myagent.agent.memory import WorkingMemory
from myagent.agent.turns import ConsoleTurnProvider, TurnProvider
from myagent.config import Settings
from myagent.models.schemas import (
    FinalReport,
    RunPhase,
    RunProgress,
    RunResult,
    RunStatus,
    Task,
)
from myagent.services.gateway import GatewayError, ModelGateway
from myagent.tools.renderer import build_renderer
from myagent.tools.report import ReportAssembler

logger = logging.getLogger(__name__)

# Type for the callback that streams progress updates
ProgressCallback = Callable[[RunProgress], None]

EXIT_COMMAND = "exit"

SEARCH_PROMPT = """Task: {task}
Find relevant information to solve this task.
Previous findings: {context}"""

THINKING_PROMPT = """{task}
Use the following information to generate a solution approach:
{search_result}
Previous feedback: {feedback}"""

CLARIFY_PROMPT = """Before any work starts on the task below, ask the user at least 5
clarifying questions that would most change how the task should be solved.
Number the questions and ask nothing else.

TASK: {task}"""

FOLLOW_UP_PROMPT = """{task}
The user has a follow-up question about the work done on this task.

QUESTION:
{question}

RESEARCH FINDINGS:
{search_results}

APPROACHES:
{approaches}

FEEDBACK:
{feedback}

Answer the question directly, using the material above."""


class MissingInputError(ValueError):
    """No task description was supplied and none could be asked for."""


class AgentOrchestrator:
    """
    Orchestrates a single refinement run.

    Usage:
        orchestrator = AgentOrchestrator(settings)
        result = await orchestrator.run("Write a sentence about Duolingo.",
                                        context="Nothing else. Just the sentence.")
    """

    def __init__(
        self,
        settings: Settings,
        gateway: Optional[ModelGateway] = None,
        memory: Optional[WorkingMemory] = None,
        evaluator: Optional[Evaluator] = None,
        report_assembler: Optional[ReportAssembler] = None,
        turns: Optional[TurnProvider] = None,
        on_progress: Optional[ProgressCallback] = None,
        max_attempts: Optional[int] = None,
        target_score: Optional[int] = None,
    ):
        self.settings = settings
        self.max_attempts = (
            settings.execution.max_attempts if max_attempts is None else max_attempts
        )
        self.target_score = (
            settings.execution.target_score if target_score is None else target_score
        )
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be a positive integer, got {self.max_attempts}")
        if not 0 <= self.target_score <= 10:
            raise ValueError(f"target_score must be between 0 and 10, got {self.target_score}")

        self.gateway = gateway or ModelGateway(settings)
        self.memory = memory or WorkingMemory()
        self.evaluator = evaluator or Evaluator(self.gateway, target_score=self.target_score)
        self.report_assembler = report_assembler or ReportAssembler(
            self.gateway, build_renderer(settings.report_format, settings.reports_dir)
        )
        self.turns = turns
        self.on_progress = on_progress

        # State
        self.phase = RunPhase.AWAITING_TASK
        self.attempts = 0
        self.score = 0

    async def run(
        self,
        task_description: Optional[str] = None,
        context: Optional[str] = None,
        interactive: bool = False,
    ) -> RunResult:
        """
        Run the full loop for one task.

        Args:
            task_description: The task; asked for interactively if missing
            context: Pre-supplied context, used instead of clarifying questions
            interactive: Ask clarifying questions and offer follow-up chat

        Returns:
            RunResult — status FAILED if the model backend gave up

        Raises:
            MissingInputError: no task description in non-interactive mode
        """
        task = self._await_task(task_description, interactive)
        self.memory.store_task(task)
        report: Optional[FinalReport] = None

        try:
            if interactive:
                await self._gather_context(task)
            elif context:
                self._seed_context(task, context)

            await self._iterate(task)
            report = await self._finalize(task)

            if interactive:
                await self._follow_up(task, report)
        except GatewayError as e:
            logger.error(f"Run failed after {self.attempts} attempt(s): {e}")
            self._emit(RunPhase.FAILED, f"Run failed: {e}")
            return self._result(task, RunStatus.FAILED, report, error=str(e))

        self._emit(RunPhase.DONE, "Run complete", percent=100)
        return self._result(task, RunStatus.COMPLETED, report)

    # ──────────────────────────────────────────────
    # Phases
    # ──────────────────────────────────────────────

    def _await_task(self, task_description: Optional[str], interactive: bool) -> Task:
        self.phase = RunPhase.AWAITING_TASK
        description = (task_description or "").strip()

        if not description and interactive:
            description = (self._turns().ask("Enter task description: ") or "").strip()

        if not description:
            raise MissingInputError("A task description is required")

        logger.info(f"Starting task: {description[:100]}")
        return Task(description=description)

    async def _gather_context(self, task: Task) -> None:
        """Ask clarifying questions and record the user's answers."""
        self._emit(RunPhase.GATHERING_CONTEXT, "Generating clarifying questions")
        turns = self._turns()

        questions = await self.gateway.generate(
            CLARIFY_PROMPT.format(task=task.description),
            model_alias="default",
        )
        turns.say(questions)
        answers = turns.ask_multiline("Please answer the questions above (finish with an empty line):")

        task.add_metadata("clarifying_questions", questions)
        task.add_metadata("clarifying_answers", answers or "(no answers provided)")
        self.memory.store_search_result(
            f"Clarifying questions:\n{questions}\n\nUser answers:\n{answers or '(no answers provided)'}"
        )

    def _seed_context(self, task: Task, context: str) -> None:
        task.add_metadata("context", context)
        self.memory.store_search_result(context)

    async def _iterate(self, task: Task) -> None:
        """The search → think → evaluate → feedback loop."""
        while self.score < self.target_score and self.attempts < self.max_attempts:
            self._emit(RunPhase.ITERATING, f"Attempt {self.attempts + 1}/{self.max_attempts}")
            self.attempts += 1

            with self.memory.iteration_scope():
                search = await self.gateway.generate(
                    SEARCH_PROMPT.format(
                        task=task.description,
                        context=self.memory.recent_context_summary(),
                    ),
                    model_alias="search",
                )
                self.memory.store_search_result(search)

                approach = await self.gateway.generate(
                    THINKING_PROMPT.format(
                        task=task.to_prompt().strip(),
                        search_result=self.memory.latest_search_result(),
                        feedback=self.memory.last_feedback() or "None",
                    ),
                    model_alias="thinking",
                )
                self.memory.store_approach(approach)

                self.score = await self.evaluator.evaluate_task_completion(task, self.memory)
                logger.info(f"Attempt {self.attempts}: evaluation score {self.score}/10")
                self._emit(
                    RunPhase.ITERATING,
                    f"Current evaluation score: {self.score}/10",
                    percent=self._percent(self.attempts),
                )

                # The last permitted attempt gets no feedback; nothing would read it.
                if self.score < self.target_score and self.attempts < self.max_attempts:
                    self._emit(RunPhase.ITERATING, "Task not yet complete. Refining approach...")
                    feedback = await self.evaluator.generate_feedback(
                        task, self.memory, attempts=self.attempts, score=self.score
                    )
                    self.memory.store_feedback(feedback)

        if self.score >= self.target_score:
            logger.info(f"Target score {self.target_score} reached after {self.attempts} attempt(s)")
        else:
            logger.info(f"Reached maximum attempts ({self.max_attempts}) at score {self.score}")

    async def _finalize(self, task: Task) -> FinalReport:
        self._emit(RunPhase.FINALIZING, "Generating final report", percent=100)
        report = await self.report_assembler.assemble(task, self.memory)
        if self.score >= self.target_score:
            task.mark_completed()
        return report

    async def _follow_up(self, task: Task, report: FinalReport) -> None:
        """Answer questions about the result until the user types 'exit'."""
        self._emit(RunPhase.FOLLOW_UP, "Follow-up questions")
        turns = self._turns()
        turns.say(report.markdown)
        if report.export_path:
            turns.say(f"Report saved to {report.export_path}")

        while True:
            question = turns.ask("\nFollow-up question (or 'exit'): ")
            if question is None or question.strip().lower() == EXIT_COMMAND:
                break
            if not question.strip():
                continue

            prompt = FOLLOW_UP_PROMPT.format(
                task=task.to_prompt().strip(),
                question=question,
                search_results=self._join(r.content for r in self.memory.all_search_results()),
                approaches=self._join(a.content for a in self.memory.all_approaches()),
                feedback=self._join(f.content for f in self.memory.all_feedback()),
            )
            try:
                answer = await self.gateway.generate(prompt, model_alias="default")
            except GatewayError as e:
                logger.warning(f"Follow-up question could not be answered: {e}")
                turns.say(f"Sorry, the question could not be answered: {e}")
                continue

            self.memory.store_search_result(f"Follow-up question: {question}")
            self.memory.store_approach(answer)
            turns.say(answer)

    # ──────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────

    def _turns(self) -> TurnProvider:
        if self.turns is None:
            self.turns = ConsoleTurnProvider()
        return self.turns

    def _percent(self, attempts_done: int) -> int:
        return min(100, int(attempts_done * 100 / self.max_attempts))

    def _emit(self, phase: RunPhase, message: str, percent: Optional[int] = None) -> None:
        self.phase = phase
        if self.on_progress is None:
            return
        self.on_progress(RunProgress(
            phase=phase,
            attempt=self.attempts,
            max_attempts=self.max_attempts,
            score=self.score if self.attempts else None,
            percent=self._percent(self.attempts) if percent is None else percent,
            message=message,
        ))

    @staticmethod
    def _join(items) -> str:
        text = "\n\n".join(items)
        return text or "None"

    def _result(
        self,
        task: Task,
        status: RunStatus,
        report: Optional[FinalReport],
        error: Optional[str] = None,
    ) -> RunResult:
        return RunResult(
            status=status,
            task=task.model_copy(deep=True),
            memory=self.memory.snapshot(),
            report=report,
            last_score=self.score,
            attempts=self.attempts,
            max_attempts_reached=(
                self.attempts >= self.max_attempts and self.score < self.target_score
            ),
            error=error,
            usage=self.gateway.usage.to_dict(),
        )
