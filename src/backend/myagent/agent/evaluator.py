"""
Evaluator — scores the latest approach and writes refinement feedback.

Raw model scores are not trusted as-is. Before a score is stored it passes
through the progressive-scoring policy: early attempts are capped so the
model cannot declare success too soon, and every score after the first may
rise at most MAX_STEP_INCREASE above the previous one.
"""
from __future__ import annotations

import json
import logging
from typing import Optional, Sequence

from pydantic import ValidationError

from myagent.agent.memory import WorkingMemory
from myagent.models.schemas import (
    EVALUATION_RATIONALE_KEY,
    EvaluationResult,
    ResponseFormat,
    Task,
)
from myagent.services.gateway import ModelGateway, extract_json

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 5
MIN_SCORE = 0
MAX_SCORE = 10
EARLY_ATTEMPT_CAP = 6      # applies while 1 <= attempt_count < 3
LATE_ATTEMPT_CAP = 8       # applies when attempt_count == 3
MAX_STEP_INCREASE = 3
RATIONALE_KEY = EVALUATION_RATIONALE_KEY

EVALUATION_PROMPT = """You are an objective evaluator tasked with rating the completeness of a solution.

TASK:
{task}

LATEST APPROACH:
{approach}

PREVIOUS SCORES (oldest first):
{score_history}

LATEST RESEARCH CONTEXT:
{context}

LAST FEEDBACK GIVEN:
{feedback}

Using a scale from 0-10 (where 0 is not started and 10 is fully completed):
1. Evaluate how well the approach addresses the task
2. Consider accuracy, comprehensiveness, and practicality
3. Return ONLY a JSON object with the structure: {{"score": X, "rationale": "brief explanation"}}

Ensure your assessment is fair, objective, and based solely on how well the approach fulfills the original task requirements."""

FEEDBACK_PROMPT = """You are providing constructive feedback to improve a solution to this task.

TASK:
{task}

CURRENT APPROACH:
{approach}

ATTEMPTS SO FAR: {attempts}
CURRENT SCORE: {score}/10 (target: {target}/10)

EVALUATOR RATIONALE:
{rationale}

Provide specific, actionable feedback on how to improve this approach. Focus on:
1. What aspects are missing or incomplete
2. What could be explored further
3. Specific directions to pursue in the next iteration

Your feedback should be constructive and helpful for creating an improved solution."""


def clamp_score(score: float) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(score)))


def apply_progressive_caps(raw_score: float, previous_scores: Sequence[int]) -> int:
    """
    Apply the progressive-scoring policy to a raw evaluator score.

    Args:
        raw_score: Score as returned by the model (any number)
        previous_scores: Stored scores so far, excluding the one being computed

    Returns:
        The minimum of the clamped score and every applicable cap.
    """
    score = clamp_score(raw_score)
    attempt_count = len(previous_scores)

    if 1 <= attempt_count < 3:
        score = min(score, EARLY_ATTEMPT_CAP)
    elif attempt_count == 3:
        score = min(score, LATE_ATTEMPT_CAP)

    if attempt_count >= 1:
        score = min(score, previous_scores[-1] + MAX_STEP_INCREASE)

    return score


class Evaluator:
    """Uses the evaluation model to score approaches and suggest refinements."""

    def __init__(self, gateway: ModelGateway, target_score: int = MAX_SCORE):
        self.gateway = gateway
        self.target_score = target_score

    async def evaluate_task_completion(self, task: Task, memory: WorkingMemory) -> int:
        """
        Score the latest approach from 0-10 and store the result.

        A reply that cannot be parsed yields NEUTRAL_SCORE, which is returned
        but not stored.
        """
        prompt = EVALUATION_PROMPT.format(
            task=task.description,
            approach=self._latest_approach(memory),
            score_history=self._format_scores(memory),
            context=memory.recent_context_summary(),
            feedback=memory.last_feedback() or "None",
        )

        raw = await self.gateway.generate(
            prompt,
            model_alias="evaluation",
            response_format=ResponseFormat.JSON,
        )

        result = self._parse(raw)
        if result is None:
            logger.warning(
                f"Failed to parse evaluation response, using default score {NEUTRAL_SCORE}. "
                f"Raw: {raw[:300]}"
            )
            return NEUTRAL_SCORE

        previous = [record.score for record in memory.all_scores()]
        score = apply_progressive_caps(result.score, previous)
        if score != clamp_score(result.score):
            logger.info(
                f"Evaluator score {result.score} capped to {score} "
                f"(attempt {len(previous) + 1})"
            )

        memory.store_score(score)
        if result.rationale:
            task.add_metadata(RATIONALE_KEY, result.rationale)

        return score

    async def generate_feedback(
        self,
        task: Task,
        memory: WorkingMemory,
        attempts: int,
        score: int,
    ) -> str:
        """
        Ask the evaluation model how the latest approach should improve.

        Args:
            attempts: Iterations run so far, including the current one
            score: The score the loop is acting on, stored or not
        """
        prompt = FEEDBACK_PROMPT.format(
            task=task.description,
            approach=self._latest_approach(memory),
            attempts=attempts,
            score=score,
            target=self.target_score,
            rationale=task.get_metadata(RATIONALE_KEY) or "None recorded",
        )
        return await self.gateway.generate(prompt, model_alias="evaluation")

    @staticmethod
    def _parse(raw: str) -> Optional[EvaluationResult]:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            try:
                data = json.loads(extract_json(raw))
            except json.JSONDecodeError:
                return None
        if not isinstance(data, dict):
            return None
        try:
            return EvaluationResult.model_validate(data)
        except ValidationError:
            return None

    @staticmethod
    def _latest_approach(memory: WorkingMemory) -> str:
        approaches = memory.all_approaches()
        return approaches[-1].content if approaches else "No approach yet."

    @staticmethod
    def _format_scores(memory: WorkingMemory) -> str:
        scores = memory.all_scores()
        if not scores:
            return "None"
        return ", ".join(str(record.score) for record in scores)
