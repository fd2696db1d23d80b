"""
Working Memory — the append-only journal of a single run.

Every record (search result, approach, feedback, score) goes into one
ordered log and is never mutated or removed. The typed queries below read
that log back per record kind.

Scores and approaches are related by position only: the i-th score belongs
to the i-th approach. The store does not force both sequences to have the
same length; best_approach() clamps the index instead.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple, Type, TypeVar, Union

from myagent.models.schemas import (
    Approach,
    Feedback,
    MemoryRecord,
    MemorySnapshot,
    ScoreRecord,
    SearchResult,
    Task,
)

logger = logging.getLogger(__name__)

CONTEXT_WINDOW = 3

NO_CONTEXT_SENTINEL = "No previous search results."
NO_SEARCH_RESULT_SENTINEL = "No search results available."
NO_APPROACH_SENTINEL = "No approaches have been generated."

R = TypeVar("R", SearchResult, Approach, Feedback, ScoreRecord)


class InvalidStateError(RuntimeError):
    """The memory was asked to do something its single-task contract forbids."""


class WorkingMemory:
    """Process-scoped, single-task, append-only store."""

    def __init__(self):
        self._task: Optional[Task] = None
        self._log: List[Union[MemoryRecord, ScoreRecord]] = []
        self._iteration_open = False

    # ──────────────────────────────────────────────
    # Task
    # ──────────────────────────────────────────────

    def store_task(self, task: Task) -> None:
        if (
            self._iteration_open
            and self._task is not None
            and task.description != self._task.description
        ):
            raise InvalidStateError(
                "Cannot switch tasks while an iteration is in progress "
                f"(active task: {self._task.description[:60]!r})"
            )
        self._task = task

    @property
    def current_task(self) -> Optional[Task]:
        return self._task

    @contextmanager
    def iteration_scope(self) -> Iterator[None]:
        """Mark an iteration as in progress for the duration of the block."""
        self._iteration_open = True
        try:
            yield
        finally:
            self._iteration_open = False

    # ──────────────────────────────────────────────
    # Appends
    # ──────────────────────────────────────────────

    def store_search_result(self, text: str) -> None:
        self._log.append(SearchResult(content=text))

    def store_approach(self, text: str) -> None:
        self._log.append(Approach(content=text))

    def store_feedback(self, text: str) -> None:
        self._log.append(Feedback(content=text))

    def store_score(self, score: int) -> None:
        self._log.append(ScoreRecord(score=max(0, min(10, int(score)))))

    # ──────────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────────

    def _of_kind(self, kind: Type[R]) -> Tuple[R, ...]:
        return tuple(record for record in self._log if isinstance(record, kind))

    def all_search_results(self) -> Tuple[SearchResult, ...]:
        return self._of_kind(SearchResult)

    def all_approaches(self) -> Tuple[Approach, ...]:
        return self._of_kind(Approach)

    def all_feedback(self) -> Tuple[Feedback, ...]:
        return self._of_kind(Feedback)

    def all_scores(self) -> Tuple[ScoreRecord, ...]:
        return self._of_kind(ScoreRecord)

    @property
    def last_score(self) -> Optional[int]:
        scores = self.all_scores()
        return scores[-1].score if scores else None

    def recent_context_summary(self) -> str:
        """The last three search results, oldest first, with ordinal labels."""
        results = self.all_search_results()
        if not results:
            return NO_CONTEXT_SENTINEL

        recent = results[-CONTEXT_WINDOW:]
        return "".join(
            f"Search result {i}: {result.content}\n\n"
            for i, result in enumerate(recent, 1)
        )

    def latest_search_result(self) -> str:
        results = self.all_search_results()
        if not results:
            return NO_SEARCH_RESULT_SENTINEL
        return results[-1].content

    def last_feedback(self) -> Optional[str]:
        feedback = self.all_feedback()
        if not feedback:
            return None
        return feedback[-1].content

    def best_approach(self) -> str:
        """
        Approach belonging to the highest score.

        Ties keep the earliest index. Without scores, the most recent
        approach wins.
        """
        approaches = self.all_approaches()
        if not approaches:
            return NO_APPROACH_SENTINEL

        scores = self.all_scores()
        if not scores:
            return approaches[-1].content

        best_index = 0
        best_score = scores[0].score
        for index, record in enumerate(scores):
            if record.score > best_score:
                best_score = record.score
                best_index = index

        best_index = min(best_index, len(approaches) - 1)
        return approaches[best_index].content

    def snapshot(self) -> MemorySnapshot:
        return MemorySnapshot(
            task=self._task.model_copy(deep=True) if self._task else None,
            search_results=list(self.all_search_results()),
            approaches=list(self.all_approaches()),
            feedback=list(self.all_feedback()),
            scores=list(self.all_scores()),
        )
