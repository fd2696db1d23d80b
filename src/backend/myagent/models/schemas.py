"""
Domain models for the refinement agent.

These Pydantic models define the structured data flowing through the loop.
Memory records are frozen once created; the Task only ever grows metadata.
"""
from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ResponseFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


class RunPhase(str, Enum):
    AWAITING_TASK = "awaiting_task"
    GATHERING_CONTEXT = "gathering_context"
    ITERATING = "iterating"
    FINALIZING = "finalizing"
    FOLLOW_UP = "follow_up"
    DONE = "done"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ──────────────────────────────────────────────
# Conversation
# ──────────────────────────────────────────────

class ContentBlock(BaseModel):
    """A typed content block, for backends that refuse a bare string."""
    type: str = "text"
    text: str


class ConversationMessage(BaseModel):
    role: Role
    content: Union[str, List[ContentBlock]] = ""
    created: datetime = Field(default_factory=datetime.now)

    @property
    def text(self) -> str:
        """Plain-text view of the content, joining blocks if needed."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(block.text for block in self.content)

    def to_payload(self) -> Dict[str, Any]:
        """Wire format for the chat-completions request body."""
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [block.model_dump() for block in self.content]
        return {"role": self.role.value, "content": content}

    def as_blocks(self) -> "ConversationMessage":
        """Copy with plain-string content wrapped in a single text block."""
        if isinstance(self.content, str):
            return self.model_copy(update={"content": [ContentBlock(text=self.content)]})
        return self

    @classmethod
    def user(cls, text: str) -> "ConversationMessage":
        return cls(role=Role.USER, content=text)

    @classmethod
    def system(cls, text: str, as_blocks: bool = False) -> "ConversationMessage":
        if as_blocks:
            return cls(role=Role.SYSTEM, content=[ContentBlock(text=text)])
        return cls(role=Role.SYSTEM, content=text)


# ──────────────────────────────────────────────
# Task
# ──────────────────────────────────────────────

MetadataValue = Union[str, int, float, bool, None]

EVALUATION_RATIONALE_KEY = "evaluation_rationale"

# Bookkeeping written by the loop itself; never echoed back into prompts
INTERNAL_METADATA_KEYS = frozenset({EVALUATION_RATIONALE_KEY})


class Task(BaseModel):
    """The single task a run works on. Only metadata and completion change."""
    description: str = Field(..., frozen=True)
    created_at: datetime = Field(default_factory=datetime.now, frozen=True)
    completed_at: Optional[datetime] = None
    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)

    def add_metadata(self, key: str, value: MetadataValue) -> None:
        self.metadata[key] = value

    def get_metadata(self, key: Optional[str] = None) -> Any:
        if key is None:
            return dict(self.metadata)
        return self.metadata.get(key)

    def mark_completed(self) -> None:
        self.completed_at = datetime.now()

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def to_prompt(self) -> str:
        """Prompt-friendly rendering of the task and its scalar metadata."""
        prompt = f"TASK: {self.description}\n"
        visible = [
            (key, value) for key, value in self.metadata.items()
            if value is not None and key not in INTERNAL_METADATA_KEYS
        ]
        if visible:
            prompt += "ADDITIONAL INFORMATION:\n"
            for key, value in visible:
                prompt += f"- {key}: {value}\n"
        return prompt


# ──────────────────────────────────────────────
# Memory records
# ──────────────────────────────────────────────

class _Record(BaseModel):
    model_config = {"frozen": True}

    content: str
    timestamp: datetime = Field(default_factory=datetime.now)


class SearchResult(_Record):
    kind: Literal["search_result"] = "search_result"


class Approach(_Record):
    kind: Literal["approach"] = "approach"


class Feedback(_Record):
    kind: Literal["feedback"] = "feedback"


MemoryRecord = Annotated[
    Union[SearchResult, Approach, Feedback],
    Field(discriminator="kind"),
]


class ScoreRecord(BaseModel):
    model_config = {"frozen": True}

    score: int = Field(..., ge=0, le=10)
    timestamp: datetime = Field(default_factory=datetime.now)


class MemorySnapshot(BaseModel):
    """Serializable copy of everything the working memory holds."""
    task: Optional[Task] = None
    search_results: List[SearchResult] = Field(default_factory=list)
    approaches: List[Approach] = Field(default_factory=list)
    feedback: List[Feedback] = Field(default_factory=list)
    scores: List[ScoreRecord] = Field(default_factory=list)


# ──────────────────────────────────────────────
# Evaluation and results
# ──────────────────────────────────────────────

class EvaluationResult(BaseModel):
    """
    Structured reply expected from the evaluation model.

    Only the score has to be usable. Any numeric value is accepted here
    (clamping happens in the evaluator); a rationale that is not text is
    dropped rather than failing the whole reply.
    """
    score: Union[int, float] = Field(..., description="Completion score from 0 to 10")
    rationale: Optional[str] = Field(None, description="Brief explanation of the score")

    @field_validator("score", mode="before")
    @classmethod
    def _reject_bool(cls, v: Any) -> Any:
        # bool is an int subclass; "true" is not a score
        if isinstance(v, bool):
            raise ValueError("score must be a number, not a boolean")
        return v

    @field_validator("score")
    @classmethod
    def _require_finite(cls, v: Union[int, float]) -> Union[int, float]:
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError("score must be finite")
        return v

    @field_validator("rationale", mode="before")
    @classmethod
    def _drop_non_text(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None


class FinalReport(BaseModel):
    """The synthesized answer handed to the document renderer."""
    title: str
    filename: str
    markdown: str
    export_path: Optional[str] = None
    generated_at: datetime = Field(default_factory=datetime.now)


class RunProgress(BaseModel):
    """Progress event emitted to the caller while a run executes."""
    phase: RunPhase
    attempt: int = 0
    max_attempts: int = 0
    score: Optional[int] = None
    percent: int = 0
    message: str = ""


class RunResult(BaseModel):
    """Terminal state of a run, returned to CLI and API callers."""
    status: RunStatus
    task: Optional[Task] = None
    memory: MemorySnapshot = Field(default_factory=MemorySnapshot)
    report: Optional[FinalReport] = None
    last_score: int = 0
    attempts: int = 0
    max_attempts_reached: bool = False
    error: Optional[str] = None
    usage: Dict[str, Any] = Field(default_factory=dict)


# ──────────────────────────────────────────────
# API Request / Response Models
# ──────────────────────────────────────────────

class RunSubmission(BaseModel):
    """API request to start a non-interactive run."""
    task: str = Field(..., min_length=1, description="Task description")
    context: Optional[str] = Field(None, description="Pre-supplied context, replaces interactive questions")
    max_attempts: Optional[int] = Field(None, gt=0)
    target_score: Optional[int] = Field(None, ge=0, le=10)


class RunResponse(BaseModel):
    run_id: str
    status: RunStatus
    message: str


class RunStatusResponse(BaseModel):
    run_id: str
    status: RunStatus
    result: Optional[RunResult] = None
