"""
Usage Tracker — records token usage and latency for every model call.

The gateway appends one record per successful call. Callers only see the
aggregate via ``UsageLedger.to_dict()``, which the orchestrator attaches to
the run result.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class UsageRecord:
    """Record of a single model call."""
    call_id: str
    model: str
    model_alias: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0
    attempts: int = 1                      # transport attempts, including retries
    timestamp: float = 0.0


@dataclass
class UsageLedger:
    """Running ledger of all model calls made by one gateway."""
    calls: List[UsageRecord] = field(default_factory=list)

    @property
    def total_prompt_tokens(self) -> int:
        return sum(c.prompt_tokens for c in self.calls)

    @property
    def total_completion_tokens(self) -> int:
        return sum(c.completion_tokens for c in self.calls)

    @property
    def total_tokens(self) -> int:
        return sum(c.total_tokens for c in self.calls)

    @property
    def total_latency_ms(self) -> int:
        return sum(c.latency_ms for c in self.calls)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def tokens_per_alias(self) -> Dict[str, int]:
        """Map of model alias → total tokens."""
        totals: Dict[str, int] = {}
        for c in self.calls:
            totals[c.model_alias] = totals.get(c.model_alias, 0) + c.total_tokens
        return totals

    def record(
        self,
        model: str,
        model_alias: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int,
        attempts: int = 1,
    ) -> UsageRecord:
        record = UsageRecord(
            call_id=f"{model_alias}_{len(self.calls)}",
            model=model,
            model_alias=model_alias,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            latency_ms=latency_ms,
            attempts=attempts,
            timestamp=time.time(),
        )
        self.calls.append(record)
        return record

    def to_dict(self) -> dict:
        """Serialize for JSON output."""
        return {
            "call_count": self.call_count,
            "total_prompt_tokens": self.total_prompt_tokens,
            "total_completion_tokens": self.total_completion_tokens,
            "total_tokens": self.total_tokens,
            "total_latency_ms": self.total_latency_ms,
            "tokens_per_alias": self.tokens_per_alias(),
        }
