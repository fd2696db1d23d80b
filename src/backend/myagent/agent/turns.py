"""
Conversation turns — how the orchestrator talks to a human, if there is one.

The orchestrator never reads stdin itself. Interactive runs get a
ConsoleTurnProvider; headless runs and tests get a ScriptedTurnProvider with
the replies decided up front.
"""
from __future__ import annotations

from collections import deque
from typing import Callable, Iterable, List, Optional, Protocol


class TurnProvider(Protocol):
    """Request-for-input / response interface."""

    def ask(self, prompt: str) -> Optional[str]:
        """Return one line of input, or None when input has ended."""
        ...

    def ask_multiline(self, prompt: str) -> str:
        """Return lines of input up to the first blank line, joined by newlines."""
        ...

    def say(self, text: str) -> None:
        ...


class ConsoleTurnProvider:
    """Reads from stdin and writes to stdout."""

    def __init__(
        self,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ):
        self._input = input_fn
        self._output = output_fn

    def ask(self, prompt: str) -> Optional[str]:
        try:
            return self._input(prompt).strip()
        except EOFError:
            return None

    def ask_multiline(self, prompt: str) -> str:
        self._output(prompt)
        lines: List[str] = []
        while True:
            try:
                line = self._input("")
            except EOFError:
                break
            if not line.strip():
                break
            lines.append(line.rstrip())
        return "\n".join(lines)

    def say(self, text: str) -> None:
        self._output(text)


class ScriptedTurnProvider:
    """
    Replays pre-supplied replies in order.

    Everything said to the user is kept in ``transcript`` so callers can
    inspect it afterwards.
    """

    def __init__(self, replies: Iterable[str] = ()):
        self._replies = deque(replies)
        self.transcript: List[str] = []

    def ask(self, prompt: str) -> Optional[str]:
        self.transcript.append(prompt)
        if not self._replies:
            return None
        return self._replies.popleft().strip()

    def ask_multiline(self, prompt: str) -> str:
        self.transcript.append(prompt)
        if not self._replies:
            return ""
        return self._replies.popleft().strip()

    def say(self, text: str) -> None:
        self.transcript.append(text)
