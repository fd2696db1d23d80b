"""
Pytest configuration and fixtures for the refinement agent tests.

This module provides:
- Network blocking fixture so no test can reach a real model API
- Settings pointed at a temporary reports directory
- ScriptedGateway, a stand-in for ModelGateway with canned replies per alias
"""

import socket
from collections import defaultdict, deque
from typing import Dict, Iterable, List, Optional, Tuple
from unittest.mock import patch

import pytest

from myagent.config import Settings
from myagent.models.schemas import ConversationMessage, ResponseFormat, Role
from myagent.services.gateway import GatewayError
from myagent.services.usage_tracker import UsageLedger


class NetworkBlockedError(Exception):
    """Raised when a test attempts to make a network connection."""
    pass


def _block_socket_connect(*args, **kwargs):
    raise NetworkBlockedError(
        "Network access is blocked in unit tests. Use httpx.MockTransport or ScriptedGateway."
    )


@pytest.fixture(autouse=True)
def block_network():
    """Automatically block all outbound connections in tests."""
    with patch.object(socket.socket, "connect", _block_socket_connect):
        with patch.object(socket, "create_connection", _block_socket_connect):
            yield


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        llm_api_key="sk-test-key",
        reports_dir=str(tmp_path / "reports"),
        execution={"max_attempts": 3, "target_score": 8},
    )


class ScriptedGateway:
    """
    Replays canned replies per model alias.

    Each alias has its own queue; a queued GatewayError is raised instead of
    returned. When an alias runs dry, ``fallback`` is returned. Every call is
    recorded in ``calls`` as (alias, prompt, system_prompt, response_format).
    """

    def __init__(
        self,
        replies: Optional[Dict[str, Iterable]] = None,
        fallback: str = "ok",
    ):
        self._replies = defaultdict(deque)
        for alias, items in (replies or {}).items():
            self._replies[alias].extend(items)
        self.fallback = fallback
        self.calls: List[Tuple[str, str, Optional[str], ResponseFormat]] = []
        self.usage = UsageLedger()
        self.closed = False

    async def generate(
        self,
        prompt: str,
        model_alias: str = "default",
        system_prompt: Optional[str] = None,
        response_format: ResponseFormat = ResponseFormat.TEXT,
        temperature: Optional[float] = None,
    ) -> str:
        self.calls.append((model_alias, prompt, system_prompt, response_format))
        queue = self._replies[model_alias]
        reply = queue.popleft() if queue else self.fallback
        if isinstance(reply, GatewayError):
            raise reply
        self.usage.record(
            model=f"model-{model_alias}",
            model_alias=model_alias,
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(reply.split()),
            latency_ms=1,
        )
        return reply

    async def send(self, messages, model_alias="default", instructions=None,
                   response_format=ResponseFormat.TEXT, temperature=None):
        if isinstance(messages, ConversationMessage):
            messages = [messages]
        text = await self.generate(
            messages[-1].text, model_alias, instructions, response_format, temperature
        )
        return ConversationMessage(role=Role.ASSISTANT, content=text)

    async def aclose(self) -> None:
        self.closed = True

    def aliases(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def scripted_gateway():
    return ScriptedGateway
