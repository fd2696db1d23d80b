"""
Model Gateway — handles all communication with the generative model backend.

Every component that needs a model reply goes through this service. It owns:
  - resolving a logical model alias to a concrete model id
  - prepending the standing instruction as a system message
  - backend quirks (reasoning models reject system roles, search models
    want typed content blocks)
  - the delivery retry policy (fixed delays, no backoff)

An exhausted retry budget raises GatewayError; nothing in here ends the
process.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from myagent.config import Settings
from myagent.models.schemas import ConversationMessage, ResponseFormat, Role
from myagent.services.usage_tracker import UsageLedger

logger = logging.getLogger(__name__)

# Delivery policy
MAX_DELIVERY_ATTEMPTS = 5
EMPTY_BODY_THRESHOLD = 10  # bytes; bodies this small are treated as empty
EMPTY_BODY_RETRY_DELAY = 2.0  # seconds
BAD_STATUS_RETRY_DELAY = 3.0  # seconds

# Model families, matched as substrings of the model id
REASONING_MARKERS = ("o1", "o3", "o4")
COMPLETION_BUDGET_MARKERS = REASONING_MARKERS + ("reasoner",)
BLOCK_CONTENT_MARKERS = ("search",)

Messages = Union[ConversationMessage, Sequence[ConversationMessage]]


class GatewayError(RuntimeError):
    """The backend could not produce a usable reply."""

    def __init__(self, message: str, status_code: Optional[int] = None, attempts: int = 0):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


def is_reasoning_model(model_id: str) -> bool:
    """Reasoning models reject system-role messages."""
    return any(marker in model_id for marker in REASONING_MARKERS)


def uses_completion_budget(model_id: str) -> bool:
    return any(marker in model_id for marker in COMPLETION_BUDGET_MARKERS)


def uses_content_blocks(model_id: str) -> bool:
    return any(marker in model_id for marker in BLOCK_CONTENT_MARKERS)


class ModelGateway:
    """
    Unified interface for model inference.

    Usage:
        gateway = ModelGateway(settings)
        reply = await gateway.send(ConversationMessage.user("..."), model_alias="search")
        text = await gateway.generate("...", model_alias="thinking")
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client
        self.usage = UsageLedger()

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-initialize the HTTP client."""
        if self._client is None:
            timeout_ms = self.settings.api.timeout_ms
            self._client = httpx.AsyncClient(timeout=timeout_ms / 1000 if timeout_ms else None)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ──────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────

    async def send(
        self,
        messages: Messages,
        model_alias: str = "default",
        instructions: Optional[str] = None,
        response_format: ResponseFormat = ResponseFormat.TEXT,
        temperature: Optional[float] = None,
    ) -> ConversationMessage:
        """
        Deliver a conversation and return the reply as an assistant message.

        Args:
            messages: One message or an ordered conversation
            model_alias: Logical model slot, resolved via the alias table
            instructions: Replaces the standing instruction for this call
            response_format: TEXT or JSON (structured output hint)
            temperature: Sampling temperature (None = configured default)

        Raises:
            GatewayError: retries exhausted or the reply carried no content
        """
        model_id = self.settings.models.resolve(model_alias)
        conversation = self.build_conversation(messages, model_id, instructions)
        payload = self.build_payload(conversation, model_id, response_format, temperature)

        t0 = time.monotonic()
        response, attempts = await self._deliver(payload)
        latency_ms = int((time.monotonic() - t0) * 1000)

        data = self._decode(response, attempts)
        content = self._extract_content(data, response.status_code, attempts)

        usage = data.get("usage") or {}
        self.usage.record(
            model=model_id,
            model_alias=model_alias,
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
            latency_ms=latency_ms,
            attempts=attempts,
        )
        logger.debug(
            f"{model_alias} ({model_id}) replied in {latency_ms}ms after {attempts} attempt(s)"
        )

        return ConversationMessage(role=Role.ASSISTANT, content=content)

    async def generate(
        self,
        prompt: str,
        model_alias: str = "default",
        system_prompt: Optional[str] = None,
        response_format: ResponseFormat = ResponseFormat.TEXT,
        temperature: Optional[float] = None,
    ) -> str:
        """Single-prompt convenience wrapper around send(); returns the reply text."""
        reply = await self.send(
            ConversationMessage.user(prompt),
            model_alias=model_alias,
            instructions=system_prompt,
            response_format=response_format,
            temperature=temperature,
        )
        return reply.text

    async def check_readiness(self, model_alias: str = "default") -> bool:
        """
        Lightweight check: one tiny request, no retries.

        Returns True if the backend answers with a 200, False otherwise.
        """
        model_id = self.settings.models.resolve(model_alias)
        payload = self.build_payload(
            [ConversationMessage.user("ping")], model_id, ResponseFormat.TEXT, 0.0
        )
        try:
            client = await self._get_client()
            response = await client.post(
                self.settings.api.endpoint, json=payload, headers=self._headers()
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Readiness check failed: {e}")
            return False

    # ──────────────────────────────────────────────
    # Request building
    # ──────────────────────────────────────────────

    def build_conversation(
        self,
        messages: Messages,
        model_id: str,
        instructions: Optional[str] = None,
    ) -> List[ConversationMessage]:
        """Prepend the rule message and apply per-family role rewrites."""
        if isinstance(messages, ConversationMessage):
            messages = [messages]

        rule_text = instructions if instructions is not None else self.settings.standing_instructions
        rule = ConversationMessage.system(rule_text)
        conversation = [rule, *messages]

        if uses_content_blocks(model_id):
            conversation = [m.as_blocks() for m in conversation]

        if is_reasoning_model(model_id):
            conversation = [
                m.model_copy(update={"role": Role.USER}) if m.role == Role.SYSTEM else m
                for m in conversation
            ]
        return conversation

    def build_payload(
        self,
        conversation: Sequence[ConversationMessage],
        model_id: str,
        response_format: ResponseFormat,
        temperature: Optional[float],
    ) -> Dict[str, Any]:
        generation = self.settings.generation
        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": [m.to_payload() for m in conversation],
        }
        if uses_completion_budget(model_id):
            payload["max_completion_tokens"] = generation.max_completion_tokens
        else:
            payload["max_tokens"] = generation.max_tokens
            payload["response_format"] = {
                "type": "json_object" if response_format == ResponseFormat.JSON else "text",
            }
            payload["temperature"] = (
                generation.default_temperature if temperature is None else temperature
            )
        return payload

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.llm_api_key.strip()}",
        }

    # ──────────────────────────────────────────────
    # Delivery
    # ──────────────────────────────────────────────

    async def _deliver(self, payload: Dict[str, Any]) -> Tuple[httpx.Response, int]:
        """
        POST the payload, retrying bad statuses and empty bodies.

        Returns the first successful response and the number of attempts used.
        """
        client = await self._get_client()
        endpoint = self.settings.api.endpoint
        last_error = ""
        last_status: Optional[int] = None

        for attempt in range(1, MAX_DELIVERY_ATTEMPTS + 1):
            try:
                response = await client.post(endpoint, json=payload, headers=self._headers())
            except httpx.HTTPError as e:
                last_error = f"transport error: {e}"
                delay = BAD_STATUS_RETRY_DELAY
            else:
                last_status = response.status_code
                if response.status_code != 200:
                    last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                    delay = BAD_STATUS_RETRY_DELAY
                elif len(response.content) <= EMPTY_BODY_THRESHOLD:
                    last_error = f"empty response body ({len(response.content)} bytes)"
                    delay = EMPTY_BODY_RETRY_DELAY
                else:
                    return response, attempt

            if attempt < MAX_DELIVERY_ATTEMPTS:
                logger.warning(
                    f"Model API delivery failed (attempt {attempt}/{MAX_DELIVERY_ATTEMPTS}): "
                    f"{last_error}. Retrying in {delay:.0f}s..."
                )
                await asyncio.sleep(delay)

        logger.error(f"Model API delivery failed after {MAX_DELIVERY_ATTEMPTS} attempts: {last_error}")
        raise GatewayError(
            f"Model API delivery failed after {MAX_DELIVERY_ATTEMPTS} attempts: {last_error}",
            status_code=last_status,
            attempts=MAX_DELIVERY_ATTEMPTS,
        )

    @staticmethod
    def _decode(response: httpx.Response, attempts: int) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(
                f"Model API returned a non-JSON body: {e}",
                status_code=response.status_code,
                attempts=attempts,
            ) from e
        if not isinstance(data, dict):
            raise GatewayError(
                "Model API returned an unexpected payload",
                status_code=response.status_code,
                attempts=attempts,
            )
        return data

    @staticmethod
    def _extract_content(data: Dict[str, Any], status_code: int, attempts: int) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None

        if not isinstance(content, str):
            error = data.get("error")
            detail = error.get("message") if isinstance(error, dict) else None
            raise GatewayError(
                f"Model API reply has no content: {detail or 'missing choices[0].message.content'}",
                status_code=status_code,
                attempts=attempts,
            )
        return content


# ──────────────────────────────────────────────
# Reply helpers
# ──────────────────────────────────────────────

def extract_json(text: str) -> str:
    """Extract JSON from a response that might include markdown code blocks."""
    if "```json" in text:
        start = text.index("```json") + 7
        end = text.find("```", start)
        if end == -1:
            return text[start:].strip()
        return text[start:end].strip()
    if "```" in text:
        start = text.index("```") + 3
        end = text.find("```", start)
        if end == -1:
            return text[start:].strip()
        return text[start:end].strip()
    # Raw JSON: take the first balanced object or array, ignoring brackets inside strings
    for i, char in enumerate(text):
        if char in "{[":
            depth = 0
            in_string = False
            escaped = False
            for j in range(i, len(text)):
                c = text[j]
                if in_string:
                    if escaped:
                        escaped = False
                    elif c == "\\":
                        escaped = True
                    elif c == '"':
                        in_string = False
                    continue
                if c == '"':
                    in_string = True
                elif c in "{[":
                    depth += 1
                elif c in "}]":
                    depth -= 1
                    if depth == 0:
                        return text[i : j + 1]
            break
    return text.strip()
