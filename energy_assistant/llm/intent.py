"""Intent extraction.

One chat completion turns the user's message (plus history) into a
:class:`TelemetryIntent`. Parsing is forgiving: anything that is not a JSON
object with a boolean ``needsTelemetry`` is treated as
``{"needsTelemetry": false}``. Provider failures are not caught here.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from pydantic import ValidationError

from ..domain.models import TelemetryIntent
from ..providers.base import ChatMessage, ChatOptions, ChatResponse, ModelProvider
from ..utils.correlation import get_request_id
from .prompts import SYSTEM_PROMPT, build_intent_instruction

logger = logging.getLogger(__name__)

INTENT_TEMPERATURE = 0.3
INTENT_MAX_TOKENS = 500

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def extract_json_object(text: str) -> Optional[str]:
    """Extract the first complete JSON object from text using brace counting.

    Braces inside string literals are ignored.
    """
    start_idx = text.find("{")
    if start_idx == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False
    for i in range(start_idx, len(text)):
        char = text[i]
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start_idx : i + 1]
    return None


def parse_intent(content: Optional[str]) -> TelemetryIntent:
    """Parse model output into an intent; never raises."""
    no_telemetry = TelemetryIntent(needs_telemetry=False)
    if not content or not content.strip():
        return no_telemetry

    text = content.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)

    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError:
        candidate = extract_json_object(text)
        if candidate is None:
            logger.warning("intent.parse.not_json", extra={"raw": content[:200]})
            return no_telemetry
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            logger.warning("intent.parse.not_json", extra={"raw": content[:200]})
            return no_telemetry

    if not isinstance(payload, dict):
        logger.warning("intent.parse.not_object", extra={"raw": content[:200]})
        return no_telemetry
    if not isinstance(payload.get("needsTelemetry"), bool):
        logger.warning(
            "intent.parse.missing_flag", extra={"keys": sorted(payload.keys())}
        )
        return no_telemetry
    if not payload["needsTelemetry"]:
        return no_telemetry

    metrics = payload.get("metrics")
    if isinstance(metrics, str):
        payload["metrics"] = [metrics]
    elif metrics is not None and not isinstance(metrics, list):
        payload["metrics"] = None
    if payload.get("device") is not None and not isinstance(payload["device"], str):
        payload["device"] = str(payload["device"])

    try:
        return TelemetryIntent.model_validate(payload)
    except ValidationError as exc:
        # Keep the flag; the translator rejects what it cannot use
        logger.warning("intent.parse.invalid_fields", extra={"error": str(exc)})
        return TelemetryIntent(needs_telemetry=True, device=payload.get("device"))


class IntentExtractor:
    """Asks the provider whether a message needs telemetry, and which."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock

    def build_messages(
        self, message: str, history: List[ChatMessage]
    ) -> List[ChatMessage]:
        now = self._clock() if self._clock else None
        return [
            ChatMessage(role="system", content=SYSTEM_PROMPT),
            *history,
            ChatMessage(role="user", content=message),
            ChatMessage(role="system", content=build_intent_instruction(now)),
        ]

    async def extract(
        self,
        provider: ModelProvider,
        model: str,
        message: str,
        history: List[ChatMessage],
    ) -> TelemetryIntent:
        intent, _response = await self.extract_with_response(
            provider, model, message, history
        )
        return intent

    async def extract_with_response(
        self,
        provider: ModelProvider,
        model: str,
        message: str,
        history: List[ChatMessage],
    ) -> Tuple[TelemetryIntent, ChatResponse]:
        """Like :meth:`extract`, also returning the raw completion for accounting."""
        response = await provider.chat(
            self.build_messages(message, history),
            ChatOptions(
                model=model,
                temperature=INTENT_TEMPERATURE,
                max_tokens=INTENT_MAX_TOKENS,
            ),
        )
        intent = parse_intent(response.content)
        logger.info(
            "intent.extracted",
            extra={
                "req_id": get_request_id(),
                "needs_telemetry": intent.needs_telemetry,
                "device": intent.device,
                "metrics": intent.metrics,
            },
        )
        return intent, response
