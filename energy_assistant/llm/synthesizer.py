"""Turns aggregation results into a short natural-language answer."""

from __future__ import annotations

import json
import logging
from typing import List

from ..domain.models import AggregationResponse
from ..providers.base import ChatMessage, ChatOptions, ChatResponse, ModelProvider
from .prompts import SYSTEM_PROMPT, build_synthesis_instruction

logger = logging.getLogger(__name__)

SYNTHESIS_TEMPERATURE = 0.3
SYNTHESIS_MAX_TOKENS = 100


class ResponseSynthesizer:
    """Second chat completion of a telemetry turn."""

    def build_messages(
        self,
        message: str,
        history: List[ChatMessage],
        result: AggregationResponse,
    ) -> List[ChatMessage]:
        telemetry_json = json.dumps(result.to_payload(), separators=(",", ":"))
        return [
            ChatMessage(role="system", content=SYSTEM_PROMPT),
            *history,
            ChatMessage(role="user", content=message),
            ChatMessage(
                role="system", content=build_synthesis_instruction(telemetry_json)
            ),
        ]

    async def synthesize(
        self,
        provider: ModelProvider,
        model: str,
        message: str,
        history: List[ChatMessage],
        result: AggregationResponse,
    ) -> ChatResponse:
        response = await provider.chat(
            self.build_messages(message, history, result),
            ChatOptions(
                model=model,
                temperature=SYNTHESIS_TEMPERATURE,
                max_tokens=SYNTHESIS_MAX_TOKENS,
            ),
        )
        logger.debug(
            "synthesizer.complete",
            extra={"rows": len(result.data), "answer_length": len(response.content)},
        )
        return response
