"""Chat turn orchestration.

One turn runs a fixed linear pipeline::

    ExtractIntent -> [needsTelemetry? Translate -> Aggregate] ->
    Synthesize (telemetry) or plain chat (no telemetry)

Any failure along the way collapses into a fixed apology string. The
original exception is logged with its traceback; it never escapes
:meth:`ChatOrchestrator.process_message`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from ..domain.aggregation import AggregationEngine
from ..domain.translator import intent_to_query_params
from ..errors import ProviderError
from ..providers.base import ChatMessage, ChatOptions, ChatResponse, ModelProvider
from ..providers.factory import ProviderFactory
from ..utils.correlation import get_request_id
from .intent import IntentExtractor
from .prompts import SYSTEM_PROMPT
from .synthesizer import ResponseSynthesizer

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = (
    "Sorry, I encountered an error processing your request. Please try again."
)
FALLBACK_MODEL = "gpt-3.5-turbo"
CHAT_TEMPERATURE = 0.7
CHAT_MAX_TOKENS = 500


@dataclass
class OrchestrationResult:
    """Outcome of one chat turn."""

    answer: str
    provider: Optional[str] = None
    model: Optional[str] = None
    needs_telemetry: bool = False
    degraded: bool = False
    llm_calls: int = 0
    total_tokens: int = 0
    total_duration_ms: int = 0


class ChatOrchestrator:
    """Runs the intent -> query -> answer pipeline for a single message.

    Example:
        orchestrator = ChatOrchestrator(provider_factory, AggregationEngine(engine))
        result = await orchestrator.process_message(
            "What was my AC usage last week", history=[], user_id=user.id
        )
    """

    def __init__(
        self,
        provider_factory: ProviderFactory,
        aggregation_engine: AggregationEngine,
        intent_extractor: Optional[IntentExtractor] = None,
        synthesizer: Optional[ResponseSynthesizer] = None,
    ) -> None:
        self._providers = provider_factory
        self._engine = aggregation_engine
        self._intent = intent_extractor or IntentExtractor()
        self._synthesizer = synthesizer or ResponseSynthesizer()

    async def _select_provider(self, requested: Optional[str]) -> ModelProvider:
        if requested:
            provider = self._providers.get_provider(requested)
        else:
            provider = await self._providers.get_default_provider()
        if provider is None:
            raise ProviderError(
                "Selected AI provider is not available", requested or None
            )
        return provider

    @staticmethod
    async def _select_model(provider: ModelProvider, requested: Optional[str]) -> str:
        if requested:
            return requested
        models = await provider.get_available_models()
        return models[0].id if models else FALLBACK_MODEL

    async def _plain_chat(
        self,
        provider: ModelProvider,
        model: str,
        message: str,
        history: List[ChatMessage],
    ) -> ChatResponse:
        messages = [
            ChatMessage(role="system", content=SYSTEM_PROMPT),
            *history,
            ChatMessage(role="user", content=message),
        ]
        return await provider.chat(
            messages,
            ChatOptions(
                model=model, temperature=CHAT_TEMPERATURE, max_tokens=CHAT_MAX_TOKENS
            ),
        )

    async def process_message(
        self,
        message: str,
        history: List[ChatMessage],
        user_id: str,
        model: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> OrchestrationResult:
        """Answer one user message; never raises.

        Args:
            message: The user's text for this turn.
            history: Prior messages of the session, oldest first.
            user_id: Authenticated principal; scopes every telemetry query.
            model: Optional model id; defaults to the provider's first model.
            provider: Optional provider name; defaults to the healthy default.

        Returns:
            OrchestrationResult with the answer or the apology on failure.
        """
        start = time.time()
        result = OrchestrationResult(answer=APOLOGY_MESSAGE)
        req_id = get_request_id()

        def _account(response: ChatResponse) -> None:
            result.llm_calls += 1
            if response.tokens is not None:
                result.total_tokens += response.tokens.total

        try:
            selected = await self._select_provider(provider)
            result.provider = selected.get_name()
            result.model = await self._select_model(selected, model)

            logger.info(
                "chat.turn.start",
                extra={
                    "req_id": req_id,
                    "provider": result.provider,
                    "model": result.model,
                    "history_length": len(history),
                },
            )

            intent, intent_response = await self._intent.extract_with_response(
                selected, result.model, message, history
            )
            _account(intent_response)
            result.needs_telemetry = intent.needs_telemetry

            if intent.needs_telemetry:
                params = intent_to_query_params(intent)
                aggregated = await self._engine.query_async(params, user_id)
                response = await self._synthesizer.synthesize(
                    selected, result.model, message, history, aggregated
                )
            else:
                response = await self._plain_chat(
                    selected, result.model, message, history
                )
            _account(response)
            result.answer = response.content
        except Exception as exc:  # noqa: BLE001
            result.answer = APOLOGY_MESSAGE
            result.degraded = True
            logger.error(
                "chat.turn.failed",
                extra={
                    "req_id": req_id,
                    "provider": result.provider,
                    "model": result.model,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
                exc_info=True,
            )
        finally:
            result.total_duration_ms = int((time.time() - start) * 1000)

        logger.info(
            "chat.turn.complete",
            extra={
                "req_id": req_id,
                "needs_telemetry": result.needs_telemetry,
                "degraded": result.degraded,
                "llm_calls": result.llm_calls,
                "total_tokens": result.total_tokens,
                "duration_ms": result.total_duration_ms,
            },
        )
        return result


def create_orchestrator(
    provider_factory: ProviderFactory, aggregation_engine: AggregationEngine
) -> ChatOrchestrator:
    """Create a chat orchestrator with the default extractor and synthesizer."""
    return ChatOrchestrator(provider_factory, aggregation_engine)
