"""LLM-driven chat pipeline.

Architecture:
- prompts.py: assistant prompt, intent and synthesis instructions
- intent.py: one completion -> TelemetryIntent (never raises on bad JSON)
- synthesizer.py: aggregation results -> short factual answer
- orchestrator.py: wires the stages and degrades to a fixed apology

Example usage:
    from energy_assistant.llm.orchestrator import create_orchestrator

    orchestrator = create_orchestrator(provider_factory, aggregation_engine)
    result = await orchestrator.process_message(
        "What was my AC usage last week", history=[], user_id=user_id
    )
"""

from .intent import IntentExtractor, parse_intent
from .orchestrator import (
    APOLOGY_MESSAGE,
    ChatOrchestrator,
    OrchestrationResult,
    create_orchestrator,
)
from .synthesizer import ResponseSynthesizer

__all__ = [
    "APOLOGY_MESSAGE",
    "ChatOrchestrator",
    "IntentExtractor",
    "OrchestrationResult",
    "ResponseSynthesizer",
    "create_orchestrator",
    "parse_intent",
]
