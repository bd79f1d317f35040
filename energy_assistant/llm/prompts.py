"""Prompts for the energy assistant.

The assistant prompt frames every conversation; the intent instruction asks
for a single JSON object describing whether telemetry is needed; the
synthesis instruction turns aggregation results into a short factual answer.
Relative dates ("last week") are resolved by the model against the
current-date anchor embedded in the intent instruction.
"""

from datetime import datetime, timezone
from typing import Optional

from ..domain.models import CANONICAL_METRICS, DEVICE_TYPES

SYSTEM_PROMPT = """You are an AI assistant for a smart home energy monitoring system.
You help users understand their energy consumption patterns and provide insights.
When users ask about energy usage, you should request specific details like device \
type and time period.
Be concise, helpful, and focus on energy-related queries.

Available metrics: power_consumption, voltage, current
Available device types: AC, refrigerator, lights, fan, heater, washing machine, dryer
For time ranges, use ISO 8601 format (YYYY-MM-DDTHH:mm:ss.sssZ)"""


def build_intent_instruction(now: Optional[datetime] = None) -> str:
    """Return the final system instruction for intent extraction.

    Args:
        now: Reference instant for relative dates; defaults to the current
            UTC time.
    """
    anchor = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    anchor_text = anchor.isoformat().replace("+00:00", "Z")
    return f"""Analyze the user's message and determine if it requires telemetry data.

Available metrics: {", ".join(CANONICAL_METRICS)}
Available device types: {", ".join(DEVICE_TYPES)} \
(short names such as AC, fridge, fan, heater, washer, dryer are fine)

Use the following rules for aggregation:
- If the time range is exactly one day, return daily aggregation by default.
- If the user explicitly asks for hourly data, use hourly.
- Weekly or monthly only if user mentions "week" or "month".

If the query needs telemetry data, respond with a JSON object:
{{
  "needsTelemetry": true,
  "device": "device_name_or_type",
  "timeRange": {{
    "start": "ISO_8601_date",
    "end": "ISO_8601_date"
  }},
  "metrics": ["metric1", "metric2"],
  "aggregation": "hourly|daily|weekly|monthly" (optional)
}}

If not, respond with: {{"needsTelemetry": false}}

Respond with the JSON object only.
For relative dates like "last week", calculate the actual dates. \
Use current date as reference: {anchor_text}"""


def build_synthesis_instruction(telemetry_json: str) -> str:
    """Return the system instruction that embeds aggregation results."""
    return f"""Here's the telemetry data for the user's query: {telemetry_json}.

Provide a concise response with just the key data points from the telemetry data.
Do not include any recommendations or additional advice.
Keep the response under 2 sentences if possible."""
