"""Intent to query translation.

Pure functions that turn a :class:`TelemetryIntent` into validated
:class:`QueryParams`: device resolution, metric aliasing, and aggregation
bucket selection. Nothing here touches the network or the database.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from ..errors import QueryValidationError
from .models import (
    ALL_FUNCTIONS,
    CANONICAL_METRICS,
    DEVICE_TYPES,
    Aggregation,
    QueryParams,
    TelemetryIntent,
    build_query_params,
)
from .timestamps import day_span, parse_timestamp

logger = logging.getLogger(__name__)

DEVICE_ALIASES: Dict[str, str] = {
    "ac": "air_conditioner",
    "aircon": "air_conditioner",
    "air con": "air_conditioner",
    "fridge": "refrigerator",
    "light": "lights",
    "fan": "ceiling_fan",
    "heater": "space_heater",
    "washing machine": "washing_machine",
    "washer": "washing_machine",
    "dryer": "clothes_dryer",
}

METRIC_ALIASES: Dict[str, str] = {
    "energyConsumption": "power_consumption",
    "powerConsumption": "power_consumption",
    "energy": "power_consumption",
    "power": "power_consumption",
    "voltage": "voltage",
    "current": "current",
}


class DeviceFilter(NamedTuple):
    device_type: Optional[str] = None
    device_name: Optional[str] = None


def resolve_device(device: Optional[str]) -> DeviceFilter:
    """Map a free-text device reference onto a type or name filter.

    Precedence: "all" (no filter), alias table, canonical device type, then
    the input verbatim as a device name.

    >>> resolve_device("AC")
    DeviceFilter(device_type='air_conditioner', device_name=None)
    >>> resolve_device("toaster")
    DeviceFilter(device_type=None, device_name='toaster')
    """
    if device is None:
        return DeviceFilter()
    text = device.strip()
    if not text:
        return DeviceFilter()
    lowered = text.lower()
    if lowered == "all":
        return DeviceFilter()
    if lowered in DEVICE_ALIASES:
        return DeviceFilter(device_type=DEVICE_ALIASES[lowered])
    if lowered in DEVICE_TYPES:
        return DeviceFilter(device_type=lowered)
    # Multi-word ("living room ac") and single unmapped tokens both become
    # name filters
    return DeviceFilter(device_name=text)


def normalize_metrics(metrics: Optional[Iterable[Any]]) -> List[str]:
    """Collapse synonyms and drop anything outside the canonical set."""
    result: List[str] = []
    for raw in metrics or []:
        if not isinstance(raw, str):
            continue
        metric = METRIC_ALIASES.get(raw.strip(), raw.strip())
        if metric in CANONICAL_METRICS and metric not in result:
            result.append(metric)
        elif metric not in CANONICAL_METRICS:
            logger.debug("translator.metric.dropped", extra={"metric": raw})
    return result


def determine_aggregation(start: datetime, end: datetime) -> Aggregation:
    """Pick a bucket from the ceiling of the day span.

    <=2 days hourly, <=14 daily, <=90 weekly, otherwise monthly.
    """
    days = day_span(start, end)
    if days <= 2:
        return Aggregation.HOURLY
    if days <= 14:
        return Aggregation.DAILY
    if days <= 90:
        return Aggregation.WEEKLY
    return Aggregation.MONTHLY


def _explicit_aggregation(value: Optional[str]) -> Optional[Aggregation]:
    if not value:
        return None
    try:
        return Aggregation(value.strip().lower())
    except ValueError:
        logger.warning("translator.aggregation.unknown", extra={"aggregation": value})
        return None


def intent_to_query_params(intent: TelemetryIntent) -> QueryParams:
    """Translate a telemetry intent into concrete query parameters.

    Functions are always the full ``avg/sum/min/max`` set on this path.

    Raises
    ------
    QueryValidationError
        When the intent has no usable time range or no canonical metric.
    """
    time_range = intent.time_range
    start = parse_timestamp(time_range.start) if time_range else None
    end = parse_timestamp(time_range.end) if time_range else None
    if start is None or end is None:
        raise QueryValidationError(
            "Intent has no usable time range",
            [{"field": "timeRange", "message": "start and end must be ISO-8601"}],
        )

    metrics = normalize_metrics(intent.metrics)
    if not metrics:
        raise QueryValidationError(
            "Intent has no supported metrics",
            [{"field": "metrics", "message": "no canonical metric requested"}],
        )

    aggregation = _explicit_aggregation(intent.aggregation) or determine_aggregation(
        start, end
    )
    device = resolve_device(intent.device)

    params = build_query_params(
        {
            "deviceType": device.device_type,
            "deviceName": device.device_name,
            "metrics": metrics,
            "startDate": start,
            "endDate": end,
            "aggregation": aggregation,
            "functions": list(ALL_FUNCTIONS),
        }
    )
    logger.info(
        "translator.params",
        extra={
            "device_type": params.device_type,
            "device_name": params.device_name,
            "metrics": metrics,
            "aggregation": aggregation.value,
        },
    )
    return params
