"""Domain vocabulary and query models.

The canonical metric, aggregation bucket, statistic and device-type sets
are closed enums: anything the language model produces outside them is
either aliased onto them or dropped before it can reach SQL.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from ..errors import QueryValidationError


class Metric(str, Enum):
    POWER_CONSUMPTION = "power_consumption"
    VOLTAGE = "voltage"
    CURRENT = "current"


class Aggregation(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class StatFunction(str, Enum):
    AVG = "avg"
    SUM = "sum"
    MIN = "min"
    MAX = "max"


CANONICAL_METRICS: List[str] = [m.value for m in Metric]
ALL_FUNCTIONS: List[str] = [f.value for f in StatFunction]
DEVICE_TYPES: List[str] = [
    "air_conditioner",
    "refrigerator",
    "lights",
    "ceiling_fan",
    "space_heater",
    "washing_machine",
    "clothes_dryer",
]


class TimeRange(BaseModel):
    """Raw time range as produced by the model; parsed by the translator."""

    start: Optional[str] = None
    end: Optional[str] = None


class TelemetryIntent(BaseModel):
    """Structured reading of one user utterance.

    Produced once per turn by the intent extractor and consumed once by
    the translator. Values are kept as the model wrote them.
    """

    model_config = ConfigDict(populate_by_name=True)

    needs_telemetry: bool = Field(False, alias="needsTelemetry")
    device: Optional[str] = None
    time_range: Optional[TimeRange] = Field(None, alias="timeRange")
    metrics: Optional[List[str]] = None
    aggregation: Optional[str] = None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class QueryParams(BaseModel):
    """Validated aggregation query.

    Field names accept both snake_case and the camelCase used on the wire
    (``deviceType``, ``startDate``...). ``aggregation`` may be omitted; the
    engine then derives it from the span.
    """

    model_config = ConfigDict(populate_by_name=True)

    device_type: Optional[str] = Field(None, alias="deviceType")
    device_name: Optional[str] = Field(None, alias="deviceName")
    device_id: Optional[str] = Field(None, alias="deviceId")
    metrics: List[Metric] = Field(..., min_length=1, max_length=3)
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    aggregation: Optional[Aggregation] = None
    functions: List[StatFunction] = Field(
        default_factory=lambda: [StatFunction(f) for f in ALL_FUNCTIONS],
        min_length=1,
        max_length=4,
    )
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)

    @field_validator("device_type", "device_name", "device_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("metrics", "functions", mode="before")
    @classmethod
    def _split_and_dedupe(cls, value: Any) -> Any:
        # Query strings may carry "a,b" in one parameter
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple)):
            seen: List[Any] = []
            for item in value:
                parts = item.split(",") if isinstance(item, str) else [item]
                for part in parts:
                    part = part.strip() if isinstance(part, str) else part
                    if part != "" and part not in seen:
                        seen.append(part)
            return seen
        return value

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_consistency(self) -> "QueryParams":
        if self.device_type and self.device_name:
            raise ValueError("deviceType and deviceName are mutually exclusive")
        if self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        return self


class DeviceRef(BaseModel):
    id: str
    name: str
    type: str


class AggregatedResult(BaseModel):
    """One (bucket, device) row reshaped into nested metric/function maps."""

    device: DeviceRef
    timestamp: str
    metrics: Dict[str, Dict[str, float]] = Field(default_factory=dict)


class AggregationResponse(BaseModel):
    """Envelope returned by the aggregation engine and query endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    data: List[AggregatedResult] = Field(default_factory=list)
    time_range: TimeRange = Field(..., alias="timeRange")
    aggregation: Aggregation

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def build_query_params(raw: Dict[str, Any]) -> QueryParams:
    """Validate ``raw`` into :class:`QueryParams`.

    Raises
    ------
    QueryValidationError
        With one ``{"field", "message"}`` entry per failing field.
    """
    try:
        return QueryParams.model_validate(raw)
    except ValidationError as exc:
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ())) or "__root__",
                "message": err.get("msg", "invalid value"),
            }
            for err in exc.errors()
        ]
        raise QueryValidationError("Invalid telemetry query", errors) from exc


class DailyEnergyPoint(BaseModel):
    """One day of a device's power readings."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    avg_energy: float = Field(..., alias="avgEnergy")
    total_energy: float = Field(..., alias="totalEnergy")
    min_energy: float = Field(..., alias="minEnergy")
    max_energy: float = Field(..., alias="maxEnergy")
    readings_count: int = Field(..., alias="readingsCount")


class DeviceEnergySummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field(..., alias="deviceId")
    device_name: str = Field(..., alias="deviceName")
    device_type: str = Field(..., alias="deviceType")
    total_consumption: float = Field(0.0, alias="totalConsumption")
    average_consumption: float = Field(0.0, alias="averageConsumption")
    data_points: List[DailyEnergyPoint] = Field(
        default_factory=list, alias="dataPoints"
    )


class DevicesEnergySummary(BaseModel):
    """Per-device daily power totals for one user over whole days.

    Devices without readings in range are listed with zero totals.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    total_devices: int = Field(0, alias="totalDevices")
    total_consumption: float = Field(0.0, alias="totalConsumption")
    devices: List[DeviceEnergySummary] = Field(default_factory=list)
    time_range: TimeRange = Field(..., alias="timeRange")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
