"""Time-bucketed telemetry aggregation.

Builds one SQL statement per request: readings are truncated to the
requested bucket, joined through their device to the owning user, filtered
to the authenticated principal, and aggregated with one projection per
(metric, function) pair. Rows are then reshaped into nested
``{metric: {function: value}}`` maps using the same projection plan that
built the statement, so no column-name parsing is needed.

Notes
-----
- The ``telemetry_data -> devices -> users`` join with ``users.id =
  principal`` is the only tenant boundary; every telemetry query goes
  through :meth:`AggregationEngine._base_statement`.
- No statement timeout is set; the pool/driver defaults apply.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, time as dt_time, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import String, and_, func, literal_column, select
from sqlalchemy.engine import Engine
from sqlalchemy.sql.elements import ColumnElement

from ..errors import AuthorizationMismatchError, QueryValidationError
from ..storage.schema import devices, telemetry_data, users
from ..utils.correlation import get_request_id
from .models import (
    AggregatedResult,
    Aggregation,
    AggregationResponse,
    DailyEnergyPoint,
    DeviceEnergySummary,
    DeviceRef,
    DevicesEnergySummary,
    Metric,
    QueryParams,
    TimeRange,
    build_query_params,
)
from .timestamps import parse_timestamp, to_iso8601
from .translator import determine_aggregation

logger = logging.getLogger(__name__)

_PG_UNITS = {
    Aggregation.HOURLY: "hour",
    Aggregation.DAILY: "day",
    Aggregation.WEEKLY: "week",
    Aggregation.MONTHLY: "month",
}

_SQLITE_FORMATS = {
    Aggregation.HOURLY: "%Y-%m-%d %H:00:00",
    Aggregation.DAILY: "%Y-%m-%d 00:00:00",
    Aggregation.WEEKLY: "%Y-%m-%d 00:00:00",
    Aggregation.MONTHLY: "%Y-%m-01 00:00:00",
}

_AGGREGATES = {
    "avg": func.avg,
    "sum": func.sum,
    "min": func.min,
    "max": func.max,
}


@dataclass(frozen=True)
class Projection:
    """One aggregate column: which metric, which statistic, which label."""

    metric: str
    function: str
    label: str


def _sql_literal(value: str) -> ColumnElement:
    # Constants only; keeps select and GROUP BY expressions textually equal
    return literal_column(f"'{value}'")


def bucket_expression(aggregation: Aggregation, dialect: str) -> ColumnElement:
    """Timestamp truncated to the bucket start for the given SQL dialect."""
    ts = telemetry_data.c.timestamp
    if dialect == "sqlite":
        fmt = _sql_literal(_SQLITE_FORMATS[aggregation])
        if aggregation is Aggregation.WEEKLY:
            # Monday of the ISO week, matching date_trunc('week', ...)
            return func.strftime(
                fmt, ts, _sql_literal("weekday 0"), _sql_literal("-6 days")
            )
        return func.strftime(fmt, ts)
    return func.date_trunc(_sql_literal(_PG_UNITS[aggregation]), ts)


def projection_plan(params: QueryParams) -> List[Projection]:
    return [
        Projection(metric=m.value, function=f.value, label=f"{m.value}_{f.value}")
        for m in params.metrics
        for f in params.functions
    ]


def _day_bound(value: Optional[str], field: str, end_of_day: bool) -> datetime:
    """First or last instant of the UTC day containing ``value`` (today if unset)."""
    if not value:
        day = datetime.now(timezone.utc)
    else:
        day = parse_timestamp(value)
        if day is None:
            raise QueryValidationError(
                "Invalid telemetry summary range",
                [{"field": field, "message": "Invalid timestamp"}],
            )
    bound = dt_time.max if end_of_day else dt_time.min
    return datetime.combine(day.date(), bound, tzinfo=timezone.utc)


class AggregationEngine:
    """Executes aggregation queries for one authenticated principal at a time.

    Parameters
    ----------
    engine: sqlalchemy.engine.Engine
        Pooled engine bound to the telemetry store.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    def validate(self, raw: Union[QueryParams, Mapping[str, Any]]) -> QueryParams:
        """Validate raw input and fill in the span-derived aggregation.

        Raises
        ------
        QueryValidationError
            With field-level details.
        """
        params = raw if isinstance(raw, QueryParams) else build_query_params(dict(raw))
        if params.aggregation is None:
            params = params.model_copy(
                update={
                    "aggregation": determine_aggregation(
                        params.start_date, params.end_date
                    )
                }
            )
        return params

    def _base_statement(
        self, params: QueryParams, user_id: str, plan: List[Projection]
    ):
        bucket = bucket_expression(params.aggregation, self.dialect).label("bucket")
        columns = [
            bucket,
            devices.c.id.label("device_id"),
            devices.c.name.label("device_name"),
            devices.c.type.label("device_type"),
        ]
        for p in plan:
            aggregate = _AGGREGATES[p.function](telemetry_data.c[p.metric])
            columns.append(aggregate.label(p.label))

        conditions = [
            users.c.id == user_id,
            telemetry_data.c.timestamp >= params.start_date,
            telemetry_data.c.timestamp <= params.end_date,
        ]
        if params.device_id:
            conditions.append(devices.c.id == params.device_id)
        if params.device_name:
            conditions.append(
                func.lower(devices.c.name, type_=String).contains(
                    params.device_name.lower(), autoescape=True
                )
            )
        if params.device_type:
            conditions.append(
                func.lower(devices.c.type, type_=String).contains(
                    params.device_type.lower(), autoescape=True
                )
            )

        joined = telemetry_data.join(
            devices, telemetry_data.c.device_id == devices.c.id
        ).join(users, devices.c.user_id == users.c.id)

        bucket_expr = bucket.element
        return (
            select(*columns)
            .select_from(joined)
            .where(and_(*conditions))
            .group_by(bucket_expr, devices.c.id, devices.c.name, devices.c.type)
            .order_by(bucket_expr.asc(), devices.c.name.asc())
        )

    @staticmethod
    def _format_bucket(value: Any) -> Optional[str]:
        if value is None:
            return None
        # SQLite returns text buckets, PostgreSQL returns datetimes
        return to_iso8601(parse_timestamp(value)) or str(value)

    def reshape(
        self, rows: List[Mapping[str, Any]], plan: List[Projection]
    ) -> List[AggregatedResult]:
        """Unpack flat aggregate rows into nested results, omitting nulls."""
        results: List[AggregatedResult] = []
        for row in rows:
            metrics: Dict[str, Dict[str, float]] = {}
            for p in plan:
                value = row[p.label]
                if value is None:
                    continue
                metrics.setdefault(p.metric, {})[p.function] = float(value)
            results.append(
                AggregatedResult(
                    device=DeviceRef(
                        id=str(row["device_id"]),
                        name=row["device_name"],
                        type=row["device_type"],
                    ),
                    timestamp=self._format_bucket(row["bucket"]) or "",
                    metrics=metrics,
                )
            )
        return results

    def verify_device_ownership(self, device_id: str, user_id: str) -> Dict[str, str]:
        """Return the device row if ``user_id`` owns it.

        Raises
        ------
        AuthorizationMismatchError
            When the device does not exist or belongs to another user.
        """
        stmt = select(devices.c.id, devices.c.name, devices.c.type).where(
            and_(devices.c.id == device_id, devices.c.user_id == user_id)
        )
        with self._engine.connect() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            logger.warning(
                "aggregation.device.mismatch",
                extra={"req_id": get_request_id(), "device_id": device_id},
            )
            raise AuthorizationMismatchError("Device not found or access denied")
        return {"id": row.id, "name": row.name, "type": row.type}

    def query(
        self, raw: Union[QueryParams, Mapping[str, Any]], user_id: str
    ) -> AggregationResponse:
        """Validate, execute, and reshape one aggregation query.

        An empty result (no devices, no readings in range) is a successful
        response with ``data == []``. A ``deviceId`` the caller does not own
        raises :class:`AuthorizationMismatchError` before anything runs.
        """
        params = self.validate(raw)
        if params.device_id:
            self.verify_device_ownership(params.device_id, user_id)
        plan = projection_plan(params)
        stmt = (
            self._base_statement(params, user_id, plan)
            .limit(params.limit)
            .offset(params.offset)
        )
        started = time.time()
        with self._engine.connect() as conn:
            rows = [dict(r._mapping) for r in conn.execute(stmt)]
        data = self.reshape(rows, plan)
        logger.info(
            "aggregation.query.complete",
            extra={
                "req_id": get_request_id(),
                "aggregation": params.aggregation.value,
                "projections": len(plan),
                "rows": len(data),
                "duration_ms": round((time.time() - started) * 1000, 1),
            },
        )
        return AggregationResponse(
            data=data,
            time_range=TimeRange(
                start=to_iso8601(params.start_date), end=to_iso8601(params.end_date)
            ),
            aggregation=params.aggregation,
        )

    def devices_summary(
        self,
        user_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> DevicesEnergySummary:
        """Daily power totals per device over whole UTC days.

        ``start_date`` snaps to the start of its day and ``end_date`` to the
        end of its day; either defaults to today. With ``device_id`` the
        summary covers that one device, which the caller must own.

        Raises
        ------
        QueryValidationError
            When a date does not parse or the range is reversed.
        AuthorizationMismatchError
            When ``device_id`` is not one of the caller's devices.
        """
        start = _day_bound(start_date, "startDate", end_of_day=False)
        end = _day_bound(end_date, "endDate", end_of_day=True)
        if device_id:
            self.verify_device_ownership(device_id, user_id)
        params = build_query_params(
            {
                "startDate": start,
                "endDate": end,
                "metrics": [Metric.POWER_CONSUMPTION.value],
                "aggregation": Aggregation.DAILY.value,
                "deviceId": device_id,
            }
        )
        plan = projection_plan(params)
        stmt = (
            self._base_statement(params, user_id, plan)
            .add_columns(func.count().label("readings_count"))
            .where(telemetry_data.c.power_consumption.is_not(None))
        )
        owned = select(devices.c.id, devices.c.name, devices.c.type).where(
            devices.c.user_id == user_id
        )
        if device_id:
            owned = owned.where(devices.c.id == device_id)
        with self._engine.connect() as conn:
            device_rows = conn.execute(owned.order_by(devices.c.name.asc())).all()
            rows = [dict(r._mapping) for r in conn.execute(stmt)]

        points: Dict[str, List[DailyEnergyPoint]] = {}
        for row in rows:
            points.setdefault(str(row["device_id"]), []).append(
                DailyEnergyPoint(
                    timestamp=self._format_bucket(row["bucket"]) or "",
                    avg_energy=float(row["power_consumption_avg"]),
                    total_energy=float(row["power_consumption_sum"]),
                    min_energy=float(row["power_consumption_min"]),
                    max_energy=float(row["power_consumption_max"]),
                    readings_count=int(row["readings_count"]),
                )
            )

        summaries = []
        for device in device_rows:
            days = points.get(str(device.id), [])
            summaries.append(
                DeviceEnergySummary(
                    device_id=str(device.id),
                    device_name=device.name,
                    device_type=device.type,
                    total_consumption=sum(p.total_energy for p in days),
                    average_consumption=(
                        sum(p.avg_energy for p in days) / len(days) if days else 0.0
                    ),
                    data_points=days,
                )
            )
        logger.info(
            "aggregation.summary.complete",
            extra={
                "req_id": get_request_id(),
                "devices": len(summaries),
                "days": len(rows),
            },
        )
        return DevicesEnergySummary(
            user_id=user_id,
            total_devices=len(summaries),
            total_consumption=sum(s.total_consumption for s in summaries),
            devices=summaries,
            time_range=TimeRange(start=to_iso8601(start), end=to_iso8601(end)),
        )

    async def devices_summary_async(
        self,
        user_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> DevicesEnergySummary:
        return await asyncio.to_thread(
            self.devices_summary, user_id, start_date, end_date, device_id
        )

    async def query_async(
        self, raw: Union[QueryParams, Mapping[str, Any]], user_id: str
    ) -> AggregationResponse:
        """Run :meth:`query` in a worker thread so the event loop stays free."""
        return await asyncio.to_thread(self.query, raw, user_id)
