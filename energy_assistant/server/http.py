"""HTTP server exposing the energy assistant via FastAPI.

Routes
------
- ``POST /api/chat/message``: one conversational turn (always 200 once the
  request itself is valid; provider failures become an apology).
- ``GET /api/chat/models``: provider catalog with per-provider health.
- ``GET /api/chat/history``: the caller's recent messages, newest first.
- ``GET /api/telemetry/query``: direct aggregation query.
- ``GET /api/telemetry/devices/summary`` and
  ``GET /api/telemetry/summary/device/{device_id}``: daily power totals
  per device over whole days.
- ``GET /health`` and ``GET /ready``: probes, no authentication.

Every ``/api`` route requires an HS256 bearer token and scopes its work to
the token's principal.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import psutil
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .. import __version__
from ..config.models import EnvSettings, load_providers_config
from ..domain.aggregation import AggregationEngine
from ..domain.timestamps import parse_timestamp
from ..errors import (
    AuthorizationMismatchError,
    ConfigurationError,
    QueryValidationError,
)
from ..llm.orchestrator import ChatOrchestrator
from ..observability import setup_logging
from ..providers.base import ChatMessage
from ..providers.factory import ProviderFactory
from ..storage.engine import make_engine
from ..storage.history import ChatHistoryStore
from ..utils.correlation import get_request_id, set_request_id
from .auth import Principal, make_principal_dependency
from .models import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    FieldError,
    HealthResponse,
    HistoryMessage,
    HistoryResponse,
    ProvidersResponse,
    ProviderStatusModel,
    TelemetryQueryResponse,
)
from .rate_limiter import RateLimitConfig, RateLimiter

logger = logging.getLogger(__name__)

__all__ = [
    "create_app",
    "_load_fastapi",
    "_build_app",
    "_apply_cors",
    "_register_health",
    "_register_chat",
    "_register_telemetry",
]


class RequestLoggingMiddleware(
    BaseHTTPMiddleware
):  # pylint: disable=too-few-public-methods
    """Assigns a correlation id per request and logs its outcome."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        req_id = set_request_id(
            request.headers.get("x-correlation-id") or str(uuid.uuid4())
        )
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "http.request.failed",
                extra={
                    "req_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
            )
            raise
        response.headers["x-correlation-id"] = req_id
        logger.info(
            "http.request.completed",
            extra={
                "req_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return response


def _load_fastapi():
    """Dynamically import FastAPI pieces."""
    fastapi_mod = importlib.import_module("fastapi")
    cors_mod = importlib.import_module("fastapi.middleware.cors")
    exc_mod = importlib.import_module("fastapi.exceptions")
    resp_mod = importlib.import_module("fastapi.responses")
    st_exc_mod = importlib.import_module("starlette.exceptions")
    return {
        "fastapi_cls": getattr(fastapi_mod, "FastAPI"),
        "depends": getattr(fastapi_mod, "Depends"),
        "header": getattr(fastapi_mod, "Header"),
        "query": getattr(fastapi_mod, "Query"),
        "http_exc": getattr(fastapi_mod, "HTTPException"),
        "status": getattr(fastapi_mod, "status"),
        "cors_mw": getattr(cors_mod, "CORSMiddleware"),
        "validation_exc": getattr(exc_mod, "RequestValidationError"),
        "json_response": getattr(resp_mod, "JSONResponse"),
        "starlette_http_exc": getattr(st_exc_mod, "HTTPException"),
    }


def _build_app(fastapi_cls: Any, lifespan: Any | None = None):
    """Create base FastAPI app (optionally with lifespan)."""
    if lifespan is not None:
        return fastapi_cls(
            title="Energy Assistant", version=__version__, lifespan=lifespan
        )
    return fastapi_cls(title="Energy Assistant", version=__version__)


def _apply_cors(app: Any, cors_middleware_cls: Any, origins: str) -> None:
    """Enable CORS for a comma-separated origin list, if any."""
    allow_origins = [o.strip() for o in origins.split(",") if o.strip()]
    if allow_origins:
        app.add_middleware(
            cors_middleware_cls,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )


def _error(
    status_code: int,
    detail: str,
    error_type: str,
    errors: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    err = ErrorResponse(
        detail=detail,
        error_type=error_type,
        errors=[FieldError(**e) for e in errors] if errors else None,
    )
    return {"status_code": status_code, "detail": err.model_dump()}


def _field_errors_from_validation(exc: Any) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for err in exc.errors():
        # Drop the "body"/"query" prefix FastAPI adds to locations
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query")]
        out.append({"field": ".".join(loc) or "request", "message": err.get("msg", "")})
    return out


def _register_health(app: Any) -> None:
    """Register health and readiness endpoints."""

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Liveness probe",
    )
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get(
        "/ready",
        response_model=HealthResponse,
        summary="Readiness probe",
    )
    async def ready() -> HealthResponse:
        return HealthResponse(status="ready")


def _register_chat(
    app: Any,
    settings: EnvSettings,
    orchestrator: ChatOrchestrator,
    provider_factory: ProviderFactory,
    history_store: ChatHistoryStore,
    rate_limiter: RateLimiter,
    parts: Dict[str, Any],
    auth_dep: Any,
) -> None:
    """Register chat, model catalog, and history endpoints."""
    depends = parts["depends"]
    http_exc = parts["http_exc"]
    query = parts["query"]

    async def _load_history(session_id: str, user_id: str) -> List[ChatMessage]:
        try:
            return await asyncio.to_thread(
                history_store.get_conversation, session_id, user_id
            )
        except SQLAlchemyError as exc:
            logger.warning(
                "chat.history.load_failed",
                extra={"session_id": session_id, "error": str(exc)},
            )
            return []

    async def _save(session_id: str, role: str, content: str, user_id: str) -> None:
        try:
            await asyncio.to_thread(
                history_store.save_message, session_id, role, content, user_id
            )
        except SQLAlchemyError as exc:
            logger.warning(
                "chat.history.save_failed",
                extra={"session_id": session_id, "role": role, "error": str(exc)},
            )

    @app.post(
        "/api/chat/message",
        response_model=ChatResponse,
        response_model_by_alias=True,
        response_model_exclude_none=True,
        summary="Send one chat message",
    )
    async def chat_message(
        req: ChatRequest, principal: Principal = depends(auth_dep)
    ) -> ChatResponse:
        message = req.message.strip()
        if not message:
            raise http_exc(**_error(400, "Message is required", "validation_error"))
        if len(message) > settings.MESSAGE_MAX_LENGTH:
            raise http_exc(
                **_error(
                    400,
                    f"Message must be at most {settings.MESSAGE_MAX_LENGTH} "
                    "characters",
                    "validation_error",
                )
            )

        allowed, reason = rate_limiter.check_rate_limit(principal.id)
        if not allowed:
            raise http_exc(**_error(429, reason or "Too many requests", "rate_limited"))
        rate_limiter.record_request(principal.id)

        session_id = req.session_id or str(uuid.uuid4())
        history = (
            await _load_history(session_id, principal.id) if req.session_id else []
        )
        await _save(session_id, "user", message, principal.id)

        result = await orchestrator.process_message(
            message,
            history,
            principal.id,
            model=req.model,
            provider=req.provider,
        )
        await _save(session_id, "assistant", result.answer, principal.id)
        return ChatResponse(
            response=result.answer,
            session_id=None if req.session_id else session_id,
        )

    @app.get(
        "/api/chat/models",
        response_model=ProvidersResponse,
        response_model_by_alias=True,
        summary="List providers with their models and health",
    )
    async def chat_models(
        principal: Principal = depends(auth_dep),
    ) -> ProvidersResponse:
        statuses = await provider_factory.get_all_provider_statuses()
        logger.info(
            "chat.models.listed",
            extra={
                "user_id": principal.id,
                "providers": [s.name for s in statuses],
            },
        )
        return ProvidersResponse(
            providers=[
                ProviderStatusModel.model_validate(s.to_dict()) for s in statuses
            ]
        )

    @app.get(
        "/api/chat/history",
        response_model=HistoryResponse,
        response_model_by_alias=True,
        summary="The caller's recent chat messages, newest first",
    )
    async def chat_history(
        limit: int = query(20, ge=1, le=100),
        before: Optional[str] = query(None),
        principal: Principal = depends(auth_dep),
    ) -> HistoryResponse:
        before_dt = None
        if before:
            before_dt = parse_timestamp(before)
            if before_dt is None:
                raise http_exc(
                    **_error(
                        400,
                        "Invalid 'before' timestamp",
                        "validation_error",
                        [{"field": "before", "message": "Invalid timestamp"}],
                    )
                )
        messages, has_more = await asyncio.to_thread(
            history_store.get_user_history, principal.id, limit, before_dt
        )
        return HistoryResponse(
            messages=[HistoryMessage.model_validate(m.to_dict()) for m in messages],
            has_more=has_more,
        )


def _register_telemetry(
    app: Any,
    aggregation_engine: AggregationEngine,
    parts: Dict[str, Any],
    auth_dep: Any,
) -> None:
    """Register the aggregation query and daily summary endpoints."""
    depends = parts["depends"]
    query = parts["query"]

    @app.get(
        "/api/telemetry/query",
        response_model=TelemetryQueryResponse,
        response_model_by_alias=True,
        summary="Aggregate the caller's telemetry into time buckets",
    )
    async def telemetry_query(
        metrics: Optional[List[str]] = query(None),
        start_date: Optional[str] = query(None, alias="startDate"),
        end_date: Optional[str] = query(None, alias="endDate"),
        device_name: Optional[str] = query(None, alias="deviceName"),
        device_type: Optional[str] = query(None, alias="deviceType"),
        device_id: Optional[str] = query(None, alias="deviceId"),
        aggregation: Optional[str] = query(None),
        functions: Optional[List[str]] = query(None),
        limit: Optional[str] = query(None),
        offset: Optional[str] = query(None),
        principal: Principal = depends(auth_dep),
    ) -> Dict[str, Any]:
        # Validation happens in QueryParams so errors carry wire field names
        raw: Dict[str, Any] = {
            "metrics": metrics,
            "startDate": start_date,
            "endDate": end_date,
            "deviceName": device_name,
            "deviceType": device_type,
            "deviceId": device_id,
            "aggregation": aggregation,
            "functions": functions,
            "limit": limit,
            "offset": offset,
        }
        raw = {k: v for k, v in raw.items() if v not in (None, "", [])}
        result = await aggregation_engine.query_async(raw, principal.id)
        return result.to_payload()

    @app.get(
        "/api/telemetry/devices/summary",
        summary="Daily power totals for each of the caller's devices",
    )
    async def devices_summary(
        start_date: Optional[str] = query(None, alias="startDate"),
        end_date: Optional[str] = query(None, alias="endDate"),
        principal: Principal = depends(auth_dep),
    ) -> Dict[str, Any]:
        result = await aggregation_engine.devices_summary_async(
            principal.id, start_date, end_date
        )
        return result.to_payload()

    @app.get(
        "/api/telemetry/summary/device/{device_id}",
        summary="Daily power totals for one of the caller's devices",
    )
    async def device_summary(
        device_id: str,
        start_date: Optional[str] = query(None, alias="startDate"),
        end_date: Optional[str] = query(None, alias="endDate"),
        principal: Principal = depends(auth_dep),
    ) -> Dict[str, Any]:
        result = await aggregation_engine.devices_summary_async(
            principal.id, start_date, end_date, device_id=device_id
        )
        return result.to_payload()


def create_app(
    settings: Optional[EnvSettings] = None,
    engine: Optional[Engine] = None,
    provider_factory: Optional[ProviderFactory] = None,
):
    """Create and configure the FastAPI application.

    Parameters
    ----------
    settings: EnvSettings | None
        Environment-derived settings; read from the environment when omitted.
    engine: sqlalchemy.engine.Engine | None
        Telemetry/history database; built from ``DATABASE_URL`` when omitted.
    provider_factory: ProviderFactory | None
        Active model providers; built from settings and the optional JSON
        config file when omitted.

    Raises
    ------
    ConfigurationError
        When ``JWT_SECRET`` is not configured.
    """
    settings = settings or EnvSettings()
    if not settings.JWT_SECRET:
        raise ConfigurationError("JWT_SECRET is not defined")
    # Respect prior logging configuration from CLI; otherwise use env setting
    if not logging.getLogger().hasHandlers():
        setup_logging(settings.log_level)
    parts = _load_fastapi()

    owns_engine = engine is None
    if engine is None:
        engine = make_engine(settings.DATABASE_URL, settings.DATABASE_POOL_SIZE)
    if provider_factory is None:
        provider_factory = ProviderFactory(
            load_providers_config(settings),
            status_timeout=settings.PROVIDER_STATUS_TIMEOUT_SECONDS,
        )
    aggregation_engine = AggregationEngine(engine)
    history_store = ChatHistoryStore(engine)
    orchestrator = ChatOrchestrator(provider_factory, aggregation_engine)
    rate_limiter = RateLimiter(
        RateLimitConfig(
            requests_per_window=settings.RATE_LIMIT_REQUESTS_PER_WINDOW,
            window_size_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            enable_rate_limiting=settings.RATE_LIMIT_ENABLED,
        )
    )

    @asynccontextmanager
    async def lifespan(_app: Any):
        logger.info(
            "http.startup",
            extra={
                "providers": provider_factory.get_provider_names(),
                "database_dialect": engine.dialect.name,
            },
        )
        try:
            mem_info = psutil.Process().memory_info()
            logger.info(
                "http.startup.memory",
                extra={
                    "rss_mb": round(mem_info.rss / 1024 / 1024, 1),
                    "vms_mb": round(mem_info.vms / 1024 / 1024, 1),
                },
            )
        except psutil.Error:  # pragma: no cover
            pass
        try:
            yield
        finally:
            logger.info("http.shutdown")
            await provider_factory.aclose()
            if owns_engine:
                engine.dispose()

    app = _build_app(parts["fastapi_cls"], lifespan=lifespan)
    jr = parts["json_response"]

    @app.exception_handler(parts["validation_exc"])
    async def validation_exception_handler(_request: Any, exc: Any):  # noqa: D401
        err = ErrorResponse(
            detail="Request validation failed",
            error_type="validation_error",
            errors=[FieldError(**e) for e in _field_errors_from_validation(exc)],
        )
        return jr(status_code=400, content={"detail": err.model_dump()})

    @app.exception_handler(QueryValidationError)
    async def query_validation_handler(
        _request: Any, exc: QueryValidationError
    ):  # noqa: D401
        err = ErrorResponse(
            detail=str(exc),
            error_type="validation_error",
            errors=[FieldError(**e) for e in exc.errors] or None,
        )
        return jr(status_code=400, content={"detail": err.model_dump()})

    @app.exception_handler(AuthorizationMismatchError)
    async def authorization_mismatch_handler(
        _request: Any, exc: AuthorizationMismatchError
    ):  # noqa: D401
        err = ErrorResponse(detail=str(exc), error_type="authorization_mismatch")
        return jr(status_code=403, content={"detail": err.model_dump()})

    @app.exception_handler(parts["starlette_http_exc"])
    async def http_exception_handler(_request: Any, exc: Any):  # noqa: D401
        # Pass through existing HTTP errors but ensure structured payload
        detail = getattr(exc, "detail", "")
        if isinstance(detail, dict) and {"detail", "error_type"} <= detail.keys():
            payload = {"detail": detail}
        else:
            error_type = "unauthorized" if exc.status_code == 401 else "http_error"
            payload = {
                "detail": ErrorResponse(
                    detail=str(detail) or "HTTP error", error_type=error_type
                ).model_dump()
            }
        return jr(
            status_code=exc.status_code,
            content=payload,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        # Avoid leaking internals; log server-side, return generic error
        logger.error(
            "http.unhandled_exception",
            extra={"req_id": get_request_id()},
            exc_info=exc,
        )
        err = ErrorResponse(
            detail=f"Internal error. See server logs for request id "
            f"{get_request_id()}.",
            error_type="internal_server_error",
        )
        return jr(status_code=500, content={"detail": err.model_dump()})

    # Mark handlers as intentionally used (registered via decorators)
    _ = (
        validation_exception_handler,
        query_validation_handler,
        authorization_mismatch_handler,
        http_exception_handler,
        unhandled_exception_handler,
    )

    app.add_middleware(RequestLoggingMiddleware)
    _apply_cors(app, parts["cors_mw"], settings.CORS_ORIGINS)
    auth_dep = make_principal_dependency(
        settings.JWT_SECRET, parts["header"], parts["http_exc"], parts["status"]
    )
    _register_health(app)
    _register_chat(
        app,
        settings,
        orchestrator,
        provider_factory,
        history_store,
        rate_limiter,
        parts,
        auth_dep,
    )
    _register_telemetry(app, aggregation_engine, parts, auth_dep)

    # Exposed for tests and the CLI
    app.state.settings = settings
    app.state.provider_factory = provider_factory
    app.state.aggregation_engine = aggregation_engine
    app.state.history_store = history_store
    app.state.rate_limiter = rate_limiter
    return app
