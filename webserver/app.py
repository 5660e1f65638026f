from __future__ import annotations

import hashlib
import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict

from fastapi import Depends, FastAPI, HTTPException, Query, Request  # type: ignore[import-not-found]
from fastapi.concurrency import run_in_threadpool  # type: ignore[import-not-found]
from fastapi.exceptions import RequestValidationError  # type: ignore[import-not-found]
from fastapi.middleware.cors import CORSMiddleware  # type: ignore[import-not-found]
from fastapi.middleware.httpsredirect import HTTPSRedirectMiddleware  # type: ignore[import-not-found]
from fastapi.middleware.trustedhost import TrustedHostMiddleware  # type: ignore[import-not-found]
from fastapi.responses import JSONResponse, Response  # type: ignore[import-not-found]
from pydantic import ValidationError  # type: ignore[import-not-found]

from signal_store import (
    Signal,
    SignalAction,
    SignalNotFoundError,
    SignalQuery,
    SignalStore,
    StoreUnavailableError,
    build_store,
)
from signal_store.models import DEFAULT_VOLUME, ensure_utc, new_signal_id, normalize_symbol, utc_now
from stats import build_snapshot, compute_etag, etag_matches

from .models import (
    ExecutionReport,
    HealthResponse,
    ManualSignal,
    MessageResponse,
    SignalMutationResponse,
    SignalUpdate,
    TradingViewWebhook,
    WebhookAccepted,
)
from .settings import WebSettings

logger = logging.getLogger("signals.api")

REVALIDATE = "max-age=0, must-revalidate"
SIGNATURE_HEADER = "X-Webhook-Signature"


def get_store(request: Request) -> SignalStore:
    return request.app.state.store


def get_settings(request: Request) -> WebSettings:
    return request.app.state.settings


def require_admin(request: Request, settings: WebSettings = Depends(get_settings)) -> None:
    """Guard for operator-only routes. Open when no ADMIN_API_TOKEN is configured."""
    if not settings.admin_token:
        return
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), settings.admin_token):
        logger.warning("Rejected admin request", extra={"path": request.url.path})
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")


def verify_webhook_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def _conditional_json(request: Request, payload: Dict[str, Any], label: str) -> Response:
    etag = compute_etag(payload)
    headers = {"ETag": etag, "Cache-Control": REVALIDATE}
    if etag_matches(request.headers.get("If-None-Match"), etag):
        logger.debug("Returning 304 Not Modified", extra={"resource": label})
        return Response(status_code=304, headers=headers)
    return JSONResponse(payload, headers=headers)


def create_app(store: SignalStore | None = None, settings: WebSettings | None = None) -> FastAPI:
    """Build the API around an explicitly provided (or environment-configured) store."""
    settings = settings or WebSettings.from_env()
    owns_store = store is None
    store = store or build_store(settings.store_kind)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if owns_store:
            store.close()

    app = FastAPI(title="Signal Desk", version="1.0.0", lifespan=lifespan)
    app.state.store = store
    app.state.settings = settings

    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "If-None-Match", SIGNATURE_HEADER],
        expose_headers=["ETag"],
    )
    if settings.force_https:
        app.add_middleware(HTTPSRedirectMiddleware)

    @app.middleware("http")
    async def security_headers(request: Request, call_next: Callable[[Request], Awaitable]):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Cache-Control", "no-store")
        return response

    @app.exception_handler(SignalNotFoundError)
    async def signal_not_found(request: Request, exc: SignalNotFoundError) -> JSONResponse:
        logger.warning("Unknown signal requested", extra={"signal_id": exc.signal_id, "path": request.url.path})
        return JSONResponse({"error": "Signal not found", "details": exc.signal_id}, status_code=404)

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        logger.error("Signal store unavailable", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse({"error": "Signal store unavailable", "details": str(exc)}, status_code=503)

    @app.get("/api/health", response_model=HealthResponse)
    def health(store: SignalStore = Depends(get_store)) -> JSONResponse:
        kind = type(store).__name__
        try:
            store.ping()
        except StoreUnavailableError as exc:
            body = HealthResponse(status="unavailable", store=kind, error=str(exc))
            return JSONResponse(body.model_dump(), status_code=503)
        return JSONResponse(HealthResponse(status="ok", store=kind).model_dump())

    @app.get("/api/signals/stats")
    def signal_stats(
        request: Request,
        period: int | None = Query(default=None, ge=1, le=3650, description="Days covered by recentSignals"),
        store: SignalStore = Depends(get_store),
        settings: WebSettings = Depends(get_settings),
    ) -> Response:
        days = period or settings.default_period_days
        signals = store.load_all()
        snapshot = build_snapshot(signals)
        since = datetime.now(timezone.utc) - timedelta(days=days)
        recent = store.list_signals(SignalQuery(since=since, limit=settings.recent_signals_limit))

        payload = snapshot.as_dict()
        payload["recentSignals"] = [signal.as_dict() for signal in recent]
        logger.info(
            "Stats computed",
            extra={
                "total": snapshot.total_signals,
                "processed": snapshot.processed_signals,
                "period_days": days,
            },
        )
        return _conditional_json(request, payload, "stats")

    @app.get("/api/signals")
    def list_signals(
        request: Request,
        unprocessed: str | None = Query(default=None),
        symbol: str | None = Query(default=None),
        magic: int | None = Query(default=None),
        limit: int = Query(default=50, ge=1),
        store: SignalStore = Depends(get_store),
        settings: WebSettings = Depends(get_settings),
    ) -> Response:
        query = SignalQuery(
            unprocessed=(unprocessed or "").strip().lower() == "true",
            symbol=symbol or None,
            magic_number=magic,
            limit=min(limit, settings.max_list_limit),
        )
        signals = store.list_signals(query)
        payload = {
            "signals": [signal.as_dict() for signal in signals],
            "count": len(signals),
            "unprocessed_count": store.count(processed=False),
            "lastUpdated": utc_now().isoformat(),
        }
        logger.debug("Fetched signals", extra={"count": len(signals), "symbol": query.symbol})
        return _conditional_json(request, payload, "signals")

    @app.post("/api/signals", response_model=SignalMutationResponse)
    def report_execution(report: ExecutionReport, store: SignalStore = Depends(get_store)) -> SignalMutationResponse:
        signal = store.get(report.id)
        changes: Dict[str, Any] = {"processed": True, "success": report.success}
        if report.entry_price:
            changes["entry_price"] = report.entry_price
        if report.exit_price:
            changes["exit_price"] = report.exit_price
            changes["closed_at"] = utc_now()
        if report.pnl is not None:
            changes["pnl"] = report.pnl
        updated = store.update(signal.with_updates(**changes))
        logger.info(
            "Signal marked as processed",
            extra={"signal_id": updated.id, "success": updated.success, "pnl": updated.pnl},
        )
        return SignalMutationResponse(message="Signal marked as processed", signal=updated.as_dict())

    @app.post("/api/signals/webhook", response_model=WebhookAccepted)
    async def tradingview_webhook(
        request: Request,
        store: SignalStore = Depends(get_store),
        settings: WebSettings = Depends(get_settings),
    ) -> WebhookAccepted:
        body = await request.body()
        if settings.webhook_secret and not verify_webhook_signature(
            settings.webhook_secret, body, request.headers.get(SIGNATURE_HEADER)
        ):
            logger.warning("Webhook signature mismatch", extra={"client": request.client.host if request.client else "unknown"})
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

        try:
            alert = TradingViewWebhook.model_validate_json(body or b"{}")
        except ValidationError as exc:
            logger.warning("Invalid webhook payload", extra={"errors": exc.error_count()})
            raise RequestValidationError(exc.errors(include_url=False)) from exc

        now = utc_now()
        signal = Signal(
            id=new_signal_id(),
            symbol=normalize_symbol(alert.symbol),
            action=SignalAction(alert.action),
            timestamp=ensure_utc(alert.timestamp) if alert.timestamp else now,
            volume=alert.volume or DEFAULT_VOLUME,
            entry_price=alert.price,
            stop_loss=alert.stop_loss,
            take_profit=alert.take_profit,
            comment=alert.comment or "TradingView Alert",
            magic_number=alert.magic_number,
            created_at=now,
            updated_at=now,
        )
        stored = await run_in_threadpool(store.insert, signal)
        logger.info(
            "Signal received and stored",
            extra={"signal_id": stored.id, "symbol": stored.symbol, "action": stored.action.value},
        )
        return WebhookAccepted(message="Signal received and stored", signalId=stored.id, timestamp=now)

    @app.post("/api/signals/manual", response_model=SignalMutationResponse, dependencies=[Depends(require_admin)])
    def create_manual_signal(payload: ManualSignal, store: SignalStore = Depends(get_store)) -> SignalMutationResponse:
        now = utc_now()
        signal = Signal(
            id=new_signal_id(),
            symbol=normalize_symbol(payload.symbol),
            action=SignalAction(payload.action),
            timestamp=now,
            volume=payload.volume,
            order_type=payload.order_type,
            entry_price=payload.entry_price,
            stop_loss=payload.stop_loss,
            take_profit=payload.take_profit,
            comment=payload.comment,
            magic_number=payload.magic_number,
            created_at=now,
            updated_at=now,
        )
        stored = store.insert(signal)
        logger.info("Manual signal created", extra={"signal_id": stored.id, "symbol": stored.symbol})
        return SignalMutationResponse(message="Signal created successfully", signal=stored.as_dict())

    @app.put("/api/signals/{signal_id}", response_model=SignalMutationResponse, dependencies=[Depends(require_admin)])
    def update_signal(
        signal_id: str, payload: SignalUpdate, store: SignalStore = Depends(get_store)
    ) -> SignalMutationResponse:
        """Partially update a signal.

        An outcome (``success``) can only be recorded on a signal that stays
        processed after the update; otherwise the request is rejected with 422.
        """
        signal = store.get(signal_id)
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("success") is not None:
            processed = changes.get("processed")
            if processed is None:
                processed = signal.processed or changes.get("pnl") is not None
            if not processed:
                raise HTTPException(status_code=422, detail="success requires a processed signal")
        if "action" in changes and changes["action"] is not None:
            changes["action"] = SignalAction(changes["action"])
        if "symbol" in changes and changes["symbol"] is not None:
            changes["symbol"] = normalize_symbol(changes["symbol"])
        for required in ("symbol", "action", "volume", "processed"):
            if changes.get(required, ...) is None:
                changes.pop(required)
        if changes.get("processed") is False:
            changes["pnl"] = None
            changes["success"] = None
        updated = store.update(signal.with_updates(**changes))
        logger.info("Signal updated", extra={"signal_id": signal_id, "fields": ",".join(sorted(changes))})
        return SignalMutationResponse(message="Signal updated successfully", signal=updated.as_dict())

    @app.delete("/api/signals/{signal_id}", response_model=MessageResponse, dependencies=[Depends(require_admin)])
    def delete_signal(signal_id: str, store: SignalStore = Depends(get_store)) -> MessageResponse:
        store.delete(signal_id)
        logger.info("Signal deleted", extra={"signal_id": signal_id})
        return MessageResponse(message="Signal deleted successfully")

    return app
