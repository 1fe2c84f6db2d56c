"""
FastAPI routes for the token-gating core.
Exposes the Helius webhook, balance and access queries, and the notification inbox.
"""

import hmac
import json
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..db import database as db
from ..errors import ConfigurationError, ExternalServiceError, NotFoundError
from ..services.access import AccessEvaluator, PostAccessPolicy
from ..services.balance_source import BalanceSourceAdapter, lamports_to_sol
from ..services.confirmation import TradeConfirmationProcessor
from ..services.notifications import NotificationService
from ..services.token_cache import TokenBalanceCache
from ..utils.logging import get_logger, log_context

router = APIRouter(prefix="/api", tags=["Baremint API"])
logger = get_logger("api")

WEBHOOK_ACK = "OK"


def post_link(post_id: str) -> str:
    return f"/posts/{post_id}"


# ===================
# Pydantic Models
# ===================

class TokenBalanceResponse(BaseModel):
    """Viewer's token balance for a mint (raw units)."""
    balance: str
    mint_address: str


class AccessResponse(BaseModel):
    """Access decision for a post."""
    post_id: str
    has_access: bool
    viewer_balance: str


class SolBalanceResponse(BaseModel):
    """SOL balance for display."""
    wallet: str
    lamports: str
    sol: str


class NotificationInfo(BaseModel):
    """Notification as shown in the inbox."""
    id: str
    type: str
    title: str
    body: str
    link_url: str
    related_mint_address: Optional[str]
    is_read: bool
    created_at: Optional[str]


class NotificationListResponse(BaseModel):
    notifications: list[NotificationInfo]
    has_more: bool


class UnreadCountResponse(BaseModel):
    count: int


class MarkReadRequest(BaseModel):
    ids: list[str] = Field(min_length=1, max_length=100)


class MarkReadResponse(BaseModel):
    updated: int


class PublishedRequest(BaseModel):
    """Notification copy for a newly published post."""
    title: str = Field(min_length=1, max_length=255)
    body: str = Field(min_length=1)


class PublishedResponse(BaseModel):
    post_id: str
    notified: int


class HealthResponse(BaseModel):
    status: str


# ===================
# Service Wiring
# ===================

@dataclass
class Services:
    """Core services shared by all requests of one app."""
    settings: Settings
    balance_source: BalanceSourceAdapter
    balance_cache: TokenBalanceCache
    access: AccessEvaluator
    notifications: NotificationService
    confirmations: TradeConfirmationProcessor


def build_services(
    settings: Settings,
    balance_source: Optional[BalanceSourceAdapter] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    """Wire the core components together."""
    clock = clock or db.utc_now
    source = balance_source or BalanceSourceAdapter.from_settings(settings)
    cache = TokenBalanceCache(source, clock=clock)
    notifications = NotificationService()
    return Services(
        settings=settings,
        balance_source=source,
        balance_cache=cache,
        access=AccessEvaluator(cache),
        notifications=notifications,
        confirmations=TradeConfirmationProcessor(notifications, clock=clock),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_viewer_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """Viewer identity set by the upstream session layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


# ===================
# Webhooks
# ===================

def webhook_authorized(settings: Settings, authorization: Optional[str]) -> bool:
    """
    Check the shared secret on a webhook delivery.

    With auth required and no secret configured the check fails closed.
    """
    secret = settings.helius_webhook_secret
    if secret is None:
        if settings.helius_webhook_require_auth:
            logger.error(
                "Helius webhook secret not configured; rejecting batch",
                hint="set HELIUS_WEBHOOK_SECRET or HELIUS_WEBHOOK_REQUIRE_AUTH=false",
            )
            return False
        return True

    if not authorization or not hmac.compare_digest(authorization.encode(), secret.encode()):
        logger.warning("Helius webhook authorization header mismatch")
        return False
    return True


@router.post("/webhooks/helius", response_class=PlainTextResponse)
async def helius_webhook(
    request: Request,
    services: Services = Depends(get_services),
    authorization: Optional[str] = Header(None),
):
    """
    Receive Helius transaction notifications for trade confirmation.

    Always answers 200 "OK" so the sender never retries; failures are only
    visible in logs.
    """
    with log_context(batch_id=uuid.uuid4().hex[:12]):
        if not webhook_authorized(services.settings, authorization):
            return PlainTextResponse(WEBHOOK_ACK)

        try:
            body: Any = json.loads(await request.body())
        except (ValueError, UnicodeDecodeError, RecursionError) as e:
            logger.warning("Helius webhook: failed to parse request body", error=str(e))
            return PlainTextResponse(WEBHOOK_ACK)

        if not isinstance(body, list):
            logger.warning("Helius webhook: body is not an array, skipping")
            return PlainTextResponse(WEBHOOK_ACK)

        try:
            await services.confirmations.process_batch(body)
        except Exception as e:
            logger.error("Helius webhook processing error", error=str(e), traceback=traceback.format_exc())

    return PlainTextResponse(WEBHOOK_ACK)


# ===================
# Balance & Access Queries
# ===================

@router.get("/token-balance", response_model=TokenBalanceResponse)
async def token_balance(
    wallet: str = Query(..., min_length=1),
    mint: Optional[str] = Query(None),
    creator_token_id: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Get the viewer's cached (or freshly fetched) balance for a token."""
    if not mint:
        if not creator_token_id:
            raise HTTPException(status_code=400, detail="mint or creator_token_id is required")
        token = await db.get_creator_token(creator_token_id)
        if token is None:
            raise NotFoundError("Creator token not found")
        mint = token.mint_address

    balance = await services.balance_cache.get(wallet, mint)
    return TokenBalanceResponse(balance=str(balance), mint_address=mint)


@router.get("/posts/{post_id}/access", response_model=AccessResponse)
async def post_access(
    post_id: str,
    wallet: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Evaluate whether a viewer may see a post."""
    post = await db.get_post(post_id)
    if post is None:
        raise NotFoundError("Post not found")

    decision = await services.access.evaluate(
        PostAccessPolicy.from_post(post),
        viewer_wallet=wallet,
        viewer_user_id=user_id,
    )
    return AccessResponse(
        post_id=post_id,
        has_access=decision.has_access,
        viewer_balance=decision.viewer_balance,
    )


@router.post("/posts/{post_id}/published", response_model=PublishedResponse)
async def post_published(
    post_id: str,
    body: PublishedRequest,
    user_id: str = Depends(get_viewer_id),
    services: Services = Depends(get_services),
):
    """
    Announce a published post to holders of its creator's token.

    Only the creator may announce. Fan-out is best-effort: a failure is
    logged and reported as zero notified.
    """
    post = await db.get_post(post_id)
    if post is None:
        raise NotFoundError("Post not found")

    if not post.creator_token_id:
        return PublishedResponse(post_id=post_id, notified=0)

    token = await db.get_creator_token(post.creator_token_id)
    if token is None:
        raise NotFoundError("Creator token not found")
    if token.creator_user_id != user_id:
        raise HTTPException(status_code=403, detail="Only the creator can announce this post")

    try:
        notified = await services.notifications.notify_content_published(
            creator_user_id=token.creator_user_id,
            title=body.title,
            body=body.body,
            link_url=post_link(post_id),
        )
    except Exception as e:
        logger.error("Content notification fan-out failed", post_id=post_id, error=str(e))
        notified = 0

    return PublishedResponse(post_id=post_id, notified=notified)


@router.get("/wallet/sol-balance", response_model=SolBalanceResponse)
async def sol_balance(
    wallet: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
):
    """SOL balance for display. Shows 0 when the RPC is unavailable."""
    lamports = await services.balance_source.get_sol_balance(wallet)
    return SolBalanceResponse(
        wallet=wallet,
        lamports=str(lamports),
        sol=str(lamports_to_sol(lamports)),
    )


# ===================
# Notifications
# ===================

@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_viewer_id),
):
    """Get the viewer's notifications, newest first."""
    items, has_more = await db.list_notifications(user_id, offset=offset)
    return NotificationListResponse(
        notifications=[
            NotificationInfo(
                id=n.id,
                type=n.type,
                title=n.title,
                body=n.body,
                link_url=n.link_url,
                related_mint_address=n.related_mint_address,
                is_read=n.is_read,
                created_at=n.created_at.isoformat() if n.created_at else None,
            )
            for n in items
        ],
        has_more=has_more,
    )


@router.get("/notifications/count", response_model=UnreadCountResponse)
async def unread_notification_count(user_id: str = Depends(get_viewer_id)):
    """Get the viewer's unread notification count."""
    return UnreadCountResponse(count=await db.count_unread_notifications(user_id))


@router.patch("/notifications", response_model=MarkReadResponse)
async def mark_notifications_read(
    body: MarkReadRequest,
    user_id: str = Depends(get_viewer_id),
):
    """Mark notifications read."""
    updated = await db.mark_notifications_read(user_id, body.ids)
    return MarkReadResponse(updated=updated)


# ===================
# App Factory
# ===================

def create_api_app(
    settings: Optional[Settings] = None,
    balance_source: Optional[BalanceSourceAdapter] = None,
    clock: Optional[Callable[[], datetime]] = None,
    manage_db: bool = True,
) -> FastAPI:
    """Create the FastAPI application."""
    settings = settings or get_settings()
    services = build_services(settings, balance_source=balance_source, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_db:
            await db.init_db(settings.async_database_url)
        logger.info("API ready")

        yield

        await services.balance_source.close()
        if manage_db:
            await db.close_db()

    app = FastAPI(
        title="Baremint Core API",
        description="Token-gated content access and trade confirmation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Log request duration and add the X-Response-Time header
    @app.middleware("http")
    async def timing_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time"] = f"{elapsed_ms:.1f}ms"
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(elapsed_ms, 1),
        )
        return response

    @app.exception_handler(ExternalServiceError)
    async def external_service_handler(request: Request, exc: ExternalServiceError):
        logger.warning(
            "external_service_error",
            path=str(request.url.path),
            service=exc.service,
            error=exc.message,
        )
        return JSONResponse(
            status_code=503,
            content={
                "error": "balance_unavailable",
                "detail": "Token balance could not be verified. Please try again.",
            },
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": "not_found", "detail": exc.message})

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error("configuration_error", path=str(request.url.path), error=exc.message)
        return JSONResponse(
            status_code=500,
            content={"error": "configuration_error", "detail": exc.message},
        )

    # Unhandled errors become a generic 500
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
            traceback=traceback.format_exc(),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "detail": "An unexpected error occurred. Please try again.",
            },
        )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok")

    app.include_router(router)

    return app
