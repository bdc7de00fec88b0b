"""
Signal Bridge FastAPI application.

EA endpoints:
- GET /api/v1/commands - Claim the next pending command (token auth)
- POST /api/v1/execution - Report a command's execution result (token auth)

Operator endpoints (X-Admin-Token when ADMIN_TOKEN is set):
- POST /api/v1/signals - Score and distribute one signal on demand
- POST /api/v1/scheduler/run - Run a signal cycle now
- GET /api/v1/accounts/{account_id}/daily - Daily limits view
- POST /api/v1/accounts/{account_id}/roll-day - Archive yesterday, compound balance
- PATCH /api/v1/accounts/{account_id} - Activate/deactivate, change risk profile
- GET /api/v1/commands/stale - Processing commands with no report

Other:
- GET /health - Health check
- GET /metrics - Prometheus metrics

Usage:
    # Development
    $ uvicorn apps.signal_bridge.main:app --reload --port 8010

    # Production
    $ uvicorn apps.signal_bridge.main:app --host 0.0.0.0 --port 8010
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

import uvicorn
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from apps.signal_bridge import __version__
from apps.signal_bridge.app_context import BridgeContext, build_context
from apps.signal_bridge.config import Settings, get_settings
from apps.signal_bridge.dependencies import get_account, get_context, require_admin
from apps.signal_bridge.models import ExecutionOutcome
from apps.signal_bridge.schemas import (
    AccountResponse,
    AccountUpdate,
    CycleResponse,
    DailyLimitsResponse,
    ErrorResponse,
    ExecutionReport,
    ExecutionReportResponse,
    HealthResponse,
    PollResponse,
    RollDayResponse,
    SignalIntakeResponse,
    StaleCommandResponse,
    StaleCommandsResponse,
)
from libs.common.exceptions import StoreError
from libs.common.exceptions import ValidationError as SignalValidationError
from libs.common.logging import add_trace_id_middleware, configure_logging
from libs.document_store import ACCOUNTS
from libs.risk_management import Account
from libs.signal_quality import parse_signal

logger = logging.getLogger(__name__)

Context = Annotated[BridgeContext, Depends(get_context)]
AuthenticatedAccount = Annotated[Account, Depends(get_account)]
Admin = [Depends(require_admin)]


# ============================================================================
# Application Factory
# ============================================================================


def create_app(settings: Settings | None = None, context: BridgeContext | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Service settings (defaults to environment via get_settings)
        context: Pre-built context (tests). When given, the lifespan neither
            builds nor closes it and does not start the scheduler.
    """
    settings = settings or get_settings()
    configure_logging(service_name="signal_bridge", log_level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if context is not None:
            app.state.context = context
            yield
            return

        logger.info(f"Starting Signal Bridge (version={__version__})")
        ctx = build_context(settings)
        app.state.context = ctx
        if await ctx.store.ping():
            logger.info("Document store reachable")
        else:
            logger.warning("Document store unreachable at startup; requests will return 503")

        if settings.scheduler_enabled:
            ctx.scheduler.start()
        else:
            logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

        try:
            yield
        finally:
            logger.info("Signal Bridge shutting down")
            await ctx.close()

    app = FastAPI(
        title="Signal Bridge",
        description="Distributes scored trading signals to polling execution clients",
        version=__version__,
        lifespan=lifespan,
    )
    add_trace_id_middleware(app)
    app.mount("/metrics", make_asgi_app())
    _register_exception_handlers(app)
    _register_routes(app)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        """Persistence failures are transient for the caller: try again."""
        logger.error(f"Store error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=ErrorResponse(
                error="Store unavailable", detail="Try again", timestamp=datetime.now(UTC)
            ).model_dump(mode="json"),
        )

    @app.exception_handler(SignalValidationError)
    async def validation_error_handler(
        request: Request, exc: SignalValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(
                error="Validation error", detail=str(exc), timestamp=datetime.now(UTC)
            ).model_dump(mode="json"),
        )


# ============================================================================
# Endpoints
# ============================================================================


def _register_routes(app: FastAPI) -> None:
    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(ctx: Context) -> HealthResponse:
        """
        Health check endpoint.

        healthy: store reachable and scheduler running (when enabled);
        degraded: store reachable, scheduler not running;
        unhealthy: store unreachable.
        """
        store_connected = await ctx.store.ping()
        scheduler_running = ctx.scheduler.running

        if not store_connected:
            overall = "unhealthy"
        elif ctx.settings.scheduler_enabled and not scheduler_running:
            overall = "degraded"
        else:
            overall = "healthy"

        last = ctx.scheduler.last_report
        return HealthResponse(
            status=overall,
            service="signal_bridge",
            version=__version__,
            store_connected=store_connected,
            scheduler_running=scheduler_running,
            timestamp=datetime.now(UTC),
            details={
                "timeframes": ctx.settings.timeframes,
                "tiers": ctx.settings.tiers,
                "last_cycle_at": last.started_at.isoformat() if last else None,
            },
        )

    # ------------------------------------------------------------------------
    # EA endpoints
    # ------------------------------------------------------------------------

    @app.get(
        "/api/v1/commands",
        response_model=PollResponse,
        response_model_exclude_none=True,
        tags=["EA"],
    )
    async def poll_command(account: AuthenticatedAccount, ctx: Context) -> PollResponse:
        """Claim the oldest pending command for the calling account."""
        if not account.active:
            return PollResponse(has_command=False)

        command = await ctx.dispatcher.poll(account.id)
        if command is None:
            return PollResponse(has_command=False)
        return PollResponse(
            has_command=True,
            command_id=command.id,
            type=command.instruction,
            instruction=command.payload,
        )

    @app.post("/api/v1/execution", response_model=ExecutionReportResponse, tags=["EA"])
    async def report_execution(
        report: ExecutionReport, account: AuthenticatedAccount, ctx: Context
    ) -> ExecutionReportResponse:
        """
        Record the result of a command the account claimed.

        A report for a command that is not processing (already reported,
        never claimed, or someone else's) changes nothing and returns
        ``applied: false``.
        """
        outcome = ExecutionOutcome(
            success=report.success,
            ticket=str(report.ticket_id) if report.ticket_id is not None else None,
            error=report.error_text,
            profit=report.profit,
            new_balance=report.new_balance,
        )
        result = await ctx.dispatcher.report(account.id, report.command_id, outcome)
        return ExecutionReportResponse(applied=result.applied)

    # ------------------------------------------------------------------------
    # Signal intake and scheduling
    # ------------------------------------------------------------------------

    @app.post(
        "/api/v1/signals",
        response_model=SignalIntakeResponse,
        tags=["Signals"],
        dependencies=Admin,
    )
    async def submit_signal(
        payload: Annotated[dict[str, Any], Body()], ctx: Context
    ) -> SignalIntakeResponse:
        """
        Score one signal and distribute it if it passes the quality gate.

        Accepts either a full signal document or a generator-shaped payload
        (``signal``, ``entry``, ``stopLoss``, ``takeProfit1``...).
        """
        signal = parse_signal(payload)
        breakdown = ctx.scorer.breakdown(signal)
        scored = signal.model_copy(update={"quality_score": breakdown.total})

        if breakdown.total < ctx.scorer.threshold:
            logger.info(
                f"Submitted signal scored {breakdown.total}, below threshold",
                extra={"threshold": ctx.scorer.threshold},
            )
            return SignalIntakeResponse(
                accepted=False,
                quality_score=breakdown.total,
                threshold=ctx.scorer.threshold,
                breakdown=breakdown,
            )

        distribution = await ctx.dispatcher.distribute(scored)
        return SignalIntakeResponse(
            accepted=True,
            signal_id=distribution.signal_id,
            quality_score=breakdown.total,
            threshold=ctx.scorer.threshold,
            breakdown=breakdown,
            distribution=distribution,
        )

    @app.post(
        "/api/v1/scheduler/run",
        response_model=CycleResponse,
        tags=["Signals"],
        dependencies=Admin,
    )
    async def run_cycle(ctx: Context) -> CycleResponse:
        """Run one signal cycle now. 409 if a cycle is already in flight."""
        report = await ctx.scheduler.run_cycle()
        if report.skipped:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail="Signal cycle already running"
            )
        return CycleResponse(**report.model_dump(exclude={"skipped"}))

    # ------------------------------------------------------------------------
    # Operator endpoints
    # ------------------------------------------------------------------------

    async def _require_account(ctx: BridgeContext, account_id: str) -> dict[str, Any]:
        document = await ctx.store.get(ACCOUNTS.name, account_id)
        if document is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=f"Account {account_id} not found"
            )
        return document

    @app.get(
        "/api/v1/accounts/{account_id}/daily",
        response_model=DailyLimitsResponse,
        tags=["Accounts"],
        dependencies=Admin,
    )
    async def get_daily_limits(account_id: str, ctx: Context) -> DailyLimitsResponse:
        await _require_account(ctx, account_id)
        view = await ctx.tracker.limits(account_id)
        return DailyLimitsResponse(**view.model_dump())

    @app.post(
        "/api/v1/accounts/{account_id}/roll-day",
        response_model=RollDayResponse,
        tags=["Accounts"],
        dependencies=Admin,
    )
    async def roll_day(account_id: str, ctx: Context) -> RollDayResponse:
        await _require_account(ctx, account_id)
        result = await ctx.tracker.roll_day(account_id)
        return RollDayResponse(**result.model_dump())

    @app.patch(
        "/api/v1/accounts/{account_id}",
        response_model=AccountResponse,
        tags=["Accounts"],
        dependencies=Admin,
    )
    async def update_account(
        account_id: str, update: AccountUpdate, ctx: Context
    ) -> AccountResponse:
        fields = update.model_dump(exclude_none=True)
        if not fields:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update")

        updated = await ctx.store.update(ACCOUNTS.name, account_id, fields)
        if updated is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=f"Account {account_id} not found"
            )
        logger.info(f"Account {account_id} updated", extra={"fields": sorted(fields)})
        account = Account.model_validate(updated)
        return AccountResponse(
            id=account.id,
            active=account.active,
            risk_profile=account.risk_profile,
            balance=account.balance,
            last_seen=account.last_seen,
        )

    @app.get(
        "/api/v1/commands/stale",
        response_model=StaleCommandsResponse,
        tags=["Commands"],
        dependencies=Admin,
    )
    async def list_stale_commands(
        ctx: Context, minutes: Annotated[int | None, Query(ge=1)] = None
    ) -> StaleCommandsResponse:
        """Processing commands claimed more than ``minutes`` ago with no report."""
        window = minutes or ctx.settings.stale_command_minutes
        stale = await ctx.dispatcher.stale_commands(timedelta(minutes=window))
        return StaleCommandsResponse(
            older_than_minutes=window,
            count=len(stale),
            commands=[StaleCommandResponse.model_validate(item.to_dict()) for item in stale],
        )


app = create_app()


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    _settings = get_settings()
    uvicorn.run(
        "apps.signal_bridge.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_level=_settings.log_level.lower(),
    )
