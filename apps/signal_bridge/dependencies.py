"""FastAPI dependency providers for the Signal Bridge.

Usage:
    @app.get("/api/v1/commands")
    async def poll(
        account: Account = Depends(get_account),
        ctx: BridgeContext = Depends(get_context),
    ): ...
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Query, Request, status

from apps.signal_bridge.app_context import BridgeContext
from libs.document_store import ACCOUNTS
from libs.risk_management import Account

logger = logging.getLogger(__name__)


def get_context(request: Request) -> BridgeContext:
    """Return the BridgeContext stored on app.state by the lifespan.

    Raises:
        RuntimeError: If the lifespan did not run or failed
    """
    ctx = getattr(request.app.state, "context", None)
    if ctx is None:
        raise RuntimeError("BridgeContext not initialized in app.state")
    return ctx


async def get_account(
    ctx: Annotated[BridgeContext, Depends(get_context)],
    header_token: Annotated[str | None, Header(alias="X-Bridge-Token")] = None,
    query_token: Annotated[str | None, Query(alias="token")] = None,
) -> Account:
    """Resolve the EA's account from its bearer token.

    The token comes from the ``X-Bridge-Token`` header or, for EAs that
    cannot set headers, the ``token`` query parameter.

    Raises:
        HTTPException 401: No token supplied
        HTTPException 403: Token does not belong to any account
    """
    token = header_token or query_token
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    matches = await ctx.store.query(ACCOUNTS.name, {"token": token}, limit=1)
    if not matches:
        logger.warning("Rejected request with unknown token")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
    return Account.model_validate(matches[0])


def require_admin(
    ctx: Annotated[BridgeContext, Depends(get_context)],
    admin_token: Annotated[str | None, Header(alias="X-Admin-Token")] = None,
) -> None:
    """Guard operator endpoints when ``ADMIN_TOKEN`` is configured.

    Raises:
        HTTPException 401: Token required but missing
        HTTPException 403: Token does not match
    """
    expected = ctx.settings.admin_token
    if expected is None:
        return
    if not admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing admin token")
    if not hmac.compare_digest(admin_token, expected.get_secret_value()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin token")
