#!/usr/bin/env python3
"""
FastAPI dependencies for routes that call Google APIs.

Each dependency resolves a valid access token for the request and turns
lifecycle failures into HTTP errors the dashboard UI understands: 404 when the
account is unknown, 409 with a reconnect prompt when the user must re-run the
Google consent flow, 503 when the token endpoint is temporarily unreachable.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, Response

from token_lifecycle import (
    AccountIdHint,
    AmbientHint,
    LifecycleError,
    PersistenceError,
    TokenLifecycleManager,
    UserHint,
)
from token_lifecycle.manager import HintArg
from token_lifecycle.stores import StarletteCookieJar

logger = logging.getLogger(__name__)


def get_token_manager(request: Request) -> TokenLifecycleManager:
    """Dependency to get the token lifecycle manager from app state."""
    manager = getattr(request.app.state, "token_manager", None)
    if manager is None:
        raise HTTPException(status_code=500, detail="Token manager not initialized")
    return manager


def lifecycle_error_to_http(error: LifecycleError) -> HTTPException:
    """Map a lifecycle failure to the HTTP error a route should answer with."""
    headers = None
    if error.retryable:
        headers = {"Retry-After": "5"}
    return HTTPException(
        status_code=error.http_status, detail=error.to_dict(), headers=headers
    )


async def resolve_access_token(manager: TokenLifecycleManager, hint: HintArg) -> str:
    """
    Get an access token for hint, raising HTTPException on failure.

    A PersistenceError still carries a usable token: the request proceeds with
    it and the failure is logged, since the next call will refresh again.
    """
    try:
        return await manager.get_access_token(hint)
    except PersistenceError as e:
        logger.error(
            f"Proceeding with unsaved Google token for {e.store_name}:{e.subject_key}: {e.cause}"
        )
        return e.access_token
    except LifecycleError as e:
        raise lifecycle_error_to_http(e) from e


async def google_access_token_for_account(
    account_id: str,
    x_user_id: Optional[str] = Header(default=None),
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> str:
    """Token for a specific linked account owned by the calling user."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return await resolve_access_token(manager, AccountIdHint(account_id, user_id=x_user_id))


async def google_access_token_for_session(
    request: Request,
    response: Response,
    x_user_id: Optional[str] = Header(default=None),
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> str:
    """
    Token for the signed-in user: their most recent stored credential, falling
    back to the session cookies. Refreshed cookie tokens are set on the response.
    """
    hints = [AmbientHint(StarletteCookieJar(request, response))]
    if x_user_id:
        hints.insert(0, UserHint(x_user_id))
    return await resolve_access_token(manager, hints)
