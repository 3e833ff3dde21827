#!/usr/bin/env python3
"""
Google Accounts Admin API Module

FastAPI endpoints for inspecting and refreshing stored Google credentials.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from token_lifecycle import (
    AccountIdHint,
    LifecycleError,
    PersistenceError,
    TokenLifecycleManager,
)
from token_lifecycle.stores import CredentialStore
from token_lifecycle.sync import sync_account_tokens

from .dependencies import get_token_manager, lifecycle_error_to_http

# Configure logging
logger = logging.getLogger(__name__)

# Create router for admin credential endpoints
router = APIRouter(prefix="/api/admin/google-accounts", tags=["google-accounts"])


def _store_by_name(manager: TokenLifecycleManager, name: str) -> CredentialStore:
    resolver = manager.resolver
    stores = [resolver.account_store, resolver.tokens_store, resolver.legacy_store]
    for store in stores:
        if store is not None and store.name == name:
            return store
    raise HTTPException(status_code=404, detail=f"Unknown credential store '{name}'")


@router.post("/refresh-all")
async def refresh_all_accounts(
    store: str = Query(default="account"),
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> Dict[str, Any]:
    """
    Refresh every credential with a refresh token in one store.

    Returns:
        JSON with per-credential results; individual failures do not fail the call
    """
    target_store = _store_by_name(manager, store)
    try:
        outcomes = await manager.refresh_all(target_store)
    except LifecycleError as e:
        raise lifecycle_error_to_http(e) from e
    return {
        "success": True,
        "message": f"Processed {len(outcomes)} accounts",
        "results": [outcome.to_dict() for outcome in outcomes],
    }


@router.post("/sync")
async def sync_tokens(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> Dict[str, Any]:
    """Copy the caller's google Account rows into the GoogleTokens table."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        synced = await sync_account_tokens(
            manager.resolver.account_store,
            manager.resolver.tokens_store,
            x_user_id,
            email=x_user_email,
        )
    except LifecycleError as e:
        raise lifecycle_error_to_http(e) from e

    if not synced:
        return {"success": True, "message": "No Google accounts found", "synced": []}
    return {
        "success": True,
        "message": f"Synced {len(synced)} Google account(s) to GoogleTokens table",
        "synced": synced,
    }


@router.post("/{account_id}/refresh")
async def refresh_account(
    account_id: str,
    x_user_id: Optional[str] = Header(default=None),
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> Dict[str, Any]:
    """
    Refresh one account's access token now, regardless of its expiry.

    Args:
        account_id: Account (or legacy GoogleAccount) row id
    """
    try:
        bundle = await manager.force_refresh(AccountIdHint(account_id, user_id=x_user_id))
    except PersistenceError as e:
        logger.error(f"Refreshed token for account '{account_id}' could not be saved")
        raise lifecycle_error_to_http(e) from e
    except LifecycleError as e:
        raise lifecycle_error_to_http(e) from e

    return {
        "success": True,
        "message": "Tokens refreshed successfully",
        "store": bundle.store_name,
        "expires_at": bundle.expires_at,
    }


@router.get("/{account_id}/tokeninfo")
async def get_token_info(
    account_id: str,
    x_user_id: Optional[str] = Header(default=None),
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> Dict[str, Any]:
    """
    Redacted status of an account's stored credential.

    Token values are never included in the response.
    """
    try:
        info = await manager.describe(AccountIdHint(account_id, user_id=x_user_id))
    except LifecycleError as e:
        raise lifecycle_error_to_http(e) from e
    return info.to_dict()
