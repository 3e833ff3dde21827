# src/token_lifecycle/sync.py

import logging
from typing import List, Optional

from .credential import CredentialUpdate
from .stores.sql_store import AccountTableStore, GoogleTokensStore

lib_logger = logging.getLogger("token_lifecycle")


async def sync_account_tokens(
    account_store: AccountTableStore,
    tokens_store: GoogleTokensStore,
    user_id: str,
    email: Optional[str] = None,
) -> List[str]:
    """
    Copy a user's google Account rows into GoogleTokens.

    Rows are matched on (userId, providerAccountId). Values missing on the
    Account row never erase what GoogleTokens already holds, so a stored
    refresh token survives an Account row that lost its own.

    Returns:
        Subject keys of the GoogleTokens rows written
    """
    accounts = await account_store.list_for_user(user_id)
    if not accounts:
        lib_logger.info(f"No Google accounts to sync for user '{user_id}'")
        return []

    synced = []
    for account in accounts:
        subject_key = await tokens_store.upsert(
            user_id,
            account.provider_subject,
            CredentialUpdate(
                access_token=account.access_token,
                expires_at=account.expires_at,
                refresh_token=account.refresh_token,
                scope=account.scope,
            ),
            email=email,
        )
        synced.append(subject_key)

    lib_logger.info(
        f"Synced {len(synced)} Google account(s) to GoogleTokens for user '{user_id}'"
    )
    return synced
