# src/dashboard_app/main.py

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI

from token_lifecycle import LifecycleSettings, TokenLifecycleManager
from token_lifecycle.settings import load_env_file
from token_lifecycle.timeout_config import TimeoutConfig

from .admin_api import router as admin_router
from .dependencies import (
    get_token_manager,
    google_access_token_for_account,
    google_access_token_for_session,
)
from .logging_setup import configure_logging

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[LifecycleSettings] = None,
    manager: Optional[TokenLifecycleManager] = None,
) -> FastAPI:
    """
    Build the dashboard API.

    With no arguments, settings come from the environment (.env loaded first)
    and the manager shares one HTTP client for token refreshes over the app's
    lifetime. Passing a manager skips both.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client = None
        if manager is not None:
            app.state.token_manager = manager
        else:
            resolved = settings
            if resolved is None:
                load_env_file()
                resolved = LifecycleSettings.from_env()
            http_client = httpx.AsyncClient(
                timeout=TimeoutConfig.token_endpoint(resolved.refresh_timeout)
            )
            app.state.token_manager = TokenLifecycleManager.from_settings(
                resolved, http_client=http_client
            )
            logger.info(f"Token lifecycle manager ready (database: {resolved.db_path})")
        try:
            yield
        finally:
            if http_client is not None:
                await http_client.aclose()

    app = FastAPI(title="SEO Dashboard API", lifespan=lifespan)
    app.include_router(admin_router)

    @app.get("/api/google/session-token/status")
    async def session_token_status(
        access_token: str = Depends(google_access_token_for_session),
    ):
        """Confirms the signed-in session holds a usable Google token."""
        return {"connected": True, "token_available": bool(access_token)}

    @app.get("/api/google/accounts/{account_id}/token-status")
    async def account_token_status(
        account_id: str,
        access_token: str = Depends(google_access_token_for_account),
    ):
        return {"account_id": account_id, "connected": True, "token_available": bool(access_token)}

    @app.get("/health")
    async def health(manager: TokenLifecycleManager = Depends(get_token_manager)):
        return {
            "status": "ok",
            "refreshes_in_flight": manager.coordinator.in_flight_count(),
        }

    return app


def main():
    parser = argparse.ArgumentParser(description="SEO dashboard API server.")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind.")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on.")
    parser.add_argument("--env-file", type=str, default=None, help="Path to a .env file.")
    args = parser.parse_args()

    import uvicorn

    load_env_file(args.env_file)
    configure_logging()
    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
