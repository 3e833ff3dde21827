# src/token_lifecycle/token_refresher.py

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from .credential import TokenGrant
from .error_handler import RefreshRejectedError, RefreshTransportError, mask_credential
from .settings import GOOGLE_TOKEN_URI
from .timeout_config import TimeoutConfig

lib_logger = logging.getLogger("token_lifecycle")

# Google omits expires_in on some legacy clients; access tokens live one hour
DEFAULT_EXPIRES_IN = 3600


class GoogleTokenRefresher:
    """
    Executes the OAuth2 refresh-token grant against Google's token endpoint.

    Makes exactly one HTTP call per refresh and never retries: retry policy
    belongs to the caller, which can tell a transient failure
    (RefreshTransportError) from a revoked grant (RefreshRejectedError).
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_uri: str = GOOGLE_TOKEN_URI,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri
        self.timeout = timeout or TimeoutConfig.refresh()
        self._http_client = http_client
        self._clock = clock

    async def _post(self, data: dict) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(
                self.token_uri,
                data=data,
                timeout=TimeoutConfig.token_endpoint(self.timeout),
            )
        async with httpx.AsyncClient(
            timeout=TimeoutConfig.token_endpoint(self.timeout)
        ) as client:
            return await client.post(self.token_uri, data=data)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Raises:
            RefreshRejectedError: Google answered with an OAuth error (e.g. invalid_grant)
            RefreshTransportError: No usable response (network, timeout, 5xx, bad body)
        """
        if not refresh_token:
            raise ValueError("refresh_token must be a non-empty string")

        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }

        lib_logger.debug(
            f"Refreshing Google access token with refresh token {mask_credential(refresh_token)}"
        )
        try:
            # Bounds the whole exchange, not just each socket operation
            response = await asyncio.wait_for(self._post(data), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RefreshTransportError(
                f"Token endpoint did not answer within {self.timeout}s"
            ) from e
        except httpx.RequestError as e:
            raise RefreshTransportError(f"Network error during token refresh: {e}") from e

        # Expiry counts from when the answer arrived
        obtained_at = self._clock()
        payload = self._parse_body(response)

        if not response.is_success:
            self._raise_for_error(response, payload)

        if payload is None or not payload.get("access_token"):
            raise RefreshTransportError(
                "Token endpoint returned a success status without an access_token",
                status_code=response.status_code,
            )

        try:
            expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            lib_logger.warning(
                f"Unparseable expires_in {payload.get('expires_in')!r}; assuming {DEFAULT_EXPIRES_IN}s"
            )
            expires_in = DEFAULT_EXPIRES_IN

        return TokenGrant(
            access_token=payload["access_token"],
            expires_in=expires_in,
            obtained_at=obtained_at,
            scope=payload.get("scope") or None,
            refresh_token=payload.get("refresh_token") or None,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Optional[dict]:
        try:
            payload = response.json()
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

    @staticmethod
    def _raise_for_error(response: httpx.Response, payload: Optional[dict]):
        status_code = response.status_code

        # Rate limits and server faults say nothing about the grant itself
        if status_code == 429 or status_code >= 500:
            raise RefreshTransportError(
                f"Token endpoint unavailable (HTTP {status_code})",
                status_code=status_code,
            )

        error_code = payload.get("error") if payload else None
        if isinstance(error_code, dict):
            # Some Google front-ends wrap errors as {"error": {"status": ..., "message": ...}}
            error_code = error_code.get("status") or error_code.get("message")

        if error_code:
            raise RefreshRejectedError(
                str(error_code),
                description=payload.get("error_description"),
                status_code=status_code,
            )

        raise RefreshTransportError(
            f"Token endpoint returned HTTP {status_code} without an OAuth error body",
            status_code=status_code,
        )
