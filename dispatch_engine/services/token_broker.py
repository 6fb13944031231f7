"""
Access token broker for the Google Calendar API.

Owns the cached bearer token and performs the browser-delegated OAuth flow
when the cache is empty or about to expire. Refreshes are single-flight:
concurrent callers wait on one in-flight authorization.
"""

import asyncio

from google_auth_oauthlib.flow import InstalledAppFlow

from dispatch_engine.config import settings
from dispatch_engine.infrastructure.observability.logging import get_logger, token_preview
from dispatch_engine.models.domain.oauth_domain import AccessToken
from dispatch_engine.services.google_oauth_service import GoogleOAuthError, GoogleOAuthService

logger = get_logger(__name__)

TOKEN_VALIDITY_BUFFER_SECONDS = 60


class AccessTokenConfigError(Exception):
    """Raised before any token request when no client id is configured."""


class AccessTokenError(Exception):
    """Authorization denied, IdP error, or the browser flow could not complete."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        error_description: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.error_description = error_description
        self.recoverable = recoverable


class LoopbackAuthorizationFlow:
    """
    Installed-app OAuth flow redirecting to a loopback listener.

    google-auth-oauthlib opens the consent URL, serves the redirect on
    127.0.0.1, checks state and exchanges the code with PKCE. Its blocking
    flow runs in a worker thread so the event loop stays free.
    """

    def __init__(
        self,
        port: int | None = None,
        timeout: float | None = None,
        open_browser: bool = True,
        flow_class=InstalledAppFlow,
    ):
        self.port = port if port is not None else settings.GOOGLE_OAUTH_LOOPBACK_PORT
        self.timeout = timeout if timeout is not None else settings.GOOGLE_OAUTH_FLOW_TIMEOUT
        self.open_browser = open_browser
        self._flow_class = flow_class

    async def authorize(self, client_id: str, prompt: str) -> AccessToken:
        logger.info("Waiting for calendar authorization", port=self.port, prompt=prompt or "none")
        try:
            oauth = GoogleOAuthService(client_id=client_id, flow_class=self._flow_class)
            return await asyncio.to_thread(
                oauth.authorize_installed_app,
                self.port,
                self.timeout,
                prompt,
                self.open_browser,
            )
        except GoogleOAuthError as e:
            error_code = e.error_code or "authorization_failed"
            raise AccessTokenError(
                str(e),
                error_code=error_code,
                error_description=e.response_data.get("error_description"),
                recoverable=error_code != "flow_unavailable",
            ) from e


class AccessTokenBroker:
    """
    Caches one calendar access token per broker instance.

    The first authorization asks for explicit consent. Later authorizations in
    the same process use an empty prompt so Google can answer silently.
    """

    def __init__(self, flow=None, client_id: str | None = None):
        self._flow = flow or LoopbackAuthorizationFlow()
        self._client_id = client_id
        self._token: AccessToken | None = None
        self._granted = False
        self._refresh_lock = asyncio.Lock()

    @property
    def cached_token(self) -> AccessToken | None:
        return self._token

    def _resolve_client_id(self, client_id: str | None) -> str:
        resolved = (client_id or self._client_id or settings.calendar_client_id() or "").strip()
        if not resolved:
            raise AccessTokenConfigError("Google Calendar client id is not configured")
        return resolved

    def _usable_token(self) -> AccessToken | None:
        if self._token and self._token.is_valid(TOKEN_VALIDITY_BUFFER_SECONDS):
            return self._token
        return None

    async def request_access_token(self, client_id: str | None = None) -> str:
        """
        Return a bearer token valid for at least another 60 seconds.

        Raises:
            AccessTokenConfigError: If no client id is configured
            AccessTokenError: If authorization is denied or cannot complete
        """
        resolved_client_id = self._resolve_client_id(client_id)

        token = self._usable_token()
        if token:
            return token.access_token

        async with self._refresh_lock:
            # Another caller may have finished authorizing while we waited
            token = self._usable_token()
            if token:
                logger.debug("Calendar token shared with in-flight authorization")
                return token.access_token

            prompt = "" if self._granted else "consent"
            logger.info("Requesting calendar access token", prompt=prompt or "none")
            token = await self._flow.authorize(resolved_client_id, prompt)
            self._token = token
            self._granted = True

        logger.info(
            "Calendar access token cached",
            token_preview=token_preview(token.access_token),
            expires_at=token.expires_at.isoformat(),
        )
        return token.access_token

    def invalidate(self) -> None:
        """Drop the cached token, e.g. after the API answers 401."""
        self._token = None


# Singleton instance for application use
access_token_broker = AccessTokenBroker()
