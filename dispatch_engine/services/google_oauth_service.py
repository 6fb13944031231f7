"""
Google OAuth Service for Calendar API access.
Runs the installed-app consent flow (loopback redirect + PKCE) through
google-auth-oauthlib and maps its failures onto GoogleOAuthError.
"""

import webbrowser

from google_auth_oauthlib.flow import InstalledAppFlow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from dispatch_engine.config import settings
from dispatch_engine.infrastructure.observability.logging import get_logger, token_preview
from dispatch_engine.models.domain.oauth_domain import AccessToken

logger = get_logger(__name__)

# OAuth configuration
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

CALENDAR_EVENTS_SCOPE = "https://www.googleapis.com/auth/calendar.events"

LOOPBACK_HOST = "127.0.0.1"

_SUCCESS_MESSAGE = "Calendar authorization complete. You can close this window."


class GoogleOAuthError(Exception):
    """Custom exception for Google OAuth-related errors."""

    def __init__(
        self, message: str, error_code: str | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}


class GoogleOAuthService:
    """
    Service for Google OAuth 2.0 operations against the Calendar events scope.

    Each call to ``authorize_installed_app`` builds a fresh flow, so state and
    the PKCE verifier are never reused between authorizations.
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        flow_class=InstalledAppFlow,
    ):
        self.client_id = client_id or settings.calendar_client_id()
        self.client_secret = client_secret or settings.GOOGLE_CALENDAR_CLIENT_SECRET or ""
        self._flow_class = flow_class
        self._validate_config()

    def _validate_config(self) -> None:
        if not self.client_id:
            raise GoogleOAuthError("GOOGLE_CALENDAR_CLIENT_ID not configured")

        logger.debug(
            "Google OAuth service initialized",
            client_id_preview=token_preview(self.client_id, 12),
        )

    def build_client_config(self) -> dict:
        """Client config in the shape of a downloaded ``installed`` client secrets file."""
        return {
            "installed": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
                "redirect_uris": [f"http://{LOOPBACK_HOST}"],
            }
        }

    def create_flow(self) -> InstalledAppFlow:
        return self._flow_class.from_client_config(
            self.build_client_config(),
            scopes=[CALENDAR_EVENTS_SCOPE],
            autogenerate_code_verifier=True,
        )

    def authorize_installed_app(
        self,
        port: int,
        timeout: float,
        prompt: str = "",
        open_browser: bool = True,
    ) -> AccessToken:
        """
        Run the consent flow and return the granted access token.

        Blocks until the browser is redirected back to the loopback listener
        or ``timeout`` seconds pass, so callers on an event loop should run it
        in a worker thread.

        Args:
            port: Loopback port registered for the redirect
            timeout: Seconds to wait for the redirect
            prompt: "consent" for first authorization, "" for a silent round trip
            open_browser: Launch the system browser on the consent URL

        Raises:
            GoogleOAuthError: If the flow cannot start, times out, or Google
                answers with an error
        """
        flow = self.create_flow()
        extra_params = {"prompt": prompt} if prompt else {}

        try:
            credentials = flow.run_local_server(
                host=LOOPBACK_HOST,
                port=port,
                open_browser=open_browser,
                timeout_seconds=timeout,
                authorization_prompt_message=None,
                success_message=_SUCCESS_MESSAGE,
                access_type="online",
                include_granted_scopes="true",
                **extra_params,
            )
        except OAuth2Error as e:
            logger.error(
                "Google authorization failed",
                error_code=e.error,
                error_description=e.description,
            )
            raise GoogleOAuthError(
                self._map_google_error(e.error),
                error_code=e.error,
                response_data={"error": e.error, "error_description": e.description},
            ) from e
        except webbrowser.Error as e:
            raise GoogleOAuthError(
                f"Unable to open a browser for calendar authorization: {e}",
                error_code="flow_unavailable",
            ) from e
        except AttributeError as e:
            # run_local_server has no callback URI to parse when the wait times out
            raise GoogleOAuthError(
                "Calendar authorization timed out", error_code="authorization_timeout"
            ) from e
        except OSError as e:
            raise GoogleOAuthError(
                f"Calendar authorization could not complete: {e}",
                error_code="flow_unavailable",
            ) from e

        token = AccessToken.from_credentials(credentials)
        logger.info(
            "Google authorization successful",
            token_preview=token_preview(token.access_token),
            expires_at=token.expires_at.isoformat(),
            has_calendar_scope=CALENDAR_EVENTS_SCOPE in token.scope.split(),
        )
        return token

    def _map_google_error(self, error_code: str) -> str:
        error_messages = {
            "access_denied": "Calendar access was denied. Grant calendar permission and try again.",
            "invalid_grant": "Authorization code expired or invalid. Please authorize again.",
            "invalid_client": "Calendar OAuth client configuration error.",
            "invalid_request": "Invalid calendar authorization request.",
            "unauthorized_client": "Calendar OAuth client is not authorized for this flow.",
            "invalid_scope": "Invalid calendar permissions requested.",
            "mismatching_state": "OAuth state mismatch on calendar authorization.",
            "missing_code": "OAuth callback did not include an authorization code.",
        }
        return error_messages.get(error_code, f"Calendar authorization failed ({error_code}).")
