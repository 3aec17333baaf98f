"""
ChatCal Assistant: Google OAuth identity provider.

Each chat user connects their own Google Calendar. The bot sends a consent
link carrying a one-time state token; the user pastes the redirect URL back
and the code in it is exchanged for a credential bundle, stored as the
authorized-user JSON that google-auth reads and writes.

Network calls in google-auth are blocking, so they run in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from urllib.parse import urlencode

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from src.ports.identity_port import IdentityProviderError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
REVOKE_URL = "https://oauth2.googleapis.com/revoke"


def _load_credentials(credentials_json: str) -> Credentials:
    try:
        info = json.loads(credentials_json)
        return Credentials.from_authorized_user_info(info, SCOPES)
    except (ValueError, TypeError) as exc:
        raise IdentityProviderError(f"Stored credentials are unreadable: {exc}") from exc


def build_calendar_service(credentials_json: str):
    """Build a Google Calendar API v3 service from a stored credential bundle."""
    creds = _load_credentials(credentials_json)
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


class GoogleIdentityProvider:
    """IdentityProvider backed by google-auth-oauthlib."""

    def __init__(self, client_secrets_path: str, redirect_uri: str) -> None:
        self._client_secrets_path = Path(client_secrets_path)
        self._redirect_uri = redirect_uri

    def _flow(self) -> InstalledAppFlow:
        if not self._client_secrets_path.exists():
            raise FileNotFoundError(
                f"Google client secrets not found at {self._client_secrets_path}. "
                "Download it from the Google Cloud Console."
            )
        # No PKCE: the flow object does not survive between link and callback.
        return InstalledAppFlow.from_client_secrets_file(
            str(self._client_secrets_path),
            SCOPES,
            redirect_uri=self._redirect_uri,
            autogenerate_code_verifier=False,
        )

    def build_auth_url(self, state: str) -> str:
        flow = self._flow()
        auth_url, _ = flow.authorization_url(
            access_type="offline", prompt="consent", state=state,
        )
        return auth_url

    async def exchange(self, code: str) -> str:
        flow = self._flow()
        try:
            await asyncio.to_thread(flow.fetch_token, code=code)
        except Exception as exc:
            logger.error("Google code exchange failed: %s", exc)
            raise IdentityProviderError(f"Code exchange failed: {exc}") from exc
        logger.info("Google credentials obtained via consent flow")
        return flow.credentials.to_json()

    async def refresh(self, credentials_json: str) -> str:
        creds = _load_credentials(credentials_json)
        if not creds.refresh_token:
            raise IdentityProviderError("No refresh token stored")
        try:
            await asyncio.to_thread(creds.refresh, Request())
        except GoogleAuthError as exc:
            logger.warning("Token refresh failed: %s", exc)
            raise IdentityProviderError(f"Token refresh failed: {exc}") from exc
        logger.info("Token refreshed successfully")
        return creds.to_json()

    async def revoke(self, credentials_json: str) -> None:
        creds = _load_credentials(credentials_json)
        token = creds.refresh_token or creds.token
        if not token:
            return
        request = Request()
        try:
            response = await asyncio.to_thread(
                request,
                REVOKE_URL,
                method="POST",
                body=urlencode({"token": token}),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except GoogleAuthError as exc:
            raise IdentityProviderError(f"Revoke failed: {exc}") from exc
        # 400 means the token was already invalid, which is the goal anyway.
        if response.status not in (200, 400):
            raise IdentityProviderError(f"Revoke failed with HTTP {response.status}")

    def needs_refresh(self, credentials_json: str) -> bool:
        return not _load_credentials(credentials_json).valid
