"""
Authorization gate.

Every protected operation first asks ``check_credential`` for a usable token:

- nothing stored        -> not ok, caller must authorize (/auth)
- stored, not expired   -> ok, no I/O
- stored, expired       -> one refresh; stored again on success,
                           otherwise the same outcome as "nothing stored"
"""

from __future__ import annotations

import os
import logging
from functools import wraps
from typing import Optional, Tuple, Union

from flask import current_app, g, redirect, url_for
from google.auth import exceptions as google_exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from formrelay.config import AUTH_URI, SCOPES, TOKEN_URI
from formrelay.credentials import Credential, CredentialStore
from formrelay.errors import AuthExchangeError, ConfigError

logger = logging.getLogger(__name__)

# Google may answer with a superset of the requested scopes
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

MISSING = "missing"
REFRESH_FAILED = "refresh_failed"


class OAuthClient:
    """Web-server OAuth2 client for the Google Forms scopes."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, scopes=None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes or SCOPES)

    @classmethod
    def from_config(cls, config: dict) -> "OAuthClient":
        google = config.get("google", {})
        if not google.get("client_id") or not google.get("client_secret"):
            raise ConfigError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set")
        return cls(google["client_id"], google["client_secret"], google["redirect_uri"])

    def _flow(self) -> Flow:
        client_config = {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.redirect_uri],
            }
        }
        # a new Flow is built for the callback, so no PKCE verifier to carry over
        return Flow.from_client_config(
            client_config,
            scopes=self.scopes,
            redirect_uri=self.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self) -> str:
        url, _state = self._flow().authorization_url(access_type="offline")
        return url

    def exchange_code(self, code: Optional[str]) -> Credential:
        if not code:
            raise AuthExchangeError("missing authorization code")
        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            raise AuthExchangeError(f"token exchange failed: {e}") from e
        return Credential.from_google(flow.credentials)

    def google_credentials(self, credential: Credential) -> Credentials:
        """Credentials for API calls.

        Carries no expiry, so google-auth never refreshes on its own; only
        ``check_credential`` refreshes and stores the new token.
        """
        return Credentials(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=credential.scope.split() if credential.scope else self.scopes,
        )

    def refresh(self, credential: Credential) -> Tuple[bool, Union[Credential, Exception]]:
        """Refresh ``credential``. Returns ``(True, new)`` or ``(False, error)``, never raises."""
        creds = self.google_credentials(credential)
        try:
            creds.refresh(Request())
        except google_exceptions.GoogleAuthError as e:
            return False, e
        refreshed = Credential.from_google(creds)
        if not refreshed.refresh_token:
            # refresh responses usually omit it
            refreshed.refresh_token = credential.refresh_token
        return True, refreshed


def check_credential(store: CredentialStore, client: OAuthClient, now=None):
    """Run the gate. Returns ``(True, credential)`` or ``(False, reason)``."""
    credential = store.get()
    if credential is None:
        return False, MISSING

    if not credential.expired(now):
        return True, credential

    ok, result = client.refresh(credential)
    if not ok:
        logger.error("Error refreshing access token: %s", result)
        return False, REFRESH_FAILED
    store.set(result)
    logger.info("Access token refreshed, valid until %s", result.expiry)
    return True, result


def login_required(view):
    """Only let the request through with a usable credential, else redirect to /auth."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        state = current_app.extensions["formrelay"]
        ok, result = check_credential(state["store"], state["oauth"])
        if not ok:
            return redirect(url_for("auth.authorize"))
        g.credential = result
        return view(*args, **kwargs)

    return wrapped
