import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx

from errors import InvalidCredentials, UpstreamUnavailable

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

SCOPES = ["openid", "email", "profile"]


@dataclass
class GoogleProfile:
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


class GoogleOAuthClient:
    """Google sign-in through the OAuth 2.0 authorization code flow."""

    def __init__(self, client_id: str, client_secret: str, timeout: float = 10.0,
                 http_client: Optional[httpx.Client] = None):
        if not client_id or not client_secret:
            raise ValueError("GOOGLE_OAUTH_CLIENT_ID and GOOGLE_OAUTH_CLIENT_SECRET are required")
        self.client_id = client_id
        self.client_secret = client_secret
        self.http = http_client or httpx.Client(timeout=timeout)

    def build_authorization_url(self, state: str, redirect_uri: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "state": state,
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> GoogleProfile:
        try:
            token_resp = self.http.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": redirect_uri,
                },
            )
            if token_resp.status_code in (400, 401):
                raise InvalidCredentials("Google sign-in was rejected")
            token_resp.raise_for_status()
            access_token = token_resp.json()["access_token"]

            userinfo_resp = self.http.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            userinfo_resp.raise_for_status()
            info = userinfo_resp.json()
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("Google token exchange failed: %s", e)
            raise UpstreamUnavailable("Google sign-in is unavailable") from e

        if not info.get("email"):
            raise InvalidCredentials("Google account has no email address")
        if not info.get("verified_email"):
            raise InvalidCredentials("Google account email is not verified")
        return GoogleProfile(email=info["email"], name=info.get("name"), picture=info.get("picture"))
