"""
GitHub OAuth and GitHub App authentication

Talks to the GitHub token endpoint (authorization-code exchange and
refresh-token grant) and mints GitHub App installation tokens for users who
authorized through an app installation instead of OAuth.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import httpx
from cryptography.hazmat.primitives import serialization
from jwt import encode as jwt_encode

from gitconnect.config import GITHUB_ACCEPT, GITHUB_USER_AGENT, Settings
from gitconnect.models import TokenPayload
from gitconnect.utils import as_utc, utc_now

logger = logging.getLogger(__name__)

GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
INSTALLATION_TOKEN_BUFFER_SECONDS = 60


class GitHubOAuthError(Exception):
    """The GitHub token endpoint rejected a request"""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class GitHubAppError(Exception):
    """GitHub App authentication is misconfigured or failed"""

    pass


def parse_token_response(payload: Dict[str, Any], now: Optional[datetime] = None) -> TokenPayload:
    """
    Turn a token endpoint answer into a TokenPayload

    GitHub answers 200 even for grant errors, so the ``error`` field is
    checked before anything else.
    """
    if payload.get("error") or not payload.get("access_token"):
        raise GitHubOAuthError(
            payload.get("error_description") or "GitHub OAuth error", payload
        )

    now = now or utc_now()
    expires_in = payload.get("expires_in")
    refresh_expires_in = payload.get("refresh_token_expires_in")

    return TokenPayload(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        token_type=payload.get("token_type"),
        scope=payload.get("scope"),
        token_expires_at=(
            now + timedelta(seconds=int(expires_in)) if expires_in is not None else None
        ),
        refresh_token_expires_at=(
            now + timedelta(seconds=int(refresh_expires_in))
            if refresh_expires_in is not None
            else None
        ),
    )


class GitHubOAuthClient:
    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self.http = http
        self.settings = settings

    @property
    def configured(self) -> bool:
        return self.settings.oauth_configured

    async def _request_tokens(self, data: Dict[str, str]) -> TokenPayload:
        response = await self.http.post(
            GITHUB_TOKEN_URL,
            headers={"Accept": "application/json"},
            data=data,
        )
        if not response.is_success:
            raise GitHubOAuthError(
                "GitHub token endpoint returned an error response", response.text
            )
        try:
            payload = response.json()
        except ValueError:
            raise GitHubOAuthError("GitHub token endpoint returned invalid JSON", response.text)
        return parse_token_response(payload)

    async def exchange_code(self, code: str) -> TokenPayload:
        """Exchange an authorization code for user tokens"""
        data = {
            "client_id": self.settings.github_client_id,
            "client_secret": self.settings.github_client_secret,
            "code": code,
        }
        if self.settings.github_redirect_uri:
            data["redirect_uri"] = self.settings.github_redirect_uri
        return await self._request_tokens(data)

    async def refresh_user_tokens(self, refresh_token: str) -> TokenPayload:
        """Exchange a refresh token for a new access token (and possibly a rotated refresh token)"""
        return await self._request_tokens(
            {
                "client_id": self.settings.github_client_id,
                "client_secret": self.settings.github_client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )

    async def fetch_user(self, access_token: str) -> Dict[str, Any]:
        response = await self.http.get(
            f"{self.settings.github_api_base_url.rstrip('/')}/user",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": GITHUB_ACCEPT,
                "User-Agent": GITHUB_USER_AGENT,
            },
        )
        if not response.is_success:
            raise GitHubOAuthError("Failed to fetch GitHub user profile", response.text)
        return response.json()


@dataclass
class InstallationToken:
    token: str
    expires_at: datetime
    permissions: Dict[str, str] = field(default_factory=dict)


class GitHubAppAuth:
    """
    GitHub App authentication: app JWTs and installation access tokens.

    Installation tokens live for an hour; they are cached per installation and
    re-minted once they are within a minute of expiring.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.http = http
        self.settings = settings
        self._clock = clock
        self._private_key = None
        self._tokens: Dict[int, InstallationToken] = {}

    @property
    def configured(self) -> bool:
        return self.settings.github_app_configured

    def _load_private_key(self):
        if self._private_key is not None:
            return self._private_key

        if self.settings.github_app_private_key:
            pem = self.settings.github_app_private_key.replace("\\n", "\n").encode()
        elif self.settings.github_app_private_key_path:
            try:
                with open(self.settings.github_app_private_key_path, "rb") as key_file:
                    pem = key_file.read()
            except OSError as e:
                raise GitHubAppError(f"Failed to read GitHub App private key: {e}")
        else:
            raise GitHubAppError("GitHub App private key not configured")

        try:
            self._private_key = serialization.load_pem_private_key(pem, password=None)
        except ValueError as e:
            raise GitHubAppError(f"Failed to load GitHub App private key: {e}")
        return self._private_key

    def generate_app_jwt(self) -> str:
        """
        Generate a JWT token for GitHub App authentication

        Returns:
            RS256 JWT valid for ten minutes, backdated a minute for clock skew
        """
        if not self.settings.github_app_id:
            raise GitHubAppError("GitHub App ID not configured")

        now = int(time.time())
        payload = {
            "iat": now - 60,
            "exp": now + 10 * 60,
            "iss": self.settings.github_app_id,
        }
        return jwt_encode(payload, self._load_private_key(), algorithm="RS256")

    async def get_installation_token(self, installation_id: int) -> InstallationToken:
        cached = self._tokens.get(installation_id)
        if cached and cached.expires_at - self._clock() > timedelta(
            seconds=INSTALLATION_TOKEN_BUFFER_SECONDS
        ):
            return cached

        response = await self.http.post(
            f"{self.settings.github_api_base_url.rstrip('/')}/app/installations/{installation_id}/access_tokens",
            headers={
                "Authorization": f"Bearer {self.generate_app_jwt()}",
                "Accept": GITHUB_ACCEPT,
                "User-Agent": GITHUB_USER_AGENT,
            },
        )
        if response.status_code != 201:
            raise GitHubAppError(
                f"Failed to create installation access token: {response.status_code} {response.text}"
            )

        data = response.json()
        token = InstallationToken(
            token=data["token"],
            expires_at=as_utc(datetime.fromisoformat(data["expires_at"].replace("Z", "+00:00"))),
            permissions=data.get("permissions") or {},
        )
        self._tokens[installation_id] = token
        logger.info(f"Minted installation token for installation {installation_id}")
        return token
