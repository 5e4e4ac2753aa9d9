"""
Credential resolver - turns an authenticated user into a usable GitHub token.

Expiring OAuth tokens are refreshed transparently within a 60 second safety
buffer. At most one refresh and one user-store write happen per request.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from fastapi import Depends, Request, status

from gitconnect.auth.auth_utils import get_current_user, get_user_store, server_misconfigured
from gitconnect.auth.github_oauth import (
    GitHubAppAuth,
    GitHubAppError,
    GitHubOAuthClient,
    GitHubOAuthError,
)
from gitconnect.db.user_store import TokenDecryptionError, UserStore
from gitconnect.errors import GatewayError
from gitconnect.models import User
from gitconnect.utils import as_utc, utc_now

logger = logging.getLogger(__name__)

EXPIRY_BUFFER = timedelta(seconds=60)


class CredentialError(GatewayError):
    """Upstream credential could not be produced for the request"""

    pass


def credential_missing() -> CredentialError:
    return CredentialError(
        status.HTTP_403_FORBIDDEN,
        "CREDENTIAL_MISSING",
        "User does not have a GitHub token on record",
    )


def credential_invalid() -> CredentialError:
    return CredentialError(
        status.HTTP_401_UNAUTHORIZED,
        "CREDENTIAL_INVALID",
        "Stored GitHub token could not be decrypted",
    )


def credential_expired() -> CredentialError:
    return CredentialError(
        status.HTTP_401_UNAUTHORIZED,
        "CREDENTIAL_EXPIRED",
        "GitHub token has expired; please sign in again",
    )


@dataclass
class ResolvedCredential:
    token: str
    user_id: str
    refreshed: bool = False
    source: str = "oauth"


class CredentialResolver:
    def __init__(
        self,
        store: UserStore,
        oauth: GitHubOAuthClient,
        app_auth: Optional[GitHubAppAuth] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.oauth = oauth
        self.app_auth = app_auth
        self._clock = clock

    def needs_refresh(self, user: User) -> bool:
        expires_at = as_utc(user.token_expires_at)
        if expires_at is None:
            return False
        return expires_at - self._clock() <= EXPIRY_BUFFER

    async def resolve(self, user: User) -> ResolvedCredential:
        """
        Produce a currently valid GitHub token for ``user``.

        Raises:
            CredentialError: Missing, undecryptable, expired or unrefreshable credential
            GatewayError: SERVER_MISCONFIGURED or a generic refresh failure
        """
        if not user.access_token:
            return await self._resolve_installation(user)

        try:
            access_token = self.store.cipher.decrypt(user.access_token)
        except TokenDecryptionError:
            logger.warning(f"Could not decrypt GitHub token for user {user.id}")
            raise credential_invalid()
        if not access_token:
            raise credential_invalid()

        if not self.needs_refresh(user):
            return ResolvedCredential(token=access_token, user_id=user.id)

        return await self._refresh(user)

    async def _refresh(self, user: User) -> ResolvedCredential:
        try:
            refresh_token = self.store.cipher.decrypt(user.refresh_token)
        except TokenDecryptionError:
            raise credential_invalid()
        if not refresh_token:
            raise credential_expired()

        if not self.oauth.configured:
            raise server_misconfigured()

        logger.info(f"Refreshing GitHub token for user {user.login} ({user.id})")
        try:
            tokens = await self.oauth.refresh_user_tokens(refresh_token)
        except GitHubOAuthError as e:
            logger.warning(f"GitHub rejected token refresh for user {user.id}: {e.message}")
            raise CredentialError(
                status.HTTP_401_UNAUTHORIZED,
                "CREDENTIAL_REFRESH_FAILED",
                "Failed to refresh GitHub token",
                details=e.details,
            )
        except Exception as e:
            logger.exception(f"Unexpected error refreshing GitHub token for user {user.id}")
            raise GatewayError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "INTERNAL_SERVER_ERROR",
                "Failed to refresh GitHub token",
                details=str(e),
            )

        self.store.update_tokens(user, tokens)
        return ResolvedCredential(token=tokens.access_token, user_id=user.id, refreshed=True)

    async def _resolve_installation(self, user: User) -> ResolvedCredential:
        if user.installation_id is None or self.app_auth is None or not self.app_auth.configured:
            raise credential_missing()

        try:
            installation = await self.app_auth.get_installation_token(user.installation_id)
        except GitHubAppError as e:
            logger.error(f"Installation token for user {user.id} unavailable: {e}")
            raise GatewayError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "SERVER_MISCONFIGURED",
                "GitHub App authentication is unavailable",
                details=str(e),
            )
        return ResolvedCredential(
            token=installation.token, user_id=user.id, source="installation"
        )


def get_credential_resolver(
    request: Request, store: UserStore = Depends(get_user_store)
) -> CredentialResolver:
    state = request.app.state
    return CredentialResolver(store, state.oauth_client, state.app_auth, state.clock)


async def get_github_credential(
    request: Request,
    user: User = Depends(get_current_user),
    resolver: CredentialResolver = Depends(get_credential_resolver),
) -> ResolvedCredential:
    """FastAPI dependency: resolved GitHub token for the authenticated user"""
    credential = await resolver.resolve(user)
    request.state.user_id = credential.user_id
    return credential
