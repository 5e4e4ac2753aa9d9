"""
Authentication Routes for GitHub OAuth

The browser completes GitHub's authorize step and posts the resulting code
here; the gateway exchanges it, stores the user and returns its own session
token. The GitHub token never leaves the server.
"""

import logging

from fastapi import APIRouter, Depends, Request, status

from gitconnect.auth.auth_utils import create_session_token, get_current_user, get_user_store
from gitconnect.auth.github_oauth import GitHubOAuthError
from gitconnect.db.user_store import UserStore
from gitconnect.errors import GatewayError
from gitconnect.models import AuthResponse, OAuthCallbackRequest, User, UserProfile
from gitconnect.utils import token_prefix

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/github/callback")
async def github_callback(
    payload: OAuthCallbackRequest,
    request: Request,
    store: UserStore = Depends(get_user_store),
):
    """
    Exchange a GitHub authorization code for a gateway session

    Returns:
        ``{accessToken, expiresAt, user}`` where ``accessToken`` is the session JWT
    """
    state = request.app.state
    oauth = state.oauth_client
    if not oauth.configured or not state.settings.jwt_secret:
        raise GatewayError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "SERVER_MISCONFIGURED",
            "GitHub OAuth credentials are not configured on the server",
        )

    logger.info(f"Exchanging authorization code {token_prefix(payload.code)}")
    try:
        tokens = await oauth.exchange_code(payload.code)
        github_user = await oauth.fetch_user(tokens.access_token)
    except GitHubOAuthError as e:
        logger.error(f"GitHub OAuth exchange failed: {e.message}")
        raise GatewayError(
            status.HTTP_502_BAD_GATEWAY,
            "GITHUB_OAUTH_FAILED",
            e.message,
            details=e.details,
        )

    try:
        user = store.upsert_from_github(github_user, tokens, payload.installation_id)
    except ValueError as e:
        raise GatewayError(status.HTTP_502_BAD_GATEWAY, "GITHUB_OAUTH_FAILED", str(e))

    session_token, expires_at = create_session_token(state.settings, user.id)
    logger.info(f"Signed in GitHub user {user.login}")

    response = AuthResponse(
        access_token=session_token,
        expires_at=expires_at,
        user=UserProfile.model_validate(user),
    )
    return response.model_dump(mode="json", by_alias=True)


@router.get("/me")
async def current_user_profile(user: User = Depends(get_current_user)):
    """Profile of the signed-in user as stored by the gateway"""
    return {
        "success": True,
        "data": UserProfile.model_validate(user).model_dump(mode="json"),
    }
