"""
Authentication module for GitConnect

Session tokens, GitHub OAuth / GitHub App auth and the credential resolver.
"""

from .auth_routes import router as auth_router
from .credentials import (
    CredentialError,
    CredentialResolver,
    ResolvedCredential,
    get_github_credential,
)
from .github_oauth import GitHubAppAuth, GitHubOAuthClient, GitHubOAuthError

__all__ = [
    "auth_router",
    "CredentialError",
    "CredentialResolver",
    "ResolvedCredential",
    "get_github_credential",
    "GitHubAppAuth",
    "GitHubOAuthClient",
    "GitHubOAuthError",
]
