"""
GitHub gateway: resilient REST client, response cache and proxy routes
"""

from .cache import ResponseCache, build_cache_key, serialize_query
from .client import GitHubClient, GitHubResponse, RateLimitSnapshot
from .routes import router as github_router

__all__ = [
    "ResponseCache",
    "build_cache_key",
    "serialize_query",
    "GitHubClient",
    "GitHubResponse",
    "RateLimitSnapshot",
    "github_router",
]
