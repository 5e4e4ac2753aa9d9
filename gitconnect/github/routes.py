"""
GitHub gateway routes

Read-only proxies of the GitHub REST API on behalf of the signed-in user.
Successful answers are cached per user and query; failures are never cached.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from gitconnect.auth.auth_utils import get_current_user
from gitconnect.auth.credentials import ResolvedCredential, get_github_credential
from gitconnect.errors import GatewayError
from gitconnect.github.cache import (
    DEFAULT_TTL_MS,
    USER_PROFILE_TTL_MS,
    ResponseCache,
    build_cache_key,
    serialize_query,
)
from gitconnect.github.client import GitHubClient, GitHubResponse, RateLimitSnapshot, is_rate_limited
from gitconnect.github.schemas import (
    MeReposQuery,
    RepoCommitsQuery,
    RepoIssuesQuery,
    RepoParams,
    RepoPullsQuery,
    UserIssuesQuery,
    UserPullsQuery,
    query_dependency,
    repo_params,
)
from gitconnect.models import PaginationMeta, RateLimitMeta, ResponseMeta, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/github", tags=["github"])

LINK_PATTERN = re.compile(r'<([^>]+)>;\s*rel="([^"]+)"')
PAGINATION_RELS = ("next", "prev", "first", "last")


@dataclass
class CachedSuccess:
    status_code: int
    data: Any
    meta: ResponseMeta


def parse_link_header(link: Optional[str]) -> PaginationMeta:
    pagination = PaginationMeta(link=link)
    if not link:
        return pagination

    for part in link.split(","):
        match = LINK_PATTERN.search(part)
        if not match:
            continue
        url, rel = match.groups()
        if rel in PAGINATION_RELS:
            setattr(pagination, rel, url)
    return pagination


def build_response_meta(rate_limit: RateLimitSnapshot, page: Optional[int]) -> ResponseMeta:
    pagination = parse_link_header(rate_limit.link)
    pagination.page = page
    return ResponseMeta(
        pagination=pagination,
        rate_limit=RateLimitMeta(
            limit=rate_limit.limit,
            remaining=rate_limit.remaining,
            reset=rate_limit.reset,
            retry_after=rate_limit.retry_after,
        ),
    )


def meta_headers(meta: ResponseMeta, cache_status: str) -> Dict[str, str]:
    headers = {"X-Cache": cache_status}
    if meta.pagination.link:
        headers["X-GitHub-Link"] = meta.pagination.link
    if meta.rate_limit.limit is not None:
        headers["X-GitHub-RateLimit-Limit"] = str(meta.rate_limit.limit)
    if meta.rate_limit.remaining is not None:
        headers["X-GitHub-RateLimit-Remaining"] = str(meta.rate_limit.remaining)
    if meta.rate_limit.reset is not None:
        headers["X-GitHub-RateLimit-Reset"] = str(meta.rate_limit.reset)
    return headers


def send_success(entry: CachedSuccess, cache_status: str) -> JSONResponse:
    return JSONResponse(
        status_code=entry.status_code,
        content={"success": True, "data": entry.data, "meta": entry.meta.to_json()},
        headers=meta_headers(entry.meta, cache_status),
    )


def github_error(result: GitHubResponse) -> GatewayError:
    """Classify a failed upstream response into the gateway error envelope"""
    meta = build_response_meta(result.rate_limit, None)

    status_code = result.status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "GITHUB_ERROR"
    message = "GitHub request failed"

    details: Optional[Dict[str, Any]] = None
    if isinstance(result.github_error, dict):
        details = dict(result.github_error)
    elif isinstance(result.github_error, str):
        details = {"message": result.github_error}

    if details and isinstance(details.get("message"), str):
        message = details["message"]

    if is_rate_limited(result.status_code, result.rate_limit):
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
        code = "GITHUB_RATE_LIMIT"
        message = "GitHub rate limit exceeded"
        details = {**(details or {}), "retryAfterSec": result.rate_limit.retry_after}
    elif status_code == status.HTTP_404_NOT_FOUND:
        code = "NOT_FOUND"
        message = "GitHub resource not found"
    elif status_code == status.HTTP_401_UNAUTHORIZED:
        code = "GITHUB_UNAUTHORIZED"
        message = "GitHub rejected the provided token"

    return GatewayError(
        status_code,
        code,
        message,
        details=details,
        meta=meta.to_json(),
        headers=meta_headers(meta, "MISS"),
    )


async def proxy_github(
    request: Request,
    credential: ResolvedCredential,
    key_parts: List[Any],
    path: str,
    query: Optional[Dict[str, Any]] = None,
    page: Optional[int] = None,
    ttl_ms: int = DEFAULT_TTL_MS,
) -> JSONResponse:
    """
    Serve ``path`` from the cache or GitHub

    Args:
        key_parts: Cache key parts; the user id must be among them
        page: Page reported in ``meta.pagination.page``
    """
    cache: ResponseCache = request.app.state.cache
    client: GitHubClient = request.app.state.github_client

    cache_key = build_cache_key(key_parts)
    cached = cache.get(cache_key)
    if cached is not None:
        return send_success(cached, "HIT")

    logger.info(f"Cache miss for {cache_key}; calling GitHub {path}")
    result = await client.request(path, credential.token, query=query)
    if not result.ok:
        logger.warning(f"GitHub {path} failed with status {result.status_code}")
        raise github_error(result)

    entry = CachedSuccess(
        status_code=result.status_code,
        data=result.data,
        meta=build_response_meta(result.rate_limit, page),
    )
    cache.set(cache_key, entry, ttl_ms)
    return send_success(entry, "MISS")


@router.get("/me")
async def get_me(
    request: Request,
    credential: ResolvedCredential = Depends(get_github_credential),
):
    """Authenticated GitHub user"""
    return await proxy_github(
        request,
        credential,
        ["me", credential.user_id],
        "/user",
        page=1,
        ttl_ms=USER_PROFILE_TTL_MS,
    )


@router.get("/me/repos")
async def get_my_repos(
    request: Request,
    query: MeReposQuery = Depends(query_dependency(MeReposQuery)),
    credential: ResolvedCredential = Depends(get_github_credential),
):
    """Repositories the user can access"""
    github_query = query.to_github_query()
    return await proxy_github(
        request,
        credential,
        ["meRepos", credential.user_id, serialize_query(github_query)],
        "/user/repos",
        query=github_query,
        page=query.page,
    )


@router.get("/me/issues")
async def get_my_issues(
    request: Request,
    query: UserIssuesQuery = Depends(query_dependency(UserIssuesQuery)),
    credential: ResolvedCredential = Depends(get_github_credential),
):
    """Issues assigned to or otherwise involving the user across repositories"""
    github_query = query.to_github_query()
    return await proxy_github(
        request,
        credential,
        ["meIssues", credential.user_id, serialize_query(github_query)],
        "/issues",
        query=github_query,
        page=query.page,
    )


@router.get("/me/pulls")
async def get_my_pulls(
    request: Request,
    query: UserPullsQuery = Depends(query_dependency(UserPullsQuery)),
    user: User = Depends(get_current_user),
    credential: ResolvedCredential = Depends(get_github_credential),
):
    """Pull requests involving the user, through the issue search API"""
    if not user.login:
        raise GatewayError(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_PARAMS",
            "GitHub login is unknown for this user",
        )
    search_query = query.to_search_query(user.login)
    return await proxy_github(
        request,
        credential,
        ["mePulls", credential.user_id, serialize_query(search_query)],
        "/search/issues",
        query=search_query,
        page=query.page,
    )


@router.get("/repos/{owner}/{repo}")
async def get_repo(
    request: Request,
    params: RepoParams = Depends(repo_params),
    credential: ResolvedCredential = Depends(get_github_credential),
):
    return await proxy_github(
        request,
        credential,
        ["repo", credential.user_id, params.owner, params.repo],
        f"/repos/{params.owner}/{params.repo}",
    )


@router.get("/repos/{owner}/{repo}/commits")
async def get_repo_commits(
    request: Request,
    params: RepoParams = Depends(repo_params),
    query: RepoCommitsQuery = Depends(query_dependency(RepoCommitsQuery)),
    credential: ResolvedCredential = Depends(get_github_credential),
):
    github_query = query.to_github_query()
    return await proxy_github(
        request,
        credential,
        ["commits", credential.user_id, params.owner, params.repo, serialize_query(github_query)],
        f"/repos/{params.owner}/{params.repo}/commits",
        query=github_query,
        page=query.page,
    )


@router.get("/repos/{owner}/{repo}/issues")
async def get_repo_issues(
    request: Request,
    params: RepoParams = Depends(repo_params),
    query: RepoIssuesQuery = Depends(query_dependency(RepoIssuesQuery)),
    credential: ResolvedCredential = Depends(get_github_credential),
):
    github_query = query.to_github_query()
    return await proxy_github(
        request,
        credential,
        ["issues", credential.user_id, params.owner, params.repo, serialize_query(github_query)],
        f"/repos/{params.owner}/{params.repo}/issues",
        query=github_query,
        page=query.page,
    )


@router.get("/repos/{owner}/{repo}/pulls")
async def get_repo_pulls(
    request: Request,
    params: RepoParams = Depends(repo_params),
    query: RepoPullsQuery = Depends(query_dependency(RepoPullsQuery)),
    credential: ResolvedCredential = Depends(get_github_credential),
):
    github_query = query.to_github_query()
    return await proxy_github(
        request,
        credential,
        ["pulls", credential.user_id, params.owner, params.repo, serialize_query(github_query)],
        f"/repos/{params.owner}/{params.repo}/pulls",
        query=github_query,
        page=query.page,
    )
