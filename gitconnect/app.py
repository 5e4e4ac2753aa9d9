"""
Application factory for the GitConnect backend

Every long-lived collaborator (database engine, HTTP client, response cache,
GitHub executor, OAuth and App auth, judgment invoker) is built here once and
hung on ``app.state``; request dependencies read them from there.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from gitconnect.auth import auth_router
from gitconnect.auth.github_oauth import GitHubAppAuth, GitHubOAuthClient
from gitconnect.config import Settings, get_settings
from gitconnect.db import TokenCipher, build_engine, build_session_factory, init_db
from gitconnect.errors import register_exception_handlers
from gitconnect.github import GitHubClient, ResponseCache, github_router
from gitconnect.judgment import JudgmentInvoker, judgment_router
from gitconnect.utils import utc_now

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    cache: Optional[ResponseCache] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    judgment_invoker: Optional[JudgmentInvoker] = None,
) -> FastAPI:
    """
    Build the FastAPI app

    Args:
        settings: Configuration; read from the environment when omitted
        engine: Database engine; built from ``settings.database_url`` when omitted
        http_client: Shared outbound client; the app owns and closes it when omitted
        cache: Response cache shared by all gateway requests
        sleep: Backoff sleep used by the GitHub executor
        judgment_invoker: Model invoker; built from settings when omitted
    """
    settings = settings or get_settings()
    engine = engine or build_engine(settings.database_url)
    owns_http_client = http_client is None
    http = http_client or httpx.AsyncClient(timeout=30.0)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting GitConnect backend")
        init_db(engine)
        yield
        logger.info("Shutting down GitConnect backend")
        if owns_http_client:
            await http.aclose()

    app = FastAPI(
        title="GitConnect Backend API",
        description="GitHub API gateway with credential refresh, caching and judgments",
        version=APP_VERSION,
        docs_url="/docs",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Cache",
            "X-GitHub-Link",
            "X-GitHub-RateLimit-Limit",
            "X-GitHub-RateLimit-Remaining",
            "X-GitHub-RateLimit-Reset",
        ],
    )

    state = app.state
    state.settings = settings
    state.engine = engine
    state.session_factory = build_session_factory(engine)
    state.token_cipher = TokenCipher(settings.token_encryption_key)
    state.clock = utc_now
    state.oauth_client = GitHubOAuthClient(http, settings)
    state.app_auth = GitHubAppAuth(http, settings)
    state.github_client = GitHubClient(
        http,
        base_url=settings.github_api_base_url,
        max_retries=settings.github_max_retries,
        sleep=sleep,
        deadline_seconds=settings.github_retry_deadline_seconds,
    )
    state.cache = cache if cache is not None else ResponseCache()
    state.judgment_invoker = judgment_invoker or JudgmentInvoker(http, settings)

    register_exception_handlers(app)

    app.include_router(auth_router, prefix="/auth", tags=["auth"])
    app.include_router(github_router)
    app.include_router(judgment_router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "gitconnect-backend"}

    return app
