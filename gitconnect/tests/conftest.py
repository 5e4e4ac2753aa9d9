"""
Pytest configuration and fixtures for GitConnect backend tests

Upstream HTTP (GitHub REST, the GitHub OAuth token endpoint and the judgment
model) is served by ``UpstreamStub`` through ``httpx.MockTransport``; the
database is an in-memory SQLite engine per test.
"""

import dataclasses
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from gitconnect.app import create_app
from gitconnect.auth.auth_utils import create_session_token
from gitconnect.config import Settings
from gitconnect.db import UserStore, build_engine, build_session_factory, init_db
from gitconnect.models import TokenPayload, User
from gitconnect.utils import utc_now

TEST_SETTINGS = Settings(
    database_url="sqlite://",
    jwt_secret="test-jwt-secret",
    github_client_id="test_client_id",
    github_client_secret="test_client_secret",
    github_redirect_uri="http://localhost:3000/auth/callback",
    openrouter_api_key="test-openrouter-key",
    allow_origins=["http://localhost:3000"],
)

GITHUB_USER = {
    "id": 583231,
    "login": "octocat",
    "name": "The Octocat",
    "email": "octocat@github.com",
    "avatar_url": "https://avatars.githubusercontent.com/u/583231?v=4",
    "html_url": "https://github.com/octocat",
    "bio": None,
    "followers": 9000,
    "following": 9,
}


class UpstreamStub:
    """
    Scripted upstream keyed by ``(method, path)``.

    Each route holds a queue of responses; the last one repeats once the
    queue is down to a single entry. Unknown routes answer 404.
    """

    def __init__(self):
        self.routes: Dict[tuple, List[Any]] = {}
        self.calls: List[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        text: Optional[str] = None,
    ) -> None:
        stub = {"status_code": status_code, "json": json, "headers": headers or {}, "text": text}
        self.routes.setdefault((method, path), []).append(stub)

    def add_handler(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]):
        self.routes.setdefault((method, path), []).append(handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "Not Found"})
        stub = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(stub):
            return stub(request)
        if stub["text"] is not None:
            return httpx.Response(stub["status_code"], text=stub["text"], headers=stub["headers"])
        return httpx.Response(stub["status_code"], json=stub["json"], headers=stub["headers"])

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [call for call in self.calls if call.url.path == path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def upstream():
    return UpstreamStub()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    db = build_session_factory(engine)()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_app(engine, upstream, sleeper):
    """Factory for apps wired to the stub upstream; accepts Settings overrides"""

    def _make(**overrides):
        settings = dataclasses.replace(TEST_SETTINGS, **overrides)
        http_client = httpx.AsyncClient(transport=upstream.transport())
        return create_app(settings, engine=engine, http_client=http_client, sleep=sleeper)

    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def make_user(app):
    """Persist a user through the store, returning its id"""

    def _make(
        github_user: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = "gho_valid_token",
        refresh_token: Optional[str] = "ghr_refresh_token",
        expires_in: Optional[timedelta] = timedelta(hours=8),
        installation_id: Optional[int] = None,
    ) -> str:
        db = app.state.session_factory()
        try:
            store = UserStore(db, app.state.token_cipher)
            user = store.upsert_from_github(
                github_user or GITHUB_USER,
                TokenPayload(
                    access_token=access_token or "placeholder",
                    refresh_token=refresh_token,
                    token_type="bearer",
                    scope="repo,user",
                    token_expires_at=utc_now() + expires_in if expires_in is not None else None,
                ),
                installation_id,
            )
            if access_token is None:
                user.access_token = None
                db.commit()
            return user.id
        finally:
            db.close()

    return _make


@pytest.fixture
def load_user(app):
    def _load(user_id: str) -> User:
        db = app.state.session_factory()
        try:
            user = db.get(User, user_id)
            db.expunge(user)
            return user
        finally:
            db.close()

    return _load


@pytest.fixture
def auth_headers(app):
    def _headers(user_id: str) -> Dict[str, str]:
        token, _ = create_session_token(app.state.settings, user_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def user_id(make_user):
    return make_user()


@pytest.fixture
def headers(auth_headers, user_id):
    return auth_headers(user_id)

