"""
GitHub REST client used by every gateway endpoint and the context normalizer.

One call to ``GitHubClient.request`` is one logical upstream request with
bounded retries:

- 2xx returns immediately
- 429, or 403 with ``x-ratelimit-remaining: 0``, waits ``retry-after`` seconds
  plus jitter and retries
- 5xx waits ``300ms * 2**attempt`` plus jitter and retries
- anything else returns immediately

Ordinary upstream errors are returned as a failed ``GitHubResponse``; only
transport failures (``httpx.HTTPError``) propagate.
"""

import asyncio
import json
import logging
import math
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from gitconnect.config import DEFAULT_GITHUB_API_BASE_URL, GITHUB_ACCEPT, GITHUB_USER_AGENT

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
BASE_DELAY_MS = 300
JITTER_MS = 100

QueryValue = Optional[Any]


@dataclass
class RateLimitSnapshot:
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[int] = None
    retry_after: Optional[int] = None
    link: Optional[str] = None


@dataclass
class GitHubResponse:
    status_code: int
    ok: bool
    data: Any
    raw_body: Optional[str]
    rate_limit: RateLimitSnapshot
    github_error: Any = None


def parse_header_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def parse_rate_limit(
    headers: Mapping[str, str], status_code: int, now: Optional[float] = None
) -> RateLimitSnapshot:
    limit = parse_header_int(headers.get("x-ratelimit-limit"))
    remaining = parse_header_int(headers.get("x-ratelimit-remaining"))
    reset = parse_header_int(headers.get("x-ratelimit-reset"))
    retry_after = parse_header_int(headers.get("retry-after"))

    # A 429 with a reset timestamp but no Retry-After: wait until the reset.
    if not retry_after and reset and status_code == 429:
        now_sec = math.ceil(now if now is not None else time.time())
        retry_after = max(0, reset - now_sec)

    return RateLimitSnapshot(
        limit=limit,
        remaining=remaining,
        reset=reset,
        retry_after=retry_after,
        link=headers.get("link"),
    )


def is_rate_limited(status_code: int, rate_limit: RateLimitSnapshot) -> bool:
    if status_code == 429:
        return True
    return status_code == 403 and rate_limit.remaining == 0


def is_transient(status_code: int) -> bool:
    return 500 <= status_code < 600


def clean_query(query: Optional[Mapping[str, QueryValue]]) -> Dict[str, str]:
    """Drop empty values and stringify the rest the way GitHub expects."""
    params: Dict[str, str] = {}
    for key, value in (query or {}).items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = str(value)
    return params


class GitHubClient:
    """Resilient GitHub REST executor"""

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str = DEFAULT_GITHUB_API_BASE_URL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.time,
        deadline_seconds: Optional[float] = None,
    ):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self._sleep = sleep
        self._rand = rand
        self._clock = clock
        self.deadline_seconds = deadline_seconds

    def build_url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url}{path}"

    def jitter_ms(self, attempt: int) -> int:
        return int(self._rand() * JITTER_MS * (attempt + 1))

    def delay_ms(self, attempt: int, response: GitHubResponse) -> int:
        if is_rate_limited(response.status_code, response.rate_limit):
            retry_after = response.rate_limit.retry_after
            base = (retry_after if retry_after is not None else 1) * 1000
        else:
            base = BASE_DELAY_MS * 2**attempt
        return base + self.jitter_ms(attempt)

    async def request(
        self,
        path: str,
        token: str,
        method: str = "GET",
        query: Optional[Mapping[str, QueryValue]] = None,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        max_retries: Optional[int] = None,
    ) -> GitHubResponse:
        """
        Perform one logical GitHub request.

        Args:
            path: API path such as ``/user/repos`` or an absolute URL
            token: Bearer credential for the user or installation
            method: HTTP method
            query: Query parameters; ``None`` and empty strings are skipped
            body: JSON-serializable body or a pre-encoded string
            headers: Extra headers merged over the defaults
            max_retries: Override of the client's retry budget

        Returns:
            GitHubResponse of the last attempt

        Raises:
            httpx.HTTPError: Transport-level failures
        """
        retries = self.max_retries if max_retries is None else max_retries
        url = self.build_url(path)
        params = clean_query(query)

        request_headers = {
            "Authorization": f"Bearer {token}",
            "Accept": GITHUB_ACCEPT,
            "User-Agent": GITHUB_USER_AGENT,
        }
        if headers:
            request_headers.update(headers)

        content: Optional[str] = None
        if body is not None:
            content = body if isinstance(body, str) else json.dumps(body)
            request_headers["Content-Type"] = "application/json"

        started = self._clock()
        result: Optional[GitHubResponse] = None

        for attempt in range(retries + 1):
            response = await self.http.request(
                method, url, params=params, headers=request_headers, content=content
            )
            result = self._to_result(response)

            if result.ok:
                return result

            retryable = is_rate_limited(result.status_code, result.rate_limit) or is_transient(
                result.status_code
            )
            if not retryable or attempt == retries:
                return result

            delay = self.delay_ms(attempt, result)
            if self.deadline_seconds is not None:
                elapsed = self._clock() - started
                if elapsed + delay / 1000 > self.deadline_seconds:
                    logger.warning(
                        f"GitHub {method} {path} gave up after {attempt + 1} attempts: "
                        f"retry deadline of {self.deadline_seconds}s would be exceeded"
                    )
                    return result

            logger.warning(
                f"GitHub {method} {path} returned {result.status_code}; "
                f"retrying in {delay}ms (attempt {attempt + 1}/{retries})"
            )
            await self._sleep(delay / 1000)

        return result

    def _to_result(self, response: httpx.Response) -> GitHubResponse:
        raw_body = response.text
        data: Any = None
        if raw_body:
            try:
                data = json.loads(raw_body)
            except ValueError:
                data = None

        ok = response.is_success
        rate_limit = parse_rate_limit(response.headers, response.status_code, self._clock())
        github_error = None
        if not ok:
            github_error = data if data is not None else (raw_body or None)

        return GitHubResponse(
            status_code=response.status_code,
            ok=ok,
            data=data,
            raw_body=raw_body or None,
            rate_limit=rate_limit,
            github_error=github_error,
        )
