"""
Integration tests for the GitHub gateway endpoints

Cover session authentication, caching (hit/miss, key sensitivity), Link
header pagination, upstream error classification and query validation.
"""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx

REPOS_LINK = (
    '<https://api.github.com/user/repos?type=owner&page=3>; rel="next", '
    '<https://api.github.com/user/repos?type=owner&page=5>; rel="last", '
    '<https://api.github.com/user/repos?type=owner&page=1>; rel="first", '
    '<https://api.github.com/user/repos?type=owner&page=1>; rel="prev"'
)

TOKEN_PATH = "/login/oauth/access_token"

RATE_HEADERS = {
    "x-ratelimit-limit": "5000",
    "x-ratelimit-remaining": "4987",
    "x-ratelimit-reset": "1700000600",
}


class TestSessionAuthentication:
    def test_missing_bearer_token(self, client):
        response = client.get("/github/me")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NO_TOKEN"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_bearer_token(self, client):
        response = client.get("/github/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    def test_token_for_unknown_user(self, client, auth_headers):
        response = client.get("/github/me", headers=auth_headers("no-such-user"))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "USER_NOT_FOUND"

    def test_user_without_github_credential(self, client, make_user, auth_headers):
        user_id = make_user(access_token=None)

        response = client.get("/github/me", headers=auth_headers(user_id))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "CREDENTIAL_MISSING"


class TestCaching:
    def test_second_identical_request_is_a_hit(self, client, upstream, headers):
        upstream.add("GET", "/user", json={"login": "octocat", "id": 583231}, headers=RATE_HEADERS)

        first = client.get("/github/me", headers=headers)
        second = client.get("/github/me", headers=headers)

        assert first.status_code == second.status_code == 200
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert first.json()["data"] == second.json()["data"] == {"login": "octocat", "id": 583231}
        assert len(upstream.calls_to("/user")) == 1

        meta = second.json()["meta"]
        assert meta["pagination"]["page"] == 1
        assert meta["rateLimit"] == {
            "limit": 5000,
            "remaining": 4987,
            "reset": 1700000600,
            "retryAfter": None,
        }
        assert second.headers["X-GitHub-RateLimit-Remaining"] == "4987"

    def test_differing_query_value_is_a_separate_entry(self, client, upstream, headers):
        upstream.add("GET", "/repos/acme/widgets/issues", json=[{"number": 1}])

        open_issues = client.get("/github/repos/acme/widgets/issues?state=open", headers=headers)
        closed_issues = client.get("/github/repos/acme/widgets/issues?state=closed", headers=headers)
        open_again = client.get("/github/repos/acme/widgets/issues?state=open", headers=headers)

        assert open_issues.headers["X-Cache"] == "MISS"
        assert closed_issues.headers["X-Cache"] == "MISS"
        assert open_again.headers["X-Cache"] == "HIT"
        assert len(upstream.calls_to("/repos/acme/widgets/issues")) == 2

    def test_default_and_explicit_defaults_share_an_entry(self, client, upstream, headers):
        upstream.add("GET", "/repos/acme/widgets/pulls", json=[])

        client.get("/github/repos/acme/widgets/pulls", headers=headers)
        explicit = client.get(
            "/github/repos/acme/widgets/pulls?state=open&page=1&per_page=30", headers=headers
        )

        assert explicit.headers["X-Cache"] == "HIT"

    def test_entries_are_per_user(self, client, upstream, make_user, auth_headers):
        upstream.add("GET", "/user", json={"login": "whoever"})
        first_user = make_user()
        second_user = make_user(github_user={"id": 2, "login": "hubot"})

        client.get("/github/me", headers=auth_headers(first_user))
        response = client.get("/github/me", headers=auth_headers(second_user))

        assert response.headers["X-Cache"] == "MISS"
        assert len(upstream.calls_to("/user")) == 2

    def test_failures_are_not_cached(self, client, upstream, headers):
        upstream.add("GET", "/repos/acme/gone", status_code=404, json={"message": "Not Found"})

        client.get("/github/repos/acme/gone", headers=headers)
        client.get("/github/repos/acme/gone", headers=headers)

        assert len(upstream.calls_to("/repos/acme/gone")) == 2


class TestPagination:
    def test_link_header_becomes_pagination_meta(self, client, upstream, headers):
        upstream.add(
            "GET",
            "/user/repos",
            json=[{"full_name": "octocat/hello-world"}],
            headers={"link": REPOS_LINK, **RATE_HEADERS},
        )

        response = client.get("/github/me/repos?type=owner&page=2", headers=headers)

        assert response.status_code == 200
        pagination = response.json()["meta"]["pagination"]
        assert pagination["next"] == "https://api.github.com/user/repos?type=owner&page=3"
        assert pagination["last"] == "https://api.github.com/user/repos?type=owner&page=5"
        assert pagination["first"] == "https://api.github.com/user/repos?type=owner&page=1"
        assert pagination["prev"] == "https://api.github.com/user/repos?type=owner&page=1"
        assert pagination["page"] == 2
        assert pagination["link"] == REPOS_LINK
        assert response.headers["X-GitHub-Link"] == REPOS_LINK

        sent = upstream.calls_to("/user/repos")[0]
        assert dict(sent.url.params) == {"type": "owner", "page": "2", "per_page": "30"}

    def test_single_resource_has_no_page(self, client, upstream, headers):
        upstream.add("GET", "/repos/acme/widgets", json={"full_name": "acme/widgets"})

        response = client.get("/github/repos/acme/widgets", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"] == {"full_name": "acme/widgets"}
        assert response.json()["meta"]["pagination"] == {
            "link": None,
            "next": None,
            "prev": None,
            "first": None,
            "last": None,
            "page": None,
        }

    def test_commits_forward_filters(self, client, upstream, headers):
        upstream.add("GET", "/repos/acme/widgets/commits", json=[])

        client.get(
            "/github/repos/acme/widgets/commits?sha=main&author=octocat&page=3&per_page=10",
            headers=headers,
        )

        sent = upstream.calls_to("/repos/acme/widgets/commits")[0]
        assert dict(sent.url.params) == {
            "sha": "main",
            "author": "octocat",
            "page": "3",
            "per_page": "10",
        }


class TestUserListings:
    def test_my_issues(self, client, upstream, headers):
        upstream.add("GET", "/issues", json=[{"number": 7}])

        response = client.get("/github/me/issues?filter=created&state=all", headers=headers)

        assert response.status_code == 200
        sent = upstream.calls_to("/issues")[0]
        assert sent.url.params["filter"] == "created"
        assert sent.url.params["state"] == "all"

    def test_my_pulls_builds_search_query(self, client, upstream, headers):
        upstream.add("GET", "/search/issues", json={"total_count": 0, "items": []})

        response = client.get(
            "/github/me/pulls?role=author&state=merged&repo=acme/widgets&labels=bug,ui"
            "&sort=updated&direction=asc",
            headers=headers,
        )

        assert response.status_code == 200
        sent = upstream.calls_to("/search/issues")[0]
        params = parse_qs(urlparse(str(sent.url)).query)
        assert params["q"] == [
            'is:pr is:merged author:octocat label:"bug" label:"ui" repo:acme/widgets'
        ]
        assert params["sort"] == ["updated"]
        assert params["order"] == ["asc"]
        assert params["page"] == ["1"]

    def test_my_pulls_defaults_to_open_and_involves(self, client, upstream, headers):
        upstream.add("GET", "/search/issues", json={"total_count": 0, "items": []})

        client.get("/github/me/pulls", headers=headers)

        sent = upstream.calls_to("/search/issues")[0]
        assert sent.url.params["q"] == "is:pr state:open involves:octocat"


class TestUpstreamErrors:
    def test_exhausted_quota_becomes_rate_limit_error(self, client, upstream, headers, sleeper):
        upstream.add(
            "GET",
            "/repos/acme/widgets/pulls",
            status_code=403,
            json={"message": "API rate limit exceeded for user ID 583231."},
            headers={
                "x-ratelimit-limit": "5000",
                "x-ratelimit-remaining": "0",
                "x-ratelimit-reset": "1700000600",
                "retry-after": "30",
            },
        )

        response = client.get("/github/repos/acme/widgets/pulls", headers=headers)

        assert response.status_code == 429
        body = response.json()
        assert body["error"]["code"] == "GITHUB_RATE_LIMIT"
        assert body["error"]["message"] == "GitHub rate limit exceeded"
        assert body["error"]["details"]["retryAfterSec"] == 30
        assert body["meta"]["rateLimit"]["remaining"] == 0
        assert response.headers["X-Cache"] == "MISS"
        assert len(upstream.calls_to("/repos/acme/widgets/pulls")) == 4
        assert all(delay >= 30 for delay in sleeper.delays)

    def test_not_found(self, client, upstream, headers):
        upstream.add("GET", "/repos/acme/missing", status_code=404, json={"message": "Not Found"})

        response = client.get("/github/repos/acme/missing", headers=headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
        assert response.json()["error"]["message"] == "GitHub resource not found"

    def test_upstream_unauthorized(self, client, upstream, headers):
        upstream.add("GET", "/user", status_code=401, json={"message": "Bad credentials"})

        response = client.get("/github/me", headers=headers)

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "GITHUB_UNAUTHORIZED"

    def test_other_errors_keep_upstream_status_and_message(self, client, upstream, headers):
        upstream.add(
            "GET",
            "/repos/acme/widgets/commits",
            status_code=409,
            json={"message": "Git Repository is empty."},
        )

        response = client.get("/github/repos/acme/widgets/commits", headers=headers)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "GITHUB_ERROR"
        assert error["message"] == "Git Repository is empty."
        assert error["details"] == {"message": "Git Repository is empty."}

    def test_server_errors_are_retried_then_surfaced(self, client, upstream, headers, sleeper):
        upstream.add("GET", "/user", status_code=503, text="Service Unavailable")

        response = client.get("/github/me", headers=headers)

        assert response.status_code == 503
        assert response.json()["error"]["details"] == {"message": "Service Unavailable"}
        assert len(upstream.calls_to("/user")) == 4
        assert len(sleeper.delays) == 3

    def test_transport_failure_is_an_internal_error(self, client, upstream, headers):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        upstream.add_handler("GET", "/user", refuse)

        response = client.get("/github/me", headers=headers)

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INTERNAL_SERVER_ERROR"
        assert len(upstream.calls_to("/user")) == 1


class TestQueryValidation:
    def test_per_page_out_of_range(self, client, upstream, headers):
        response = client.get("/github/me/repos?per_page=500", headers=headers)

        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "INVALID_PARAMS"
        assert body["error"]["details"][0]["path"] == "per_page"
        assert upstream.calls_to("/user/repos") == []

    def test_bad_enum_value(self, client, headers):
        response = client.get("/github/repos/acme/widgets/pulls?state=merged", headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["path"] == "state"

    def test_non_numeric_page(self, client, headers):
        response = client.get("/github/repos/acme/widgets/issues?page=two", headers=headers)

        assert response.status_code == 400

    def test_unknown_parameters_are_not_forwarded(self, client, upstream, headers):
        upstream.add("GET", "/repos/acme/widgets/issues", json=[])

        client.get("/github/repos/acme/widgets/issues?evil=1&labels=bug", headers=headers)

        sent = upstream.calls_to("/repos/acme/widgets/issues")[0]
        assert "evil" not in sent.url.params
        assert sent.url.params["labels"] == "bug"

    def test_bad_query_is_rejected_before_credential_refresh(
        self, client, upstream, make_user, auth_headers
    ):
        user_id = make_user(expires_in=timedelta(seconds=10))

        response = client.get("/github/me/repos?per_page=500", headers=auth_headers(user_id))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PARAMS"
        assert upstream.calls_to(TOKEN_PATH) == []
        assert upstream.calls == []

    def test_bad_query_wins_over_missing_credential(self, client, make_user, auth_headers):
        user_id = make_user(access_token=None)

        response = client.get(
            "/github/repos/acme/widgets/pulls?per_page=500", headers=auth_headers(user_id)
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PARAMS"
