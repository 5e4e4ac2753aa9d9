"""
Query and path parameter models for the GitHub gateway endpoints.

Unknown query parameters are ignored and never forwarded upstream.
"""

from typing import Any, Callable, Dict, Literal, Mapping, Optional, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gitconnect.errors import invalid_params

Direction = Literal["asc", "desc"]
ListState = Literal["open", "closed", "all"]


class GatewayQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    def to_github_query(self) -> Dict[str, Any]:
        """Query items with a value, in the form sent upstream"""
        return self.model_dump(exclude_none=True)


class PaginatedQuery(GatewayQuery):
    page: int = Field(default=1, gt=0)
    per_page: int = Field(default=30, ge=1, le=100)


class RepoParams(GatewayQuery):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)


class MeReposQuery(PaginatedQuery):
    type: Literal["all", "owner", "member"] = "all"
    sort: Optional[Literal["created", "updated", "pushed", "full_name"]] = None
    direction: Optional[Direction] = None
    visibility: Optional[Literal["all", "public", "private"]] = None


class RepoCommitsQuery(PaginatedQuery):
    sha: Optional[str] = Field(default=None, min_length=1)
    path: Optional[str] = None
    author: Optional[str] = None
    since: Optional[str] = None
    until: Optional[str] = None


class RepoIssuesQuery(PaginatedQuery):
    state: ListState = "open"
    labels: Optional[str] = None


class RepoPullsQuery(PaginatedQuery):
    state: ListState = "open"
    head: Optional[str] = None
    base: Optional[str] = None
    sort: Optional[Literal["created", "updated", "popularity", "long-running"]] = None
    direction: Optional[Direction] = None


class UserIssuesQuery(PaginatedQuery):
    filter: Optional[Literal["assigned", "created", "mentioned", "subscribed", "all"]] = None
    state: ListState = "open"
    labels: Optional[str] = None
    sort: Optional[Literal["created", "updated", "comments"]] = None
    direction: Optional[Direction] = None
    since: Optional[str] = None


class UserPullsQuery(PaginatedQuery):
    role: Literal["author", "review-requested", "involves"] = "involves"
    state: Literal["open", "closed", "merged", "all"] = "open"
    labels: Optional[str] = None
    repo: Optional[str] = None
    base: Optional[str] = None
    head: Optional[str] = None
    search: Optional[str] = None
    sort: Optional[Literal["created", "updated", "comments"]] = None
    direction: Optional[Direction] = None

    def search_qualifiers(self, login: str) -> str:
        """Build the ``q`` expression for ``/search/issues``"""
        terms = ["is:pr"]
        if self.state == "merged":
            terms.append("is:merged")
        elif self.state != "all":
            terms.append(f"state:{self.state}")
        terms.append(f"{self.role}:{login}")
        if self.labels:
            for label in self.labels.split(","):
                label = label.strip()
                if label:
                    terms.append(f'label:"{label}"')
        if self.repo:
            terms.append(f"repo:{self.repo}")
        if self.base:
            terms.append(f"base:{self.base}")
        if self.head:
            terms.append(f"head:{self.head}")
        if self.search:
            terms.append(self.search)
        return " ".join(terms)

    def to_search_query(self, login: str) -> Dict[str, Any]:
        query: Dict[str, Any] = {
            "q": self.search_qualifiers(login),
            "page": self.page,
            "per_page": self.per_page,
        }
        if self.sort:
            query["sort"] = self.sort
        if self.direction:
            query["order"] = self.direction
        return query


QueryModel = TypeVar("QueryModel", bound=BaseModel)


def parse_params(model: Type[QueryModel], values: Mapping[str, Any]) -> QueryModel:
    """Validate raw path/query values, raising a 400 INVALID_PARAMS on failure"""
    try:
        return model.model_validate(dict(values))
    except ValidationError as e:
        raise invalid_params(e)


def query_dependency(model: Type[QueryModel]) -> Callable[[Request], QueryModel]:
    """
    FastAPI dependency validating the request query against ``model``

    Declared ahead of the credential dependency so a bad query is rejected
    before any token refresh or upstream call.
    """

    def dependency(request: Request) -> QueryModel:
        return parse_params(model, request.query_params)

    return dependency


def repo_params(owner: str, repo: str) -> RepoParams:
    return parse_params(RepoParams, {"owner": owner, "repo": repo})
