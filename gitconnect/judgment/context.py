"""
Context normalizer - fetches one pull request, issue or commit from GitHub
and maps the loosely typed upstream documents into bounded, typed records.

All fetches for a target are issued concurrently. Any failed fetch aborts
the whole context with ``GitHubDataError``; partial contexts are never built.
"""

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

from gitconnect.github.client import GitHubClient

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n... [truncated]"


class GitHubDataError(Exception):
    """A GitHub fetch needed for a judgment context failed"""

    def __init__(self, path: str, status_code: int, github_error: Any = None):
        super().__init__(f"GitHub request failed for {path}")
        self.path = path
        self.status_code = status_code
        self.github_error = github_error


@dataclass(frozen=True)
class FetchLimits:
    max_reviews: int = 40
    max_comments: int = 50
    max_files: int = 60
    max_commits: int = 50
    max_commit_comments: int = 30
    patch_character_limit: int = 8000

    @classmethod
    def resolve(cls, overrides: Optional[Mapping[str, Optional[int]]] = None) -> "FetchLimits":
        """Defaults with any non-null overrides applied"""
        known = {f.name for f in fields(cls)}
        values = {
            key: value
            for key, value in (overrides or {}).items()
            if key in known and value is not None
        }
        return cls(**values)


# ============================================================================
# Normalized records
# ============================================================================


class FileChange(BaseModel):
    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: Optional[str] = None


class NormalizedPullRequest(BaseModel):
    number: int
    title: str
    state: str
    draft: bool
    body: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    merged: bool
    mergeable: Optional[bool] = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    author_login: Optional[str] = None
    base_branch: Optional[str] = None
    head_branch: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    requested_reviewers: List[str] = Field(default_factory=list)


class NormalizedReview(BaseModel):
    id: int
    state: str
    body: Optional[str] = None
    submitted_at: Optional[str] = None
    author_login: Optional[str] = None


class NormalizedIssue(BaseModel):
    number: int
    title: str
    state: str
    body: Optional[str] = None
    author_login: Optional[str] = None
    assignees: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    closed_at: Optional[str] = None


class NormalizedIssueComment(BaseModel):
    id: int
    body: str
    author_login: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class NormalizedPullRequestCommit(BaseModel):
    sha: str
    message: str
    author_login: Optional[str] = None
    author_name: Optional[str] = None
    authored_date: Optional[str] = None
    committed_date: Optional[str] = None


class CommitStats(BaseModel):
    additions: int = 0
    deletions: int = 0
    total: int = 0


class NormalizedCommit(BaseModel):
    sha: str
    message: str
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    authored_date: Optional[str] = None
    committer_name: Optional[str] = None
    committer_email: Optional[str] = None
    committed_date: Optional[str] = None
    stats: Optional[CommitStats] = None
    files: List[FileChange] = Field(default_factory=list)


class NormalizedCommitComment(BaseModel):
    id: int
    body: str
    author_login: Optional[str] = None
    path: Optional[str] = None
    position: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class PullRequestContext(BaseModel):
    type: Literal["pull_request"] = "pull_request"
    repository: str
    identifier: str
    pull_request: NormalizedPullRequest
    reviews: List[NormalizedReview]
    files: List[FileChange]
    comments: List[NormalizedIssueComment]
    commits: List[NormalizedPullRequestCommit]


class IssueContext(BaseModel):
    type: Literal["issue"] = "issue"
    repository: str
    identifier: str
    issue: NormalizedIssue
    comments: List[NormalizedIssueComment]


class CommitContext(BaseModel):
    type: Literal["commit"] = "commit"
    repository: str
    identifier: str
    commit: NormalizedCommit
    comments: List[NormalizedCommitComment]


JudgmentContext = Union[PullRequestContext, IssueContext, CommitContext]


# ============================================================================
# Normalization
# ============================================================================


def _obj(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _login(value: Any) -> Optional[str]:
    return _obj(value).get("login")


def _names(items: Any, key: str) -> List[str]:
    if not isinstance(items, list):
        return []
    return [item[key] for item in items if isinstance(item, dict) and item.get(key)]


def truncate_patch(patch: str, limit: int) -> str:
    if len(patch) <= limit:
        return patch
    return patch[:limit] + TRUNCATION_MARKER


def normalize_file_change(file: Dict[str, Any], patch_limit: int) -> FileChange:
    patch = file.get("patch")
    return FileChange(
        filename=file.get("filename") or "",
        status=file.get("status") or "",
        additions=file.get("additions") or 0,
        deletions=file.get("deletions") or 0,
        changes=file.get("changes") or 0,
        patch=truncate_patch(patch, patch_limit) if isinstance(patch, str) and patch else None,
    )


def normalize_pull_request(pr: Dict[str, Any]) -> NormalizedPullRequest:
    return NormalizedPullRequest(
        number=pr.get("number"),
        title=pr.get("title") or "",
        state=pr.get("state") or "",
        draft=bool(pr.get("draft")),
        body=pr.get("body"),
        created_at=pr.get("created_at"),
        updated_at=pr.get("updated_at"),
        merged=bool(pr.get("merged_at")),
        mergeable=pr.get("mergeable"),
        additions=pr.get("additions") or 0,
        deletions=pr.get("deletions") or 0,
        changed_files=pr.get("changed_files") or 0,
        author_login=_login(pr.get("user")),
        base_branch=_obj(pr.get("base")).get("ref"),
        head_branch=_obj(pr.get("head")).get("ref"),
        labels=_names(pr.get("labels"), "name"),
        requested_reviewers=_names(pr.get("requested_reviewers"), "login"),
    )


def normalize_review(review: Dict[str, Any]) -> NormalizedReview:
    return NormalizedReview(
        id=review.get("id"),
        state=review.get("state") or "",
        body=review.get("body"),
        submitted_at=review.get("submitted_at"),
        author_login=_login(review.get("user")),
    )


def normalize_issue(issue: Dict[str, Any]) -> NormalizedIssue:
    return NormalizedIssue(
        number=issue.get("number"),
        title=issue.get("title") or "",
        state=issue.get("state") or "",
        body=issue.get("body"),
        author_login=_login(issue.get("user")),
        assignees=_names(issue.get("assignees"), "login"),
        labels=_names(issue.get("labels"), "name"),
        created_at=issue.get("created_at"),
        updated_at=issue.get("updated_at"),
        closed_at=issue.get("closed_at"),
    )


def normalize_issue_comment(comment: Dict[str, Any]) -> NormalizedIssueComment:
    return NormalizedIssueComment(
        id=comment.get("id"),
        body=comment.get("body") or "",
        author_login=_login(comment.get("user")),
        created_at=comment.get("created_at"),
        updated_at=comment.get("updated_at"),
    )


def normalize_pull_request_commit(commit: Dict[str, Any]) -> NormalizedPullRequestCommit:
    details = _obj(commit.get("commit"))
    author = _obj(details.get("author"))
    return NormalizedPullRequestCommit(
        sha=commit.get("sha") or "",
        message=details.get("message") or "",
        author_login=_login(commit.get("author")),
        author_name=author.get("name"),
        authored_date=author.get("date"),
        committed_date=_obj(details.get("committer")).get("date"),
    )


def normalize_commit(commit: Dict[str, Any], limits: FetchLimits) -> NormalizedCommit:
    details = _obj(commit.get("commit"))
    author = _obj(details.get("author"))
    committer = _obj(details.get("committer"))
    stats = commit.get("stats")
    files = commit.get("files") if isinstance(commit.get("files"), list) else []
    return NormalizedCommit(
        sha=commit.get("sha") or "",
        message=details.get("message") or "",
        author_name=author.get("name"),
        author_email=author.get("email"),
        authored_date=author.get("date"),
        committer_name=committer.get("name"),
        committer_email=committer.get("email"),
        committed_date=committer.get("date"),
        stats=(
            CommitStats(
                additions=stats.get("additions") or 0,
                deletions=stats.get("deletions") or 0,
                total=stats.get("total") or 0,
            )
            if isinstance(stats, dict)
            else None
        ),
        files=[
            normalize_file_change(file, limits.patch_character_limit)
            for file in files[: limits.max_files]
        ],
    )


def normalize_commit_comment(comment: Dict[str, Any]) -> NormalizedCommitComment:
    position = comment.get("position")
    return NormalizedCommitComment(
        id=comment.get("id"),
        body=comment.get("body") or "",
        author_login=_login(comment.get("user")),
        path=comment.get("path"),
        position=position if isinstance(position, int) else None,
        created_at=comment.get("created_at"),
        updated_at=comment.get("updated_at"),
    )


# ============================================================================
# Fetching
# ============================================================================


class ContextFetcher:
    """Builds judgment contexts with one user's GitHub credential"""

    def __init__(self, client: GitHubClient, token: str):
        self.client = client
        self.token = token

    async def fetch_json(self, path: str, query: Optional[Dict[str, Any]] = None) -> Any:
        result = await self.client.request(path, self.token, query=query)
        if not result.ok or result.data is None:
            logger.warning(f"Context fetch {path} failed with status {result.status_code}")
            raise GitHubDataError(
                path,
                result.status_code,
                result.github_error if result.github_error is not None else result.raw_body,
            )
        return result.data

    async def fetch_list(self, path: str, query: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        data = await self.fetch_json(path, query)
        return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []

    async def pull_request(
        self, owner: str, repo: str, number: int, limits: Optional[FetchLimits] = None
    ) -> PullRequestContext:
        limits = limits or FetchLimits()
        base = f"/repos/{owner}/{repo}"
        pull, reviews, files, comments, commits = await asyncio.gather(
            self.fetch_json(f"{base}/pulls/{number}"),
            self.fetch_list(f"{base}/pulls/{number}/reviews", {"per_page": limits.max_reviews}),
            self.fetch_list(f"{base}/pulls/{number}/files", {"per_page": limits.max_files}),
            self.fetch_list(f"{base}/issues/{number}/comments", {"per_page": limits.max_comments}),
            self.fetch_list(f"{base}/pulls/{number}/commits", {"per_page": limits.max_commits}),
        )

        return PullRequestContext(
            repository=f"{owner}/{repo}",
            identifier=f"PR-{number}",
            pull_request=normalize_pull_request(_obj(pull)),
            reviews=[normalize_review(r) for r in reviews[: limits.max_reviews]],
            files=[
                normalize_file_change(f, limits.patch_character_limit)
                for f in files[: limits.max_files]
            ],
            comments=[normalize_issue_comment(c) for c in comments[: limits.max_comments]],
            commits=[normalize_pull_request_commit(c) for c in commits[: limits.max_commits]],
        )

    async def issue(
        self, owner: str, repo: str, number: int, limits: Optional[FetchLimits] = None
    ) -> IssueContext:
        limits = limits or FetchLimits()
        base = f"/repos/{owner}/{repo}"
        issue, comments = await asyncio.gather(
            self.fetch_json(f"{base}/issues/{number}"),
            self.fetch_list(f"{base}/issues/{number}/comments", {"per_page": limits.max_comments}),
        )

        return IssueContext(
            repository=f"{owner}/{repo}",
            identifier=f"ISSUE-{number}",
            issue=normalize_issue(_obj(issue)),
            comments=[normalize_issue_comment(c) for c in comments[: limits.max_comments]],
        )

    async def commit(
        self, owner: str, repo: str, sha: str, limits: Optional[FetchLimits] = None
    ) -> CommitContext:
        limits = limits or FetchLimits()
        base = f"/repos/{owner}/{repo}"
        commit, comments = await asyncio.gather(
            self.fetch_json(f"{base}/commits/{sha}"),
            self.fetch_list(
                f"{base}/commits/{sha}/comments", {"per_page": limits.max_commit_comments}
            ),
        )

        return CommitContext(
            repository=f"{owner}/{repo}",
            identifier=f"COMMIT-{sha[:7]}",
            commit=normalize_commit(_obj(commit), limits),
            comments=[
                normalize_commit_comment(c) for c in comments[: limits.max_commit_comments]
            ],
        )
