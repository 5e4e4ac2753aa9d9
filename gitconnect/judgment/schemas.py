"""
Request body for POST /judgment
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from gitconnect.judgment.context import FetchLimits


class RepoTarget(BaseModel):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)


class PullRequestTarget(RepoTarget):
    type: Literal["pull_request"]
    number: int = Field(gt=0)


class IssueTarget(RepoTarget):
    type: Literal["issue"]
    number: int = Field(gt=0)


class CommitTarget(RepoTarget):
    type: Literal["commit"]
    sha: str = Field(min_length=7)


JudgmentTarget = Annotated[
    Union[PullRequestTarget, IssueTarget, CommitTarget], Field(discriminator="type")
]


class JudgmentLimits(BaseModel):
    """Optional caps on how much context is fetched; camelCase on the wire"""

    model_config = ConfigDict(populate_by_name=True)

    max_reviews: Optional[int] = Field(default=None, alias="maxReviews", gt=0, le=100)
    max_comments: Optional[int] = Field(default=None, alias="maxComments", gt=0, le=200)
    max_files: Optional[int] = Field(default=None, alias="maxFiles", gt=0, le=200)
    max_commits: Optional[int] = Field(default=None, alias="maxCommits", gt=0, le=200)
    max_commit_comments: Optional[int] = Field(
        default=None, alias="maxCommitComments", gt=0, le=200
    )
    patch_character_limit: Optional[int] = Field(
        default=None, alias="patchCharacterLimit", gt=0, le=20000
    )

    def to_fetch_limits(self) -> FetchLimits:
        return FetchLimits.resolve(self.model_dump())


class JudgmentRequest(BaseModel):
    target: JudgmentTarget
    limits: Optional[JudgmentLimits] = None

    def fetch_limits(self) -> FetchLimits:
        return self.limits.to_fetch_limits() if self.limits else FetchLimits()
