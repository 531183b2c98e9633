from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from utils.diff_parser import ChangeMap


class User(BaseModel):
    login: str


class Repository(BaseModel):
    full_name: str


class CommitRef(BaseModel):
    sha: str


class PullRequest(BaseModel):
    number: int
    head: Optional[CommitRef] = None


class PullRequestEvent(BaseModel):
    pull_request: Optional[PullRequest] = None
    repository: Optional[Repository] = None

    model_config = ConfigDict(extra="allow")


class PullRequestContext(BaseModel):
    repo_full_name: str
    pr_number: int
    head_sha: str


class PullRequestFile(BaseModel):
    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: Optional[str] = None
    previous_filename: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class EnhancedFile(PullRequestFile):
    """A changed file plus the context needed to review it."""

    full_content: Optional[str] = None
    changed_content: Optional[str] = None
    change_map: Optional[ChangeMap] = None


class ExistingReviewComment(BaseModel):
    id: int
    body: str = ""
    path: Optional[str] = None
    created_at: datetime
    user: Optional[User] = None

    model_config = ConfigDict(extra="ignore")


class CheckRun(BaseModel):
    id: int
    status: str = Field(default="queued")

    model_config = ConfigDict(extra="ignore")
