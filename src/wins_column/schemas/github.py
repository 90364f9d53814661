"""GitHub API and webhook schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GitHubModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class DiffReference(GitHubModel):
    owner: str
    repo: str
    base: str
    head: str


class DiffFile(GitHubModel):
    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: Optional[str] = None


class DiffStats(GitHubModel):
    total_files: int = 0
    additions: int = 0
    deletions: int = 0


class CompareResult(GitHubModel):
    """Structured result of comparing two refs."""

    files: List[DiffFile] = Field(default_factory=list)
    stats: DiffStats = Field(default_factory=DiffStats)
    commits: List[Dict[str, Any]] = Field(default_factory=list)
    ahead_by: int = 0
    behind_by: int = 0
    status: str = "unknown"


class CommitParent(GitHubModel):
    sha: str


class CommitInfo(GitHubModel):
    sha: str
    parents: List[CommitParent] = Field(default_factory=list)
    message: Optional[str] = None


class PushAuthor(GitHubModel):
    name: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None


class PushCommit(GitHubModel):
    id: str
    message: str = ""
    timestamp: Optional[str] = None
    url: Optional[str] = None
    author: PushAuthor = Field(default_factory=PushAuthor)


class RepositoryOwner(GitHubModel):
    login: Optional[str] = None
    name: Optional[str] = None


class PushRepository(GitHubModel):
    full_name: str
    name: Optional[str] = None
    owner: RepositoryOwner = Field(default_factory=RepositoryOwner)

    @property
    def owner_login(self) -> str:
        return self.owner.login or self.owner.name or self.full_name.split("/", 1)[0]

    @property
    def repo_name(self) -> str:
        return self.name or self.full_name.split("/", 1)[-1]


class PushEvent(GitHubModel):
    ref: str = ""
    before: Optional[str] = None
    after: Optional[str] = None
    repository: PushRepository
    commits: List[PushCommit] = Field(default_factory=list)

    @property
    def branch(self) -> str:
        return self.ref.replace("refs/heads/", "") or "main"
