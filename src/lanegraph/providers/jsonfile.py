"""Load commits from a JSON commit file.

Document shape::

    {
      "commits": [
        {"hash": "c3", "parents": ["c2"], "committerTime": "2024-05-01T10:00:00+00:00",
         "subject": "Fix", "authorName": "dev", "kind": "commit"}
      ],
      "refs": [{"name": "main", "kind": "branch", "target": "c3"}]
    }

Only ``hash`` and ``committerTime`` are required per commit.
"""

import json
import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ProviderError
from ..graph.model import Commit, CommitKind, Ref, RefKind

logger = logging.getLogger(__name__)


class CommitRecord(BaseModel):
    """One commit entry of a commit file."""
    hash: str
    parents: list[str] = Field(default_factory=list)
    committer_time: datetime = Field(alias="committerTime")
    subject: str = ""
    body: str = ""
    author_name: str = Field(alias="authorName", default="")
    author_email: str = Field(alias="authorEmail", default="")
    author_time: datetime | None = Field(alias="authorTime", default=None)
    committer_name: str = Field(alias="committerName", default="")
    committer_email: str = Field(alias="committerEmail", default="")
    kind: CommitKind = CommitKind.COMMIT

    @field_validator("hash")
    @classmethod
    def validate_hash(cls, v):
        if not v.strip():
            raise ValueError("hash must not be empty")
        return v.strip()

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_commit(self) -> Commit:
        return Commit(
            hash=self.hash,
            parents=tuple(self.parents),
            committer_time=self.committer_time,
            subject=self.subject,
            author_name=self.author_name,
            author_email=self.author_email,
            author_time=self.author_time,
            committer_name=self.committer_name,
            committer_email=self.committer_email,
            body=self.body,
            kind=self.kind,
        )


class RefRecord(BaseModel):
    """One ref entry of a commit file."""
    name: str
    kind: RefKind = RefKind.BRANCH
    target: str

    def to_ref(self) -> Ref:
        return Ref(self.name, self.kind, self.target)


class CommitFile(BaseModel):
    """Top-level commit file document."""
    commits: list[CommitRecord]
    refs: list[RefRecord] = Field(default_factory=list)


def load_commit_file(path: str | Path) -> tuple[list[Commit], list[Ref]]:
    """Load and validate a commit file.

    Returns:
        Tuple of (commits, refs)

    Raises:
        ProviderError: If the file cannot be read or does not validate
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ProviderError(f"Cannot read commit file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ProviderError(f"Invalid JSON in commit file {path}: {e}") from e

    try:
        document = CommitFile.model_validate(data)
    except ValidationError as e:
        raise ProviderError(f"Invalid commit file {path}: {e}") from e

    commits = [record.to_commit() for record in document.commits]
    refs = [record.to_ref() for record in document.refs]
    logger.info(f"Loaded {len(commits)} commits and {len(refs)} refs from {path}")
    return commits, refs
