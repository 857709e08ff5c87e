"""Load commits and refs from a git repository via the git CLI."""

import logging
import subprocess
from datetime import datetime
from pathlib import Path

from ..config import OrderMode
from ..errors import ProviderError
from ..graph.model import Commit, CommitKind, Ref, RefKind

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "\x1f"
RECORD_SEPARATOR = "\x00"

# hash, author name/email/date, committer name/email/date, subject, body, parents
LOG_FIELDS = ["%H", "%an", "%ae", "%ad", "%cn", "%ce", "%cd", "%s", "%b", "%P"]
LOG_FORMAT = "%x1f".join(LOG_FIELDS)
STASH_REF_FORMAT = "%x1f".join(["%gd", "%H", "%s"])


def _run_git(path: Path, args: list[str]) -> str:
    """Run a git command in ``path`` and return its stdout.

    Raises:
        ProviderError: If git is missing or the command fails
    """
    command = ["git", *args]
    logger.debug(f"Running: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            cwd=path,
            capture_output=True,
            check=True,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as e:
        raise ProviderError("git executable not found") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise ProviderError(f"git {args[0]} failed in {path}: {stderr or e}") from e
    return result.stdout


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise ProviderError(f"Unparseable commit date: {value!r}") from e


def parse_log_output(output: str, kind: CommitKind = CommitKind.COMMIT) -> list[Commit]:
    """Parse NUL-separated ``git log`` records produced with LOG_FORMAT.

    Raises:
        ProviderError: If a record does not have the expected fields
    """
    commits = []
    for record in output.split(RECORD_SEPARATOR):
        record = record.lstrip("\n")
        if not record:
            continue
        parts = record.split(FIELD_SEPARATOR)
        if len(parts) != len(LOG_FIELDS):
            raise ProviderError(f"Unexpected git log record with {len(parts)} fields: {record[:80]!r}")
        (commit_hash, author_name, author_email, author_date,
         committer_name, committer_email, committer_date, subject, body, parents) = parts
        commits.append(Commit(
            hash=commit_hash,
            parents=tuple(parents.split()),
            committer_time=_parse_date(committer_date),
            subject=subject,
            author_name=author_name,
            author_email=author_email,
            author_time=_parse_date(author_date),
            committer_name=committer_name,
            committer_email=committer_email,
            body=body.rstrip("\n"),
            kind=kind,
        ))
    return commits


def parse_show_ref(output: str) -> list[Ref]:
    """Parse ``git show-ref --head --dereference`` output.

    Peeled tag lines (``refs/tags/x^{}``) replace the tag object hash with
    the commit it points to. Refs outside heads, remotes and tags are ignored.
    """
    refs: list[Ref] = []
    tags: dict[str, Ref] = {}

    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(" ")
        if len(parts) != 2:
            raise ProviderError(f"Unexpected show-ref line: {line!r}")
        target, name = parts

        if name == "HEAD":
            refs.append(Ref("HEAD", RefKind.HEAD, target))
        elif name.startswith("refs/heads/"):
            refs.append(Ref(name.removeprefix("refs/heads/"), RefKind.BRANCH, target))
        elif name.startswith("refs/remotes/"):
            refs.append(Ref(name.removeprefix("refs/remotes/"), RefKind.REMOTE_BRANCH, target))
        elif name.startswith("refs/tags/"):
            tag_name = name.removeprefix("refs/tags/").removesuffix("^{}")
            # The peeled line follows the tag line and wins
            tags[tag_name] = Ref(tag_name, RefKind.TAG, target)

    refs.extend(tags.values())
    return refs


def parse_stash_list(output: str) -> list[Ref]:
    """Parse ``git stash list`` output produced with STASH_REF_FORMAT."""
    refs = []
    for line in output.splitlines():
        if not line:
            continue
        parts = line.split(FIELD_SEPARATOR)
        if len(parts) != 3:
            raise ProviderError(f"Unexpected stash list line: {line!r}")
        name, target, _subject = parts
        refs.append(Ref(name, RefKind.STASH, target))
    return refs


def insert_stashes(commits: list[Commit], stashes: list[Commit]) -> list[Commit]:
    """Place each stash commit just before the commit it was created from.

    Stashes whose base commit is not loaded are dropped.
    """
    by_base: dict[str, list[Commit]] = {}
    for stash in stashes:
        if stash.parents:
            by_base.setdefault(stash.parents[0], []).append(stash)

    merged = []
    for commit in commits:
        merged.extend(by_base.pop(commit.hash, ()))
        merged.append(commit)

    if by_base:
        dropped = sum(len(s) for s in by_base.values())
        logger.debug(f"Dropped {dropped} stash commits whose base is not loaded")
    return merged


def load_repository(
    path: str | Path,
    order: OrderMode = OrderMode.CHRONOLOGICAL,
    max_count: int | None = None,
) -> tuple[list[Commit], list[Ref]]:
    """Load commits and refs of the repository at ``path``.

    Args:
        path: Repository working tree (or any directory inside it)
        order: Display ordering; selects git's date or topo ordering
        max_count: Limit on the number of regular commits loaded

    Returns:
        Tuple of (commits, refs)

    Raises:
        ProviderError: If the path is not a git repository or git fails
    """
    path = Path(path)
    if not path.is_dir():
        raise ProviderError(f"Not a directory: {path}")

    inside = _run_git(path, ["rev-parse", "--is-inside-work-tree", "--is-bare-repository"])
    if "true" not in inside.split():
        raise ProviderError(f"Not a git repository: {path}")

    stashes = parse_log_output(
        _run_git(path, ["stash", "list", f"--pretty={LOG_FORMAT}", "--date=iso-strict", "-z"]),
        kind=CommitKind.STASH,
    )

    log_args = [
        "log",
        "--topo-order" if OrderMode(order) == OrderMode.TOPOLOGICAL else "--date-order",
        f"--pretty={LOG_FORMAT}",
        "--date=iso-strict",
        "-z",
    ]
    if max_count is not None:
        log_args.append(f"--max-count={max_count}")
    log_args += ["--branches", "--remotes", "--tags"]
    # Keep stash base commits reachable
    log_args += [stash.parents[0] for stash in stashes if stash.parents]
    log_args.append("HEAD")

    commits = insert_stashes(parse_log_output(_run_git(path, log_args)), stashes)

    refs = parse_show_ref(_run_git(path, ["show-ref", "--head", "--dereference"]))
    refs += parse_stash_list(_run_git(path, ["stash", "list", f"--format={STASH_REF_FORMAT}"]))

    logger.info(f"Loaded {len(commits)} commits ({len(stashes)} stashes) and {len(refs)} refs from {path}")
    return commits, refs
