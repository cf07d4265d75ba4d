"""Structured commit data read from a local git repository.

Commits are produced oldest first so that replaying an import is
deterministic. Nothing here estimates time; see :mod:`timespan.estimation`.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
import subprocess
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple

from .errors import GitError
from .utils import ensure_utc

logger = logging.getLogger(__name__)

KEYWORDS: Tuple[str, ...] = ("fix", "bug", "test", "doc", "refactor")

RECORD_SEPARATOR = "\x1e"
FIELD_SEPARATOR = "\x1f"
LOG_FORMAT = "%x1e%H%x1f%an%x1f%ae%x1f%ct%x1f%B%x1f"

_REVISION_PATTERN = re.compile(r"^[A-Za-z0-9][\w./^~@{}-]*$")
_TEST_PATH_PATTERN = re.compile(r"(^|/)(tests?|spec|__tests__)/|(^|/)test_[^/]*$|_test\.[^/]+$|\.(test|spec)\.[^/]+$")


@dataclass(frozen=True)
class GitCommit:
    hash: str
    message: str
    author: str
    author_email: str
    timestamp: dt.datetime
    files_changed: Tuple[str, ...] = ()
    insertions: int = 0
    deletions: int = 0
    repository_path: Optional[Path] = None

    @property
    def total_changes(self) -> int:
        return self.insertions + self.deletions

    @property
    def summary(self) -> str:
        lines = self.message.strip().splitlines()
        return lines[0].strip() if lines else ""


@dataclass(frozen=True)
class CommitAnalysis:
    commit: GitCommit
    extensions: Dict[str, int] = field(default_factory=dict)
    keywords: FrozenSet[str] = frozenset()
    test_files: int = 0

    @property
    def total_changes(self) -> int:
        return self.commit.total_changes

    def has_keyword(self, *names: str) -> bool:
        return any(name in self.keywords for name in names)


def file_extension(path: str) -> str:
    return PurePosixPath(path).suffix.lower().lstrip(".")


def is_test_path(path: str) -> bool:
    return bool(_TEST_PATH_PATTERN.search(path.replace("\\", "/").lower()))


def message_keywords(message: str) -> FrozenSet[str]:
    lowered = message.lower()
    return frozenset(keyword for keyword in KEYWORDS if keyword in lowered)


def analyze(commit: GitCommit) -> CommitAnalysis:
    extensions = Counter(ext for ext in (file_extension(path) for path in commit.files_changed) if ext)
    return CommitAnalysis(
        commit=commit,
        extensions=dict(sorted(extensions.items())),
        keywords=message_keywords(commit.message),
        test_files=sum(1 for path in commit.files_changed if is_test_path(path)),
    )


def _run_git(repo_path: Path, args: Sequence[str], log_failures: bool = True) -> str:
    if not repo_path.is_dir():
        logger.error("Repository path %s is not a directory", repo_path)
        raise GitError()
    # Keep non-ASCII paths unquoted in --numstat output.
    command = ["git", "-C", str(repo_path), "-c", "core.quotepath=false", *args]
    try:
        result = subprocess.run(
            command, capture_output=True, text=True, encoding="utf-8", errors="replace", check=True
        )
    except FileNotFoundError as exc:
        logger.exception("git executable not found")
        raise GitError() from exc
    except subprocess.CalledProcessError as exc:
        log = logger.error if log_failures else logger.debug
        log("git %s failed in %s: %s", " ".join(args[:2]), repo_path, (exc.stderr or "").strip())
        raise GitError() from exc
    return result.stdout


def _parse_numstat(lines: Sequence[str]) -> Tuple[List[str], int, int]:
    files: List[str] = []
    insertions = 0
    deletions = 0
    for line in lines:
        parts = line.split("\t")
        if len(parts) != 3:
            continue
        added, removed, path = parts
        # Binary files report "-" instead of line counts.
        insertions += int(added) if added.isdigit() else 0
        deletions += int(removed) if removed.isdigit() else 0
        files.append(path)
    return files, insertions, deletions


def parse_log(output: str, repo_path: Optional[Path] = None) -> Iterator[GitCommit]:
    """Parse ``git log --numstat`` output produced with :data:`LOG_FORMAT`."""
    for record in output.split(RECORD_SEPARATOR):
        if not record.strip():
            continue
        parts = record.split(FIELD_SEPARATOR, 5)
        if len(parts) < 6:
            logger.warning("Skipping malformed git log record")
            continue
        commit_hash, author, email, epoch, message, numstat = parts
        files, insertions, deletions = _parse_numstat(numstat.strip("\n").splitlines())
        yield GitCommit(
            hash=commit_hash.strip(),
            message=message.strip(),
            author=author or "Unknown",
            author_email=email,
            timestamp=dt.datetime.fromtimestamp(int(epoch), tz=dt.timezone.utc),
            files_changed=tuple(files),
            insertions=insertions,
            deletions=deletions,
            repository_path=repo_path,
        )


def read_commits(
    repo_path: Path | str,
    since: Optional[dt.datetime] = None,
    limit: Optional[int] = None,
) -> Iterator[GitCommit]:
    """Commits reachable from HEAD, oldest first.

    With ``limit`` the newest ``limit`` commits are kept, still oldest first.
    """
    path = Path(repo_path)
    args = ["log", "--reverse", "--no-renames", "--numstat", f"--format={LOG_FORMAT}"]
    if since is not None:
        args.append(f"--since={ensure_utc(since).isoformat()}")
    if limit is not None:
        if limit < 1:
            return iter(())
        args.append(f"--max-count={limit}")
    output = _run_git(path, args)
    return parse_log(output, path)


def read_commit(repo_path: Path | str, revision: str) -> GitCommit:
    """A single commit, as handed over by a post-commit hook."""
    if not _REVISION_PATTERN.match(revision):
        logger.error("Rejected revision %r", revision)
        raise GitError()
    path = Path(repo_path)
    output = _run_git(
        path,
        ["log", "-1", "--no-renames", "--numstat", f"--format={LOG_FORMAT}", revision, "--"],
    )
    for commit in parse_log(output, path):
        return commit
    logger.error("Revision %s produced no commit in %s", revision, path)
    raise GitError()


def analyze_repository(
    repo_path: Path | str,
    since: Optional[dt.datetime] = None,
    limit: Optional[int] = None,
) -> Iterator[CommitAnalysis]:
    return (analyze(commit) for commit in read_commits(repo_path, since=since, limit=limit))


def origin_repository_name(repo_path: Path | str) -> Optional[str]:
    """Repository name taken from the ``origin`` remote URL, if there is one."""
    try:
        url = _run_git(Path(repo_path), ["config", "--get", "remote.origin.url"], log_failures=False).strip()
    except GitError:
        return None
    if not url:
        return None
    name = re.split(r"[/:]", url.rstrip("/"))[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name or None
