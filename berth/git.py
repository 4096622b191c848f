"""
Git transaction layer - stages and commits one bead's changes at a time.

Callers serialize access; two concurrent `git add -A` calls would stage each
other's files.
"""

from __future__ import annotations

import logging
import re
import subprocess

from .errors import GitError

log = logging.getLogger(__name__)

COMMIT_PREFIX = "feat(berth):"
TRAILER_RE = re.compile(r"^\[berth:([^\]\s]+)\]$", re.MULTILINE)
GIT_TIMEOUT = 60


def format_commit_message(bead_id: str, message: str) -> str:
    return f"{COMMIT_PREFIX} {message}\n\n[berth:{bead_id}]"


def bead_id_from_message(message: str) -> str | None:
    """Return the bead ID from a `[berth:<id>]` trailer, if present."""
    match = TRAILER_RE.search(message)
    return match.group(1) if match else None


def has_changes(repo_path: str) -> bool:
    """True if the working tree has staged, unstaged or untracked changes."""
    return bool(_git(repo_path, "status", "--porcelain").strip())


def head_sha(repo_path: str) -> str:
    return _git(repo_path, "rev-parse", "HEAD").strip()


def commit_bead(repo_path: str, bead_id: str, message: str) -> str | None:
    """Stage everything and commit it under the bead's trailer.

    Returns the new commit SHA, or None when there was nothing to commit.
    """
    if not has_changes(repo_path):
        log.info("Nothing to commit for bead %s", bead_id)
        return None

    _git(repo_path, "add", "-A")
    _git(repo_path, "commit", "-m", format_commit_message(bead_id, message))
    sha = head_sha(repo_path)
    log.info("Committed bead %s as %s", bead_id, sha[:12])
    return sha


def commit_files(repo_path: str, files: list[str], message: str) -> str | None:
    """Commit specific paths with a plain message (administrative commits)."""
    if not files:
        return None
    _git(repo_path, "add", "--", *files)
    if not _git(repo_path, "diff", "--cached", "--name-only").strip():
        log.info("Nothing staged for: %s", message)
        return None
    _git(repo_path, "commit", "-m", message)
    return head_sha(repo_path)


def _git(repo_path: str, *args: str) -> str:
    """Run a git command in the target repo, raising GitError on failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=repo_path,
            timeout=GIT_TIMEOUT,
        )
    except FileNotFoundError as e:
        raise GitError("git not found in PATH") from e
    except subprocess.TimeoutExpired as e:
        raise GitError(f"git {' '.join(args)} timed out after {GIT_TIMEOUT}s") from e

    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        raise GitError(f"git {' '.join(args)} failed: {detail}")
    return result.stdout
