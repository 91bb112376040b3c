"""Repository metadata discovery via the ``git`` CLI.

The github context needs three facts about the host checkout: the
``owner/repo`` slug, the HEAD commit SHA, and the full ref. Each lookup
is independent and raises ``GitError`` on failure; the context builder
catches each one separately and degrades that single field to ``""``.

.. code-block:: text

    find_github_repo(path)   origin URL → "owner/repo"
    find_git_revision(path)  HEAD       → (short_sha, sha)
    find_git_ref(path)       HEAD       → "refs/heads/<branch>"
                                          | "refs/tags/<tag>" (detached on a tag)
"""

from __future__ import annotations

import re
import subprocess
from typing import Protocol

from localci.core.errors import GitError

_SLUG_PATTERN = re.compile(r"[:/]([^/:]+)/([^/]+?)(?:\.git)?/?$")


class GitInfo(Protocol):
    """Source of repository metadata."""

    def find_github_repo(self, path: str) -> str: ...

    def find_git_revision(self, path: str) -> tuple[str, str]: ...

    def find_git_ref(self, path: str) -> str: ...


def repo_slug(url: str) -> str:
    """Extract ``owner/repo`` from an SSH or HTTPS remote URL.

    >>> repo_slug("git@github.com:nektos/act.git")
    'nektos/act'
    >>> repo_slug("https://github.com/nektos/act")
    'nektos/act'
    """
    match = _SLUG_PATTERN.search(url.strip())
    if match is None:
        raise GitError(f"Unable to determine repository slug from '{url}'")
    return f"{match.group(1)}/{match.group(2)}"


class GitCLI:
    """``GitInfo`` backed by ``git`` subprocess calls."""

    def __init__(self, git_cmd: str = "git", timeout: int = 30) -> None:
        self._git_cmd = git_cmd
        self._timeout = timeout

    def _git(self, path: str, *args: str) -> str:
        try:
            result = subprocess.run(
                [self._git_cmd, *args],
                capture_output=True,
                cwd=path,
                check=True,
                text=True,
                timeout=self._timeout,
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as exc:
            raise GitError(f"git {' '.join(args)} failed in {path}", cause=exc) from exc
        return result.stdout.strip()

    def find_github_repo(self, path: str) -> str:
        return repo_slug(self._git(path, "config", "--get", "remote.origin.url"))

    def find_git_revision(self, path: str) -> tuple[str, str]:
        sha = self._git(path, "rev-parse", "HEAD")
        if not sha:
            raise GitError(f"No HEAD revision in {path}")
        return sha[:7], sha

    def find_git_ref(self, path: str) -> str:
        try:
            return self._git(path, "symbolic-ref", "-q", "HEAD")
        except GitError:
            pass
        tag = self._git(path, "describe", "--tags", "--exact-match", "HEAD")
        return f"refs/tags/{tag}"
