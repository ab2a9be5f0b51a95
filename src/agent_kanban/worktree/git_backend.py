"""`git` command-line adapter for :class:`VersionControlBackend`.

Every command goes through the repository's :class:`GitCoordinator`, so
concurrent worktree operations never race on refs or the index lock.
Conflict checks rely on ``git merge-tree --write-tree`` (git 2.38+).
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from ..errors import AlreadyExistsError, VersionControlError
from ..git_coordinator import GitCoordinator, with_git_lock
from .backend import VersionControlBackend
from .models import DiffHunk, DiffResult, FileDiff

_DIFF_HEADER_RE = re.compile(r"^diff --git a/(?P<old>.+?) b/(?P<new>.+)$")
_HUNK_RE = re.compile(r"^@@ -(?P<os>\d+)(?:,(?P<ol>\d+))? \+(?P<ns>\d+)(?:,(?P<nl>\d+))? @@")


def parse_unified_diff(text: str) -> list[FileDiff]:
    """Parse ``git diff`` output into per-file diffs with hunks and line counts."""
    files: list[FileDiff] = []
    current: Optional[FileDiff] = None
    hunk: Optional[DiffHunk] = None
    hunk_lines: list[str] = []

    def _close_hunk() -> None:
        nonlocal hunk, hunk_lines
        if current is not None and hunk is not None:
            hunk.content = "\n".join(hunk_lines)
            current.hunks.append(hunk)
        hunk = None
        hunk_lines = []

    for line in text.splitlines():
        header = _DIFF_HEADER_RE.match(line)
        if header:
            _close_hunk()
            current = FileDiff(path=header.group("new"))
            files.append(current)
            continue
        if current is None:
            continue

        m = _HUNK_RE.match(line)
        if m:
            _close_hunk()
            hunk = DiffHunk(
                old_start=int(m.group("os")),
                old_lines=int(m.group("ol") or 1),
                new_start=int(m.group("ns")),
                new_lines=int(m.group("nl") or 1),
            )
            hunk_lines = [line]
            continue

        if hunk is None:
            # Extended header lines between "diff --git" and the first hunk.
            if line.startswith("new file mode"):
                current.status = "added"
            elif line.startswith("deleted file mode"):
                current.status = "deleted"
            elif line.startswith("rename from "):
                current.status = "renamed"
                current.old_path = line[len("rename from "):]
            elif line.startswith("rename to "):
                current.path = line[len("rename to "):]
            continue

        hunk_lines.append(line)
        if line.startswith("+"):
            current.additions += 1
        elif line.startswith("-"):
            current.deletions += 1

    _close_hunk()
    return files


class GitCliBackend(VersionControlBackend):
    """Drive a local repository through the ``git`` executable.

    Args:
        repo_dir: Root of the main working tree; merges happen here.
        coordinator: Lock shared by every backend pointed at the same repo.
        author_email: Email recorded on agent commits.
    """

    def __init__(
        self,
        repo_dir: Path,
        *,
        coordinator: Optional[GitCoordinator] = None,
        author_email: str = "agents@agent-kanban.local",
        git: str = "git",
    ) -> None:
        self.repo_dir = Path(repo_dir).resolve()
        self.coordinator = coordinator or GitCoordinator()
        self.author_email = author_email
        self._git = git

    # -- plumbing -----------------------------------------------------------

    def _run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        cmd = [self._git, *args]
        logger.debug("git {} (cwd={})", " ".join(args), cwd or self.repo_dir)
        proc = subprocess.run(
            cmd,
            cwd=str(cwd or self.repo_dir),
            capture_output=True,
            text=True,
        )
        if check and proc.returncode != 0:
            raise VersionControlError(cmd, proc.returncode, proc.stderr)
        return proc

    def _ensure_excluded(self, path: Path) -> None:
        """Keep worktree directories nested in the repo out of ``git status``."""
        try:
            relative = path.resolve().relative_to(self.repo_dir)
        except ValueError:
            return
        entry = f"/{relative.parts[0]}/"
        git_dir = Path(self._run(["rev-parse", "--git-common-dir"]).stdout.strip())
        if not git_dir.is_absolute():
            git_dir = self.repo_dir / git_dir
        exclude = git_dir / "info" / "exclude"
        existing = exclude.read_text() if exclude.exists() else ""
        if entry in existing.splitlines():
            return
        exclude.parent.mkdir(parents=True, exist_ok=True)
        if existing and not existing.endswith("\n"):
            existing += "\n"
        exclude.write_text(existing + entry + "\n")

    # -- VersionControlBackend ----------------------------------------------

    @with_git_lock
    def branch_exists(self, branch: str) -> bool:
        proc = self._run(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], check=False)
        return proc.returncode == 0

    @with_git_lock
    def create_branch(self, branch: str, base_branch: str, path: str) -> None:
        if self.branch_exists(branch):
            raise AlreadyExistsError(f"Branch {branch} already exists")
        target = Path(path)
        if target.exists() and any(target.iterdir()):
            raise AlreadyExistsError(f"Worktree path {target} is already in use")
        self._ensure_excluded(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        self._run(["worktree", "add", "-b", branch, str(target), base_branch])

    @with_git_lock
    def commit(self, path: str, message: str, files: Optional[list[str]], author: str) -> str:
        cwd = Path(path)
        if files is None:
            self._run(["add", "-A"], cwd=cwd)
        else:
            present = [f for f in files if (cwd / f).exists()]
            missing = [f for f in files if f not in present]
            if present:
                self._run(["add", "-A", "--", *present], cwd=cwd)
            if missing:
                self._run(["rm", "--cached", "--ignore-unmatch", "-q", "--", *missing], cwd=cwd)
        self._run(
            [
                "-c", f"user.name={author}",
                "-c", f"user.email={self.author_email}",
                "commit", "--allow-empty", "-m", message,
            ],
            cwd=cwd,
        )
        return self._run(["rev-parse", "HEAD"], cwd=cwd).stdout.strip()

    @with_git_lock
    def diff(self, branch: str, base_branch: str) -> DiffResult:
        proc = self._run(["diff", "--no-color", "--no-ext-diff", "-M", f"{base_branch}...{branch}"])
        return DiffResult(files=parse_unified_diff(proc.stdout))

    @with_git_lock
    def rebase(self, path: str, branch: str, base_branch: str) -> list[str]:
        cwd = Path(path)
        proc = self._run(["rebase", base_branch], cwd=cwd, check=False)
        if proc.returncode == 0:
            return []
        unmerged = self._run(["diff", "--name-only", "--diff-filter=U"], cwd=cwd, check=False)
        conflicts = [f for f in unmerged.stdout.splitlines() if f.strip()]
        self._run(["rebase", "--abort"], cwd=cwd, check=False)
        if not conflicts:
            raise VersionControlError([self._git, "rebase", base_branch], proc.returncode, proc.stderr)
        logger.warning("Rebase of {} onto {} conflicts in {} file(s)", branch, base_branch, len(conflicts))
        return conflicts

    @with_git_lock
    def check_conflicts(self, branch: str, base_branch: str) -> list[str]:
        proc = self._run(
            ["merge-tree", "--write-tree", "--name-only", "--no-messages", base_branch, branch],
            check=False,
        )
        if proc.returncode == 0:
            return []
        if proc.returncode != 1:
            raise VersionControlError(["git", "merge-tree", base_branch, branch], proc.returncode, proc.stderr)
        # First line is the (conflicted) tree id, the rest are conflicting paths.
        lines = [line.strip() for line in proc.stdout.splitlines()[1:]]
        return list(dict.fromkeys(line for line in lines if line))

    @with_git_lock
    def merge(self, branch: str, base_branch: str, *, squash: bool, message: str) -> str:
        self._run(["checkout", base_branch])
        if squash:
            proc = self._run(["merge", "--squash", branch], check=False)
            if proc.returncode != 0:
                self._run(["reset", "--merge"], check=False)
                raise VersionControlError(["git", "merge", "--squash", branch], proc.returncode, proc.stderr)
            self._run(["commit", "--allow-empty", "-m", message])
        else:
            proc = self._run(["merge", "--no-ff", "-m", message, branch], check=False)
            if proc.returncode != 0:
                self._run(["merge", "--abort"], check=False)
                raise VersionControlError(["git", "merge", branch], proc.returncode, proc.stderr)
        return self._run(["rev-parse", "HEAD"]).stdout.strip()

    @with_git_lock
    def ahead_behind(self, branch: str, base_branch: str) -> tuple[int, int]:
        proc = self._run(["rev-list", "--left-right", "--count", f"{base_branch}...{branch}"])
        behind, ahead = (int(n) for n in proc.stdout.split())
        return ahead, behind

    @with_git_lock
    def delete_branch(self, branch: str, path: str) -> None:
        removed = self._run(["worktree", "remove", "--force", path], check=False)
        if removed.returncode != 0:
            logger.warning("git worktree remove {} failed: {}", path, removed.stderr.strip())
            self._run(["worktree", "prune"], check=False)
        deleted = self._run(["branch", "-D", branch], check=False)
        if deleted.returncode != 0:
            logger.warning("git branch -D {} failed: {}", branch, deleted.stderr.strip())
