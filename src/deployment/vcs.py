"""PRD-120: Progressive Deployment: Version Control and Rollback Actions."""

import logging
import os
import re
import subprocess
from typing import Callable, Optional, Sequence

from .errors import ConfigurationError, InfrastructureError, RollbackActionError
from .ports import RollbackAction, VersionControlHistory

logger = logging.getLogger(__name__)

_GITHUB_REMOTE_RE = re.compile(
    r"github\.com[:/](?P<repo>[^/\s]+/[^/\s]+?)(?:\.git)?/?$"
)


class GitHistory(VersionControlHistory):
    """Git working copy driven through the ``git`` binary."""

    def __init__(
        self,
        workdir: str = ".",
        remote: str = "origin",
        timeout_seconds: float = 120.0,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.workdir = workdir
        self.remote = remote
        self.timeout_seconds = timeout_seconds
        self._runner = runner

    def _git(self, *args: str) -> subprocess.CompletedProcess:
        return self._runner(
            ["git", *args],
            cwd=self.workdir,
            check=False,
            text=True,
            capture_output=True,
            timeout=self.timeout_seconds,
        )

    def verify(self) -> None:
        try:
            proc = self._git("rev-parse", "--git-dir")
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise InfrastructureError(f"git is not available: {exc}") from exc
        if proc.returncode != 0:
            raise InfrastructureError(
                f"{os.path.abspath(self.workdir)} is not a git repository"
            )

    def parent_of(self, commit: str) -> Optional[str]:
        ref = commit if commit and commit != "unknown" else "HEAD"
        try:
            proc = self._git("rev-parse", "--verify", "--quiet", f"{ref}^")
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("Cannot read parent of %s: %s", ref, exc)
            return None
        parent = proc.stdout.strip()
        if proc.returncode != 0 or not parent:
            return None
        return parent

    def head_commit(self) -> Optional[str]:
        try:
            proc = self._git("rev-parse", "HEAD")
        except (OSError, subprocess.TimeoutExpired):
            return None
        sha = proc.stdout.strip()
        return sha if proc.returncode == 0 and sha else None

    def current_branch(self) -> Optional[str]:
        try:
            proc = self._git("branch", "--show-current")
        except (OSError, subprocess.TimeoutExpired):
            return None
        branch = proc.stdout.strip()
        return branch if proc.returncode == 0 and branch else None

    def fetch(self) -> None:
        proc = self._checked("fetch", self.remote)
        logger.debug("git fetch: %s", proc.stdout.strip())

    def reset_hard(self, commit: str) -> None:
        self._checked("reset", "--hard", commit)
        logger.info("Git reset to %s successful", commit[:8])

    def force_push(self, branch: str) -> None:
        self._checked("push", "--force", self.remote, branch)
        logger.info("Force push of %s successful", branch)

    def remote_repository(self) -> Optional[str]:
        try:
            proc = self._git("remote", "get-url", self.remote)
        except (OSError, subprocess.TimeoutExpired):
            return None
        if proc.returncode != 0:
            return None
        match = _GITHUB_REMOTE_RE.search(proc.stdout.strip())
        return match.group("repo") if match else None

    def _checked(self, *args: str) -> subprocess.CompletedProcess:
        try:
            proc = self._git(*args)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise RollbackActionError(f"git {args[0]} failed: {exc}") from exc
        if proc.returncode != 0:
            raise RollbackActionError(
                f"git {' '.join(args)} exited {proc.returncode}: "
                f"{(proc.stderr or proc.stdout).strip()}"
            )
        return proc


class GitRollbackAction(RollbackAction):
    """Reset the release branch to the target and force-push it.

    Force-pushing a shared branch is only attempted from a configured
    release branch with write credentials present. Anything else needs
    an operator and is reported as a failure.
    """

    name = "git"

    def __init__(
        self,
        history: VersionControlHistory,
        release_branches: Sequence[str] = ("main", "master"),
        write_token: Optional[str] = None,
    ):
        self.history = history
        self.release_branches = tuple(release_branches)
        self.write_token = write_token

    def preflight(self) -> None:
        self.history.verify()

    def execute(self, target_commit: str) -> None:
        branch = self.history.current_branch()
        if branch not in self.release_branches:
            logger.error(
                "Manual intervention required: branch %r is not a release branch %s",
                branch,
                list(self.release_branches),
            )
            raise RollbackActionError(
                f"branch {branch!r} is not a release branch; manual intervention required"
            )
        if not self.write_token:
            logger.error(
                "Manual intervention required: no write credentials to push %s", branch
            )
            raise RollbackActionError(
                "write credentials not set; manual intervention required to push rollback"
            )

        try:
            self.history.fetch()
        except RollbackActionError as exc:
            logger.warning("Fetch before rollback failed, continuing: %s", exc)
        self.history.reset_hard(target_commit)
        self.history.force_push(branch)


class ScriptRollbackAction(RollbackAction):
    """Delegates rollback to ``bash <script> rollback <commit>``."""

    name = "script"

    def __init__(self, script_path: str, timeout_seconds: float = 600.0):
        if not script_path or not os.path.isfile(script_path):
            raise ConfigurationError(f"Deployment script not found: {script_path!r}")
        self.script_path = script_path
        self.timeout_seconds = timeout_seconds

    def execute(self, target_commit: str) -> None:
        logger.info("Using deployment script for rollback: %s", self.script_path)
        try:
            proc = subprocess.run(
                ["bash", self.script_path, "rollback", target_commit],
                check=False,
                text=True,
                capture_output=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise RollbackActionError(
                f"rollback script timed out after {self.timeout_seconds}s"
            ) from exc
        except OSError as exc:
            raise RollbackActionError(f"cannot run rollback script: {exc}") from exc
        if proc.returncode != 0:
            raise RollbackActionError(
                f"rollback script exited {proc.returncode}: "
                f"{(proc.stderr or proc.stdout).strip()[-500:]}"
            )
        logger.info("Deployment script rollback successful")
