"""Git and GitHub CLI operations performed at task and phase boundaries."""

from __future__ import annotations

import subprocess
from typing import Callable, Optional, Protocol, Sequence

from loguru import logger

from .config import PipelineConfig
from .constants import DEFAULT_GIT_TIMEOUT_SECONDS
from .errors import GitOperationError
from .logging_utils import log_step

_PR_BODY = (
    "## Phase {phase_id} (Milestone {milestone_id})\n\n"
    "All tasks in this phase have been completed by the pipeline.\n\n"
    "### Review checklist\n"
    "- [ ] Code review\n"
    "- [ ] Tests passing\n"
    "- [ ] Merge to {base}\n"
)


class GitGate(Protocol):
    def create_phase_branch(self, milestone_id: str, phase_id: str) -> None: ...

    def commit_task_completion(self, milestone_id: str, phase_id: str, task_id: str) -> None: ...

    def create_phase_pr(self, milestone_id: str, phase_id: str) -> Optional[str]: ...

    def return_to_main(self) -> None: ...


def phase_branch_name(config: PipelineConfig, milestone_id: str, phase_id: str) -> str:
    return f"{config.git.branch_prefix}{milestone_id}-{phase_id}"


class GitOperations:
    """Run git/gh in the project directory.

    With `git.best_effort` enabled a failing command is logged and skipped so a
    broken remote never blocks the pipeline; otherwise `GitOperationError`
    propagates. In dry-run mode nothing is executed.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        timeout: int = DEFAULT_GIT_TIMEOUT_SECONDS,
    ) -> None:
        self.config = config
        self._run = run
        self._timeout = timeout

    # -- process --------------------------------------------------------------

    def _exec(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        try:
            return self._run(
                list(args),
                cwd=self.config.project_dir,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitOperationError(f"{args[0]} {args[1]} timed out after {self._timeout}s") from exc
        except OSError as exc:
            raise GitOperationError(f"{args[0]} {args[1]} failed: {exc}") from exc

    def _git(self, args: Sequence[str], description: str) -> str:
        log_step("", "git", description)
        result = self._exec(["git", *args])
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise GitOperationError(f"git {args[0]} exited with code {result.returncode}: {stderr}")
        return (result.stdout or "").strip()

    def _guard(self, action: str, fn: Callable[[], Optional[str]]) -> Optional[str]:
        if not self.config.git.best_effort:
            return fn()
        try:
            return fn()
        except GitOperationError as exc:
            logger.warning("Git step '{}' failed; continuing: {}", action, exc)
            return None

    # -- operations -----------------------------------------------------------

    def branch_exists(self, branch: str) -> bool:
        result = self._exec(["git", "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"])
        return result.returncode == 0

    def has_changes(self) -> bool:
        result = self._exec(["git", "status", "--porcelain"])
        return result.returncode == 0 and bool((result.stdout or "").strip())

    def create_phase_branch(self, milestone_id: str, phase_id: str) -> None:
        branch = phase_branch_name(self.config, milestone_id, phase_id)
        if self.config.dry_run:
            log_step("", "git", f"[DRY-RUN] Would create/checkout branch {branch}")
            return

        def _do() -> None:
            base = self.config.git.base_branch
            if self.branch_exists(branch):
                self._git(["checkout", branch], f"Switching to existing branch {branch}")
            else:
                self._git(["checkout", "-b", branch, base], f"Creating branch {branch} from {base}")

        self._guard("create branch", _do)

    def commit_task_completion(self, milestone_id: str, phase_id: str, task_id: str) -> None:
        if not self.config.git.auto_commit:
            return
        label = f"{milestone_id}/{phase_id}/{task_id}"
        if self.config.dry_run:
            log_step("", "git", f"[DRY-RUN] Would commit task {label}")
            return

        def _do() -> None:
            if not self.has_changes():
                log_step("", "git", f"No changes to commit for task {task_id}")
                return
            self._git(["add", "-A"], f"Staging all changes for task {task_id}")
            message = f"{label}: task completed\n\nAutomated commit by pipeline after task approval."
            self._git(["commit", "-m", message], f"Committing task {label}")

        self._guard("commit", _do)

    def create_phase_pr(self, milestone_id: str, phase_id: str) -> Optional[str]:
        """Push the phase branch and open a pull request.

        Returns:
            The PR URL printed by `gh`, or None when skipped, already open,
            or failed in best-effort mode.
        """
        if not self.config.git.auto_pr:
            return None
        branch = phase_branch_name(self.config, milestone_id, phase_id)
        if self.config.dry_run:
            log_step("", "git", f"[DRY-RUN] Would push {branch} and create PR")
            return None

        def _do() -> Optional[str]:
            base = self.config.git.base_branch
            self._git(["push", "-u", "origin", branch], f"Pushing {branch} to origin")
            log_step("", "git", f"Creating PR for {branch}")
            result = self._exec(
                [
                    "gh",
                    "pr",
                    "create",
                    "--title",
                    f"{milestone_id}/{phase_id}: phase completed",
                    "--body",
                    _PR_BODY.format(milestone_id=milestone_id, phase_id=phase_id, base=base),
                    "--base",
                    base,
                ]
            )
            if result.returncode != 0:
                stderr = (result.stderr or "").strip()
                if "already exists" in stderr:
                    log_step("", "git", "PR already exists, skipping creation")
                    return None
                raise GitOperationError(f"gh pr create exited with code {result.returncode}: {stderr}")
            url = (result.stdout or "").strip()
            log_step("", "git", f"PR created: {url}")
            return url

        return self._guard("create PR", _do)

    def return_to_main(self) -> None:
        base = self.config.git.base_branch
        if self.config.dry_run:
            log_step("", "git", f"[DRY-RUN] Would checkout {base}")
            return
        self._guard("return to base", lambda: self._git(["checkout", base], f"Switching back to {base}"))
