"""
Git transport using the git command line.

Working trees live under base_dir/<folder_name>. A fresh install clones the
remote (removing any stale tree first); an existing checkout is updated with
a fast-forward-only pull. Progress lines printed by `git --progress` are
parsed and forwarded as (phase, loaded, total).
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ota_hotupdate.errors import TransportError
from ota_hotupdate.logging import get_logger
from ota_hotupdate.models import CloneResult, PullResult
from ota_hotupdate.operations import safe_remove_directory
from ota_hotupdate.transports.base import GitTransport

if TYPE_CHECKING:
    from ota_hotupdate.config import GitTransportConfig
    from ota_hotupdate.models import GitProgressCallback

logger = get_logger(__name__)

DEFAULT_FOLDER_NAME = "git_hot_update"

# e.g. "Receiving objects:  45% (45/100), 1.2 MiB | 2.0 MiB/s"
PROGRESS_PATTERN = re.compile(
    r"^(?:remote:\s*)?(?P<phase>[A-Za-z][A-Za-z ]*?):\s+\d+%\s+\((?P<loaded>\d+)/(?P<total>\d+)\)"
)


def parse_progress_line(line: str) -> tuple[str, int, int] | None:
    """Parse one git progress line into (phase, loaded, total)."""
    match = PROGRESS_PATTERN.match(line.strip())
    if match is None:
        return None
    return match.group("phase"), int(match.group("loaded")), int(match.group("total"))


class GitCliTransport(GitTransport):
    """
    GitTransport backed by the git executable.

    Attributes:
        base_dir: Directory holding working trees.
        default_folder_name: Folder used when no folder name is given.
        git_executable: git binary name or path.
        timeout: Timeout for one git command, in seconds.
        shallow: Clone with --depth 1.
    """

    def __init__(
        self,
        base_dir: Path | str,
        *,
        default_folder_name: str = DEFAULT_FOLDER_NAME,
        git_executable: str = "git",
        timeout: float = 600.0,
        shallow: bool = True,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.default_folder_name = default_folder_name
        self.git_executable = git_executable
        self.timeout = timeout
        self.shallow = shallow

    @classmethod
    def from_config(cls, config: GitTransportConfig) -> GitCliTransport:
        """Create a GitCliTransport from configuration."""
        return cls(
            config.base_dir,
            default_folder_name=config.default_folder_name,
            git_executable=config.git_executable,
            timeout=config.timeout_seconds,
        )

    def repo_dir(self, folder_name: str | None = None) -> Path:
        """Return the working tree directory for a folder name."""
        return self.base_dir / (folder_name or self.default_folder_name)

    async def _run_git(
        self,
        *args: str,
        cwd: Path | None = None,
        on_progress: GitProgressCallback | None = None,
    ) -> tuple[int, str, str]:
        """
        Run a git command.

        Returns:
            Tuple of (return_code, stdout, stderr).

        Raises:
            TransportError: If git cannot be executed or times out.
        """
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            proc = await asyncio.create_subprocess_exec(
                self.git_executable,
                *args,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise TransportError(
                f"Failed to execute git: {e}",
                details={"command": ["git", *args]},
            ) from e

        stderr_lines: list[str] = []

        async def read_stderr() -> None:
            assert proc.stderr is not None
            buffer = ""
            while chunk := await proc.stderr.read(1024):
                buffer += chunk.decode("utf-8", errors="replace")
                *lines, buffer = re.split(r"[\r\n]", buffer)
                for line in lines:
                    self._handle_stderr_line(line, stderr_lines, on_progress)
            self._handle_stderr_line(buffer, stderr_lines, on_progress)

        async def read_stdout() -> str:
            assert proc.stdout is not None
            data = await proc.stdout.read()
            return data.decode("utf-8", errors="replace")

        try:
            stdout, _, returncode = await asyncio.wait_for(
                asyncio.gather(read_stdout(), read_stderr(), proc.wait()),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise TransportError(
                f"git {args[0]} timed out after {self.timeout}s",
                details={"command": ["git", *args]},
            ) from e

        return returncode, stdout, "\n".join(stderr_lines)

    @staticmethod
    def _handle_stderr_line(
        line: str,
        collected: list[str],
        on_progress: Callable[[str, int, int], None] | None,
    ) -> None:
        if not line.strip():
            return
        progress = parse_progress_line(line)
        if progress is None:
            collected.append(line.strip())
        elif on_progress is not None:
            on_progress(*progress)

    async def get_config(self, folder_name: str | None = None) -> dict[str, Any] | None:
        repo = self.repo_dir(folder_name)
        if not (repo / ".git").exists():
            return None

        returncode, stdout, _ = await self._run_git(
            "config", "--local", "--list", cwd=repo
        )
        if returncode != 0:
            return None

        config: dict[str, Any] = {}
        for line in stdout.splitlines():
            if "=" in line:
                key, value = line.split("=", 1)
                config[key] = value
        return config or None

    async def get_branch_name(self, folder_name: str | None = None) -> str | None:
        repo = self.repo_dir(folder_name)
        if not repo.exists():
            return None

        returncode, stdout, _ = await self._run_git(
            "rev-parse", "--abbrev-ref", "HEAD", cwd=repo
        )
        branch = stdout.strip()
        if returncode != 0 or not branch or branch == "HEAD":
            return None
        return branch

    async def pull(
        self,
        branch: str,
        on_progress: GitProgressCallback | None = None,
        folder_name: str | None = None,
    ) -> PullResult:
        repo = self.repo_dir(folder_name)
        logger.info("Pulling bundle repository", extra={"repo": str(repo), "branch": branch})

        try:
            returncode, _, stderr = await self._run_git(
                "pull", "--ff-only", "--progress", "origin", branch,
                cwd=repo,
                on_progress=on_progress,
            )
        except TransportError as e:
            return PullResult(success=False, msg=e.message)

        if returncode != 0:
            return PullResult(success=False, msg=stderr or f"git pull exited with {returncode}")
        return PullResult(success=True)

    async def clone(
        self,
        url: str,
        bundle_path: str,
        on_progress: GitProgressCallback | None = None,
        folder_name: str | None = None,
        branch: str | None = None,
    ) -> CloneResult:
        repo = self.repo_dir(folder_name)
        if repo.exists():
            safe_remove_directory(repo)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        args = ["clone", "--progress", "--single-branch"]
        if self.shallow:
            args += ["--depth", "1"]
        if branch:
            args += ["--branch", branch]
        args += [url, str(repo)]

        logger.info("Cloning bundle repository", extra={"url": url, "repo": str(repo)})

        try:
            returncode, _, stderr = await self._run_git(*args, on_progress=on_progress)
        except TransportError as e:
            safe_remove_directory(repo)
            return CloneResult(success=False, msg=e.message)

        if returncode != 0:
            safe_remove_directory(repo)
            return CloneResult(
                success=False,
                msg=stderr or f"git clone exited with {returncode}",
            )

        bundle = (repo / bundle_path).resolve()
        if not bundle.is_relative_to(repo.resolve()) or not bundle.is_file():
            return CloneResult(
                success=False,
                msg=f"Bundle file not found in repository: {bundle_path}",
            )

        return CloneResult(success=True, bundle=str(bundle))

    async def remove_git_update(self, folder_name: str | None = None) -> None:
        repo = self.repo_dir(folder_name)
        if safe_remove_directory(repo):
            logger.info("Removed git working tree", extra={"repo": str(repo)})
