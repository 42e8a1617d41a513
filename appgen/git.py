"""Async git helpers used for source detection.

Reads checkout metadata (top-level directory, current branch, remote URL) and
performs the shallow clone used to snapshot remote repositories.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class GitError(Exception):
    """Raised when a git command fails."""

    def __init__(self, message: str, command: str = "", stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(message)


async def run_git(
    *args: str,
    cwd: str | Path | None = None,
    timeout: float = 60.0,
) -> str:
    """Run a git command asynchronously and return its stripped stdout.

    Raises GitError if git is missing, times out or exits non-zero.
    """
    cmd = ["git"] + list(args)
    cmd_str = " ".join(cmd)
    logger.debug("Running %s (cwd=%s)", cmd_str, cwd)

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
        )
    except FileNotFoundError as exc:
        raise GitError("git executable not found", command=cmd_str) from exc

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise GitError(
            f"Git command timed out after {timeout}s: {cmd_str}",
            command=cmd_str,
        )

    stdout = stdout_bytes.decode("utf-8", errors="replace").strip()
    stderr = stderr_bytes.decode("utf-8", errors="replace").strip()

    if process.returncode != 0:
        raise GitError(
            f"Git command failed (exit {process.returncode}): {cmd_str}\n{stderr}",
            command=cmd_str,
            stderr=stderr,
        )

    return stdout


async def repository_root(path: str | Path) -> Path | None:
    """Return the top-level directory of the checkout containing *path*, if any."""
    try:
        top = await run_git("rev-parse", "--show-toplevel", cwd=path)
    except GitError:
        return None
    return Path(top).resolve() if top else None


async def current_branch(path: str | Path) -> str:
    """Return the checked-out branch name, or ``""`` on a detached HEAD."""
    try:
        branch = await run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=path)
    except GitError:
        # Fresh repositories without commits have no HEAD to resolve.
        try:
            return await run_git("symbolic-ref", "--short", "HEAD", cwd=path)
        except GitError:
            return ""
    return "" if branch == "HEAD" else branch


async def remote_url(path: str | Path, remote: str = "origin") -> str:
    """Return the fetch URL of *remote*, or ``""`` when it is not configured."""
    try:
        return await run_git("config", "--get", f"remote.{remote}.url", cwd=path)
    except GitError:
        return ""


async def shallow_clone(
    url: str,
    destination: str | Path,
    ref: str = "",
    timeout: float = 300.0,
) -> Path:
    """Clone *url* into *destination* with depth 1, optionally at branch/tag *ref*."""
    args = ["clone", "--depth", "1", "--quiet"]
    if ref:
        args += ["--branch", ref]
    args += [url, str(destination)]
    await run_git(*args, timeout=timeout)
    return Path(destination)
