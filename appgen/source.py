"""Source reference resolution and source snapshots.

Turns a repository URL or a local directory into a :class:`SourceRef`, and
captures the immutable :class:`SourceSnapshot` the strategy detectors inspect.
Resolving a reference never touches the network; remote sources are only
fetched (as a shallow clone) when a snapshot is requested.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

from . import git
from .dockerfile import DOCKERFILE_NAME
from .errors import SourceDetectionError, ValidationError
from .models import SourceRef

logger = logging.getLogger(__name__)

REMOTE_SCHEMES = ("http", "https", "git", "ssh", "git+ssh", "file")

_SCP_URL = re.compile(r"^(?P<user>[\w.-]+)@(?P<host>[\w.-]+):(?P<path>[^/].*)$")
_OBJECT_NAME = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_MAX_NAME_LENGTH = 63


# ---------------------------------------------------------------------------
# Name helpers
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Convert an arbitrary repository or directory name to a valid object name.

    Examples::

        sanitize_name("Ruby_Hello.World") -> "ruby-hello-world"
        sanitize_name("  --app--  ") -> "app"
    """
    result = re.sub(r"[^a-z0-9-]", "-", name.strip().lower())
    result = re.sub(r"-+", "-", result)
    return result.strip("-")[:_MAX_NAME_LENGTH].rstrip("-")


def validate_name(name: str) -> str:
    """Check a caller-supplied object name.

    Raises:
        ValidationError: If *name* is not a lowercase DNS label.
    """
    if len(name) > _MAX_NAME_LENGTH or not _OBJECT_NAME.match(name):
        raise ValidationError(
            "name",
            f"{name!r} must be at most {_MAX_NAME_LENGTH} lowercase alphanumeric "
            "characters or '-', starting and ending with an alphanumeric character",
        )
    return name


def _derived_name(raw: str, location: str) -> str:
    name = sanitize_name(raw)
    if not name:
        raise SourceDetectionError(location, f"cannot derive an object name from {raw!r}")
    return name


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def _split_remote(location: str) -> tuple[str, str] | None:
    """Return ``(path, fragment)`` when *location* is a remote repository URL."""
    scp = _SCP_URL.match(location)
    if scp and "://" not in location:
        path, _, fragment = scp.group("path").partition("#")
        return path, fragment

    parsed = urlparse(location)
    if parsed.scheme.lower() not in REMOTE_SCHEMES:
        return None
    if parsed.scheme.lower() != "file" and not parsed.netloc:
        return None
    return parsed.path, parsed.fragment


def is_remote_repository(location: str) -> bool:
    """Return ``True`` when *location* looks like a remote repository URL."""
    return _split_remote(location.strip()) is not None


def repository_name(url: str) -> str:
    """Return the raw repository name of a URL (last path segment, no ``.git``)."""
    split = _split_remote(url.strip())
    path = split[0] if split else url
    segment = PurePosixPath(path.rstrip("/")).name
    return segment[: -len(".git")] if segment.endswith(".git") else segment


# ---------------------------------------------------------------------------
# SourceRef generation
# ---------------------------------------------------------------------------


class SourceRefGenerator:
    """Creates :class:`SourceRef` objects from URLs or local directories.

    Caller-supplied ``name`` and ``ref`` always take precedence over detected
    values.
    """

    def from_url(self, url: str, name: str | None = None, ref: str | None = None) -> SourceRef:
        """Build a reference to a remote repository.

        A URL fragment (``https://host/repo.git#branch``) selects the ref.

        Raises:
            SourceDetectionError: If *url* is not a valid repository URL.
            ValidationError: If the *name* override is malformed.
        """
        location = url.strip()
        split = _split_remote(location)
        if split is None:
            raise SourceDetectionError(url, "not a valid repository URL")
        path, fragment = split
        if not PurePosixPath(path.rstrip("/")).name:
            raise SourceDetectionError(url, "URL has no repository path")

        base_url = location.split("#", 1)[0]
        source = SourceRef(
            name=validate_name(name) if name else _derived_name(repository_name(base_url), url),
            origin=base_url,
            ref=ref or fragment,
            is_remote=True,
        )
        logger.debug("Source reference from URL: %s", source)
        return source

    async def from_directory(
        self,
        path: str | Path,
        name: str | None = None,
        ref: str | None = None,
    ) -> SourceRef:
        """Build a reference to a local directory.

        When the directory belongs to a git checkout, the name comes from the
        ``origin`` remote (or the checkout directory), the ref from the current
        branch and the context dir from the position of *path* inside the
        checkout.  Otherwise the name is the last path segment and the ref is
        empty.

        Raises:
            SourceDetectionError: If the path does not exist or is unreadable.
            ValidationError: If the *name* override is malformed.
        """
        directory = Path(path).expanduser()
        location = str(path)
        if not directory.exists():
            raise SourceDetectionError(location, "path does not exist")
        if not directory.is_dir():
            raise SourceDetectionError(location, "path is not a directory")
        if not os.access(directory, os.R_OK | os.X_OK):
            raise SourceDetectionError(location, "directory is not readable")
        directory = directory.resolve()

        detected_ref = ""
        context_dir = ""
        remote = ""
        root = await git.repository_root(directory)
        if root is not None:
            remote = await git.remote_url(root)
            raw_name = repository_name(remote) if remote else root.name
            detected_ref = await git.current_branch(root)
            if directory != root:
                context_dir = directory.relative_to(root).as_posix()
            logger.debug("Found git checkout at %s (remote=%r, ref=%r)", root, remote, detected_ref)
        else:
            raw_name = directory.name
            root = directory

        source = SourceRef(
            name=validate_name(name) if name else _derived_name(raw_name, location),
            origin=remote or str(root),
            ref=ref or detected_ref,
            context_dir=context_dir,
            is_remote=bool(remote) and is_remote_repository(remote),
            directory=str(root),
        )
        logger.debug("Source reference from directory: %s", source)
        return source


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceSnapshot:
    """Immutable view of the files at the root of a build context."""

    files: frozenset[str]
    dockerfile: str | None = None

    def has_any(self, *names: str) -> bool:
        return any(n in self.files for n in names)


def snapshot_directory(path: str | Path, context_dir: str = "") -> SourceSnapshot:
    """Capture the root listing (and Dockerfile, if any) of *path*/*context_dir*.

    Raises:
        SourceDetectionError: If the context directory is missing or unreadable.
    """
    base = Path(path) / context_dir if context_dir else Path(path)
    if not base.is_dir():
        raise SourceDetectionError(str(base), "context directory does not exist")
    try:
        files = frozenset(entry.name for entry in base.iterdir())
    except OSError as exc:
        raise SourceDetectionError(str(base), f"cannot list directory: {exc}") from exc

    dockerfile = None
    candidate = base / DOCKERFILE_NAME
    if candidate.is_file():
        try:
            dockerfile = candidate.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise SourceDetectionError(str(candidate), f"cannot read file: {exc}") from exc
    return SourceSnapshot(files=files, dockerfile=dockerfile)


class SnapshotProvider:
    """Produces snapshots for local and remote sources.

    Sources with a local directory are read in place.  Remote-only sources are
    shallow-cloned into a temporary directory that is removed as soon as the
    snapshot is taken.
    """

    def __init__(self, clone_timeout: float = 300.0) -> None:
        self.clone_timeout = clone_timeout

    async def snapshot(self, source: SourceRef, context_dir: str | None = None) -> SourceSnapshot:
        context = source.context_dir if context_dir is None else context_dir
        local = source.local_dir
        if local is not None:
            return snapshot_directory(local, context)

        with tempfile.TemporaryDirectory(prefix="appgen-") as workdir:
            checkout = Path(workdir) / "source"
            logger.info("Fetching %s%s", source.origin, f"#{source.ref}" if source.ref else "")
            try:
                await git.shallow_clone(
                    source.origin, checkout, ref=source.ref, timeout=self.clone_timeout
                )
            except git.GitError as exc:
                raise SourceDetectionError(source.origin, f"cannot fetch repository: {exc}") from exc
            return snapshot_directory(checkout, context)
