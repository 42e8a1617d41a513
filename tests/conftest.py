"""Shared pytest fixtures for the appgen test suite.

Provides reusable fixtures for:
- Temporary source directories and git repositories
- Instrumented stub resolvers that record every call
- Fake snapshot providers that never touch the network
- Mock subprocess helpers for git commands
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from appgen.errors import ResolverNoMatchError, ResolverTransientError
from appgen.models import ImageRef, Port, SourceRef
from appgen.resolvers import Resolver
from appgen.source import SourceSnapshot


# ---------------------------------------------------------------------------
# Stubs
# ---------------------------------------------------------------------------


class StubResolver(Resolver):
    """Resolver backed by a dict; records every name it is asked for."""

    def __init__(
        self,
        backend: str,
        images: dict[str, ImageRef] | None = None,
        transient: bool = False,
    ) -> None:
        self.backend = backend
        self.images = dict(images or {})
        self.transient = transient
        self.calls: list[str] = []

    async def resolve(self, name: str) -> ImageRef:
        self.calls.append(name)
        if self.transient:
            raise ResolverTransientError(self.backend, "connection refused")
        if name in self.images:
            return self.images[name]
        raise ResolverNoMatchError(self.backend, name)


class FakeSnapshots:
    """Snapshot provider returning a fixed snapshot and recording requests."""

    def __init__(self, snapshot: SourceSnapshot) -> None:
        self._snapshot = snapshot
        self.calls: list[tuple[SourceRef, str | None]] = []

    async def snapshot(self, source: SourceRef, context_dir: str | None = None) -> SourceSnapshot:
        self.calls.append((source, context_dir))
        return self._snapshot


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_resolver() -> Callable[..., StubResolver]:
    """Factory for :class:`StubResolver` instances.

    Usage:
        def test_chain(make_resolver):
            a = make_resolver("a", {"ruby": ruby_image})
    """
    return StubResolver


@pytest.fixture
def make_snapshots() -> Callable[..., FakeSnapshots]:
    """Factory for fake snapshot providers built from file names.

    Usage:
        snapshots = make_snapshots("Gemfile", dockerfile="FROM ruby\\nEXPOSE 8080\\n")
    """
    def factory(*files: str, dockerfile: str | None = None) -> FakeSnapshots:
        names = set(files)
        if dockerfile is not None:
            names.add("Dockerfile")
        return FakeSnapshots(SourceSnapshot(files=frozenset(names), dockerfile=dockerfile))

    return factory


@pytest.fixture
def ruby_builder() -> ImageRef:
    """A runnable Ruby builder image as returned by the registry resolver."""
    return ImageRef(
        name="ruby-20-centos",
        namespace="openshift",
        registry="registry-1.docker.io",
        tag="latest",
        exposed_ports=(Port(number=9292),),
        env={"RACK_ENV": "development", "STI_SCRIPTS_URL": "https://example.com/sti"},
        image_id="sha256:5f2b1c",
        source="registry",
    )


@pytest.fixture
def remote_source() -> SourceRef:
    """A reference to a remote repository."""
    return SourceRef(
        name="ruby-hello-world",
        origin="https://github.com/openshift/ruby-hello-world.git",
        is_remote=True,
    )


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------


@pytest.fixture
def docker_source_dir(tmp_path: Path) -> Path:
    """A plain directory holding a Dockerfile that exposes port 8080."""
    source = tmp_path / "hello-docker"
    source.mkdir()
    (source / "Dockerfile").write_text(
        "FROM centos:7\n"
        "# serve the app\n"
        "COPY . /srv\n"
        "EXPOSE 8080\n"
        'CMD ["/srv/run.sh"]\n',
        encoding="utf-8",
    )
    (source / "run.sh").write_text("#!/bin/sh\n", encoding="utf-8")
    return source


@pytest.fixture
def tmp_git_repo(tmp_path: Path) -> Path:
    """Temporary git repository with an initial commit and an origin remote.

    Creates a real git repo so that tests depending on checkout metadata
    (remote URL, current branch) have a valid repo to work in.
    """
    repo_dir = tmp_path / "checkout"
    repo_dir.mkdir()

    def git(*args: str) -> None:
        subprocess.run(["git", *args], cwd=repo_dir, check=True, capture_output=True)

    git("init")
    git("config", "user.email", "test@appgen.local")
    git("config", "user.name", "appgen Test")
    git("config", "commit.gpgsign", "false")
    git("checkout", "-b", "beta2")
    git("remote", "add", "origin", "https://github.com/openshift/ruby-hello-world.git")
    (repo_dir / "Gemfile").write_text("source 'https://rubygems.org'\n", encoding="utf-8")
    (repo_dir / "app").mkdir()
    (repo_dir / "app" / "config.ru").write_text("run App\n", encoding="utf-8")
    git("add", ".")
    git("commit", "-m", "Initial commit")
    yield repo_dir


# ---------------------------------------------------------------------------
# Mock subprocess
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing git command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory


def image_config(
    ports: list[str] | None = None,
    env: list[str] | None = None,
    labels: dict[str, str] | None = None,
) -> dict:
    """Build a Docker image ``Config`` block."""
    return {
        "ExposedPorts": {p: {} for p in (ports or [])},
        "Env": list(env or []),
        "Labels": dict(labels) if labels else None,
    }


@pytest.fixture
def make_image_config() -> Callable[..., dict]:
    """Factory for Docker image ``Config`` blocks."""
    return image_config
