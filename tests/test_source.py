"""Unit tests for source references and snapshots (appgen.source).

Tests cover:
- sanitize_name / validate_name
- is_remote_repository / repository_name
- SourceRefGenerator.from_url
- SourceRefGenerator.from_directory with and without git metadata
- snapshot_directory and SnapshotProvider
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from appgen.errors import SourceDetectionError, ValidationError
from appgen.git import GitError
from appgen.models import SourceRef
from appgen.source import (
    SnapshotProvider,
    SourceRefGenerator,
    is_remote_repository,
    repository_name,
    sanitize_name,
    snapshot_directory,
    validate_name,
)

pytestmark = pytest.mark.unit


def _no_git():
    return patch("appgen.git.repository_root", AsyncMock(return_value=None))


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------


class TestNames:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Ruby_Hello.World", "ruby-hello-world"),
            ("  --app--  ", "app"),
            ("my app", "my-app"),
            ("a" * 80, "a" * 63),
        ],
    )
    def test_sanitize_name(self, raw, expected):
        assert sanitize_name(raw) == expected

    def test_validate_name_accepts_dns_label(self):
        assert validate_name("ruby-hello-world") == "ruby-hello-world"

    @pytest.mark.parametrize("name", ["Ruby", "-app", "app-", "my_app", "a" * 64])
    def test_validate_name_rejects(self, name):
        with pytest.raises(ValidationError):
            validate_name(name)


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------


class TestRemoteDetection:
    @pytest.mark.parametrize(
        "location",
        [
            "https://github.com/openshift/ruby-hello-world.git",
            "git://github.com/openshift/ruby-hello-world",
            "ssh://git@github.com/openshift/ruby-hello-world.git",
            "git@github.com:openshift/ruby-hello-world.git",
            "file:///srv/git/app.git",
        ],
    )
    def test_remote_locations(self, location):
        assert is_remote_repository(location) is True

    @pytest.mark.parametrize("location", ["./app", "/srv/app", "app", "https://", "C:/app"])
    def test_local_locations(self, location):
        assert is_remote_repository(location) is False

    def test_repository_name_strips_git_suffix(self):
        assert repository_name("https://github.com/openshift/ruby-hello-world.git") == "ruby-hello-world"
        assert repository_name("git@github.com:org/app.git#beta") == "app"
        assert repository_name("https://example.com/org/app/") == "app"


class TestFromUrl:
    def test_name_and_origin(self):
        source = SourceRefGenerator().from_url("https://github.com/openshift/ruby-hello-world.git")
        assert source.name == "ruby-hello-world"
        assert source.origin == "https://github.com/openshift/ruby-hello-world.git"
        assert source.ref == ""
        assert source.is_remote is True
        assert source.local_dir is None

    def test_fragment_selects_ref(self):
        source = SourceRefGenerator().from_url(
            "https://github.com/openshift/ruby-hello-world.git#beta2"
        )
        assert source.ref == "beta2"
        assert source.origin == "https://github.com/openshift/ruby-hello-world.git"

    def test_overrides_win(self):
        source = SourceRefGenerator().from_url(
            "https://github.com/openshift/ruby-hello-world.git#beta2",
            name="hello",
            ref="main",
        )
        assert (source.name, source.ref) == ("hello", "main")

    def test_invalid_name_override(self):
        with pytest.raises(ValidationError):
            SourceRefGenerator().from_url("https://github.com/org/app.git", name="Bad_Name")

    @pytest.mark.parametrize("url", ["not a url", "https://github.com", "ftp://host/app.git"])
    def test_invalid_urls(self, url):
        with pytest.raises(SourceDetectionError):
            SourceRefGenerator().from_url(url)


# ---------------------------------------------------------------------------
# Directories
# ---------------------------------------------------------------------------


class TestFromDirectory:
    @pytest.mark.asyncio
    async def test_plain_directory(self, docker_source_dir: Path):
        with _no_git():
            source = await SourceRefGenerator().from_directory(docker_source_dir)

        assert source.name == "hello-docker"
        assert source.origin == str(docker_source_dir.resolve())
        assert source.ref == ""
        assert source.context_dir == ""
        assert source.is_remote is False
        assert source.local_dir == docker_source_dir.resolve()

    @pytest.mark.asyncio
    async def test_git_checkout_subdirectory(self, tmp_path: Path):
        root = tmp_path / "checkout"
        (root / "app").mkdir(parents=True)

        with patch("appgen.git.repository_root", AsyncMock(return_value=root.resolve())), \
             patch("appgen.git.remote_url", AsyncMock(return_value="git@github.com:org/ruby-app.git")), \
             patch("appgen.git.current_branch", AsyncMock(return_value="beta2")):
            source = await SourceRefGenerator().from_directory(root / "app")

        assert source.name == "ruby-app"
        assert source.origin == "git@github.com:org/ruby-app.git"
        assert source.ref == "beta2"
        assert source.context_dir == "app"
        assert source.is_remote is True
        assert source.directory == str(root.resolve())

    @pytest.mark.asyncio
    async def test_git_checkout_without_remote(self, tmp_path: Path):
        root = tmp_path / "Local_Project"
        root.mkdir()

        with patch("appgen.git.repository_root", AsyncMock(return_value=root.resolve())), \
             patch("appgen.git.remote_url", AsyncMock(return_value="")), \
             patch("appgen.git.current_branch", AsyncMock(return_value="main")):
            source = await SourceRefGenerator().from_directory(root, ref="v1")

        assert source.name == "local-project"
        assert source.origin == str(root.resolve())
        assert source.ref == "v1"
        assert source.is_remote is False

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(SourceDetectionError, match="does not exist"):
            await SourceRefGenerator().from_directory(tmp_path / "missing")

    @pytest.mark.asyncio
    async def test_file_is_not_a_directory(self, tmp_path: Path):
        target = tmp_path / "file.txt"
        target.write_text("x", encoding="utf-8")
        with pytest.raises(SourceDetectionError, match="not a directory"):
            await SourceRefGenerator().from_directory(target)

    @pytest.mark.asyncio
    async def test_name_override_validated(self, docker_source_dir: Path):
        with _no_git(), pytest.raises(ValidationError):
            await SourceRefGenerator().from_directory(docker_source_dir, name="NOT_OK")


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestSnapshots:
    def test_snapshot_directory(self, docker_source_dir: Path):
        snapshot = snapshot_directory(docker_source_dir)
        assert snapshot.files == frozenset({"Dockerfile", "run.sh"})
        assert snapshot.dockerfile is not None
        assert "EXPOSE 8080" in snapshot.dockerfile
        assert snapshot.has_any("Gemfile", "run.sh") is True
        assert snapshot.has_any("Gemfile") is False

    def test_snapshot_context_dir(self, tmp_path: Path):
        (tmp_path / "web").mkdir()
        (tmp_path / "web" / "package.json").write_text("{}", encoding="utf-8")
        snapshot = snapshot_directory(tmp_path, "web")
        assert snapshot.files == frozenset({"package.json"})
        assert snapshot.dockerfile is None

    def test_missing_context_dir(self, tmp_path: Path):
        with pytest.raises(SourceDetectionError):
            snapshot_directory(tmp_path, "nope")

    @pytest.mark.asyncio
    async def test_provider_reads_local_directory(self, docker_source_dir: Path):
        source = SourceRef(name="app", origin="x", directory=str(docker_source_dir))
        with patch("appgen.git.shallow_clone", AsyncMock()) as mock_clone:
            snapshot = await SnapshotProvider().snapshot(source)
        mock_clone.assert_not_awaited()
        assert "Dockerfile" in snapshot.files

    @pytest.mark.asyncio
    async def test_provider_clones_remote_source(self, remote_source: SourceRef):
        async def fake_clone(url, destination, ref="", timeout=300.0):
            destination = Path(destination)
            destination.mkdir(parents=True)
            (destination / "Gemfile").write_text("source 'https://rubygems.org'\n", encoding="utf-8")
            return destination

        with patch("appgen.git.shallow_clone", AsyncMock(side_effect=fake_clone)) as mock_clone:
            snapshot = await SnapshotProvider(clone_timeout=5).snapshot(remote_source)

        assert snapshot.files == frozenset({"Gemfile"})
        args, kwargs = mock_clone.call_args
        assert args[0] == remote_source.origin
        assert kwargs == {"ref": "", "timeout": 5}

    @pytest.mark.asyncio
    async def test_provider_clone_failure(self, remote_source: SourceRef):
        error = GitError("Git command failed (exit 128)", command="git clone", stderr="not found")
        with patch("appgen.git.shallow_clone", AsyncMock(side_effect=error)):
            with pytest.raises(SourceDetectionError, match="cannot fetch repository"):
                await SnapshotProvider().snapshot(remote_source)
