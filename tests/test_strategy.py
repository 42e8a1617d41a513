"""Unit tests for build strategy selection (appgen.strategy).

Tests cover:
- override precedence (docker context > builder image > detection)
- overrides never consult the detectors
- builder image overrides resolve exactly once
- detection: Dockerfile-derived output image and resolved builder images
"""

from __future__ import annotations

from pathlib import Path

import pytest

from appgen.errors import NoStrategyMatchError, ResolutionError, ValidationError
from appgen.models import Port, SourceRef, StrategyKind
from appgen.resolvers import ImageResolverChain
from appgen.strategy import BASE_IMAGE_LABEL, BuildStrategyRefGenerator

pytestmark = pytest.mark.unit


@pytest.fixture
def registry(make_resolver, ruby_builder):
    return make_resolver("registry", {"openshift/ruby-20-centos": ruby_builder})


class TestOverrides:
    @pytest.mark.asyncio
    async def test_docker_context_skips_detection(self, registry, make_snapshots, remote_source):
        snapshots = make_snapshots("Gemfile")
        generator = BuildStrategyRefGenerator(ImageResolverChain([registry]), snapshots=snapshots)

        strategy = await generator.generate(remote_source, docker_context="docker")

        assert strategy.kind is StrategyKind.DOCKER
        assert strategy.context_dir == "docker"
        assert snapshots.calls == []
        assert registry.calls == []

    @pytest.mark.asyncio
    async def test_docker_context_beats_builder_image(self, registry, make_snapshots, remote_source, caplog):
        generator = BuildStrategyRefGenerator(registry, snapshots=make_snapshots())
        with caplog.at_level("WARNING", logger="appgen"):
            strategy = await generator.generate(
                remote_source, docker_context=".", builder_image="openshift/ruby-20-centos"
            )
        assert strategy.kind is StrategyKind.DOCKER
        assert strategy.context_dir == ""
        assert registry.calls == []
        assert "using the docker context" in caplog.text

    @pytest.mark.asyncio
    async def test_docker_context_reads_local_dockerfile(self, tmp_path: Path):
        (tmp_path / "deploy").mkdir()
        (tmp_path / "deploy" / "Dockerfile").write_text(
            "FROM nginx:1.25\nEXPOSE 80 443\n", encoding="utf-8"
        )
        source = SourceRef(name="site", origin=str(tmp_path), directory=str(tmp_path))
        generator = BuildStrategyRefGenerator(ImageResolverChain())

        strategy = await generator.from_docker_context(source, "deploy", no_cache=True)

        assert strategy.no_cache is True
        assert strategy.base.name == "site"
        assert strategy.base.exposed_ports == (Port(number=80), Port(number=443))
        assert strategy.base.labels == {BASE_IMAGE_LABEL: "nginx:1.25"}

    @pytest.mark.asyncio
    async def test_docker_context_is_joined_to_source_context(self, remote_source):
        source = remote_source.model_copy(update={"context_dir": "services/web"})
        strategy = await BuildStrategyRefGenerator(ImageResolverChain()).generate(
            source, docker_context="docker"
        )
        assert strategy.context_dir == "services/web/docker"

    @pytest.mark.parametrize("context", ["/abs/path", "../outside", "a/../../b"])
    @pytest.mark.asyncio
    async def test_docker_context_must_stay_inside_source(self, remote_source, context):
        generator = BuildStrategyRefGenerator(ImageResolverChain())
        with pytest.raises(ValidationError):
            await generator.generate(remote_source, docker_context=context)

    @pytest.mark.asyncio
    async def test_builder_image_resolves_exactly_once(
        self, registry, make_snapshots, remote_source, ruby_builder
    ):
        snapshots = make_snapshots("package.json")
        generator = BuildStrategyRefGenerator(ImageResolverChain([registry]), snapshots=snapshots)

        strategy = await generator.generate(
            remote_source, builder_image="openshift/ruby-20-centos", incremental=True
        )

        assert strategy.kind is StrategyKind.SOURCE
        assert strategy.base == ruby_builder
        assert strategy.incremental is True
        assert registry.calls == ["openshift/ruby-20-centos"]
        assert snapshots.calls == []

    @pytest.mark.asyncio
    async def test_invalid_builder_image_is_rejected_before_resolving(self, registry, remote_source):
        generator = BuildStrategyRefGenerator(registry)
        with pytest.raises(ValidationError):
            await generator.generate(remote_source, builder_image="Not/An:Image:Name")
        assert registry.calls == []

    @pytest.mark.asyncio
    async def test_unresolvable_builder_image(self, make_resolver, remote_source):
        generator = BuildStrategyRefGenerator(ImageResolverChain([make_resolver("registry")]))
        with pytest.raises(ResolutionError):
            await generator.generate(remote_source, builder_image="missing/builder")


class TestDetection:
    @pytest.mark.asyncio
    async def test_dockerfile_detection(self, registry, make_snapshots, remote_source):
        snapshots = make_snapshots("Gemfile", dockerfile="FROM centos:7\nEXPOSE 8080\n")
        generator = BuildStrategyRefGenerator(registry, snapshots=snapshots)

        strategy = await generator.generate(remote_source, build_only=True)

        assert strategy.kind is StrategyKind.DOCKER
        assert strategy.detector == "docker"
        assert strategy.build_only is True
        assert strategy.base.name == remote_source.name
        assert strategy.base.exposed_ports == (Port(number=8080),)
        assert strategy.base.source == "dockerfile"
        assert registry.calls == []

    @pytest.mark.asyncio
    async def test_language_detection_resolves_builder(
        self, registry, make_snapshots, remote_source, ruby_builder
    ):
        snapshots = make_snapshots("Gemfile", "config.ru")
        generator = BuildStrategyRefGenerator(ImageResolverChain([registry]), snapshots=snapshots)

        strategy = await generator.generate(remote_source)

        assert strategy.kind is StrategyKind.SOURCE
        assert strategy.detector == "ruby"
        assert strategy.base == ruby_builder
        assert registry.calls == ["openshift/ruby-20-centos"]
        assert snapshots.calls == [(remote_source, None)]

    @pytest.mark.asyncio
    async def test_no_detector_matches(self, registry, make_snapshots, remote_source):
        generator = BuildStrategyRefGenerator(registry, snapshots=make_snapshots("README.md"))
        with pytest.raises(NoStrategyMatchError):
            await generator.generate(remote_source)

    @pytest.mark.asyncio
    async def test_detected_builder_not_resolvable(self, make_resolver, make_snapshots, remote_source):
        generator = BuildStrategyRefGenerator(
            ImageResolverChain([make_resolver("docker"), make_resolver("registry")]),
            snapshots=make_snapshots("pom.xml"),
        )
        with pytest.raises(ResolutionError) as exc_info:
            await generator.generate(remote_source)
        assert exc_info.value.name == "openshift/wildfly-8-centos"
