"""Build strategy selection.

Chooses exactly one build strategy for a source.  Explicit overrides take
precedence in this order, and each one skips detection entirely:

1. a docker context path -> container-native (Docker) build;
2. a builder image name -> builder-image (Source) build, the name resolved
   once through the image resolver;
3. otherwise the detector chain runs against a snapshot of the source.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath

from .detectors import DetectorChain
from .dockerfile import DOCKERFILE_NAME, try_parse_dockerfile
from .errors import ValidationError
from .models import BuildStrategyRef, ImageRef, SourceRef, StrategyKind
from .resolvers import Resolver, parse_image_reference
from .source import SnapshotProvider

logger = logging.getLogger(__name__)

# Records the FROM image of a Dockerfile on the output image reference.
BASE_IMAGE_LABEL = "io.appgen.base-image"


def _join_context(base: str, context: str) -> str:
    """Join *context* under *base*, rejecting absolute or escaping paths."""
    path = PurePosixPath(context.strip())
    if path.is_absolute() or ".." in path.parts:
        raise ValidationError(
            "docker context", f"{context!r} must be a relative path inside the source"
        )
    joined = PurePosixPath(base) / path if base else path
    text = joined.as_posix()
    return "" if text == "." else text


class BuildStrategyRefGenerator:
    """Produces :class:`BuildStrategyRef` objects for a source.

    Args:
        resolver: Resolver used to name builder images.
        detectors: Detector chain; defaults to the standard detectors.
        snapshots: Provider that reads (or fetches) the source for detection.
    """

    def __init__(
        self,
        resolver: Resolver,
        detectors: DetectorChain | None = None,
        snapshots: SnapshotProvider | None = None,
    ) -> None:
        self.resolver = resolver
        self.detectors = detectors or DetectorChain()
        self.snapshots = snapshots or SnapshotProvider()

    # -- Public API --------------------------------------------------------

    async def generate(
        self,
        source: SourceRef,
        docker_context: str | None = None,
        builder_image: str | None = None,
        *,
        no_cache: bool = False,
        incremental: bool = False,
        build_only: bool = False,
    ) -> BuildStrategyRef:
        """Pick the strategy for *source*, honouring overrides first."""
        options = {"no_cache": no_cache, "incremental": incremental, "build_only": build_only}
        if docker_context:
            if builder_image:
                logger.warning(
                    "Both a docker context and a builder image were given; using the docker context"
                )
            logger.debug("Build strategy from docker context %r", docker_context)
            return await self.from_docker_context(source, docker_context, **options)
        if builder_image:
            logger.debug("Build strategy from builder image %r", builder_image)
            return await self.from_builder_image(builder_image, source, **options)
        logger.debug("Detecting build strategy for %s", source.name)
        return await self.from_source_ref(source, **options)

    async def from_docker_context(
        self, source: SourceRef, context: str, **options: bool
    ) -> BuildStrategyRef:
        """Force a Docker build rooted at *context* (relative to the source)."""
        context_dir = _join_context(source.context_dir, context)
        dockerfile = None
        local = source.local_dir
        if local is not None:
            candidate = local / context_dir / DOCKERFILE_NAME
            if candidate.is_file():
                dockerfile = candidate.read_text(encoding="utf-8", errors="replace")
            else:
                logger.warning("No %s found in docker context %s", DOCKERFILE_NAME, candidate.parent)
        return BuildStrategyRef(
            kind=StrategyKind.DOCKER,
            base=self._dockerfile_image(source, dockerfile),
            context_dir=context_dir,
            **options,
        )

    async def from_builder_image(
        self, name: str, source: SourceRef | None = None, **options: bool
    ) -> BuildStrategyRef:
        """Force a builder-image build with the image resolved from *name*."""
        parse_image_reference(name)
        image = await self.resolver.resolve(name)
        return BuildStrategyRef(
            kind=StrategyKind.SOURCE,
            base=image,
            context_dir=source.context_dir if source else "",
            **options,
        )

    async def from_source_ref(self, source: SourceRef, **options: bool) -> BuildStrategyRef:
        """Detect the strategy from the contents of *source*.

        Raises:
            NoStrategyMatchError: If no detector matches the source.
            ResolutionError: If the detected builder image cannot be resolved.
        """
        snapshot = await self.snapshots.snapshot(source)
        detection = self.detectors.detect(snapshot, source.name)

        if detection.kind is StrategyKind.DOCKER:
            return BuildStrategyRef(
                kind=StrategyKind.DOCKER,
                base=self._dockerfile_image(source, snapshot.dockerfile),
                context_dir=source.context_dir,
                detector=detection.detector.name,
                **options,
            )

        image = await self.resolver.resolve(detection.builder_image)
        return BuildStrategyRef(
            kind=detection.kind,
            base=image,
            context_dir=source.context_dir,
            detector=detection.detector.name,
            **options,
        )

    # -- Helpers -----------------------------------------------------------

    @staticmethod
    def _dockerfile_image(source: SourceRef, dockerfile: str | None) -> ImageRef:
        """Describe the image a Docker build produces: named after the source,
        exposing the ports declared in its Dockerfile."""
        info = try_parse_dockerfile(dockerfile)
        labels = {BASE_IMAGE_LABEL: info.base_image} if info.base_image else {}
        return ImageRef(
            name=source.name,
            exposed_ports=info.exposed_ports,
            labels=labels,
            source="dockerfile",
        )

