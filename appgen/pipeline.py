"""Build pipeline assembly.

A :class:`BuildPipeline` ties a source, a build strategy and its base image
together, decides whether the built image also needs a deployment, and
renders the draft objects (image stream, build config and, optionally, a
deployment config) through an acceptance policy.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from .errors import PipelineConsistencyError
from .models import BuildStrategyRef, ImageRef, SourceRef, StrategyKind
from .objects import (
    Acceptor,
    BuildConfig,
    DeploymentConfig,
    ImageStream,
    PlatformObject,
)

logger = logging.getLogger(__name__)


def merge_environment(
    base: Mapping[str, str] | None, override: Mapping[str, str] | None
) -> dict[str, str]:
    """Merge two variable mappings; on conflicting keys *override* wins.

    Example::

        merge_environment({"A": "1"}, {"A": "2", "B": "3"}) -> {"A": "2", "B": "3"}
    """
    merged = dict(base or {})
    merged.update(override or {})
    return merged


class BuildPipeline:
    """Draft of the objects needed to build (and maybe run) one source.

    Attributes:
        name: Name shared by every generated object.
        source: Where the code comes from.
        strategy: How the code is built.
        base_image: Builder image (Source/Custom) or output image (Docker).
        deployment: Whether a deployment config is emitted; computed by
            :meth:`needs_deployment`.
        environment: Variables for the runtime container.
    """

    def __init__(
        self,
        name: str,
        source: SourceRef,
        strategy: BuildStrategyRef,
        base_image: Optional[ImageRef] = None,
    ) -> None:
        self.name = name
        self.source = source
        self.strategy = strategy
        self.base_image = base_image
        self.deployment = False
        self.environment: dict[str, str] = {}

    @classmethod
    def new(
        cls,
        name: str,
        base_image: Optional[ImageRef],
        strategy: BuildStrategyRef,
        source: SourceRef,
    ) -> "BuildPipeline":
        """Create a pipeline after checking the inputs fit together.

        Raises:
            PipelineConsistencyError: If the name is empty, a builder-image
                strategy has no base image, the base image differs from the
                strategy's, or the strategy builds outside the source's
                context directory.
        """
        if not name:
            raise PipelineConsistencyError("A pipeline needs a non-empty name")
        if strategy.kind in (StrategyKind.SOURCE, StrategyKind.CUSTOM) and base_image is None:
            raise PipelineConsistencyError(
                f"{strategy.kind.value} strategy for {name!r} requires a base image"
            )
        if base_image is not None and strategy.base is not None and base_image != strategy.base:
            raise PipelineConsistencyError(
                f"Base image {base_image.pull_spec} does not match the strategy's "
                f"{strategy.base.pull_spec}"
            )
        if source.context_dir and not _within(strategy.context_dir, source.context_dir):
            raise PipelineConsistencyError(
                f"Strategy context {strategy.context_dir!r} lies outside the source "
                f"context {source.context_dir!r}"
            )
        logger.debug("New %s pipeline %s for %s", strategy.kind.value, name, source.origin)
        return cls(name, source, strategy, base_image)

    # ------------------------------------------------------------------
    # Deployment decision
    # ------------------------------------------------------------------

    def needs_deployment(self, env: Mapping[str, str] | None = None) -> bool:
        """Decide whether the built image is deployed and merge *env* into it.

        Builder images that declare themselves non-runnable and strategies
        marked build-only need no deployment; everything else does.  The
        caller's *env* is merged over the variables carried by the base image.
        """
        builder_not_runnable = (
            self.strategy.kind is StrategyKind.SOURCE
            and self.base_image is not None
            and not self.base_image.runnable
        )
        if self.strategy.build_only or builder_not_runnable:
            logger.info("Pipeline %s is build-only; no deployment generated", self.name)
            self.deployment = False
            return False

        carried = self.base_image.env if self.base_image is not None else {}
        self.deployment = True
        self.environment = merge_environment(carried, env)
        return True

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    @property
    def output_tag(self) -> str:
        return f"{self.name}:latest"

    def _labels(self) -> dict[str, str]:
        return {"app": self.name}

    def _build_config(self) -> BuildConfig:
        base = self.base_image
        from_image = ""
        from_kind = "DockerImage"
        if self.strategy.kind is not StrategyKind.DOCKER and base is not None:
            if base.source == "cluster":
                from_kind = "ImageStreamTag"
                from_image = f"{base.name}:{base.tag}"
            else:
                from_image = base.pull_spec
        return BuildConfig(
            name=self.name,
            labels=self._labels(),
            strategy=self.strategy.kind,
            source_uri=self.source.origin,
            source_ref=self.source.ref,
            context_dir=self.strategy.context_dir,
            from_image=from_image,
            from_kind=from_kind,
            output_image=self.output_tag,
            no_cache=self.strategy.no_cache,
            incremental=self.strategy.incremental,
        )

    def _deployment_config(self) -> DeploymentConfig:
        ports = self.base_image.exposed_ports if self.base_image is not None else ()
        return DeploymentConfig(
            name=self.name,
            labels=self._labels(),
            image=self.output_tag,
            ports=ports,
            env=dict(self.environment),
        )

    def objects(self, acceptor: Acceptor) -> list[PlatformObject]:
        """Return the draft objects the *acceptor* keeps, in creation order."""
        drafts: list[PlatformObject] = [
            ImageStream(name=self.name, labels=self._labels()),
            self._build_config(),
        ]
        if self.deployment:
            drafts.append(self._deployment_config())
        return acceptor.filter(drafts)


def _within(path: str, parent: str) -> bool:
    return path == parent or path.startswith(parent.rstrip("/") + "/")
