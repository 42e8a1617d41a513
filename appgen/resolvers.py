"""Image resolution.

A :class:`Resolver` maps a symbolic image name (``ruby``,
``openshift/ruby-20-centos:latest``, ``quay.io/org/app@sha256:...``) to a
concrete :class:`~appgen.models.ImageRef`.  Three backends are provided:

* :class:`DockerClientResolver` -- exact match in the local Docker image store.
* :class:`ImageStreamResolver` -- image streams in the cluster, probing the
  caller's namespace and then the default namespace.
* :class:`DockerRegistryResolver` -- a remote registry; the catch-all.

:class:`ImageResolverChain` is itself a resolver: it asks each backend in
insertion order and returns the first match.  A backend that is unreachable
is logged and skipped.  Weights are carried along but never consulted.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable

from .clients import ClusterImageClient, DockerEngineClient, RegistryClient
from .config import DEFAULT_NAMESPACE
from .errors import (
    ClientUnavailableError,
    ResolutionError,
    ResolverNoMatchError,
    ResolverTransientError,
    ValidationError,
)
from .models import ImageRef, Port

logger = logging.getLogger(__name__)

DOCKER_HUB_HOSTS = ("docker.io", "index.docker.io", "registry-1.docker.io")

_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")


# ---------------------------------------------------------------------------
# Image names
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageName:
    """A parsed image reference."""

    name: str
    namespace: str = ""
    registry: str = ""
    tag: str = "latest"
    digest: str = ""

    @property
    def repository(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @property
    def reference(self) -> str:
        """The tag or digest used to address the image."""
        return self.digest or self.tag

    def __str__(self) -> str:
        spec = f"{self.registry}/{self.repository}" if self.registry else self.repository
        return f"{spec}@{self.digest}" if self.digest else f"{spec}:{self.tag}"


def parse_image_reference(value: str) -> ImageName:
    """Split an image reference into registry, namespace, name, tag and digest.

    Raises:
        ValidationError: If *value* is not a valid image reference.
    """
    text = value.strip()
    if not text:
        raise ValidationError("image", "image name must not be empty")

    remainder, _, digest = text.partition("@")
    if digest and not _DIGEST.match(digest):
        raise ValidationError("image", f"{value!r} has an invalid digest")

    tag = ""
    last_slash = remainder.rfind("/")
    colon = remainder.rfind(":")
    if colon > last_slash:
        remainder, tag = remainder[:colon], remainder[colon + 1:]
        if not _TAG.match(tag):
            raise ValidationError("image", f"{value!r} has an invalid tag")

    parts = remainder.split("/")
    registry = ""
    if len(parts) > 1 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
        registry = parts.pop(0)

    for component in parts:
        if not _COMPONENT.match(component):
            raise ValidationError("image", f"{value!r} is not a valid image name")

    return ImageName(
        name=parts[-1],
        namespace="/".join(parts[:-1]),
        registry=registry,
        tag=tag or ("" if digest else "latest"),
        digest=digest,
    )


def _ports_from_config(config: dict[str, Any]) -> tuple[Port, ...]:
    ports = [Port.parse(key) for key in (config.get("ExposedPorts") or {})]
    return tuple(sorted(set(ports), key=lambda p: (p.number, p.protocol)))


def _env_from_config(config: dict[str, Any]) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in config.get("Env") or []:
        key, sep, value = item.partition("=")
        if sep and key:
            env[key] = value
    return env


def image_ref_from_config(
    image: ImageName,
    config: dict[str, Any],
    *,
    registry: str = "",
    namespace: str | None = None,
    image_id: str = "",
    source: str = "",
) -> ImageRef:
    """Build an :class:`ImageRef` from a Docker image ``Config`` block."""
    return ImageRef(
        name=image.name,
        namespace=image.namespace if namespace is None else namespace,
        registry=registry or image.registry,
        tag=image.reference,
        exposed_ports=_ports_from_config(config),
        env=_env_from_config(config),
        labels=dict(config.get("Labels") or {}),
        image_id=image_id,
        source=source,
    )


def _normalize_repo_tag(value: str) -> str:
    for prefix in ("docker.io/library/", "docker.io/", "library/"):
        if value.startswith(prefix):
            return value[len(prefix):]
    return value


# ---------------------------------------------------------------------------
# Resolver abstraction
# ---------------------------------------------------------------------------


class Resolver(ABC):
    """Maps an image name to a concrete image reference."""

    backend: str = "resolver"

    @abstractmethod
    async def resolve(self, name: str) -> ImageRef:
        """Return the image for *name*.

        Raises:
            ResolverTransientError: The backend could not be reached.
            ResolverNoMatchError: The backend holds no matching image.
        """


@dataclass(frozen=True)
class WeightedResolver:
    """A resolver paired with a confidence weight (currently informational)."""

    resolver: Resolver
    weight: float = 0.0


class ImageResolverChain(Resolver):
    """Ordered first-match resolution across several backends.

    The order is fixed at construction.  Resolvers are asked one at a time;
    the first successful match is returned verbatim and later resolvers are
    never called for that name.
    """

    backend = "chain"

    def __init__(self, entries: Iterable[WeightedResolver | Resolver] = ()) -> None:
        self._entries: tuple[WeightedResolver, ...] = tuple(
            e if isinstance(e, WeightedResolver) else WeightedResolver(e) for e in entries
        )

    @property
    def entries(self) -> tuple[WeightedResolver, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def resolve(self, name: str) -> ImageRef:
        parse_image_reference(name)
        tried: list[str] = []
        for entry in self._entries:
            backend = entry.resolver.backend
            tried.append(backend)
            try:
                image = await entry.resolver.resolve(name)
            except ResolverTransientError as exc:
                logger.warning("Skipping %s resolver for %s: %s", backend, name, exc)
                continue
            except (ResolverNoMatchError, ResolutionError) as exc:
                logger.debug("No match from %s resolver: %s", backend, exc)
                continue
            logger.info("Resolved %s to %s via %s", name, image.pull_spec, backend)
            return image
        raise ResolutionError(name, tried)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class DockerClientResolver(Resolver):
    """Finds images in the local Docker engine by exact name."""

    backend = "docker"

    def __init__(self, client: DockerEngineClient) -> None:
        self.client = client

    async def resolve(self, name: str) -> ImageRef:
        image = parse_image_reference(name)
        try:
            info = await self.client.inspect_image(str(image))
        except ClientUnavailableError as exc:
            raise ResolverTransientError(self.backend, str(exc)) from exc
        if info is None:
            raise ResolverNoMatchError(self.backend, name)

        if not image.digest:
            wanted = _normalize_repo_tag(str(image))
            repo_tags = {_normalize_repo_tag(t) for t in info.get("RepoTags") or []}
            if wanted not in repo_tags:
                raise ResolverNoMatchError(self.backend, name)

        return image_ref_from_config(
            image,
            info.get("Config") or {},
            image_id=info.get("Id", ""),
            source=self.backend,
        )


class ImageStreamResolver(Resolver):
    """Finds images in cluster image streams.

    Namespaces are searched in a fixed order: the caller's namespace (when
    given) and then the default namespace.  The search list is never empty.
    Streams are looked up by the image name alone, so a namespace component
    in the reference (``openshift/ruby-20-centos``) does not select where
    to look.
    """

    backend = "cluster"

    def __init__(
        self,
        client: ClusterImageClient,
        namespace: str = "",
        default_namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self.client = client
        default = default_namespace or DEFAULT_NAMESPACE
        self.namespaces: tuple[str, ...] = tuple(
            dict.fromkeys(ns for ns in (namespace, default) if ns)
        )

    async def resolve(self, name: str) -> ImageRef:
        image = parse_image_reference(name)
        for namespace in self.namespaces:
            try:
                stream = await self.client.get_image_stream(namespace, image.name)
            except ClientUnavailableError as exc:
                raise ResolverTransientError(self.backend, str(exc)) from exc
            if stream is None:
                continue
            found = await self._match_tag(namespace, image, stream)
            if found is not None:
                return found
        raise ResolverNoMatchError(self.backend, name)

    async def _match_tag(
        self, namespace: str, image: ImageName, stream: dict[str, Any]
    ) -> ImageRef | None:
        status = stream.get("status") or {}
        for tag_event in status.get("tags") or []:
            if tag_event.get("tag") != image.reference or not tag_event.get("items"):
                continue
            latest = tag_event["items"][0]
            image_id = latest.get("image", "")

            config: dict[str, Any] = {}
            if image_id:
                try:
                    details = await self.client.get_image_stream_image(
                        namespace, image.name, image_id
                    )
                except ClientUnavailableError as exc:
                    raise ResolverTransientError(self.backend, str(exc)) from exc
                metadata = ((details or {}).get("image") or {}).get("dockerImageMetadata") or {}
                config = metadata.get("Config") or metadata.get("ContainerConfig") or {}

            repository = status.get("dockerImageRepository", "")
            registry = repository.split("/", 1)[0] if "/" in repository else ""
            return image_ref_from_config(
                image,
                config,
                registry=registry,
                namespace=namespace,
                image_id=image_id,
                source=self.backend,
            )
        return None


class DockerRegistryResolver(Resolver):
    """Looks images up in a remote registry (Docker Hub unless configured)."""

    backend = "registry"

    def __init__(self, client: RegistryClient) -> None:
        self.client = client

    def _client_for(self, image: ImageName) -> RegistryClient:
        if not image.registry or image.registry == self.client.host:
            return self.client
        if image.registry in DOCKER_HUB_HOSTS and self.client.host in DOCKER_HUB_HOSTS:
            return self.client
        host = "registry-1.docker.io" if image.registry in DOCKER_HUB_HOSTS else image.registry
        return self.client.for_host(host)

    async def resolve(self, name: str) -> ImageRef:
        image = parse_image_reference(name)
        client = self._client_for(image)
        repository = image.repository
        if client.host in DOCKER_HUB_HOSTS and not image.namespace:
            repository = f"library/{image.name}"

        try:
            info = await client.get_image(repository, image.reference)
        except ClientUnavailableError as exc:
            raise ResolverTransientError(self.backend, str(exc)) from exc
        if info is None:
            raise ResolverNoMatchError(self.backend, name)

        return image_ref_from_config(
            image,
            info.get("config") or {},
            registry=image.registry or info.get("registry", ""),
            image_id=info.get("digest", ""),
            source=self.backend,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_image_resolver(
    namespace: str = "",
    *,
    docker: DockerEngineClient | None = None,
    cluster: ClusterImageClient | None = None,
    registry: RegistryClient | None = None,
    default_namespace: str = DEFAULT_NAMESPACE,
) -> ImageResolverChain:
    """Assemble the canonical chain from the backends that were configured.

    Order: local Docker engine, cluster image streams, remote registry.
    Backends passed as ``None`` are left out of the chain entirely.
    """
    entries: list[WeightedResolver] = []
    if docker is not None:
        entries.append(WeightedResolver(DockerClientResolver(docker), 1.0))
    if cluster is not None:
        entries.append(
            WeightedResolver(ImageStreamResolver(cluster, namespace, default_namespace), 0.8)
        )
    if registry is not None:
        entries.append(WeightedResolver(DockerRegistryResolver(registry), 0.5))
    return ImageResolverChain(entries)
