"""Generate build and deployment configuration from a source repository.

Docker builds -- if a Dockerfile is present at the root of the source (or of
the given docker context), a Docker build is generated and the ports in its
``EXPOSE`` directives become services.

Source builds -- otherwise the source is classified (Ruby, JEE, Node.js, ...)
and the matching builder image is resolved through the image resolver chain:
local Docker engine, then cluster image streams, then the remote registry.
The builder image's exposed ports become services.

A ``--port`` replaces whatever ports were detected.

Usage::

    python -m appgen                                    # current directory
    python -m appgen ./repo/dir
    python -m appgen https://github.com/openshift/ruby-hello-world.git
    python -m appgen --builder-image=openshift/ruby-20-centos -e RACK_ENV=production
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Iterable, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .clients import ClusterImageClient, DockerEngineClient, RegistryClient
from .config import Config
from .detectors import DetectorChain
from .encoder import FORMATS, encode_list
from .errors import AppGenError, ValidationError
from .log import print_error, setup_logging
from .models import ImageRef, Port, SourceRef
from .objects import AcceptFirst, PlatformObject, add_services
from .pipeline import BuildPipeline
from .resolvers import ImageResolverChain, Resolver, build_image_resolver
from .source import SourceRefGenerator, is_remote_repository
from .strategy import BuildStrategyRefGenerator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request model
# ---------------------------------------------------------------------------


class GenerateRequest(BaseModel):
    """Everything the caller can specify for one generation run."""

    source_url: str = Field(default="", description="Remote repository URL")
    source_dir: str = Field(default="", description="Local directory (used when no URL)")
    name: str = Field(default="", description="Override the detected name")
    ref: str = Field(default="", description="Override the detected branch/ref")
    docker_context: str = Field(default="", description="Force a Docker build in this context")
    builder_image: str = Field(default="", description="Force a Source build with this builder")
    port: str = Field(default="", description="Port to expose instead of the detected ones")
    env: dict[str, str] = Field(default_factory=dict)
    no_cache: bool = False
    incremental: bool = False
    build_only: bool = False


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def parse_environment(items: Iterable[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` items (each may be a comma-separated list).

    Later assignments of the same key win.

    Raises:
        ValidationError: If an item is not of the form ``KEY=VALUE``.
    """
    env: dict[str, str] = {}
    for item in items:
        for pair in item.split(","):
            if not pair.strip():
                continue
            key, sep, value = pair.partition("=")
            key = key.strip()
            if not sep or not key or not (key[0].isalpha() or key[0] == "_") or not all(
                c.isalnum() or c == "_" for c in key
            ):
                raise ValidationError(
                    "environment", f"{pair!r} must be of the form KEY=VALUE"
                )
            env[key] = value
    return env


def parse_port(value: str) -> Port:
    """Validate a caller-supplied port override (``8080`` or ``8080/udp``)."""
    return Port.parse(value)


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------


def image_resolver_from_config(config: Config) -> ImageResolverChain:
    """Build the resolver chain from whichever backends *config* enables."""
    docker = (
        DockerEngineClient(config.docker.socket_path, timeout=config.docker.timeout)
        if config.docker.enabled
        else None
    )
    cluster = (
        ClusterImageClient(
            config.cluster.server,
            token=config.cluster.token,
            verify_tls=config.cluster.verify_tls,
            timeout=config.cluster.timeout,
        )
        if config.cluster.enabled
        else None
    )
    registry = (
        RegistryClient(config.registry.url, timeout=config.registry.timeout)
        if config.registry.enabled
        else None
    )
    return build_image_resolver(
        config.namespace,
        docker=docker,
        cluster=cluster,
        registry=registry,
        default_namespace=config.default_namespace,
    )


async def generate_source_ref(
    request: GenerateRequest, sources: Optional[SourceRefGenerator] = None
) -> SourceRef:
    """Resolve the request's source location (URL first, then directory)."""
    sources = sources or SourceRefGenerator()
    name = request.name or None
    ref = request.ref or None
    if request.source_url:
        logger.debug("Generating source reference from URL: %s", request.source_url)
        return sources.from_url(request.source_url, name=name, ref=ref)
    directory = request.source_dir or os.getcwd()
    logger.debug("Generating source reference from directory: %s", directory)
    return await sources.from_directory(directory, name=name, ref=ref)


async def generate_app(
    request: GenerateRequest,
    resolver: Resolver,
    *,
    strategies: Optional[BuildStrategyRefGenerator] = None,
    sources: Optional[SourceRefGenerator] = None,
) -> list[PlatformObject]:
    """Run the whole generation pipeline and return the final object list.

    Raises:
        AppGenError: Any typed pipeline error, unchanged.
    """
    port = parse_port(request.port) if request.port else None

    source = await generate_source_ref(request, sources)
    logger.info("Source reference: %s (%s)", source.name, source.origin)

    strategies = strategies or BuildStrategyRefGenerator(resolver)
    strategy = await strategies.generate(
        source,
        docker_context=request.docker_context or None,
        builder_image=request.builder_image or None,
        no_cache=request.no_cache,
        incremental=request.incremental,
        build_only=request.build_only,
    )
    logger.info("Build strategy: %s", strategy.kind.value)

    if port is not None:
        base = strategy.base or ImageRef(name=source.name)
        strategy = strategy.model_copy(update={"base": base.with_ports([port])})

    pipeline = BuildPipeline.new(source.name, strategy.base, strategy, source)
    pipeline.needs_deployment(request.env)

    acceptor = AcceptFirst()
    objects = pipeline.objects(acceptor)
    return add_services(objects, acceptor)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``python -m appgen``."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="appgen",
        description="Generate build and deployment configuration from a source repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  appgen\n"
            "  appgen ./repo/dir\n"
            "  appgen https://github.com/openshift/ruby-hello-world.git\n"
            "  appgen --builder-image=openshift/ruby-20-centos\n"
        ),
    )
    parser.add_argument("source", nargs="?", default="", help="Directory or repository URL")
    parser.add_argument("--name", default="", help="Name to use for generated objects")
    parser.add_argument("--ref", default="", help="Repository branch/ref to use")
    parser.add_argument("--source-url", default="", help="Repository URL")
    parser.add_argument("--docker-context", default="", help="Context path for a Docker build")
    parser.add_argument("--builder-image", default="", help="Builder image for a Source build")
    parser.add_argument("--port", "-p", default="", help="Port to expose on the deployment")
    parser.add_argument(
        "--environment", "-e",
        action="append",
        default=[],
        help="Environment variables for the deployment: var1=value1,var2=value2",
    )
    parser.add_argument("--namespace", "-n", default=None, help="Namespace searched first for images")
    parser.add_argument("--no-cache", action="store_true", help="Disable the Docker build cache")
    parser.add_argument("--incremental", action="store_true", help="Request incremental builds")
    parser.add_argument("--build-only", action="store_true", help="Do not generate a deployment")
    parser.add_argument("--output", "-o", choices=FORMATS, default=None, help="Output format")
    parser.add_argument("--config", default=None, help="JSON configuration file")
    parser.add_argument("--verbose", "-v", action="count", default=0)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = Config.load(args.config) if args.config else Config.from_env()
    except (OSError, PydanticValidationError) as exc:
        print_error(f"Cannot load configuration: {exc}")
        sys.exit(1)

    try:
        if args.namespace is not None:
            config = config.model_copy(update={"namespace": args.namespace})

        source_url = args.source_url
        source_dir = ""
        if args.source:
            if is_remote_repository(args.source):
                source_url = source_url or args.source
            else:
                source_dir = args.source

        request = GenerateRequest(
            source_url=source_url,
            source_dir=source_dir,
            name=args.name,
            ref=args.ref,
            docker_context=args.docker_context,
            builder_image=args.builder_image,
            port=args.port,
            env=parse_environment(args.environment),
            no_cache=args.no_cache,
            incremental=args.incremental,
            build_only=args.build_only,
        )
        strategies = BuildStrategyRefGenerator(
            image_resolver_from_config(config),
            detectors=DetectorChain(builders=config.builders),
        )
        objects = asyncio.run(
            generate_app(request, strategies.resolver, strategies=strategies)
        )
        output = encode_list(objects, args.output or config.output_format)
    except AppGenError as exc:
        print_error(str(exc))
        sys.exit(1)

    sys.stdout.write(output)


if __name__ == "__main__":
    main()
