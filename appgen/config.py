"""appgen configuration.

Typed configuration for the generation pipeline. All settings use Pydantic v2
models so they can be validated at construction time and serialised to/from
JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

DEFAULT_NAMESPACE = "default"

# Detector name -> builder image used when that detector matches.
DEFAULT_BUILDERS: dict[str, str] = {
    "ruby": "openshift/ruby-20-centos",
    "jee": "openshift/wildfly-8-centos",
    "nodejs": "openshift/nodejs-010-centos",
    "python": "openshift/python-33-centos",
    "php": "openshift/php-55-centos",
    "perl": "openshift/perl-516-centos",
}


class DockerConfig(BaseModel):
    """Connection settings for the local Docker engine."""

    enabled: bool = Field(default=True, description="Include the local image resolver")
    socket_path: str = Field(default="/var/run/docker.sock")
    timeout: int = Field(default=10, ge=1, description="Per-request timeout in seconds")


class ClusterConfig(BaseModel):
    """Connection settings for the cluster API (image stream lookups)."""

    server: str = Field(default="", description="API server URL; empty disables the resolver")
    token: str = Field(default="")
    verify_tls: bool = Field(default=True)
    timeout: int = Field(default=10, ge=1)

    @property
    def enabled(self) -> bool:
        return bool(self.server)


class RegistryConfig(BaseModel):
    """Settings for the remote registry resolver."""

    enabled: bool = Field(default=True)
    url: str = Field(default="https://registry-1.docker.io")
    timeout: int = Field(default=30, ge=1)


class Config(BaseModel):
    """Global appgen configuration.

    Instances are typically created once by the CLI entry point and passed to
    :func:`appgen.generate.image_resolver_from_config` and
    :class:`appgen.strategy.BuildStrategyRefGenerator`.
    """

    namespace: str = Field(default="", description="Caller's own namespace, searched first")
    default_namespace: str = Field(default=DEFAULT_NAMESPACE, min_length=1)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    builders: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_BUILDERS))
    output_format: Literal["json", "yaml"] = Field(default="json")

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            APPGEN_NAMESPACE, APPGEN_DEFAULT_NAMESPACE, APPGEN_DOCKER_ENABLED,
            APPGEN_DOCKER_SOCKET, APPGEN_CLUSTER_SERVER, APPGEN_CLUSTER_TOKEN,
            APPGEN_REGISTRY_ENABLED, APPGEN_REGISTRY_URL, APPGEN_OUTPUT_FORMAT,
            APPGEN_BUILDER_<DETECTOR> (e.g. APPGEN_BUILDER_RUBY).
        """
        docker_kwargs: dict[str, Any] = {}
        if os.environ.get("APPGEN_DOCKER_ENABLED"):
            docker_kwargs["enabled"] = _env_flag(os.environ["APPGEN_DOCKER_ENABLED"])
        if os.environ.get("APPGEN_DOCKER_SOCKET"):
            docker_kwargs["socket_path"] = os.environ["APPGEN_DOCKER_SOCKET"]

        cluster_kwargs: dict[str, Any] = {}
        if os.environ.get("APPGEN_CLUSTER_SERVER"):
            cluster_kwargs["server"] = os.environ["APPGEN_CLUSTER_SERVER"]
        if os.environ.get("APPGEN_CLUSTER_TOKEN"):
            cluster_kwargs["token"] = os.environ["APPGEN_CLUSTER_TOKEN"]

        registry_kwargs: dict[str, Any] = {}
        if os.environ.get("APPGEN_REGISTRY_ENABLED"):
            registry_kwargs["enabled"] = _env_flag(os.environ["APPGEN_REGISTRY_ENABLED"])
        if os.environ.get("APPGEN_REGISTRY_URL"):
            registry_kwargs["url"] = os.environ["APPGEN_REGISTRY_URL"]

        builders = dict(DEFAULT_BUILDERS)
        prefix = "APPGEN_BUILDER_"
        for key, value in os.environ.items():
            if key.startswith(prefix) and value:
                builders[key[len(prefix):].lower()] = value

        return cls(
            namespace=os.environ.get("APPGEN_NAMESPACE", ""),
            default_namespace=os.environ.get("APPGEN_DEFAULT_NAMESPACE") or DEFAULT_NAMESPACE,
            docker=DockerConfig(**docker_kwargs),
            cluster=ClusterConfig(**cluster_kwargs),
            registry=RegistryConfig(**registry_kwargs),
            builders=builders,
            output_format=os.environ.get("APPGEN_OUTPUT_FORMAT", "json"),
        )


def _env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}
