"""Pydantic v2 models for the generation pipeline.

Defines the immutable references that flow between stages: where the source
lives (:class:`SourceRef`), which concrete image was resolved
(:class:`ImageRef`) and how the source will be built
(:class:`BuildStrategyRef`).  All of them are frozen once constructed.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import ValidationError

# Image label a builder uses to declare that its output cannot be run directly.
NON_RUNNABLE_LABEL = "io.appgen.non-runnable"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class StrategyKind(str, Enum):
    """Build strategy kinds. Exactly one is chosen per pipeline."""
    DOCKER = "Docker"
    SOURCE = "Source"
    CUSTOM = "Custom"


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------

class Port(BaseModel):
    """A container port as declared by an image or a Dockerfile."""
    model_config = ConfigDict(frozen=True)

    number: int = Field(..., ge=1, le=65535)
    protocol: str = Field(default="TCP")

    @classmethod
    def parse(cls, value: str | int) -> "Port":
        """Parse ``"8080"``, ``"8080/tcp"`` or ``8080`` into a ``Port``.

        Raises:
            ValidationError: If the value is not a valid port specification.
        """
        text = str(value).strip()
        number, _, protocol = text.partition("/")
        if not number.isdigit() or not 1 <= int(number) <= 65535:
            raise ValidationError("port", f"{text!r} is not a port between 1 and 65535")
        protocol = (protocol or "tcp").upper()
        if protocol not in ("TCP", "UDP", "SCTP"):
            raise ValidationError("port", f"unsupported protocol {protocol!r}")
        return cls(number=int(number), protocol=protocol)

    def __str__(self) -> str:
        return f"{self.number}/{self.protocol.lower()}"


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------

class SourceRef(BaseModel):
    """Normalised descriptor of a source repository or directory."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Logical name used for generated objects")
    origin: str = Field(..., description="Repository URL or local directory path")
    ref: str = Field(default="", description="Branch, tag or commit to build")
    context_dir: str = Field(default="", description="Sub-path inside the source")
    is_remote: bool = Field(default=False, description="Whether origin is a repository URL")
    directory: str = Field(default="", description="Local checkout or directory, if any")

    @property
    def local_dir(self) -> Optional[Path]:
        """The local directory holding the source, or ``None`` when only remote."""
        return Path(self.directory) if self.directory else None


class ImageRef(BaseModel):
    """A concrete, resolved container image reference."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    namespace: str = Field(default="")
    registry: str = Field(default="", description="Registry host the image is pulled from")
    tag: str = Field(default="latest")
    exposed_ports: tuple[Port, ...] = Field(default=())
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    image_id: str = Field(default="")
    source: str = Field(default="", description="Which backend produced this reference")

    @property
    def repository(self) -> str:
        """``namespace/name`` without registry or tag."""
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @property
    def pull_spec(self) -> str:
        """Full pull specification, e.g. ``registry.io/ns/name:tag``."""
        spec = self.repository
        if self.registry:
            spec = f"{self.registry}/{spec}"
        if not self.tag:
            return spec
        # Digests are addressed with "@", tags with ":".
        return f"{spec}@{self.tag}" if ":" in self.tag else f"{spec}:{self.tag}"

    @property
    def runnable(self) -> bool:
        """Whether containers may be run from this image (builders may opt out)."""
        return self.labels.get(NON_RUNNABLE_LABEL, "").lower() not in ("true", "1", "yes")

    def with_ports(self, ports: list[Port]) -> "ImageRef":
        """Return a copy exposing exactly *ports*."""
        return self.model_copy(update={"exposed_ports": tuple(ports)})


class BuildStrategyRef(BaseModel):
    """The chosen build strategy plus what is needed to execute it."""
    model_config = ConfigDict(frozen=True)

    kind: StrategyKind
    base: Optional[ImageRef] = Field(default=None, description="Builder or output image")
    context_dir: str = Field(default="")
    no_cache: bool = Field(default=False)
    incremental: bool = Field(default=False)
    build_only: bool = Field(default=False)
    detector: str = Field(default="", description="Name of the detector that matched, if any")
