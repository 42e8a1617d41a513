"""Platform objects, acceptance policies and service synthesis.

The generated objects are plain Pydantic models that know their ``kind``,
their ``name`` and how to render themselves with :meth:`to_dict`.  Objects
are keyed by ``(kind, name)``; an :class:`Acceptor` decides which of several
colliding objects survive.
"""

from __future__ import annotations

from collections import Counter
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Iterable, Optional

from pydantic import BaseModel, Field

from .errors import ValidationError
from .models import Port, StrategyKind

API_VERSION = "v1"


# ---------------------------------------------------------------------------
# Objects
# ---------------------------------------------------------------------------


class PlatformObject(BaseModel):
    """Common base for every generated object."""

    kind: ClassVar[str] = ""

    name: str = Field(..., min_length=1)
    labels: dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        """De-duplication key."""
        return (self.kind, self.name)

    @property
    def exposed_ports(self) -> tuple[Port, ...]:
        """Container ports that should be reachable through a service."""
        return ()

    @property
    def selector(self) -> dict[str, str]:
        """Labels that select the pods this object runs."""
        return {}

    def _metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": self.name}
        if self.labels:
            metadata["labels"] = dict(self.labels)
        return metadata

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "apiVersion": API_VERSION, "metadata": self._metadata()}


class ImageStream(PlatformObject):
    """Tracks the image produced by the build."""

    kind: ClassVar[str] = "ImageStream"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["spec"] = {}
        return data


class BuildConfig(PlatformObject):
    """Build definition: where the source comes from and how to build it."""

    kind: ClassVar[str] = "BuildConfig"

    strategy: StrategyKind
    source_uri: str
    source_ref: str = ""
    context_dir: str = ""
    from_image: str = Field(default="", description="Builder image pull spec")
    from_kind: str = Field(default="DockerImage")
    output_image: str = Field(default="", description="Image stream tag the build pushes to")
    no_cache: bool = False
    incremental: bool = False
    env: dict[str, str] = Field(default_factory=dict)

    def _strategy(self) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.from_image:
            options["from"] = {"kind": self.from_kind, "name": self.from_image}
        if self.strategy is StrategyKind.DOCKER:
            if self.no_cache:
                options["noCache"] = True
            return {"type": "Docker", "dockerStrategy": options}
        if self.incremental:
            options["incremental"] = True
        if self.env:
            options["env"] = _env_list(self.env)
        field = "sourceStrategy" if self.strategy is StrategyKind.SOURCE else "customStrategy"
        return {"type": self.strategy.value, field: options}

    def to_dict(self) -> dict[str, Any]:
        git: dict[str, Any] = {"uri": self.source_uri}
        if self.source_ref:
            git["ref"] = self.source_ref
        source: dict[str, Any] = {"type": "Git", "git": git}
        if self.context_dir:
            source["contextDir"] = self.context_dir

        spec: dict[str, Any] = {
            "triggers": [{"type": "ConfigChange"}],
            "source": source,
            "strategy": self._strategy(),
        }
        if self.from_kind == "ImageStreamTag" and self.from_image:
            spec["triggers"].append({"type": "ImageChange", "imageChange": {}})
        if self.output_image:
            spec["output"] = {"to": {"kind": "ImageStreamTag", "name": self.output_image}}

        data = super().to_dict()
        data["spec"] = spec
        return data


class DeploymentConfig(PlatformObject):
    """Runtime deployment of the built image."""

    kind: ClassVar[str] = "DeploymentConfig"

    image: str = Field(..., description="Image stream tag deployed by the container")
    ports: tuple[Port, ...] = Field(default=())
    env: dict[str, str] = Field(default_factory=dict)
    replicas: int = Field(default=1, ge=0)

    @property
    def exposed_ports(self) -> tuple[Port, ...]:
        return self.ports

    @property
    def selector(self) -> dict[str, str]:
        return {"deploymentconfig": self.name}

    def to_dict(self) -> dict[str, Any]:
        container: dict[str, Any] = {"name": self.name, "image": self.image}
        if self.ports:
            container["ports"] = [
                {"containerPort": p.number, "protocol": p.protocol} for p in self.ports
            ]
        if self.env:
            container["env"] = _env_list(self.env)

        data = super().to_dict()
        data["spec"] = {
            "replicas": self.replicas,
            "selector": self.selector,
            "triggers": [
                {"type": "ConfigChange"},
                {
                    "type": "ImageChange",
                    "imageChangeParams": {
                        "automatic": True,
                        "containerNames": [self.name],
                        "from": {"kind": "ImageStreamTag", "name": self.image},
                    },
                },
            ],
            "template": {
                "metadata": {"labels": {**self.labels, **self.selector}},
                "spec": {"containers": [container]},
            },
        }
        return data


class Service(PlatformObject):
    """Exposes one container port of the pods matching ``service_selector``."""

    kind: ClassVar[str] = "Service"

    port: Port
    service_selector: dict[str, str] = Field(default_factory=dict)

    @property
    def signature(self) -> tuple[Port, frozenset[tuple[str, str]]]:
        return (self.port, frozenset(self.service_selector.items()))

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["spec"] = {
            "selector": dict(self.service_selector),
            "ports": [
                {
                    "name": f"{self.port.number}-{self.port.protocol.lower()}",
                    "port": self.port.number,
                    "targetPort": self.port.number,
                    "protocol": self.port.protocol,
                }
            ],
        }
        return data


def _env_list(env: dict[str, str]) -> list[dict[str, str]]:
    return [{"name": key, "value": value} for key, value in env.items()]


# ---------------------------------------------------------------------------
# Acceptance policies
# ---------------------------------------------------------------------------


class Acceptor(ABC):
    """Decides whether a candidate object becomes part of the output."""

    @abstractmethod
    def accept(self, obj: PlatformObject) -> bool:
        """Return ``True`` to keep *obj*."""

    def filter(self, objects: Iterable[PlatformObject]) -> list[PlatformObject]:
        return [obj for obj in objects if self.accept(obj)]


class AcceptAll(Acceptor):
    """Keeps every object, duplicates included."""

    def accept(self, obj: PlatformObject) -> bool:
        return True


class AcceptFirst(Acceptor):
    """Keeps the first object seen for each ``(kind, name)``; drops later ones."""

    def __init__(self) -> None:
        self.seen: set[tuple[str, str]] = set()

    def accept(self, obj: PlatformObject) -> bool:
        if obj.key in self.seen:
            return False
        self.seen.add(obj.key)
        return True


class RejectDuplicates(Acceptor):
    """Like :class:`AcceptFirst`, but a repeated key is an error."""

    def __init__(self) -> None:
        self.seen: set[tuple[str, str]] = set()

    def accept(self, obj: PlatformObject) -> bool:
        if obj.key in self.seen:
            raise ValidationError("objects", f"duplicate {obj.kind} named {obj.name!r}")
        self.seen.add(obj.key)
        return True


# ---------------------------------------------------------------------------
# Service synthesis
# ---------------------------------------------------------------------------


def add_services(
    objects: Iterable[PlatformObject],
    acceptor: Optional[Acceptor] = None,
) -> list[PlatformObject]:
    """Append one :class:`Service` per distinct (port, selector) pair.

    Every object that exposes ports and carries a selector contributes.
    Pairs already covered by a service in *objects* are skipped, as are
    services the *acceptor* rejects.  When no acceptor is given an
    :class:`AcceptFirst` seeded with the existing objects is used.
    Ports sharing a number carry the protocol in the service name.
    """
    result = list(objects)
    if acceptor is None:
        acceptor = AcceptFirst()
        for obj in result:
            acceptor.accept(obj)

    signatures = {obj.signature for obj in result if isinstance(obj, Service)}
    for obj in list(result):
        ports, selector = obj.exposed_ports, obj.selector
        if not ports or not selector:
            continue
        numbers = Counter(port.number for port in ports)
        for port in ports:
            if len(ports) == 1:
                name = obj.name
            elif numbers[port.number] > 1:
                name = f"{obj.name}-{port.number}-{port.protocol.lower()}"
            else:
                name = f"{obj.name}-{port.number}"
            service = Service(
                name=name,
                labels=dict(obj.labels),
                port=port,
                service_selector=dict(selector),
            )
            if service.signature in signatures or not acceptor.accept(service):
                continue
            signatures.add(service.signature)
            result.append(service)
    return result
