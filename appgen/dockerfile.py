"""Minimal Dockerfile parsing.

Only the instructions the generator cares about are interpreted: the last
``FROM`` (the final build stage) and every ``EXPOSE`` in that stage.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .errors import ValidationError
from .models import Port

DOCKERFILE_NAME = "Dockerfile"

_INSTRUCTION = re.compile(r"^\s*([A-Za-z]+)\s+(.*)$")


@dataclass(frozen=True)
class DockerfileInfo:
    """The parts of a Dockerfile relevant to object generation."""

    base_image: str = ""
    exposed_ports: tuple[Port, ...] = field(default_factory=tuple)


def _logical_lines(content: str) -> list[str]:
    """Join backslash continuations and drop comments and blank lines."""
    lines: list[str] = []
    buffer = ""
    for raw in content.splitlines():
        stripped = raw.strip()
        if not buffer and (not stripped or stripped.startswith("#")):
            continue
        if stripped.startswith("#"):
            continue
        if stripped.endswith("\\"):
            buffer += stripped[:-1] + " "
            continue
        buffer += stripped
        lines.append(buffer)
        buffer = ""
    if buffer.strip():
        lines.append(buffer)
    return lines


def _expose_ports(token: str) -> list[Port]:
    """Expand one ``EXPOSE`` argument; ``8000-8002/udp`` yields three ports."""
    spec, slash, protocol = token.partition("/")
    if "-" not in spec:
        return [Port.parse(token)]
    start_text, _, end_text = spec.partition("-")
    suffix = slash + protocol
    start = Port.parse(start_text + suffix)
    end = Port.parse(end_text + suffix)
    if end.number < start.number:
        raise ValidationError("port", f"{token!r} is a reversed port range")
    return [
        Port(number=number, protocol=start.protocol)
        for number in range(start.number, end.number + 1)
    ]


def parse_dockerfile(content: str) -> DockerfileInfo:
    """Parse Dockerfile *content*.

    ``EXPOSE`` arguments that reference build variables (``$PORT``) are
    skipped since their value is unknown until build time.  Port ranges
    (``8000-8010``) are expanded into one port per number.

    Raises:
        ValidationError: If an ``EXPOSE`` argument is a literal but not a port
            or port range.
    """
    base_image = ""
    ports: list[Port] = []

    for line in _logical_lines(content):
        match = _INSTRUCTION.match(line)
        if not match:
            continue
        instruction, args = match.group(1).upper(), match.group(2).strip()
        if instruction == "FROM":
            # A new stage starts; only the final stage's ports are exposed.
            tokens = [t for t in args.split() if not t.startswith("--")]
            base_image = tokens[0] if tokens else ""
            ports = []
        elif instruction == "EXPOSE":
            for token in args.split():
                if "$" in token:
                    continue
                for port in _expose_ports(token):
                    if port not in ports:
                        ports.append(port)

    return DockerfileInfo(base_image=base_image, exposed_ports=tuple(ports))


def try_parse_dockerfile(content: str | None) -> DockerfileInfo:
    """Like :func:`parse_dockerfile` but returns an empty result for ``None``."""
    if content is None:
        return DockerfileInfo()
    return parse_dockerfile(content)
