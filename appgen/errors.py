"""Error taxonomy for the generation pipeline.

Every error raised by ``appgen`` derives from :class:`AppGenError` so callers
can catch the whole family at once.  Only :class:`ResolverTransientError` is
ever recovered internally (by :class:`~appgen.resolvers.ImageResolverChain`);
everything else aborts generation and reaches the caller unchanged.
"""

from __future__ import annotations


class AppGenError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(AppGenError):
    """Raised when a caller-supplied name, override or value is malformed."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"Invalid {field}: {message}")


class SourceDetectionError(AppGenError):
    """Raised when the source location is unreadable or cannot be parsed."""

    def __init__(self, location: str, message: str) -> None:
        self.location = location
        super().__init__(f"Cannot use source {location!r}: {message}")


class NoStrategyMatchError(AppGenError):
    """Raised when no override is given and no detector matches the source."""

    def __init__(self, source_name: str, tried: list[str] | None = None) -> None:
        self.source_name = source_name
        self.tried = list(tried or [])
        detail = f" (tried: {', '.join(self.tried)})" if self.tried else ""
        super().__init__(
            f"No build strategy could be detected for source {source_name!r}{detail}. "
            "Specify a builder image or a docker context explicitly."
        )


class ResolverTransientError(AppGenError):
    """A single resolver backend was unreachable.

    Absorbed by the resolver chain; never surfaced on its own.
    """

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"{backend}: {message}")


class ResolverNoMatchError(AppGenError):
    """The backend was reachable but holds no image with the requested name."""

    def __init__(self, backend: str, name: str) -> None:
        self.backend = backend
        self.name = name
        super().__init__(f"{backend}: no match for image {name!r}")


class ResolutionError(AppGenError):
    """Raised when an image name is unresolved after exhausting the chain."""

    def __init__(self, name: str, backends: list[str] | None = None) -> None:
        self.name = name
        self.backends = list(backends or [])
        tried = ", ".join(self.backends) if self.backends else "no resolvers configured"
        super().__init__(f"Unable to resolve image {name!r} ({tried})")


class PipelineConsistencyError(AppGenError):
    """Raised when a build strategy and a source reference do not fit together."""


class ClientUnavailableError(AppGenError):
    """Raised by a collaborator client when its backend cannot be reached."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"{backend} unavailable: {message}")
