"""Build strategy detectors.

A detector is a (predicate, builder) pair: it matches a
:class:`~appgen.source.SourceSnapshot` when any of its marker files sits at the
root of the build context, and names the builder image to use.  The chain
walks the detectors in order and the first match wins, so the Dockerfile
detector at the head of :data:`DEFAULT_DETECTORS` always outranks the language
detectors behind it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from .config import DEFAULT_BUILDERS
from .dockerfile import DOCKERFILE_NAME
from .errors import NoStrategyMatchError
from .models import StrategyKind
from .source import SourceSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Detector:
    """Matches a source by the presence of ecosystem marker files."""

    name: str
    markers: tuple[str, ...]
    kind: StrategyKind = StrategyKind.SOURCE

    def matches(self, snapshot: SourceSnapshot) -> bool:
        return snapshot.has_any(*self.markers)


DOCKER_DETECTOR = Detector("docker", (DOCKERFILE_NAME,), StrategyKind.DOCKER)

DEFAULT_DETECTORS: tuple[Detector, ...] = (
    DOCKER_DETECTOR,
    Detector("ruby", ("Gemfile", "Rakefile", "config.ru")),
    Detector("jee", ("pom.xml",)),
    Detector("nodejs", ("package.json", "app.json")),
    Detector("python", ("requirements.txt", "setup.py", "pyproject.toml")),
    Detector("php", ("index.php", "composer.json")),
    Detector("perl", ("index.pl", "cpanfile")),
)


@dataclass(frozen=True)
class Detection:
    """Outcome of running the chain: the detector that won and its builder image."""

    detector: Detector
    builder_image: str = ""

    @property
    def kind(self) -> StrategyKind:
        return self.detector.kind


class DetectorChain:
    """Ordered, first-match-wins list of detectors.

    Args:
        detectors: Detectors in precedence order.
        builders: Detector name -> builder image for source-strategy detectors.
            A detector without a configured builder is skipped.
    """

    def __init__(
        self,
        detectors: Iterable[Detector] = DEFAULT_DETECTORS,
        builders: Mapping[str, str] | None = None,
    ) -> None:
        self.detectors: tuple[Detector, ...] = tuple(detectors)
        self.builders: dict[str, str] = dict(DEFAULT_BUILDERS if builders is None else builders)

    def detect(self, snapshot: SourceSnapshot, source_name: str = "") -> Detection:
        """Return the first detector matching *snapshot*.

        Raises:
            NoStrategyMatchError: If no detector matches.
        """
        tried: list[str] = []
        for detector in self.detectors:
            tried.append(detector.name)
            if not detector.matches(snapshot):
                continue
            if detector.kind is StrategyKind.DOCKER:
                logger.info("Detected %s build for %s", detector.name, source_name or "source")
                return Detection(detector)
            builder = self.builders.get(detector.name, "")
            if not builder:
                logger.warning("Detector %s matched but has no builder image configured", detector.name)
                continue
            logger.info("Detected %s source, using builder %s", detector.name, builder)
            return Detection(detector, builder)
        raise NoStrategyMatchError(source_name or "source", tried)
