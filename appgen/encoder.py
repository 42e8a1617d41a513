"""Serialisation of the generated object list.

Objects are wrapped in a versioned, self-describing ``List`` envelope and
rendered as JSON or YAML.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

import yaml

from .errors import ValidationError
from .objects import API_VERSION, PlatformObject

FORMATS = ("json", "yaml")


def to_list(objects: Iterable[PlatformObject]) -> dict[str, Any]:
    """Wrap *objects* in a ``List`` envelope."""
    return {
        "kind": "List",
        "apiVersion": API_VERSION,
        "items": [obj.to_dict() for obj in objects],
    }


def encode_list(objects: Iterable[PlatformObject], fmt: str = "json") -> str:
    """Render *objects* as a ``List`` in the requested format.

    Raises:
        ValidationError: If *fmt* is not ``"json"`` or ``"yaml"``.
    """
    envelope = to_list(objects)
    if fmt == "json":
        return json.dumps(envelope, indent=2) + "\n"
    if fmt == "yaml":
        return yaml.safe_dump(envelope, sort_keys=False, default_flow_style=False)
    raise ValidationError("output format", f"{fmt!r} is not one of {', '.join(FORMATS)}")
