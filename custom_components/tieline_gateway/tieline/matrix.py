"""Schema-tolerant parsing of the gateway matrix feature document.

The gateway reports its routable sources, destinations and presets as a JSON
document whose exact layout varies between firmware releases. This module
extracts ordered choice lists conservatively and refuses to publish partial
capability sets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, cast

from .exceptions import TielineDiscoveryError
from .util import clean_text

FEATURE_SOURCES = "sources"
FEATURE_DESTINATIONS = "destinations"
FEATURE_PRESETS = "presets"

FEATURE_TYPES: tuple[str, ...] = (FEATURE_SOURCES, FEATURE_DESTINATIONS, FEATURE_PRESETS)

# -----------------------------------------------------------------------------
# Raw Containers
# -----------------------------------------------------------------------------

RAW_CONTAINER_KEYS: tuple[str, ...] = ("data", "matrix", "result")

_FEATURE_ALIASES: dict[str, tuple[str, ...]] = {
    FEATURE_SOURCES: ("sources", "inputs"),
    FEATURE_DESTINATIONS: ("destinations", "outputs"),
    FEATURE_PRESETS: ("presets", "salvos"),
}

_ROUTES_ALIASES: tuple[str, ...] = ("routes", "crosspoints")

_LABEL_KEYS: tuple[str, ...] = ("name", "label", "id")


@dataclass(frozen=True)
class MatrixFeatures:
    """Discovered routing capabilities.

    Attributes:
        variables: Capability type -> ordered list of choice values.
        routes: Destination -> currently routed source.
    """

    variables: dict[str, list[str]] = field(default_factory=dict)
    routes: dict[str, str] = field(default_factory=dict)

    def choices(self, feature_type: str) -> list[str]:
        return list(self.variables.get(feature_type, []))


def find_in_raw_containers(raw: Mapping[str, Any], key: str) -> Any | None:
    """Find a key in a raw payload, supporting common nested containers.

    Args:
        raw: Raw feature document.
        key: Key to look up.

    Returns:
        The value if found at the top level or inside a known container.
    """
    direct = raw.get(key)
    if direct is not None:
        return direct

    for container_key in RAW_CONTAINER_KEYS:
        container_any: Any = raw.get(container_key)
        if isinstance(container_any, Mapping) and key in container_any:
            return cast(Mapping[str, Any], container_any).get(key)

    return None


def _find_any(raw: Mapping[str, Any], keys: Iterable[str]) -> Any | None:
    for key in keys:
        value = find_in_raw_containers(raw, key)
        if value is not None:
            return value
    return None


def _label_of(item: Any) -> str | None:
    if isinstance(item, Mapping):
        mapping = cast(Mapping[str, Any], item)
        for key in _LABEL_KEYS:
            label = clean_text(mapping.get(key))
            if label:
                return label
        return None
    return clean_text(item)


def choice_list(value: Any) -> list[str]:
    """Coerce a raw capability value to an ordered, de-duplicated label list.

    Items may be strings, numbers, or objects carrying `name`/`label`/`id`.
    Blank items are dropped and the first occurrence of a label wins.
    """
    if not isinstance(value, list):
        return []
    out: list[str] = []
    seen: set[str] = set()
    for item_any in cast(list[Any], value):
        label = _label_of(item_any)
        if not label or label in seen:
            continue
        seen.add(label)
        out.append(label)
    return out


def _routes_from(value: Any) -> dict[str, str]:
    routes: dict[str, str] = {}
    if isinstance(value, Mapping):
        for dest_any, src_any in cast(Mapping[Any, Any], value).items():
            dest = clean_text(dest_any)
            src = _label_of(src_any)
            if dest and src:
                routes[dest] = src
        return routes

    if isinstance(value, list):
        for item_any in cast(list[Any], value):
            if not isinstance(item_any, Mapping):
                continue
            item = cast(Mapping[str, Any], item_any)
            dest = _label_of(item.get("destination"))
            src = _label_of(item.get("source"))
            if dest and src:
                routes[dest] = src
    return routes


def parse_matrix_features(obj: Any) -> MatrixFeatures:
    """Parse the matrix feature document.

    Args:
        obj: Decoded JSON document.

    Returns:
        Parsed capabilities. Routes referencing unknown sources or
        destinations are dropped.

    Raises:
        TielineDiscoveryError: If the document is not an object or does not
            describe both sources and destinations.
    """
    if not isinstance(obj, Mapping):
        raise TielineDiscoveryError("Matrix feature response was not a JSON object")
    raw = cast(Mapping[str, Any], obj)

    variables: dict[str, list[str]] = {}
    for feature_type in FEATURE_TYPES:
        variables[feature_type] = choice_list(
            _find_any(raw, _FEATURE_ALIASES[feature_type])
        )

    if not variables[FEATURE_SOURCES] or not variables[FEATURE_DESTINATIONS]:
        raise TielineDiscoveryError(
            "Matrix feature response did not list sources and destinations"
        )

    sources = set(variables[FEATURE_SOURCES])
    destinations = set(variables[FEATURE_DESTINATIONS])
    routes = {
        dest: src
        for dest, src in _routes_from(_find_any(raw, _ROUTES_ALIASES)).items()
        if dest in destinations and src in sources
    }

    return MatrixFeatures(variables=variables, routes=routes)
