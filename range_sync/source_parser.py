import logging
from typing import Any, Callable, Iterable, List, Set, Tuple

from .cidr_validator import is_valid_cidr
from .models import AddressRange

logger = logging.getLogger(__name__)

# Top-level properties that hold a flat list of prefixes (or prefix objects).
ARRAY_PROPERTY_NAMES = (
    "prefixes",
    "hubPrefixes",
    "ranges",
    "cidrs",
    "ips",
    "IPs",
    "ipv4",
    "ipv6",
    "addresses",
    "items",
    "values",
)

# Object fields that typically carry a prefix, in lookup order.
PREFIX_FIELD_NAMES = (
    "ip_prefix",
    "ipv6_prefix",
    "ipPrefix",
    "ipv4Prefix",
    "ipv6Prefix",
    "cidr",
    "range",
    "prefix",
    "subnet",
    "network",
    "ip",
    "address",
    "ipAddress",
)

MAX_WALK_DEPTH = 32


def _add_if_valid(value: object, out: Set[AddressRange]) -> None:
    if is_valid_cidr(value):
        out.add(AddressRange(value))  # type: ignore[arg-type]


def _collect_from_items(items: Iterable[Any]) -> Set[AddressRange]:
    """Strings are taken as-is; objects contribute their prefix fields."""
    found: Set[AddressRange] = set()
    for item in items:
        if isinstance(item, str):
            _add_if_valid(item, found)
        elif isinstance(item, dict):
            for key in PREFIX_FIELD_NAMES:
                _add_if_valid(item.get(key), found)
    return found


def _shape_named_array(document: Any) -> Set[AddressRange]:
    """{"prefixes": ["1.2.3.0/24", ...]} or {"prefixes": [{"ip_prefix": ...}]}"""
    found: Set[AddressRange] = set()
    if not isinstance(document, dict):
        return found
    for key in ARRAY_PROPERTY_NAMES:
        value = document.get(key)
        if isinstance(value, list):
            found |= _collect_from_items(value)
    return found


def _shape_top_level_array(document: Any) -> Set[AddressRange]:
    """["1.2.3.0/24", ...] or [{"cidr": "1.2.3.0/24"}, ...]"""
    if not isinstance(document, list):
        return set()
    return _collect_from_items(document)


def _shape_data_blob(document: Any) -> Set[AddressRange]:
    """{"data": <one of the shapes above>}"""
    if not isinstance(document, dict) or "data" not in document:
        return set()
    inner = document["data"]
    return _shape_named_array(inner) or _shape_top_level_array(inner)


KNOWN_SHAPES: List[Tuple[str, Callable[[Any], Set[AddressRange]]]] = [
    ("named-array", _shape_named_array),
    ("top-level-array", _shape_top_level_array),
    ("data-blob", _shape_data_blob),
]


def walk_for_ranges(node: Any, out: Set[AddressRange], depth: int = 0) -> None:
    """Recursively collect every valid CIDR string in an arbitrary JSON graph.

    Depth is bounded by MAX_WALK_DEPTH; deeper nodes are ignored.
    """
    if depth > MAX_WALK_DEPTH:
        return

    if isinstance(node, str):
        _add_if_valid(node, out)
    elif isinstance(node, dict):
        for key, value in node.items():
            # Some feeds key objects by the prefix itself.
            _add_if_valid(key, out)
            walk_for_ranges(value, out, depth + 1)
    elif isinstance(node, list):
        for value in node:
            walk_for_ranges(value, out, depth + 1)


def parse_source(document: Any, source_name: str) -> Set[AddressRange]:
    """Extract every address range from one source document.

    Known shapes are tried in order and the first one that yields at least
    one range wins. Otherwise the whole document is walked. Zero results is
    a normal outcome: it is logged and an empty set is returned.
    """
    for shape_name, extractor in KNOWN_SHAPES:
        found = extractor(document)
        if found:
            logger.debug("Source %s matched shape %s (%s ranges)", source_name, shape_name, len(found))
            return found

    found = set()
    walk_for_ranges(document, found)
    if found:
        logger.debug("Source %s parsed by full walk (%s ranges)", source_name, len(found))
    else:
        logger.warning("Source %s returned no recognizable address ranges", source_name)
    return found
