"""
CIDR / address validation for strings found in range-source documents.

Liberal enough for every textual form the feeds emit (bare addresses,
compressed IPv6, non-zero host bits) and strict enough to reject the prose,
hostnames and other garbage met while walking unknown JSON shapes.
"""

import ipaddress
import re
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import IpVersion

# Cheap pre-filter; ipaddress does the real validation.
_CANDIDATE_PATTERN = re.compile(r"^[0-9A-Fa-f:.]+(?:/\d{1,3})?$")


def is_valid_cidr(value: object) -> bool:
    """Return True if value is a valid IPv4/IPv6 address or CIDR."""
    if not isinstance(value, str):
        return False

    s = value.strip()
    if not s or not _CANDIDATE_PATTERN.match(s):
        return False

    # Every real address has a dot (v4) or a colon (v6); this also keeps bare
    # integers such as "443" out, which ipaddress would happily accept.
    if "." not in s and ":" not in s:
        return False

    try:
        ipaddress.ip_network(s, strict=False)
    except ValueError:
        return False
    return True


def ip_version(value: str) -> Optional["IpVersion"]:
    """Classify a validated string by the presence of ':'; None if invalid."""
    # models imports this module
    from .models import IpVersion

    if not is_valid_cidr(value):
        return None
    return IpVersion.of(value.strip())
