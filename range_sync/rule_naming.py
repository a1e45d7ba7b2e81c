import hashlib
from typing import Union

from .models import IpVersion, Protocol

DEFAULT_MAX_NAME_LENGTH = 100
HASH_LENGTH = 8
# "-" plus the hash
HASH_SUFFIX_LENGTH = HASH_LENGTH + 1


def sanitize_range(cidr: str) -> str:
    """'2a03:f80::/29' -> '2a03-f80--29'

    A trailing '::' on the address collapses to a single separator so the
    prefix length reads as '--29'.
    """
    address, slash, length = cidr.partition("/")
    if address.endswith("::"):
        address = address[:-1]
    return f"{address}{slash}{length}".replace("/", "-").replace(":", "-")


def has_inner_elision(cidr: str) -> bool:
    """True for IPv6 text whose '::' is not a plain trailing one ('2001:db8::1', '::/0').

    Once ':' and '/' both become '-' such ranges can read the same as a
    bare address ('2001:db8::1/28' and '2001:db8::1:28').
    """
    address = cidr.partition("/")[0]
    idx = address.find("::")
    return idx != -1 and (idx == 0 or idx != len(address) - 2)


def range_hash(cidr: str) -> str:
    """First 8 hex chars of the SHA-256 of the raw range string."""
    return hashlib.sha256(cidr.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def name_head(prefix: str, ip_version: Union[IpVersion, str], protocol: Union[Protocol, str], port: int) -> str:
    version_label = ip_version.label if isinstance(ip_version, IpVersion) else str(ip_version)
    protocol_label = protocol.value if isinstance(protocol, Protocol) else str(protocol)
    return f"{prefix}-{version_label}-{protocol_label}-{port}"


def rule_name(
    prefix: str,
    ip_version: Union[IpVersion, str],
    protocol: Union[Protocol, str],
    port: int,
    cidr: str,
    max_length: int = DEFAULT_MAX_NAME_LENGTH,
) -> str:
    """
    Deterministic remote rule name for one (range x protocol) tuple.

    Format: {prefix}-{ipVersion}-{protocol}-{port}-{sanitized range}. The
    range part becomes an 8-char hash when the name would exceed max_length
    or when the range has an inner '::'. If even the hashed form is too
    long, the head is cut and the hash covers the whole head plus range, so
    tuples that differ only in version, protocol or port still get distinct
    names.
    """
    if max_length <= HASH_SUFFIX_LENGTH:
        raise ValueError(f"max_length must be greater than {HASH_SUFFIX_LENGTH}, got {max_length}")

    head = name_head(prefix, ip_version, protocol, port)

    if not has_inner_elision(cidr):
        name = f"{head}-{sanitize_range(cidr)}"
        if len(name) <= max_length:
            return name

    if len(head) + HASH_SUFFIX_LENGTH <= max_length:
        return f"{head}-{range_hash(cidr)}"

    return f"{head[: max_length - HASH_SUFFIX_LENGTH]}-{range_hash(f'{head}-{cidr}')}"
