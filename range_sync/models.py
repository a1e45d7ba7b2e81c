from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from .cidr_validator import is_valid_cidr

STATE_SCHEMA_VERSION = "1.0"


class IpVersion(str, Enum):
    V4 = "v4"
    V6 = "v6"

    @property
    def label(self) -> str:
        """Label used in rule names and logs ("IPv4" / "IPv6")."""
        return "IPv4" if self is IpVersion.V4 else "IPv6"

    @classmethod
    def of(cls, cidr: str) -> "IpVersion":
        return cls.V6 if ":" in cidr else cls.V4


class Protocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"


class RuleStatus(str, Enum):
    CREATED = "created"
    EXISTING = "existing"
    DELETED = "deleted"
    FAILED = "failed"
    DELETE_FAILED = "delete_failed"


@dataclass(frozen=True, order=True)
class AddressRange:
    """
    A single CIDR (or bare address) plus its IP version.

    The stored value is the canonical form: stripped and lower-cased, so two
    ranges differing only by hex-digit case compare equal.
    """

    value: str
    version: IpVersion = field(default=None, compare=False)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        canonical = self.value.strip().lower()
        object.__setattr__(self, "value", canonical)
        object.__setattr__(self, "version", IpVersion.of(canonical))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RangeSnapshot:
    """Immutable, timestamped set of published ranges partitioned by version."""

    ipv4: FrozenSet[AddressRange]
    ipv6: FrozenSet[AddressRange]
    fetched_at: datetime

    @classmethod
    def from_ranges(cls, ranges: Iterable[AddressRange], fetched_at: Optional[datetime] = None) -> "RangeSnapshot":
        ranges = set(ranges)
        return cls(
            ipv4=frozenset(r for r in ranges if r.version is IpVersion.V4),
            ipv6=frozenset(r for r in ranges if r.version is IpVersion.V6),
            fetched_at=fetched_at or datetime.now(timezone.utc),
        )

    @property
    def all_ranges(self) -> FrozenSet[AddressRange]:
        return self.ipv4 | self.ipv6

    @property
    def total_count(self) -> int:
        return len(self.ipv4) + len(self.ipv6)


@dataclass(frozen=True)
class RuleRecord:
    """One (range x protocol) pairing realized (or attempted) as a remote rule."""

    name: str
    cidr: str
    ip_version: IpVersion
    protocol: Protocol
    port: int
    status: RuleStatus
    rule_id: Optional[str] = None
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "cidr": self.cidr,
            "ipVersion": self.ip_version.value,
            "protocol": self.protocol.value,
            "port": self.port,
            "status": self.status.value,
            "ruleId": self.rule_id,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RuleRecord":
        return cls(
            name=str(raw["name"]),
            cidr=str(raw["cidr"]),
            ip_version=IpVersion(raw.get("ipVersion") or IpVersion.of(str(raw["cidr"])).value),
            protocol=Protocol(str(raw["protocol"]).upper()),
            port=int(raw["port"]),
            status=RuleStatus(raw["status"]),
            rule_id=raw.get("ruleId"),
        )


def _stored_ranges(raw: Dict[str, Any], key: str, version: IpVersion) -> FrozenSet[AddressRange]:
    values = raw.get(key) or []
    if not isinstance(values, list):
        raise ValueError(f"{key} must be a list, got {type(values).__name__}")
    ranges = set()
    for v in values:
        if not is_valid_cidr(v):
            raise ValueError(f"{key} holds an invalid range: {v!r}")
        r = AddressRange(v)
        if r.version is not version:
            raise ValueError(f"{key} holds {r.version.label} range {v!r}")
        ranges.add(r)
    return frozenset(ranges)


@dataclass(frozen=True)
class PersistedState:
    """On-disk record of the last successfully applied snapshot."""

    last_sync: datetime
    ipv4_ranges: FrozenSet[AddressRange]
    ipv6_ranges: FrozenSet[AddressRange]
    synced_rules: List[RuleRecord] = field(default_factory=list)
    version: str = STATE_SCHEMA_VERSION

    @classmethod
    def from_snapshot(
        cls,
        snapshot: RangeSnapshot,
        rules: Iterable[RuleRecord],
        synced_at: Optional[datetime] = None,
    ) -> "PersistedState":
        return cls(
            last_sync=synced_at or datetime.now(timezone.utc),
            ipv4_ranges=snapshot.ipv4,
            ipv6_ranges=snapshot.ipv6,
            synced_rules=list(rules),
        )

    @property
    def all_ranges(self) -> FrozenSet[AddressRange]:
        return self.ipv4_ranges | self.ipv6_ranges

    @property
    def total_count(self) -> int:
        return len(self.ipv4_ranges) + len(self.ipv6_ranges)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastSync": self.last_sync.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
            "ipv4Ranges": sorted(r.value for r in self.ipv4_ranges),
            "ipv6Ranges": sorted(r.value for r in self.ipv6_ranges),
            "totalCount": self.total_count,
            "syncedRules": [r.to_dict() for r in self.synced_rules],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PersistedState":
        last_sync = datetime.fromisoformat(str(raw["lastSync"]).replace("Z", "+00:00"))
        if last_sync.tzinfo is None:
            last_sync = last_sync.replace(tzinfo=timezone.utc)
        return cls(
            last_sync=last_sync,
            ipv4_ranges=_stored_ranges(raw, "ipv4Ranges", IpVersion.V4),
            ipv6_ranges=_stored_ranges(raw, "ipv6Ranges", IpVersion.V6),
            synced_rules=[RuleRecord.from_dict(r) for r in raw.get("syncedRules") or []],
            version=str(raw.get("version", STATE_SCHEMA_VERSION)),
        )


@dataclass(frozen=True)
class ChangeSet:
    """Difference between the current snapshot and the persisted one."""

    added: FrozenSet[AddressRange]
    removed: FrozenSet[AddressRange]
    unchanged: FrozenSet[AddressRange]

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed)
