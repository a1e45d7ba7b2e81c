import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .exceptions import InvalidResponse, RequestFailed, RuleOperationFailed
from .models import AddressRange, ChangeSet, Protocol, RuleRecord, RuleStatus
from .policy_client import PolicyStoreClient
from .rule_naming import rule_name

logger = logging.getLogger(__name__)


@dataclass
class RuleTemplate:
    """Everything about a managed rule that does not depend on the range."""

    prefix: str
    port: int
    description: str
    protocols: Sequence[Protocol] = (Protocol.TCP, Protocol.UDP)
    action: str = "Allow"
    direction: str = "outbound"
    os_types: Sequence[str] = ()
    max_name_length: int = 100

    def name_for(self, address_range: AddressRange, protocol: Protocol) -> str:
        return rule_name(
            self.prefix,
            address_range.version,
            protocol,
            self.port,
            address_range.value,
            max_length=self.max_name_length,
        )


@dataclass
class ReconcileResult:
    records: List[RuleRecord] = field(default_factory=list)
    dry_run: bool = False

    def counts(self) -> Dict[str, int]:
        c = Counter(r.status.value for r in self.records)
        return {s.value: c.get(s.value, 0) for s in RuleStatus}

    @property
    def failures(self) -> List[RuleRecord]:
        return [r for r in self.records if r.status in (RuleStatus.FAILED, RuleStatus.DELETE_FAILED)]

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def active_rules(self) -> List[RuleRecord]:
        """Records for rules that exist remotely after this pass."""
        return [r for r in self.records if r.status in (RuleStatus.CREATED, RuleStatus.EXISTING)]


def index_inventory(inventory: Iterable[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """Map rule name -> rule id for the live inventory; nameless entries are skipped."""
    by_name: Dict[str, Optional[str]] = {}
    for rule in inventory:
        name = rule.get("name")
        if not isinstance(name, str) or not name:
            continue
        rule_id = rule.get("id")
        if name in by_name:
            logger.warning("Duplicate rule name %s in remote inventory; using the first", name)
            continue
        by_name[name] = str(rule_id) if rule_id is not None else None
    return by_name


class Reconciler:
    """
    Applies a ChangeSet to the policy store, one (range x protocol) tuple at a time.

    Added tuples: skip if the name already exists in the live inventory,
    otherwise create. Removed tuples: delete if present, otherwise nothing
    to do. Unchanged ranges are not visited. A failing tuple is logged and
    recorded; it never stops the pass.
    """

    def __init__(self, client: PolicyStoreClient, template: RuleTemplate, *, dry_run: bool = False):
        self.client = client
        self.template = template
        self.dry_run = dry_run

    def reconcile(self, changes: ChangeSet, inventory: Iterable[Dict[str, Any]]) -> ReconcileResult:
        existing = index_inventory(inventory)
        result = ReconcileResult(dry_run=self.dry_run)

        if self.dry_run:
            logger.warning("[DRY-RUN] No changes will be made to the policy store")

        for address_range in sorted(changes.added):
            for protocol in self.template.protocols:
                result.records.append(self._ensure_rule(address_range, protocol, existing))

        for address_range in sorted(changes.removed):
            for protocol in self.template.protocols:
                record = self._remove_rule(address_range, protocol, existing)
                if record is not None:
                    result.records.append(record)

        counts = result.counts()
        logger.info(
            "%sReconciliation finished: created=%s existing=%s deleted=%s failed=%s delete_failed=%s",
            "[DRY-RUN] " if self.dry_run else "",
            counts["created"],
            counts["existing"],
            counts["deleted"],
            counts["failed"],
            counts["delete_failed"],
        )
        return result

    def _record(self, name: str, address_range: AddressRange, protocol: Protocol, status: RuleStatus,
                rule_id: Optional[str] = None) -> RuleRecord:
        return RuleRecord(
            name=name,
            cidr=address_range.value,
            ip_version=address_range.version,
            protocol=protocol,
            port=self.template.port,
            status=status,
            rule_id=rule_id,
            dry_run=self.dry_run,
        )

    def _ensure_rule(self, address_range: AddressRange, protocol: Protocol, existing: Dict[str, Optional[str]]) -> RuleRecord:
        name = self.template.name_for(address_range, protocol)

        if name in existing:
            logger.info("Rule %s already exists (%s %s); skipping", name, address_range, protocol.value)
            return self._record(name, address_range, protocol, RuleStatus.EXISTING, existing[name])

        if self.dry_run:
            logger.info("[DRY-RUN] Would create rule %s (%s %s/%s)", name, address_range, protocol.value, self.template.port)
            return self._record(name, address_range, protocol, RuleStatus.CREATED)

        try:
            created = self._create(name, address_range, protocol)
        except RuleOperationFailed as exc:
            logger.error("%s", exc)
            return self._record(name, address_range, protocol, RuleStatus.FAILED)

        rule_id = created.get("id")
        logger.info("Created rule %s (%s %s/%s)", name, address_range, protocol.value, self.template.port)
        return self._record(name, address_range, protocol, RuleStatus.CREATED, str(rule_id) if rule_id is not None else None)

    def _remove_rule(self, address_range: AddressRange, protocol: Protocol, existing: Dict[str, Optional[str]]) -> Optional[RuleRecord]:
        name = self.template.name_for(address_range, protocol)

        if name not in existing:
            logger.debug("Rule %s already absent; nothing to delete", name)
            return None

        rule_id = existing[name]
        if self.dry_run:
            logger.info("[DRY-RUN] Would delete rule %s (id=%s, %s %s)", name, rule_id, address_range, protocol.value)
            return self._record(name, address_range, protocol, RuleStatus.DELETED, rule_id)

        if rule_id is None:
            logger.error("Cannot delete rule %s (%s): remote inventory entry has no id", name, address_range)
            return self._record(name, address_range, protocol, RuleStatus.DELETE_FAILED)

        try:
            self._delete(name, address_range, rule_id)
        except RuleOperationFailed as exc:
            logger.error("%s", exc)
            return self._record(name, address_range, protocol, RuleStatus.DELETE_FAILED, rule_id)

        logger.info("Deleted rule %s (id=%s, %s %s)", name, rule_id, address_range, protocol.value)
        return self._record(name, address_range, protocol, RuleStatus.DELETED, rule_id)

    def _create(self, name: str, address_range: AddressRange, protocol: Protocol) -> Dict[str, Any]:
        try:
            return self.client.create_rule(
                name=name,
                description=self.template.description,
                protocol=protocol,
                remote_cidr=address_range.value,
                port=self.template.port,
                action=self.template.action,
                direction=self.template.direction,
                os_types=list(self.template.os_types),
            )
        except (RequestFailed, InvalidResponse) as exc:
            raise RuleOperationFailed("create", name, address_range.value, exc) from exc

    def _delete(self, name: str, address_range: AddressRange, rule_id: str) -> None:
        try:
            self.client.delete_rule(rule_id)
        except (RequestFailed, InvalidResponse) as exc:
            raise RuleOperationFailed("delete", name, address_range.value, exc) from exc
