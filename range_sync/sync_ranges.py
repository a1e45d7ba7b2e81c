import logging
import sys
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .cache_manager import CacheManager
from .config import Settings
from .differ import diff
from .exceptions import InvalidResponse, InventoryFetchFailed, NoRangesRetrieved, PersistenceFailed, RequestFailed
from .http_client import ResilientClient, RetryPolicy
from .models import ChangeSet, PersistedState, RangeSnapshot, RuleRecord
from .policy_client import PolicyStoreClient
from .range_aggregator import aggregate_ranges
from .reconciler import Reconciler, ReconcileResult, RuleTemplate
from .storage import load_state, save_state

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def build_rule_template(settings: Settings) -> RuleTemplate:
    return RuleTemplate(
        prefix=settings.rule_prefix,
        port=settings.port,
        description=settings.rule_description,
        protocols=tuple(settings.protocols),
        action=settings.action,
        direction=settings.direction,
        os_types=tuple(settings.os_types),
        max_name_length=settings.max_name_length,
    )


def carried_over_rules(previous: Optional[PersistedState], changes: ChangeSet) -> List[RuleRecord]:
    """Previous rule records whose range is still published and was not revisited."""
    if previous is None:
        return []
    unchanged = {r.value for r in changes.unchanged}
    return [r for r in previous.synced_rules if r.cidr in unchanged]


def fetch_inventory(policy_client: PolicyStoreClient) -> List[dict]:
    """List remote rules.

    Raises:
        InventoryFetchFailed: if the listing failed or came back malformed.
    """
    try:
        return policy_client.list_rules()
    except (RequestFailed, InvalidResponse) as exc:
        raise InventoryFetchFailed(f"Could not list existing rules: {exc}") from exc


def run_sync(
    settings: Settings,
    *,
    dry_run: bool = False,
    force: bool = False,
    policy_client: Optional[PolicyStoreClient] = None,
    source_client: Optional[ResilientClient] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> int:
    """
    Main synchronization flow:
    - Fetch published ranges from every configured source.
    - Diff against the last applied state (skipped with force=True).
    - List the live rule inventory and create/delete the rules for changed ranges.
    - Persist the new state, unless dry-run or any rule operation failed.

    Returns a process exit code: 0 on success, 1 when the run was aborted
    (no ranges retrieved), 2 when some rule operations failed.
    """
    retry_kwargs = {"max_attempts": settings.retry.max_attempts, "base_delay": settings.retry.base_delay}
    if sleep is not None:
        retry_kwargs["sleep"] = sleep
    retry_policy = RetryPolicy(**retry_kwargs)

    if dry_run:
        logger.warning("DRY-RUN mode: the policy store and state file will not be modified")

    cache_manager = CacheManager(cache_dir=settings.cache_dir, use_cache=settings.use_cached_data)
    source_client = source_client or ResilientClient(retry_policy=retry_policy, timeout=settings.source_timeout)

    try:
        snapshot: RangeSnapshot = aggregate_ranges(
            settings.sources,
            source_client,
            cache_manager=cache_manager,
            workers=settings.fetch_workers,
        )
    except NoRangesRetrieved as exc:
        logger.error("%s", exc)
        print(f"Sync aborted: {exc}", file=sys.stderr)
        return EXIT_FATAL

    if force:
        logger.warning("Force mode: ignoring stored state and treating every range as new")
        previous = None
    else:
        previous = load_state(settings.state_file)

    changes = diff(snapshot, previous)
    policy_client = policy_client or PolicyStoreClient(settings.policy_store, retry_policy=retry_policy)

    if not changes.has_changes:
        logger.info("No range changes since last sync (%s ranges)", snapshot.total_count)
        result = ReconcileResult(dry_run=dry_run)
    else:
        try:
            inventory = fetch_inventory(policy_client)
        except InventoryFetchFailed as exc:
            # Every added tuple is then attempted as a create; a duplicate the
            # store rejects surfaces as a per-rule failure.
            logger.error("%s", exc)
            logger.warning("Proceeding with caution: treating the remote rule inventory as empty")
            inventory = []
        reconciler = Reconciler(policy_client, build_rule_template(settings), dry_run=dry_run)
        result = reconciler.reconcile(changes, inventory)

    if dry_run:
        logger.info("[DRY-RUN] Skipping state persistence")
        return EXIT_OK

    if result.has_failures:
        for record in result.failures:
            logger.error("Unresolved rule %s (%s %s): %s", record.name, record.cidr, record.protocol.value, record.status.value)
        logger.error(
            "%s rule operation(s) failed; state file not updated so the next run retries them",
            len(result.failures),
        )
        return EXIT_PARTIAL

    state = PersistedState.from_snapshot(
        snapshot,
        carried_over_rules(previous, changes) + result.active_rules,
        synced_at=datetime.now(timezone.utc),
    )
    try:
        save_state(settings.state_file, state)
    except PersistenceFailed as exc:
        logger.error("%s", exc)
        logger.error("Remote changes were applied; the next run will re-diff against the previous state")
        return EXIT_PARTIAL

    logger.info("Sync complete: %s ranges, %s managed rules", state.total_count, len(state.synced_rules))
    return EXIT_OK
