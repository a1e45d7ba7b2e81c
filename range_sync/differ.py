import logging
from typing import Optional

from .models import ChangeSet, PersistedState, RangeSnapshot

logger = logging.getLogger(__name__)


def diff(current: RangeSnapshot, previous: Optional[PersistedState]) -> ChangeSet:
    """Compute added/removed/unchanged ranges between two runs.

    With no previous state (first run or forced full sync) every current
    range is added and nothing is removed.
    """
    if previous is None:
        changes = ChangeSet(added=current.all_ranges, removed=frozenset(), unchanged=frozenset())
    else:
        # v4 and v6 values never compare equal, so whole-set arithmetic equals
        # the per-version difference.
        current_all = current.all_ranges
        previous_all = previous.all_ranges
        added = current_all - previous_all
        removed = previous_all - current_all
        unchanged = current_all & previous_all
        changes = ChangeSet(added=added, removed=removed, unchanged=unchanged)

    logger.info(
        "Diff: %s added, %s removed, %s unchanged",
        len(changes.added),
        len(changes.removed),
        len(changes.unchanged),
    )
    for r in sorted(changes.added):
        logger.debug("  + %s", r)
    for r in sorted(changes.removed):
        logger.debug("  - %s", r)
    return changes
