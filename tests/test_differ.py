from datetime import datetime, timezone

from range_sync.differ import diff
from range_sync.models import AddressRange, PersistedState, RangeSnapshot


def snap(*values):
    return RangeSnapshot.from_ranges(AddressRange(v) for v in values)


def state_from(snapshot):
    return PersistedState.from_snapshot(snapshot, [], synced_at=datetime(2026, 1, 1, tzinfo=timezone.utc))


class TestDiff:
    def test_bootstrap_everything_added(self):
        current = snap("1.2.3.0/24", "2a03:f80::/29")
        changes = diff(current, None)

        assert changes.added == current.all_ranges
        assert changes.removed == frozenset()
        assert changes.has_changes

    def test_one_range_added(self):
        previous = state_from(snap("1.2.3.0/24"))
        changes = diff(snap("1.2.3.0/24", "4.5.6.0/24"), previous)

        assert changes.added == {AddressRange("4.5.6.0/24")}
        assert changes.removed == frozenset()
        assert changes.unchanged == {AddressRange("1.2.3.0/24")}
        assert changes.has_changes is True

    def test_symmetric_difference(self):
        a = snap("1.1.1.0/24", "2.2.2.0/24", "2001:db8::/32")
        b = snap("2.2.2.0/24", "3.3.3.0/24", "2001:db9::/32")
        changes = diff(b, state_from(a))

        assert changes.added == b.all_ranges - a.all_ranges
        assert changes.removed == a.all_ranges - b.all_ranges
        assert changes.unchanged == {AddressRange("2.2.2.0/24")}

    def test_identical_snapshots_have_no_changes(self):
        a = snap("1.1.1.0/24", "2001:db8::/32")
        changes = diff(snap("2001:DB8::/32", "1.1.1.0/24"), state_from(a))
        assert not changes.has_changes
        assert changes.unchanged == a.all_ranges
