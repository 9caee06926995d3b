import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from artifactory_client import BuildDetail, BuildItem, StatusEvent
from retention_engine import cutoff_date, decide, retained_releases
from retention_policy import RetentionPolicy

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def days_ago(days):
    return NOW - timedelta(days=days)


def released(*days_ago_values, status='production'):
    return BuildDetail(statuses=tuple(StatusEvent(status, days_ago(d)) for d in days_ago_values))


NOT_RELEASED = BuildDetail()


class LookupStub:
    """Detail lookup backed by a dict keyed on build uri; records calls."""

    def __init__(self, details):
        self.details = details
        self.calls = []

    def __call__(self, item):
        self.calls.append(item.uri)
        return self.details.get(item.uri, NOT_RELEASED)


class TestScenarios(unittest.TestCase):
    def setUp(self):
        self.a = BuildItem('/A', days_ago(10))
        self.b = BuildItem('/B', days_ago(8))
        self.c = BuildItem('/C', days_ago(1))
        self.items = [self.a, self.b, self.c]
        self.lookup = LookupStub({'/B': released(7)})

    def test_recent_release_survives_age_cutoff(self):
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=1)
        self.assertEqual(decide(self.items, self.lookup, policy, now=NOW), [self.a])

    def test_zero_releases_retained_deletes_all_old_builds(self):
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=0)
        self.assertEqual(decide(self.items, self.lookup, policy, now=NOW), [self.a, self.b])

    def test_details_fetched_for_every_item_once(self):
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=1)
        decide(self.items, self.lookup, policy, now=NOW)
        self.assertEqual(self.lookup.calls, ['/A', '/B', '/C'])

    def test_identical_inputs_give_identical_output(self):
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=1)
        first = decide(self.items, self.lookup, policy, now=NOW)
        second = decide(self.items, self.lookup, policy, now=NOW)
        self.assertEqual(first, second)


class TestBoundaries(unittest.TestCase):
    def test_empty_items_performs_no_lookups(self):
        lookup = MagicMock()
        self.assertEqual(decide([], lookup, RetentionPolicy('app'), now=NOW), [])
        lookup.assert_not_called()

    def test_item_started_exactly_at_cutoff_is_kept(self):
        item = BuildItem('/1', days_ago(5))
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=0)
        self.assertEqual(decide([item], LookupStub({}), policy, now=NOW), [])

    def test_zero_retain_days_makes_every_past_build_eligible(self):
        items = [BuildItem('/1', days_ago(0.5)), BuildItem('/2', NOW)]
        policy = RetentionPolicy('app', retain_days=0, retain_last_n_releases=0)
        self.assertEqual(decide(items, LookupStub({}), policy, now=NOW), [items[0]])

    def test_all_released_protects_everything(self):
        items = [BuildItem(f'/{n}', days_ago(20 + n)) for n in range(3)]
        lookup = LookupStub({item.uri: released(10 + i) for i, item in enumerate(items)})
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=5)
        self.assertEqual(decide(items, lookup, policy, now=NOW), [])

    def test_results_never_include_recent_builds(self):
        items = [BuildItem(f'/{n}', days_ago(n)) for n in range(15)]
        policy = RetentionPolicy('app', retain_days=7, retain_last_n_releases=0)
        result = decide(items, LookupStub({}), policy, now=NOW)
        cutoff = cutoff_date(policy, NOW)
        self.assertTrue(result)
        self.assertTrue(all(item.started < cutoff for item in result))

    def test_retention_window_beyond_calendar_keeps_everything(self):
        items = [BuildItem('/1', days_ago(3000)), BuildItem('/2', days_ago(1))]
        policy = RetentionPolicy('app', retain_days=800000, retain_last_n_releases=0)
        self.assertEqual(cutoff_date(policy, NOW), datetime.min.replace(tzinfo=timezone.utc))
        self.assertEqual(decide(items, LookupStub({}), policy, now=NOW), [])

    def test_non_release_status_does_not_protect(self):
        item = BuildItem('/1', days_ago(30))
        lookup = LookupStub({'/1': released(2, status='staging')})
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=3)
        self.assertEqual(decide([item], lookup, policy, now=NOW), [item])

    def test_custom_release_marker(self):
        item = BuildItem('/1', days_ago(30))
        lookup = LookupStub({'/1': released(2, status='released')})
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=3)
        self.assertEqual(decide([item], lookup, policy, now=NOW, release_status='released'), [])

    def test_lookup_failure_propagates(self):
        lookup = MagicMock(side_effect=RuntimeError('boom'))
        with self.assertRaises(RuntimeError):
            decide([BuildItem('/1', days_ago(30))], lookup, RetentionPolicy('app'), now=NOW)


class TestReleaseOrdering(unittest.TestCase):
    def test_keeps_latest_released_builds(self):
        items = [BuildItem(f'/{n}', days_ago(100 - n)) for n in range(5)]
        # Release order differs from start order: /0 was promoted most recently
        lookup = LookupStub({
            '/0': released(1),
            '/1': released(40),
            '/2': released(30),
            '/3': released(20),
        })
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=2)
        result = decide(items, lookup, policy, now=NOW)
        self.assertEqual([item.uri for item in result], ['/1', '/2', '/4'])

    def test_latest_releases_never_deleted(self):
        # Start order and release order are unrelated; /9 and /10 are recent starts
        release_ages = [15, 3, 40, 8, 25, 1, 60, 12, 30, 2, 5]
        items = [BuildItem(f'/{n}', days_ago(90 - 10 * n)) for n in range(len(release_ages))]
        lookup = LookupStub({item.uri: released(age) for item, age in zip(items, release_ages) if age != 30})
        by_release = sorted((item for item, age in zip(items, release_ages) if age != 30),
                            key=lambda item: lookup.details[item.uri].release_date())
        cutoff = cutoff_date(RetentionPolicy('app', retain_days=7), NOW)

        for count in (1, 2, 3):
            with self.subTest(count=count):
                policy = RetentionPolicy('app', retain_days=7, retain_last_n_releases=count)
                result = decide(items, lookup, policy, now=NOW)
                protected = {item.uri for item in by_release[-count:]}
                self.assertFalse(protected & {item.uri for item in result})
                older = [item for item in items if item.started < cutoff]
                self.assertEqual(result, [item for item in older if item.uri not in protected])

    def test_equal_release_dates_keep_listing_order(self):
        items = [BuildItem(f'/{n}', days_ago(50)) for n in range(3)]
        details = {item.uri: released(10) for item in items}
        kept = retained_releases(items, details, 2)
        self.assertEqual([item.uri for item in kept], ['/1', '/2'])

    def test_retained_releases_with_more_slots_than_releases(self):
        items = [BuildItem('/1', days_ago(50))]
        self.assertEqual(retained_releases(items, {'/1': released(3)}, 10), items)

    def test_release_date_uses_latest_status_of_any_label(self):
        # A later non-release status makes an older promotion sort as more recent
        older_promotion = BuildItem('/old', days_ago(60))
        newer_promotion = BuildItem('/new', days_ago(50))
        lookup = LookupStub({
            '/old': BuildDetail(statuses=(StatusEvent('production', days_ago(30)),
                                          StatusEvent('archived', days_ago(2)))),
            '/new': released(10),
        })
        policy = RetentionPolicy('app', retain_days=5, retain_last_n_releases=1)
        result = decide([older_promotion, newer_promotion], lookup, policy, now=NOW)
        self.assertEqual(result, [newer_promotion])


if __name__ == '__main__':
    unittest.main()
