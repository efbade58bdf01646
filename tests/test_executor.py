import unittest

from models import ActivityRecord, Counts
from query.executor import (
    QueryExecutor,
    QueryResult,
    filter_by_date_range,
    filter_by_members,
    filter_by_organizations,
    filter_by_value,
    record_scalar,
)
from query.parser import ParsedQuery, QueryEntities, QueryFilters


def _rec(login, org, monthly):
    return ActivityRecord(login, organization=org, organization_display_name=org.title(), monthly=monthly)


RECORDS = [
    _rec('alice', 'macromill', {'2025-06': Counts(1, 1, 1, 1), '2025-07': Counts(0, 0, 4, 0)}),
    _rec('bob', 'macromill', {'2025-07': Counts(2, 0, 2, 0)}),
    _rec('carol', 'macromill-mint', {'2025-05': Counts(0, 3, 0, 5)}),
    _rec('dave', 'macromill-mint', {'2025-07': Counts(4, 0, 0, 0)}),
]


def _parsed(intent='data', **kwargs):
    entity_keys = ('members', 'organizations', 'date_range', 'activity_types', 'comparison', 'aggregation')
    entities = QueryEntities(**{k: v for k, v in kwargs.items() if k in entity_keys})
    filters = QueryFilters(**{k: v for k, v in kwargs.items() if k not in entity_keys})
    return ParsedQuery(intent, entities, filters)


class TestFilters(unittest.TestCase):
    def test_members_and_organizations(self):
        self.assertEqual([r.login for r in filter_by_members(RECORDS, ['bob', 'carol'])], ['bob', 'carol'])
        self.assertEqual(len(filter_by_members(RECORDS, [])), 4)
        self.assertEqual([r.login for r in filter_by_organizations(RECORDS, ['macromill-mint'])], ['carol', 'dave'])

    def test_unattributed_records_drop_under_organization_filter(self):
        legacy = ActivityRecord('eve', monthly={'2025-07': Counts(1)})
        self.assertEqual(filter_by_organizations([legacy], ['macromill']), [])
        self.assertEqual(filter_by_organizations([legacy], []), [legacy])

    def test_date_range_keeps_whole_record(self):
        kept = filter_by_date_range(RECORDS, {'start': '2025-06-10', 'end': '2025-06-20'})
        self.assertEqual([r.login for r in kept], ['alice'])
        # months outside the range are not trimmed from kept records
        self.assertEqual(sorted(kept[0].monthly), ['2025-06', '2025-07'])

    def test_scalar_uses_single_type_or_total(self):
        alice = RECORDS[0]
        self.assertEqual(record_scalar(alice, ['commits']), 5)
        self.assertEqual(record_scalar(alice, []), 8)
        self.assertEqual(record_scalar(alice, ['commits', 'issues']), 8)

    def test_min_max_bounds_are_inclusive(self):
        kept = filter_by_value(RECORDS, ['commits'], min_value=2, max_value=2)
        self.assertEqual([r.login for r in kept], ['bob'])
        self.assertEqual(len(filter_by_value(RECORDS, ['commits'])), 4)

    def test_filters_commute(self):
        a = filter_by_organizations(filter_by_members(RECORDS, ['alice', 'dave']), ['macromill'])
        b = filter_by_members(filter_by_organizations(RECORDS, ['macromill']), ['alice', 'dave'])
        self.assertEqual([r.login for r in a], [r.login for r in b])
        c = filter_by_value(filter_by_date_range(RECORDS, {'start': '2025-07', 'end': '2025-07'}), [], min_value=4)
        d = filter_by_date_range(filter_by_value(RECORDS, [], min_value=4), {'start': '2025-07', 'end': '2025-07'})
        self.assertEqual([r.login for r in c], [r.login for r in d])


class TestDispatch(unittest.TestCase):
    def setUp(self):
        self.executor = QueryExecutor(RECORDS, {'macromill': 'Macromill', 'macromill-mint': 'Macromill Mint'})

    def test_data_rows(self):
        result = self.executor.execute(_parsed(members=['bob']), 'bob')
        self.assertIsInstance(result, QueryResult)
        self.assertEqual(result.type, 'data')
        self.assertEqual(result.message, '1 records found')
        row = result.data[0]
        self.assertEqual(row['login'], 'bob')
        self.assertEqual(row['organization'], 'Macromill')
        self.assertEqual(row['total'], 4)
        self.assertEqual(result.filters['members'], ['bob'])

    def test_ranking_defaults_to_total_descending(self):
        result = self.executor.execute(_parsed('ranking', limit=2), 'top 2')
        self.assertEqual(result.type, 'data')
        self.assertEqual([r['login'] for r in result.data], ['alice', 'carol'])
        self.assertIn('ranked by total', result.message)

    def test_ranking_is_stable_for_ties(self):
        # bob and dave both have 4 total; input order is kept in either direction
        desc = self.executor.execute(_parsed('ranking', members=['bob', 'dave']), 'q')
        asc = self.executor.execute(_parsed('ranking', members=['bob', 'dave'], sort_order='asc'), 'q')
        self.assertEqual([r['login'] for r in desc.data], ['bob', 'dave'])
        self.assertEqual([r['login'] for r in asc.data], ['bob', 'dave'])

    def test_ranking_by_field_ascending(self):
        result = self.executor.execute(_parsed('ranking', sort_by='issues', sort_order='asc'), 'q')
        self.assertEqual([r['issues'] for r in result.data], [0, 1, 2, 4])

    def test_comparison(self):
        result = self.executor.execute(_parsed('comparison', organizations=['macromill', 'macromill-mint']), 'compare')
        self.assertEqual(result.type, 'comparison')
        self.assertEqual([r['organization'] for r in result.data], ['macromill', 'macromill-mint'])
        self.assertEqual(result.message, 'Comparison of Macromill and Macromill Mint')
        self.assertEqual(result.summary['total_organizations'], 2)
        self.assertEqual(result.summary['total_members'], 4)
        self.assertEqual(result.summary['total_activities'], 24)
        self.assertTrue(any('more commits' in s for s in result.insights))

    def test_comparison_with_one_organization_falls_back_to_rows(self):
        result = self.executor.execute(_parsed('comparison', organizations=['macromill']), 'q')
        self.assertEqual(result.type, 'data')
        self.assertIsNone(result.insights)

    def test_analysis(self):
        result = self.executor.execute(_parsed('analysis', organizations=['macromill']), 'q')
        self.assertEqual(result.type, 'analysis')
        self.assertEqual(result.data['total_members'], 2)
        self.assertEqual(result.data['total_commits'], 7)
        self.assertEqual(result.data['average_commits'], 3.5)
        self.assertEqual(result.message, 'Activity analysis of 2 members')

    def test_aggregation(self):
        result = self.executor.execute(_parsed('aggregation'), 'q')
        self.assertEqual(result.type, 'summary')
        self.assertEqual(result.data['sum']['issues'], 7)
        self.assertEqual(result.data['average']['issues'], 1.75)

    def test_timeline(self):
        result = self.executor.execute(_parsed('timeline'), 'q')
        self.assertEqual(result.type, 'trend')
        self.assertEqual([t['month'] for t in result.data], ['2025-05', '2025-06', '2025-07'])
        self.assertEqual(result.message, 'Monthly activity trend over 3 months')

    def test_to_dict_omits_unset_parts(self):
        d = self.executor.execute(_parsed('aggregation'), 'q').to_dict()
        self.assertEqual(set(d), {'type', 'data', 'message', 'query'})


if __name__ == '__main__':
    unittest.main()
