import unittest

from models import Counts
from normalize.activity import in_range, month_key, tally_member_activity


class TestNormalize(unittest.TestCase):
    def test_month_key(self):
        self.assertEqual(month_key('2025-07-03T10:00:00Z'), '2025-07')
        self.assertEqual(month_key('2025-12-31'), '2025-12')
        self.assertIsNone(month_key(None))
        self.assertIsNone(month_key('not a date'))

    def test_in_range_is_inclusive_on_dates(self):
        self.assertTrue(in_range('2025-07-31T23:59:59Z', '2025-07-01', '2025-07-31'))
        self.assertTrue(in_range('2025-07-01T00:00:00Z', '2025-07-01', '2025-07-31'))
        self.assertFalse(in_range('2025-08-01T00:00:00Z', '2025-07-01', '2025-07-31'))
        self.assertFalse(in_range(None, '2025-07-01', '2025-07-31'))

    def test_tally_member_activity(self):
        members = [
            {'login': 'alice', 'name': 'Alice', 'avatar_url': 'https://a'},
            {'login': 'bob'},
            {'login': 'alice'},
        ]
        issues = [
            {'user': {'login': 'alice'}, 'created_at': '2025-07-02T00:00:00Z'},
            {'user': {'login': 'outsider'}, 'created_at': '2025-07-02T00:00:00Z'},
        ]
        pulls = [{'user': {'login': 'alice'}, 'created_at': '2025-06-30T00:00:00Z'}]
        reviews = [
            {'user': {'login': 'alice'}, 'submitted_at': '2025-07-05T00:00:00Z'},
            {'user': {'login': 'alice'}, 'submitted_at': None},
        ]
        commits = [
            {'author': {'login': 'alice'}, 'commit': {'author': {'name': 'A', 'date': '2025-07-09T00:00:00Z'}}},
            {'author': None, 'commit': {'author': {'name': 'ghost', 'date': '2025-07-09T00:00:00Z'}}},
        ]
        records = tally_member_activity(members, 'macromill', 'Macromill', issues, pulls, reviews, commits)

        self.assertEqual([r.login for r in records], ['alice', 'bob'])
        alice, bob = records
        self.assertEqual(alice.display_name, 'Alice')
        self.assertEqual(alice.avatar_url, 'https://a')
        self.assertEqual(alice.organization_display_name, 'Macromill')
        self.assertEqual(alice.monthly['2025-07'], Counts(issues=1, commits=1, reviews=1))
        self.assertEqual(alice.monthly['2025-06'], Counts(merge_requests=1))
        self.assertEqual(bob.monthly, {})
        self.assertEqual(bob.organization, 'macromill')


if __name__ == '__main__':
    unittest.main()
