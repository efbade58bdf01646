import json

import pytest

from models import ActivityRecord, Counts
from storage.blobs import CorruptBlobError, JsonBlobStore
from storage.ledger import (
    MONTH,
    WEEK,
    BucketAlreadyExists,
    BucketLedger,
    FlatLedger,
    bucket_key_for,
    get_all_organizations_last_updated,
    load_all_organizations_merged,
)
from settings import Organization

ORGS = (Organization('macromill', 'Macromill'), Organization('macromill-mint', 'Macromill Mint', ['mint']))


def _rec(login, org, month='2025-07', **counts):
    return ActivityRecord(login, organization=org, organization_display_name=org, monthly={month: Counts(**counts)})


@pytest.fixture
def store(tmp_path):
    return JsonBlobStore(str(tmp_path))


def test_bucket_keys():
    assert bucket_key_for(MONTH, '2025-07-15') == '2025-07'
    assert bucket_key_for(WEEK, '2025-07-15') == '2025-29'
    # ISO week-year differs from calendar year around new year
    assert bucket_key_for(WEEK, '2024-12-30') == '2025-01'
    assert bucket_key_for(WEEK, '2021-01-03') == '2020-53'


def test_month_bucket_roundtrip(store):
    ledger = BucketLedger(store, MONTH)
    ledger.save_bucket('macromill', '2025-07-01', '2025-07-31', [_rec('alice', 'macromill', issues=1)])

    listed = ledger.list_fetched_buckets('macromill')
    assert [b['bucket_key'] for b in listed] == ['2025-07']
    assert listed[0]['range_start'] == '2025-07-01'
    assert listed[0]['last_fetched_at']
    assert ledger.is_bucket_fetched('macromill', '2025-07')

    assert ledger.delete_bucket('macromill', '2025-07') is True
    assert ledger.is_bucket_fetched('macromill', '2025-07') is False
    assert ledger.delete_bucket('macromill', '2025-07') is False


def test_resave_without_force_is_rejected_and_unchanged(store):
    ledger = BucketLedger(store, MONTH)
    ledger.save_bucket('macromill', '2025-07-01', '2025-07-31', [_rec('alice', 'macromill', commits=3)])
    before = store.read('macromill-monthly-activities')

    with pytest.raises(BucketAlreadyExists) as exc:
        ledger.save_bucket('macromill', '2025-07-01', '2025-07-31', [_rec('bob', 'macromill', commits=9)])
    assert exc.value.bucket_key == '2025-07'
    assert store.read('macromill-monthly-activities') == before

    ledger.save_bucket('macromill', '2025-07-01', '2025-07-31', [_rec('bob', 'macromill', commits=9)], force_update=True)
    records = ledger.load_bucket('macromill', '2025-07')
    assert [r.login for r in records] == ['bob']
    assert records[0].monthly['2025-07'].commits == 9


def test_persisted_layout(store):
    ledger = BucketLedger(store, WEEK)
    ledger.save_bucket('macromill', '2025-07-14', '2025-07-20', [_rec('alice', 'macromill', issues=2)])
    doc = store.read('macromill-weekly-activities')
    assert doc['organization'] == 'macromill'
    entry = doc['weeks']['2025-29']
    assert entry['week'] == '2025-29'
    assert entry['rangeStart'] == '2025-07-14'
    assert entry['activities'][0]['activities']['2025-07']['issues'] == 2
    assert 'pullRequests' in entry['activities'][0]['activities']['2025-07']


def test_legacy_bucket_file_is_read(store):
    legacy = {
        'month': '2025-05',
        'rangeStart': '2025-05-01',
        'rangeEnd': '2025-05-31',
        'lastUpdated': '2025-06-01T00:00:00+00:00',
        'activities': [{'login': 'carol', 'name': 'Carol', 'avatar_url': '', 'activities': {'2025-05': {'issues': 1, 'pullRequests': 2, 'commits': 0, 'reviews': 0}}}],
    }
    store.write('macromill-monthly-2025-05', legacy)
    ledger = BucketLedger(store, MONTH)
    assert ledger.is_bucket_fetched('macromill', '2025-05')
    records = ledger.load_bucket('macromill', '2025-05')
    assert records[0].organization == 'macromill'
    assert records[0].monthly['2025-05'].merge_requests == 2

    # the map entry wins over the legacy file with the same key
    ledger.save_bucket('macromill', '2025-05-01', '2025-05-31', [_rec('dave', 'macromill', '2025-05', reviews=1)], force_update=True)
    assert [r.login for r in ledger.load_bucket('macromill', '2025-05')] == ['dave']

    assert ledger.delete_bucket('macromill', '2025-05') is True
    assert not store.exists('macromill-monthly-2025-05')
    assert ledger.is_bucket_fetched('macromill', '2025-05') is False


def test_corrupt_ledger_is_treated_as_empty(store, tmp_path):
    (tmp_path / 'macromill-monthly-activities.json').write_text('{oops', encoding='utf-8')
    ledger = BucketLedger(store, MONTH)
    assert ledger.is_bucket_fetched('macromill', '2025-07') is False
    assert ledger.list_fetched_buckets('macromill') == []


def test_saving_over_unparseable_map_leaves_it_alone(store, tmp_path):
    path = tmp_path / 'macromill-monthly-activities.json'
    path.write_text('{oops', encoding='utf-8')
    ledger = BucketLedger(store, MONTH)
    with pytest.raises(CorruptBlobError):
        ledger.check_writable('macromill')
    with pytest.raises(CorruptBlobError):
        ledger.save_bucket('macromill', '2025-07-01', '2025-07-31', [])
    assert path.read_text(encoding='utf-8') == '{oops'


def test_non_numeric_counts_are_treated_as_corrupt(store):
    store.write('macromill-monthly-activities', {
        'organization': 'macromill',
        'months': {
            '2025-01': {
                'month': '2025-01', 'rangeStart': '2025-01-01', 'rangeEnd': '2025-01-31', 'lastUpdated': 'x',
                'activities': [{'login': 'a', 'activities': {'2025-01': {'issues': {'n': 1}}}}],
            },
        },
    })
    ledger = BucketLedger(store, MONTH)
    assert ledger.is_bucket_fetched('macromill', '2025-01') is False
    assert ledger.list_fetched_buckets('macromill') == []

    flat = FlatLedger(store)
    flat.save_snapshot('macromill', [_rec('alice', 'macromill', issues=1)])
    store.write('macromill-mint-activities', {
        'organization': 'macromill-mint',
        'activities': [{'login': 'b', 'activities': {'2025-07': {'commits': [3]}}}],
    })
    assert flat.load_snapshot('macromill-mint') is None
    loaded = load_all_organizations_merged(ORGS, ledger, flat)
    assert loaded['per_org_stats']['macromill-mint']['count'] == 0
    assert [r.login for r in loaded['records']] == ['alice']


def test_bad_map_entry_does_not_erase_sibling_buckets(store):
    ledger = BucketLedger(store, MONTH)
    ledger.save_bucket('macromill', '2025-01-01', '2025-01-31', [_rec('alice', 'macromill', '2025-01', issues=1)])
    raw = store.read('macromill-monthly-activities')
    raw['months']['2025-02'] = 'garbage'
    store.write('macromill-monthly-activities', raw)

    ledger.save_bucket('macromill', '2025-03-01', '2025-03-31', [_rec('bob', 'macromill', '2025-03', commits=2)])
    assert [b['bucket_key'] for b in ledger.list_fetched_buckets('macromill')] == ['2025-01', '2025-03']
    assert store.read('macromill-monthly-activities')['months']['2025-02'] == 'garbage'

    assert ledger.delete_bucket('macromill', '2025-03') is True
    assert [b['bucket_key'] for b in ledger.list_fetched_buckets('macromill')] == ['2025-01']
    assert ledger.delete_bucket('macromill', '2025-02') is True
    assert set(store.read('macromill-monthly-activities')['months']) == {'2025-01'}


def test_list_sorted_by_range_start(store):
    ledger = BucketLedger(store, MONTH)
    for start, end in (('2025-08-01', '2025-08-31'), ('2025-06-01', '2025-06-30'), ('2025-07-01', '2025-07-31')):
        ledger.save_bucket('macromill', start, end, [])
    assert [b['bucket_key'] for b in ledger.list_fetched_buckets('macromill')] == ['2025-06', '2025-07', '2025-08']


def test_load_organization_merges_buckets_and_filters_range(store):
    ledger = BucketLedger(store, MONTH)
    ledger.save_bucket('macromill', '2025-06-01', '2025-06-30', [_rec('alice', 'macromill', '2025-06', issues=1)])
    ledger.save_bucket('macromill', '2025-07-01', '2025-07-31', [_rec('alice', 'macromill', '2025-07', issues=2), _rec('bob', 'macromill', commits=1)])
    ledger.save_bucket('macromill', '2025-08-01', '2025-08-31', [_rec('alice', 'macromill', '2025-08', issues=4)])

    loaded = ledger.load_organization('macromill')
    assert [r.login for r in loaded['records']] == ['alice', 'bob']
    alice = loaded['records'][0]
    assert sorted(alice.monthly) == ['2025-06', '2025-07', '2025-08']

    ranged = ledger.load_organization('macromill', '2025-07', '2025-08')
    assert ranged['bucket_keys'] == ['2025-07', '2025-08']
    assert sorted(ranged['records'][0].monthly) == ['2025-07', '2025-08']


def test_flat_snapshot_roundtrip(store):
    flat = FlatLedger(store)
    flat.save_snapshot('macromill', [_rec('alice', 'macromill', issues=1)])
    records = flat.load_snapshot('macromill')
    assert records[0].login == 'alice'
    assert flat.last_updated('macromill')
    assert flat.list_snapshots() == ['macromill']


def test_flat_snapshot_attributes_missing_organization(store):
    store.write('macromill-activities', {'organization': 'macromill', 'lastUpdated': 'x', 'activities': [{'login': 'eve', 'activities': {}}]})
    records = FlatLedger(store, {'macromill': 'Macromill'}).load_snapshot('macromill')
    assert records[0].organization == 'macromill'
    assert records[0].organization_display_name == 'Macromill'


def test_load_all_prefers_buckets_then_flat(store):
    buckets = BucketLedger(store, MONTH)
    flat = FlatLedger(store)
    buckets.save_bucket('macromill', '2025-07-01', '2025-07-31', [_rec('alice', 'macromill', issues=1)])
    flat.save_snapshot('macromill', [_rec('stale', 'macromill', issues=100)])
    flat.save_snapshot('macromill-mint', [_rec('bob', 'macromill-mint', commits=2)])

    loaded = load_all_organizations_merged(ORGS, buckets, flat)
    assert sorted(r.login for r in loaded['records']) == ['alice', 'bob']
    stats = loaded['per_org_stats']
    assert stats['macromill']['source'] == 'bucketed'
    assert stats['macromill']['fetched_bucket_keys'] == ['2025-07']
    assert stats['macromill-mint']['source'] == 'flat'
    assert stats['macromill-mint']['count'] == 1


def test_load_all_reports_empty_organization(store):
    buckets = BucketLedger(store, MONTH)
    flat = FlatLedger(store)
    flat.save_snapshot('macromill', [_rec('alice', 'macromill', issues=1)])
    loaded = load_all_organizations_merged(ORGS, buckets, flat)
    assert loaded['per_org_stats']['macromill-mint']['count'] == 0


def test_load_all_falls_back_to_combined_file(store):
    flat = FlatLedger(store)
    flat.save_snapshot('all-organizations', [_rec('alice', 'macromill', issues=1), _rec('alice', 'macromill-mint', commits=1)])
    loaded = load_all_organizations_merged(ORGS, BucketLedger(store, MONTH), flat)
    assert len(loaded['records']) == 2
    assert loaded['per_org_stats']['macromill']['count'] == 1
    assert loaded['per_org_stats']['macromill']['source'] == 'combined'


def test_last_updated_across_organizations(store):
    buckets = BucketLedger(store, MONTH)
    flat = FlatLedger(store)
    assert get_all_organizations_last_updated(ORGS, buckets, flat) is None
    flat.save_snapshot('macromill-mint', [])
    assert get_all_organizations_last_updated(ORGS, buckets, flat) == flat.last_updated('macromill-mint')
