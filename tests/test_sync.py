import pytest

from ingest.sync import ActivitySync, RateLimitTooLow
from models import ActivityRecord, Counts
from settings import Organization
from storage.blobs import CorruptBlobError, JsonBlobStore
from storage.ledger import MONTH, BucketAlreadyExists, BucketLedger, FlatLedger

ORGS = (Organization('macromill', 'Macromill'), Organization('macromill-mint', 'Macromill Mint'))


class FakeClient:
    def __init__(self, remaining=5000, failing=()):
        self.remaining = remaining
        self.failing = set(failing)
        self.calls = []

    def rate_limit_status(self):
        self.calls.append(('rate_limit',))
        return {'limit': 5000, 'remaining': self.remaining, 'reset_at': 1700000000}

    def collect_member_activities(self, org, start, end, member=None, display_name=None):
        self.calls.append(('collect', org, start, end, member))
        if org in self.failing:
            raise RuntimeError(f'GET /orgs/{org}/members returned status 404')
        login = member or f'{org}-dev'
        return [ActivityRecord(login, organization=org, organization_display_name=display_name,
                               monthly={start[:7]: Counts(commits=1)})]


@pytest.fixture
def ledgers(tmp_path):
    store = JsonBlobStore(str(tmp_path))
    return BucketLedger(store, MONTH), FlatLedger(store)


def test_fetch_bucket_saves_records(ledgers):
    buckets, flat = ledgers
    client = FakeClient()
    saved = ActivitySync(client, buckets, flat, ORGS).fetch_bucket('macromill', '2025-07-01', '2025-07-31')
    assert saved.bucket_key == '2025-07'
    records = buckets.load_bucket('macromill', '2025-07')
    assert records[0].organization_display_name == 'Macromill'


def test_existing_bucket_is_refused_before_any_request(ledgers):
    buckets, flat = ledgers
    buckets.save_bucket('macromill', '2025-07-01', '2025-07-31', [])
    client = FakeClient()
    with pytest.raises(BucketAlreadyExists):
        ActivitySync(client, buckets, flat, ORGS).fetch_bucket('macromill', '2025-07-01', '2025-07-31')
    assert client.calls == []


def test_unreadable_bucket_map_is_refused_before_any_request(ledgers, tmp_path):
    buckets, flat = ledgers
    (tmp_path / 'macromill-monthly-activities.json').write_text('[1, 2', encoding='utf-8')
    client = FakeClient()
    with pytest.raises(CorruptBlobError):
        ActivitySync(client, buckets, flat, ORGS).fetch_bucket('macromill', '2025-07-01', '2025-07-31')
    assert client.calls == []


def test_force_refetches_existing_bucket(ledgers):
    buckets, flat = ledgers
    buckets.save_bucket('macromill', '2025-07-01', '2025-07-31', [])
    ActivitySync(FakeClient(), buckets, flat, ORGS).fetch_bucket('macromill', '2025-07-01', '2025-07-31', force=True)
    assert [r.login for r in buckets.load_bucket('macromill', '2025-07')] == ['macromill-dev']


def test_low_rate_limit_stops_fetch(ledgers):
    buckets, flat = ledgers
    client = FakeClient(remaining=10)
    with pytest.raises(RateLimitTooLow) as exc:
        ActivitySync(client, buckets, flat, ORGS, min_rate_remaining=100).fetch_bucket('macromill', '2025-07-01', '2025-07-31')
    assert exc.value.remaining == 10
    assert exc.value.threshold == 100
    assert not any(call[0] == 'collect' for call in client.calls)
    assert buckets.is_bucket_fetched('macromill', '2025-07') is False


def test_fetch_all_reports_per_organization(ledgers):
    buckets, flat = ledgers
    client = FakeClient(failing=['macromill'])
    report = ActivitySync(client, buckets, flat, ORGS).fetch_all_organizations('2025-07-01', '2025-07-31')
    assert report['macromill']['success'] is False
    assert '404' in report['macromill']['error']
    assert report['macromill-mint'] == {'success': True, 'count': 1, 'error': None}
    assert flat.load_snapshot('macromill') is None
    assert flat.load_snapshot('macromill-mint')[0].login == 'macromill-mint-dev'


def test_fetch_member_saves_combined_snapshot(ledgers):
    buckets, flat = ledgers
    client = FakeClient()
    records = ActivitySync(client, buckets, flat, ORGS).fetch_member_all_organizations('alice', '2025-07-01', '2025-07-31')
    assert [(r.login, r.organization) for r in records] == [('alice', 'macromill'), ('alice', 'macromill-mint')]
    assert len(flat.load_snapshot('all-organizations')) == 2
