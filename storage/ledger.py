"""
Fetch ledgers: bookkeeping of which time windows have been retrieved per organization.

Two independent stores live side by side in one blob directory:

- FlatLedger: one whole-organization snapshot per organization ('<org>-activities').
- BucketLedger: incremental week or month buckets. New writes go to a single map blob
  ('<org>-monthly-activities' / '<org>-weekly-activities'); one-file-per-bucket blobs
  ('<org>-monthly-2025-07') written by older tooling are still read.

Each persisted layout has its own reader below. Readers are picked by which blob is being
read, never by looking at which fields a payload happens to carry.

The check-then-write in BucketLedger.save_bucket is not locked: a single writer per
(organization, bucket key) is assumed.
"""

import calendar
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from aggregate.merge import merge_across_buckets
from models import ActivityRecord
from .blobs import CorruptBlobError, JsonBlobStore

logger = logging.getLogger(__name__)

WEEK = 'week'
MONTH = 'month'

_KIND_LABEL = {WEEK: 'weekly', MONTH: 'monthly'}
_MAP_FIELD = {WEEK: 'weeks', MONTH: 'months'}
_BUCKET_KEY_RE = re.compile(r'^\d{4}-\d{2}$')

ALL_ORGANIZATIONS = 'all-organizations'


class BucketAlreadyExists(Exception):
    """Raised when saving a bucket that is already in the ledger without force_update."""

    def __init__(self, bucket_key: str, range_start: str, range_end: str):
        super().__init__(f"bucket {bucket_key} already fetched ({range_start} to {range_end}); use force to overwrite")
        self.bucket_key = bucket_key
        self.range_start = range_start
        self.range_end = range_end


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_date(value: str) -> datetime:
    return datetime.strptime(str(value)[:10], '%Y-%m-%d')


def bucket_key_for(kind: str, range_start: str) -> str:
    """Canonical bucket key for the bucket containing range_start: 'YYYY-WW' (ISO week) or 'YYYY-MM'."""
    day = _parse_date(range_start)
    if kind == WEEK:
        iso_year, iso_week, _ = day.isocalendar()
        return f"{iso_year:04d}-{iso_week:02d}"
    if kind == MONTH:
        return f"{day.year:04d}-{day.month:02d}"
    raise ValueError(f"unknown bucket kind: {kind!r}")


def _range_bound(value: Optional[str], upper: bool) -> Optional[str]:
    """Normalize a 'YYYY-MM' or 'YYYY-MM-DD' bound into an ISO date string."""
    if not value:
        return None
    value = str(value)
    if len(value) == 7:
        year, month = int(value[:4]), int(value[5:7])
        day = calendar.monthrange(year, month)[1] if upper else 1
        return f"{year:04d}-{month:02d}-{day:02d}"
    return value[:10]


class FetchBucket:
    """
    Metadata plus payload for one retrieval window.
    """

    def __init__(self, bucket_key: str, range_start: str, range_end: str, last_fetched_at: Optional[str], records: List[ActivityRecord]):
        self.bucket_key = bucket_key
        self.range_start = range_start
        self.range_end = range_end
        self.last_fetched_at = last_fetched_at
        self.records = records

    def summary(self) -> dict:
        return {
            'bucket_key': self.bucket_key,
            'range_start': self.range_start,
            'range_end': self.range_end,
            'last_fetched_at': self.last_fetched_at,
        }

    def to_json(self, kind: str) -> dict:
        return {
            kind: self.bucket_key,
            'rangeStart': self.range_start,
            'rangeEnd': self.range_end,
            'lastUpdated': self.last_fetched_at,
            'activities': [r.to_json() for r in self.records],
        }


# --- typed readers, one per persisted layout ---


def _read_records(raw_list, organization: Optional[str], display_name: Optional[str]) -> List[ActivityRecord]:
    if not isinstance(raw_list, list):
        raise ValueError('activities is not a list')
    records = []
    for raw in raw_list:
        if not isinstance(raw, dict) or not raw.get('login'):
            continue
        rec = ActivityRecord.from_json(raw)
        if rec.organization is None and organization:
            rec = rec.with_organization(organization, display_name)
        records.append(rec)
    return records


def read_flat_blob(raw, organization: Optional[str] = None, display_name: Optional[str] = None) -> Tuple[Optional[str], List[ActivityRecord]]:
    """Layout 1: {organization, lastUpdated, activities}. Returns (last_updated, records)."""
    if not isinstance(raw, dict):
        raise ValueError('flat blob is not an object')
    org = organization or raw.get('organization')
    if org == ALL_ORGANIZATIONS:
        org = None
    return raw.get('lastUpdated'), _read_records(raw.get('activities'), org, display_name)


def _read_bucket_object(raw, kind: str, bucket_key: str, organization: str, display_name: Optional[str]) -> FetchBucket:
    if not isinstance(raw, dict):
        raise ValueError(f'bucket {bucket_key} is not an object')
    records = _read_records(raw.get('activities'), organization, display_name)
    return FetchBucket(
        bucket_key=bucket_key,
        range_start=raw.get('rangeStart') or '',
        range_end=raw.get('rangeEnd') or '',
        last_fetched_at=raw.get('lastUpdated'),
        records=records,
    )


def read_bucket_map_blob(raw, kind: str, organization: str, display_name: Optional[str] = None) -> Tuple[Optional[str], Dict[str, FetchBucket]]:
    """Layout 2: {organization, weeks|months: {key: bucket}, lastUpdated}."""
    if not isinstance(raw, dict):
        raise ValueError('bucket map blob is not an object')
    entries = raw.get(_MAP_FIELD[kind]) or {}
    if not isinstance(entries, dict):
        raise ValueError(f"'{_MAP_FIELD[kind]}' is not an object")
    buckets = {}
    for key, entry in entries.items():
        try:
            buckets[key] = _read_bucket_object(entry, kind, key, organization, display_name)
        except ValueError as ex:
            logger.warning("Skipping unreadable %s bucket %s of %s: %s", kind, key, organization, ex)
    return raw.get('lastUpdated'), buckets


def read_bucket_file_blob(raw, kind: str, bucket_key: str, organization: str, display_name: Optional[str] = None) -> FetchBucket:
    """Layout 3: a single bucket object stored in its own '<org>-<kind>-<key>' blob."""
    return _read_bucket_object(raw, kind, bucket_key, organization, display_name)


class BucketLedger:
    """
    Incremental fetch ledger with week or month granularity.
    """

    def __init__(self, store: JsonBlobStore, kind: str = MONTH, display_names: Optional[Dict[str, str]] = None):
        if kind not in _KIND_LABEL:
            raise ValueError(f"unknown bucket kind: {kind!r}")
        self.store = store
        self.kind = kind
        self.display_names = dict(display_names or {})

    def _map_key(self, org: str) -> str:
        return f"{org}-{_KIND_LABEL[self.kind]}-activities"

    def _file_key(self, org: str, bucket_key: str) -> str:
        return f"{org}-{_KIND_LABEL[self.kind]}-{bucket_key}"

    def _read_map(self, org: str) -> Tuple[Optional[str], Dict[str, FetchBucket]]:
        key = self._map_key(org)
        try:
            raw = self.store.read(key)
            if raw is None:
                return None, {}
            return read_bucket_map_blob(raw, self.kind, org, self.display_names.get(org))
        except (CorruptBlobError, ValueError) as ex:
            logger.warning("Ignoring unreadable ledger blob %s: %s", key, ex)
            return None, {}

    def _read_map_entries(self, org: str) -> Dict[str, Any]:
        """Raw map entries for rewriting; CorruptBlobError when the map itself cannot be parsed."""
        key = self._map_key(org)
        raw = self.store.read(key)
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise CorruptBlobError(key, 'bucket map blob is not an object')
        entries = raw.get(_MAP_FIELD[self.kind]) or {}
        if not isinstance(entries, dict):
            raise CorruptBlobError(key, f"'{_MAP_FIELD[self.kind]}' is not an object")
        return dict(entries)

    def check_writable(self, org: str):
        """Raise CorruptBlobError if saving into org's map would have to discard stored buckets."""
        self._read_map_entries(org)

    def _write_map(self, org: str, entries: Dict[str, Any], now: str):
        doc = {
            'organization': org,
            _MAP_FIELD[self.kind]: {k: entries[k] for k in sorted(entries)},
            'lastUpdated': now,
        }
        self.store.write(self._map_key(org), doc)

    def _read_bucket_files(self, org: str) -> Dict[str, FetchBucket]:
        prefix = f"{org}-{_KIND_LABEL[self.kind]}-"
        buckets = {}
        for key in self.store.list_keys(prefix=prefix):
            bucket_key = key[len(prefix):]
            if not _BUCKET_KEY_RE.match(bucket_key):
                continue
            try:
                raw = self.store.read(key)
                if raw is None:
                    continue
                buckets[bucket_key] = read_bucket_file_blob(raw, self.kind, bucket_key, org, self.display_names.get(org))
            except (CorruptBlobError, ValueError) as ex:
                logger.warning("Ignoring unreadable ledger blob %s: %s", key, ex)
        return buckets

    def _all_buckets(self, org: str) -> Tuple[Optional[str], Dict[str, FetchBucket]]:
        buckets = self._read_bucket_files(org)
        last_updated, mapped = self._read_map(org)
        # map entries win over legacy per-bucket files
        buckets.update(mapped)
        if last_updated is None and buckets:
            stamps = [b.last_fetched_at for b in buckets.values() if b.last_fetched_at]
            last_updated = max(stamps) if stamps else None
        return last_updated, buckets

    def bucket_key(self, range_start: str) -> str:
        return bucket_key_for(self.kind, range_start)

    def is_bucket_fetched(self, org: str, bucket_key: str) -> bool:
        _, buckets = self._all_buckets(org)
        return bucket_key in buckets

    def save_bucket(self, org: str, range_start: str, range_end: str, records: Iterable[ActivityRecord], force_update: bool = False) -> FetchBucket:
        """
        Store the payload for the bucket containing range_start.
        Raises BucketAlreadyExists (without writing) when the bucket exists and force_update is False.
        Raises CorruptBlobError (without writing) when the stored map cannot be parsed.
        Other entries of the map are kept as stored, unreadable ones included.
        """
        bucket_key = self.bucket_key(range_start)
        if not force_update and self.is_bucket_fetched(org, bucket_key):
            raise BucketAlreadyExists(bucket_key, range_start, range_end)

        now = _now_iso()
        bucket = FetchBucket(bucket_key, range_start, range_end, now, list(records))
        entries = self._read_map_entries(org)
        entries[bucket_key] = bucket.to_json(self.kind)
        self._write_map(org, entries, now)
        logger.info("Saved %s bucket %s for %s (%d records)", self.kind, bucket_key, org, len(bucket.records))
        return bucket

    def load_bucket(self, org: str, bucket_key: str) -> Optional[List[ActivityRecord]]:
        _, buckets = self._all_buckets(org)
        bucket = buckets.get(bucket_key)
        return list(bucket.records) if bucket else None

    def list_fetched_buckets(self, org: str) -> List[dict]:
        _, buckets = self._all_buckets(org)
        ordered = sorted(buckets.values(), key=lambda b: (b.range_start, b.bucket_key))
        return [b.summary() for b in ordered]

    def delete_bucket(self, org: str, bucket_key: str) -> bool:
        deleted = False
        try:
            entries = self._read_map_entries(org)
        except CorruptBlobError as ex:
            logger.warning("Leaving unreadable ledger blob %s untouched: %s", ex.key, ex.reason)
            entries = {}
        if bucket_key in entries:
            del entries[bucket_key]
            self._write_map(org, entries, _now_iso())
            deleted = True
        if self.store.exists(self._file_key(org, bucket_key)):
            deleted = self.store.delete(self._file_key(org, bucket_key)) or deleted
        if deleted:
            logger.info("Deleted %s bucket %s for %s", self.kind, bucket_key, org)
        return deleted

    def last_updated(self, org: str) -> Optional[str]:
        last_updated, _ = self._all_buckets(org)
        return last_updated

    def load_organization(self, org: str, start: Optional[str] = None, end: Optional[str] = None) -> dict:
        """
        Merge the payloads of every bucket whose range_start falls in [start, end] (bounds optional).
        Returns {'records', 'last_updated', 'bucket_keys'}; records are unique per (login, organization).
        """
        lo = _range_bound(start, upper=False)
        hi = _range_bound(end, upper=True)
        last_updated, buckets = self._all_buckets(org)
        selected = []
        for bucket in sorted(buckets.values(), key=lambda b: (b.range_start, b.bucket_key)):
            day = (bucket.range_start or '')[:10]
            if lo and day < lo:
                continue
            if hi and day > hi:
                continue
            selected.append(bucket)
        payload = []
        for bucket in selected:
            payload.extend(bucket.records)
        return {
            'records': merge_across_buckets(payload),
            'last_updated': last_updated,
            'bucket_keys': [b.bucket_key for b in selected],
        }


class FlatLedger:
    """
    Whole-organization snapshot cache: one blob per organization holding the latest full fetch.
    """

    def __init__(self, store: JsonBlobStore, display_names: Optional[Dict[str, str]] = None):
        self.store = store
        self.display_names = dict(display_names or {})

    @staticmethod
    def _key(org: str) -> str:
        return f"{org}-activities"

    def _read(self, org: str) -> Tuple[Optional[str], Optional[List[ActivityRecord]]]:
        key = self._key(org)
        try:
            raw = self.store.read(key)
            if raw is None:
                return None, None
            return read_flat_blob(raw, None if org == ALL_ORGANIZATIONS else org, self.display_names.get(org))
        except (CorruptBlobError, ValueError) as ex:
            logger.warning("Ignoring unreadable snapshot %s: %s", key, ex)
            return None, None

    def save_snapshot(self, org: str, records: Iterable[ActivityRecord]) -> str:
        records = list(records)
        doc = {
            'organization': org,
            'lastUpdated': _now_iso(),
            'activities': [r.to_json() for r in records],
        }
        path = self.store.write(self._key(org), doc)
        logger.info("Saved %d activities for organization: %s", len(records), org)
        return path

    def load_snapshot(self, org: str) -> Optional[List[ActivityRecord]]:
        _, records = self._read(org)
        return records

    def last_updated(self, org: str) -> Optional[str]:
        last_updated, _ = self._read(org)
        return last_updated

    def load_all_organizations_file(self) -> Tuple[Optional[str], Optional[List[ActivityRecord]]]:
        return self._read(ALL_ORGANIZATIONS)

    def list_snapshots(self) -> List[str]:
        orgs = []
        for key in self.store.list_keys(suffix='-activities'):
            if key.endswith('-weekly-activities') or key.endswith('-monthly-activities'):
                continue
            orgs.append(key[: -len('-activities')])
        return orgs


def _org_name(org) -> str:
    return getattr(org, 'name', org)


def load_all_organizations_merged(
    organizations,
    bucket_ledger: BucketLedger,
    flat_ledger: FlatLedger,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> dict:
    """
    Collect records for every configured organization.

    Bucketed data wins when an organization has any bucket in range; the flat snapshot is
    used only otherwise, so the two caches are never double counted. Organizations without
    data are reported with count 0. If nothing is found for any organization the combined
    all-organizations snapshot is used as a last resort.
    """
    records: List[ActivityRecord] = []
    per_org: Dict[str, dict] = {}
    for org in organizations:
        name = _org_name(org)
        bucketed = bucket_ledger.load_organization(name, start, end)
        if bucketed['bucket_keys']:
            org_records = bucketed['records']
            per_org[name] = {
                'count': len(org_records),
                'last_updated': bucketed['last_updated'],
                'fetched_bucket_keys': bucketed['bucket_keys'],
                'source': 'bucketed',
            }
            records.extend(org_records)
            continue
        snapshot = flat_ledger.load_snapshot(name)
        if snapshot:
            per_org[name] = {
                'count': len(snapshot),
                'last_updated': flat_ledger.last_updated(name),
                'fetched_bucket_keys': [],
                'source': 'flat',
            }
            records.extend(snapshot)
            continue
        per_org[name] = {'count': 0, 'last_updated': None, 'fetched_bucket_keys': [], 'source': None}

    if records:
        return {'records': records, 'per_org_stats': per_org}

    last_updated, combined = flat_ledger.load_all_organizations_file()
    if combined:
        logger.info("Using all-organizations snapshot with %d activities", len(combined))
        for name in per_org:
            count = sum(1 for r in combined if r.organization == name)
            per_org[name] = {'count': count, 'last_updated': last_updated, 'fetched_bucket_keys': [], 'source': 'combined'}
        return {'records': combined, 'per_org_stats': per_org}
    return {'records': records, 'per_org_stats': per_org}


def get_all_organizations_last_updated(organizations, bucket_ledger: BucketLedger, flat_ledger: FlatLedger) -> Optional[str]:
    latest = None
    for org in organizations:
        name = _org_name(org)
        for stamp in (bucket_ledger.last_updated(name), flat_ledger.last_updated(name)):
            if stamp and (latest is None or stamp > latest):
                latest = stamp
    return latest
