"""
Fetch orchestration: pulls activity from GitHub and records it in the ledgers.
"""

import logging
from typing import Dict, List, Optional, Sequence

from models import ActivityRecord
from settings import MIN_RATE_REMAINING, Organization
from storage.ledger import ALL_ORGANIZATIONS, BucketAlreadyExists, BucketLedger, FetchBucket, FlatLedger

logger = logging.getLogger(__name__)


class RateLimitTooLow(Exception):
    """Raised before a fetch starts when too few API calls remain in the current window."""

    def __init__(self, remaining: int, threshold: int, reset_at: Optional[int] = None):
        super().__init__(f"rate limit too low: {remaining} remaining (need {threshold})")
        self.remaining = remaining
        self.threshold = threshold
        self.reset_at = reset_at


class ActivitySync:
    def __init__(
        self,
        client,
        bucket_ledger: BucketLedger,
        flat_ledger: FlatLedger,
        organizations: Sequence[Organization],
        min_rate_remaining: int = None,
    ):
        self.client = client
        self.bucket_ledger = bucket_ledger
        self.flat_ledger = flat_ledger
        self.organizations = tuple(organizations)
        self.min_rate_remaining = MIN_RATE_REMAINING if min_rate_remaining is None else int(min_rate_remaining)

    def _display_name(self, org: str) -> str:
        for o in self.organizations:
            if o.name == org:
                return o.display_name
        return org

    def check_rate_limit(self) -> Dict[str, Optional[int]]:
        status = self.client.rate_limit_status()
        remaining = status.get('remaining')
        if remaining is not None and remaining < self.min_rate_remaining:
            raise RateLimitTooLow(remaining, self.min_rate_remaining, status.get('reset_at'))
        return status

    def fetch_bucket(self, org: str, start: str, end: str, force: bool = False) -> FetchBucket:
        """
        Fetch one bucket for one organization and save it.
        BucketAlreadyExists is raised before any network call when the bucket is known and force is off,
        CorruptBlobError when the stored bucket map cannot be parsed.
        """
        bucket_key = self.bucket_ledger.bucket_key(start)
        if not force and self.bucket_ledger.is_bucket_fetched(org, bucket_key):
            raise BucketAlreadyExists(bucket_key, start, end)
        self.bucket_ledger.check_writable(org)
        self.check_rate_limit()
        records = self.client.collect_member_activities(org, start, end, display_name=self._display_name(org))
        return self.bucket_ledger.save_bucket(org, start, end, records, force_update=force)

    def fetch_all_organizations(self, start: str, end: str) -> Dict[str, dict]:
        """
        Fetch every configured organization in order and save each flat snapshot.
        Returns {org: {success, count, error}}; one organization failing does not stop the others.
        """
        self.check_rate_limit()
        report: Dict[str, dict] = {}
        for org in self.organizations:
            try:
                records = self.client.collect_member_activities(org.name, start, end, display_name=org.display_name)
                self.flat_ledger.save_snapshot(org.name, records)
                report[org.name] = {'success': True, 'count': len(records), 'error': None}
            except Exception as ex:
                logger.error("Fetching %s failed: %s", org.name, ex)
                report[org.name] = {'success': False, 'count': 0, 'error': str(ex)}
        return report

    def fetch_member_all_organizations(self, login: str, start: str, end: str) -> List[ActivityRecord]:
        """Fetch one member across every organization and store the combined snapshot."""
        self.check_rate_limit()
        records: List[ActivityRecord] = []
        for org in self.organizations:
            try:
                records.extend(self.client.collect_member_activities(org.name, start, end, member=login, display_name=org.display_name))
            except Exception as ex:
                logger.error("Fetching %s in %s failed: %s", login, org.name, ex)
        if records:
            self.flat_ledger.save_snapshot(ALL_ORGANIZATIONS, records)
        return records
