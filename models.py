"""
Data models for per-contributor monthly activity.

ActivityRecord is the canonical in-memory shape shared by the fetch layer, the ledger,
the aggregation helpers and the query engine. Records are treated as immutable:
helpers always build new records instead of editing one in place.
"""

from typing import Dict, Any, Optional

ACTIVITY_TYPES = ('issues', 'merge_requests', 'commits', 'reviews')

# field names used in the persisted JSON blobs
_PERSISTED_FIELDS = {
    'issues': 'issues',
    'merge_requests': 'pullRequests',
    'commits': 'commits',
    'reviews': 'reviews',
}


def _stored_count(raw: Dict[str, Any], *fields: str) -> int:
    for field in fields:
        if field in raw:
            value = raw[field]
            if value is None:
                return 0
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{field} is not a number: {value!r}")
            return int(value)
    return 0


class Counts:
    """
    Activity counters for a single month (or a sum of months).
    """

    __slots__ = ('issues', 'merge_requests', 'commits', 'reviews')

    def __init__(self, issues: int = 0, merge_requests: int = 0, commits: int = 0, reviews: int = 0):
        self.issues = int(issues or 0)
        self.merge_requests = int(merge_requests or 0)
        self.commits = int(commits or 0)
        self.reviews = int(reviews or 0)

    def total(self) -> int:
        return self.issues + self.merge_requests + self.commits + self.reviews

    def get(self, activity_type: str) -> int:
        if activity_type not in ACTIVITY_TYPES:
            raise KeyError(activity_type)
        return getattr(self, activity_type)

    def __add__(self, other: 'Counts') -> 'Counts':
        return Counts(
            self.issues + other.issues,
            self.merge_requests + other.merge_requests,
            self.commits + other.commits,
            self.reviews + other.reviews,
        )

    def __eq__(self, other):
        if not isinstance(other, Counts):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def __repr__(self):
        return (
            f"Counts(issues={self.issues}, merge_requests={self.merge_requests}, "
            f"commits={self.commits}, reviews={self.reviews})"
        )

    def as_dict(self) -> Dict[str, int]:
        return {k: getattr(self, k) for k in ACTIVITY_TYPES}

    def to_json(self) -> Dict[str, int]:
        return {_PERSISTED_FIELDS[k]: getattr(self, k) for k in ACTIVITY_TYPES}

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> 'Counts':
        """Build from a persisted counter object; a non-numeric counter raises ValueError."""
        if not isinstance(raw, dict):
            raise ValueError(f"counter object expected, got {type(raw).__name__}")
        return cls(
            issues=_stored_count(raw, 'issues'),
            merge_requests=_stored_count(raw, 'pullRequests', 'merge_requests'),
            commits=_stored_count(raw, 'commits'),
            reviews=_stored_count(raw, 'reviews'),
        )


class ActivityRecord:
    """
    One contributor's monthly activity within one organization.

    monthly maps a zero-padded 'YYYY-MM' key to a Counts instance.
    organization is None for records that were never attributed (legacy data).
    """

    def __init__(
        self,
        login: str,
        display_name: Optional[str] = None,
        avatar_url: str = '',
        organization: Optional[str] = None,
        organization_display_name: Optional[str] = None,
        monthly: Optional[Dict[str, Counts]] = None,
    ):
        self.login = login
        self.display_name = display_name
        self.avatar_url = avatar_url or ''
        self.organization = organization
        self.organization_display_name = organization_display_name
        self.monthly = dict(monthly or {})

    def name_or_login(self) -> str:
        return self.display_name or self.login

    def organization_label(self) -> Optional[str]:
        return self.organization_display_name or self.organization

    def with_organization(self, organization: str, display_name: Optional[str] = None) -> 'ActivityRecord':
        """Return a copy attributed to the given organization."""
        return ActivityRecord(
            login=self.login,
            display_name=self.display_name,
            avatar_url=self.avatar_url,
            organization=organization,
            organization_display_name=display_name or organization,
            monthly=self.monthly,
        )

    def __repr__(self):
        return f"ActivityRecord(login={self.login!r}, organization={self.organization!r}, months={len(self.monthly)})"

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'login': self.login,
            'name': self.display_name,
            'avatar_url': self.avatar_url,
        }
        if self.organization is not None:
            data['organization'] = self.organization
        if self.organization_display_name is not None:
            data['organizationDisplayName'] = self.organization_display_name
        data['activities'] = {month: counts.to_json() for month, counts in sorted(self.monthly.items())}
        return data

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> 'ActivityRecord':
        activities = raw.get('activities') or {}
        monthly = {}
        if isinstance(activities, dict):
            monthly = {str(month): Counts.from_json(c) for month, c in activities.items()}
        return cls(
            login=str(raw.get('login') or ''),
            display_name=raw.get('name'),
            avatar_url=raw.get('avatar_url') or '',
            organization=raw.get('organization'),
            organization_display_name=raw.get('organizationDisplayName'),
            monthly=monthly,
        )
