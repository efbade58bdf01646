"""
Normalization of raw GitHub payloads into per-member monthly ActivityRecords.
"""

from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as date_parser

from models import ActivityRecord, Counts


def month_key(timestamp: Optional[str]) -> Optional[str]:
    """'2025-07-03T10:00:00Z' -> '2025-07'. None for missing or unparseable timestamps."""
    if not timestamp:
        return None
    try:
        return date_parser.isoparse(timestamp).strftime('%Y-%m')
    except (TypeError, ValueError):
        return None


def in_range(timestamp: Optional[str], start: str, end: str) -> bool:
    """Inclusive comparison on the calendar-date prefix of an ISO timestamp."""
    if not timestamp:
        return False
    day = str(timestamp)[:10]
    return start[:10] <= day <= end[:10]


def issue_event(raw: Dict[str, Any]):
    return (raw.get('user') or {}).get('login'), raw.get('created_at')


def pull_event(raw: Dict[str, Any]):
    return (raw.get('user') or {}).get('login'), raw.get('created_at')


def review_event(raw: Dict[str, Any]):
    return (raw.get('user') or {}).get('login'), raw.get('submitted_at')


def commit_event(raw: Dict[str, Any]):
    # commits are attributed through the linked GitHub account, not the git author name
    login = (raw.get('author') or {}).get('login')
    date = ((raw.get('commit') or {}).get('author') or {}).get('date')
    return login, date


_EVENT_READERS = (
    ('issues', issue_event),
    ('merge_requests', pull_event),
    ('reviews', review_event),
    ('commits', commit_event),
)


def tally_member_activity(
    members: Iterable[Dict[str, Any]],
    organization: str,
    organization_display_name: Optional[str] = None,
    issues: Iterable[Dict[str, Any]] = (),
    pulls: Iterable[Dict[str, Any]] = (),
    reviews: Iterable[Dict[str, Any]] = (),
    commits: Iterable[Dict[str, Any]] = (),
) -> List[ActivityRecord]:
    """
    Count each member's events per month. Events by non-members are ignored; members
    without events are still returned with an empty monthly map.
    """
    unique: Dict[str, Dict[str, Any]] = {}
    for m in members:
        if m.get('login') and m['login'] not in unique:
            unique[m['login']] = m
    members = list(unique.values())
    tallies: Dict[str, Dict[str, Dict[str, int]]] = {m['login']: {} for m in members}
    payloads = {'issues': issues, 'merge_requests': pulls, 'reviews': reviews, 'commits': commits}

    for field, reader in _EVENT_READERS:
        for raw in payloads[field]:
            login, timestamp = reader(raw)
            month = month_key(timestamp)
            if login not in tallies or month is None:
                continue
            bucket = tallies[login].setdefault(month, {})
            bucket[field] = bucket.get(field, 0) + 1

    records = []
    for m in members:
        monthly = {month: Counts(**fields) for month, fields in tallies[m['login']].items()}
        records.append(ActivityRecord(
            login=m['login'],
            display_name=m.get('name'),
            avatar_url=m.get('avatar_url') or '',
            organization=organization,
            organization_display_name=organization_display_name or organization,
            monthly=monthly,
        ))
    return records
