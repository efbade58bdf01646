"""
Direct lookups that bypass the keyword parser (member detail, organization stats, top contributors).
"""

from typing import List, Optional, Sequence

from aggregate.merge import organization_stats as _organization_stats
from aggregate.merge import merge_across_organizations, totals
from models import ACTIVITY_TYPES, ActivityRecord
from .executor import project

TOP_CONTRIBUTOR_FIELDS = ACTIVITY_TYPES + ('total',)


def _in_organization(records: Sequence[ActivityRecord], organization: Optional[str]) -> List[ActivityRecord]:
    if not organization:
        return list(records)
    return [r for r in records if r.organization == organization]


def member_activities(records: Sequence[ActivityRecord], login: str, organization: Optional[str] = None,
                      merged: bool = False) -> dict:
    """One row per organization the member appears in, or a single summed row when merged is set."""
    matches = [r for r in _in_organization(records, organization) if r.login == login]
    if not matches:
        return {'message': f'No data found for member "{login}"', 'data': []}
    if merged:
        matches = merge_across_organizations(matches)
    data = []
    for rec in matches:
        total = totals(rec)
        row = {
            'login': rec.login,
            'display_name': rec.name_or_login(),
            'organization': rec.organization_label(),
        }
        for k in ACTIVITY_TYPES:
            row[f'total_{k}'] = total.get(k)
        row['activities'] = {month: counts.as_dict() for month, counts in sorted(rec.monthly.items())}
        data.append(row)
    return {'message': f"{len(data)} records found", 'data': data}


def organization_stats(records: Sequence[ActivityRecord], organization: Optional[str] = None) -> dict:
    """Stats for one organization, or a {org: stats} map over every organization present in records."""
    if organization:
        stats = {'organization': organization}
        stats.update(_organization_stats(_in_organization(records, organization)))
        return stats
    names = []
    for rec in records:
        if rec.organization and rec.organization not in names:
            names.append(rec.organization)
    return {name: _organization_stats(_in_organization(records, name)) for name in names}


def top_contributors(records: Sequence[ActivityRecord], activity_type: str, limit: int = 10,
                     organization: Optional[str] = None) -> dict:
    if activity_type not in TOP_CONTRIBUTOR_FIELDS:
        raise ValueError(f"unknown activity type: {activity_type!r}")
    rows = [project(r) for r in _in_organization(records, organization)]
    rows = sorted(rows, key=lambda row: row[activity_type], reverse=True)
    return {
        'activity_type': activity_type,
        'limit': limit,
        'organization': organization or 'all',
        'data': rows[:limit],
    }
