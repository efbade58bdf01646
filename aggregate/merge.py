"""
Pure aggregation helpers over ActivityRecord collections.
None of these functions mutate their inputs; grouping always follows input order so that
display fields picked from the "first" record are deterministic.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from models import ACTIVITY_TYPES, ActivityRecord, Counts

MULTIPLE_ORGANIZATIONS = 'multiple'
# display sentinel; turning it into localized text is up to the presentation layer
MULTIPLE_ORGANIZATIONS_DISPLAY = 'multiple-organizations'


def _sum_monthly(target: Dict[str, Counts], source: Dict[str, Counts]) -> None:
    for month, counts in source.items():
        target[month] = target.get(month, Counts()) + counts


def totals(record: ActivityRecord) -> Counts:
    """Sum every monthly bucket of a record field by field."""
    result = Counts()
    for counts in record.monthly.values():
        result = result + counts
    return result


def _merge_group(group: List[ActivityRecord], organization, organization_display_name) -> ActivityRecord:
    first = group[0]
    monthly: Dict[str, Counts] = {}
    for rec in group:
        _sum_monthly(monthly, rec.monthly)
    return ActivityRecord(
        login=first.login,
        display_name=first.display_name,
        avatar_url=first.avatar_url,
        organization=organization,
        organization_display_name=organization_display_name,
        monthly=monthly,
    )


def merge_across_organizations(records: Iterable[ActivityRecord]) -> List[ActivityRecord]:
    """
    Collapse records sharing a login into one record per login.

    When more than one organization contributed, the merged record is attributed to
    MULTIPLE_ORGANIZATIONS; otherwise the single organization's identity is kept.
    """
    groups: Dict[str, List[ActivityRecord]] = {}
    for rec in records:
        groups.setdefault(rec.login, []).append(rec)

    merged = []
    for group in groups.values():
        orgs = []
        for rec in group:
            if rec.organization not in orgs:
                orgs.append(rec.organization)
        if len(orgs) > 1:
            merged.append(_merge_group(group, MULTIPLE_ORGANIZATIONS, MULTIPLE_ORGANIZATIONS_DISPLAY))
        else:
            merged.append(_merge_group(group, group[0].organization, group[0].organization_display_name))
    return merged


def merge_across_buckets(records: Iterable[ActivityRecord]) -> List[ActivityRecord]:
    """Collapse records sharing (login, organization), e.g. the same member seen in several fetch buckets."""
    groups: Dict[tuple, List[ActivityRecord]] = {}
    for rec in records:
        groups.setdefault((rec.login, rec.organization), []).append(rec)
    return [_merge_group(g, g[0].organization, g[0].organization_display_name) for g in groups.values()]


def _averages(total: Counts, count: int) -> Dict[str, float]:
    if count <= 0:
        return {k: 0 for k in ACTIVITY_TYPES}
    return {k: total.get(k) / count for k in ACTIVITY_TYPES}


def summary_stats(records: Sequence[ActivityRecord]) -> dict:
    """Return {'sum': Counts, 'average': {field: float}}; averages are 0 for an empty collection."""
    total = Counts()
    for rec in records:
        total = total + totals(rec)
    return {'sum': total, 'average': _averages(total, len(records))}


def organization_comparison(
    records: Sequence[ActivityRecord], organizations: Sequence[str], display_names: Optional[Dict[str, str]] = None
) -> List[dict]:
    """Per-organization totals, member counts and per-member averages, in the order of `organizations`."""
    display_names = display_names or {}
    rows = []
    for org in organizations:
        org_records = [r for r in records if r.organization == org]
        stats = summary_stats(org_records)
        total: Counts = stats['sum']
        member_count = len(org_records)
        averages = dict(stats['average'])
        averages['total'] = (total.total() / member_count) if member_count else 0
        row = {
            'organization': org,
            'organization_display_name': display_names.get(org, org),
        }
        row.update(total.as_dict())
        row['total'] = total.total()
        row['member_count'] = member_count
        row['averages'] = averages
        rows.append(row)
    return rows


def timeline_buckets(records: Iterable[ActivityRecord]) -> List[dict]:
    """Month-by-month sums across all records, ascending by 'YYYY-MM'."""
    by_month: Dict[str, Counts] = {}
    for rec in records:
        _sum_monthly(by_month, rec.monthly)
    timeline = []
    for month in sorted(by_month):
        entry = {'month': month}
        entry.update(by_month[month].as_dict())
        entry['total'] = by_month[month].total()
        timeline.append(entry)
    return timeline


def organization_stats(records: Sequence[ActivityRecord]) -> dict:
    stats = summary_stats(records)
    total: Counts = stats['sum']
    result = {'member_count': len(records)}
    for k in ACTIVITY_TYPES:
        result[f'total_{k}'] = total.get(k)
    result['total_activities'] = total.total()
    for k in ACTIVITY_TYPES:
        result[f'average_{k}'] = stats['average'][k]
    return result
