"""
Query executor: applies the filter pipeline to the loaded records, then dispatches on intent.
"""

import logging
from typing import Dict, List, Optional, Sequence

from aggregate.merge import organization_comparison, summary_stats, timeline_buckets, totals
from models import ACTIVITY_TYPES, ActivityRecord, Counts
from .insights import comparison_insights
from .parser import ParsedQuery

logger = logging.getLogger(__name__)

# result type per intent; anything not listed reports as its own intent name
_RESULT_TYPES = {'ranking': 'data', 'aggregation': 'summary', 'timeline': 'trend'}


class QueryResult:
    """
    Answer to one query.
    summary and insights are only populated for comparison results.
    """

    def __init__(self, result_type: str, data, message: str, query: str, filters: Optional[dict] = None,
                 summary: Optional[dict] = None, insights: Optional[List[str]] = None):
        self.type = result_type
        self.data = data
        self.message = message
        self.query = query
        self.filters = filters
        self.summary = summary
        self.insights = insights

    def to_dict(self) -> dict:
        out = {'type': self.type, 'data': self.data, 'message': self.message, 'query': self.query}
        if self.filters is not None:
            out['filters'] = self.filters
        if self.summary is not None:
            out['summary'] = self.summary
        if self.insights is not None:
            out['insights'] = list(self.insights)
        return out

    def __repr__(self):
        return f"QueryResult(type={self.type!r}, message={self.message!r})"


# --- filter pipeline ---


def filter_by_members(records: Sequence[ActivityRecord], members: Sequence[str]) -> List[ActivityRecord]:
    if not members:
        return list(records)
    wanted = set(members)
    return [r for r in records if r.login in wanted]


def filter_by_organizations(records: Sequence[ActivityRecord], organizations: Sequence[str]) -> List[ActivityRecord]:
    if not organizations:
        return list(records)
    wanted = set(organizations)
    return [r for r in records if r.organization and r.organization in wanted]


def filter_by_date_range(records: Sequence[ActivityRecord], date_range: Optional[dict]) -> List[ActivityRecord]:
    """Keep records with at least one month inside the range; months themselves are not trimmed."""
    if not date_range:
        return list(records)
    lo = str(date_range['start'])[:7]
    hi = str(date_range['end'])[:7]
    return [r for r in records if any(lo <= month[:7] <= hi for month in r.monthly)]


def record_scalar(record: ActivityRecord, activity_types: Sequence[str]) -> int:
    """The value compared against min/max: one named type's sum, otherwise the grand total."""
    total = totals(record)
    if len(activity_types) == 1:
        return total.get(activity_types[0])
    return total.total()


def filter_by_value(records: Sequence[ActivityRecord], activity_types: Sequence[str],
                    min_value: Optional[int] = None, max_value: Optional[int] = None) -> List[ActivityRecord]:
    if min_value is None and max_value is None:
        return list(records)
    kept = []
    for rec in records:
        value = record_scalar(rec, activity_types)
        if min_value is not None and value < min_value:
            continue
        if max_value is not None and value > max_value:
            continue
        kept.append(rec)
    return kept


def project(record: ActivityRecord) -> dict:
    total = totals(record)
    row = {
        'login': record.login,
        'display_name': record.name_or_login(),
        'organization': record.organization_label(),
    }
    row.update(total.as_dict())
    row['total'] = total.total()
    return row


class QueryExecutor:
    def __init__(self, records: Sequence[ActivityRecord], display_names: Optional[Dict[str, str]] = None):
        self.records = list(records)
        self.display_names = dict(display_names or {})

    def filter_records(self, parsed: ParsedQuery) -> List[ActivityRecord]:
        entities, filters = parsed.entities, parsed.filters
        records = filter_by_members(self.records, entities.members)
        records = filter_by_organizations(records, entities.organizations)
        records = filter_by_date_range(records, entities.date_range)
        return filter_by_value(records, entities.activity_types, filters.min_value, filters.max_value)

    def execute(self, parsed: ParsedQuery, query: str) -> QueryResult:
        records = self.filter_records(parsed)
        logger.debug("Query %r: intent=%s, %d of %d records after filtering", query, parsed.intent, len(records), len(self.records))
        handler = {
            'comparison': self._comparison,
            'analysis': self._analysis,
            'aggregation': self._aggregation,
            'ranking': self._ranking,
            'timeline': self._timeline,
        }.get(parsed.intent, self._data)
        return handler(parsed, records, query)

    @staticmethod
    def _echo_filters(parsed: ParsedQuery) -> dict:
        e = parsed.entities
        return {
            'members': list(e.members),
            'organizations': list(e.organizations),
            'date_range': dict(e.date_range) if e.date_range else None,
            'activity_types': list(e.activity_types),
        }

    def _rows(self, parsed: ParsedQuery, records: Sequence[ActivityRecord], sort_by: Optional[str]) -> List[dict]:
        rows = [project(r) for r in records]
        if sort_by:
            # sorted() is stable, also with reverse=True
            rows = sorted(rows, key=lambda row: row.get(sort_by, 0), reverse=parsed.filters.sort_order != 'asc')
        if parsed.filters.limit:
            rows = rows[: parsed.filters.limit]
        return rows

    def _data(self, parsed, records, query) -> QueryResult:
        rows = self._rows(parsed, records, parsed.filters.sort_by)
        return QueryResult('data', rows, f"{len(rows)} records found", query, filters=self._echo_filters(parsed))

    def _ranking(self, parsed, records, query) -> QueryResult:
        sort_by = parsed.filters.sort_by or 'total'
        rows = self._rows(parsed, records, sort_by)
        return QueryResult(_RESULT_TYPES['ranking'], rows, f"{len(rows)} records ranked by {sort_by}", query,
                           filters=self._echo_filters(parsed))

    def _comparison(self, parsed, records, query) -> QueryResult:
        organizations = parsed.entities.organizations
        if len(organizations) < 2:
            return self._data(parsed, records, query)
        rows = organization_comparison(records, organizations, self.display_names)
        summary = {
            'total_organizations': len(rows),
            'total_members': sum(row['member_count'] for row in rows),
        }
        for k in ACTIVITY_TYPES:
            summary[f'total_{k}'] = sum(row[k] for row in rows)
        summary['total_activities'] = sum(row['total'] for row in rows)
        labels = [row['organization_display_name'] for row in rows]
        return QueryResult(
            'comparison',
            rows,
            f"Comparison of {' and '.join(labels)}",
            query,
            filters={'organizations': list(organizations)},
            summary=summary,
            insights=comparison_insights(rows),
        )

    def _analysis(self, parsed, records, query) -> QueryResult:
        stats = summary_stats(records)
        total: Counts = stats['sum']
        data = {'total_members': len(records)}
        for k in ACTIVITY_TYPES:
            data[f'total_{k}'] = total.get(k)
        for k in ACTIVITY_TYPES:
            data[f'average_{k}'] = stats['average'][k]
        return QueryResult('analysis', data, f"Activity analysis of {len(records)} members", query)

    def _aggregation(self, parsed, records, query) -> QueryResult:
        stats = summary_stats(records)
        data = {'sum': stats['sum'].as_dict(), 'average': dict(stats['average'])}
        return QueryResult(_RESULT_TYPES['aggregation'], data, f"Aggregated activity of {len(records)} members", query)

    def _timeline(self, parsed, records, query) -> QueryResult:
        data = timeline_buckets(records)
        return QueryResult(_RESULT_TYPES['timeline'], data, f"Monthly activity trend over {len(data)} months", query)
