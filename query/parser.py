"""
Deterministic keyword-driven intent parser.

Turns a short free-text question into a ParsedQuery (intent + entities + filters).
The parser never fails: anything it does not recognize is simply left unset.
"""

import re
from datetime import date, timedelta
from typing import Callable, List, Optional, Sequence

from dateutil.relativedelta import relativedelta

from models import ACTIVITY_TYPES
from settings import Organization
from .vocabulary import (
    DEFAULT_VOCABULARY,
    LAST_MONTH,
    MONTHS,
    THIS_MONTH,
    WEEKS,
    Vocabulary,
    contains_any,
    keyword_spans,
)

INTENTS = ('comparison', 'analysis', 'aggregation', 'ranking', 'timeline', 'data')


class QueryEntities:
    def __init__(
        self,
        members: Optional[List[str]] = None,
        organizations: Optional[List[str]] = None,
        date_range: Optional[dict] = None,
        activity_types: Optional[List[str]] = None,
        comparison: Optional[str] = None,
        aggregation: Optional[str] = None,
    ):
        self.members = list(members or [])
        self.organizations = list(organizations or [])
        self.date_range = date_range
        self.activity_types = list(activity_types or [])
        self.comparison = comparison
        self.aggregation = aggregation

    def to_dict(self) -> dict:
        return {
            'members': list(self.members),
            'organizations': list(self.organizations),
            'date_range': dict(self.date_range) if self.date_range else None,
            'activity_types': list(self.activity_types),
            'comparison': self.comparison,
            'aggregation': self.aggregation,
        }


class QueryFilters:
    def __init__(
        self,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        limit: Optional[int] = None,
    ):
        self.min_value = min_value
        self.max_value = max_value
        self.sort_by = sort_by
        self.sort_order = sort_order
        self.limit = limit

    def to_dict(self) -> dict:
        return {
            'min_value': self.min_value,
            'max_value': self.max_value,
            'sort_by': self.sort_by,
            'sort_order': self.sort_order,
            'limit': self.limit,
        }


class ParsedQuery:
    def __init__(self, intent: str = 'data', entities: Optional[QueryEntities] = None, filters: Optional[QueryFilters] = None):
        self.intent = intent
        self.entities = entities or QueryEntities()
        self.filters = filters or QueryFilters()

    def to_dict(self) -> dict:
        return {'intent': self.intent, 'entities': self.entities.to_dict(), 'filters': self.filters.to_dict()}

    def __repr__(self):
        return f"ParsedQuery(intent={self.intent!r}, entities={self.entities.to_dict()!r}, filters={self.filters.to_dict()!r})"


def _first_int(text: str, patterns: Sequence[str]) -> Optional[int]:
    for pattern in patterns:
        m = re.search(pattern, text)
        if m:
            return int(m.group(1))
    return None


class IntentParser:
    """
    Keyword parser bound to a fixed set of known member logins and configured organizations.

    known_logins is the data-dependent half of the vocabulary: only logins present in the
    loaded records can be recognized. clock returns "today" and anchors relative date phrases.
    """

    def __init__(
        self,
        known_logins: Sequence[str],
        organizations: Sequence,
        vocabulary: Vocabulary = DEFAULT_VOCABULARY,
        clock: Optional[Callable[[], date]] = None,
    ):
        seen = []
        for login in known_logins:
            if login and login not in seen:
                seen.append(login)
        self.known_logins = tuple(seen)
        self.organizations = tuple(o if isinstance(o, Organization) else Organization(str(o)) for o in organizations)
        self.vocabulary = vocabulary
        self.clock = clock or date.today

    def parse(self, text: str) -> ParsedQuery:
        q = (text or '').lower()
        intent = self.detect_intent(q)
        entities = QueryEntities(
            members=self.extract_members(q),
            organizations=self.extract_organizations(q, intent),
            date_range=self.extract_date_range(q),
            activity_types=self.extract_activity_types(q),
            comparison=self.extract_comparison(q),
            aggregation=self.extract_aggregation(q),
        )
        filters = QueryFilters(
            min_value=_first_int(q, self.vocabulary.min_patterns),
            max_value=_first_int(q, self.vocabulary.max_patterns),
            sort_by=self.extract_sort_by(q),
            sort_order=self.extract_sort_order(q),
            limit=_first_int(q, self.vocabulary.limit_patterns),
        )
        return ParsedQuery(intent, entities, filters)

    def detect_intent(self, q: str) -> str:
        for intent, keywords in self.vocabulary.intent_table():
            if contains_any(q, keywords):
                return intent
        return 'data'

    def extract_members(self, q: str) -> List[str]:
        if contains_any(q, self.vocabulary.everyone):
            return list(self.known_logins)
        members = []
        for login in self.known_logins:
            lowered = login.lower()
            if lowered in q or lowered.replace('-', ' ') in q:
                members.append(login)
        return members

    def extract_organizations(self, q: str, intent: str) -> List[str]:
        all_names = [o.name for o in self.organizations]
        if contains_any(q, self.vocabulary.all_organizations):
            return all_names

        tokens = []
        for org in self.organizations:
            for token in org.tokens():
                tokens.append((token, org.name))
        # longest first, and a matched span is blanked so 'macromill' cannot re-match inside 'macromill-mint'
        tokens.sort(key=lambda t: len(t[0]), reverse=True)
        working = q
        found = set()
        for token, name in tokens:
            for start, end in keyword_spans(working, token):
                found.add(name)
                working = working[:start] + ' ' * (end - start) + working[end:]

        matched = [name for name in all_names if name in found]
        if not matched and intent == 'comparison':
            return all_names
        return matched

    def extract_date_range(self, q: str) -> Optional[dict]:
        today = self.clock()
        for pattern, unit, default_n in self.vocabulary.date_phrases:
            m = re.search(pattern, q)
            if not m:
                continue
            n = int(m.group(1)) if m.groups() and m.group(1) else default_n
            if unit == THIS_MONTH:
                start = today.replace(day=1)
                end = start + relativedelta(months=1) - timedelta(days=1)
            elif unit == LAST_MONTH:
                start = today.replace(day=1) - relativedelta(months=1)
                end = today.replace(day=1) - timedelta(days=1)
            elif unit == WEEKS:
                start, end = today - timedelta(weeks=n), today
            elif unit == MONTHS:
                start, end = today - relativedelta(months=n), today
            else:
                continue
            return {'start': start.isoformat(), 'end': end.isoformat()}
        return None

    def extract_activity_types(self, q: str) -> List[str]:
        types = []
        for activity_type in ACTIVITY_TYPES:
            if contains_any(q, self.vocabulary.activity_types.get(activity_type, ())):
                types.append(activity_type)
        return types

    def extract_comparison(self, q: str) -> Optional[str]:
        return 'comparison' if contains_any(q, self.vocabulary.comparison) else None

    def extract_aggregation(self, q: str) -> Optional[str]:
        for kind in ('sum', 'average', 'max', 'min'):
            if contains_any(q, self.vocabulary.aggregation_kinds.get(kind, ())):
                return kind
        return None

    def extract_sort_by(self, q: str) -> Optional[str]:
        types = self.extract_activity_types(q)
        if types:
            return types[0]
        if contains_any(q, self.vocabulary.total):
            return 'total'
        return None

    def extract_sort_order(self, q: str) -> Optional[str]:
        if contains_any(q, self.vocabulary.sort_desc):
            return 'desc'
        if contains_any(q, self.vocabulary.sort_asc):
            return 'asc'
        return None
