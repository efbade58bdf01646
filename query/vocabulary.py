"""
Keyword tables for the query parser.

A Vocabulary is immutable configuration: every table is a tuple (or a read-only mapping of
tuples) so a parser can share one instance safely. Locales are plain instances and are
combined with Vocabulary.combine(), preserving keyword order.

Matching rules live here too so that every table is interpreted the same way:
- Keywords match case-insensitively as literal substrings, so "compared", "committed",
  "reviewers" and "top5" all hit their stem keyword.
- ASCII abbreviations of at most two letters ('pr', 'mr', 'vs') only match as standalone
  tokens, optionally followed by 's'; otherwise 'pr' would fire inside "compare".
"""

import re
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, Iterable, Optional, Sequence, Tuple

# date phrase units understood by the parser
THIS_MONTH = 'this_month'
LAST_MONTH = 'last_month'
WEEKS = 'weeks'
MONTHS = 'months'

SHORT_KEYWORD_LENGTH = 2


@lru_cache(maxsize=256)
def _token_regex(keyword: str):
    return re.compile(r'(?<![a-z0-9])' + re.escape(keyword) + r's?(?![a-z0-9])')


def keyword_spans(text: str, keyword: str) -> Tuple[Tuple[int, int], ...]:
    """Return (start, end) spans where keyword occurs in the already lower-cased text."""
    keyword = keyword.lower()
    if not keyword:
        return ()
    if keyword.isascii() and len(keyword) <= SHORT_KEYWORD_LENGTH:
        return tuple(m.span() for m in _token_regex(keyword).finditer(text))
    spans = []
    start = text.find(keyword)
    while start != -1:
        spans.append((start, start + len(keyword)))
        start = text.find(keyword, start + len(keyword))
    return tuple(spans)


def contains_keyword(text: str, keyword: str) -> bool:
    return bool(keyword_spans(text, keyword))


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(contains_keyword(text, kw) for kw in keywords)


def _freeze(mapping: Optional[Dict[str, Sequence]]) -> MappingProxyType:
    return MappingProxyType({k: tuple(v) for k, v in (mapping or {}).items()})


class Vocabulary:
    """
    One locale's keyword tables. Every attribute is read-only after construction.
    """

    _FIELDS = (
        'comparison', 'analysis', 'aggregation', 'ranking', 'timeline',
        'everyone', 'all_organizations', 'total',
        'sort_desc', 'sort_asc',
        'min_patterns', 'max_patterns', 'limit_patterns',
    )
    _MAPPINGS = ('activity_types', 'aggregation_kinds')

    def __init__(self, activity_types=None, aggregation_kinds=None, date_phrases=(), **tables):
        unknown = set(tables) - set(self._FIELDS)
        if unknown:
            raise TypeError(f"unknown vocabulary tables: {sorted(unknown)}")
        for name in self._FIELDS:
            object.__setattr__(self, name, tuple(tables.get(name, ())))
        object.__setattr__(self, 'activity_types', _freeze(activity_types))
        object.__setattr__(self, 'aggregation_kinds', _freeze(aggregation_kinds))
        # (regex, unit, default count); the first regex group, when present, overrides the count
        object.__setattr__(self, 'date_phrases', tuple((p, unit, n) for p, unit, n in date_phrases))

    def __setattr__(self, name, value):
        raise AttributeError('Vocabulary is immutable')

    def intent_table(self) -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
        """Intent keyword lists in precedence order."""
        return (
            ('comparison', self.comparison),
            ('analysis', self.analysis),
            ('aggregation', self.aggregation),
            ('ranking', self.ranking),
            ('timeline', self.timeline),
        )

    @classmethod
    def combine(cls, *vocabularies: 'Vocabulary') -> 'Vocabulary':
        tables = {name: [] for name in cls._FIELDS}
        mappings = {name: {} for name in cls._MAPPINGS}
        date_phrases = []
        for vocab in vocabularies:
            for name in cls._FIELDS:
                tables[name].extend(getattr(vocab, name))
            for name in cls._MAPPINGS:
                for key, words in getattr(vocab, name).items():
                    mappings[name].setdefault(key, []).extend(words)
            date_phrases.extend(vocab.date_phrases)
        return cls(date_phrases=date_phrases, **mappings, **tables)


ENGLISH = Vocabulary(
    comparison=('compare', 'comparison', 'vs', 'versus', 'against'),
    analysis=('analyze', 'analyse', 'analysis', 'trend', 'pattern'),
    aggregation=('total', 'average', 'aggregate', 'sum'),
    ranking=('top', 'most', 'highest', 'ranking'),
    timeline=('period', 'when', 'timeline', 'over time'),
    everyone=('everyone', 'everybody', 'all members'),
    all_organizations=('all organizations', 'all orgs'),
    total=('total',),
    sort_desc=('most', 'top', 'highest', 'largest'),
    sort_asc=('least', 'bottom', 'lowest', 'fewest'),
    activity_types={
        'issues': ('issue',),
        'merge_requests': ('pr', 'pull request', 'merge request', 'mr'),
        'commits': ('commit',),
        'reviews': ('review',),
    },
    aggregation_kinds={
        'sum': ('sum', 'total'),
        'average': ('average', 'avg', 'mean'),
        'max': ('max', 'maximum'),
        'min': ('min', 'minimum'),
    },
    min_patterns=(r'(\d+)\s*or\s+more', r'at\s+least\s+(\d+)'),
    max_patterns=(r'(\d+)\s*or\s+(?:fewer|less)', r'at\s+most\s+(\d+)'),
    limit_patterns=(r'top\s*(\d+)', r'(\d+)\s*(?:people|persons)\b'),
    date_phrases=(
        (r'(?:last|past)\s+(\d+)\s+weeks?', WEEKS, 1),
        (r'(?:last|past)\s+(\d+)\s+months?', MONTHS, 1),
        (r'this\s+month', THIS_MONTH, 0),
        (r'last\s+month', LAST_MONTH, 0),
        (r'(?:last|past)\s+week', WEEKS, 1),
    ),
)

JAPANESE = Vocabulary(
    comparison=('比較', '対'),
    analysis=('分析', '傾向', 'パターン'),
    aggregation=('合計', '平均', '集計'),
    ranking=('上位', '最も', '多い'),
    timeline=('期間', 'いつ'),
    everyone=('全員', 'すべて', '全体'),
    all_organizations=('全組織', 'すべての組織'),
    total=('合計',),
    sort_desc=('多い', '上位', '最大'),
    sort_asc=('少ない', '下位', '最小'),
    activity_types={
        'issues': ('イシュー',),
        'merge_requests': ('プルリク', 'マージリクエスト'),
        'commits': ('コミット',),
        'reviews': ('レビュー',),
    },
    aggregation_kinds={
        'sum': ('合計',),
        'average': ('平均',),
        'max': ('最大',),
        'min': ('最小',),
    },
    min_patterns=(r'(\d+)\s*(?:個|件)?以上',),
    max_patterns=(r'(\d+)\s*(?:個|件)?以下',),
    limit_patterns=(r'上位\s*(\d+)', r'(\d+)\s*位まで', r'(\d+)\s*人'),
    date_phrases=(
        (r'過去\s*(\d+)\s*週間', WEEKS, 1),
        (r'過去\s*(\d+)\s*(?:ヶ|か|カ|ケ)月', MONTHS, 1),
        (r'今月', THIS_MONTH, 0),
        (r'先月', LAST_MONTH, 0),
        (r'先週', WEEKS, 1),
    ),
)

DEFAULT_VOCABULARY = Vocabulary.combine(ENGLISH, JAPANESE)

