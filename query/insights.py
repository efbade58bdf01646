"""
Comparison insights as a declarative rule table.

Each rule reads one metric from an organization comparison row and carries a sentence template.
Rules are evaluated in table order over every ordered pair of compared organizations; a sentence
is emitted only when the first organization's value is strictly greater (ties say nothing).
"""

from itertools import permutations
from typing import Callable, List, Sequence


class InsightRule:
    def __init__(self, metric: str, value: Callable[[dict], float], template: str):
        self.metric = metric
        self.value = value
        self.template = template

    def evaluate(self, a: dict, b: dict):
        va, vb = self.value(a), self.value(b)
        if va > vb:
            return self.template.format(
                a=a.get('organization_display_name') or a['organization'],
                b=b.get('organization_display_name') or b['organization'],
                va=va,
                vb=vb,
                diff=va - vb,
            )
        return None


INSIGHT_RULES = (
    InsightRule('member_count', lambda row: row['member_count'],
                "{a} has {diff} more active members than {b}"),
    InsightRule('total', lambda row: row['total'],
                "{a} total activity ({va}) is higher than {b} ({vb})"),
    InsightRule('average', lambda row: row['averages']['total'],
                "{a} average activity per member ({va:.1f}) is higher than {b} ({vb:.1f})"),
    InsightRule('issues', lambda row: row['issues'],
                "{a} opened more issues ({va}) than {b} ({vb})"),
    InsightRule('merge_requests', lambda row: row['merge_requests'],
                "{a} opened more merge requests ({va}) than {b} ({vb})"),
    InsightRule('commits', lambda row: row['commits'],
                "{a} made more commits ({va}) than {b} ({vb})"),
    InsightRule('reviews', lambda row: row['reviews'],
                "{a} did more reviews ({va}) than {b} ({vb})"),
)


def comparison_insights(rows: Sequence[dict], rules: Sequence[InsightRule] = INSIGHT_RULES) -> List[str]:
    insights = []
    if len(rows) < 2:
        return insights
    for rule in rules:
        for a, b in permutations(rows, 2):
            sentence = rule.evaluate(a, b)
            if sentence:
                insights.append(sentence)
    return insights
