"""
Aggregate package: pure merge and summary helpers over ActivityRecord collections.
"""

from .merge import (
    MULTIPLE_ORGANIZATIONS,
    merge_across_buckets,
    merge_across_organizations,
    organization_comparison,
    summary_stats,
    timeline_buckets,
    totals,
)

__all__ = [
    "MULTIPLE_ORGANIZATIONS",
    "merge_across_buckets",
    "merge_across_organizations",
    "organization_comparison",
    "summary_stats",
    "timeline_buckets",
    "totals",
]
